from functools import lru_cache
from pathlib import Path
from typing import Dict
import os

from pydantic_settings import BaseSettings, SettingsConfigDict

PROJECT_ROOT = Path(__file__).resolve().parent.parent

# Load .env file if it exists, for local development
# In production, environment variables should be set directly.
if os.path.exists(".env"):
    from dotenv import load_dotenv
    load_dotenv()


class AssessmentSettings(BaseSettings):
    """Process-wide assessment policy. Built once and passed to collaborators."""

    # Tier budgets
    tier_limits: Dict[str, int] = {"quick": 20, "standard": 45, "deep": 75}
    default_tier: str = "standard"

    # Batch selection
    batch_size: int = 5
    pathway_interleave_ratio: int = 3  # base questions per pathway question

    # Pathway activation (rule table values win when they set their own)
    pathway_intensity_threshold: float = 4.0
    pathway_min_matches: int = 3

    # Scoring
    population_mean: float = 50.0
    population_std_dev: float = 15.0
    high_level_cutoff: float = 70.0
    low_level_cutoff: float = 30.0

    # Quality metrics
    straight_lining_run: int = 10
    min_avg_response_time_ms: float = 1000.0
    min_response_variability: float = 0.3

    # Question bank + session store
    question_bank_path: str = str(PROJECT_ROOT / "assets" / "question_bank.yml")
    session_store_backend: str = "memory"  # "memory" or "redis"
    redis_url: str = "redis://localhost:6379/0"
    session_ttl_seconds: int = 86400
    completed_retention_seconds: int = 3600

    # Report hand-off
    kafka_bootstrap: str = "localhost:9092"
    assessment_completed_topic: str = "ASSESSMENT_COMPLETED"
    publish_completion_events: bool = True

    # HTTP
    rate_limit_enabled: bool = False  # needs Redis
    rate_limit_per_minute: int = 120
    log_level: str = "INFO"

    model_config = SettingsConfigDict(env_prefix="NEURLYN_")

    def limit_for(self, tier: str) -> int:
        """Question budget for a tier name; unknown names get the default tier's budget."""
        if tier in self.tier_limits:
            return self.tier_limits[tier]
        return self.tier_limits[self.default_tier]


@lru_cache(maxsize=1)
def get_settings() -> AssessmentSettings:
    return AssessmentSettings()


if __name__ == "__main__":
    # For checking what the environment resolves to
    settings = get_settings()
    print("Assessment Configuration:")
    print(f"  Tier limits: {settings.tier_limits}")
    print(f"  Batch size: {settings.batch_size} (1 pathway item per {settings.pathway_interleave_ratio} base items)")
    print(f"  Session store: {settings.session_store_backend} ({settings.redis_url})")
    print(f"  Question bank: {settings.question_bank_path}")
    print("\nOverride with environment variables like NEURLYN_BATCH_SIZE, NEURLYN_SESSION_STORE_BACKEND, NEURLYN_REDIS_URL.")
