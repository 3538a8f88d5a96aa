from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Tier(str, Enum):
    QUICK = "quick"
    STANDARD = "standard"
    DEEP = "deep"


class ResponseType(str, Enum):
    LIKERT = "likert"
    CHOICE = "choice"
    SLIDER = "slider"
    BINARY = "binary"


class PathwayId(str, Enum):
    ADHD = "adhd_pathway"
    AUTISM = "autism_pathway"
    AUDHD = "audhd_pathway"
    TRAUMA = "trauma_pathway"
    MASKING = "masking_pathway"
    GIFTED = "gifted_pathway"


class TraitLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class SessionStatus(str, Enum):
    ACTIVE = "active"
    COMPLETED = "completed"


AnswerValue = Union[bool, int, float, str]


# --- Reference data ---

class Question(BaseModel):
    id: str
    text: str
    category: str
    instrument: str = "neurlyn"
    response_type: ResponseType = ResponseType.LIKERT
    trait: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    reverse_scored: bool = False
    pathway: Optional[PathwayId] = None


class PathwayRule(BaseModel):
    """Trigger rule and pool reference for one pathway."""
    id: PathwayId
    name: str
    priority: int  # lower evaluates first
    clinical: bool = True
    trigger_tags: List[str] = Field(default_factory=list)
    requires: List[PathwayId] = Field(default_factory=list)  # combined pathways only
    intensity_threshold: Optional[float] = None
    min_matches: Optional[int] = None
    pool: PathwayId

    @property
    def is_combined(self) -> bool:
        return bool(self.requires)


# --- Session state ---

class Response(BaseModel):
    question_id: str
    value: AnswerValue
    response_time_ms: Optional[float] = None
    category: Optional[str] = None
    trait: Optional[str] = None
    tags: List[str] = Field(default_factory=list)
    reverse_scored: bool = False
    response_type: ResponseType = ResponseType.LIKERT
    behavioral: Optional[Dict[str, float]] = None
    recorded_at: datetime = Field(default_factory=utcnow)

    model_config = {"frozen": True}


class BranchingDecision(BaseModel):
    pathway: PathwayId
    question_number: int
    trigger_count: int
    activated_at: datetime = Field(default_factory=utcnow)


class Progress(BaseModel):
    current: int
    total: int
    percentage: int
    phase: str


class Session(BaseModel):
    session_id: str
    tier: str
    question_limit: int
    concerns: List[str] = Field(default_factory=list)
    demographics: Dict[str, Any] = Field(default_factory=dict)
    focus_tags: List[str] = Field(default_factory=list)
    responses: List[Response] = Field(default_factory=list)
    activated_pathways: List[PathwayId] = Field(default_factory=list)
    pathway_counts: Dict[str, int] = Field(default_factory=dict)
    branching_decisions: List[BranchingDecision] = Field(default_factory=list)
    current_batch: List[str] = Field(default_factory=list)
    asked_question_ids: List[str] = Field(default_factory=list)
    base_presented: int = 0
    pathway_presented: Dict[str, int] = Field(default_factory=dict)
    base_since_pathway: int = 0
    pools_exhausted: bool = False
    status: SessionStatus = SessionStatus.ACTIVE
    started_at: datetime = Field(default_factory=utcnow)
    last_activity_at: datetime = Field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_closed(self) -> bool:
        return self.status == SessionStatus.COMPLETED

    @property
    def answered_ids(self) -> List[str]:
        return [r.question_id for r in self.responses]

    def find_response(self, question_id: str) -> Optional[Response]:
        for response in self.responses:
            if response.question_id == question_id:
                return response
        return None


# --- Results ---

class TraitScore(BaseModel):
    trait: str
    raw: float
    percentile: float
    level: TraitLevel
    item_count: int


class QualityMetrics(BaseModel):
    completion_rate: float
    avg_response_time: Optional[float]
    response_variability: float
    longest_run: int
    straight_lining_detected: bool
    careless_responding_suspected: bool
    data_quality: str
    response_style: str = "balanced"


class Summary(BaseModel):
    primary_profile: str
    profile_key: str
    immediate_actions: List[str] = Field(default_factory=list)
    pathways_activated: List[PathwayId] = Field(default_factory=list)


class StartResult(BaseModel):
    session_id: str
    tier: str
    total_questions: int
    progress: Progress
    batch: List[Question]


class SubmitResult(BaseModel):
    progress: Progress
    next_batch: List[Question]
    complete: bool
    activated_pathways: List[PathwayId]
    newly_activated: List[PathwayId] = Field(default_factory=list)
    duplicate: bool = False


class ResumeResult(BaseModel):
    session_id: str
    tier: str
    progress: Progress
    activated_pathways: List[PathwayId]
    is_complete: bool
    current_batch: List[Question]


class CompletionResult(BaseModel):
    session_id: str
    tier: str
    total_responses: int
    scores: Dict[str, TraitScore]
    activated_pathways: List[PathwayId]
    match_confidence: float
    quality: QualityMetrics
    summary: Summary
    responses: List[Response] = Field(default_factory=list)  # for the report hand-off, not the HTTP body


# Custom Error Classes
class AssessmentError(Exception):
    """Base class for errors raised by the assessment engine."""
    pass

class AssessmentValidationError(AssessmentError, ValueError):
    """Malformed input (bad tier type, missing or out-of-range response fields)."""
    pass

class InvalidResponseError(AssessmentValidationError):
    """Response does not belong to the current batch or conflicts with a recorded answer."""
    pass

class SessionNotFoundError(AssessmentError, LookupError):
    """Unknown or expired session id."""
    pass

class SessionClosedError(AssessmentError):
    """Operation attempted on a completed session."""
    pass

class TransientStoreError(AssessmentError, ConnectionError):
    """Session store temporarily unavailable; safe to retry."""
    pass

class QuestionBankError(ValueError):
    """Question bank file is missing, unparsable or inconsistent."""
    pass
