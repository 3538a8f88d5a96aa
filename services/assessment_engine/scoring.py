"""
Assessment Scoring Library

Pure functions over recorded responses: per-trait scores and percentiles,
response quality metrics and the match-confidence figure. Nothing here touches
session state, so a report can be reproduced from stored responses alone.
"""
import math
from collections import defaultdict
from typing import Dict, Hashable, Iterable, List, Optional, Sequence

from .definitions import LIKERT_LABEL_SCORES, LIKERT_MAX, LIKERT_MIN, SLIDER_MAX
from .models import QualityMetrics, Response, ResponseType, TraitLevel, TraitScore

MATCH_CONFIDENCE_BASE = 75
MATCH_CONFIDENCE_MIN = 50
MATCH_CONFIDENCE_MAX = 95
VARIABILITY_WINDOW = 7  # distinct values are compared against at most a 7-point scale


# --- Value normalisation ---

def endorsement_value(response: Response) -> Optional[float]:
    """
    Returns the answer on the 1..5 endorsement scale, before any reverse scoring.
    None means the answer has no intensity (free choice, malformed value).
    """
    value = response.value
    if response.response_type == ResponseType.BINARY:
        if isinstance(value, bool):
            return float(LIKERT_MAX if value else LIKERT_MIN)
        if isinstance(value, (int, float)) and value in (0, 1):
            return float(LIKERT_MAX if value else LIKERT_MIN)
        return None
    if isinstance(value, bool):
        return None
    if response.response_type == ResponseType.SLIDER:
        if isinstance(value, (int, float)) and 0 <= value <= SLIDER_MAX:
            return LIKERT_MIN + (value / SLIDER_MAX) * (LIKERT_MAX - LIKERT_MIN)
        return None
    if isinstance(value, (int, float)):
        if LIKERT_MIN <= value <= LIKERT_MAX:
            return float(value)
        return None
    if isinstance(value, str):
        score = LIKERT_LABEL_SCORES.get(value.strip().lower())
        return float(score) if score is not None else None
    return None


def scaled_value(response: Response) -> Optional[float]:
    """Answer mapped to 0..100 with reverse-scored items mirrored."""
    endorsement = endorsement_value(response)
    if endorsement is None:
        return None
    scaled = (endorsement - LIKERT_MIN) / (LIKERT_MAX - LIKERT_MIN) * 100.0
    if response.reverse_scored:
        scaled = 100.0 - scaled
    return scaled


def _comparable(response: Response) -> Hashable:
    endorsement = endorsement_value(response)
    if endorsement is not None:
        return endorsement
    return str(response.value).strip().lower()


# --- Trait scores ---

def calculate_percentile(score: float, mean: float = 50.0, std_dev: float = 15.0) -> float:
    """Normal-distribution percentile. The population norms are a fixed approximation, not empirical."""
    if std_dev <= 0:
        raise ValueError("std_dev must be positive")
    z = (score - mean) / std_dev
    return round(50.0 * (1.0 + math.erf(z / math.sqrt(2.0))), 1)


def classify_level(score: float, high_cutoff: float = 70.0, low_cutoff: float = 30.0) -> TraitLevel:
    if score >= high_cutoff:
        return TraitLevel.HIGH
    if score <= low_cutoff:
        return TraitLevel.LOW
    return TraitLevel.MEDIUM


def score_traits(
    responses: Iterable[Response],
    mean: float = 50.0,
    std_dev: float = 15.0,
    high_cutoff: float = 70.0,
    low_cutoff: float = 30.0,
) -> Dict[str, TraitScore]:
    """
    Computes a TraitScore for every trait that has at least one scorable response.
    Responses without a trait or without a numeric answer are ignored.
    """
    buckets: Dict[str, List[float]] = defaultdict(list)
    for response in responses:
        if not response.trait:
            continue
        value = scaled_value(response)
        if value is None:
            continue
        buckets[response.trait].append(value)

    scores: Dict[str, TraitScore] = {}
    for trait in sorted(buckets):
        values = buckets[trait]
        raw = round(sum(values) / len(values), 2)
        scores[trait] = TraitScore(
            trait=trait,
            raw=raw,
            percentile=calculate_percentile(raw, mean, std_dev),
            level=classify_level(raw, high_cutoff, low_cutoff),
            item_count=len(values),
        )
    return scores


# --- Quality ---

def longest_identical_run(values: Sequence[Hashable]) -> int:
    longest = 0
    current = 0
    previous = object()
    for value in values:
        current = current + 1 if value == previous else 1
        previous = value
        longest = max(longest, current)
    return longest


def response_variability(values: Sequence[Hashable]) -> float:
    if not values:
        return 0.0
    return len(set(values)) / min(len(values), VARIABILITY_WINDOW)


def response_patterns(responses: Sequence[Response]) -> str:
    """Coarse response-style label: extreme, central, acquiescent or balanced."""
    scores = [v for v in (endorsement_value(r) for r in responses) if v is not None]
    if not scores:
        return "balanced"
    total = len(scores)
    extreme = sum(1 for s in scores if s in (LIKERT_MIN, LIKERT_MAX))
    central = sum(1 for s in scores if s == 3)
    agreeing = sum(1 for s in scores if s >= 4)
    if extreme / total > 0.6:
        return "extreme"
    if central / total > 0.5:
        return "central"
    if agreeing / total > 0.8:
        return "acquiescent"
    return "balanced"


def quality_metrics(
    responses: Sequence[Response],
    expected_total: int,
    straight_lining_run: int = 10,
    min_avg_response_time_ms: float = 1000.0,
    min_response_variability: float = 0.3,
) -> QualityMetrics:
    """
    Reliability checks for a response set.

    Straight-lining is flagged when the longest run of identical consecutive
    answers exceeds `straight_lining_run`. Careless responding is suspected when
    the mean latency is below `min_avg_response_time_ms` (only if latencies were
    recorded) or when the variability ratio is below `min_response_variability`.
    """
    latencies = [r.response_time_ms for r in responses if r.response_time_ms is not None]
    avg_response_time = sum(latencies) / len(latencies) if latencies else None

    values = [_comparable(r) for r in responses]
    variability = response_variability(values)
    longest_run = longest_identical_run(values)

    straight_lining = longest_run > straight_lining_run
    too_fast = avg_response_time is not None and avg_response_time < min_avg_response_time_ms
    careless = bool(responses) and (too_fast or variability < min_response_variability)

    completion_rate = min(1.0, len(responses) / expected_total) if expected_total > 0 else 0.0

    return QualityMetrics(
        completion_rate=round(completion_rate, 3),
        avg_response_time=round(avg_response_time, 1) if avg_response_time is not None else None,
        response_variability=round(variability, 3),
        longest_run=longest_run,
        straight_lining_detected=straight_lining,
        careless_responding_suspected=careless,
        data_quality="Good" if variability > 0.5 and not straight_lining else "Review needed",
        response_style=response_patterns(responses),
    )


def match_confidence(
    response_count: int,
    quality: QualityMetrics,
    scores: Optional[Dict[str, TraitScore]] = None,
) -> float:
    """Reliability summary clamped to [50, 95]. Not a statistical confidence interval."""
    confidence = MATCH_CONFIDENCE_BASE

    if response_count > 80:
        confidence += 10
    if response_count > 150:
        confidence += 5
    if quality.data_quality == "Good":
        confidence += 10
    if quality.careless_responding_suspected:
        confidence -= 15
    if quality.straight_lining_detected:
        confidence -= 10

    # Related traits that point in complementary directions read as consistent
    if scores and "neuroticism" in scores and "extraversion" in scores:
        combined = scores["neuroticism"].percentile + scores["extraversion"].percentile
        if abs(combined - 100) < 40:
            confidence += 5

    return float(min(MATCH_CONFIDENCE_MAX, max(MATCH_CONFIDENCE_MIN, confidence)))
