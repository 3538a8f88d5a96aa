from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field

from services.assessment_engine.models import (
    PathwayId,
    Progress,
    QualityMetrics,
    Question,
    ResponseType,
    Summary,
    TraitScore,
)


class QuestionOut(BaseModel):
    id: str
    text: str
    category: str
    instrument: str
    response_type: ResponseType

    @classmethod
    def from_question(cls, question: Question) -> "QuestionOut":
        return cls(
            id=question.id,
            text=question.text,
            category=question.category,
            instrument=question.instrument,
            response_type=question.response_type,
        )


class StartRequest(BaseModel):
    # Left loose so the controller decides between fallback and validation error
    tier: Any = None
    concerns: List[str] = Field(default_factory=list)
    demographics: Dict[str, Any] = Field(default_factory=dict)


class StartResponse(BaseModel):
    session_id: str
    tier: str
    total_questions: int
    progress: Progress
    current_batch: List[QuestionOut]


class ResponseIn(BaseModel):
    question_id: str
    value: Union[bool, int, float, str]
    response_time_ms: Optional[float] = None
    behavioral: Optional[Dict[str, float]] = None


class SubmitRequest(BaseModel):
    session_id: str
    response: ResponseIn


class SubmitResponse(BaseModel):
    progress: Progress
    next_batch: List[QuestionOut]
    complete: bool
    pathways: List[PathwayId]


class CompleteRequest(BaseModel):
    session_id: str


class CompleteResponse(BaseModel):
    session_id: str
    tier: str
    total_responses: int
    scores: Dict[str, TraitScore]
    activated_pathways: List[PathwayId]
    match_confidence: float
    quality: QualityMetrics
    summary: Summary


class ResumeResponse(BaseModel):
    session_id: str
    tier: str
    progress: Progress
    pathways_activated: List[PathwayId]
    is_complete: bool
    current_batch: List[QuestionOut]
