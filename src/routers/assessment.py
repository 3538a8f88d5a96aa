from fastapi import APIRouter, Depends, HTTPException, Request
from typing import Callable, NoReturn, Optional
import logging

from confluent_kafka import KafkaError

from config.settings import AssessmentSettings, get_settings
from services.assessment_engine.controller import AdaptiveSessionController
from services.assessment_engine.models import (
    AssessmentValidationError,
    CompletionResult,
    SessionClosedError,
    SessionNotFoundError,
    TransientStoreError,
)
from src.messaging.kafka_client import publish_assessment_completed
from src.schemas.assessment import (
    CompleteRequest,
    CompleteResponse,
    QuestionOut,
    ResumeResponse,
    StartRequest,
    StartResponse,
    SubmitRequest,
    SubmitResponse,
)

router = APIRouter()
logger = logging.getLogger(__name__)

RETRY_AFTER_SECONDS = 5


def get_assessment_controller(request: Request) -> AdaptiveSessionController:
    return request.app.state.controller


def get_event_sender() -> Callable[[CompletionResult], bool]:
    return publish_assessment_completed


def _raise_http(e: Exception, session_id: Optional[str] = None) -> NoReturn:
    """Maps engine errors onto HTTP status codes."""
    extra = {"session_id": session_id} if session_id else None
    if isinstance(e, AssessmentValidationError):
        logger.warning(f"Invalid request: {e}", extra=extra)
        raise HTTPException(status_code=400, detail=str(e))
    if isinstance(e, SessionNotFoundError):
        logger.info(f"Session not found: {e}", extra=extra)
        raise HTTPException(status_code=404, detail=str(e))
    if isinstance(e, SessionClosedError):
        logger.info(f"Session closed: {e}", extra=extra)
        raise HTTPException(status_code=410, detail=str(e))
    if isinstance(e, TransientStoreError):
        logger.error(f"Session store unavailable: {e}", extra=extra)
        raise HTTPException(
            status_code=503,
            detail="Session store temporarily unavailable, please retry.",
            headers={"retry-after": str(RETRY_AFTER_SECONDS)},
        )
    logger.exception(f"Unexpected error during adaptive assessment: {e}", extra=extra)
    raise HTTPException(status_code=500, detail="Internal Server Error")


@router.post("/start", response_model=StartResponse)
async def start_assessment(
    request: StartRequest,
    controller: AdaptiveSessionController = Depends(get_assessment_controller),
):
    """Creates a session for the requested tier and returns the first batch."""
    try:
        result = await controller.start(request.tier, request.concerns, request.demographics)
    except Exception as e:
        _raise_http(e)

    return StartResponse(
        session_id=result.session_id,
        tier=result.tier,
        total_questions=result.total_questions,
        progress=result.progress,
        current_batch=[QuestionOut.from_question(q) for q in result.batch],
    )


@router.post("/submit", response_model=SubmitResponse)
async def submit_response(
    request: SubmitRequest,
    controller: AdaptiveSessionController = Depends(get_assessment_controller),
):
    """
    Records one answer. Returns the unanswered part of the current batch, or
    the next batch once the current one is done.
    """
    try:
        result = await controller.submit_response(request.session_id, request.response.model_dump())
    except Exception as e:
        _raise_http(e, request.session_id)

    return SubmitResponse(
        progress=result.progress,
        next_batch=[QuestionOut.from_question(q) for q in result.next_batch],
        complete=result.complete,
        pathways=result.activated_pathways,
    )


@router.post("/complete", response_model=CompleteResponse)
async def complete_assessment(
    request: CompleteRequest,
    controller: AdaptiveSessionController = Depends(get_assessment_controller),
    send_event: Callable[[CompletionResult], bool] = Depends(get_event_sender),
    settings: AssessmentSettings = Depends(get_settings),
):
    """Scores the session, closes it and hands the result to the report compiler."""
    try:
        result = await controller.complete(request.session_id)
    except Exception as e:
        _raise_http(e, request.session_id)

    # Publishing is best effort; the caller already has the result
    if settings.publish_completion_events:
        try:
            if send_event(result):
                logger.info("Assessment completion event queued", extra={"session_id": result.session_id})
            else:
                logger.error("Assessment completion event not sent", extra={"session_id": result.session_id})
        except KafkaError as e:
            logger.error(f"Kafka emission failed: {e}", extra={"session_id": result.session_id})
        except Exception as e:
            logger.error(f"Unexpected error emitting completion event: {e}", extra={"session_id": result.session_id})

    return CompleteResponse(**result.model_dump(exclude={"responses"}))


@router.get("/resume/{session_id}", response_model=ResumeResponse)
async def resume_assessment(
    session_id: str,
    controller: AdaptiveSessionController = Depends(get_assessment_controller),
):
    """Current progress and pending batch for a session, completed or not."""
    try:
        result = await controller.resume(session_id)
    except Exception as e:
        _raise_http(e, session_id)

    return ResumeResponse(
        session_id=result.session_id,
        tier=result.tier,
        progress=result.progress,
        pathways_activated=result.activated_pathways,
        is_complete=result.is_complete,
        current_batch=[QuestionOut.from_question(q) for q in result.current_batch],
    )
