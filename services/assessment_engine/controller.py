"""
Adaptive Session Controller

Owns the lifecycle of one assessment session: start, batched question
delivery, response intake, pathway branching and completion. Session state is
read from and written back to a SessionStore on every call, so any worker can
serve any request.
"""
import logging
import math
import uuid
from typing import Any, List, Mapping, Optional, Sequence, Tuple

from config.settings import AssessmentSettings

from .definitions import (
    CONCERN_FOCUS_TAGS,
    FINAL_PHASE,
    LATE_DIAGNOSIS_AGE,
    LIKERT_LABEL_SCORES,
    LIKERT_MAX,
    LIKERT_MIN,
    MASKING_FOCUS_GENDERS,
    PHASE_BOUNDARIES,
    SLIDER_MAX,
)
from .models import (
    AssessmentValidationError,
    CompletionResult,
    InvalidResponseError,
    PathwayId,
    Progress,
    Question,
    Response,
    ResponseType,
    ResumeResult,
    Session,
    SessionClosedError,
    SessionNotFoundError,
    SessionStatus,
    StartResult,
    SubmitResult,
    utcnow,
)
from .pathways import PathwayActivationEngine
from .repository import InMemoryQuestionRepository, QuestionRepository
from .scoring import match_confidence, quality_metrics, score_traits
from .store import SessionStore
from .summary import build_summary

logger = logging.getLogger(__name__)

SESSION_ID_PREFIX = "ADAPTIVE_"


def validate_answer(question: Question, value: Any) -> None:
    """Raises InvalidResponseError when `value` is not a legal answer for the question."""
    rtype = question.response_type
    is_number = isinstance(value, (int, float)) and not isinstance(value, bool)
    if is_number and isinstance(value, float) and math.isnan(value):
        raise InvalidResponseError(f"Answer for '{question.id}' is not a number")

    if rtype == ResponseType.BINARY:
        if isinstance(value, bool) or (is_number and value in (0, 1)):
            return
        raise InvalidResponseError(f"Answer for '{question.id}' must be 0/1 or true/false")

    if rtype == ResponseType.SLIDER:
        if is_number and 0 <= value <= SLIDER_MAX:
            return
        raise InvalidResponseError(f"Answer for '{question.id}' must be between 0 and {SLIDER_MAX}")

    if rtype == ResponseType.LIKERT:
        if is_number and LIKERT_MIN <= value <= LIKERT_MAX:
            return
        if isinstance(value, str) and value.strip().lower() in LIKERT_LABEL_SCORES:
            return
        raise InvalidResponseError(
            f"Answer for '{question.id}' must be {LIKERT_MIN}-{LIKERT_MAX} or a known Likert label"
        )

    # Free choice accepts any non-empty value
    if value is None or isinstance(value, bool) or (isinstance(value, str) and not value.strip()):
        raise InvalidResponseError(f"Answer for '{question.id}' must not be empty")


def _same_answer(recorded: Any, submitted: Any) -> bool:
    if isinstance(recorded, str) and isinstance(submitted, str):
        return recorded.strip().lower() == submitted.strip().lower()
    if isinstance(recorded, bool) != isinstance(submitted, bool):
        return False
    return recorded == submitted


class AdaptiveSessionController:

    def __init__(
        self,
        settings: AssessmentSettings,
        repository: QuestionRepository,
        store: SessionStore,
        pathway_engine: Optional[PathwayActivationEngine] = None,
    ):
        self.settings = settings
        self.repository = repository
        self.store = store
        self.pathway_engine = pathway_engine or PathwayActivationEngine(
            default_intensity_threshold=settings.pathway_intensity_threshold,
            default_min_matches=settings.pathway_min_matches,
        )

    # --- Start ---

    def resolve_tier(self, tier: Any) -> Tuple[str, int]:
        if tier is None:
            name = self.settings.default_tier
            return name, self.settings.limit_for(name)
        if not isinstance(tier, str):
            raise AssessmentValidationError(f"Tier must be a string, got {type(tier).__name__}")
        name = tier.strip().lower()
        if name not in self.settings.tier_limits:
            logger.warning(f"Unknown tier '{tier}', falling back to '{self.settings.default_tier}'")
            name = self.settings.default_tier
        return name, self.settings.limit_for(name)

    @staticmethod
    def focus_tags(concerns: Sequence[str], demographics: Mapping[str, Any]) -> List[str]:
        tags: List[str] = []
        for concern in concerns:
            for tag in CONCERN_FOCUS_TAGS.get(concern.strip().lower(), []):
                if tag not in tags:
                    tags.append(tag)

        age = demographics.get("age")
        if isinstance(age, (int, float)) and not isinstance(age, bool) and age > LATE_DIAGNOSIS_AGE:
            tags.append("late_diagnosis")
        gender = demographics.get("gender")
        if isinstance(gender, str) and gender.strip().lower() in MASKING_FOCUS_GENDERS:
            tags.append("masking")
        return tags

    async def start(
        self,
        tier: Any = None,
        concerns: Optional[Sequence[str]] = None,
        demographics: Optional[Mapping[str, Any]] = None,
    ) -> StartResult:
        tier_name, limit = self.resolve_tier(tier)

        concerns = concerns or []
        if not isinstance(concerns, (list, tuple)) or not all(isinstance(c, str) for c in concerns):
            raise AssessmentValidationError("Concerns must be a list of strings")
        demographics = demographics or {}
        if not isinstance(demographics, Mapping):
            raise AssessmentValidationError("Demographics must be an object")

        session = Session(
            session_id=f"{SESSION_ID_PREFIX}{uuid.uuid4().hex}",
            tier=tier_name,
            question_limit=limit,
            concerns=list(concerns),
            demographics=dict(demographics),
            focus_tags=self.focus_tags(concerns, demographics),
        )
        batch = self.get_next_batch(session)
        session.current_batch = [q.id for q in batch]
        await self.store.create(session)

        logger.info(
            f"Started {tier_name} session with {limit} questions, focus tags {session.focus_tags}",
            extra={"session_id": session.session_id},
        )
        return StartResult(
            session_id=session.session_id,
            tier=tier_name,
            total_questions=limit,
            progress=self.progress(session),
            batch=batch,
        )

    # --- Submit ---

    async def submit_response(self, session_id: str, response: Mapping[str, Any]) -> SubmitResult:
        session = await self._load(session_id)
        if session.is_closed:
            raise SessionClosedError(f"Session {session_id} is already complete")
        if not isinstance(response, Mapping):
            raise AssessmentValidationError("Response must be an object")

        question_id = response.get("question_id")
        if not isinstance(question_id, str) or not question_id:
            raise AssessmentValidationError("Response is missing question_id")
        if "value" not in response:
            raise AssessmentValidationError(f"Response for '{question_id}' is missing a value")
        value = response["value"]

        recorded = session.find_response(question_id)
        if recorded is not None:
            if _same_answer(recorded.value, value):
                logger.info(f"Duplicate submission for {question_id} ignored", extra={"session_id": session_id})
                return self._submit_result(session, duplicate=True)
            raise InvalidResponseError(f"Question '{question_id}' was already answered with a different value")

        if question_id not in session.current_batch:
            raise InvalidResponseError(f"Question '{question_id}' is not part of the current batch")
        question = self.repository.get(question_id)
        if question is None:
            raise InvalidResponseError(f"Unknown question '{question_id}'")
        validate_answer(question, value)

        response_time = response.get("response_time_ms")
        if response_time is not None and (
            not isinstance(response_time, (int, float)) or isinstance(response_time, bool) or response_time < 0
        ):
            raise AssessmentValidationError("response_time_ms must be a non-negative number")

        recorded = Response(
            question_id=question.id,
            value=value,
            response_time_ms=response_time,
            category=question.category,
            trait=question.trait,
            tags=list(question.tags),
            reverse_scored=question.reverse_scored,
            response_type=question.response_type,
            behavioral=response.get("behavioral"),
        )
        session.responses.append(recorded)
        newly_activated = self.pathway_engine.apply(session, recorded)

        if not self._pending_ids(session):
            next_batch = self.get_next_batch(session)
            session.current_batch = [q.id for q in next_batch]

        session.last_activity_at = utcnow()
        await self.store.update(session)
        return self._submit_result(session, newly_activated=newly_activated)

    def _submit_result(
        self,
        session: Session,
        newly_activated: Optional[List[PathwayId]] = None,
        duplicate: bool = False,
    ) -> SubmitResult:
        pending = self._pending_questions(session)
        return SubmitResult(
            progress=self.progress(session),
            next_batch=pending,
            complete=not pending,
            activated_pathways=list(session.activated_pathways),
            newly_activated=newly_activated or [],
            duplicate=duplicate,
        )

    # --- Batch selection ---

    def get_next_batch(self, session: Session) -> List[Question]:
        """
        Draws the next batch and records it as presented on the session.

        Base questions rotate through the categories. Once a pathway is active,
        one pathway question follows every `pathway_interleave_ratio` base
        questions. Either kind fills in when the other runs dry. The batch never
        exceeds the remaining tier budget and never repeats an id.
        """
        remaining = session.question_limit - len(session.asked_question_ids)
        size = min(self.settings.batch_size, remaining)
        asked = set(session.asked_question_ids)
        batch: List[Question] = []

        while len(batch) < size:
            due = bool(session.activated_pathways) and (
                session.base_since_pathway >= self.settings.pathway_interleave_ratio
            )
            picked = self._next_pathway_question(session, asked) if due else None
            if picked is None:
                question = self._next_base_question(session, asked)
                if question is not None:
                    session.base_presented += 1
                    session.base_since_pathway += 1
                elif not due:
                    picked = self._next_pathway_question(session, asked)
            else:
                question = None

            if picked is not None:
                question, pathway = picked
                session.pathway_presented[pathway.value] = session.pathway_presented.get(pathway.value, 0) + 1
                session.base_since_pathway = 0

            if question is None:
                break
            asked.add(question.id)
            session.asked_question_ids.append(question.id)
            batch.append(question)

        if not batch and remaining > 0:
            session.pools_exhausted = True
            logger.info("Question pools exhausted before the tier budget", extra={"session_id": session.session_id})
        return batch

    def _next_base_question(self, session: Session, asked: set) -> Optional[Question]:
        categories = self.repository.categories()
        if not categories:
            return None
        start = session.base_presented % len(categories)
        focus = set(session.focus_tags)

        for offset in range(len(categories)):
            category = categories[(start + offset) % len(categories)]
            candidates = [q for q in self.repository.get_question_pool(category=category) if q.id not in asked]
            if not candidates:
                continue
            for question in candidates:
                if focus.intersection(question.tags):
                    return question
            return candidates[0]
        return None

    def _next_pathway_question(self, session: Session, asked: set) -> Optional[Tuple[Question, PathwayId]]:
        ordered = sorted(
            session.activated_pathways,
            key=lambda p: (session.pathway_presented.get(p.value, 0), self.pathway_engine.priority_of(p)),
        )
        for pathway in ordered:
            rule = self.pathway_engine.rules.get(pathway)
            pool_id = rule.pool if rule else pathway
            for question in self.repository.get_question_pool(pathway=pool_id):
                if question.id not in asked:
                    return question, pathway
        return None

    # --- Complete / resume ---

    async def complete(self, session_id: str) -> CompletionResult:
        session = await self._load(session_id)
        if session.is_closed:
            raise SessionClosedError(f"Session {session_id} is already complete")
        if not session.responses:
            raise AssessmentValidationError("At least one response is required to complete a session")

        settings = self.settings
        scores = score_traits(
            session.responses,
            mean=settings.population_mean,
            std_dev=settings.population_std_dev,
            high_cutoff=settings.high_level_cutoff,
            low_cutoff=settings.low_level_cutoff,
        )
        quality = quality_metrics(
            session.responses,
            expected_total=session.question_limit,
            straight_lining_run=settings.straight_lining_run,
            min_avg_response_time_ms=settings.min_avg_response_time_ms,
            min_response_variability=settings.min_response_variability,
        )
        confidence = match_confidence(len(session.responses), quality, scores)
        summary = build_summary(scores, session.activated_pathways)

        session.status = SessionStatus.COMPLETED
        session.completed_at = utcnow()
        session.current_batch = []
        await self.store.mark_complete(session)

        logger.info(
            f"Completed session with {len(session.responses)} responses, profile '{summary.primary_profile}'",
            extra={"session_id": session_id},
        )
        return CompletionResult(
            session_id=session.session_id,
            tier=session.tier,
            total_responses=len(session.responses),
            scores=scores,
            activated_pathways=list(session.activated_pathways),
            match_confidence=confidence,
            quality=quality,
            summary=summary,
            responses=list(session.responses),
        )

    async def resume(self, session_id: str) -> ResumeResult:
        session = await self._load(session_id)
        return ResumeResult(
            session_id=session.session_id,
            tier=session.tier,
            progress=self.progress(session),
            activated_pathways=list(session.activated_pathways),
            is_complete=session.is_closed,
            current_batch=[] if session.is_closed else self._pending_questions(session),
        )

    # --- Helpers ---

    def progress(self, session: Session) -> Progress:
        current = len(session.responses)
        total = session.question_limit
        fraction = current / total if total else 1.0
        phase = FINAL_PHASE
        for boundary, name in PHASE_BOUNDARIES:
            if fraction < boundary:
                phase = name
                break
        return Progress(
            current=current,
            total=total,
            percentage=min(100, round(fraction * 100)),
            phase=phase,
        )

    def _pending_ids(self, session: Session) -> List[str]:
        answered = set(session.answered_ids)
        return [qid for qid in session.current_batch if qid not in answered]

    def _pending_questions(self, session: Session) -> List[Question]:
        questions = []
        for qid in self._pending_ids(session):
            question = self.repository.get(qid)
            if question is not None:
                questions.append(question)
        return questions

    async def _load(self, session_id: str) -> Session:
        if not isinstance(session_id, str) or not session_id:
            raise AssessmentValidationError("session_id is required")
        session = await self.store.get(session_id)
        if session is None:
            raise SessionNotFoundError(f"Session {session_id} not found or expired")
        return session


def build_controller(settings: AssessmentSettings, store: SessionStore, repository: Optional[QuestionRepository] = None) -> AdaptiveSessionController:
    """Wires a controller from settings, loading the question bank from disk when no repository is given."""
    if repository is None:
        repository = InMemoryQuestionRepository.from_file(settings.question_bank_path)
    return AdaptiveSessionController(settings, repository, store)
