import asyncio

import pytest

from config.settings import AssessmentSettings
from services.assessment_engine.controller import AdaptiveSessionController, validate_answer
from services.assessment_engine.models import (
    AssessmentValidationError,
    InvalidResponseError,
    PathwayId,
    Question,
    ResponseType,
    Session,
    SessionClosedError,
    SessionNotFoundError,
)
from tests.helpers import answer_all, make_response

FIRST_BATCH = ["SA_1", "ER_1", "SD_1", "CP_1", "BT_1"]


def ids(questions):
    return [q.id for q in questions]


# --- Start ---

@pytest.mark.asyncio
async def test_start_quick_session(controller, store):
    result = await controller.start("quick", [], {})

    assert result.session_id.startswith("ADAPTIVE_")
    assert result.tier == "quick"
    assert result.total_questions == 20
    assert ids(result.batch) == FIRST_BATCH
    assert result.progress.current == 0
    assert result.progress.phase == "core"

    session = await store.get(result.session_id)
    assert session.current_batch == FIRST_BATCH
    assert session.asked_question_ids == FIRST_BATCH


@pytest.mark.parametrize("tier,expected_name,expected_limit", [
    ("quick", "quick", 20),
    ("deep", "deep", 75),
    ("Standard", "standard", 45),
    ("bogus", "standard", 45),
    (None, "standard", 45),
])
def test_resolve_tier(controller, tier, expected_name, expected_limit):
    assert controller.resolve_tier(tier) == (expected_name, expected_limit)


@pytest.mark.asyncio
async def test_start_rejects_non_string_tier(controller):
    with pytest.raises(AssessmentValidationError):
        await controller.start(5, [], {})


@pytest.mark.asyncio
async def test_start_rejects_malformed_concerns(controller):
    with pytest.raises(AssessmentValidationError):
        await controller.start("quick", "attention", {})
    with pytest.raises(AssessmentValidationError):
        await controller.start("quick", ["attention", 3], {})


@pytest.mark.asyncio
async def test_concerns_pull_matching_questions_forward(controller):
    result = await controller.start("quick", ["autism"], {})
    assert ids(result.batch) == ["SA_3", "ER_3", "SD_3", "CP_3", "BT_3"]


@pytest.mark.asyncio
async def test_demographics_add_focus_tags(controller, store):
    result = await controller.start("quick", [], {"gender": "Female", "age": 42})
    session = await store.get(result.session_id)
    assert session.focus_tags == ["late_diagnosis", "masking"]
    assert ids(result.batch) == ["SA_4", "ER_4", "SD_4", "CP_4", "BT_4"]


def test_focus_tags_ignore_unknown_concerns_and_bad_demographics():
    assert AdaptiveSessionController.focus_tags(["astrology"], {"age": "old", "gender": 1}) == []
    assert AdaptiveSessionController.focus_tags(["Sensory"], {"age": 30}) == ["sensory_sensitivity"]


# --- Submit ---

@pytest.mark.asyncio
async def test_submit_returns_pending_part_of_batch(controller):
    started = await controller.start("quick", [], {})
    result = await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 3, "response_time_ms": 2500})

    assert ids(result.next_batch) == ["ER_1", "SD_1", "CP_1", "BT_1"]
    assert result.complete is False
    assert result.progress.current == 1
    assert result.duplicate is False


@pytest.mark.asyncio
async def test_submit_question_outside_batch_rejected(controller):
    started = await controller.start("quick", [], {})
    with pytest.raises(InvalidResponseError):
        await controller.submit_response(started.session_id, {"question_id": "SA_2", "value": 3})


@pytest.mark.asyncio
@pytest.mark.parametrize("payload", [
    {"value": 3},
    {"question_id": "", "value": 3},
    {"question_id": "SA_1"},
    {"question_id": "SA_1", "value": 3, "response_time_ms": -5},
])
async def test_submit_missing_fields_rejected(controller, payload):
    started = await controller.start("quick", [], {})
    with pytest.raises(AssessmentValidationError):
        await controller.submit_response(started.session_id, payload)


@pytest.mark.asyncio
async def test_submit_out_of_range_value_rejected(controller):
    started = await controller.start("quick", [], {})
    with pytest.raises(InvalidResponseError):
        await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 7})


@pytest.mark.asyncio
async def test_submit_unknown_session(controller):
    with pytest.raises(SessionNotFoundError):
        await controller.submit_response("ADAPTIVE_missing", {"question_id": "SA_1", "value": 3})


@pytest.mark.asyncio
async def test_duplicate_submission_is_idempotent(controller, store):
    started = await controller.start("quick", [], {})
    first = await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 4})
    second = await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 4})

    assert second.duplicate is True
    assert second.progress == first.progress
    assert ids(second.next_batch) == ids(first.next_batch)
    session = await store.get(started.session_id)
    assert len(session.responses) == 1


@pytest.mark.asyncio
async def test_concurrent_duplicate_submissions_record_once(controller, store):
    started = await controller.start("quick", [], {})
    payload = {"question_id": "SA_1", "value": "agree"}
    await asyncio.gather(
        controller.submit_response(started.session_id, payload),
        controller.submit_response(started.session_id, payload),
    )
    session = await store.get(started.session_id)
    assert session.answered_ids == ["SA_1"]


@pytest.mark.asyncio
async def test_conflicting_resubmission_rejected(controller):
    started = await controller.start("quick", [], {})
    await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 4})
    with pytest.raises(InvalidResponseError):
        await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 2})


@pytest.mark.asyncio
async def test_adhd_pathway_branches_into_next_batch(controller):
    started = await controller.start("quick", [], {})
    sid = started.session_id

    r1 = await controller.submit_response(sid, {"question_id": "SA_1", "value": 5})
    r2 = await controller.submit_response(sid, {"question_id": "ER_1", "value": 4})
    assert r1.activated_pathways == [] and r2.activated_pathways == []

    r3 = await controller.submit_response(sid, {"question_id": "SD_1", "value": 5})
    assert r3.activated_pathways == [PathwayId.ADHD]
    assert r3.newly_activated == [PathwayId.ADHD]

    await controller.submit_response(sid, {"question_id": "CP_1", "value": 2})
    r5 = await controller.submit_response(sid, {"question_id": "BT_1", "value": 1})

    # One pathway item after every three base items
    assert ids(r5.next_batch) == ["ADHD_1", "SA_2", "ER_2", "SD_2", "ADHD_2"]
    assert r5.progress.current == 5


@pytest.mark.asyncio
async def test_batch_truncated_to_remaining_budget(repository, store):
    settings = AssessmentSettings(tier_limits={"quick": 7, "standard": 45, "deep": 75}, batch_size=5)
    controller = AdaptiveSessionController(settings, repository, store)

    started = await controller.start("quick", [], {})
    result = await answer_all(controller, started.session_id, started.batch, value=2)
    assert len(result.next_batch) == 2
    assert result.complete is False

    final = await answer_all(controller, started.session_id, result.next_batch, value=3)
    assert final.complete is True
    assert final.next_batch == []
    assert final.progress.current == 7
    assert final.progress.percentage == 100
    assert final.progress.phase == "refinement"


@pytest.mark.asyncio
async def test_no_question_repeats_and_pools_exhaust(controller, store):
    started = await controller.start("deep", [], {})
    sid = started.session_id
    presented = ids(started.batch)
    batch = started.batch
    values = [5, 4, 2, 1, 3]

    for step in range(40):
        result = None
        for i, question in enumerate(batch):
            value = values[(step + i) % len(values)]
            if question.response_type == ResponseType.SLIDER:
                value = value * 20
            result = await controller.submit_response(sid, {"question_id": question.id, "value": value})
        if result.complete:
            break
        batch = result.next_batch
        presented.extend(ids(batch))
    else:
        pytest.fail("session never completed")

    assert len(presented) == len(set(presented))
    assert len(presented) < 75
    session = await store.get(sid)
    assert session.pools_exhausted is True
    assert set(session.asked_question_ids) == set(presented)


# --- Complete / resume ---

@pytest.mark.asyncio
async def test_complete_scores_and_closes_session(controller):
    started = await controller.start("quick", [], {})
    sid = started.session_id
    for qid, value in zip(FIRST_BATCH, [5, 5, 5, 2, 1]):
        await controller.submit_response(sid, {"question_id": qid, "value": value, "response_time_ms": 3000})

    result = await controller.complete(sid)

    assert result.total_responses == 5
    assert result.activated_pathways == [PathwayId.ADHD]
    assert result.scores["adhd_indicators"].item_count == 5
    assert result.scores["adhd_indicators"].raw == 65.0
    assert 50.0 <= result.match_confidence <= 95.0
    assert result.quality.completion_rate == 0.25
    assert result.summary.primary_profile == "ADHD"
    assert len(result.responses) == 5

    with pytest.raises(SessionClosedError):
        await controller.submit_response(sid, {"question_id": "SA_2", "value": 3})
    with pytest.raises(SessionClosedError):
        await controller.complete(sid)

    resumed = await controller.resume(sid)
    assert resumed.is_complete is True
    assert resumed.current_batch == []
    assert resumed.activated_pathways == [PathwayId.ADHD]


@pytest.mark.asyncio
async def test_complete_requires_a_response(controller):
    started = await controller.start("quick", [], {})
    with pytest.raises(AssessmentValidationError):
        await controller.complete(started.session_id)


@pytest.mark.asyncio
async def test_complete_unknown_session(controller):
    with pytest.raises(SessionNotFoundError):
        await controller.complete("ADAPTIVE_missing")


@pytest.mark.asyncio
async def test_resume_active_session(controller):
    started = await controller.start("standard", [], {})
    await controller.submit_response(started.session_id, {"question_id": "SA_1", "value": 3})

    resumed = await controller.resume(started.session_id)
    assert resumed.tier == "standard"
    assert resumed.is_complete is False
    assert resumed.progress.current == 1
    assert resumed.progress.total == 45
    assert ids(resumed.current_batch) == ["ER_1", "SD_1", "CP_1", "BT_1"]


@pytest.mark.asyncio
async def test_resume_unknown_session(controller):
    with pytest.raises(SessionNotFoundError):
        await controller.resume("ADAPTIVE_missing")


@pytest.mark.parametrize("answered,phase", [(0, "core"), (7, "core"), (8, "branching"), (13, "branching"), (14, "refinement")])
def test_progress_phases(controller, answered, phase):
    session = Session(session_id="s", tier="quick", question_limit=20)
    session.responses = [make_response(3, question_id=f"q{i}") for i in range(answered)]
    assert controller.progress(session).phase == phase


# --- Answer validation ---

def _question(response_type):
    return Question(id="q1", text="t", category="self_awareness", response_type=response_type)


@pytest.mark.parametrize("response_type,value", [
    (ResponseType.LIKERT, 1),
    (ResponseType.LIKERT, 4.5),
    (ResponseType.LIKERT, "Strongly Agree"),
    (ResponseType.SLIDER, 0),
    (ResponseType.SLIDER, 100),
    (ResponseType.BINARY, True),
    (ResponseType.BINARY, 0),
    (ResponseType.CHOICE, "visual"),
    (ResponseType.CHOICE, 3),
])
def test_validate_answer_accepts(response_type, value):
    validate_answer(_question(response_type), value)


@pytest.mark.parametrize("response_type,value", [
    (ResponseType.LIKERT, 0),
    (ResponseType.LIKERT, "maybe"),
    (ResponseType.LIKERT, True),
    (ResponseType.SLIDER, 101),
    (ResponseType.SLIDER, "50"),
    (ResponseType.BINARY, 2),
    (ResponseType.BINARY, "yes"),
    (ResponseType.CHOICE, "  "),
    (ResponseType.CHOICE, None),
    (ResponseType.LIKERT, float("nan")),
])
def test_validate_answer_rejects(response_type, value):
    with pytest.raises(InvalidResponseError):
        validate_answer(_question(response_type), value)
