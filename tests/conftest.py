import copy
from typing import Any, Dict

import pytest

from config.settings import AssessmentSettings
from services.assessment_engine.controller import AdaptiveSessionController
from services.assessment_engine.loader import load_question_bank_data
from services.assessment_engine.repository import InMemoryQuestionRepository
from services.assessment_engine.store import InMemorySessionStore
from tests.helpers import SAMPLE_BANK_DATA


@pytest.fixture
def bank_data() -> Dict[str, Any]:
    return copy.deepcopy(SAMPLE_BANK_DATA)


@pytest.fixture
def repository(bank_data) -> InMemoryQuestionRepository:
    return InMemoryQuestionRepository(load_question_bank_data(bank_data))


@pytest.fixture
def settings() -> AssessmentSettings:
    return AssessmentSettings(
        tier_limits={"quick": 20, "standard": 45, "deep": 75},
        batch_size=5,
        pathway_interleave_ratio=3,
        publish_completion_events=False,
        session_store_backend="memory",
    )


@pytest.fixture
def store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def controller(settings, repository, store) -> AdaptiveSessionController:
    return AdaptiveSessionController(settings, repository, store)
