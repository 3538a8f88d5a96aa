from typing import Any, Dict, List

from services.assessment_engine.models import Response, ResponseType

CATEGORIES = ["self_awareness", "emotional_regulation", "social_dynamics", "cognitive_patterns", "behavioral_traits"]
PREFIXES = {
    "self_awareness": "SA",
    "emotional_regulation": "ER",
    "social_dynamics": "SD",
    "cognitive_patterns": "CP",
    "behavioral_traits": "BT",
}


def _base_questions() -> List[Dict[str, Any]]:
    """
    Four questions per category:
    _1 adhd trigger, _2 adhd trigger (reverse scored), _3 autism trigger, _4 sensory + masking.
    """
    questions = []
    for category in CATEGORIES:
        prefix = PREFIXES[category]
        questions.extend([
            {"id": f"{prefix}_1", "text": f"{prefix} one", "category": category,
             "trait": "adhd_indicators", "tags": ["attention_difficulty"]},
            {"id": f"{prefix}_2", "text": f"{prefix} two", "category": category,
             "trait": "conscientiousness", "tags": ["attention_difficulty"], "reverse_scored": True},
            {"id": f"{prefix}_3", "text": f"{prefix} three", "category": category,
             "trait": "autism_indicators", "tags": ["social_difficulty"]},
            {"id": f"{prefix}_4", "text": f"{prefix} four", "category": category,
             "trait": "neuroticism", "tags": ["sensory_sensitivity", "masking"]},
        ])
    return questions


SAMPLE_BANK_DATA: Dict[str, Any] = {
    "version": "test",
    "categories": CATEGORIES,
    "base_questions": _base_questions(),
    "pathway_pools": {
        "adhd_pathway": [
            {"id": "ADHD_1", "text": "adhd one", "category": "executive_function", "trait": "adhd_indicators", "tags": ["impulsivity"]},
            {"id": "ADHD_2", "text": "adhd two", "category": "executive_function", "trait": "adhd_indicators", "tags": ["time_blindness"]},
            {"id": "ADHD_3", "text": "adhd three", "category": "executive_function", "trait": "adhd_indicators", "tags": []},
        ],
        "autism_pathway": [
            {"id": "AUT_1", "text": "autism one", "category": "sensory_processing", "trait": "autism_indicators", "tags": []},
            {"id": "AUT_2", "text": "autism two", "category": "sensory_processing", "trait": "autism_indicators", "tags": []},
        ],
        "trauma_pathway": [
            {"id": "TRA_1", "text": "trauma one", "category": "trauma_response", "trait": "trauma_indicators", "tags": [],
             "response_type": "slider"},
        ],
    },
}


def make_response(value, tags=None, trait="openness", question_id="q", response_time_ms=None,
                  reverse_scored=False, response_type=ResponseType.LIKERT) -> Response:
    return Response(
        question_id=question_id,
        value=value,
        tags=tags or [],
        trait=trait,
        response_time_ms=response_time_ms,
        reverse_scored=reverse_scored,
        response_type=response_type,
    )


async def answer_all(controller, session_id: str, questions, value=3):
    """Answers every question in `questions` with the same value and returns the last submit result."""
    result = None
    for question in questions:
        result = await controller.submit_response(session_id, {"question_id": question.id, "value": value})
    return result
