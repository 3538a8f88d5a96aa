import yaml
from pydantic import BaseModel, Field, ValidationError
from typing import Any, Dict, List

from services.assessment_engine.models import PathwayId, Question, QuestionBankError


class QuestionBank(BaseModel):
    version: str = "1.0"
    categories: List[str]
    base_questions: List[Question] = Field(default_factory=list)
    pathway_pools: Dict[str, List[Question]] = Field(default_factory=dict)


def load_question_bank_data(data: Dict[str, Any]) -> QuestionBank:
    """
    Validates raw question bank data against the QuestionBank model and then
    checks what the schema cannot: globally unique ids, known categories for
    base questions and pool keys that name a known pathway.
    """
    try:
        bank = QuestionBank.model_validate(data)
    except ValidationError as e:
        # Schema issues surface as pydantic errors
        raise e

    known_pathways = {p.value for p in PathwayId}
    seen_ids = set()

    for question in bank.base_questions:
        if question.id in seen_ids:
            raise QuestionBankError(f"Duplicate question ID found: {question.id}")
        seen_ids.add(question.id)
        if question.category not in bank.categories:
            raise QuestionBankError(f"Question '{question.id}' uses unknown category '{question.category}'")
        if question.pathway is not None:
            raise QuestionBankError(f"Base question '{question.id}' must not declare a pathway")

    for pool_id, questions in bank.pathway_pools.items():
        if pool_id not in known_pathways:
            raise QuestionBankError(f"Pathway pool '{pool_id}' does not match a known pathway")
        for question in questions:
            if question.id in seen_ids:
                raise QuestionBankError(f"Duplicate question ID '{question.id}' in pathway pool '{pool_id}'")
            seen_ids.add(question.id)
            if question.pathway is None:
                question.pathway = PathwayId(pool_id)
            elif question.pathway.value != pool_id:
                raise QuestionBankError(
                    f"Question '{question.id}' declares pathway '{question.pathway.value}' but sits in pool '{pool_id}'"
                )

    return bank


def load_question_bank_from_file(file_path: str) -> QuestionBank:
    """
    Loads the question bank from a YAML file, validates it,
    and returns a QuestionBank object.
    """
    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except FileNotFoundError:
        raise QuestionBankError(f"File not found: {file_path}")
    except yaml.YAMLError as e:
        raise QuestionBankError(f"Error parsing YAML file {file_path}: {e}")

    if data is None:
        raise QuestionBankError(f"YAML file is empty or invalid: {file_path}")

    return load_question_bank_data(data)
