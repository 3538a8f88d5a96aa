from abc import ABC, abstractmethod
from typing import Dict, List, Optional

from .definitions import CATEGORY_ROTATION
from .loader import QuestionBank, load_question_bank_from_file
from .models import PathwayId, Question


class QuestionRepository(ABC):
    """Read-only access to base categories and pathway pools."""

    @abstractmethod
    def get_question_pool(self, category: Optional[str] = None, pathway: Optional[PathwayId] = None) -> List[Question]:
        ...

    @abstractmethod
    def get(self, question_id: str) -> Optional[Question]:
        ...

    def categories(self) -> List[str]:
        return list(CATEGORY_ROTATION)


class InMemoryQuestionRepository(QuestionRepository):
    """
    Repository over a validated QuestionBank. Pool order is the bank's file
    order, which keeps batch selection deterministic.
    """

    def __init__(self, bank: QuestionBank):
        self.bank = bank
        self._by_id: Dict[str, Question] = {}
        self._base: Dict[str, List[Question]] = {}
        self._pools: Dict[PathwayId, List[Question]] = {}

        for question in bank.base_questions:
            self._by_id[question.id] = question
            self._base.setdefault(question.category, []).append(question)
        for pool_id, questions in bank.pathway_pools.items():
            pathway = PathwayId(pool_id)
            for question in questions:
                self._by_id[question.id] = question
                self._pools.setdefault(pathway, []).append(question)

    @classmethod
    def from_file(cls, file_path: str) -> "InMemoryQuestionRepository":
        return cls(load_question_bank_from_file(file_path))

    def get_question_pool(self, category: Optional[str] = None, pathway: Optional[PathwayId] = None) -> List[Question]:
        if pathway is not None:
            questions = list(self._pools.get(PathwayId(pathway), []))
            if category is not None:
                questions = [q for q in questions if q.category == category]
            return questions
        if category is not None:
            return list(self._base.get(category, []))
        return list(self.bank.base_questions)

    def get(self, question_id: str) -> Optional[Question]:
        return self._by_id.get(question_id)

    def categories(self) -> List[str]:
        # Rotation order first, then any extra categories declared by the bank
        ordered = [c for c in CATEGORY_ROTATION if c in self.bank.categories]
        ordered.extend(c for c in self.bank.categories if c not in ordered)
        return ordered
