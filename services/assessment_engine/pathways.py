import logging
from typing import Dict, Iterable, List, Optional, Sequence

from pydantic import BaseModel, Field

from .definitions import PATHWAY_RULES
from .models import BranchingDecision, PathwayId, PathwayRule, Response, Session
from .scoring import endorsement_value

logger = logging.getLogger(__name__)


class PathwayEvaluation(BaseModel):
    """Outcome of feeding one response through the rule table."""
    counts: Dict[str, int] = Field(default_factory=dict)
    active: List[PathwayId] = Field(default_factory=list)
    newly_activated: List[PathwayId] = Field(default_factory=list)


class PathwayActivationEngine:
    """
    Decides which specialised question pools open up, from the tags and
    intensity of recorded responses.

    A pathway only ever moves inactive -> active. Rules are walked in priority
    order so that combined pathways see the activations made earlier in the
    same pass, and the returned active list is always in priority order.
    """

    def __init__(
        self,
        rules: Optional[Dict[PathwayId, PathwayRule]] = None,
        default_intensity_threshold: float = 4.0,
        default_min_matches: int = 3,
    ):
        self.rules = rules if rules is not None else PATHWAY_RULES
        self.ordered_rules: List[PathwayRule] = sorted(self.rules.values(), key=lambda r: r.priority)
        self.default_intensity_threshold = default_intensity_threshold
        self.default_min_matches = default_min_matches

    def threshold_for(self, rule: PathwayRule) -> float:
        if rule.intensity_threshold is not None:
            return rule.intensity_threshold
        return self.default_intensity_threshold

    def min_matches_for(self, rule: PathwayRule) -> int:
        if rule.min_matches is not None:
            return rule.min_matches
        return self.default_min_matches

    def priority_of(self, pathway: PathwayId) -> int:
        rule = self.rules.get(pathway)
        return rule.priority if rule else len(self.ordered_rules) + 1

    def order(self, pathways: Iterable[PathwayId]) -> List[PathwayId]:
        return sorted(set(pathways), key=self.priority_of)

    def evaluate(
        self,
        counts: Dict[str, int],
        active: Sequence[PathwayId],
        response: Response,
    ) -> PathwayEvaluation:
        """
        Applies one response to the running trigger counts. Inputs are not mutated.
        Responses without usable tags or a numeric intensity change nothing.
        """
        new_counts = dict(counts)
        active_set = set(active)
        newly_activated: List[PathwayId] = []

        tags = set(response.tags or [])
        intensity = endorsement_value(response)

        for rule in self.ordered_rules:
            if rule.id in active_set:
                continue

            if rule.is_combined:
                if all(required in active_set for required in rule.requires):
                    active_set.add(rule.id)
                    newly_activated.append(rule.id)
                continue

            if intensity is None or not tags.intersection(rule.trigger_tags):
                continue
            if intensity < self.threshold_for(rule):
                continue

            key = rule.id.value
            new_counts[key] = new_counts.get(key, 0) + 1
            if new_counts[key] >= self.min_matches_for(rule):
                active_set.add(rule.id)
                newly_activated.append(rule.id)

        return PathwayEvaluation(
            counts=new_counts,
            active=self.order(active_set),
            newly_activated=newly_activated,
        )

    def evaluate_all(self, responses: Iterable[Response]) -> PathwayEvaluation:
        """Replays a full response history from an empty state."""
        counts: Dict[str, int] = {}
        active: List[PathwayId] = []
        newly: List[PathwayId] = []
        for response in responses:
            result = self.evaluate(counts, active, response)
            counts, active = result.counts, result.active
            newly.extend(result.newly_activated)
        return PathwayEvaluation(counts=counts, active=active, newly_activated=newly)

    def apply(self, session: Session, response: Response) -> List[PathwayId]:
        """Updates the session's counts, active list and branching log. Returns newly activated ids."""
        result = self.evaluate(session.pathway_counts, session.activated_pathways, response)
        session.pathway_counts = result.counts
        session.activated_pathways = result.active

        for pathway in result.newly_activated:
            session.branching_decisions.append(BranchingDecision(
                pathway=pathway,
                question_number=len(session.responses),
                trigger_count=result.counts.get(pathway.value, 0),
            ))
            logger.info(
                f"Pathway {pathway.value} activated after {len(session.responses)} responses",
                extra={"session_id": session.session_id},
            )
        return result.newly_activated
