"""
Builds the short completion summary: a primary profile label, a stable
profile key and the immediate-action keys. Narrative text for those keys is
produced downstream by the report compiler.
"""
import re
from typing import Dict, List, Sequence

from .definitions import (
    DEFAULT_IMMEDIATE_ACTIONS,
    DEFAULT_PROFILE,
    IMMEDIATE_ACTIONS,
    PATHWAY_PROFILE_LABELS,
    PROFILE_TRAIT_THRESHOLD,
    TRAIT_PROFILE_LABELS,
)
from .models import PathwayId, Summary, TraitScore


def _profile_key(label: str) -> str:
    return re.sub(r"[^a-z0-9]+", "_", label.lower()).strip("_")


def determine_primary_profile(scores: Dict[str, TraitScore], activated_pathways: Sequence[PathwayId]) -> str:
    active = set(activated_pathways)
    if PathwayId.AUDHD in active or {PathwayId.ADHD, PathwayId.AUTISM} <= active:
        return "AuDHD"

    labels: List[str] = []
    for pathway in activated_pathways:
        label = PATHWAY_PROFILE_LABELS.get(pathway)
        if label and label not in labels:
            labels.append(label)
    for trait, label in TRAIT_PROFILE_LABELS.items():
        score = scores.get(trait)
        if score is not None and score.raw > PROFILE_TRAIT_THRESHOLD and label not in labels:
            labels.append(label)

    if not labels:
        return DEFAULT_PROFILE
    return " + ".join(labels[:2])


def immediate_actions(activated_pathways: Sequence[PathwayId]) -> List[str]:
    actions: List[str] = []
    for pathway in activated_pathways:
        for action in IMMEDIATE_ACTIONS.get(pathway, []):
            if action not in actions:
                actions.append(action)
    return actions or list(DEFAULT_IMMEDIATE_ACTIONS)


def build_summary(scores: Dict[str, TraitScore], activated_pathways: Sequence[PathwayId]) -> Summary:
    primary = determine_primary_profile(scores, activated_pathways)
    return Summary(
        primary_profile=primary,
        profile_key=_profile_key(primary),
        immediate_actions=immediate_actions(activated_pathways),
        pathways_activated=list(activated_pathways),
    )
