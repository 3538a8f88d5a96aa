from services.assessment_engine.definitions import DEFAULT_IMMEDIATE_ACTIONS, DEFAULT_PROFILE
from services.assessment_engine.models import PathwayId, TraitLevel, TraitScore
from services.assessment_engine.summary import build_summary


def _score(trait, raw):
    return TraitScore(trait=trait, raw=raw, percentile=50.0, level=TraitLevel.MEDIUM, item_count=4)


def test_no_pathways_no_elevated_traits():
    summary = build_summary({"openness": _score("openness", 55)}, [])
    assert summary.primary_profile == DEFAULT_PROFILE
    assert summary.profile_key == "neurotypical_with_variations"
    assert summary.immediate_actions == DEFAULT_IMMEDIATE_ACTIONS
    assert summary.pathways_activated == []


def test_adhd_and_autism_read_as_audhd():
    summary = build_summary({}, [PathwayId.ADHD, PathwayId.AUTISM])
    assert summary.primary_profile == "AuDHD"
    assert summary.profile_key == "audhd"
    assert summary.immediate_actions[:2] == ["adhd_support_strategies", "adhd_professional_evaluation"]


def test_pathway_and_elevated_trait_combine():
    scores = {"anxiety": _score("anxiety", 80), "depression": _score("depression", 40)}
    summary = build_summary(scores, [PathwayId.TRAUMA])
    assert summary.primary_profile == "Trauma-informed + Anxiety"
    assert summary.profile_key == "trauma_informed_anxiety"
    assert "grounding_techniques" in summary.immediate_actions


def test_profile_label_lists_at_most_two_parts():
    scores = {"anxiety": _score("anxiety", 90), "depression": _score("depression", 90)}
    summary = build_summary(scores, [PathwayId.MASKING])
    assert summary.primary_profile == "High masking + Anxiety"


def test_actions_are_not_duplicated():
    summary = build_summary({}, [PathwayId.ADHD, PathwayId.ADHD])
    assert len(summary.immediate_actions) == len(set(summary.immediate_actions))
