"""
Static lookup tables for the adaptive assessment: category rotation, pathway
rules, concern focus tags, answer label scores and summary keys.
"""
from typing import Dict, List

from .models import PathwayId, PathwayRule

# Base pool is drawn one category at a time in this order, then repeats.
CATEGORY_ROTATION: List[str] = [
    "self_awareness",
    "emotional_regulation",
    "social_dynamics",
    "cognitive_patterns",
    "behavioral_traits",
]

# Evaluation order doubles as the tie-break: clinical pathways before
# trait-curiosity ones, and a combined pathway after the pathways it requires.
PATHWAY_RULES: Dict[PathwayId, PathwayRule] = {
    PathwayId.ADHD: PathwayRule(
        id=PathwayId.ADHD,
        name="ADHD",
        priority=1,
        trigger_tags=["adhd_pathway", "attention_difficulty", "time_blindness", "impulsivity", "executive_dysfunction"],
        pool=PathwayId.ADHD,
    ),
    PathwayId.AUTISM: PathwayRule(
        id=PathwayId.AUTISM,
        name="Autism",
        priority=2,
        trigger_tags=["autism_pathway", "social_difficulty", "sensory_sensitivity", "routine_need"],
        pool=PathwayId.AUTISM,
    ),
    PathwayId.AUDHD: PathwayRule(
        id=PathwayId.AUDHD,
        name="AuDHD",
        priority=3,
        requires=[PathwayId.ADHD, PathwayId.AUTISM],
        pool=PathwayId.AUDHD,
    ),
    PathwayId.TRAUMA: PathwayRule(
        id=PathwayId.TRAUMA,
        name="Trauma-informed",
        priority=4,
        trigger_tags=["trauma_pathway", "hypervigilance", "dissociation", "somatic_symptoms"],
        intensity_threshold=3.0,
        min_matches=2,
        pool=PathwayId.TRAUMA,
    ),
    PathwayId.MASKING: PathwayRule(
        id=PathwayId.MASKING,
        name="Masking",
        priority=5,
        trigger_tags=["masking_pathway", "social_exhaustion", "identity_suppression", "performance_feeling"],
        pool=PathwayId.MASKING,
    ),
    PathwayId.GIFTED: PathwayRule(
        id=PathwayId.GIFTED,
        name="Giftedness",
        priority=6,
        clinical=False,
        trigger_tags=["gifted_pathway", "pattern_recognition", "deep_thinking", "intensity"],
        intensity_threshold=5.0,
        pool=PathwayId.GIFTED,
    ),
}

# Concern keywords from the start form -> tags that pull matching base questions forward.
CONCERN_FOCUS_TAGS: Dict[str, List[str]] = {
    "attention": ["attention_difficulty", "executive_dysfunction"],
    "adhd": ["attention_difficulty", "impulsivity"],
    "social": ["social_difficulty", "social_exhaustion"],
    "autism": ["social_difficulty", "sensory_sensitivity", "routine_need"],
    "mood": ["anxiety", "depression", "emotional_regulation"],
    "learning": ["learning_style", "deep_thinking"],
    "sensory": ["sensory_sensitivity"],
    "relationships": ["attachment", "relationship_patterns"],
    "trauma": ["hypervigilance", "dissociation"],
}

LATE_DIAGNOSIS_AGE = 30
MASKING_FOCUS_GENDERS = {"female", "non-binary"}

# Categorical Likert labels -> 1..5 endorsement
LIKERT_LABEL_SCORES: Dict[str, int] = {
    "strongly disagree": 1,
    "disagree": 2,
    "neutral": 3,
    "agree": 4,
    "strongly agree": 5,
    "never": 1,
    "rarely": 2,
    "sometimes": 3,
    "often": 4,
    "always": 5,
}

LIKERT_MIN = 1
LIKERT_MAX = 5
SLIDER_MAX = 100

# Progress phase boundaries as fractions of the tier budget
PHASE_BOUNDARIES = [(0.4, "core"), (0.7, "branching")]
FINAL_PHASE = "refinement"

# Summary keys. Narrative text for each key belongs to the report compiler.
PROFILE_TRAIT_THRESHOLD = 62.5  # 3.5 on the 1..5 scale
DEFAULT_PROFILE = "Neurotypical with variations"

PATHWAY_PROFILE_LABELS: Dict[PathwayId, str] = {
    PathwayId.ADHD: "ADHD",
    PathwayId.AUTISM: "Autism",
    PathwayId.TRAUMA: "Trauma-informed",
    PathwayId.MASKING: "High masking",
    PathwayId.GIFTED: "Gifted",
}

TRAIT_PROFILE_LABELS: Dict[str, str] = {
    "anxiety": "Anxiety",
    "depression": "Depression",
}

IMMEDIATE_ACTIONS: Dict[PathwayId, List[str]] = {
    PathwayId.ADHD: ["adhd_support_strategies", "adhd_professional_evaluation"],
    PathwayId.AUTISM: ["sensory_accommodations", "autism_affirming_assessment"],
    PathwayId.AUDHD: ["competing_needs_planning"],
    PathwayId.TRAUMA: ["grounding_techniques", "trauma_informed_therapy"],
    PathwayId.MASKING: ["masking_recovery_time", "burnout_check_in"],
    PathwayId.GIFTED: ["intellectual_engagement_plan"],
}

DEFAULT_IMMEDIATE_ACTIONS: List[str] = ["strengths_reflection", "growth_plan_review"]
