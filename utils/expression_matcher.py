"""
Expression Matcher Module

Scores the player's current face against every target expression and returns
the single best match for the frame.

Three tiers, tried in this order:

  A. Personalized similarity: calibration profiles exist and landmarks were
     detected. Weighted normalized difference of mouth ratio (0.5), eye ratio
     (0.3) and eyebrow distance (0.2) against each profile; matches below the
     confidence floor (40) are reported as no match.
  C. Template distance: no profiles, but meme templates carry precomputed
     key-landmark vectors. Normalized Euclidean distance, converted to
     similarity with 100 * exp(-d / 10).
  B. Rule table: dominant expression label + mouth-opening bin + wide eyes +
     raised eyebrows, then a direct label -> meme table, then a random pick.

match() is pure: identical inputs give identical results. The random
fallback uses a freshly seeded generator unless the caller passes its own.
"""

import math
import random
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional, Sequence, Tuple

import config
from utils.landmark_geometry import (
    GeometricRatios,
    as_landmark_array,
    classify_mouth_opening,
    compute_ratios,
    eyebrows_raised,
)
from utils.landmark_normalizer import euclidean_distance, key_landmark_vector
from utils.reference_store import MemeTemplate, ReferenceProfile

EXPRESSION_LABELS: Tuple[str, ...] = (
    "neutral", "happy", "sad", "angry", "fearful", "disgusted", "surprised",
)

TIER_PERSONALIZED = "personalized"
TIER_TEMPLATE = "template"
TIER_RULES = "rules"

# Personalized similarity weights (mouth is the strongest expression cue)
MOUTH_WEIGHT = 0.5
EYE_WEIGHT = 0.3
EYEBROW_WEIGHT = 0.2

RANDOM_FALLBACK_SEED = 0

# Direct dominant-label fallback
EXPRESSION_TO_MEME: Dict[str, str] = {
    "sad": "cry",
    "angry": "angry",
    "happy": "smiling",
    "fearful": "woah-woah-woah",
    "neutral": "smirk",
    "disgusted": "woah-woah-woah",
    "surprised": "off-the-deep-end",
}


@dataclass
class MatchSettings:
    """Thresholds the matcher reads on every call."""
    personalized_min_similarity: float = 40.0
    eyebrow_raise_threshold: float = 25.0
    wide_eye_ear_threshold: float = 0.25
    template_distance_scale: float = 10.0

    @classmethod
    def from_config(cls) -> "MatchSettings":
        return cls(
            personalized_min_similarity=config.PERSONALIZED_MIN_SIMILARITY,
            eyebrow_raise_threshold=config.EYEBROW_RAISE_THRESHOLD,
            wide_eye_ear_threshold=config.WIDE_EYE_EAR_THRESHOLD,
            template_distance_scale=config.TEMPLATE_DISTANCE_SCALE,
        )


@dataclass
class MatchResult:
    """Best match for one frame. confidence and similarity are ints in [0, 100]."""
    expression_id: str
    meme: MemeTemplate
    confidence: int
    similarity: int
    tier: str = TIER_RULES
    dominant_expression: Optional[str] = None
    ratios: Optional[GeometricRatios] = field(default=None, compare=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "expressionId": self.expression_id,
            "meme": self.meme.to_dict(),
            "confidence": self.confidence,
            "similarity": self.similarity,
            "tier": self.tier,
            "dominantExpression": self.dominant_expression,
        }


@dataclass
class _FrameSignals:
    dominant: str
    probability: float
    mouth_bin: Optional[str]
    wide_eyes: bool
    brows_raised: bool


def _to_score(value: float) -> int:
    """Round half up and clamp to an int in [0, 100]."""
    if value is None or not math.isfinite(value):
        return 0
    return int(max(0, min(100, math.floor(value + 0.5))))


def dominant_expression(expressions: Mapping[str, float]) -> Tuple[str, float]:
    """
    Label with the highest probability. Ties keep the first label seen; an
    all-zero mapping yields ("neutral", 0.0).
    """
    best_label, best_prob = "neutral", 0.0
    for label, prob in expressions.items():
        try:
            p = float(prob)
        except (TypeError, ValueError):
            continue
        if p > best_prob:
            best_label, best_prob = str(label), p
    return best_label, best_prob


def personalized_similarity(current: GeometricRatios, profile: ReferenceProfile) -> float:
    """
    Similarity (0-100, unrounded) between the current ratios and a profile.

    diff = 0.5 * mouth_diff + 0.3 * eye_diff + 0.2 * brow_diff, each term being
    |cur - ref| / max(cur, ref, 1).
    """
    def term(cur: float, ref: float) -> float:
        return abs(cur - ref) / max(cur, ref, 1.0)

    diff = (
        MOUTH_WEIGHT * term(current.mouth_aspect_ratio, profile.mouth_ratio)
        + EYE_WEIGHT * term(current.eye_aspect_ratio, profile.eye_ratio)
        + EYEBROW_WEIGHT * term(current.eyebrow_distance, profile.eyebrow_distance)
    )
    return max(0.0, (1.0 - diff) * 100.0)


def template_similarity(distance: float, scale: float = 10.0) -> float:
    """Convert a normalized landmark distance to similarity in [0, 100]."""
    if not math.isfinite(distance):
        return 0.0
    return max(0.0, min(100.0, 100.0 * math.exp(-distance / scale)))


# ---------------------------------------------------------------------------
# Tier A: personalized
# ---------------------------------------------------------------------------

def match_personalized(
    catalog_by_id: Mapping[str, MemeTemplate],
    landmarks: Any,
    profiles: Mapping[str, ReferenceProfile],
    settings: MatchSettings,
    dominant: Optional[str] = None,
) -> Optional[MatchResult]:
    ratios = compute_ratios(landmarks)
    best_id: Optional[str] = None
    best_similarity = 0.0
    for expression_id, profile in profiles.items():
        meme = catalog_by_id.get(expression_id)
        if meme is None:
            continue
        similarity = personalized_similarity(ratios, profile)
        if similarity > best_similarity:
            best_id, best_similarity = expression_id, similarity

    if best_id is None or best_similarity < settings.personalized_min_similarity:
        return None
    score = _to_score(best_similarity)
    return MatchResult(
        expression_id=best_id,
        meme=catalog_by_id[best_id],
        confidence=score,
        similarity=score,
        tier=TIER_PERSONALIZED,
        dominant_expression=dominant,
        ratios=ratios,
    )


# ---------------------------------------------------------------------------
# Tier C: template distance
# ---------------------------------------------------------------------------

def match_templates(
    catalog_by_id: Mapping[str, MemeTemplate],
    landmarks: Any,
    templates: Mapping[str, Any],
    settings: MatchSettings,
    dominant: Optional[str] = None,
) -> Optional[MatchResult]:
    current = key_landmark_vector(landmarks)
    if current is None:
        return None
    best_id: Optional[str] = None
    min_distance = math.inf
    for meme_id, vector in templates.items():
        if meme_id not in catalog_by_id:
            continue
        distance = euclidean_distance(current, vector)
        if distance < min_distance:
            best_id, min_distance = meme_id, distance

    if best_id is None:
        return None
    score = _to_score(template_similarity(min_distance, settings.template_distance_scale))
    return MatchResult(
        expression_id=best_id,
        meme=catalog_by_id[best_id],
        confidence=score,
        similarity=score,
        tier=TIER_TEMPLATE,
        dominant_expression=dominant,
    )


# ---------------------------------------------------------------------------
# Tier B: rule table
# ---------------------------------------------------------------------------

# (mouth bin, condition, meme id, fixed score or None to use dominant probability)
_Rule = Tuple[str, Callable[[_FrameSignals], bool], str, Optional[int]]

RULE_TABLE: List[_Rule] = [
    ("incredibly_open", lambda s: s.wide_eyes and s.brows_raised, "off-the-deep-end", 95),
    ("incredibly_open", lambda s: s.dominant == "sad", "cry", None),
    ("incredibly_open", lambda s: True, "off-the-deep-end", 85),
    ("very_open", lambda s: s.dominant == "happy", "smiling", 90),
    ("moderate", lambda s: s.dominant == "happy", "geeked", None),
    ("moderate", lambda s: s.dominant == "angry", "angry", None),
    ("moderate", lambda s: s.dominant == "fearful", "woah-woah-woah", None),
    ("closed", lambda s: s.dominant == "neutral", "smirk", None),
    ("closed", lambda s: s.dominant == "sad", "sad", None),
]


def _frame_signals(expressions: Mapping[str, float], landmarks: Any, settings: MatchSettings) -> _FrameSignals:
    dominant, probability = dominant_expression(expressions)
    ratios = compute_ratios(landmarks)
    # A zero ratio means no usable mouth; no mouth-based rule applies then
    mouth_bin = classify_mouth_opening(ratios.mouth_aspect_ratio) if ratios.mouth_aspect_ratio > 0 else None
    return _FrameSignals(
        dominant=dominant,
        probability=probability,
        mouth_bin=mouth_bin,
        wide_eyes=ratios.eye_aspect_ratio > settings.wide_eye_ear_threshold,
        brows_raised=eyebrows_raised(landmarks, settings.eyebrow_raise_threshold),
    )


def match_rules(
    expressions: Mapping[str, float],
    catalog: Sequence[MemeTemplate],
    catalog_by_id: Mapping[str, MemeTemplate],
    landmarks: Any,
    settings: MatchSettings,
    rng: Optional[random.Random] = None,
) -> Optional[MatchResult]:
    if not catalog:
        return None
    signals = _frame_signals(expressions, landmarks, settings)
    p = signals.probability

    for mouth_bin, condition, meme_id, fixed in RULE_TABLE:
        if signals.mouth_bin != mouth_bin or not condition(signals):
            continue
        meme = catalog_by_id.get(meme_id)
        if meme is None:
            continue
        score = fixed if fixed is not None else _to_score(p * 100)
        return MatchResult(meme_id, meme, score, score, TIER_RULES, signals.dominant)

    fallback_id = EXPRESSION_TO_MEME.get(signals.dominant)
    meme = catalog_by_id.get(fallback_id) if fallback_id else None
    if meme is not None:
        return MatchResult(
            meme.id, meme, _to_score(p * 100), _to_score(p * 80), TIER_RULES, signals.dominant,
        )

    # Lowest-confidence tier: a guess
    rng = rng if rng is not None else random.Random(RANDOM_FALLBACK_SEED)
    meme = catalog[rng.randrange(len(catalog))]
    return MatchResult(
        meme.id, meme, _to_score(p * 100), _to_score(p * 50), TIER_RULES, signals.dominant,
    )


# ---------------------------------------------------------------------------
# Public entry point
# ---------------------------------------------------------------------------

def match(
    expressions: Optional[Mapping[str, float]],
    catalog: Optional[Sequence[MemeTemplate]],
    landmarks: Any = None,
    profiles: Optional[Mapping[str, ReferenceProfile]] = None,
    templates: Optional[Mapping[str, Any]] = None,
    rng: Optional[random.Random] = None,
    settings: Optional[MatchSettings] = None,
) -> Optional[MatchResult]:
    """
    Best match for one frame, or None when there is no usable match.

    Args:
        expressions: Expression label -> probability from the detector
        catalog: Meme catalog (order matters for the random fallback)
        landmarks: 68-point landmark set, if a face was detected
        profiles: Personalized calibration profiles (insertion-ordered)
        templates: Meme id -> normalized key-landmark vector. Defaults to the
                   vectors carried by catalog entries.
        rng: Generator for the random fallback
        settings: Thresholds; defaults to config values

    Returns:
        MatchResult, or None for missing input or a low-confidence
        personalized match.
    """
    if not expressions or not catalog:
        return None
    settings = settings or MatchSettings.from_config()
    catalog_by_id: Dict[str, MemeTemplate] = {}
    for meme in catalog:
        catalog_by_id.setdefault(meme.id, meme)
    dominant, _ = dominant_expression(expressions)
    has_landmarks = as_landmark_array(landmarks) is not None

    if profiles and has_landmarks:
        return match_personalized(catalog_by_id, landmarks, profiles, settings, dominant)

    if templates is None:
        templates = {m.id: m.key_landmarks for m in catalog if m.key_landmarks is not None}
    if templates and has_landmarks:
        result = match_templates(catalog_by_id, landmarks, templates, settings, dominant)
        if result is not None:
            return result

    return match_rules(expressions, catalog, catalog_by_id, landmarks, settings, rng)


class ExpressionMatcher:
    """
    Binds match() to a ReferenceStore and settings.

    Usage:
        matcher = ExpressionMatcher(store)
        result = matcher.match(sample.expressions, sample.landmarks)
    """

    def __init__(self, store, settings: Optional[MatchSettings] = None, rng: Optional[random.Random] = None):
        self.store = store
        self.settings = settings or MatchSettings.from_config()
        self.rng = rng

    def match(self, expressions: Optional[Mapping[str, float]], landmarks: Any = None) -> Optional[MatchResult]:
        return match(
            expressions,
            self.store.catalog,
            landmarks=landmarks,
            profiles=self.store.profiles,
            templates=self.store.templates(),
            rng=self.rng,
            settings=self.settings,
        )
