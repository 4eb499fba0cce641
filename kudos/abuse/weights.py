"""Deterministic recognition weight formula."""

from decimal import ROUND_HALF_UP, Decimal

import Levenshtein

from kudos.config.models.abuse import ScoringConfig

_DEFAULT_SCORING = ScoringConfig()


def round_weight(value: float) -> float:
    """Round half-up to two decimals."""
    return float(Decimal(str(value)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP))


def role_multiplier(giver_role: str | None, config: ScoringConfig | None = None) -> float:
    """Base multiplier for a role, case-insensitive; unknown roles get the default."""
    config = config or _DEFAULT_SCORING
    if not giver_role:
        return config.default_role_weight
    return config.role_weights.get(giver_role.upper(), config.default_role_weight)


def matched_keywords(reason: str, config: ScoringConfig | None = None) -> list[str]:
    config = config or _DEFAULT_SCORING
    text = reason.lower()
    return [keyword for keyword in config.quality_keywords if keyword in text]


def compute_weight(
    reason: str,
    tags: list[str],
    evidence_count: int,
    giver_role: str | None,
    config: ScoringConfig | None = None,
) -> float:
    """Score a recognition.

    weight = role multiplier
             + long_reason_bonus if the reason is long enough
             + tag_bonus if enough tags
             + evidence_bonus if any evidence is attached
             + keyword_bonus per quality keyword found

    Example: a basic user, a 150-character reason mentioning "helped" and
    "improved", two tags and one evidence item score
    1.0 + 0.2 + 0.1 + 0.5 + 0.2 = 2.0.
    """
    config = config or _DEFAULT_SCORING
    weight = 1.0 * role_multiplier(giver_role, config)

    if len(reason) >= config.long_reason_length:
        weight += config.long_reason_bonus
    if len(tags) >= config.min_tags_for_bonus:
        weight += config.tag_bonus
    if evidence_count > 0:
        weight += config.evidence_bonus
    weight += config.keyword_bonus * len(matched_keywords(reason, config))

    return round_weight(weight)


def max_weight_for_role(giver_role: str | None, config: ScoringConfig | None = None) -> float:
    """Highest weight compute_weight can produce for a role."""
    config = config or _DEFAULT_SCORING
    return round_weight(
        role_multiplier(giver_role, config)
        + config.long_reason_bonus
        + config.tag_bonus
        + config.evidence_bonus
        + config.keyword_bonus * len(config.quality_keywords)
    )


def string_similarity(first: str, second: str) -> float:
    """Normalized Levenshtein similarity in [0, 1]: (longer - distance) / longer."""
    longer = max(len(first), len(second))
    if not longer:
        return 1.0
    return (longer - Levenshtein.distance(first, second)) / longer
