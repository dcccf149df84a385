"""
Attribute Effect Engine — pure, side-effect-free functions over world attributes.

Behavioral Contract:
- Effects are validated against [-3, 3] before application; out-of-range is an error.
- Application clamps each attribute to [-10, 10] and reports the ACTUAL delta,
  which is what callers must persist.
- No I/O. Logging only.
"""

import math
from typing import Dict, List, Sequence, Tuple

from loguru import logger

from lore_kernel.errors import ValidationError
from lore_kernel.models.world import (
    ATTRIBUTE_MAX,
    ATTRIBUTE_MIN,
    ATTRIBUTE_NAMES,
    EFFECT_MAX,
    EFFECT_MIN,
    AttributeStatus,
    AttributeSummary,
    AttributeTrend,
    CriticalAttribute,
    CriticalStateReport,
    WorldAttributeEffects,
    WorldAttributes,
    WorldHistoryEntry,
)

# Largest population standard deviation four values in [-10, 10] can have.
MAX_STD_DEV = math.sqrt((ATTRIBUTE_MAX - ATTRIBUTE_MIN) ** 2 / 4)

TREND_THRESHOLD = 0.5
DEFAULT_TREND_LOOKBACK = 5


def validate_effect_limits(effects: WorldAttributeEffects) -> None:
    """Reject any effect outside [-3, 3]. A hard precondition, never a clamp."""
    errors = [
        f"{attribute} effect {effect} is outside allowed range ({EFFECT_MIN} to {EFFECT_MAX})"
        for attribute, effect in effects.items()
        if effect < EFFECT_MIN or effect > EFFECT_MAX
    ]
    if errors:
        raise ValidationError(f"Invalid effects: {', '.join(errors)}", errors=errors)


def _clamp(value: int) -> int:
    return max(ATTRIBUTE_MIN, min(ATTRIBUTE_MAX, value))


def apply_effects(
    current: WorldAttributes, effects: WorldAttributeEffects
) -> Tuple[WorldAttributes, WorldAttributeEffects]:
    """
    Apply effects with bounds checking.
    Returns (new attributes, actual effects). Only attributes named in
    `effects` appear in the actual-effects vector.
    """
    validate_effect_limits(effects)

    new_values = current.as_dict()
    actual: Dict[str, int] = {}

    for attribute, effect in effects.items():
        current_value = new_values[attribute]
        bounded = _clamp(current_value + effect)
        new_values[attribute] = bounded
        actual[attribute] = bounded - current_value
        logger.debug(
            "{}: {} + {} = {} (actual effect: {})",
            attribute, current_value, effect, bounded, actual[attribute],
        )

    return WorldAttributes(**new_values), WorldAttributeEffects(**actual)


def balance_score(attributes: WorldAttributes) -> float:
    """1.0 when all attributes are equal, approaching 0.0 as they spread apart."""
    values = list(attributes.as_dict().values())
    mean = sum(values) / len(values)
    variance = sum((v - mean) ** 2 for v in values) / len(values)
    score = max(0.0, 1 - math.sqrt(variance) / MAX_STD_DEV)
    return round(score, 2)


def attribute_trend(
    attribute: str,
    history: Sequence[WorldHistoryEntry],
    lookback: int = DEFAULT_TREND_LOOKBACK,
) -> AttributeTrend:
    """Direction and strength of an attribute over the last `lookback` history entries."""
    if attribute not in ATTRIBUTE_NAMES:
        raise ValidationError(f"Unknown attribute: {attribute}")
    if lookback < 1:
        raise ValidationError(f"Trend lookback must be positive, got {lookback}")

    total = 0
    for entry in list(history)[-lookback:]:
        change = getattr(entry.changes, attribute)
        if change is not None:
            total += change

    if total > TREND_THRESHOLD:
        trend = "rising"
    elif total < -TREND_THRESHOLD:
        trend = "falling"
    else:
        trend = "stable"

    strength = min(1.0, abs(total) / (lookback * EFFECT_MAX))
    return AttributeTrend(
        attribute=attribute,
        trend=trend,
        strength=round(strength, 2),
        total_change=total,
    )


def all_trends(
    history: Sequence[WorldHistoryEntry], lookback: int = DEFAULT_TREND_LOOKBACK
) -> Dict[str, AttributeTrend]:
    return {name: attribute_trend(name, history, lookback) for name in ATTRIBUTE_NAMES}


def critical_state(attributes: WorldAttributes) -> CriticalStateReport:
    """Flag attributes low enough to need intervention."""
    critical: List[CriticalAttribute] = []
    recommendations: List[str] = []

    for attribute, value in attributes.as_dict().items():
        if value <= -7:
            critical.append(CriticalAttribute(attribute=attribute, value=value, severity="extreme"))
            recommendations.append(
                f"{attribute} is in extreme crisis - immediate positive action needed"
            )
        elif value <= -4:
            critical.append(CriticalAttribute(attribute=attribute, value=value, severity="high"))
            recommendations.append(
                f"{attribute} is critically low - consider options that improve this area"
            )

    return CriticalStateReport(
        is_critical=bool(critical),
        critical_attributes=critical,
        recommendations=recommendations,
    )


def attribute_status(value: int) -> AttributeStatus:
    if value >= 7:
        return AttributeStatus(status="Excellent", color="green", description="Thriving")
    if value >= 4:
        return AttributeStatus(status="Good", color="lightgreen", description="Stable")
    if value >= 1:
        return AttributeStatus(status="Fair", color="yellow", description="Moderate")
    if value >= -3:
        return AttributeStatus(status="Poor", color="orange", description="Struggling")
    if value >= -6:
        return AttributeStatus(status="Critical", color="red", description="In crisis")
    return AttributeStatus(status="Catastrophic", color="darkred", description="Collapsing")


def summarize_attributes(attributes: WorldAttributes) -> AttributeSummary:
    """Strongest/weakest attribute and an overall assessment. First attribute wins ties."""
    items = list(attributes.as_dict().items())
    strongest = max(items, key=lambda item: item[1])
    weakest = min(items, key=lambda item: item[1])
    average = sum(value for _, value in items) / len(items)

    if average >= 5:
        overall = "Your world is thriving with strong foundations across all areas."
    elif average >= 2:
        overall = "Your world is developing well with room for growth."
    elif average >= -2:
        overall = "Your world faces challenges but maintains stability."
    elif average >= -5:
        overall = "Your world is struggling and needs careful attention."
    else:
        overall = "Your world is in crisis and requires immediate action."

    return AttributeSummary(
        overall=overall,
        strongest=strongest,
        weakest=weakest,
        balance_score=balance_score(attributes),
    )


def suggest_balancing_effects(attributes: WorldAttributes) -> WorldAttributeEffects:
    """Effects that would pull attributes deviating by more than 1 toward the mean."""
    values = attributes.as_dict()
    mean = sum(values.values()) / len(values)
    suggestions: Dict[str, int] = {}

    for attribute, value in values.items():
        deviation = value - mean
        if abs(deviation) > 1:
            magnitude = min(EFFECT_MAX, abs(deviation) / 2)
            suggestions[attribute] = int(round(math.copysign(magnitude, -deviation)))

    return WorldAttributeEffects(**suggestions)
