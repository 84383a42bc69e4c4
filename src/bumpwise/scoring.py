"""Per-tier delta calculation and tier classification."""

import logging
import math
from dataclasses import dataclass
from fractions import Fraction
from typing import Optional

from .config import EngineConfig, TierConfig
from .signals import BONUS_SIGNALS, REMOVED_OPTION_SIGNALS, ChangeSignals
from .version import SCORED_TIERS, Tier

logger = logging.getLogger(__name__)


def round_half_up(value: Fraction) -> int:
    """Round to the nearest integer, ties toward positive infinity."""
    return math.floor(value + Fraction(1, 2))


@dataclass(frozen=True)
class ScoreBreakdown:
    """Delta arithmetic of one tier, kept for reporting."""

    tier: Tier
    base_delta: int
    bonus_multiplier: Fraction
    bonus_points: Fraction
    total_bonus: int
    total_delta: int

    def __post_init__(self) -> None:
        if self.base_delta < 1:
            raise ValueError(f"base_delta must be >= 1, got {self.base_delta}")


def bonus_points(signals: ChangeSignals, tier_config: TierConfig) -> Fraction:
    """Un-scaled sum of the bonus points for every active signal.

    Removed short and long options share one bonus: the larger of the two
    applies when both kinds were removed.
    """
    total = sum(
        (
            tier_config.points(name) * signals.bonus_units(name)
            for name in BONUS_SIGNALS
            if name not in REMOVED_OPTION_SIGNALS
        ),
        Fraction(0),
    )
    removed = [tier_config.points(name) for name in REMOVED_OPTION_SIGNALS if signals.is_active(name)]
    return total + max(removed, default=Fraction(0))


def score(
    tier: Tier, changed_lines: int, points: Fraction, tier_config: TierConfig, cap: Optional[Fraction] = None
) -> ScoreBreakdown:
    """Score one tier from a line count and un-scaled bonus points.

    The scale factor ``1 + changed_lines / divisor`` grows the base delta
    with the size of the change and also multiplies the bonus points. With a
    ``cap`` the bonus multiplier is clamped while the base delta keeps the
    full scale.
    """
    if changed_lines < 0 or points < 0:
        raise ValueError("changed_lines and bonus points must be non-negative")
    scale = 1 + Fraction(changed_lines) / tier_config.divisor
    base_delta = max(1, round_half_up(tier_config.coefficient * scale))
    multiplier = scale if cap is None else min(scale, cap)
    total_bonus = round_half_up(multiplier * points)
    return ScoreBreakdown(
        tier=tier,
        base_delta=base_delta,
        bonus_multiplier=multiplier,
        bonus_points=Fraction(points),
        total_bonus=total_bonus,
        total_delta=base_delta + total_bonus,
    )


def compute_breakdown(
    tier: Tier, signals: ChangeSignals, tier_config: TierConfig, cap: Optional[Fraction] = None
) -> ScoreBreakdown:
    """Score one tier from extracted signals."""
    return score(tier, signals.changed_lines, bonus_points(signals, tier_config), tier_config, cap)


def compute_breakdowns(signals: ChangeSignals, config: EngineConfig) -> dict[Tier, ScoreBreakdown]:
    """Score every tier that carries a delta formula."""
    breakdowns = {
        tier: compute_breakdown(tier, signals, config.tier(tier), config.bonus_multiplier_cap)
        for tier in SCORED_TIERS
    }
    for b in breakdowns.values():
        logger.debug(
            "%s: base=%d multiplier=%s points=%s bonus=%d delta=%d",
            b.tier.value,
            b.base_delta,
            b.bonus_multiplier,
            b.bonus_points,
            b.total_bonus,
            b.total_delta,
        )
    return breakdowns


def classify(breakdowns: dict[Tier, ScoreBreakdown], config: EngineConfig, signals: ChangeSignals) -> Tier:
    """Select exactly one tier, strictest first.

    Patch has no threshold but needs some detectable change. An empty diff
    is always none, even when a threshold is configured as zero.
    """
    if not signals.has_changes:
        return Tier.NONE
    for tier in (Tier.MAJOR, Tier.MINOR):
        if breakdowns[tier].total_bonus >= config.tier(tier).threshold:
            return tier
    return Tier.PATCH
