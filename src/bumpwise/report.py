"""Render a Decision as human text, KEY=VALUE lines, JSON or a bare tier token."""

import json
from typing import Any, Callable

from .engine import Decision
from .version import SCORED_TIERS, Tier

OUTPUT_FORMATS = ("human", "machine", "json", "suggest")

# Process exit status per tier, used in strict-status mode.
EXIT_CODES = {
    Tier.MAJOR: 10,
    Tier.MINOR: 11,
    Tier.PATCH: 12,
    Tier.NONE: 20,
}


def exit_code(tier: Tier) -> int:
    """Process exit status for a tier under strict-status mode."""
    return EXIT_CODES[tier]


def _version(version: Any) -> str:
    return str(version) if version is not None else ""


def _bool(value: bool) -> str:
    return "true" if value else "false"


def _delta(decision: Decision, tier: Tier) -> int:
    breakdown = decision.breakdowns.get(tier)
    return breakdown.total_delta if breakdown else 0


def as_dict(decision: Decision) -> dict[str, Any]:
    """Ordered plain-data view of a decision."""
    return {
        "suggestion": decision.tier.value,
        "current_version": str(decision.current_version) if decision.current_version is not None else None,
        "next_version": str(decision.next_version),
        "total_bonus": decision.total_bonus,
        "loc_delta": {f"{t.value}_delta": _delta(decision, t) for t in SCORED_TIERS},
        "no_changes": decision.no_changes,
        "changed_lines": decision.signals.changed_lines,
        "base_ref": decision.base_ref,
        "target_ref": decision.target_ref,
        "version_fallback": decision.version_fallback,
        "signals": decision.signals.as_dict(),
    }


def render_json(decision: Decision) -> str:
    return json.dumps(as_dict(decision), indent=2)


def render_machine(decision: Decision) -> str:
    pairs = [
        ("SUGGESTION", decision.tier.value),
        ("CURRENT_VERSION", _version(decision.current_version)),
        ("NEXT_VERSION", str(decision.next_version)),
        ("TOTAL_BONUS", decision.total_bonus),
        ("PATCH_DELTA", _delta(decision, Tier.PATCH)),
        ("MINOR_DELTA", _delta(decision, Tier.MINOR)),
        ("MAJOR_DELTA", _delta(decision, Tier.MAJOR)),
        ("CHANGED_LINES", decision.signals.changed_lines),
        ("BASE_REF", decision.base_ref),
        ("TARGET_REF", decision.target_ref),
        ("NO_CHANGES", _bool(decision.no_changes)),
    ]
    return "\n".join(f"{key}={value}" for key, value in pairs)


def render_suggestion(decision: Decision) -> str:
    return decision.tier.value


def render_human(decision: Decision) -> str:
    lines = ["Version bump analysis", ""]
    if decision.base_ref or decision.target_ref:
        lines.append(f"  Range:           {decision.base_ref or '?'}..{decision.target_ref or '?'}")
    current = _version(decision.current_version) or "(none)"
    if decision.version_fallback:
        current += " (unparseable version, treated as 0.0.0)"
    lines.append(f"  Current version: {current}")
    lines.append(f"  Changed lines:   {decision.signals.changed_lines}")
    if decision.no_changes:
        lines.append("  No changes detected")
    lines.append("")

    lines.append(f"  {'Tier':<6} {'Base':>6} {'Scale':>8} {'Points':>7} {'Bonus':>6} {'Delta':>6}")
    for tier in SCORED_TIERS:
        b = decision.breakdowns.get(tier)
        if b is None:
            continue
        marker = "*" if tier is decision.tier else " "
        lines.append(
            f"{marker} {tier.value:<6} {b.base_delta:>6} {float(b.bonus_multiplier):>8.3f} "
            f"{float(b.bonus_points):>7g} {b.total_bonus:>6} {b.total_delta:>6}"
        )

    active = [name for name, value in decision.signals.as_dict().items() if value and name != "changed_lines"]
    if active:
        lines.append("")
        lines.append("  Signals: " + ", ".join(f"{n}={decision.signals.as_dict()[n]}" for n in active))

    lines.append("")
    lines.append(f"  Suggestion:      {decision.tier.value.upper()}")
    lines.append(f"  Next version:    {decision.next_version}")
    return "\n".join(lines)


RENDERERS: dict[str, Callable[[Decision], str]] = {
    "human": render_human,
    "machine": render_machine,
    "json": render_json,
    "suggest": render_suggestion,
}


def render(decision: Decision, mode: str = "human") -> str:
    """Render a decision in one of OUTPUT_FORMATS.

    Raises:
        ValueError: If the mode is unknown
    """
    try:
        renderer = RENDERERS[mode]
    except KeyError:
        raise ValueError(f"Unknown output format: {mode}") from None
    return renderer(decision)
