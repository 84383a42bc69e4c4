"""The decision pipeline: signals -> breakdowns -> tier -> next version."""

import logging
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from fnmatch import fnmatch
from fractions import Fraction
from pathlib import PurePosixPath
from typing import TYPE_CHECKING, Optional

from .config import EngineConfig
from .options import OptionSource
from .scoring import ScoreBreakdown, classify, compute_breakdowns, score
from .signals import ChangeSignals, FileChange, extract_signals
from .version import SCORED_TIERS, SemanticVersion, Tier, advance, parse_current_version

if TYPE_CHECKING:
    from .git import GitRepository, RefRange

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Decision:
    """Outcome of one run: the selected tier, every breakdown and both versions."""

    tier: Tier
    breakdowns: dict[Tier, ScoreBreakdown]
    current_version: Optional[SemanticVersion]
    next_version: SemanticVersion
    signals: ChangeSignals
    base_ref: str = ""
    target_ref: str = ""
    version_fallback: bool = False

    @property
    def no_changes(self) -> bool:
        return not self.signals.has_changes

    @property
    def selected(self) -> Optional[ScoreBreakdown]:
        return self.breakdowns.get(self.tier)

    @property
    def total_bonus(self) -> int:
        return self.selected.total_bonus if self.selected else 0

    @property
    def total_delta(self) -> int:
        return self.selected.total_delta if self.selected else 0


def decide(
    signals: ChangeSignals,
    config: EngineConfig,
    current_text: Optional[str] = None,
    base_ref: str = "",
    target_ref: str = "",
) -> Decision:
    """Run the calculator, classifier and version arithmetic over fixed signals.

    Args:
        signals: Extracted change signals
        config: Resolved engine configuration
        current_text: Stored current version; None or blank means no prior release
        base_ref: Label of the base ref, carried through for reporting
        target_ref: Label of the target ref, carried through for reporting

    Returns:
        The complete decision
    """
    current, fallback = parse_current_version(current_text)
    breakdowns = compute_breakdowns(signals, config)
    tier = classify(breakdowns, config, signals)
    delta = breakdowns[tier].total_delta if tier in breakdowns else 0
    next_version = advance(current, tier, delta, config.rollover)
    logger.info("selected %s: %s -> %s", tier.value, current or "(none)", next_version)
    return Decision(
        tier=tier,
        breakdowns=breakdowns,
        current_version=current,
        next_version=next_version,
        signals=signals,
        base_ref=base_ref,
        target_ref=target_ref,
        version_fallback=fallback,
    )


def project(
    tier: Tier,
    changed_lines: int,
    points: Fraction,
    config: EngineConfig,
    current_text: Optional[str] = None,
) -> Decision:
    """Next version for a caller-chosen tier, line count and raw bonus points."""
    current, fallback = parse_current_version(current_text)
    breakdowns = {
        t: score(t, changed_lines, points, config.tier(t), config.bonus_multiplier_cap) for t in SCORED_TIERS
    }
    delta = breakdowns[tier].total_delta if tier in breakdowns else 0
    return Decision(
        tier=tier,
        breakdowns=breakdowns,
        current_version=current,
        next_version=advance(current, tier, delta, config.rollover),
        signals=ChangeSignals(changed_lines=changed_lines),
        version_fallback=fallback,
    )


def is_option_file(path: str, globs: Iterable[str]) -> bool:
    name = PurePosixPath(path).name
    return any(fnmatch(path, g) or fnmatch(name, g) for g in globs)


def collect_option_sources(
    reader: "GitRepository", base: str, target: str, changes: Sequence[FileChange], config: EngineConfig
) -> list[OptionSource]:
    """Fetch before/after text of every changed file that may declare options."""
    sources = []
    for change in changes:
        if change.is_binary or not is_option_file(change.path, config.option_files):
            continue
        # Added and copied files have no prior version of their own.
        before = "" if change.status in ("A", "C") else reader.file_text(base, change.old_path or change.path)
        after = "" if change.status == "D" else reader.file_text(target, change.path)
        sources.append(OptionSource(change.path, before, after))
    return sources


def analyze(
    reader: "GitRepository",
    refs: "RefRange",
    config: EngineConfig,
    current_text: Optional[str] = None,
    paths: Sequence[str] = (),
    ignore_whitespace: bool = False,
    no_merges: bool = False,
) -> Decision:
    """Read the changes between a resolved ref pair and decide the next version.

    An empty repository is not an error: it yields a ``none`` decision
    without consulting the reader.
    """
    if refs.empty_repo:
        changes: list[FileChange] = []
        messages: list[str] = []
        sources: list[OptionSource] = []
    else:
        base, target = refs.diff_base, refs.diff_target
        changes = reader.diff_files(base, target, paths, ignore_whitespace)
        messages = reader.commit_messages(base, target, no_merges)
        sources = collect_option_sources(reader, base, target, changes, config)

    signals = extract_signals(changes, messages, config, sources)
    return decide(signals, config, current_text, refs.base, refs.target)
