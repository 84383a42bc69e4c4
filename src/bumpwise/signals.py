"""Change-signal extraction from per-file diff records and commit messages."""

import logging
import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import asdict, dataclass
from typing import TYPE_CHECKING, Any, Optional

from .options import OptionDelta, OptionSource, compare_sources
from .rules import HEADER_RE, classify_path, count_markers

if TYPE_CHECKING:
    from .config import EngineConfig

logger = logging.getLogger(__name__)

# Boolean signals contribute their bonus once when true.
FLAG_SIGNALS = ("cli_changed", "manual_cli_changed", "breaking_cli_changed", "api_breaking")
# Counters that contribute their bonus once when non-zero.
PRESENCE_SIGNALS = (
    "new_source_files",
    "new_test_files",
    "new_doc_files",
    "added_short_options",
    "added_long_options",
    "removed_short_options",
    "removed_long_options",
)
# Counters that contribute ``count * bonus``.
COUNT_SIGNALS = ("security_keyword_count",)

BONUS_SIGNALS = FLAG_SIGNALS + PRESENCE_SIGNALS + COUNT_SIGNALS

# Removing short and long options together still scores once, at the larger bonus.
REMOVED_OPTION_SIGNALS = ("removed_short_options", "removed_long_options")

PROTOTYPE_RE = re.compile(
    r"^[+-]\s*(?!typedef\b|return\b|#)"
    r"[A-Za-z_][\w\s\*&:<>,]*?[\s\*&]([A-Za-z_]\w*)\s*\([^;{]*\)\s*(const\s*)?;\s*$"
)


@dataclass(frozen=True)
class FileChange:
    """One changed path as reported by the repository reader."""

    path: str
    status: str = "M"
    added_lines: int = 0
    removed_lines: int = 0
    old_path: Optional[str] = None
    is_binary: bool = False
    diff_text: str = ""

    @property
    def is_new(self) -> bool:
        return self.status == "A"

    @property
    def is_rename(self) -> bool:
        return self.status in ("R", "C")

    def hunk_lines(self) -> list[str]:
        """Diff lines from the first ``@@`` hunk header on.

        The ``---``/``+++`` file header only appears before the first hunk,
        so content lines such as ``+++counter;`` are kept.
        """
        lines = self.diff_text.splitlines()
        for index, line in enumerate(lines):
            if line.startswith("@@"):
                return lines[index:]
        if lines and lines[0].startswith("diff --git"):
            return []
        return lines

    def added_text(self) -> str:
        """Added lines of the diff with their ``+`` marker stripped."""
        return "\n".join(line[1:] for line in self.hunk_lines() if line.startswith("+"))


@dataclass(frozen=True)
class ChangeSignals:
    """Aggregated facts about a change set, the only input to scoring."""

    changed_lines: int = 0
    new_source_files: int = 0
    new_test_files: int = 0
    new_doc_files: int = 0
    added_short_options: int = 0
    added_long_options: int = 0
    removed_short_options: int = 0
    removed_long_options: int = 0
    cli_changed: bool = False
    manual_cli_changed: bool = False
    breaking_cli_changed: bool = False
    api_breaking: bool = False
    security_keyword_count: int = 0

    def __post_init__(self) -> None:
        for name, value in asdict(self).items():
            if value < 0:
                raise ValueError(f"{name} must be non-negative, got {value}")

    @property
    def has_changes(self) -> bool:
        return any(asdict(self).values())

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)

    def is_active(self, name: str) -> bool:
        return bool(getattr(self, name))

    def bonus_units(self, name: str) -> int:
        """How many times the bonus for ``name`` applies."""
        value = getattr(self, name)
        if name in COUNT_SIGNALS:
            return int(value)
        return 1 if value else 0


def count_changed_lines(changes: Iterable[FileChange]) -> int:
    # Binary files carry no line counts; pure renames/copies report 0/0.
    return sum(c.added_lines + c.removed_lines for c in changes if not c.is_binary)


def count_new_files(changes: Iterable[FileChange], path_rules: Mapping[str, tuple[re.Pattern, ...]]) -> dict[str, int]:
    counts = {"source": 0, "test": 0, "doc": 0}
    for change in changes:
        if not change.is_new:
            continue
        category = classify_path(change.path, path_rules)
        if category:
            counts[category] += 1
    return counts


def removed_prototypes(changes: Iterable[FileChange]) -> set[str]:
    """Names of C/C++ header prototypes that were removed and not re-added."""
    removed: set[str] = set()
    added: set[str] = set()
    for change in changes:
        paths = {change.path, change.old_path or change.path}
        if change.is_binary or not any(HEADER_RE.search(p) for p in paths):
            continue
        for line in change.hunk_lines():
            m = PROTOTYPE_RE.match(line)
            if m:
                (added if line.startswith("+") else removed).add(m.group(1))
    return removed - added


def scan_markers(
    changes: Sequence[FileChange], messages: Sequence[str], markers: Mapping[str, tuple[re.Pattern, ...]]
) -> dict[str, int]:
    """Count marker matches per category over commit messages and added lines."""
    texts = list(messages) + [c.added_text() for c in changes if not c.is_binary]
    return {category: sum(count_markers(t, patterns) for t in texts) for category, patterns in markers.items()}


def extract_signals(
    changes: Sequence[FileChange],
    messages: Sequence[str],
    config: "EngineConfig",
    option_sources: Optional[Iterable[OptionSource]] = None,
) -> ChangeSignals:
    """Reduce diff records and commit messages to a single ChangeSignals value.

    Every aggregate is a sum or a set union over the file set, so the result
    does not depend on the order the reader returned the files in.
    """
    new_files = count_new_files(changes, config.path_patterns)
    delta = compare_sources(option_sources or ())
    marker_counts = scan_markers(changes, messages, config.marker_patterns)
    lost_prototypes = removed_prototypes(changes)

    signals = ChangeSignals(
        changed_lines=count_changed_lines(changes),
        new_source_files=new_files["source"],
        new_test_files=new_files["test"],
        new_doc_files=new_files["doc"],
        cli_changed=delta.cli_changed,
        manual_cli_changed=delta.manual_cli_changed,
        breaking_cli_changed=delta.breaking,
        api_breaking=marker_counts.get("breaking", 0) > 0 or bool(lost_prototypes),
        security_keyword_count=marker_counts.get("security", 0),
        **delta.counts(),
    )
    _log_signals(signals, delta, lost_prototypes)
    return signals


def _log_signals(signals: ChangeSignals, delta: OptionDelta, lost_prototypes: set[str]) -> None:
    if not logger.isEnabledFor(logging.DEBUG):
        return
    logger.debug("signals: %s", signals.as_dict())
    if delta.added:
        logger.debug("added options: %s", ", ".join(sorted(delta.added)))
    if delta.removed:
        logger.debug("removed options: %s", ", ".join(sorted(delta.removed)))
    if lost_prototypes:
        logger.debug("removed prototypes: %s", ", ".join(sorted(lost_prototypes)))
