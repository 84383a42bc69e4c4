"""Semantic version parsing and carry-propagating version arithmetic."""

import logging
import re
from dataclasses import dataclass
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

SEMVER_RE = re.compile(r"^(\d+)\.(\d+)\.(\d+)$")


class Tier(str, Enum):
    """Release tier selected for a change set, strictest first."""

    MAJOR = "major"
    MINOR = "minor"
    PATCH = "patch"
    NONE = "none"


# Tiers that carry a delta formula.
SCORED_TIERS = (Tier.PATCH, Tier.MINOR, Tier.MAJOR)

# Versions handed out when there is no prior release to advance from.
SEED_VERSIONS = {
    Tier.MAJOR: (1, 0, 0),
    Tier.MINOR: (0, 1, 0),
    Tier.PATCH: (0, 0, 1),
    Tier.NONE: (0, 0, 0),
}


class VersionFormatError(ValueError):
    """Raised when a version string is not in MAJOR.MINOR.PATCH form."""

    def __init__(self, value: str):
        self.value = value
        self.message = f"Invalid version format: {value!r} (expected MAJOR.MINOR.PATCH)"
        super().__init__(self.message)


@dataclass(frozen=True, order=True)
class SemanticVersion:
    """A released version as three non-negative integers."""

    major: int = 0
    minor: int = 0
    patch: int = 0

    def __post_init__(self) -> None:
        if min(self.major, self.minor, self.patch) < 0:
            raise ValueError(f"Version components must be non-negative: {self.major}.{self.minor}.{self.patch}")

    def __str__(self) -> str:
        return f"{self.major}.{self.minor}.{self.patch}"

    @classmethod
    def parse(cls, text: str) -> "SemanticVersion":
        """Parse a strict ``X.Y.Z`` string (surrounding whitespace allowed).

        Raises:
            VersionFormatError: If the text is not three dot-separated non-negative integers
        """
        m = SEMVER_RE.match(text.strip())
        if not m:
            raise VersionFormatError(text)
        major, minor, patch = map(int, m.groups())
        return cls(major, minor, patch)

    @property
    def is_zero(self) -> bool:
        return self.major == 0 and self.minor == 0 and self.patch == 0


def parse_current_version(text: Optional[str]) -> tuple[Optional[SemanticVersion], bool]:
    """Interpret the stored current version.

    Returns a ``(version, fell_back)`` pair. Missing or blank input means there
    is no previous release and yields ``(None, False)``. Anything that does not
    parse is treated as ``0.0.0`` and flagged so callers can decide whether to
    hard-fail instead.
    """
    if text is None or not text.strip():
        return None, False
    try:
        return SemanticVersion.parse(text), False
    except VersionFormatError:
        logger.warning("Current version %r is not MAJOR.MINOR.PATCH; treating it as 0.0.0", text.strip())
        return SemanticVersion(), True


def advance(current: Optional[SemanticVersion], tier: Tier, total_delta: int, modulus: int) -> SemanticVersion:
    """Apply ``total_delta`` to the patch component and carry overflow upward.

    The tier never increments minor or major directly; it only selects which
    delta was computed. An absent or ``0.0.0`` current version returns the
    first-release seed for the tier instead.
    """
    if modulus < 1:
        raise ValueError(f"Rollover modulus must be >= 1, got {modulus}")
    if total_delta < 0:
        raise ValueError(f"Delta must be non-negative, got {total_delta}")

    if current is None or current.is_zero:
        return SemanticVersion(*SEED_VERSIONS[tier])
    if tier is Tier.NONE:
        return current

    new_patch_raw = current.patch + total_delta
    carry_to_minor, final_patch = divmod(new_patch_raw, modulus)
    new_minor_raw = current.minor + carry_to_minor
    carry_to_major, final_minor = divmod(new_minor_raw, modulus)
    final_major = current.major + carry_to_major

    logger.debug(
        "advance %s by %d (mod %d): carry_minor=%d carry_major=%d",
        current,
        total_delta,
        modulus,
        carry_to_minor,
        carry_to_major,
    )
    return SemanticVersion(final_major, final_minor, final_patch)
