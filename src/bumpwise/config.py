"""Engine configuration: defaults, YAML file, environment overrides, validation.

Precedence is environment > file > built-in defaults. The environment is
passed in as a mapping by the caller; nothing in this package reads
``os.environ`` on its own.
"""

import copy
import logging
import re
from collections.abc import Mapping
from dataclasses import dataclass, field
from fractions import Fraction
from pathlib import Path
from typing import Any, Optional

import yaml

from . import DEFAULT_CONFIG_FILE
from .rules import DEFAULT_MARKERS, DEFAULT_OPTION_FILES, DEFAULT_PATH_RULES, compile_rules
from .signals import BONUS_SIGNALS
from .version import SCORED_TIERS, Tier

logger = logging.getLogger(__name__)

ENV_PREFIX = "BUMPWISE_"

DEFAULT_ROLLOVER = 1000

DEFAULT_BONUSES: dict[str, int] = {
    "cli_changed": 2,
    "manual_cli_changed": 1,
    "breaking_cli_changed": 2,
    "api_breaking": 3,
    "new_source_files": 1,
    "new_test_files": 1,
    "new_doc_files": 1,
    "added_short_options": 0,
    "added_long_options": 0,
    "removed_short_options": 1,
    "removed_long_options": 1,
    "security_keyword_count": 2,
}

# coefficient, divisor, threshold
DEFAULT_TIERS: dict[Tier, tuple[int, int, int]] = {
    Tier.PATCH: (1, 250, 0),
    Tier.MINOR: (5, 500, 4),
    Tier.MAJOR: (10, 1000, 8),
}

TOP_LEVEL_KEYS = ("rollover", "bonus_multiplier_cap", "tiers", "bonuses", "markers", "paths", "option_files")
TIER_KEYS = ("coefficient", "divisor", "threshold", "bonuses")

ENV_TIER_RE = re.compile(r"^BUMPWISE_(PATCH|MINOR|MAJOR)_(COEFFICIENT|DIVISOR|THRESHOLD)$")
ENV_TIER_BONUS_RE = re.compile(r"^BUMPWISE_(PATCH|MINOR|MAJOR)_BONUS_([A-Z_]+)$")
ENV_BONUS_RE = re.compile(r"^BUMPWISE_BONUS_([A-Z_]+)$")


class ConfigError(Exception):
    """Exception raised for invalid or unreadable configuration."""

    def __init__(self, message: str, source: Optional[str] = None):
        self.message = message
        self.source = source
        super().__init__(self.message)


def _number(value: Any, key: str) -> Fraction:
    if isinstance(value, bool) or value is None:
        raise ConfigError(f"{key}: expected a number, got {value!r}")
    try:
        if isinstance(value, (int, float, str)):
            return Fraction(str(value).strip())
    except (ValueError, ZeroDivisionError):
        pass
    raise ConfigError(f"{key}: expected a number, got {value!r}")


def _non_negative(value: Any, key: str) -> Fraction:
    number = _number(value, key)
    if number < 0:
        raise ConfigError(f"{key} must be non-negative, got {value!r}")
    return number


def _as_mapping(value: Any, key: str) -> dict:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"{key}: expected a mapping, got {type(value).__name__}")
    return dict(value)


def _as_patterns(value: Any, key: str) -> list[str]:
    if isinstance(value, str):
        value = [value]
    if not isinstance(value, list) or not all(isinstance(p, str) for p in value):
        raise ConfigError(f"{key}: expected a list of strings")
    return list(value)


def _plain(number: Fraction) -> int | float:
    return int(number) if number.denominator == 1 else float(number)


@dataclass(frozen=True)
class TierConfig:
    """Delta formula, classification threshold and bonus table of one tier."""

    coefficient: Fraction
    divisor: Fraction
    threshold: Fraction = Fraction(0)
    bonuses: dict[str, Fraction] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if self.divisor <= 0:
            raise ConfigError(f"divisor must be > 0, got {self.divisor}")
        if self.coefficient < 0 or self.threshold < 0:
            raise ConfigError("coefficient and threshold must be non-negative")

    def points(self, signal: str) -> Fraction:
        return self.bonuses.get(signal, Fraction(0))


def default_tiers() -> dict[Tier, TierConfig]:
    bonuses = {name: Fraction(points) for name, points in DEFAULT_BONUSES.items()}
    return {
        tier: TierConfig(Fraction(coef), Fraction(div), Fraction(threshold), dict(bonuses))
        for tier, (coef, div, threshold) in DEFAULT_TIERS.items()
    }


@dataclass(frozen=True)
class EngineConfig:
    """Resolved, read-only configuration handed to every pipeline stage."""

    tiers: dict[Tier, TierConfig] = field(default_factory=default_tiers)
    rollover: int = DEFAULT_ROLLOVER
    bonus_multiplier_cap: Optional[Fraction] = None
    markers: dict[str, list[str]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_MARKERS))
    paths: dict[str, list[str]] = field(default_factory=lambda: copy.deepcopy(DEFAULT_PATH_RULES))
    option_files: tuple[str, ...] = tuple(DEFAULT_OPTION_FILES)
    source: Optional[str] = None
    marker_patterns: dict[str, tuple[re.Pattern, ...]] = field(init=False, repr=False, compare=False)
    path_patterns: dict[str, tuple[re.Pattern, ...]] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        if isinstance(self.rollover, bool) or not isinstance(self.rollover, int) or self.rollover < 1:
            raise ConfigError(f"rollover must be a positive integer, got {self.rollover!r}", self.source)
        missing = [t.value for t in SCORED_TIERS if t not in self.tiers]
        if missing:
            raise ConfigError(f"missing tier configuration: {', '.join(missing)}", self.source)
        try:
            object.__setattr__(self, "marker_patterns", compile_rules(self.markers))
            object.__setattr__(self, "path_patterns", compile_rules(self.paths))
        except re.error as e:
            raise ConfigError(f"invalid regular expression {e.pattern!r}: {e}", self.source) from e

    def tier(self, tier: Tier) -> TierConfig:
        return self.tiers[tier]


def apply_environment(data: dict, environ: Mapping[str, str]) -> dict:
    """Fold ``BUMPWISE_*`` overrides into raw configuration data.

    Args:
        data: Raw configuration mapping (as loaded from YAML)
        environ: Environment mapping, usually ``os.environ``

    Returns:
        A new mapping with the overrides applied

    Raises:
        ConfigError: If an override names an unknown signal
    """
    data = copy.deepcopy(data)
    for section in ("tiers", "bonuses"):
        if data.get(section) is None:
            data[section] = {}
        elif not isinstance(data[section], Mapping):
            raise ConfigError(f"{section}: expected a mapping, got {type(data[section]).__name__}")
    tiers = data["tiers"]

    def tier_section(name: str) -> dict:
        if not isinstance(tiers.get(name), Mapping):
            tiers[name] = {}
        return tiers[name]

    overrides = {k: v for k, v in environ.items() if k.startswith(ENV_PREFIX) and v.strip()}
    tier_bonuses = []
    for key in sorted(overrides):
        value = overrides[key]
        tier_match = ENV_TIER_RE.match(key)
        bonus_match = ENV_BONUS_RE.match(key)

        if key == "BUMPWISE_ROLLOVER":
            data["rollover"] = value
        elif key == "BUMPWISE_BONUS_MULTIPLIER_CAP":
            data["bonus_multiplier_cap"] = value
        elif tier_match:
            tier_section(tier_match.group(1).lower())[tier_match.group(2).lower()] = value
        elif bonus_match:
            signal = bonus_match.group(1).lower()
            data["bonuses"][signal] = value
            # A global override outranks per-tier values from the file.
            for tier_data in tiers.values():
                if isinstance(tier_data, Mapping) and isinstance(tier_data.get("bonuses"), Mapping):
                    tier_data["bonuses"].pop(signal, None)
        elif ENV_TIER_BONUS_RE.match(key):
            tier_bonuses.append(key)
            continue
        else:
            continue
        logger.debug("environment override %s=%s", key, value)

    # Per-tier bonus overrides go last so they win over global ones.
    for key in tier_bonuses:
        m = ENV_TIER_BONUS_RE.match(key)
        section = tier_section(m.group(1).lower())
        if not isinstance(section.get("bonuses"), Mapping):
            section["bonuses"] = {}
        section["bonuses"][m.group(2).lower()] = overrides[key]
        logger.debug("environment override %s=%s", key, overrides[key])
    return data


def _check_signals(bonuses: Mapping, key: str) -> dict[str, Fraction]:
    unknown = sorted(set(bonuses) - set(BONUS_SIGNALS))
    if unknown:
        raise ConfigError(f"{key}: unknown signal(s): {', '.join(map(str, unknown))}")
    return {name: _non_negative(points, f"{key}.{name}") for name, points in bonuses.items()}


def _rule_table(value: Any, defaults: Mapping[str, list[str]], key: str) -> dict[str, list[str]]:
    table = copy.deepcopy(dict(defaults))
    overrides = _as_mapping(value, key)
    unknown = sorted(set(overrides) - set(defaults))
    if unknown:
        raise ConfigError(f"{key}: unknown categor{'y' if len(unknown) == 1 else 'ies'}: {', '.join(unknown)}")
    for category, patterns in overrides.items():
        table[category] = _as_patterns(patterns, f"{key}.{category}")
    return table


def build_config(data: Optional[Mapping], source: Optional[str] = None) -> EngineConfig:
    """Validate raw configuration data and build an EngineConfig.

    Raises:
        ConfigError: If the data does not describe a valid configuration
    """
    try:
        data = _as_mapping(data, "config")
        unknown = sorted(set(data) - set(TOP_LEVEL_KEYS))
        if unknown:
            raise ConfigError(f"unknown configuration key(s): {', '.join(map(str, unknown))}")

        rollover = _number(data.get("rollover", DEFAULT_ROLLOVER), "rollover")
        if rollover.denominator != 1 or rollover < 1:
            raise ConfigError(f"rollover must be a positive integer, got {data.get('rollover')!r}")

        cap = data.get("bonus_multiplier_cap")
        if cap is not None:
            cap = _number(cap, "bonus_multiplier_cap")
            if cap <= 0:
                raise ConfigError(f"bonus_multiplier_cap must be > 0, got {data['bonus_multiplier_cap']!r}")

        shared = {name: Fraction(points) for name, points in DEFAULT_BONUSES.items()}
        shared.update(_check_signals(_as_mapping(data.get("bonuses"), "bonuses"), "bonuses"))

        tier_data = _as_mapping(data.get("tiers"), "tiers")
        known = {t.value for t in SCORED_TIERS}
        unknown = sorted(set(map(str, tier_data)) - known)
        if unknown:
            raise ConfigError(f"tiers: unknown tier(s): {', '.join(unknown)}")

        tiers = {}
        for tier in SCORED_TIERS:
            coef, div, threshold = DEFAULT_TIERS[tier]
            raw = _as_mapping(tier_data.get(tier.value), f"tiers.{tier.value}")
            bad = sorted(set(raw) - set(TIER_KEYS))
            if bad:
                raise ConfigError(f"tiers.{tier.value}: unknown key(s): {', '.join(map(str, bad))}")
            prefix = f"tiers.{tier.value}"
            divisor = _number(raw.get("divisor", div), f"{prefix}.divisor")
            if divisor <= 0:
                raise ConfigError(f"{prefix}.divisor must be > 0, got {raw.get('divisor')!r}")
            if tier is Tier.PATCH and _number(raw.get("threshold", 0), f"{prefix}.threshold") != 0:
                raise ConfigError(f"{prefix}.threshold must be 0; patch is selected for any detected change")
            bonuses = dict(shared)
            bonuses.update(_check_signals(_as_mapping(raw.get("bonuses"), f"{prefix}.bonuses"), f"{prefix}.bonuses"))
            tiers[tier] = TierConfig(
                coefficient=_non_negative(raw.get("coefficient", coef), f"{prefix}.coefficient"),
                divisor=divisor,
                threshold=_non_negative(raw.get("threshold", threshold), f"{prefix}.threshold"),
                bonuses=bonuses,
            )

        option_files = data.get("option_files", DEFAULT_OPTION_FILES)
        return EngineConfig(
            tiers=tiers,
            rollover=int(rollover),
            bonus_multiplier_cap=cap,
            markers=_rule_table(data.get("markers"), DEFAULT_MARKERS, "markers"),
            paths=_rule_table(data.get("paths"), DEFAULT_PATH_RULES, "paths"),
            option_files=tuple(_as_patterns(option_files, "option_files")),
            source=source,
        )
    except ConfigError as e:
        if e.source is None and source is not None:
            raise ConfigError(f"{source}: {e.message}", source) from e
        raise


def read_config_file(path: Path) -> dict:
    """Read a YAML configuration file.

    Raises:
        ConfigError: If the file cannot be read or is not a YAML mapping
    """
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise ConfigError(f"Cannot read config file {path}: {e.strerror or e}", str(path)) from e
    except UnicodeDecodeError as e:
        raise ConfigError(f"Config file {path} is not valid UTF-8: {e.reason}", str(path)) from e
    try:
        parsed = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {path}: {e}", str(path)) from e
    if parsed is None:
        return {}
    if not isinstance(parsed, Mapping):
        raise ConfigError(f"{path}: top level must be a mapping", str(path))
    return dict(parsed)


def load_config(
    path: Optional[Path] = None, environ: Optional[Mapping[str, str]] = None, search_dir: Optional[Path] = None
) -> EngineConfig:
    """Resolve the engine configuration.

    Args:
        path: Explicit config file; must exist
        environ: Environment overrides (``BUMPWISE_*``); none when omitted
        search_dir: Directory searched for ``.bumpwise.yml`` when no path is given

    Returns:
        The validated configuration

    Raises:
        ConfigError: If the file is unreadable or any value is invalid
    """
    data: dict = {}
    source = None
    if path is not None:
        path = Path(path)
        if not path.is_file():
            raise ConfigError(f"Config file not found: {path}", str(path))
        data = read_config_file(path)
        source = str(path)
    elif search_dir is not None and (Path(search_dir) / DEFAULT_CONFIG_FILE).is_file():
        candidate = Path(search_dir) / DEFAULT_CONFIG_FILE
        data = read_config_file(candidate)
        source = str(candidate)

    if source:
        logger.debug("loaded configuration from %s", source)
    else:
        logger.debug("no configuration file, using defaults")

    if environ:
        data = apply_environment(data, environ)
    return build_config(data, source)


def config_as_dict(config: EngineConfig) -> dict[str, Any]:
    """Plain-data view of a configuration, in the file schema."""
    return {
        "rollover": config.rollover,
        "bonus_multiplier_cap": None if config.bonus_multiplier_cap is None else _plain(config.bonus_multiplier_cap),
        "tiers": {
            tier.value: {
                "coefficient": _plain(tc.coefficient),
                "divisor": _plain(tc.divisor),
                "threshold": _plain(tc.threshold),
                "bonuses": {name: _plain(tc.points(name)) for name in BONUS_SIGNALS},
            }
            for tier, tc in ((t, config.tier(t)) for t in SCORED_TIERS)
        },
        "markers": config.markers,
        "paths": config.paths,
        "option_files": list(config.option_files),
    }
