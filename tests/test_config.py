"""Tests for configuration loading and validation."""

import json
from fractions import Fraction

import pytest

from bumpwise.config import ConfigError, EngineConfig, apply_environment, build_config, config_as_dict, load_config
from bumpwise.version import Tier


def test_defaults() -> None:
    config = load_config()
    assert config.rollover == 1000
    assert config.bonus_multiplier_cap is None
    assert config.tier(Tier.PATCH).coefficient == 1
    assert config.tier(Tier.PATCH).divisor == 250
    assert config.tier(Tier.MINOR).threshold == 4
    assert config.tier(Tier.MAJOR).threshold == 8
    assert config.tier(Tier.MAJOR).points("api_breaking") == 3
    assert config.tier(Tier.PATCH).points("cli_changed") == 2
    assert config.source is None


def test_file_found_in_search_dir(tmp_path) -> None:
    (tmp_path / ".bumpwise.yml").write_text(
        "rollover: 100\n"
        "tiers:\n"
        "  minor:\n"
        "    threshold: 6\n"
        "  major:\n"
        "    bonuses:\n"
        "      cli_changed: 7\n"
        "bonuses:\n"
        "  cli_changed: 5\n"
    )
    config = load_config(search_dir=tmp_path)
    assert config.rollover == 100
    assert config.tier(Tier.MINOR).threshold == 6
    assert config.tier(Tier.PATCH).points("cli_changed") == 5
    assert config.tier(Tier.MINOR).points("cli_changed") == 5
    assert config.tier(Tier.MAJOR).points("cli_changed") == 7
    assert config.source == str(tmp_path / ".bumpwise.yml")


def test_explicit_path_must_exist(tmp_path) -> None:
    with pytest.raises(ConfigError, match="not found"):
        load_config(tmp_path / "missing.yml")


def test_empty_file_means_defaults(tmp_path) -> None:
    path = tmp_path / "empty.yml"
    path.write_text("")
    assert load_config(path).rollover == 1000


def test_environment_beats_file(tmp_path) -> None:
    path = tmp_path / "bumpwise.yml"
    path.write_text("rollover: 500\ntiers:\n  major:\n    bonuses: {cli_changed: 7}\n")
    environ = {
        "BUMPWISE_ROLLOVER": "100",
        "BUMPWISE_MINOR_DIVISOR": "50",
        "BUMPWISE_PATCH_COEFFICIENT": "1.5",
        "BUMPWISE_BONUS_CLI_CHANGED": "9",
        "BUMPWISE_MINOR_BONUS_CLI_CHANGED": "4",
        "BUMPWISE_BONUS_MULTIPLIER_CAP": "2",
        "BUMPWISE_CONFIG": "ignored-here",
        "HOME": "/root",
    }
    config = load_config(path, environ=environ)
    assert config.rollover == 100
    assert config.tier(Tier.MINOR).divisor == 50
    assert config.tier(Tier.PATCH).coefficient == Fraction(3, 2)
    assert config.tier(Tier.MAJOR).points("cli_changed") == 9
    assert config.tier(Tier.PATCH).points("cli_changed") == 9
    assert config.tier(Tier.MINOR).points("cli_changed") == 4
    assert config.bonus_multiplier_cap == 2


def test_apply_environment_leaves_input_untouched() -> None:
    data = {"tiers": {"patch": {"divisor": 10}}}
    result = apply_environment(data, {"BUMPWISE_PATCH_DIVISOR": "20"})
    assert data == {"tiers": {"patch": {"divisor": 10}}}
    assert result["tiers"]["patch"]["divisor"] == "20"


@pytest.mark.parametrize(
    "data,message",
    [
        ({"tiers": {"patch": {"divisor": 0}}}, "divisor must be > 0"),
        ({"tiers": {"minor": {"divisor": -5}}}, "divisor must be > 0"),
        ({"tiers": {"major": {"threshold": -1}}}, "non-negative"),
        ({"tiers": {"patch": {"threshold": 2}}}, "patch is selected for any detected change"),
        ({"tiers": {"patch": {"coefficient": "lots"}}}, "expected a number"),
        ({"tiers": {"huge": {"coefficient": 1}}}, "unknown tier"),
        ({"tiers": {"patch": {"weight": 1}}}, "unknown key"),
        ({"bonuses": {"cli_changed": -2}}, "non-negative"),
        ({"bonuses": {"made_up_signal": 1}}, "unknown signal"),
        ({"rollover": 0}, "positive integer"),
        ({"rollover": 1.5}, "positive integer"),
        ({"rollover": True}, "expected a number"),
        ({"bonus_multiplier_cap": 0}, "must be > 0"),
        ({"markers": {"breaking": ["("]}}, "invalid regular expression"),
        ({"markers": {"style": ["x"]}}, "unknown category"),
        ({"paths": {"test": 42}}, "list of strings"),
        ({"verbose": True}, "unknown configuration key"),
    ],
)
def test_invalid_values(data: dict, message: str) -> None:
    with pytest.raises(ConfigError, match=message):
        build_config(data)


def test_error_names_the_file(tmp_path) -> None:
    path = tmp_path / "bad.yml"
    path.write_text("tiers:\n  patch:\n    divisor: 0\n")
    with pytest.raises(ConfigError) as exc_info:
        load_config(path)
    assert str(path) in exc_info.value.message


def test_invalid_yaml(tmp_path) -> None:
    path = tmp_path / "broken.yml"
    path.write_text("tiers: [\n")
    with pytest.raises(ConfigError, match="Invalid YAML"):
        load_config(path)


def test_top_level_must_be_mapping(tmp_path) -> None:
    path = tmp_path / "list.yml"
    path.write_text("- rollover\n- 10\n")
    with pytest.raises(ConfigError, match="mapping"):
        load_config(path)


def test_unknown_signal_from_environment() -> None:
    with pytest.raises(ConfigError, match="unknown signal"):
        load_config(environ={"BUMPWISE_BONUS_NOPE": "1"})


def test_bad_number_from_environment() -> None:
    with pytest.raises(ConfigError, match="expected a number"):
        load_config(environ={"BUMPWISE_MAJOR_THRESHOLD": "high"})


def test_rule_tables_override_per_category() -> None:
    config = build_config({"markers": {"security": [r"(?i)\bhardening\b"]}, "option_files": ["*.rs"]})
    assert config.markers["security"] == [r"(?i)\bhardening\b"]
    assert config.markers["breaking"]
    assert config.option_files == ("*.rs",)
    assert len(config.marker_patterns["security"]) == 1


def test_engine_config_rejects_bad_rollover() -> None:
    with pytest.raises(ConfigError):
        EngineConfig(rollover=0)


def test_config_as_dict_is_plain_data() -> None:
    data = config_as_dict(build_config({"tiers": {"patch": {"coefficient": 0.5}}}))
    json.dumps(data)
    assert data["rollover"] == 1000
    assert data["tiers"]["patch"]["coefficient"] == 0.5
    assert data["tiers"]["minor"]["divisor"] == 500
    assert data["tiers"]["major"]["bonuses"]["security_keyword_count"] == 2
    assert list(data["tiers"]) == ["patch", "minor", "major"]


def test_undecodable_file(tmp_path) -> None:
    path = tmp_path / "binary.yml"
    path.write_bytes(b"rollover: \xff\n")
    with pytest.raises(ConfigError, match="not valid UTF-8"):
        load_config(path)


def test_patch_threshold_from_environment() -> None:
    assert load_config(environ={"BUMPWISE_PATCH_THRESHOLD": "0"}).tier(Tier.PATCH).threshold == 0
    with pytest.raises(ConfigError, match="tiers.patch.threshold must be 0"):
        load_config(environ={"BUMPWISE_PATCH_THRESHOLD": "3"})
