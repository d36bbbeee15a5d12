"""
Tests for produce_config: packaged defaults, file overrides, validation
and the settings_loaded trace.
"""

import logging

import pytest
import yaml

from produce_config import DEFAULTS_PATH, get_active_settings
from produce_config.loader import (
    compute_checksum,
    configure_from_settings,
    load_yaml_file,
    merge_settings,
    parse_settings,
)
from produce_engines.costing import PricePolicy


@pytest.fixture
def write_settings(tmp_path):
    def _write(content: dict | str, name: str = "ledger.yaml"):
        path = tmp_path / name
        text = content if isinstance(content, str) else yaml.safe_dump(content)
        path.write_text(text)
        return path

    return _write


class TestDefaults:
    def test_packaged_defaults(self):
        settings = get_active_settings()

        assert settings.source == "defaults"
        assert settings.database.url == "sqlite:///:memory:"
        assert settings.database.echo is False
        assert settings.logging.level == "INFO"
        assert settings.aggregate.price_policy == PricePolicy.MAX
        assert settings.aggregate.block_negative_sales is False
        assert settings.matching.auto_match_sales is False

    def test_checksum_is_stable(self):
        assert get_active_settings().checksum == get_active_settings().checksum
        assert len(get_active_settings().checksum) == 64

    def test_defaults_file_parses_on_its_own(self):
        data = load_yaml_file(DEFAULTS_PATH)
        assert set(data) == {"database", "logging", "aggregate", "matching"}


class TestOverrides:
    def test_file_overrides_single_keys(self, write_settings):
        path = write_settings(
            {"aggregate": {"price_policy": "weighted_average"}, "matching": {"auto_match_sales": True}}
        )

        settings = get_active_settings(path)

        assert settings.source == str(path)
        assert settings.aggregate.price_policy == PricePolicy.WEIGHTED_AVERAGE
        assert settings.matching.auto_match_sales is True
        # untouched keys keep their defaults
        assert settings.database.url == "sqlite:///:memory:"
        assert settings.checksum != get_active_settings().checksum

    def test_negative_sales_can_be_blocked(self, write_settings):
        path = write_settings({"aggregate": {"block_negative_sales": True}})

        settings = get_active_settings(path)

        assert settings.aggregate.block_negative_sales is True
        assert settings.aggregate.price_policy == PricePolicy.MAX

    def test_empty_file_means_defaults(self, write_settings):
        path = write_settings("")

        settings = get_active_settings(path)

        assert settings.checksum == get_active_settings().checksum

    def test_log_level_is_normalised(self, write_settings):
        path = write_settings({"logging": {"level": "debug"}})

        assert get_active_settings(path).logging.level == "DEBUG"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            get_active_settings(tmp_path / "nope.yaml")

    def test_merge_keeps_sibling_keys(self):
        merged = merge_settings(
            {"database": {"url": "sqlite://", "echo": False}},
            {"database": {"echo": True}, "logging": None},
        )

        assert merged == {"database": {"url": "sqlite://", "echo": True}}


class TestValidation:
    @pytest.mark.parametrize(
        "document,fragment",
        [
            ({"reporting": {"x": 1}}, "Unknown settings section"),
            ({"database": {"pool": 5}}, "Unknown keys"),
            ({"database": {"url": ""}}, "database.url"),
            ({"logging": {"level": "LOUD"}}, "logging.level"),
            ({"aggregate": {"price_policy": "fifo"}}, "price_policy"),
            ({"matching": {"auto_match_sales": "yes"}}, "auto_match_sales"),
            ({"aggregate": {"block_negative_sales": 1}}, "block_negative_sales"),
        ],
    )
    def test_invalid_documents(self, document, fragment):
        with pytest.raises(ValueError, match=fragment):
            parse_settings(document)

    def test_top_level_must_be_mapping(self, write_settings):
        path = write_settings("- just\n- a list\n")

        with pytest.raises(ValueError, match="mapping"):
            get_active_settings(path)

    def test_section_must_be_mapping(self):
        with pytest.raises(ValueError, match="must be a mapping"):
            merge_settings({}, {"database": "sqlite://"})

    def test_malformed_yaml(self, write_settings):
        path = write_settings("database: [unclosed\n")

        with pytest.raises(yaml.YAMLError):
            get_active_settings(path)


def test_checksum_ignores_key_order():
    assert compute_checksum({"a": 1, "b": {"c": 2}}) == compute_checksum({"b": {"c": 2}, "a": 1})


def test_settings_loaded_trace(captured_logs):
    settings = get_active_settings()

    traces = [r for r in captured_logs() if r["message"] == "settings_loaded"]
    assert traces[-1]["trace_type"] == "PRODUCE_CONFIG_TRACE"
    assert traces[-1]["checksum"] == settings.checksum
    assert traces[-1]["price_policy"] == "max"


def test_configure_from_settings_sets_level(write_settings):
    kernel_logger = logging.getLogger("produce_kernel")
    previous = kernel_logger.level
    try:
        configure_from_settings(get_active_settings(write_settings({"logging": {"level": "WARNING"}})))
        assert kernel_logger.level == logging.WARNING
    finally:
        kernel_logger.setLevel(previous)
