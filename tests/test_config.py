"""
Unit tests for settings and model index loading.
"""

import json

import pytest

from sunspec_controller.common.config import (
    DeviceIdentity,
    EngineSettings,
    load_config_file,
    load_engine_settings,
)
from sunspec_controller.common.exceptions import ConfigError, PointNotFoundError
from sunspec_controller.common.models import (
    load_model_index,
    load_model_index_file,
    normalize_model_id,
)


class TestEngineSettings:

    def test_defaults(self):
        settings = load_engine_settings({})

        assert settings == EngineSettings()
        assert settings.pool.idle_timeout_s == 20.0
        assert settings.pool.cooldown_s == 0.1
        assert settings.read.max_model_hops == 100
        assert settings.retry.base_delay_s == 1.0
        assert settings.retry.max_delay_s == 30.0
        assert settings.discovery.session_history == 20

    def test_overrides(self):
        settings = load_engine_settings({
            "pool": {"cooldown_s": 0, "timeout_s": 3},
            "read": {"validate_cache_hits": True, "scale_exempt_points": ["W"]},
            "discovery": {"port": 503, "unit_ids": "10-12", "session_history": 5},
            "cache_file": "/var/lib/sunspec/cache.json",
        })

        assert settings.pool.cooldown_s == 0.0
        assert settings.pool.timeout_s == 3.0
        assert settings.read.validate_cache_hits is True
        assert settings.read.scale_exempt_points == ("W",)
        assert settings.discovery.port == 503
        assert settings.discovery.unit_ids == "10-12"
        assert settings.discovery.session_history == 5
        assert settings.cache_file == "/var/lib/sunspec/cache.json"

    @pytest.mark.parametrize("data", [
        {"read": {"max_model_hops": 0}},
        {"retry": {"base_delay_s": 0}},
        {"retry": {"base_delay_s": 10, "max_delay_s": 5}},
        {"discovery": {"session_history": -1}},
    ])
    def test_invalid(self, data):
        with pytest.raises(ConfigError):
            load_engine_settings(data)

    def test_not_a_mapping(self):
        with pytest.raises(ConfigError):
            load_engine_settings(["pool"])

    def test_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text(
            "pool:\n"
            "  idle_timeout_s: 60\n"
            "retry:\n"
            "  interval_s: 5\n"
        )

        settings = load_config_file(path)

        assert settings.pool.idle_timeout_s == 60.0
        assert settings.retry.interval_s == 5.0

    def test_empty_yaml_file(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")

        assert load_config_file(path) == EngineSettings()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="not found"):
            load_config_file(tmp_path / "nope.yaml")

    def test_bad_yaml(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("pool: [unclosed\n")

        with pytest.raises(ConfigError, match="Invalid YAML"):
            load_config_file(path)


class TestDeviceIdentity:

    def test_str(self):
        identity = DeviceIdentity("10.0.0.1", 1502, 3)

        assert str(identity) == "10.0.0.1:1502/3"

    def test_hashable(self):
        assert DeviceIdentity("10.0.0.1") == DeviceIdentity("10.0.0.1", 502, 1)
        assert len({DeviceIdentity("10.0.0.1"), DeviceIdentity("10.0.0.1", 502, 1)}) == 1


class TestModelIndex:

    def test_bundled_index(self):
        index = load_model_index_file()

        assert index.model_ids == [1, 101, 102, 103, 111, 112, 113, 120, 121, 122, 123, 124, 160]
        assert index.get("103").name == "inverter"
        assert index.require(123).offset_of("WMaxLimPct") == 5

    def test_bundled_layouts_match_lengths(self):
        index = load_model_index_file()

        for model_id in index.model_ids:
            model = index.require(model_id)
            if model.length is None:
                continue
            size = sum(point.register_size for point in model.points)
            assert size == model.length + 2, model_id

    def test_offsets(self):
        model = load_model_index_file().require(103)

        assert model.offset_of("ID") == 0
        assert model.offset_of("A") == 2
        assert model.offset_of("W") == 14
        assert model.offset_of("WH") == 24
        assert model.offset_of("St") == 38

    def test_unknown_point(self):
        model = load_model_index_file().require(103)

        with pytest.raises(PointNotFoundError):
            model.offset_of("Bogus")
        with pytest.raises(PointNotFoundError):
            model.get_point("Bogus")

    def test_require_missing(self):
        with pytest.raises(ConfigError, match="No definition loaded for model 64"):
            load_model_index_file().require(64)

    def test_vendor_index(self):
        index = load_model_index({
            "sma_edmm": {
                "points": [
                    {"name": "GridW", "type": "int32", "offset": 30775, "staticScale": 1},
                    {"name": "Status", "type": "enum32", "offset": 30201, "unitId": 3},
                ],
            },
        })

        model = index.require("sma_edmm")
        assert model.offset_of("GridW") == 30775
        assert model.get_point("GridW").register_size == 2
        assert model.get_point("Status").unit_id == 3
        assert "sma_edmm" in index

    def test_list_form(self):
        index = load_model_index([
            {"id": 120, "group": {"name": "nameplate", "len": 26, "points": []}},
        ])

        assert index.require(120).length == 26

    def test_list_entries_need_id(self):
        with pytest.raises(ConfigError):
            load_model_index([{"group": {"points": []}}])

    def test_point_without_name(self):
        with pytest.raises(ConfigError):
            load_model_index({"1": {"group": {"points": [{"type": "uint16"}]}}})

    def test_string_size_from_chars(self):
        index = load_model_index({"1": {"group": {"points": [
            {"name": "Mn", "type": "string", "chars": 31},
            {"name": "DA"},
        ]}}})

        assert index.require(1).offset_of("DA") == 16

    def test_index_file(self, tmp_path):
        path = tmp_path / "models.json"
        path.write_text(json.dumps({"1": {"group": {"points": [{"name": "ID"}]}}}))

        assert load_model_index_file(path).model_ids == [1]

    def test_missing_index_file(self, tmp_path):
        with pytest.raises(ConfigError):
            load_model_index_file(tmp_path / "missing.json")

    def test_invalid_index_json(self, tmp_path):
        path = tmp_path / "models.json"
        path.write_text("{")

        with pytest.raises(ConfigError):
            load_model_index_file(path)


class TestNormalizeModelId:

    def test_numeric(self):
        assert normalize_model_id(103) == 103
        assert normalize_model_id("103") == 103
        assert normalize_model_id(" 1 ") == 1

    def test_named(self):
        assert normalize_model_id("sma_edmm") == "sma_edmm"

    @pytest.mark.parametrize("value", [True, "", "  "])
    def test_invalid(self, value):
        with pytest.raises(ConfigError):
            normalize_model_id(value)
