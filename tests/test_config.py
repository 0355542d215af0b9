"""Tests for atlas_registry.config."""

import pytest

from atlas_registry.algorithms.duplicate_grouper import SEVEN_SISTERS, DuplicateThresholds
from atlas_registry.config import DEFAULT_CONFIG_PATH, RegistryConfig, load_config
from atlas_registry.errors import ConfigError


class TestDefaults:
    def test_defaults(self):
        config = RegistryConfig()
        assert config.thresholds == DuplicateThresholds()
        assert config.exception_rules == (SEVEN_SISTERS,)
        assert config.mutation_delay_s == 0.3
        assert config.origin_radius_m == 50_000
        assert config.baserow.page_size == 200
        assert config.gemini.model == "gemini-2.5-flash"

    @pytest.mark.parametrize("delay", [0.1, 0.5, 0.0])
    def test_delay_outside_window_rejected(self, delay):
        with pytest.raises(ConfigError, match="mutation_delay_s"):
            RegistryConfig(mutation_delay_s=delay)

    @pytest.mark.parametrize("delay", [0.15, 0.4])
    def test_delay_window_inclusive(self, delay):
        assert RegistryConfig(repair_delay_s=delay).repair_delay_s == delay

    def test_bad_radius_and_cache(self):
        with pytest.raises(ConfigError):
            RegistryConfig(origin_radius_m=0)
        with pytest.raises(ConfigError):
            RegistryConfig(geocode_cache_size=0)
        assert RegistryConfig(geocode_cache_size=None).geocode_cache_size is None


class TestFromDict:
    def test_sections_and_thresholds(self):
        config = RegistryConfig.from_dict({
            "baserow": {"table_id": "991", "page_size": 50, "unknown_key": 1},
            "pacing": {"mutation_delay_s": 0.2},
            "discovery": {"origin_radius_m": 20000},
            "deduplication": {"thresholds": {"batch_distance_m": 250}},
        })
        assert config.baserow.table_id == "991"
        assert config.baserow.page_size == 50
        assert config.mutation_delay_s == 0.2
        assert config.origin_radius_m == 20_000
        assert config.thresholds.batch_distance_m == 250
        assert config.thresholds.batch_similarity == 0.75

    def test_custom_exception_rules(self):
        config = RegistryConfig.from_dict({
            "deduplication": {"exception_rules": [
                {"label": "twins", "countries": ["Malaysia"], "cities": ["Kuala Lumpur"], "keywords": ["Petronas"]},
            ]},
        })
        assert [r.label for r in config.exception_rules] == ["twins"]
        assert config.exception_rules[0].countries == ("malaysia",)

    def test_empty_rule_list_disables_exceptions(self):
        config = RegistryConfig.from_dict({"deduplication": {"exception_rules": []}})
        assert config.exception_rules == ()

    def test_bad_values(self):
        with pytest.raises(ConfigError):
            RegistryConfig.from_dict({"pacing": {"repair_delay_s": "slow"}})
        with pytest.raises(ConfigError):
            RegistryConfig.from_dict({"baserow": ["not", "a", "mapping"]})
        with pytest.raises(ConfigError):
            RegistryConfig.from_dict(["root"])


class TestFromYaml:
    def test_load(self, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text(
            "places:\n  photo_max_width: 800\npacing:\n  lookup_delay_s: 0.2\n",
            encoding="utf-8",
        )
        config = RegistryConfig.from_yaml(path)
        assert config.places.photo_max_width == 800
        assert config.lookup_delay_s == 0.2

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("", encoding="utf-8")
        assert RegistryConfig.from_yaml(path) == RegistryConfig()

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigError, match="Cannot read"):
            RegistryConfig.from_yaml(tmp_path / "absent.yaml")

    def test_malformed_yaml(self, tmp_path):
        path = tmp_path / "bad.yaml"
        path.write_text("pacing: [unclosed\n", encoding="utf-8")
        with pytest.raises(ConfigError, match="Malformed"):
            RegistryConfig.from_yaml(path)

    def test_checked_in_config_matches_defaults(self):
        config = RegistryConfig.from_yaml(DEFAULT_CONFIG_PATH)
        assert config.thresholds == DuplicateThresholds()
        assert config.exception_rules == (SEVEN_SISTERS,)
        assert config.repair_delay_s == 0.4


class TestEnvironment:
    def test_with_env(self):
        config = RegistryConfig().with_env({
            "BASEROW_TOKEN": "tok",
            "BASEROW_TABLE_ID": "123",
            "GEMINI_API_KEY": "",
        })
        assert config.baserow.token == "tok"
        assert config.baserow.table_id == "123"
        assert config.gemini.api_key == ""

    def test_with_env_returns_copy(self):
        base = RegistryConfig()
        base.with_env({"GOOGLE_MAPS_API_KEY": "key"})
        assert base.places.api_key == ""

    def test_require_names_env_vars(self):
        config = RegistryConfig().with_env({"BASEROW_TOKEN": "tok"})
        config.require("baserow.token")
        with pytest.raises(ConfigError, match="BASEROW_TABLE_ID"):
            config.require("baserow.token", "baserow.table_id")

    def test_load_config_reads_environment(self, monkeypatch, tmp_path):
        path = tmp_path / "registry.yaml"
        path.write_text("baserow:\n  page_size: 10\n", encoding="utf-8")
        monkeypatch.setenv("GOOGLE_MAPS_API_KEY", "maps-key")
        config = load_config(path)
        assert config.places.api_key == "maps-key"
        assert config.baserow.page_size == 10
