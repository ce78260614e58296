"""Tests for the YAML configuration loader."""
from pathlib import Path

import pytest
import yaml

from tanda_planner.config_loader import Config

EXAMPLE = Path(__file__).resolve().parents[2] / "config.example.yaml"


def _write(tmp_path, data):
    path = tmp_path / "config.yaml"
    path.write_text(yaml.safe_dump(data), encoding="utf-8")
    return str(path)


@pytest.fixture(autouse=True)
def no_env_key(monkeypatch):
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)


class TestDefaults:
    """Empty and example configs."""

    def test_empty_file_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        config = Config(str(path))

        assert config.minutes == 180
        assert config.pattern == ["Tango", "Tango", "Vals", "Tango", "Tango", "Milonga"]
        assert config.sizes == {"Tango": 4, "Vals": 3, "Milonga": 3}
        assert config.filler_seconds == 60
        assert config.overshoot_seconds == 30
        assert config.random_seed is None
        assert config.openai_model == "gpt-4o-mini"
        assert config.log_level == "INFO"

    def test_example_config_loads(self):
        config = Config(str(EXAMPLE))
        assert config.oracle_candidate_limit == 80
        assert "jazz" in config.filler_genres
        with pytest.raises(ValueError, match="api_key"):
            config.require_api_key()


class TestValues:
    """Values, overrides and validation."""

    def test_sizes_merge_over_defaults(self, tmp_path):
        config = Config(_write(tmp_path, {"planning": {"sizes": {"Vals": "4"}, "random_seed": 7}}))
        assert config.sizes == {"Tango": 4, "Vals": 4, "Milonga": 3}
        assert config.random_seed == 7

    def test_env_key_overrides_file(self, tmp_path, monkeypatch):
        config = Config(_write(tmp_path, {"openai": {"api_key": "sk-fromfile123456"}}))
        assert config.require_api_key() == "sk-fromfile123456"
        monkeypatch.setenv("OPENAI_API_KEY", "sk-fromenv1234567")
        assert config.require_api_key() == "sk-fromenv1234567"

    def test_get_missing_section(self, tmp_path):
        config = Config(_write(tmp_path, {"logging": None}))
        assert config.get("logging", "level", "WARNING") == "WARNING"
        assert config.get("nowhere", "key") is None

    def test_unknown_style_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="Unknown style"):
            Config(_write(tmp_path, {"planning": {"pattern": ["Tango", "Foxtrot"]}}))

    def test_non_positive_minutes_rejected(self, tmp_path):
        with pytest.raises(ValueError, match="minutes"):
            Config(_write(tmp_path, {"planning": {"minutes": 0}}))

    def test_section_must_be_mapping(self, tmp_path):
        with pytest.raises(ValueError, match="planning"):
            Config(_write(tmp_path, {"planning": ["Tango"]}))

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            Config(str(tmp_path / "absent.yaml"))

    def test_repr_hides_key(self, tmp_path):
        config = Config(_write(tmp_path, {"openai": {"api_key": "sk-secretsecret123"}}))
        assert "secretsecret123" not in repr(config)
