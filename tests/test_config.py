"""Unit tests for configuration loading and validation."""

import pytest
import yaml

from fancycam.core.config import AppConfig, LiveSettings, load_config, parse_animation, parse_effect
from fancycam.core.contracts import BackgroundAnimation, BackgroundEffect, ResolutionTier
from fancycam.core.errors import ConfigError


def write_yaml(path, data):
    path.write_text(yaml.safe_dump(data))
    return path


class TestLoadConfig:

    def test_values_override_defaults(self, tmp_path):
        path = write_yaml(tmp_path / "settings.yaml", {
            "video": {"quality": "lo", "fps": 60},
            "effect": {"effect": "comic"},
        })
        config = load_config(path)

        assert config.video.tier is ResolutionTier.LO
        assert config.video.device_index == 0
        effect = config.initial_effect_config()
        assert effect.effect is BackgroundEffect.COMIC
        assert effect.animation is BackgroundAnimation.WATERFALL
        assert effect.fps60

    def test_missing_explicit_path_raises(self, tmp_path):
        with pytest.raises(ConfigError):
            load_config(tmp_path / "nope.yaml")

    def test_empty_file_gives_defaults(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("")
        assert load_config(path) == AppConfig()

    def test_non_mapping_raises(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("- a\n- b\n")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_unknown_key_raises(self, tmp_path):
        path = write_yaml(tmp_path / "settings.yaml", {"video": {"colour": "red"}})
        with pytest.raises(ConfigError):
            load_config(path)

    def test_bad_yaml_raises(self, tmp_path):
        path = tmp_path / "settings.yaml"
        path.write_text("video: [unclosed")
        with pytest.raises(ConfigError):
            load_config(path)

    def test_shipped_settings_file_is_valid(self, project_root):
        config = load_config(project_root / "config" / "settings.yaml")
        assert config.device.pool_allocation_threshold == 5


class TestValidation:

    @pytest.mark.parametrize("section,values", [
        ("effect", {"effect": "sepia"}),
        ("effect", {"animation": "volcano"}),
        ("video", {"quality": "ultra"}),
        ("video", {"fps": 25}),
        ("device", {"frame_rate": 120}),
        ("device", {"pool_allocation_threshold": 0}),
        ("device", {"sink_queue_capacity": 0}),
    ])
    def test_invalid_values(self, section, values):
        with pytest.raises(ConfigError):
            AppConfig.from_dict({section: values})

    def test_parse_helpers(self):
        assert parse_effect("depth_of_field") is BackgroundEffect.DEPTH_OF_FIELD
        assert parse_animation("storm") is BackgroundAnimation.STORM
        with pytest.raises(ConfigError):
            parse_effect("Desaturate")


class TestLiveSettings:

    def test_snapshot_tracks_changes(self):
        live = LiveSettings()
        live.effect = BackgroundEffect.BLOOM
        snapshot = live.snapshot()
        live.effect = BackgroundEffect.GLOOM
        assert snapshot.effect is BackgroundEffect.BLOOM

    def test_titles(self):
        assert BackgroundEffect.CMYK_HALFTONE.title == "CMYK Halftone"
        assert BackgroundAnimation.ISLAND.title == "Island Retreat"
