"""
Configuration for FancyCam.

Settings are read from a YAML file (config/settings.yaml by default)
and can be overridden from the command line in main.py.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from loguru import logger

from fancycam.core.contracts import (
    BackgroundAnimation,
    BackgroundEffect,
    EffectConfig,
    FrameRateTier,
    POOL_ALLOCATION_THRESHOLD,
    ResolutionTier,
)
from fancycam.core.errors import ConfigError


DEFAULT_CONFIG_PATH = Path(__file__).resolve().parents[2] / "config" / "settings.yaml"


@dataclass
class VideoSettings:
    """Physical camera capture settings."""
    device_index: int = 0
    quality: str = "hi"  # hi = 1920x1080, lo = 1280x720
    fps: int = 30

    @property
    def tier(self) -> ResolutionTier:
        return ResolutionTier.HI if self.quality == "hi" else ResolutionTier.LO


@dataclass
class EffectSettings:
    """Initial effect selection."""
    effect: str = BackgroundEffect.DESATURATE.value
    animation: str = BackgroundAnimation.WATERFALL.value
    preprocess_background: bool = False


@dataclass
class DeviceSettings:
    """Virtual device settings."""
    frame_rate: int = 60
    mirror: bool = False
    pool_allocation_threshold: int = POOL_ALLOCATION_THRESHOLD
    sink_queue_capacity: int = 2
    sink_buffers_required_for_startup: int = 1


@dataclass
class AssetSettings:
    gif_dir: str = "assets"


@dataclass
class LoggingSettings:
    level: str = "INFO"
    file: Optional[str] = None


@dataclass
class AppConfig:
    """Top-level application configuration."""
    video: VideoSettings = field(default_factory=VideoSettings)
    effect: EffectSettings = field(default_factory=EffectSettings)
    device: DeviceSettings = field(default_factory=DeviceSettings)
    assets: AssetSettings = field(default_factory=AssetSettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """
        Check every enumerated value.

        Raises:
            ConfigError: On the first invalid value
        """
        parse_effect(self.effect.effect)
        parse_animation(self.effect.animation)
        if self.video.quality not in ("hi", "lo"):
            raise ConfigError(f"Unknown quality tier '{self.video.quality}' (expected hi or lo)")
        if self.video.fps not in [tier.value for tier in FrameRateTier]:
            raise ConfigError(f"Unsupported capture rate {self.video.fps} (expected 30 or 60)")
        if not 30 <= self.device.frame_rate <= 60:
            raise ConfigError(f"Device frame rate {self.device.frame_rate} outside 30-60")
        if self.device.pool_allocation_threshold < 1:
            raise ConfigError("Pool allocation threshold must be at least 1")
        if self.device.sink_queue_capacity < 1:
            raise ConfigError("Sink queue capacity must be at least 1")

    def initial_effect_config(self) -> EffectConfig:
        return EffectConfig(
            effect=parse_effect(self.effect.effect),
            animation=parse_animation(self.effect.animation),
            preprocess_background=self.effect.preprocess_background,
            fps60=self.video.fps == FrameRateTier.FPS60.value,
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> AppConfig:
        """Build a config from a parsed YAML mapping; missing keys keep defaults."""
        try:
            return cls(
                video=VideoSettings(**data.get("video", {})),
                effect=EffectSettings(**data.get("effect", {})),
                device=DeviceSettings(**data.get("device", {})),
                assets=AssetSettings(**data.get("assets", {})),
                logging=LoggingSettings(**data.get("logging", {})),
            )
        except TypeError as e:
            raise ConfigError(f"Invalid configuration key: {e}") from e


def load_config(config_path: Optional[Union[str, Path]] = None) -> AppConfig:
    """
    Load configuration from file.

    Args:
        config_path: YAML file to read; falls back to the default location

    Returns:
        AppConfig with file values applied over defaults

    Raises:
        ConfigError: If the file cannot be parsed or holds invalid values
    """
    path = Path(config_path) if config_path else DEFAULT_CONFIG_PATH
    if not path.exists():
        if config_path:
            raise ConfigError(f"Config file not found: {path}")
        logger.info("No config file found, using defaults")
        return AppConfig()

    try:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigError(f"Cannot parse {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"{path} must contain a mapping")

    logger.info(f"Loaded configuration from {path}")
    return AppConfig.from_dict(data)


def parse_effect(name: str) -> BackgroundEffect:
    try:
        return BackgroundEffect(name)
    except ValueError:
        available = ", ".join(e.value for e in BackgroundEffect)
        raise ConfigError(f"Unknown effect '{name}'. Available: {available}") from None


def parse_animation(name: str) -> BackgroundAnimation:
    try:
        return BackgroundAnimation(name)
    except ValueError:
        available = ", ".join(a.value for a in BackgroundAnimation)
        raise ConfigError(f"Unknown animation '{name}'. Available: {available}") from None


class LiveSettings:
    """
    Mutable effect settings changed while frames are flowing.

    Frame tasks never read these directly; they take a snapshot().
    """

    def __init__(self, initial: Optional[EffectConfig] = None):
        initial = initial or EffectConfig()
        self.effect = initial.effect
        self.animation = initial.animation
        self.preprocess_background = initial.preprocess_background
        self.fps60 = initial.fps60

    def snapshot(self) -> EffectConfig:
        return EffectConfig(
            effect=self.effect,
            animation=self.animation,
            preprocess_background=self.preprocess_background,
            fps60=self.fps60,
        )
