#!/usr/bin/env python3
"""
FancyCam - virtual camera with background effects.

Main entry point: captures the physical camera, composites the selected
background effect and publishes the result as the "Fancy Camera" device.

Usage:
    python main.py [--config CONFIG_PATH] [--device DEVICE_INDEX]
                   [--effect EFFECT] [--animation ANIMATION]
                   [--quality hi|lo] [--fps 30|60] [--mirror]
                   [--virtualcam]

Effects:
    desaturate, cmyk_halftone, comic, bloom, gloom, crystallise,
    depth_of_field, blur, animate, none

Animations (with --effect animate):
    rainforest, waterfall, island, storm
"""

from __future__ import annotations

import argparse
import asyncio
import signal
import sys
import time
from pathlib import Path
from typing import Optional

from loguru import logger

from fancycam.capture.video_capture import VideoCapture
from fancycam.core.config import AppConfig, LiveSettings, load_config
from fancycam.core.errors import ConfigError, DeviceSetupError
from fancycam.device.context import DeviceContext
from fancycam.device.outputs import VirtualCamOutput
from fancycam.pipeline.frame_pipeline import FrameProcessingPipeline
from fancycam.pipeline.session import CameraSession
from fancycam.segmentation.mask_processor import MaskProcessor
from fancycam.segmentation.segmenter import MediaPipeSegmenter
from fancycam.transforms.animation import AnimationState, GifAnimationLibrary
from fancycam.transforms.compositor import EffectCompositor


STATS_INTERVAL_S = 5.0


# ============================================================
# LOGGING CONFIGURATION
# ============================================================

def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None):
    """Configure logging."""
    logger.remove()  # Remove default handler

    # Console output with colors
    logger.add(
        sys.stderr,
        level=log_level,
        format="<green>{time:HH:mm:ss.SSS}</green> | <level>{level: <8}</level> | <cyan>{module}</cyan>:<cyan>{line}</cyan> | <level>{message}</level>",
        colorize=True,
    )

    # File output
    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            level="DEBUG",
            format="{time:YYYY-MM-DD HH:mm:ss.SSS} | {level: <8} | {module}:{line} | {message}",
            rotation="10 MB",
            retention="7 days",
        )


# ============================================================
# MAIN APPLICATION
# ============================================================

class FancyCamApp:
    """Wires capture, session, pipeline and virtual device together."""

    def __init__(self, config: AppConfig, virtualcam: bool = False):
        self.config = config
        self.virtualcam = virtualcam

        # Built in run(), on the event loop
        self.context: Optional[DeviceContext] = None
        self.pipeline: Optional[FrameProcessingPipeline] = None
        self.session: Optional[CameraSession] = None
        self.capture: Optional[VideoCapture] = None
        self.output: Optional[VirtualCamOutput] = None

        self._stop = asyncio.Event()

    def request_stop(self) -> None:
        logger.info("Shutdown requested")
        self._stop.set()

    async def run(self) -> int:
        """
        Run until interrupted.

        Returns:
            Process exit code
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            try:
                loop.add_signal_handler(sig, self.request_stop)
            except NotImplementedError:
                # Windows: rely on KeyboardInterrupt
                pass

        self.context = DeviceContext.create(self.config)

        segmenter = MediaPipeSegmenter()
        if not segmenter.initialize():
            logger.warning("Segmentation unavailable; only the 'none' effect will produce frames")

        animation = AnimationState(GifAnimationLibrary(self.config.assets.gif_dir))
        self.pipeline = FrameProcessingPipeline(
            compositor=EffectCompositor(MaskProcessor()),
            segmenter=segmenter,
            frame_sink=self.context.relay.enqueue,
            animation=animation,
        )
        self.session = CameraSession(
            self.pipeline, animation, LiveSettings(self.config.initial_effect_config())
        )
        await self.session.start()

        if self.virtualcam:
            fmt = self.context.stream_format
            self.output = VirtualCamOutput(fmt.width, fmt.height, fmt.frame_rate)
            if self.output.start():
                self.context.source.add_consumer(self.output)

        if not self.context.connect_local_client():
            logger.error("Could not start the sink stream")
            await self._shutdown(segmenter)
            return 1

        self.capture = VideoCapture(
            device_index=self.config.video.device_index,
            tier=self.config.video.tier,
            fps=self.config.video.fps,
        )
        self.capture.set_delegate(self.session.on_captured, loop)
        if not self.capture.start():
            logger.error(f"Camera unavailable: {self.capture.error}")
            await self._shutdown(segmenter)
            return 1

        logger.info("FancyCam running - press Ctrl+C to quit")
        stats_task = loop.create_task(self._report_stats(segmenter))
        try:
            await self._stop.wait()
        finally:
            stats_task.cancel()
            await self._shutdown(segmenter)
        return 0

    async def _report_stats(self, segmenter: MediaPipeSegmenter) -> None:
        start_time = time.time()
        while True:
            await asyncio.sleep(STATS_INTERVAL_S)
            stats = self.pipeline.stats
            relay = self.context.relay.stats
            elapsed = time.time() - start_time
            logger.info(
                f"capture {self.capture.actual_fps:.1f}fps | "
                f"frames {stats.completed}/{stats.submitted} "
                f"(dropped {stats.dropped}, cancelled {stats.cancelled}) | "
                f"latency {stats.mean_latency_ms:.1f}ms "
                f"(segment {segmenter.mean_inference_ms:.1f}ms) | "
                f"forwarded {relay.forwarded} in {elapsed:.0f}s"
            )

    async def _shutdown(self, segmenter: MediaPipeSegmenter) -> None:
        if self.capture is not None:
            await asyncio.to_thread(self.capture.stop)
        if self.pipeline is not None:
            await self.pipeline.shutdown()
        if self.context is not None:
            await self.context.aclose()
        if self.output is not None:
            self.output.stop()
        segmenter.shutdown()
        logger.info("FancyCam stopped")


# ============================================================
# ENTRY POINT
# ============================================================

def apply_overrides(config: AppConfig, args: argparse.Namespace) -> AppConfig:
    """Apply command-line overrides on top of the file configuration."""
    if args.device is not None:
        config.video.device_index = args.device
    if args.quality is not None:
        config.video.quality = args.quality
    if args.fps is not None:
        config.video.fps = args.fps
    if args.effect is not None:
        config.effect.effect = args.effect
    if args.animation is not None:
        config.effect.animation = args.animation
    if args.preprocess:
        config.effect.preprocess_background = True
    if args.mirror:
        config.device.mirror = True
    if args.log_level is not None:
        config.logging.level = args.log_level
    if args.log_file is not None:
        config.logging.file = args.log_file
    config.validate()
    return config


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="FancyCam virtual camera",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument(
        "--config", "-c",
        type=str,
        default=None,
        help="Path to configuration file",
    )

    parser.add_argument(
        "--device", "-d",
        type=int,
        default=None,
        help="Video device index (default: from config, else 0)",
    )

    parser.add_argument("--effect", "-e", type=str, default=None, help="Background effect")
    parser.add_argument("--animation", "-a", type=str, default=None, help="Background animation")
    parser.add_argument("--quality", choices=["hi", "lo"], default=None, help="Resolution tier")
    parser.add_argument("--fps", type=int, choices=[30, 60], default=None, help="Capture rate")
    parser.add_argument("--preprocess", action="store_true", help="Cut the subject out of the background first")
    parser.add_argument("--mirror", action="store_true", help="Mirror the published frames")
    parser.add_argument("--virtualcam", action="store_true", help="Also publish through pyvirtualcam")

    parser.add_argument(
        "--log-level",
        type=str,
        default=None,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: from config, else INFO)",
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (default: from config, else no file)",
    )
    return parser


def main():
    """Main entry point."""
    args = build_parser().parse_args()

    setup_logging(args.log_level or "INFO")
    try:
        config = apply_overrides(load_config(args.config), args)
    except ConfigError as e:
        logger.critical(f"Configuration error: {e}")
        sys.exit(1)

    setup_logging(config.logging.level, config.logging.file)

    app = FancyCamApp(config, virtualcam=args.virtualcam)
    try:
        code = asyncio.run(app.run())
    except DeviceSetupError as e:
        logger.critical(f"Device setup failed: {e}")
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        code = 0
    sys.exit(code)


if __name__ == "__main__":
    main()
