"""Tests for FrameProcessingPipeline: ordering, cancellation, fallback and animation."""

import asyncio

import numpy as np
import pytest

from fancycam.capture.buffer_pool import PixelBuffer, PixelBufferPool
from fancycam.core.contracts import (
    BackgroundAnimation,
    BackgroundEffect,
    ClientHandle,
    EffectConfig,
    StreamDirection,
    StreamFormat,
)
from fancycam.device.lifecycle import StreamLifecycleManager
from fancycam.device.relay import VirtualDeviceRelay
from fancycam.device.streams import SinkStream, SourceStream
from fancycam.pipeline.frame_pipeline import FrameProcessingPipeline
from fancycam.transforms.animation import AnimationState
from fancycam.transforms.compositor import EffectCompositor
from fancycam.transforms.effects import blur

from tests.conftest import EmptySegmenter, GatedSegmenter, RaisingSegmenter


def make_pipeline(segmenter, sink=None, animation=None, executor=None):
    return FrameProcessingPipeline(
        compositor=EffectCompositor(),
        segmenter=segmenter,
        frame_sink=sink,
        animation=animation,
        executor=executor,
    )


async def settle():
    """Let call_soon deliveries run."""
    await asyncio.sleep(0)
    await asyncio.sleep(0)


class TestPassThrough:

    @pytest.mark.asyncio
    async def test_none_effect_skips_segmentation(
        self, frame, pixel_buffer, circle_segmenter, recording_sink, executor
    ):
        pipeline = make_pipeline(circle_segmenter, recording_sink, executor=executor)

        result = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        await settle()

        assert np.array_equal(result, frame)
        assert circle_segmenter.calls == 0
        assert len(recording_sink.frames) == 1
        assert np.array_equal(pipeline.last_good_frame, frame)

    @pytest.mark.asyncio
    async def test_caller_keeps_buffer(self, frame, pixel_buffer, circle_segmenter, executor):
        pipeline = make_pipeline(circle_segmenter, executor=executor)
        task = pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        pixel_buffer.data[:] = 0

        assert np.array_equal(await task, frame)


class TestCompositing:

    @pytest.mark.asyncio
    async def test_idempotent(self, pixel_buffer, circle_segmenter, executor):
        pipeline = make_pipeline(circle_segmenter, executor=executor)
        config = EffectConfig(effect=BackgroundEffect.DESATURATE)

        first = await pipeline.submit(pixel_buffer, config)
        second = await pipeline.submit(pixel_buffer, config)

        assert first is not None
        assert np.array_equal(first, second)

    @pytest.mark.asyncio
    async def test_blur_confined_to_background(self, frame, pixel_buffer, circle_segmenter, executor):
        pipeline = make_pipeline(circle_segmenter, executor=executor)
        out = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.BLUR))

        h, w = frame.shape[:2]
        cy, cx = h // 2, w // 2
        blurred = blur(frame)
        assert np.array_equal(out[cy - 2:cy + 3, cx - 2:cx + 3], frame[cy - 2:cy + 3, cx - 2:cx + 3])
        assert np.array_equal(out[:4, :4], blurred[:4, :4])

    @pytest.mark.asyncio
    async def test_preprocess_background(self, frame, pixel_buffer, circle_segmenter, executor):
        pipeline = make_pipeline(circle_segmenter, executor=executor)
        config = EffectConfig(effect=BackgroundEffect.DESATURATE, preprocess_background=True)
        out = await pipeline.submit(pixel_buffer, config)

        assert out is not None
        assert out.shape == frame.shape

    @pytest.mark.asyncio
    async def test_every_effect_produces_a_frame(self, frame, pixel_buffer, circle_segmenter, executor):
        pipeline = make_pipeline(circle_segmenter, executor=executor)
        for effect in BackgroundEffect:
            out = await pipeline.submit(pixel_buffer, EffectConfig(effect=effect))
            assert out is not None, effect
            assert out.shape == frame.shape
        assert pipeline.stats.completed == len(BackgroundEffect)


class TestDropAndFallback:

    @pytest.mark.asyncio
    async def test_no_mask_keeps_last_good_frame(self, frame, pixel_buffer, recording_sink, executor):
        segmenter = EmptySegmenter()
        pipeline = make_pipeline(segmenter, recording_sink, executor=executor)

        good = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        await settle()
        result = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.BLUR))
        await settle()

        assert result is None
        assert segmenter.calls == 1
        assert pipeline.last_good_frame is good
        assert len(recording_sink.frames) == 1
        assert pipeline.stats.dropped == 1

    @pytest.mark.asyncio
    async def test_segmenter_exception_drops_frame(self, pixel_buffer, recording_sink, executor):
        segmenter = RaisingSegmenter()
        pipeline = make_pipeline(segmenter, recording_sink, executor=executor)

        good = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        await settle()
        result = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.GLOOM))
        await settle()

        assert result is None
        assert segmenter.calls == 1
        assert pipeline.last_good_frame is good
        assert len(recording_sink.frames) == 1
        assert pipeline.stats.dropped == 1
        assert pipeline.stats.cancelled == 0
        assert pipeline.active_task is None

        after = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        await settle()
        assert after is not None
        assert pipeline.last_good_frame is after

    @pytest.mark.asyncio
    async def test_reset_last_frame(self, pixel_buffer, circle_segmenter, executor):
        pipeline = make_pipeline(circle_segmenter, executor=executor)
        await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        pipeline.reset_last_frame()
        assert pipeline.last_good_frame is None

    @pytest.mark.asyncio
    async def test_sink_errors_are_contained(self, pixel_buffer, circle_segmenter, executor):
        def broken_sink(frame):
            raise RuntimeError("relay gone")

        pipeline = make_pipeline(circle_segmenter, broken_sink, executor=executor)
        out = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.NONE))
        await settle()
        assert out is not None


class TestCancellation:

    @pytest.mark.asyncio
    async def test_newer_frame_cancels_older(self, frame, recording_sink, executor):
        segmenter = GatedSegmenter()
        pipeline = make_pipeline(segmenter, recording_sink, executor=executor)
        config = EffectConfig(effect=BackgroundEffect.DESATURATE)

        first = pipeline.submit(PixelBuffer.from_bgr(frame), config)
        loop = asyncio.get_running_loop()
        assert await loop.run_in_executor(None, segmenter.entered.wait, 2.0)

        second_frame = np.ascontiguousarray(frame[::-1])
        second = pipeline.submit(PixelBuffer.from_bgr(second_frame), config)
        assert pipeline.active_task.token.is_cancelled is False
        segmenter.gate.set()

        first_result, second_result = await asyncio.gather(first, second)
        await settle()

        assert first_result is None
        assert second_result is not None
        assert len(recording_sink.frames) == 1
        assert pipeline.last_good_frame is second_result
        assert pipeline.stats.cancelled == 1
        assert pipeline.stats.completed == 1

    @pytest.mark.asyncio
    async def test_only_latest_of_a_burst_completes(self, frame, pixel_buffer, circle_segmenter,
                                                    recording_sink, executor):
        pipeline = make_pipeline(circle_segmenter, recording_sink, executor=executor)
        config = EffectConfig(effect=BackgroundEffect.GLOOM)

        tasks = [pipeline.submit(pixel_buffer, config) for _ in range(5)]
        results = await asyncio.gather(*tasks)
        await settle()

        assert all(r is None for r in results[:-1])
        assert results[-1] is not None
        assert pipeline.stats.cancelled == 4
        assert len(recording_sink.frames) == 1

    @pytest.mark.asyncio
    async def test_cancelled_task_does_not_advance_animation(
        self, pixel_buffer, circle_segmenter, animation_library, executor
    ):
        animation = AnimationState(animation_library)
        await animation.load(BackgroundAnimation.ISLAND)
        pipeline = make_pipeline(circle_segmenter, animation=animation, executor=executor)
        config = EffectConfig(effect=BackgroundEffect.ANIMATE)

        tasks = [pipeline.submit(pixel_buffer, config) for _ in range(3)]
        await asyncio.gather(*tasks)

        assert animation.index == 1


class TestAnimation:

    @pytest.mark.asyncio
    async def test_animated_background_and_60fps_delay(
        self, frame, pixel_buffer, circle_segmenter, animation_library, executor
    ):
        animation = AnimationState(animation_library)
        await animation.load(BackgroundAnimation.ISLAND)
        pipeline = make_pipeline(circle_segmenter, animation=animation, executor=executor)
        config = EffectConfig(
            effect=BackgroundEffect.ANIMATE, animation=BackgroundAnimation.ISLAND, fps60=True
        )

        out = await pipeline.submit(pixel_buffer, config)
        assert np.all(out[0, 0] == animation_library.load_frames(None).lo[0][0, 0])
        assert (animation.index, animation.delay_count) == (0, 1)

        await pipeline.submit(pixel_buffer, config)
        assert (animation.index, animation.delay_count) == (1, 0)

        out = await pipeline.submit(pixel_buffer, config)
        assert np.all(out[0, 0] == animation_library.load_frames(None).lo[1][0, 0])

    @pytest.mark.asyncio
    async def test_30fps_advances_every_frame(self, pixel_buffer, circle_segmenter, animation_library, executor):
        animation = AnimationState(animation_library)
        await animation.load(BackgroundAnimation.ISLAND)
        pipeline = make_pipeline(circle_segmenter, animation=animation, executor=executor)
        config = EffectConfig(effect=BackgroundEffect.ANIMATE)

        indices = []
        for _ in range(4):
            indices.append(animation.index)
            await pipeline.submit(pixel_buffer, config)
        assert indices == [0, 1, 2, 0]

    @pytest.mark.asyncio
    async def test_animate_without_frames_uses_live_image(
        self, frame, pixel_buffer, circle_segmenter, executor
    ):
        animation = AnimationState()
        pipeline = make_pipeline(circle_segmenter, animation=animation, executor=executor)
        out = await pipeline.submit(pixel_buffer, EffectConfig(effect=BackgroundEffect.ANIMATE))

        assert np.array_equal(out, frame)
        assert animation.index == 0


class TestPoolHammering:

    @pytest.mark.asyncio
    async def test_outstanding_never_exceeds_threshold(self, frame, circle_segmenter, executor):
        threshold = 3
        peak = []

        class WatchedPool(PixelBufferPool):
            def acquire(self):
                buffer = super().acquire()
                peak.append(self.outstanding)
                return buffer

        h, w = frame.shape[:2]
        fmt = StreamFormat(w, h, 60)
        pool = WatchedPool(w, h, allocation_threshold=threshold)
        source = SourceStream("src", "source", fmt)
        sink = SinkStream("snk", "sink", fmt, queue_capacity=2)
        relay = VirtualDeviceRelay(source, sink, pool, frame_rate=60)

        received = []
        source.add_consumer(lambda sample: received.append(sample.sequence_number))
        source_life = StreamLifecycleManager(
            StreamDirection.SOURCE, relay.source_started, relay.source_stopped
        )
        sink_life = StreamLifecycleManager(
            StreamDirection.SINK, relay.sink_started, relay.sink_stopped
        )
        sink_life.authorized_to_start_stream(ClientHandle("hammer"))
        source_life.start_stream()
        sink_life.start_stream()

        pipeline = make_pipeline(circle_segmenter, relay.enqueue, executor=executor)
        configs = [
            EffectConfig(effect=BackgroundEffect.NONE),
            EffectConfig(effect=BackgroundEffect.DESATURATE),
        ]
        for i in range(60):
            pipeline.submit(PixelBuffer.from_bgr(frame), configs[i % 2])
            if i % 3 == 0:
                await asyncio.sleep(0)
            assert pool.outstanding <= threshold
        await pipeline.drain()
        await asyncio.sleep(0.05)

        sink_life.stop_stream()
        source_life.stop_stream()
        await relay.aclose()

        assert max(peak) <= threshold
        assert pool.outstanding == 0
        assert received == sorted(received)
        assert pipeline.stats.submitted == 60
        assert pipeline.stats.completed + pipeline.stats.cancelled + pipeline.stats.dropped == 60
