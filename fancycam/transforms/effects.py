"""
Background effects.

Each effect takes a BGR uint8 frame and returns a new BGR uint8 frame
of the same shape. Effects are deterministic: the same input always
renders the same output.

To add a new effect:
1. Write a function taking and returning a BGR frame
2. Add a BackgroundEffect member for it
3. Register it in EFFECTS below
"""

from __future__ import annotations

from functools import lru_cache
from typing import Callable, Dict, Tuple

import cv2
import numpy as np
from numpy.typing import NDArray

from fancycam.core.contracts import BackgroundEffect


EffectFn = Callable[[NDArray[np.uint8]], NDArray[np.uint8]]

BLUR_SIGMA = 10.0
VIGNETTE_INTENSITY = 0.6
HALFTONE_CELL = 6
CRYSTAL_RADIUS = 20


# ============================================================
# CACHED GEOMETRY
# ============================================================

def _frozen(array: np.ndarray) -> np.ndarray:
    array.setflags(write=False)
    return array


@lru_cache(maxsize=4)
def _vignette_map(shape: Tuple[int, int]) -> NDArray[np.float32]:
    h, w = shape
    ys = np.linspace(-1.0, 1.0, h, dtype=np.float32)[:, None]
    xs = np.linspace(-1.0, 1.0, w, dtype=np.float32)[None, :]
    r2 = (xs * xs + ys * ys) / 2.0
    return _frozen((1.0 - VIGNETTE_INTENSITY * r2)[:, :, None].astype(np.float32))


@lru_cache(maxsize=4)
def _focus_band(shape: Tuple[int, int]) -> NDArray[np.float32]:
    """Sharpness weight: 1 in the middle third, fading to 0 toward top and bottom."""
    h, w = shape
    y = np.linspace(0.0, 1.0, h, dtype=np.float32)
    weight = np.clip(1.0 - (np.abs(y - 0.5) - 0.15) / 0.2, 0.0, 1.0)
    return _frozen(np.repeat(weight[:, None], w, axis=1)[:, :, None])


@lru_cache(maxsize=4)
def _halftone_distance(shape: Tuple[int, int], cell: int) -> NDArray[np.float32]:
    """Distance of each pixel from its cell centre, in cell units."""
    h, w = shape
    yy = (np.arange(h, dtype=np.float32) % cell + 0.5) / cell - 0.5
    xx = (np.arange(w, dtype=np.float32) % cell + 0.5) / cell - 0.5
    return _frozen(np.sqrt(yy[:, None] ** 2 + xx[None, :] ** 2))


@lru_cache(maxsize=4)
def _crystal_cells(shape: Tuple[int, int], radius: int) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Voronoi cells over a jittered grid of seeds (fixed seed, so repeatable)."""
    h, w = shape
    rng = np.random.default_rng(0)
    gy, gx = np.mgrid[radius // 2:h:radius, radius // 2:w:radius]
    jitter = rng.integers(-radius // 2, radius // 2 + 1, size=(2,) + gy.shape)
    ys = np.clip(gy + jitter[0], 0, h - 1).ravel()
    xs = np.clip(gx + jitter[1], 0, w - 1).ravel()

    seeds = np.ones((h, w), dtype=np.uint8)
    seeds[ys, xs] = 0
    _, labels = cv2.distanceTransformWithLabels(
        seeds, cv2.DIST_L2, 5, labelType=cv2.DIST_LABEL_PIXEL
    )
    # Labels number the seed pixels in raster order
    seed_y, seed_x = np.nonzero(seeds == 0)
    return _frozen(labels - 1), _frozen(seed_y), _frozen(seed_x)


# ============================================================
# EFFECTS
# ============================================================

def identity(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    return frame


def desaturate(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    gray = cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY)
    return cv2.cvtColor(gray, cv2.COLOR_GRAY2BGR)


def vignette(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    shade = _vignette_map(frame.shape[:2])
    return np.clip(frame.astype(np.float32) * shade, 0, 255).astype(np.uint8)


def blur(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    return vignette(cv2.GaussianBlur(frame, (0, 0), BLUR_SIGMA))


def depth_of_field(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Sharp horizontal band in the middle, blurred above and below, then vignette."""
    blurred = cv2.GaussianBlur(frame, (0, 0), BLUR_SIGMA * 0.6)
    weight = _focus_band(frame.shape[:2])
    mixed = frame.astype(np.float32) * weight + blurred.astype(np.float32) * (1.0 - weight)
    return vignette(np.clip(mixed, 0, 255).astype(np.uint8))


def bloom(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    halo = cv2.GaussianBlur(frame, (0, 0), BLUR_SIGMA)
    return cv2.addWeighted(frame, 0.8, halo, 0.5, 0)


def gloom(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    halo = cv2.GaussianBlur(frame, (0, 0), BLUR_SIGMA)
    return cv2.addWeighted(frame, 0.5, cv2.min(frame, halo), 0.5, 0)


def comic(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Flattened colours with dark ink outlines."""
    gray = cv2.medianBlur(cv2.cvtColor(frame, cv2.COLOR_BGR2GRAY), 7)
    edges = cv2.adaptiveThreshold(
        gray, 255, cv2.ADAPTIVE_THRESH_MEAN_C, cv2.THRESH_BINARY, 9, 2
    )
    color = cv2.bilateralFilter(frame, 9, 75, 75)
    color = (color // 64) * 64 + 32
    return cv2.bitwise_and(color, color, mask=edges)


def crystallise(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    labels, seed_y, seed_x = _crystal_cells(frame.shape[:2], CRYSTAL_RADIUS)
    palette = frame[seed_y, seed_x]
    return palette[labels]


def cmyk_halftone(frame: NDArray[np.uint8]) -> NDArray[np.uint8]:
    """Four-ink halftone on a square dot grid."""
    h, w = frame.shape[:2]
    cell = HALFTONE_CELL
    rgb = frame[:, :, ::-1].astype(np.float32) / 255.0

    k = 1.0 - rgb.max(axis=2)
    denom = np.maximum(1.0 - k, 1e-6)
    inks = [(1.0 - rgb[:, :, i] - k) / denom for i in range(3)] + [k]

    pad_h = (-h) % cell
    pad_w = (-w) % cell
    distance = _halftone_distance((h, w), cell)

    paper = np.ones((h, w, 3), dtype=np.float32)
    for index, ink in enumerate(inks):
        padded = np.pad(ink, ((0, pad_h), (0, pad_w)), mode="edge")
        cells = padded.reshape(padded.shape[0] // cell, cell, padded.shape[1] // cell, cell)
        coverage = cells.mean(axis=(1, 3))
        coverage = np.repeat(np.repeat(coverage, cell, axis=0), cell, axis=1)[:h, :w]
        dots = distance <= np.sqrt(np.clip(coverage, 0.0, 1.0) / np.pi)
        if index == 3:
            paper[dots] = 0.0
        else:
            # Cyan absorbs red, magenta green, yellow blue
            paper[:, :, index][dots] = 0.0

    return (paper[:, :, ::-1] * 255.0).astype(np.uint8)


# Registry of available effects
EFFECTS: Dict[BackgroundEffect, EffectFn] = {
    BackgroundEffect.DESATURATE: desaturate,
    BackgroundEffect.CMYK_HALFTONE: cmyk_halftone,
    BackgroundEffect.COMIC: comic,
    BackgroundEffect.BLOOM: bloom,
    BackgroundEffect.GLOOM: gloom,
    BackgroundEffect.CRYSTALLISE: crystallise,
    BackgroundEffect.DEPTH_OF_FIELD: depth_of_field,
    BackgroundEffect.BLUR: blur,
    BackgroundEffect.ANIMATE: identity,
    BackgroundEffect.NONE: identity,
}


def get_effect(effect: BackgroundEffect) -> EffectFn:
    """Get an effect function.

    Raises:
        ValueError: If the effect is not registered
    """
    if effect not in EFFECTS:
        available = ", ".join(e.value for e in EFFECTS)
        raise ValueError(f"Unknown effect '{effect}'. Available: {available}")
    return EFFECTS[effect]


def list_effects() -> list:
    """List available effects."""
    return list(EFFECTS.keys())
