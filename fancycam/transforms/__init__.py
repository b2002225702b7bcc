"""
Transforms module.

Responsibilities:
- Background effects registry
- Mask-driven compositing
- Animated background frames
"""

from .effects import EFFECTS, get_effect, list_effects
from .compositor import EffectCompositor
from .animation import AnimationLibrary, AnimationState, GifAnimationLibrary
