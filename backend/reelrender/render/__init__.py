from reelrender.render.composition import Composition, build_composition
from reelrender.render.fallback_encoder import FallbackEncoder
from reelrender.render.pipeline import RenderInput, RenderOutcome, RenderPipeline
from reelrender.render.remotion_renderer import RemotionRenderer

__all__ = [
    "RenderPipeline",
    "RenderInput",
    "RenderOutcome",
    "Composition",
    "build_composition",
    "FallbackEncoder",
    "RemotionRenderer",
]
