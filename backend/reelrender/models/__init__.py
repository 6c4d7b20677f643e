from reelrender.models.render_job import RenderJob, RenderMode, RenderStatus

__all__ = [
    "RenderJob",
    "RenderMode",
    "RenderStatus",
]
