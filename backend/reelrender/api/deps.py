from typing import Annotated

from fastapi import Depends

from reelrender.services.render_service import RenderService, get_render_service

RenderServiceDep = Annotated[RenderService, Depends(get_render_service)]
