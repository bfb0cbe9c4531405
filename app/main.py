from __future__ import annotations

import logging
import math

from fastapi import Depends, FastAPI, HTTPException, Response, status
from fastapi.staticfiles import StaticFiles

from app.config import Settings, get_settings
from app.models.api import (
    OperationsResponse,
    QuotaResponse,
    RenderItemResponse,
    RenderRequest,
    RenderResponse,
)
from app.services.render_service import RenderService
from app.storage.repository import RenderItemRepository

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = FastAPI(title="veo-render-service")
app.mount(
    "/video-assets",
    StaticFiles(directory=get_settings().output_dir, check_dir=False),
    name="video-assets",
)

_repo = RenderItemRepository()
_service: RenderService | None = None


def get_render_service(settings: Settings = Depends(get_settings)) -> RenderService:
    global _service
    if _service is None:
        _service = RenderService(repo=_repo, settings=settings)
    return _service


@app.post("/renders/{item_id}", response_model=RenderResponse)
async def render_item(
    item_id: str,
    payload: RenderRequest,
    response: Response,
    service: RenderService = Depends(get_render_service),
) -> RenderResponse:
    outcome = await service.render_item(item_id, payload.manifest, payload.tier)
    response.status_code = outcome.http_status
    if outcome.poll_delay_ms:
        response.headers["Retry-After"] = str(math.ceil(outcome.poll_delay_ms / 1000))
    return RenderResponse(item_id=item_id, **outcome.model_dump())


@app.get("/renders/{item_id}", response_model=RenderItemResponse)
def get_render(item_id: str, service: RenderService = Depends(get_render_service)) -> RenderItemResponse:
    try:
        item = service.get_item(item_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return RenderItemResponse(item=item)


@app.delete("/renders/{item_id}", status_code=status.HTTP_204_NO_CONTENT)
def reset_render(item_id: str, service: RenderService = Depends(get_render_service)) -> Response:
    try:
        service.reset_item(item_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.get("/debug/veo/quota", response_model=QuotaResponse)
def quota_snapshot(service: RenderService = Depends(get_render_service)) -> QuotaResponse:
    return QuotaResponse(quota=service.quota_snapshot())


@app.get("/debug/veo/operations", response_model=OperationsResponse)
def operations_snapshot(service: RenderService = Depends(get_render_service)) -> OperationsResponse:
    return OperationsResponse(operations=service.operations_snapshot())
