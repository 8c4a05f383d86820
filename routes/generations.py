"""
Generation Routes
=================
Same endpoint family for every tool (sora2, veo3, lipsync, infinitetalk,
avatar):

- POST   /{tool}/generate   debit, create the record, submit to the provider
- GET    /{tool}/status     one generation (?id=) or the 20 most recent
- DELETE /{tool}/delete     delete a finished generation (?id=)
- POST   /{tool}/process    reconcile the caller's in-flight generations
- POST   /{tool}/cleanup    refund the caller's never-dispatched generations
- POST   /{tool}/link-task  attach a provider task id obtained client-side
- POST   /{tool}/cron       reconcile + sweep every account (CRON_SECRET)
"""

from typing import Any, Dict, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, Request, Response
from pydantic import ValidationError

from config.settings import get_settings
from dependencies import (
    get_generation_service,
    get_generation_store,
    get_lifecycle,
    get_poller,
    get_sweeper,
)
from errors import Unauthorized
from models import GENERATE_REQUEST_MODELS, TOOL_NAMES, LinkTaskRequest
from services.audit_log import request_metadata
from services.generation_service import GenerationService
from services.generation_store import GenerationStore
from services.lifecycle import GenerationLifecycle
from services.orphan_sweeper import OrphanSweeper
from services.reconciliation import ReconciliationPoller
from utils.rate_limit import rate_limit


router = APIRouter(tags=["generations"])


def valid_tool(tool: str) -> str:
    if tool not in TOOL_NAMES:
        raise HTTPException(status_code=404, detail=f"Unknown tool: {tool}")
    return tool


def _validation_message(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        field = ".".join(str(p) for p in err.get("loc", ()))
        parts.append(f"{field}: {err.get('msg')}" if field else err.get("msg", "invalid"))
    return "; ".join(parts)


@router.post("/{tool}/generate")
async def generate(
    request: Request,
    response: Response,
    tool: str = Depends(valid_tool),
    payload: Dict[str, Any] = Body(...),
    user_id: str = Depends(rate_limit("generation")),
    service: GenerationService = Depends(get_generation_service),
):
    try:
        req = GENERATE_REQUEST_MODELS[tool].model_validate(payload)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=_validation_message(e))

    print(f"🎬 {tool} generation requested by {user_id}")
    generation = await service.start_generation(user_id, tool, req, request_metadata(request))

    if generation.status == "pending":
        # Accepted, but the provider submission is still unresolved
        response.status_code = 202

    return {
        "success": generation.status != "failed",
        "generation_id": generation.id,
        "task_id": generation.task_id,
        "status": generation.status,
        "credits_used": generation.credits_used,
        "result_url": generation.result_url,
    }


@router.get("/{tool}/status")
async def get_status(
    tool: str = Depends(valid_tool),
    id: Optional[str] = None,
    user_id: str = Depends(rate_limit("status")),
    store: GenerationStore = Depends(get_generation_store),
):
    if id:
        generation = await store.get(id, user_id, tool)
        return {"success": True, "generation": generation.detail()}

    generations = await store.list_for_account(user_id, tool)
    return {"success": True, "generations": [g.summary() for g in generations]}


@router.delete("/{tool}/delete")
async def delete_generation(
    id: str,
    tool: str = Depends(valid_tool),
    user_id: str = Depends(rate_limit("general")),
    lifecycle: GenerationLifecycle = Depends(get_lifecycle),
):
    await lifecycle.delete(id, user_id, tool)
    return {"success": True}


@router.post("/{tool}/process")
async def process_generations(
    tool: str = Depends(valid_tool),
    user_id: str = Depends(rate_limit("status")),
    poller: ReconciliationPoller = Depends(get_poller),
):
    report = await poller.process(user_id, tool)
    return report.to_dict()


@router.post("/{tool}/cleanup")
async def cleanup_generations(
    tool: str = Depends(valid_tool),
    user_id: str = Depends(rate_limit("general")),
    sweeper: OrphanSweeper = Depends(get_sweeper),
):
    report = await sweeper.sweep(user_id, tool)
    return report.to_dict()


@router.post("/{tool}/link-task")
async def link_task(
    req: LinkTaskRequest,
    tool: str = Depends(valid_tool),
    user_id: str = Depends(rate_limit("general")),
    service: GenerationService = Depends(get_generation_service),
):
    if not req.generation_id or not req.task_id:
        raise HTTPException(status_code=400, detail="generation_id and task_id are required")

    generation = await service.link_task(user_id, req.generation_id, req.task_id, tool)
    return {"success": True, "generation": generation.detail()}


@router.post("/{tool}/cron")
async def cron(
    request: Request,
    tool: str = Depends(valid_tool),
    poller: ReconciliationPoller = Depends(get_poller),
    sweeper: OrphanSweeper = Depends(get_sweeper),
):
    """Scheduled reconciliation across every account, authorised by CRON_SECRET."""
    settings = get_settings()
    auth_header = request.headers.get("Authorization", "")
    if not settings.CRON_SECRET or auth_header != f"Bearer {settings.CRON_SECRET}":
        raise Unauthorized("Invalid cron secret")

    print(f"⏳ Cron run for {tool}")
    report = await poller.process(None, tool, settings.CRON_BATCH_SIZE, fail_stale=True)
    sweep = await sweeper.sweep(None, tool)

    return {
        "success": True,
        "processed": report.to_dict(),
        "orphans": sweep.to_dict(),
    }
