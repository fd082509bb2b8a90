"""Logistics run dispatch router.

Endpoints:
    POST /api/logistics/runs        Get-or-create the run for a context's live allocations
                                    (201 when created, 200 when an identical run exists)
    GET  /api/logistics/runs/{id}   Run with its stops
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.middleware.exceptions import ResourceNotFoundError
from app.models.logistics_run import LogisticsRun
from app.schemas.logistics import RunDispatchOut, RunDispatchRequest, RunOut
from app.services.dispatcher import dispatch_run_for_context

router = APIRouter()


@router.post("/runs", response_model=RunDispatchOut, status_code=status.HTTP_201_CREATED)
async def dispatch_run(
    body: RunDispatchRequest,
    response: Response,
    db: AsyncSession = Depends(get_db),
    actor: Actor = Depends(require_permission("logistics.write")),
):
    run, created = await dispatch_run_for_context(db, actor, **body.model_dump())
    if not created:
        response.status_code = status.HTTP_200_OK
    return RunDispatchOut(created=created, run=RunOut.model_validate(run))


@router.get("/runs/{run_id}", response_model=RunOut)
async def get_run(
    run_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("logistics.read")),
):
    run = await db.get(LogisticsRun, run_id)
    if run is None:
        raise ResourceNotFoundError("Logistics run", run_id)
    return run
