"""Project readiness router.

Endpoints:
    GET /api/projects/{project_id}/readiness   Blocking-line coverage, computed on read
"""

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.auth.actor import Actor
from app.auth.deps import require_permission
from app.database import get_db
from app.schemas.requirements import ReadinessOut
from app.services.readiness import project_readiness

router = APIRouter()


@router.get("/{project_id}/readiness", response_model=ReadinessOut)
async def get_readiness(
    project_id: str,
    db: AsyncSession = Depends(get_db),
    _actor: Actor = Depends(require_permission("requirements.read")),
):
    readiness = await project_readiness(db, project_id)
    return readiness.as_dict()
