"""Project readiness — are the blocking requirement lines covered?

Computed from current requirement and allocation rows on every call and
never stored. Removed lines are ignored; released allocations do not
count towards anything.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models.allocation import StockAllocation
from app.models.requirement import RequirementLine


@dataclass
class ProjectReadiness:
    project_id: str
    total_lines: int = 0
    blocking_lines: int = 0
    total_required: int = 0
    total_allocated: int = 0
    blocking_missing: int = 0

    @property
    def is_ready(self) -> bool:
        return self.blocking_missing == 0

    def as_dict(self) -> dict:
        return {**asdict(self), "is_ready": self.is_ready}


async def project_readiness(db: AsyncSession, project_id: str) -> ProjectReadiness:
    allocated_by_line = (
        select(
            StockAllocation.requirement_id.label("requirement_id"),
            func.sum(StockAllocation.qty_allocated).label("allocated"),
        )
        .where(StockAllocation.status != "released")
        .group_by(StockAllocation.requirement_id)
        .subquery()
    )
    result = await db.execute(
        select(
            RequirementLine.qty_required,
            RequirementLine.is_blocking,
            func.coalesce(allocated_by_line.c.allocated, 0),
        )
        .outerjoin(
            allocated_by_line,
            allocated_by_line.c.requirement_id == RequirementLine.id,
        )
        .where(
            RequirementLine.project_id == project_id,
            RequirementLine.status == "active",
        )
    )

    readiness = ProjectReadiness(project_id=project_id)
    for qty_required, is_blocking, allocated in result.all():
        allocated = int(allocated or 0)
        readiness.total_lines += 1
        readiness.total_required += qty_required
        readiness.total_allocated += allocated
        if is_blocking:
            readiness.blocking_lines += 1
            if allocated < qty_required:
                readiness.blocking_missing += 1
    return readiness
