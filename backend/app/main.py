from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from app.config import settings
from app.logging_config import setup_logging
from app.middleware.exceptions import register_exception_handlers
from app.routers import (
    allocations,
    health,
    inventory,
    items,
    locations,
    logistics,
    projects,
    reconciliation,
    requirements,
)
from app.services.scheduler import lifespan

setup_logging()

app = FastAPI(
    title="FieldStock",
    description="Inventory ledger, allocation and dispatch service for field operations",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Exception Handlers ───────────────────────────────────────
register_exception_handlers(app)

# ── Middleware ───────────────────────────────────────────────
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.allowed_origins.split(","),
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ── Routers ──────────────────────────────────────────────────
app.include_router(health.router)
app.include_router(locations.router, prefix="/api/locations", tags=["locations"])
app.include_router(items.router, prefix="/api/items", tags=["items"])
app.include_router(inventory.router, prefix="/api/inventory", tags=["inventory"])
app.include_router(requirements.router, prefix="/api/requirements", tags=["requirements"])
app.include_router(allocations.router, prefix="/api", tags=["allocations"])
app.include_router(projects.router, prefix="/api/projects", tags=["projects"])
app.include_router(logistics.router, prefix="/api/logistics", tags=["logistics"])
app.include_router(reconciliation.router, prefix="/api/reconciliation", tags=["reconciliation"])
