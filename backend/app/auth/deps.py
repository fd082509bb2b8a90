"""FastAPI dependencies for authentication and authorization.

Dependencies:
  get_current_actor       → decode JWT, return Actor
  require_permission(...) → restrict to specific granular permissions
"""

from fastapi import Depends, HTTPException, status
from fastapi.security import OAuth2PasswordBearer

from app.auth.actor import Actor
from app.auth.jwt import decode_token
from app.auth.permissions import has_permission

oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login")


# ── Core actor dependency ───────────────────────────────────

async def get_current_actor(
    token: str = Depends(oauth2_scheme),
) -> Actor:
    """Decode the JWT and build the Actor every ledger write is attributed to."""
    payload = decode_token(token)
    actor_id: str | None = payload.get("sub")
    if not actor_id or payload.get("type") != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Actor(
        id=actor_id,
        name=payload.get("name") or actor_id,
        email=payload.get("email"),
        role=payload.get("role", "technician"),
        vehicle_id=payload.get("vehicle_id"),
        permissions=frozenset(payload.get("permissions", [])),
    )


# ── Permission-based access control ─────────────────────────

def require_permission(*perms: str):
    """Dependency factory — restrict to actors who hold ALL listed permissions.

    Usage:
        @router.post("/transfer")
        async def transfer(actor: Actor = Depends(require_permission("inventory.write"))):
            ...
    """
    async def _check(actor: Actor = Depends(get_current_actor)) -> Actor:
        missing = [p for p in perms if not has_permission(actor.permissions, p)]
        if missing:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Missing permissions: {', '.join(missing)}",
            )
        return actor

    return _check
