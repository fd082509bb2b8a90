"""JWT token creation and decoding.

Token claims:
  - sub:          actor ID
  - name:         display name (written onto ledger rows)
  - email:        actor email
  - role:         admin | manager | technician
  - vehicle_id:   technician's assigned vehicle, if any
  - permissions:  list of effective permission strings
  - type:         "access"
  - exp:          expiry timestamp

Tokens are issued by the identity service; this module only needs to
mint them for tests and tooling.
"""

from datetime import datetime, timedelta, timezone

from jose import JWTError, jwt

from app.config import settings

ALGORITHM = settings.jwt_algorithm


def create_access_token(
    actor_id: str,
    name: str,
    role: str,
    permissions: list[str],
    email: str | None = None,
    vehicle_id: str | None = None,
    expires_delta: timedelta | None = None,
) -> str:
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.access_token_expire_minutes)
    )
    payload = {
        "sub": actor_id,
        "name": name,
        "role": role,
        "permissions": permissions,
        "type": "access",
        "exp": expire,
    }
    if email:
        payload["email"] = email
    if vehicle_id:
        payload["vehicle_id"] = vehicle_id
    return jwt.encode(payload, settings.secret_key, algorithm=ALGORITHM)


def decode_token(token: str) -> dict:
    """Decode and validate a JWT. Returns empty dict on failure."""
    try:
        return jwt.decode(token, settings.secret_key, algorithms=[ALGORITHM])
    except JWTError:
        return {}
