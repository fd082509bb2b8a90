"""Actor — the identity a mutating call is attributed to.

Passed explicitly into every service that writes to the ledger. The HTTP
layer builds one from the bearer token; the CLI and scheduler build a
system actor.
"""

from __future__ import annotations

from dataclasses import dataclass, field

PRIVILEGED_ROLES = frozenset({"admin", "manager"})


@dataclass(frozen=True)
class Actor:
    id: str
    name: str
    email: str | None = None
    role: str = "technician"
    vehicle_id: str | None = None
    permissions: frozenset[str] = field(default_factory=frozenset)

    @property
    def is_privileged(self) -> bool:
        """Admins and managers may confirm over-allocation / over-consumption."""
        return self.role in PRIVILEGED_ROLES

    @property
    def is_technician(self) -> bool:
        return self.role == "technician"


SYSTEM_ACTOR = Actor(id="system", name="System", role="admin")
