"""Permission model for FieldStock.

Each role has a fixed default set; the effective set is embedded in the
JWT so checks are token-only.

Permission naming: `<resource>.<action>`
  Resources: inventory, requirements, logistics, reconciliation
  Actions:   read, write, adjust
"""

from __future__ import annotations


# ── All known permissions ───────────────────────────────────

ALL_PERMISSIONS: set[str] = {
    # Stock levels, movements, locations, catalog
    "inventory.read",
    "inventory.write",        # receipts, transfers, consumption
    "inventory.adjust",       # adjustments / corrections, location admin

    # Project material plans and allocations
    "requirements.read",
    "requirements.write",

    # Run dispatch
    "logistics.read",
    "logistics.write",

    # Integrity alerts
    "reconciliation.read",
    "reconciliation.write",
}


# ── Role → default permissions ──────────────────────────────

ROLE_DEFAULTS: dict[str, set[str]] = {
    "admin": ALL_PERMISSIONS.copy(),

    "manager": {
        "inventory.read", "inventory.write", "inventory.adjust",
        "requirements.read", "requirements.write",
        "logistics.read", "logistics.write",
        "reconciliation.read",
    },

    "technician": {
        "inventory.read", "inventory.write",
        "requirements.read",
        "logistics.read", "logistics.write",
    },
}


# ── Resolution ──────────────────────────────────────────────

def resolve_permissions(
    role: str,
    custom_overrides: dict[str, bool] | None = None,
) -> list[str]:
    """Compute effective permissions for a role.

    1. Start with the role's defaults.
    2. Apply custom_overrides: {perm: True} adds, {perm: False} removes.
    3. Return a sorted list (for stable JWT claims).
    """
    base = ROLE_DEFAULTS.get(role, set()).copy()

    if custom_overrides:
        for perm, granted in custom_overrides.items():
            if perm not in ALL_PERMISSIONS:
                continue  # ignore unknown permissions
            if granted:
                base.add(perm)
            else:
                base.discard(perm)

    return sorted(base)


def has_permission(actor_permissions: list[str] | set[str] | frozenset[str], required: str) -> bool:
    """Check whether a permission set satisfies a requirement."""
    return required in actor_permissions
