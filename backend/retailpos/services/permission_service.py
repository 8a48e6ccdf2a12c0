# Overview: Capability lookups and default role provisioning.

from __future__ import annotations

from ..capabilities import DEFAULT_ROLE_CAPABILITIES, validate_capability_code
from ..extensions import db
from ..models import Role, RoleCapability, User


def get_user_capabilities(user: User | None) -> frozenset[str]:
    """Capabilities granted through the user's role; empty for inactive users."""
    if user is None or not user.is_active or user.role is None:
        return frozenset()
    return user.role.capability_codes()


def has_capability(user: User | None, capability: str) -> bool:
    return capability in get_user_capabilities(user)


def ensure_default_roles() -> dict[str, Role]:
    """
    Create the default roles and grant their capabilities.

    Idempotent: existing roles keep their grants and only missing grants are
    added.
    """
    roles = {}
    for role_name, codes in DEFAULT_ROLE_CAPABILITIES.items():
        role = db.session.query(Role).filter_by(name=role_name).first()
        if role is None:
            role = Role(name=role_name, description=f"Default {role_name} role")
            db.session.add(role)
            db.session.flush()

        granted = role.capability_codes()
        for code in codes:
            if not validate_capability_code(code):
                raise ValueError(f"Unknown capability code: {code}")
            if code not in granted:
                role.capabilities.append(RoleCapability(code=code))
        roles[role_name] = role

    db.session.commit()
    return roles
