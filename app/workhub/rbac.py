from __future__ import annotations

from collections.abc import Callable
from functools import wraps
from typing import Any

from flask import g

from app.workhub.errors import ForbiddenError, UnauthorizedError

ADMIN_ROLES = ("admin", "super_admin")
MANAGE_ROLES = ("admin", "super_admin", "hod", "user")
READ_ROLES = ("user", "admin", "super_admin", "hod")

PERMISSION_SECTIONS = ("projects", "task", "users", "settings")
PERMISSION_ACTIONS = ("CREATE", "EDIT", "VIEW", "DELETE", "EXPORT", "UPDATE")


def role_key(name: str | None) -> str:
    return "_".join((name or "").strip().lower().split())


def effective_role(user: dict | None, role_doc: dict | None) -> str:
    """Role used for route guards: the assigned role document wins over the legacy `role` field."""
    if not user:
        return ""
    if role_doc and role_doc.get("name"):
        return role_key(role_doc["name"])
    return role_key(user.get("role")) or "user"


def user_has_permission(user: dict | None, section: str, action: str) -> bool:
    if not user or not user.get("active", True):
        return False
    if getattr(g, "current_role", None) in ADMIN_ROLES:
        return True
    role_doc = getattr(g, "current_role_doc", None) or {}
    perms = (role_doc.get("permissions") or {}).get(section) or []
    return action in perms


def _current_user_or_401() -> dict:
    user = getattr(g, "current_user", None)
    if not user:
        raise UnauthorizedError("Authentication required")
    return user


def require_roles(*roles: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    allowed = tuple(roles)

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            _current_user_or_401()
            role = getattr(g, "current_role", None)
            if role not in allowed:
                g.missing_permission = f"role:{'|'.join(allowed)}"
                raise ForbiddenError("You do not have permission to perform this action")
            return fn(*args, **kwargs)

        return wrapped

    return decorator


def require_permission(section: str, *actions: str) -> Callable[[Callable[..., Any]], Callable[..., Any]]:
    """Passes when the caller's role grants any of `actions` on `section`."""

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        @wraps(fn)
        def wrapped(*args: Any, **kwargs: Any):
            user = _current_user_or_401()
            if not any(user_has_permission(user, section, a) for a in actions):
                g.missing_permission = f"{section}.{'|'.join(actions)}"
                raise ForbiddenError(f"Missing permission: {section} {'/'.join(actions)}")
            return fn(*args, **kwargs)

        return wrapped

    return decorator
