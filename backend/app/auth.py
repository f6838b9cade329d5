"""Request identity and access checks.

The API key gate lives in ``app.main``; user identity is asserted by the
upstream auth layer through ``X-User-Id`` and ``X-User-Role`` headers.
"""

from __future__ import annotations

from dataclasses import dataclass

from fastapi import Depends, Header, HTTPException

from app.models import FACULTY_ROLES, Role


@dataclass(frozen=True)
class Actor:
    user_id: str
    role: Role

    @property
    def is_faculty(self) -> bool:
        return self.role in FACULTY_ROLES


def get_actor(
    x_user_id: str | None = Header(default=None, alias="X-User-Id"),
    x_user_role: str | None = Header(default=None, alias="X-User-Role"),
) -> Actor:
    if not x_user_id or not x_user_id.strip():
        raise HTTPException(status_code=401, detail="Missing X-User-Id header")
    try:
        role = Role((x_user_role or "").strip().lower())
    except ValueError as exc:
        raise HTTPException(status_code=401, detail="Missing or unknown X-User-Role header") from exc
    return Actor(user_id=x_user_id.strip(), role=role)


def require_faculty(actor: Actor = Depends(get_actor)) -> Actor:
    if not actor.is_faculty:
        raise HTTPException(status_code=403, detail="Faculty access required")
    return actor


def require_student(actor: Actor = Depends(get_actor)) -> Actor:
    if actor.role != Role.STUDENT:
        raise HTTPException(status_code=403, detail="Only students can upload submissions")
    return actor
