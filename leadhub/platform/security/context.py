from __future__ import annotations

import uuid
from dataclasses import dataclass


PRIVILEGED_ROLES = frozenset({"Admin", "Manager"})


@dataclass(frozen=True, slots=True)
class Actor:
    """Already-authenticated user on whose behalf an operation runs."""

    id: uuid.UUID
    role: str
    email: str
    is_active: bool = True
    correlation_id: str | None = None

    @property
    def is_admin(self) -> bool:
        return self.role == "Admin"

    @property
    def is_privileged(self) -> bool:
        return self.role in PRIVILEGED_ROLES
