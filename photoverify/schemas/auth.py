from __future__ import annotations

from dataclasses import dataclass
from typing import Literal, Optional

Role = Literal["admin", "operator", "viewer"]
ROLES = ("admin", "operator", "viewer")


@dataclass(frozen=True)
class AuthContext:
    """Identity resolved upstream; trusted as-is."""

    tenant_id: str
    tenant_slug: str
    role: Role
    user_id: Optional[str] = None

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"
