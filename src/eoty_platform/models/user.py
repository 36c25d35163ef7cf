# src/eoty_platform/models/user.py
"""SQLAlchemy model for the identity collaborator's users."""

from __future__ import annotations

from sqlalchemy import Boolean, Enum, Text
from sqlalchemy.orm import Mapped, mapped_column

from eoty_platform.core.roles import Role
from eoty_platform.db.session import Base


def enum_values(enum_cls: type) -> list[str]:
    """Persist enum members by value rather than by name."""
    return [member.value for member in enum_cls]


class User(Base):
    """Platform user keyed by the opaque id issued by the identity service.

    Neither core mutates users; references from other tables are plain text
    columns so audit records survive user removal.
    """

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(Text, primary_key=True)
    first_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    last_name: Mapped[str] = mapped_column(Text, nullable=False, default="")
    role: Mapped[Role] = mapped_column(
        Enum(Role, native_enum=False, length=32, values_callable=enum_values),
        nullable=False,
        default=Role.STUDENT,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @property
    def display_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()
