"""The caller identity handed to domain services."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation.

    Services never look at request objects; views translate the
    authenticated user into an ``Actor`` once.
    """

    user_id: int
    is_admin: bool = False

    @classmethod
    def from_user(cls, user) -> "Actor":  # type: ignore
        return cls(user_id=user.pk, is_admin=user.is_admin())
