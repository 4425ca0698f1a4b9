"""
Actor context threaded explicitly through every mutating operation.

There is no ambient "current admin" lookup anywhere in the engine: the
caller builds an ``ActorContext`` once per request or job and passes it
down.  Services record ``actor.actor_id`` on the rows they write and
``actor.display_name`` where the data model keeps a human-readable
creator (shipments, comments, audit payloads).
"""

from __future__ import annotations

from dataclasses import dataclass
from uuid import UUID

from wholesale_kernel.exceptions import UnauthorizedActorError


@dataclass(frozen=True)
class ActorContext:
    """Who is performing an operation."""

    actor_id: UUID
    display_name: str
    is_admin: bool = True


# Used by scheduled jobs (reconciliation, trash purge)
SYSTEM_ACTOR = ActorContext(
    actor_id=UUID("00000000-0000-0000-0000-000000000001"),
    display_name="Platform Sync",
    is_admin=True,
)


def require_admin(actor: ActorContext, operation: str) -> None:
    """
    Reject non-admin actors for operator-only operations.

    Raises:
        UnauthorizedActorError: If ``actor.is_admin`` is false.
    """
    if not actor.is_admin:
        raise UnauthorizedActorError(str(actor.actor_id), operation)
