"""
Role capabilities.

The desk UI shows different dashboards per role; the engine enforces the
same split here, at the coordinator boundary, independent of any screen.

An operation called without an actor is a trusted system call. Checks run
against the stored copy of the actor, so a deactivated or demoted member
loses rights at once even if the caller still holds an old snapshot.
"""

from enum import Enum
from typing import Optional

from circulation.errors import PermissionDeniedError
from circulation.models.circulation import Member, MemberRole


class Capability(str, Enum):
    MANAGE_CATALOG = "manage_catalog"
    MANAGE_MEMBERS = "manage_members"
    PROCESS_ANY_LOAN = "process_any_loan"
    PROCESS_OWN_LOAN = "process_own_loan"
    CANCEL_LOAN = "cancel_loan"
    VIEW_ALL = "view_all"


ROLE_CAPABILITIES: dict[MemberRole, frozenset[Capability]] = {
    MemberRole.ADMIN: frozenset({
        Capability.MANAGE_CATALOG,
        Capability.MANAGE_MEMBERS,
        Capability.PROCESS_ANY_LOAN,
        Capability.CANCEL_LOAN,
        Capability.VIEW_ALL,
    }),
    MemberRole.LIBRARIAN: frozenset({
        Capability.MANAGE_CATALOG,
        Capability.PROCESS_ANY_LOAN,
        Capability.VIEW_ALL,
    }),
    MemberRole.MEMBER: frozenset({
        Capability.PROCESS_OWN_LOAN,
    }),
}


def current_actor(claimed: Optional[Member], stored: Optional[Member]) -> Optional[Member]:
    """The stored copy of the acting member; an actor the store does not know gets nothing."""
    if claimed is None:
        return None
    if stored is None:
        raise PermissionDeniedError(
            f"Unknown actor {claimed.id}",
            {"actor_id": claimed.id},
        )
    return stored


def has_capability(actor: Member, capability: Capability) -> bool:
    return actor.is_active and capability in ROLE_CAPABILITIES.get(actor.role, frozenset())


def _deny(actor: Member, action: str) -> PermissionDeniedError:
    return PermissionDeniedError(
        f"{actor.role.value} {actor.id} may not {action}",
        {"actor_id": actor.id, "role": actor.role.value, "action": action},
    )


def require_capability(actor: Optional[Member], capability: Capability) -> None:
    if actor is None:
        return
    if not has_capability(actor, capability):
        raise _deny(actor, capability.value.replace("_", " "))


def require_loan_access(actor: Optional[Member], member_id: str) -> None:
    """Staff may process any loan; a MEMBER only their own."""
    if actor is None or has_capability(actor, Capability.PROCESS_ANY_LOAN):
        return
    if has_capability(actor, Capability.PROCESS_OWN_LOAN) and actor.id == member_id:
        return
    raise _deny(actor, f"process loans for {member_id}")


def require_view_access(actor: Optional[Member], member_id: Optional[str] = None) -> None:
    """Staff see everything; a member sees only their own records."""
    if actor is None or has_capability(actor, Capability.VIEW_ALL):
        return
    if member_id is not None and actor.is_active and actor.id == member_id:
        return
    raise _deny(actor, "view these records")
