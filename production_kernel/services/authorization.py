"""
production_kernel.services.authorization -- Capability checks at the service boundary.

Responsibility:
    Decide whether an actor may submit, edit, delete or revert a production
    entry.  Services call the injected Authorizer before touching anything;
    a refusal surfaces as UnauthorizedError.

Architecture position:
    Services layer.  The kernel stays identity-agnostic: the caller supplies
    an Actor (id, tenant, roles); this module never resolves sessions.

Invariants:
    - Actors never act across tenants, except SUPER_ADMIN.
    - Re-validating an already validated entry requires a privileged role.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from uuid import UUID

from production_kernel.domain.dtos import EntryRecord, EntryStatus


class Role(str, Enum):
    PRODUCER = "producer"
    EDITOR = "editor"
    SUPER_ADMIN = "super_admin"


@dataclass(frozen=True)
class Actor:
    """Who is calling.  Roles come from the surrounding identity provider."""

    id: UUID
    tenant_id: UUID
    roles: frozenset[Role] = frozenset({Role.PRODUCER})

    def has(self, role: Role) -> bool:
        return role in self.roles


class Authorizer(ABC):
    """Capability check consulted by every entry-mutating service."""

    @abstractmethod
    def can_submit(self, actor: Actor, entry: EntryRecord) -> bool:
        ...

    @abstractmethod
    def can_revert(self, actor: Actor, entry: EntryRecord) -> bool:
        ...

    @abstractmethod
    def can_edit(self, actor: Actor, entry: EntryRecord) -> bool:
        ...

    @abstractmethod
    def can_delete(self, actor: Actor, entry: EntryRecord) -> bool:
        ...


# (status, action) -> roles allowed regardless of ownership
_PRIVILEGED: dict[tuple[EntryStatus, str], frozenset[Role]] = {
    (EntryStatus.VALIDATED, "submit"): frozenset({Role.EDITOR, Role.SUPER_ADMIN}),
    (EntryStatus.VALIDATED, "edit"): frozenset({Role.EDITOR, Role.SUPER_ADMIN}),
    (EntryStatus.VALIDATED, "delete"): frozenset({Role.SUPER_ADMIN}),
    (EntryStatus.DRAFT, "delete"): frozenset({Role.SUPER_ADMIN}),
    (EntryStatus.DRAFT, "revert"): frozenset({Role.SUPER_ADMIN}),
    (EntryStatus.VALIDATING, "revert"): frozenset({Role.SUPER_ADMIN}),
    (EntryStatus.VALIDATED, "revert"): frozenset({Role.SUPER_ADMIN}),
}

# (status, action) pairs the owning producer may perform
_OWNER: frozenset[tuple[EntryStatus, str]] = frozenset({
    (EntryStatus.DRAFT, "submit"),
    (EntryStatus.DRAFT, "edit"),
    (EntryStatus.DRAFT, "delete"),
    (EntryStatus.DRAFT, "revert"),
    (EntryStatus.VALIDATING, "revert"),
})


def check_access(actor: Actor, entry: EntryRecord, action: str) -> tuple[bool, str]:
    """Check whether ``actor`` may perform ``action`` on ``entry`` in its current status.

    Returns:
        (allowed, reason).  reason is empty when allowed.
    """
    if actor.tenant_id != entry.tenant_id and not actor.has(Role.SUPER_ADMIN):
        return (False, "actor belongs to another tenant")

    privileged = _PRIVILEGED.get((entry.status, action), frozenset())
    if privileged & actor.roles:
        return (True, "")

    if (entry.status, action) in _OWNER:
        if actor.id != entry.owner_id:
            return (False, "only the owner may do this")
        if not actor.has(Role.PRODUCER):
            return (False, "producer role required")
        return (True, "")

    return (False, f"'{action}' not permitted while entry is {entry.status.value}")


class RoleAuthorizer(Authorizer):
    """Default rule set: owning producers on drafts, editors on validated entries."""

    def can_submit(self, actor: Actor, entry: EntryRecord) -> bool:
        return check_access(actor, entry, "submit")[0]

    def can_revert(self, actor: Actor, entry: EntryRecord) -> bool:
        return check_access(actor, entry, "revert")[0]

    def can_edit(self, actor: Actor, entry: EntryRecord) -> bool:
        return check_access(actor, entry, "edit")[0]

    def can_delete(self, actor: Actor, entry: EntryRecord) -> bool:
        return check_access(actor, entry, "delete")[0]
