"""
Unit tests for the default role and ownership rules.
"""

from datetime import date
from uuid import uuid4

import pytest

from production_kernel.domain.dtos import EntryRecord, EntryStatus
from production_kernel.services.authorization import Actor, Role, RoleAuthorizer, check_access


@pytest.fixture
def tenant():
    return uuid4()


@pytest.fixture
def owner(tenant):
    return Actor(id=uuid4(), tenant_id=tenant)


def entry_for(owner, status):
    return EntryRecord(
        id=uuid4(),
        tenant_id=owner.tenant_id,
        owner_id=owner.id,
        process_id=uuid4(),
        production_date=date(2026, 3, 1),
        status=status,
    )


class TestSubmit:
    def test_owner_submits_draft(self, owner):
        assert RoleAuthorizer().can_submit(owner, entry_for(owner, EntryStatus.DRAFT))

    def test_other_producer_cannot_submit_draft(self, owner, tenant):
        stranger = Actor(id=uuid4(), tenant_id=tenant)

        allowed, reason = check_access(stranger, entry_for(owner, EntryStatus.DRAFT), "submit")

        assert not allowed
        assert "owner" in reason

    def test_owner_cannot_revalidate(self, owner):
        assert not RoleAuthorizer().can_submit(owner, entry_for(owner, EntryStatus.VALIDATED))

    def test_editor_revalidates(self, owner, tenant):
        editor = Actor(id=uuid4(), tenant_id=tenant, roles=frozenset({Role.EDITOR}))

        assert RoleAuthorizer().can_submit(editor, entry_for(owner, EntryStatus.VALIDATED))

    def test_other_tenant_is_refused(self, owner):
        outsider = Actor(id=uuid4(), tenant_id=uuid4(), roles=frozenset({Role.EDITOR}))

        allowed, reason = check_access(outsider, entry_for(owner, EntryStatus.VALIDATED), "submit")

        assert not allowed
        assert "tenant" in reason


class TestRevertAndDelete:
    def test_super_admin_reverts_validated(self, owner, tenant):
        admin = Actor(id=uuid4(), tenant_id=tenant, roles=frozenset({Role.SUPER_ADMIN}))

        assert RoleAuthorizer().can_revert(admin, entry_for(owner, EntryStatus.VALIDATED))

    def test_owner_recovers_own_stuck_entry(self, owner):
        assert RoleAuthorizer().can_revert(owner, entry_for(owner, EntryStatus.VALIDATING))

    def test_owner_cannot_revert_validated(self, owner):
        assert not RoleAuthorizer().can_revert(owner, entry_for(owner, EntryStatus.VALIDATED))

    def test_only_super_admin_deletes_validated(self, owner, tenant):
        editor = Actor(id=uuid4(), tenant_id=tenant, roles=frozenset({Role.EDITOR}))
        admin = Actor(id=uuid4(), tenant_id=tenant, roles=frozenset({Role.SUPER_ADMIN}))
        entry = entry_for(owner, EntryStatus.VALIDATED)

        assert not RoleAuthorizer().can_delete(owner, entry)
        assert not RoleAuthorizer().can_delete(editor, entry)
        assert RoleAuthorizer().can_delete(admin, entry)
