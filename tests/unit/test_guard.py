"""
Unit tests for the tenant immutability guard.

Tests cover:
- Reassigning the tenant key of a persisted record (column and relationship)
- Idempotent reassignment
- Unflushed records and records persisted without a tenant
- mutable_tenant() and the mutable_tenant setting
- The Acme / Globex scenario end to end
"""

from __future__ import annotations

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session

from tenantguard import (
    TenantIsImmutableError,
    configure,
    get_ownership,
    mutable_tenant_sync,
    save,
    tenant_scope_sync,
    without_tenant_sync,
)
from tenantguard.guard import persisted_tenant_key, tenant_modified
from tests.fixtures import Account, Label, Note, Task


@pytest.fixture
def report(session: Session, acme: Account) -> Task:
    with tenant_scope_sync(acme):
        task = Task(name="Report")
        assert save(session, task)
        session.commit()
    return task


class TestImmutabilityGuard:
    """A persisted record's tenant cannot be reassigned."""

    def test_foreign_key_reassignment_raises(
        self, session: Session, report: Task, globex: Account
    ) -> None:
        with pytest.raises(TenantIsImmutableError) as exc_info:
            report.account_id = globex.id

        error = exc_info.value
        assert error.model is Task
        assert error.attribute == "account_id"
        assert error.persisted == 1
        assert error.attempted == 2
        assert report.account_id == 1

    def test_relationship_reassignment_raises(
        self, session: Session, report: Task, globex: Account
    ) -> None:
        with pytest.raises(TenantIsImmutableError) as exc_info:
            report.account = globex

        assert exc_info.value.attribute == "account"
        assert report.account_id == 1

    def test_rejected_value_is_not_stored(
        self, session: Session, report: Task, globex: Account
    ) -> None:
        with pytest.raises(TenantIsImmutableError):
            report.account_id = globex.id
        session.commit()
        session.expire_all()

        with without_tenant_sync():
            stored = session.scalar(select(Task.account_id).where(Task.id == report.id))
        assert stored == 1

    def test_same_value_is_a_no_op(self, session: Session, report: Task, acme: Account) -> None:
        report.account_id = acme.id
        report.account = acme
        assert report.account_id == 1

    def test_reassignment_after_expiry(
        self, session: Session, report: Task, globex: Account
    ) -> None:
        """The persisted key is loaded when the attribute is expired."""
        session.expire(report)
        with pytest.raises(TenantIsImmutableError):
            report.account_id = globex.id

    def test_unflushed_record_is_assignable(self, acme: Account, globex: Account) -> None:
        task = Task(name="Draft", account_id=acme.id)
        task.account_id = globex.id
        assert task.account_id == 2

    def test_record_without_tenant_is_assignable(self, session: Session, acme: Account) -> None:
        """A null persisted key (global record) can be claimed by a tenant."""
        with without_tenant_sync():
            label = Label(name="shared")
            assert save(session, label)
            session.commit()

            label.account_id = acme.id
        assert label.account_id == 1

    def test_polymorphic_key_is_guarded(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            note = Note(body="hello")
            assert save(session, note)
            session.commit()

            with pytest.raises(TenantIsImmutableError):
                note.owner_id = 99

    def test_polymorphic_type_is_guarded(self, session: Session, acme: Account) -> None:
        """Changing the owner type alone would hand the record to another tenant."""
        with tenant_scope_sync(acme):
            note = Note(body="hello")
            assert save(session, note)
            session.commit()

            with pytest.raises(TenantIsImmutableError) as exc_info:
                note.owner_type = "Organization"

        assert exc_info.value.attribute == "owner_type"
        assert exc_info.value.persisted == "Account"
        assert note.owner_type == "Account"

    def test_polymorphic_type_mutable(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            note = Note(body="hello")
            assert save(session, note)
            session.commit()

        with mutable_tenant_sync():
            note.owner_type = "Organization"
        assert note.owner_type == "Organization"


class TestMutableTenant:
    """Reassignment is allowed when tenant mutability is enabled."""

    def test_mutable_tenant_block(self, session: Session, report: Task, globex: Account) -> None:
        with mutable_tenant_sync():
            report.account_id = globex.id
        assert report.account_id == 2
        session.commit()

        with pytest.raises(TenantIsImmutableError):
            report.account_id = 1

    def test_configured_mutability(self, session: Session, report: Task, globex: Account) -> None:
        configure(mutable_tenant=True)
        report.account = globex
        session.flush()
        assert report.account_id == 2


class TestTenantModified:
    """Tests for the persisted-key helpers."""

    def test_persisted_key(self, report: Task) -> None:
        assert persisted_tenant_key(report, get_ownership(Task)) == 1

    def test_transient_has_no_persisted_key(self) -> None:
        assert persisted_tenant_key(Task(name="Draft"), get_ownership(Task)) is None

    def test_tenant_modified(self, report: Task) -> None:
        ownership = get_ownership(Task)
        assert tenant_modified(report, ownership, 2)
        assert not tenant_modified(report, ownership, 1)


class TestAcmeGlobexScenario:
    """Create under Acme, hide from Globex, refuse reassignment."""

    def test_scenario(self, session: Session, acme: Account, globex: Account) -> None:
        with tenant_scope_sync(acme):
            task = Task(name="Report")
            assert save(session, task)
            session.commit()
        assert task.account_id == 1

        with tenant_scope_sync(globex):
            assert session.scalars(select(Task)).all() == []

        with tenant_scope_sync(acme):
            assert session.scalars(select(Task)).all() == [task]
            with pytest.raises(TenantIsImmutableError):
                task.account_id = 2
            assert task.account_id == 1
