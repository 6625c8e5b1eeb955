"""
Unit tests for tenant scope injection.

Tests cover:
- build_filter() / filter_for() predicates for each kind of ownership
- Automatic scoping of ORM SELECT, UPDATE and DELETE statements
- Relationship lazy loads
- Required tenant: NoTenantSetError before any SQL is emitted
- Unscoped mode and the skip_tenant_scope execution option
- Bulk UPDATE statements writing the tenant key
- scoped_get() lookups that would otherwise hit the identity map
"""

from __future__ import annotations

import pytest
from sqlalchemy import delete, func, select, update
from sqlalchemy.orm import Session, aliased, joinedload, selectinload

from tenantguard import (
    SKIP_TENANT_SCOPE,
    ModelNotScopedByTenantError,
    NoTenantSetError,
    TenantContext,
    TenantIsImmutableError,
    build_filter,
    configure,
    filter_for,
    get_ownership,
    mutable_tenant_sync,
    scoped_get,
    tenant_scope_sync,
    without_tenant_sync,
)
from tests.fixtures import (
    Account,
    AuditLog,
    Label,
    Membership,
    Note,
    Organization,
    Project,
    Task,
    User,
)


def compiled(criteria) -> str:  # noqa: ANN001
    return str(criteria.compile(compile_kwargs={"literal_binds": True}))


@pytest.fixture
def seeded(session: Session, acme: Account, globex: Account) -> None:
    """Two tasks and projects per tenant, plus global and tenant labels."""
    with without_tenant_sync():
        acme_project = Project(name="Website", account_id=acme.id)
        globex_project = Project(name="Rocket", account_id=globex.id)
        session.add_all(
            [
                acme_project,
                globex_project,
                Task(name="Report", account_id=acme.id, project=acme_project),
                Task(name="Invoice", account_id=acme.id),
                Task(name="Launch", account_id=globex.id, project=globex_project),
                Label(name="urgent"),
                Label(name="acme-only", account_id=acme.id),
                Label(name="globex-only", account_id=globex.id),
            ]
        )
        session.commit()


class TestBuildFilter:
    """Tests for the tenant predicate of each ownership kind."""

    def test_direct(self) -> None:
        context = TenantContext(tenant=Account(id=1, name="Acme"))
        assert compiled(build_filter(get_ownership(Task), context)) == "tasks.account_id = 1"

    def test_no_tenant_is_unconstrained(self) -> None:
        assert compiled(build_filter(get_ownership(Task), TenantContext())) == "true"

    def test_unscoped_is_unconstrained(self) -> None:
        configure(require_tenant=True)
        context = TenantContext(unscoped=True)
        assert compiled(build_filter(get_ownership(Task), context)) == "true"

    def test_required_tenant_raises(self) -> None:
        configure(require_tenant=True)
        with pytest.raises(NoTenantSetError) as exc_info:
            build_filter(get_ownership(Task), TenantContext())
        assert exc_info.value.model is Task

    def test_unsaved_tenant_matches_nothing(self) -> None:
        context = TenantContext(tenant=Account(name="Draft"))
        assert compiled(build_filter(get_ownership(Task), context)) == "false"

    def test_global_records(self) -> None:
        context = TenantContext(tenant=Account(id=1, name="Acme"))
        assert (
            compiled(build_filter(get_ownership(Label), context))
            == "labels.account_id = 1 OR labels.account_id IS NULL"
        )

    def test_polymorphic(self) -> None:
        context = TenantContext(tenant=Organization(id=3, name="Initech"))
        assert (
            compiled(build_filter(get_ownership(Note), context))
            == "notes.owner_id = 3 AND notes.owner_type = 'Organization'"
        )

    def test_through(self) -> None:
        """Through ownership is an EXISTS over the intermediate rows."""
        context = TenantContext(tenant=Account(id=1, name="Acme"))
        sql = compiled(build_filter(get_ownership(User), context))
        assert "EXISTS" in sql
        assert "memberships.account_id = 1" in sql

    def test_uses_current_context_by_default(self) -> None:
        with tenant_scope_sync(Account(id=2, name="Globex")):
            assert compiled(build_filter(get_ownership(Task))) == "tasks.account_id = 2"

    def test_filter_for(self) -> None:
        context = TenantContext(tenant=Account(id=1, name="Acme"))
        assert compiled(filter_for(Project, context)) == "projects.account_id = 1"

    def test_filter_for_unowned_model(self) -> None:
        with pytest.raises(ModelNotScopedByTenantError):
            filter_for(AuditLog)


@pytest.mark.usefixtures("seeded")
class TestSelectScoping:
    """ORM SELECT statements only see the current tenant's rows."""

    def test_current_tenant_rows_only(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            names = session.scalars(select(Task.name).order_by(Task.name)).all()
        assert names == ["Invoice", "Report"]

    def test_other_tenant_rows_hidden(self, session: Session, globex: Account) -> None:
        with tenant_scope_sync(globex):
            names = session.scalars(select(Task.name)).all()
        assert names == ["Launch"]

    def test_global_rows_visible_to_every_tenant(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            names = session.scalars(select(Label.name).order_by(Label.name)).all()
        assert names == ["acme-only", "urgent"]

    def test_no_tenant_not_required_sees_all(self, session: Session) -> None:
        assert session.scalar(select(func.count(Task.id))) == 3

    def test_joined_entities_are_scoped(self, session: Session, globex: Account) -> None:
        with tenant_scope_sync(globex):
            rows = session.execute(
                select(Project.name, Task.name).join(Task, Task.project_id == Project.id)
            ).all()
        assert rows == [("Rocket", "Launch")]

    def test_aliases_are_scoped(self, session: Session, acme: Account) -> None:
        task_alias = aliased(Task)
        with tenant_scope_sync(acme):
            names = session.scalars(select(task_alias.name).order_by(task_alias.name)).all()
        assert names == ["Invoice", "Report"]

    def test_relationship_lazy_load_is_scoped(
        self, session: Session, acme: Account, globex: Account
    ) -> None:
        """Lazy loads of a tenant-owned collection apply the tenant scope."""
        with without_tenant_sync():
            project = session.scalars(select(Project).where(Project.name == "Rocket")).one()
        session.expire(project, ["tasks"])

        with tenant_scope_sync(acme):
            assert project.tasks == []

    def test_skip_tenant_scope_option(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            stmt = select(Task.name).execution_options(**{SKIP_TENANT_SCOPE: True})
            assert len(session.scalars(stmt).all()) == 3

    def test_unscoped_sees_all(self, session: Session) -> None:
        configure(require_tenant=True)
        with without_tenant_sync():
            assert session.scalar(select(func.count(Task.id))) == 3

    def test_through_ownership(
        self, session: Session, acme: Account, globex: Account
    ) -> None:
        with without_tenant_sync():
            alice = User(name="Alice")
            bob = User(name="Bob")
            session.add_all([alice, bob])
            session.flush()
            session.add_all(
                [
                    Membership(user_id=alice.id, account_id=acme.id),
                    Membership(user_id=bob.id, account_id=globex.id),
                ]
            )
            session.commit()

        with tenant_scope_sync(acme):
            assert session.scalars(select(User.name)).all() == ["Alice"]
        with tenant_scope_sync(globex):
            assert session.scalars(select(User.name)).all() == ["Bob"]

    def test_polymorphic_ownership(self, session: Session, acme: Account) -> None:
        initech = Organization(id=1, name="Initech")
        session.add(initech)
        with without_tenant_sync():
            session.add_all(
                [
                    Note(body="for acme", owner_id=1, owner_type="Account"),
                    Note(body="for initech", owner_id=1, owner_type="Organization"),
                ]
            )
            session.commit()

        with tenant_scope_sync(acme):
            assert session.scalars(select(Note.body)).all() == ["for acme"]
        with tenant_scope_sync(initech):
            assert session.scalars(select(Note.body)).all() == ["for initech"]


@pytest.mark.usefixtures("seeded")
class TestBulkStatementScoping:
    """ORM UPDATE and DELETE statements are restricted to the current tenant."""

    def test_update(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            session.execute(
                update(Task).values(done=True).execution_options(synchronize_session=False)
            )
            session.commit()

        with without_tenant_sync():
            done = session.execute(select(Task.name, Task.done).order_by(Task.name)).all()
        assert done == [("Invoice", True), ("Launch", False), ("Report", True)]

    def test_delete(self, session: Session, globex: Account) -> None:
        with tenant_scope_sync(globex):
            session.execute(
                delete(Task)
                .where(Task.name != "")
                .execution_options(synchronize_session=False)
            )
            session.commit()

        with without_tenant_sync():
            names = session.scalars(select(Task.name).order_by(Task.name)).all()
        assert names == ["Invoice", "Report"]

    def test_update_cannot_move_rows_to_another_tenant(
        self,
        session: Session,
        acme: Account,
        globex: Account,
        executed_statements: list[str],
    ) -> None:
        executed_statements.clear()
        with tenant_scope_sync(acme), pytest.raises(TenantIsImmutableError) as exc_info:
            session.execute(
                update(Task)
                .values(account_id=globex.id)
                .execution_options(synchronize_session=False)
            )

        assert exc_info.value.attribute == "account_id"
        assert exc_info.value.attempted == 2
        assert executed_statements == []
        with without_tenant_sync():
            rows = session.execute(select(Task.name, Task.account_id).order_by(Task.name)).all()
        assert rows == [("Invoice", 1), ("Launch", 2), ("Report", 1)]

    def test_skip_option_does_not_allow_tenant_change(
        self, session: Session, acme: Account, globex: Account
    ) -> None:
        with tenant_scope_sync(acme), pytest.raises(TenantIsImmutableError):
            session.execute(
                update(Task)
                .values({Task.account_id: globex.id})
                .execution_options(**{SKIP_TENANT_SCOPE: True}, synchronize_session=False)
            )

    def test_update_by_primary_key_cannot_change_tenant(
        self, session: Session, acme: Account, globex: Account
    ) -> None:
        with without_tenant_sync():
            report_id = session.scalar(select(Task.id).where(Task.name == "Report"))

        with tenant_scope_sync(acme), pytest.raises(TenantIsImmutableError):
            session.execute(update(Task), [{"id": report_id, "account_id": globex.id}])

    def test_polymorphic_type_update_raises(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme), pytest.raises(TenantIsImmutableError) as exc_info:
            session.execute(
                update(Note)
                .values(owner_type="Organization")
                .execution_options(synchronize_session=False)
            )
        assert exc_info.value.attribute == "owner_type"

    def test_writing_current_tenant_key_is_allowed(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            result = session.execute(
                update(Task)
                .values(account_id=acme.id)
                .execution_options(synchronize_session=False)
            )
        assert result.rowcount == 2

    def test_tenant_change_when_mutable(
        self, session: Session, acme: Account, globex: Account
    ) -> None:
        with tenant_scope_sync(acme), mutable_tenant_sync():
            session.execute(
                update(Task)
                .values(account_id=globex.id)
                .execution_options(synchronize_session=False)
            )
            session.commit()

        with without_tenant_sync():
            rows = session.execute(select(Task.name, Task.account_id).order_by(Task.name)).all()
        assert rows == [("Invoice", 2), ("Launch", 2), ("Report", 2)]


@pytest.mark.usefixtures("seeded")
class TestScopedGet:
    """scoped_get() applies the tenant scope to primary key lookups."""

    def test_identity_map_hit_from_another_tenant(
        self, session: Session, acme: Account, globex: Account
    ) -> None:
        with tenant_scope_sync(acme):
            report = session.scalars(select(Task).where(Task.name == "Report")).one()
            assert scoped_get(session, Task, report.id) is report

        with tenant_scope_sync(globex):
            assert scoped_get(session, Task, report.id) is None
            # Plain Session.get() answers from the identity map
            assert session.get(Task, report.id) is report

    def test_required_tenant(self, session: Session, acme: Account) -> None:
        with tenant_scope_sync(acme):
            report = session.scalars(select(Task).where(Task.name == "Report")).one()

        configure(require_tenant=True)
        with pytest.raises(NoTenantSetError):
            scoped_get(session, Task, report.id)

    def test_global_record(self, session: Session, globex: Account) -> None:
        with without_tenant_sync():
            urgent = session.scalars(select(Label).where(Label.name == "urgent")).one()

        with tenant_scope_sync(globex):
            assert scoped_get(session, Label, urgent.id) is urgent

    def test_unowned_model_uses_identity_map(
        self, session: Session, acme: Account, executed_statements: list[str]
    ) -> None:
        executed_statements.clear()
        assert scoped_get(session, Account, acme.id) is acme
        assert executed_statements == []


class TestRequiredTenant:
    """With require_tenant, scoped access without a tenant fails before any SQL."""

    def test_select_raises_before_sql(
        self, session: Session, accounts: tuple[Account, Account], executed_statements: list[str]
    ) -> None:
        configure(require_tenant=True)
        executed_statements.clear()

        with pytest.raises(NoTenantSetError):
            session.scalars(select(Task)).all()

        assert executed_statements == []

    def test_update_raises_before_sql(
        self, session: Session, accounts: tuple[Account, Account], executed_statements: list[str]
    ) -> None:
        configure(require_tenant=True)
        executed_statements.clear()

        with pytest.raises(NoTenantSetError):
            session.execute(update(Task).values(done=True))

        assert executed_statements == []

    def test_unowned_models_unaffected(
        self, session: Session, accounts: tuple[Account, Account]
    ) -> None:
        """Statements not involving tenant-owned models run without a tenant."""
        configure(require_tenant=True)
        assert len(session.scalars(select(Account)).all()) == 2
        assert session.scalars(select(AuditLog)).all() == []

    @pytest.mark.usefixtures("seeded")
    def test_joined_eager_load_from_unowned_root_matches_nothing(self, session: Session) -> None:
        configure(require_tenant=True)

        accounts = (
            session.scalars(
                select(Account)
                .options(joinedload(Account.projects))
                .order_by(Account.id)
                .execution_options(populate_existing=True)
            )
            .unique()
            .all()
        )

        assert [account.projects for account in accounts] == [[], []]

    @pytest.mark.usefixtures("seeded")
    def test_select_in_load_from_unowned_root_raises(self, session: Session) -> None:
        configure(require_tenant=True)
        with pytest.raises(NoTenantSetError):
            session.scalars(
                select(Account)
                .options(selectinload(Account.projects))
                .execution_options(populate_existing=True)
            ).all()

    def test_per_model_requirement(
        self, session: Session, accounts: tuple[Account, Account]
    ) -> None:
        configure(require_tenant=lambda model: model is not Label)
        assert session.scalars(select(Label)).all() == []
        with pytest.raises(NoTenantSetError):
            session.scalars(select(Task)).all()
