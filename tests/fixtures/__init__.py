"""
Shared test fixtures for the tenantguard library.

Usage:
    from tests.fixtures import Account, Project, Task
"""

from tests.fixtures.models import (
    Account,
    AuditLog,
    Base,
    Label,
    Membership,
    Note,
    Organization,
    Project,
    Task,
    User,
)

__all__ = [
    "Account",
    "AuditLog",
    "Base",
    "Label",
    "Membership",
    "Note",
    "Organization",
    "Project",
    "Task",
    "User",
]
