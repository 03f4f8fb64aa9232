"""Directory Mock for Integration Testing.

This module provides an in-memory implementation of the user-pool directory
that enables lifecycle and operator tests without network access.

Key Features:
- In-memory users, group membership, passwords and account status
- Ordered call log for asserting remote call sequences
- Error injection per operation (and per group) for failure scenarios
- Optional username normalization, as some directories rewrite usernames

Usage:
    from directory_mock import MockDirectoryContext

    with MockDirectoryContext() as ctx:
        reconciler = Reconciler(config)
        reconciler.reconcile_all()

        assert ctx.directory.calls[0] == "CreateUser"
"""

from .context import MockDirectoryContext
from .directory import InMemoryDirectory, MockUser

__all__ = [
    "InMemoryDirectory",
    "MockDirectoryContext",
    "MockUser",
]
