"""
BaseService -- abstract base for all pool services.

Responsibility:
    Provides the common constructor, session-handling contract, role checks
    and per-operation savepoint for every service in ``pool_services``.
    Services receive a SQLAlchemy ``Session`` that they use via
    ``session.flush()`` -- never ``session.commit()``.

Architecture position:
    Services -- imperative shell.  Pool-scoped services are created by
    ``pool_services.registry.PoolRegistry`` and reach their collaborators
    through it by pool id, never by holding references to each other.

Invariants enforced:
    ATOMIC_OPERATIONS -- every public mutating operation runs inside
        ``atomic()``, a SAVEPOINT that is rolled back when the operation
        raises, so a failed call leaves no partial ledger change behind.
    Transaction boundaries: services flush within the caller's transaction
        and never commit.  The caller (``session_scope()`` or the test
        harness) owns commit/rollback.

Failure modes:
    - ``UnauthorizedError`` from ``require_role`` when the actor lacks the
      role.
    - Any exception raised inside ``atomic()`` rolls back the savepoint and
      propagates unchanged.
"""

from __future__ import annotations

from abc import ABC
from collections.abc import Collection, Iterator
from contextlib import contextmanager
from typing import TYPE_CHECKING

from sqlalchemy.orm import Session

from pool_kernel.domain.clock import Clock, SystemClock
from pool_kernel.exceptions import UnauthorizedError

if TYPE_CHECKING:
    from pool_config.schema import PoolConfig
    from pool_services.registry import PoolRegistry


@contextmanager
def atomic(session: Session) -> Iterator[Session]:
    """Run the enclosed block in a SAVEPOINT.

    On normal exit the savepoint is released and pending changes are
    flushed; on exception the savepoint is rolled back and the exception
    re-raised.  Nested calls create nested savepoints.
    """
    with session.begin_nested():
        yield session
    session.flush()


def require_role(
    members: Collection[str],
    actor_id: str,
    role: str,
    operation: str,
) -> None:
    """Raise ``UnauthorizedError`` unless ``actor_id`` is in ``members``."""
    if actor_id not in members:
        raise UnauthorizedError(actor_id, role, operation)


class BaseService(ABC):
    """
    Abstract base class for all pool services.

    Contract:
        Accepts a SQLAlchemy ``Session`` from the caller and uses
        ``session.flush()`` to persist changes within the active
        transaction.  Time is read only from the injected ``Clock``.

    Guarantees:
        - The service never calls ``session.commit()``.

    Non-goals:
        - Does NOT manage the outer transaction lifecycle.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self._clock = clock or SystemClock()


class PoolScopedService(BaseService):
    """
    Base for services bound to one pool.

    Contract:
        Configuration is read through the registry on every access, so a
        configuration swapped by ``PoolRegistry.update_config`` is seen by
        the next operation.  Collaborating services are resolved through
        the registry by pool id.
    """

    def __init__(self, registry: PoolRegistry, pool_id: str):
        super().__init__(registry.session, registry.clock)
        self._registry = registry
        self.pool_id = pool_id

    @property
    def config(self) -> PoolConfig:
        return self._registry.config(self.pool_id)

    @property
    def places(self) -> int:
        return self.config.token_decimals

    def _require_administrator(self, actor_id: str, operation: str) -> None:
        require_role(self.config.roles.administrators, actor_id, "administrator", operation)

    def _require_credit_approver(self, actor_id: str, operation: str) -> None:
        require_role(self.config.roles.credit_approvers, actor_id, "credit_approver", operation)
