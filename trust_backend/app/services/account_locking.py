"""
Per-account serialization for trust ledger mutations.

Every mutation of one trust account runs inside account_guard, which
combines three layers:

1. A per-account lock: an in-process asyncio.Lock, or a Redis lock when
   several workers share the database (settings.account_lock_backend).
2. SELECT ... FOR UPDATE on the trust account row.
3. The TrustAccount.version counter (SQLAlchemy version_id_col) and the
   unique (trust_account_id, sequence) ledger constraint.

Different accounts use different lock keys and never block each other.
Losing a race at layer 2 or 3 surfaces as ConcurrencyConflictError.
"""

import asyncio
import logging
import weakref
from contextlib import asynccontextmanager, AsyncExitStack
from typing import Optional

from redis.exceptions import LockError
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from trust_backend.app.core.config import settings
from trust_backend.app.core.exceptions import ConcurrencyConflictError, NotFoundError
from trust_backend.app.models.trust_account import TrustAccount

logger = logging.getLogger("trust_ledger.locking")


def account_key(trust_account_id: int) -> str:
    return f"account:{trust_account_id}"


def property_key(company_id: int, property_id: int) -> str:
    return f"property:{company_id}:{property_id}"


class LocalAccountLocks:
    """In-process lock registry. Locks are dropped once nobody holds a reference."""

    def __init__(self, timeout: float = None):
        self.timeout = timeout if timeout is not None else settings.account_lock_timeout_seconds
        self._locks = weakref.WeakValueDictionary()

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[key] = lock
        return lock

    def is_locked(self, key: str) -> bool:
        lock = self._locks.get(key)
        return lock is not None and lock.locked()

    @asynccontextmanager
    async def hold(self, key: str, subject: Optional[int] = None):
        lock = self._lock_for(key)
        try:
            await asyncio.wait_for(lock.acquire(), timeout=self.timeout)
        except asyncio.TimeoutError:
            raise ConcurrencyConflictError(subject, reason="lock wait timeout")
        try:
            yield
        finally:
            lock.release()


class RedisAccountLocks:
    """Distributed lock registry for multi-worker deployments."""

    def __init__(self, redis, timeout: float = None, lease_seconds: float = 30.0):
        self.redis = redis
        self.timeout = timeout if timeout is not None else settings.account_lock_timeout_seconds
        self.lease_seconds = lease_seconds

    @asynccontextmanager
    async def hold(self, key: str, subject: Optional[int] = None):
        lock = self.redis.lock(
            f"trust-ledger:lock:{key}",
            timeout=self.lease_seconds,
            blocking_timeout=self.timeout
        )
        if not await lock.acquire():
            raise ConcurrencyConflictError(subject, reason="lock wait timeout")
        try:
            yield
        finally:
            try:
                await lock.release()
            except LockError:
                # Lease expired while held; the row lock and version counter still apply
                logger.warning("Account lock lease expired before release", extra={"lock_key": key})


_registry = None


def get_lock_registry():
    global _registry
    if _registry is None:
        if settings.account_lock_backend == "redis":
            from trust_backend.app.core.redis_client import redis_client
            _registry = RedisAccountLocks(redis_client)
        else:
            _registry = LocalAccountLocks()
    return _registry


def set_lock_registry(registry) -> None:
    global _registry
    _registry = registry


class LockScope:
    """Handle yielded by unit_of_work; extra locks are held until after commit."""

    def __init__(self, stack: AsyncExitStack, registry, subject: Optional[int]):
        self._stack = stack
        self._registry = registry
        self.subject = subject

    async def lock(self, key: str) -> None:
        await self._stack.enter_async_context(self._registry.hold(key, self.subject))


@asynccontextmanager
async def unit_of_work(db: AsyncSession, *lock_keys: str, subject: Optional[int] = None):
    """
    Hold lock_keys (in the given order) around one transaction.

    Commits on normal exit, rolls back on any exception. Stale versions and
    constraint violations are reported as ConcurrencyConflictError. Locks
    taken later through the yielded LockScope are released after commit too.
    """
    registry = get_lock_registry()
    async with AsyncExitStack() as stack:
        scope = LockScope(stack, registry, subject)
        for key in lock_keys:
            await scope.lock(key)
        try:
            yield scope
            await db.commit()
        except (StaleDataError, IntegrityError) as exc:
            await db.rollback()
            logger.warning(
                "Trust account write lost a concurrency race",
                extra={"trust_account_id": subject, "error_type": type(exc).__name__}
            )
            raise ConcurrencyConflictError(subject, reason=type(exc).__name__)
        except Exception:
            await db.rollback()
            raise


async def load_for_update(db: AsyncSession, trust_account_id: int) -> TrustAccount:
    result = await db.execute(
        select(TrustAccount)
        .where(TrustAccount.id == trust_account_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError("Trust account", trust_account_id)
    return account


@asynccontextmanager
async def account_guard(db: AsyncSession, trust_account_id: int):
    """
    Serialize one mutation of a trust account.

    Usage:
        async with account_guard(db, trust_account_id) as account:
            await LedgerStore.append(db, account, ...)
    """
    async with unit_of_work(db, account_key(trust_account_id), subject=trust_account_id):
        yield await load_for_update(db, trust_account_id)


SNAPSHOT_ISOLATION = {"postgresql": "REPEATABLE READ"}


async def snapshot_read(db: AsyncSession) -> None:
    """
    Start a fresh transaction for a read spanning several queries.

    On PostgreSQL it runs at REPEATABLE READ so every SELECT sees one
    snapshot; a SQLite transaction reads one snapshot already. The isolation
    level can only be set before a transaction's first statement, so an open
    read transaction is committed first. Callers must not hold pending writes.
    """
    if db.in_transaction():
        await db.commit()
    isolation_level = SNAPSHOT_ISOLATION.get(db.bind.dialect.name)
    if isolation_level:
        await db.connection(execution_options={"isolation_level": isolation_level})
