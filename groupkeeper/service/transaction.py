"""
Transactions and the hooks that run once they have committed.

Calls to the identity and notification services never happen while a
session is open: they are queued as post-commit hooks and run after the
transaction has committed. A failing hook cannot roll back the commit; its
error is reported through `PostCommitHooks.run`.
"""

from contextlib import asynccontextmanager
from typing import AsyncIterator, Awaitable, Callable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from structlog.typing import FilteringBoundLogger

from groupkeeper.config.managers import AsyncSessionManager
from groupkeeper.core.errors import StorageError, SyncError

Hook = Callable[[], Awaitable[None]]


@asynccontextmanager
async def transaction(manager: AsyncSessionManager) -> AsyncIterator[AsyncSession]:
    """
    One session and one transaction. Committed when the block exits
    normally, rolled back otherwise; storage errors are re-raised as
    `StorageError`.
    """
    try:
        async with manager.session() as conn:
            async with conn.begin():
                yield conn
    except SQLAlchemyError as e:
        raise StorageError(f"Storage failure: {e}") from e


class PostCommitHooks:
    """
    Collects async callables during a transaction and runs them after commit:

    hooks = PostCommitHooks(log=log)

    async with transaction(manager) as conn:
        ...
        hooks.add(lambda: sync_service.add_group_to_profile(...))

    await hooks.run()
    """

    hooks: list[Hook]
    log: FilteringBoundLogger

    def __init__(self, log: FilteringBoundLogger):
        self.hooks = []
        self.log = log

    def add(self, hook: Hook) -> None:
        self.hooks.append(hook)

    def __len__(self) -> int:
        return len(self.hooks)

    async def run(self) -> None:
        """
        Run every hook in order, even if earlier ones fail.

        Raises
        ------
        SyncError
            The first collected error, once all hooks have run.
        """
        errors: list[SyncError] = []

        for hook in self.hooks:
            try:
                await hook()
            except SyncError as e:
                await self.log.awarning(
                    "hooks.failed", error=str(e), user_uuid=e.user_uuid
                )
                errors.append(e)

        self.hooks = []

        if errors:
            raise errors[0]
