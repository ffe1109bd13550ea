from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from libs.common.logging import get_logger

logger = get_logger(__name__)


class TransactionalUnitOfWork:
    """Scoped transaction helper.

    ``begin()`` yields a session inside an open transaction. Leaving the block
    normally commits; leaving it through any exception (validation failure,
    gateway timeout, task cancellation) rolls back. There is exactly one
    commit-or-rollback per logical operation.

    Usage:
        async with uow.begin() as session:
            session.add(order)
            session.add(transaction)
    """

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self._session_factory = session_factory

    @asynccontextmanager
    async def begin(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                async with session.begin():
                    yield session
            except BaseException:
                logger.debug("Unit of work rolled back")
                raise

    @asynccontextmanager
    async def read(self) -> AsyncIterator[AsyncSession]:
        """Session for read-only work; nothing is committed.

        Closing the session discards its transaction without expiring the
        loaded objects, so they stay readable after the block.
        """
        async with self._session_factory() as session:
            yield session
