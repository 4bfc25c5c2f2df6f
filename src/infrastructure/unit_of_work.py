"""
Unit of work: one short transaction with all repositories bound to it.

Commits on a clean exit and rolls back on any exception, mirroring the
request-scoped ``get_db`` dependency.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .repositories import (
    BookingRepository,
    PaymentRepository,
    RideRepository,
    UserRepository,
)


class UnitOfWork:
    def __init__(self, session: AsyncSession):
        self.session = session
        self.users = UserRepository(session)
        self.rides = RideRepository(session)
        self.bookings = BookingRepository(session)
        self.payments = PaymentRepository(session)


class UnitOfWorkFactory:
    """Opens a fresh ``UnitOfWork`` per ``async with``."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession]):
        self.session_factory = session_factory

    @asynccontextmanager
    async def __call__(self) -> AsyncIterator[UnitOfWork]:
        async with self.session_factory() as session:
            try:
                yield UnitOfWork(session)
                await session.commit()
            except Exception:
                await session.rollback()
                raise
