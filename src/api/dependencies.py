"""FastAPI dependency injection helpers."""

from __future__ import annotations

from datetime import timedelta
from typing import Optional

from fastapi import Header, Request
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from src.config import Settings, settings
from src.domain.penalty import CancellationPenaltyCalculator, PenaltyPolicy
from src.domain.pricing import CommissionCalculator
from src.infrastructure.database import async_session_factory
from src.infrastructure.gateway import PaymentGatewayAdapter, build_gateway
from src.infrastructure.redis_client import get_redis
from src.infrastructure.unit_of_work import UnitOfWorkFactory
from src.infrastructure.webhook_queue import WebhookQueue
from src.services.orchestrator import BookingOrchestrator


def build_orchestrator(
    config: Settings = settings,
    session_factory: async_sessionmaker[AsyncSession] = async_session_factory,
    gateway: Optional[PaymentGatewayAdapter] = None,
) -> BookingOrchestrator:
    """Wire the orchestrator from settings; collaborators can be swapped in tests."""
    policy = PenaltyPolicy(
        free_cancellation_window=timedelta(hours=config.free_cancellation_hours),
        late_cancellation_penalty=config.late_cancellation_penalty,
        gateway_fee_percent=config.gateway_fee_percent,
        gateway_fee_fixed=config.gateway_fee_fixed,
    )
    return BookingOrchestrator(
        UnitOfWorkFactory(session_factory),
        gateway or build_gateway(config),
        penalty_calculator=CancellationPenaltyCalculator(policy),
        commission=CommissionCalculator(config.platform_fee_percent),
        currency=config.currency,
        claim_ttl_seconds=config.booking_claim_ttl_seconds,
    )


async def get_db() -> AsyncSession:  # type: ignore[misc]
    """Yield an async DB session; commit on success, rollback on error."""
    async with async_session_factory() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_orchestrator(request: Request) -> BookingOrchestrator:
    return request.app.state.orchestrator


def get_gateway(request: Request) -> PaymentGatewayAdapter:
    return request.app.state.orchestrator.gateway


async def get_webhook_queue() -> WebhookQueue:
    return WebhookQueue(await get_redis())


async def get_actor_id(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    """Caller identity, set by the authenticating proxy in front of the API."""
    return x_user_id
