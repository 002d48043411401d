"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header, HTTPException, Path, Request, status
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from statutory_payroll.calculators.payslip_builder import PayslipBuilder
from statutory_payroll.config import get_settings
from statutory_payroll.events.emitter import EventEmitter
from statutory_payroll.services.notifications import PayslipEmailService
from statutory_payroll.services.store import SqlPayrollStore


def get_session_factory(request: Request) -> async_sessionmaker[AsyncSession]:
    return request.app.state.session_factory


async def get_db_session(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency."""
    async with factory() as session:
        yield session


def get_store(
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> SqlPayrollStore:
    return SqlPayrollStore(factory)


def get_events(request: Request) -> EventEmitter:
    return request.app.state.events


async def get_builder(
    company_id: Annotated[UUID, Path()],
    store: Annotated[SqlPayrollStore, Depends(get_store)],
) -> PayslipBuilder:
    """Builder with configured rates and the company's salary components."""
    components = await store.get_salary_components(company_id)
    return PayslipBuilder.from_settings(get_settings(), components)


def get_email_service(
    request: Request,
    factory: Annotated[async_sessionmaker[AsyncSession], Depends(get_session_factory)],
) -> PayslipEmailService:
    return PayslipEmailService(
        factory,
        request.app.state.email_transport,
        currency=get_settings().currency,
        events=request.app.state.events,
    )


async def get_actor_id(x_user_id: Annotated[str | None, Header()] = None) -> UUID | None:
    """Extract the acting user from the optional X-User-ID header."""
    if not x_user_id:
        return None
    try:
        return UUID(x_user_id)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid X-User-ID format",
        )


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
Store = Annotated[SqlPayrollStore, Depends(get_store)]
Events = Annotated[EventEmitter, Depends(get_events)]
Builder = Annotated[PayslipBuilder, Depends(get_builder)]
EmailService = Annotated[PayslipEmailService, Depends(get_email_service)]
ActorId = Annotated[UUID | None, Depends(get_actor_id)]
