from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from account_lifecycle.core.dependencies import get_identity_gateway, get_sweep_secret
from account_lifecycle.db.session import get_session_factory
from account_lifecycle.schemas.account import SweepSummaryResponse
from account_lifecycle.services import deletion_sweeper
from account_lifecycle.services.identity import IdentityGateway

router = APIRouter(prefix="/jobs", tags=["jobs"])


@router.post("/account-deletions/sweep", response_model=SweepSummaryResponse)
async def sweep_account_deletions(
    secret: str | None = Depends(get_sweep_secret),
    session_factory: async_sessionmaker[AsyncSession] = Depends(get_session_factory),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> SweepSummaryResponse:
    """Called by the external scheduler with ``Authorization: Bearer <CRON_SECRET>``."""
    summary = await deletion_sweeper.trigger_sweep(secret, session_factory=session_factory, identity=identity)
    return SweepSummaryResponse.model_validate(summary)
