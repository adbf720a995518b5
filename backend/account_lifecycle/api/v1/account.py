from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from account_lifecycle.core.config import settings
from account_lifecycle.core.dependencies import CurrentUser, get_current_user, get_identity_gateway
from account_lifecycle.core.errors import AccountNotFound, UpstreamError
from account_lifecycle.core.rate_limit import client_ip, per_identifier_limiter
from account_lifecycle.db.session import get_session
from account_lifecycle.schemas.account import (
    DeletionInitiatedResponse,
    DeletionStatusResponse,
    IdentitiesResponse,
    LinkedIdentityResponse,
    MessageResponse,
    RestoreAccountRequest,
    UnlinkProviderRequest,
)
from account_lifecycle.services import account_deletion as account_deletion_service
from account_lifecycle.services import oauth_unlink
from account_lifecycle.services.identity import IdentityGateway, IdentityProviderError

router = APIRouter(prefix="/account", tags=["account"])

restore_rate_limit = per_identifier_limiter(client_ip, settings.restore_rate_limit, 60, "account:restore")


@router.post("/deletion", status_code=status.HTTP_202_ACCEPTED, response_model=DeletionInitiatedResponse)
async def initiate_deletion(
    background_tasks: BackgroundTasks,
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> DeletionInitiatedResponse:
    result = await account_deletion_service.initiate_account_deletion(
        session,
        current_user.id,
        identity=identity,
        notify=lambda notice: background_tasks.add_task(account_deletion_service.send_deletion_notice, notice),
    )
    return DeletionInitiatedResponse.model_validate(result)


@router.get("/deletion", response_model=DeletionStatusResponse)
async def read_deletion_status(
    current_user: CurrentUser = Depends(get_current_user),
    session: AsyncSession = Depends(get_session),
) -> DeletionStatusResponse:
    deletion_status = await account_deletion_service.get_deletion_status(session, current_user.id)
    return DeletionStatusResponse.model_validate(deletion_status)


@router.post("/deletion/restore", response_model=MessageResponse)
async def restore_account(
    payload: RestoreAccountRequest,
    session: AsyncSession = Depends(get_session),
    _: None = Depends(restore_rate_limit),
) -> MessageResponse:
    result = await account_deletion_service.restore_account(session, payload.token)
    return MessageResponse(message=result.message)


@router.get("/identities", response_model=IdentitiesResponse)
async def list_identities(
    current_user: CurrentUser = Depends(get_current_user),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> IdentitiesResponse:
    try:
        account = await identity.get_account(current_user.id)
    except IdentityProviderError as exc:
        raise UpstreamError(f"Failed to load linked accounts: {exc}") from exc
    if account is None:
        raise AccountNotFound()
    return IdentitiesResponse(
        has_password=account.has_password,
        identities=[LinkedIdentityResponse.model_validate(linked) for linked in account.identities],
    )


@router.post("/identities/unlink", response_model=MessageResponse)
async def unlink_identity(
    payload: UnlinkProviderRequest,
    current_user: CurrentUser = Depends(get_current_user),
    identity: IdentityGateway = Depends(get_identity_gateway),
) -> MessageResponse:
    result = await oauth_unlink.unlink_oauth_provider(
        current_user.id,
        payload.provider,
        identity=identity,
        access_token=current_user.access_token,
    )
    return MessageResponse(message=result.message)
