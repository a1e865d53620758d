"""Admin onboarding endpoints.

Every route requires a valid admin session.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Response, status

from portal.api.deps import (
    get_client_session_manager,
    get_credential_store,
    get_email_service,
    get_setup_token_issuer,
    require_admin_session,
)
from portal.core import settings
from portal.core.timeutils import utc_now
from portal.models import ClientCredential, OnboardingStatus, PasswordState
from portal.schemas.admin import (
    CampaignSentRequest,
    CampaignSentResponse,
    ClientCodeRequest,
    DefaultPasswordResponse,
    ImpersonateResponse,
    OnboardingClientResponse,
    OnboardingListResponse,
    OnboardingStatsResponse,
    SetupLinkResponse,
)
from portal.services.admin_session import AdminSession
from portal.services.client_session import ClientAccount, ClientSessionManager
from portal.services.credential_store import CredentialStore
from portal.services.email import EmailService
from portal.services.errors import InvalidError, NotFoundError
from portal.services.onboarding import build_listing
from portal.services.passwords import hash_password
from portal.services.setup_token import SetupTokenIssuer

logger = logging.getLogger(__name__)

router = APIRouter(
    prefix="/admin",
    tags=["admin"],
    dependencies=[Depends(require_admin_session)],
)


def _client_response(credential: ClientCredential, derived: str) -> OnboardingClientResponse:
    return OnboardingClientResponse(
        client_id=credential.client_id,
        client_code=credential.client_code,
        client_name=credential.client_name,
        email=credential.email,
        status=derived,
        stored_status=credential.onboarding_status,
        password_set_at=credential.password_set_at,
        first_login_at=credential.first_login_at,
        created_at=credential.created_at,
    )


@router.get("/onboarding-status", response_model=OnboardingListResponse)
async def onboarding_status(
    store: CredentialStore = Depends(get_credential_store),
) -> OnboardingListResponse:
    """Clients with an email, pending first and newest first within a stage."""
    listing = build_listing(await store.list_onboarding_candidates(), utc_now())
    clients = [_client_response(credential, derived) for credential, derived in listing]
    return OnboardingListResponse(clients=clients, total=len(clients))


@router.get("/onboarding-stats", response_model=OnboardingStatsResponse)
async def onboarding_stats(
    store: CredentialStore = Depends(get_credential_store),
) -> OnboardingStatsResponse:
    listing = build_listing(await store.list_onboarding_candidates(), utc_now())
    ready = [
        _client_response(credential, derived)
        for credential, derived in listing
        if derived == OnboardingStatus.PENDING
    ]
    sent = sum(1 for _, derived in listing if derived == OnboardingStatus.EMAIL_SENT)
    completed = sum(1 for _, derived in listing if derived == OnboardingStatus.COMPLETED)
    return OnboardingStatsResponse(
        total_with_email=len(listing),
        ready_for_campaign=len(ready),
        email_sent=sent,
        completed=completed,
        missing_email=await store.count_missing_email(),
        ready_clients=ready,
    )


@router.post("/onboarding/campaign-sent", response_model=CampaignSentResponse)
async def campaign_sent(
    request: CampaignSentRequest,
    store: CredentialStore = Depends(get_credential_store),
    admin: AdminSession = Depends(require_admin_session),
) -> CampaignSentResponse:
    """Record that an external campaign reached these clients."""
    updated = await store.mark_campaign_sent(request.client_codes)
    logger.info(f"{admin.user.username} marked {updated} client(s) as emailed")
    return CampaignSentResponse(updated=updated)


@router.post("/setup-link", response_model=SetupLinkResponse)
async def send_setup_link(
    request: ClientCodeRequest,
    issuer: SetupTokenIssuer = Depends(get_setup_token_issuer),
    email_service: EmailService = Depends(get_email_service),
    admin: AdminSession = Depends(require_admin_session),
) -> SetupLinkResponse:
    """Issue a fresh setup token for a client and email the link.

    The token is stored even when delivery fails; the link is then returned
    so it can be passed on manually.
    """
    try:
        credential, secret = await issuer.issue_setup_token(request.client_code)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e
    except InvalidError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e)) from e

    to = credential.email or ""
    link = email_service.setup_link(credential.client_code, secret.value)
    sent = await email_service.send_setup_email(to, credential.client_name, link)
    logger.info(f"{admin.user.username} issued setup link for {credential.client_code}")
    return SetupLinkResponse(
        client_code=credential.client_code,
        email=to,
        expires_at=secret.expires_at,
        email_sent=sent,
        setup_link=None if sent else link,
    )


@router.post("/default-password", response_model=DefaultPasswordResponse)
async def assign_default_password(
    request: ClientCodeRequest,
    store: CredentialStore = Depends(get_credential_store),
    admin: AdminSession = Depends(require_admin_session),
) -> DefaultPasswordResponse:
    """Provision the shared default password for a client that has not chosen one."""
    credential = await store.get_by_client_code(request.client_code)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")
    if credential.has_user_password:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Client has already chosen a password",
        )

    updated = await store.assign_default_password(
        credential.client_code, hash_password(settings.default_client_password)
    )
    if not updated:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Client has already chosen a password",
        )
    logger.info(f"{admin.user.username} assigned default password to {credential.client_code}")
    return DefaultPasswordResponse(
        client_code=credential.client_code,
        password_state=PasswordState.DEFAULT_ASSIGNED.value,
    )


@router.post("/impersonate", response_model=ImpersonateResponse)
async def impersonate(
    request: ClientCodeRequest,
    response: Response,
    store: CredentialStore = Depends(get_credential_store),
    sessions: ClientSessionManager = Depends(get_client_session_manager),
    admin: AdminSession = Depends(require_admin_session),
) -> ImpersonateResponse:
    """Open a client session for the accounts of one client (support tool)."""
    credential = await store.get_by_client_code(request.client_code)
    if credential is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Client not found")

    accounts = await store.list_by_email(credential.email) if credential.email else [credential]
    sessions.issue(
        response,
        [ClientAccount(client_id=a.client_id, client_code=a.client_code) for a in accounts],
    )
    logger.warning(f"{admin.user.username} is impersonating client {credential.client_code}")
    return ImpersonateResponse(client_code=credential.client_code, accounts=len(accounts))
