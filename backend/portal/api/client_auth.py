"""Client authentication and password setup endpoints."""

import logging
import time
from collections import defaultdict

from fastapi import APIRouter, Depends, HTTPException, Query, Request, Response, status

from portal.api.deps import (
    get_client_auth_service,
    get_client_session_manager,
    get_credential_store,
    get_email_service,
    get_setup_token_issuer,
    require_client_session,
)
from portal.core.request_utils import get_client_ip
from portal.schemas.auth import (
    ClientAccountResponse,
    ClientDataResponse,
    ClientLoginRequest,
    ClientLoginResponse,
    CompleteOtpSetupRequest,
    CompletePasswordSetupRequest,
    CompleteSetupRequest,
    EmailRequest,
    MessageResponse,
    PasswordStatusResponse,
    ResetPasswordRequest,
    SetupTokenInfoResponse,
    VerifyForSetupRequest,
    VerifyForSetupResponse,
    VerifyOtpRequest,
)
from portal.services.client_auth import ClientAuthService, LoginResult
from portal.services.client_session import ClientSession, ClientSessionManager
from portal.services.credential_store import CredentialStore
from portal.services.email import EmailService
from portal.services.errors import (
    ExpiredError,
    InvalidError,
    LockedError,
    NotFoundError,
    PasswordPolicyError,
)
from portal.services.setup_token import SetupTokenIssuer

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["client-auth"])

_INVALID_TOKEN = "Invalid or expired token"

# Rate limiting for OTP guesses, counted per client IP on failures only
_otp_attempts: dict[str, list[float]] = defaultdict(list)
_OTP_WINDOW = 600  # 10-minute window, the lifetime of one OTP
_OTP_MAX_ATTEMPTS = 5  # Max wrong OTPs per window


def _check_otp_rate_limit(client_ip: str) -> None:
    """Check if a client IP has exceeded the OTP attempt rate limit."""
    now = time.monotonic()
    attempts = _otp_attempts[client_ip]
    _otp_attempts[client_ip] = [t for t in attempts if now - t < _OTP_WINDOW]
    if len(_otp_attempts[client_ip]) >= _OTP_MAX_ATTEMPTS:
        logger.warning(
            "OTP rate limit exceeded for %s",
            client_ip,
            extra={"event": "otp_throttled", "client_ip": client_ip},
        )
        raise HTTPException(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            detail="Too many attempts. Please try again later.",
        )


def _record_otp_failure(client_ip: str) -> None:
    """Record a rejected OTP for rate limiting."""
    _otp_attempts[client_ip].append(time.monotonic())


def _locked(e: LockedError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_423_LOCKED, detail=str(e))


def _invalid_credentials() -> HTTPException:
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")


def _invalid_token() -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=_INVALID_TOKEN)


def _policy_error(e: PasswordPolicyError) -> HTTPException:
    return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))


def _login_response(result: LoginResult) -> ClientLoginResponse:
    return ClientLoginResponse(
        requires_setup=result.requires_setup,
        accounts=[
            ClientAccountResponse(
                client_id=account.client_id,
                client_code=account.client_code,
                client_name=account.client_name,
            )
            for account in result.accounts
        ],
    )


# --- Login ---


@router.post("/login", response_model=ClientLoginResponse)
async def login(
    request: ClientLoginRequest,
    response: Response,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
    sessions: ClientSessionManager = Depends(get_client_session_manager),
) -> ClientLoginResponse:
    """Authenticate a client by email and password.

    Identities still on an assigned password are told to complete setup and
    do not get a session.
    """
    try:
        result = await auth_service.login(request.email, request.password)
    except LockedError as e:
        raise _locked(e) from e
    except (NotFoundError, InvalidError) as e:
        raise _invalid_credentials() from e

    if not result.requires_setup:
        sessions.issue(response, result.session_accounts)
        logger.info(f"Client logged in with {len(result.accounts)} account(s)")
    return _login_response(result)


@router.post("/logout", response_model=MessageResponse)
async def logout(
    response: Response,
    sessions: ClientSessionManager = Depends(get_client_session_manager),
) -> MessageResponse:
    sessions.revoke(response)
    return MessageResponse(message="Logged out successfully")


@router.get("/client-data", response_model=ClientDataResponse)
async def client_data(
    client_session: ClientSession = Depends(require_client_session),
    store: CredentialStore = Depends(get_credential_store),
) -> ClientDataResponse:
    """Accounts the current client may act for."""
    accounts = []
    for account in client_session.accounts:
        credential = await store.get_by_client_code(account.client_code)
        if credential is None or credential.client_id != account.client_id:
            continue
        accounts.append(
            ClientAccountResponse(
                client_id=credential.client_id,
                client_code=credential.client_code,
                client_name=credential.client_name,
            )
        )
    return ClientDataResponse(accounts=accounts)


# --- Replacing the assigned password ---


@router.post("/check-password-status", response_model=PasswordStatusResponse)
async def check_password_status(
    request: EmailRequest,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
) -> PasswordStatusResponse:
    try:
        result = await auth_service.password_status(request.email)
    except LockedError as e:
        raise _locked(e) from e
    except NotFoundError as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Email address not found",
        ) from e

    return PasswordStatusResponse(
        client_name=result.client_name,
        is_password_set=result.is_password_set,
        requires_setup=not result.is_password_set,
        onboarding_status=result.onboarding_status,
    )


@router.post("/verify-for-setup", response_model=VerifyForSetupResponse)
async def verify_for_setup(
    request: VerifyForSetupRequest,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
) -> VerifyForSetupResponse:
    """Verify the assigned password before the client chooses their own."""
    try:
        requires_setup, client_name = await auth_service.verify_for_setup(
            request.identifier, request.current_password
        )
    except LockedError as e:
        raise _locked(e) from e
    except (NotFoundError, InvalidError) as e:
        raise _invalid_credentials() from e

    return VerifyForSetupResponse(requires_setup=requires_setup, client_name=client_name)


@router.post("/complete-password-setup", response_model=ClientLoginResponse)
async def complete_password_setup(
    request: CompletePasswordSetupRequest,
    response: Response,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
    sessions: ClientSessionManager = Depends(get_client_session_manager),
) -> ClientLoginResponse:
    try:
        result = await auth_service.complete_password_setup(
            request.identifier,
            request.current_password,
            request.new_password,
            request.confirm_password,
        )
    except PasswordPolicyError as e:
        raise _policy_error(e) from e
    except LockedError as e:
        raise _locked(e) from e
    except (NotFoundError, InvalidError) as e:
        raise _invalid_credentials() from e

    sessions.issue(response, result.session_accounts)
    return _login_response(result)


# --- Setup link ---


@router.get("/validate-setup-token", response_model=SetupTokenInfoResponse)
async def validate_setup_token(
    code: str = Query(..., min_length=1, max_length=64),
    token: str = Query(..., min_length=1, max_length=128),
    issuer: SetupTokenIssuer = Depends(get_setup_token_issuer),
) -> SetupTokenInfoResponse:
    """Check a setup link before showing the password form."""
    try:
        credential = await issuer.validate_token(code, token)
    except (NotFoundError, ExpiredError) as e:
        raise _invalid_token() from e

    return SetupTokenInfoResponse(
        client_code=credential.client_code,
        client_name=credential.client_name,
        email=credential.email,
    )


@router.post("/complete-setup", response_model=ClientLoginResponse)
async def complete_setup(
    request: CompleteSetupRequest,
    response: Response,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
    sessions: ClientSessionManager = Depends(get_client_session_manager),
) -> ClientLoginResponse:
    """Set the first password with a setup link token."""
    try:
        result = await auth_service.complete_secret_setup(
            request.code, request.token, request.password, request.confirm_password
        )
    except PasswordPolicyError as e:
        raise _policy_error(e) from e
    except (NotFoundError, ExpiredError, InvalidError) as e:
        raise _invalid_token() from e

    sessions.issue(response, result.session_accounts)
    return _login_response(result)


# --- Setup OTP ---


@router.post("/send-setup-otp", response_model=MessageResponse)
async def send_setup_otp(
    request: EmailRequest,
    issuer: SetupTokenIssuer = Depends(get_setup_token_issuer),
    email_service: EmailService = Depends(get_email_service),
) -> MessageResponse:
    try:
        credential, secret = await issuer.issue_setup_otp(request.email)
    except NotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e)) from e

    await email_service.send_setup_otp_email(request.email, credential.client_name, secret.value)
    return MessageResponse(message="OTP sent to your email")


@router.post("/verify-setup-otp", response_model=SetupTokenInfoResponse)
async def verify_setup_otp(
    request: VerifyOtpRequest,
    http_request: Request,
    issuer: SetupTokenIssuer = Depends(get_setup_token_issuer),
) -> SetupTokenInfoResponse:
    client_ip = get_client_ip(http_request)
    _check_otp_rate_limit(client_ip)
    try:
        credential = await issuer.validate_token(request.email, request.otp)
    except (NotFoundError, ExpiredError) as e:
        _record_otp_failure(client_ip)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OTP",
        ) from e

    return SetupTokenInfoResponse(
        client_code=credential.client_code,
        client_name=credential.client_name,
        email=credential.email,
    )


@router.post("/complete-otp-setup", response_model=ClientLoginResponse)
async def complete_otp_setup(
    request: CompleteOtpSetupRequest,
    response: Response,
    http_request: Request,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
    sessions: ClientSessionManager = Depends(get_client_session_manager),
) -> ClientLoginResponse:
    """Set the first password with an emailed OTP."""
    client_ip = get_client_ip(http_request)
    _check_otp_rate_limit(client_ip)
    try:
        result = await auth_service.complete_secret_setup(
            request.email, request.otp, request.new_password, request.confirm_password
        )
    except PasswordPolicyError as e:
        raise _policy_error(e) from e
    except (NotFoundError, ExpiredError, InvalidError) as e:
        _record_otp_failure(client_ip)
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid or expired OTP",
        ) from e

    sessions.issue(response, result.session_accounts)
    return _login_response(result)


# --- Forgot password ---


@router.post("/forgot", response_model=MessageResponse)
async def forgot_password(
    request: EmailRequest,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
    email_service: EmailService = Depends(get_email_service),
) -> MessageResponse:
    """Start a password reset. The answer is the same whether or not the email exists."""
    created = await auth_service.request_password_reset(request.email)
    if created is not None:
        _, raw_token = created
        await email_service.send_password_reset_email(
            request.email, email_service.reset_link(raw_token)
        )
    return MessageResponse(message="If the email exists, a reset link has been sent")


@router.post("/reset", response_model=MessageResponse)
async def reset_password(
    request: ResetPasswordRequest,
    auth_service: ClientAuthService = Depends(get_client_auth_service),
) -> MessageResponse:
    try:
        await auth_service.reset_password(request.token, request.new_password)
    except PasswordPolicyError as e:
        raise _policy_error(e) from e
    except (NotFoundError, ExpiredError, InvalidError) as e:
        raise _invalid_token() from e

    return MessageResponse(message="Password has been reset")
