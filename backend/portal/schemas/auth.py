"""Pydantic schemas for the client and admin authentication APIs."""

from datetime import datetime

from pydantic import BaseModel, Field

# --- Client auth ---


class ClientLoginRequest(BaseModel):
    """Request for client login."""

    email: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=128)


class ClientAccountResponse(BaseModel):
    client_id: str
    client_code: str
    client_name: str | None = None


class ClientLoginResponse(BaseModel):
    """Response after a client login attempt that passed verification."""

    success: bool = True
    requires_setup: bool = Field(
        default=False,
        description="True when the identity is still on an assigned password; no session is issued",
    )
    accounts: list[ClientAccountResponse] = Field(default_factory=list)


class ClientDataResponse(BaseModel):
    """Accounts the current client session may act for."""

    accounts: list[ClientAccountResponse]


class EmailRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)


class PasswordStatusResponse(BaseModel):
    client_name: str | None = None
    is_password_set: bool
    requires_setup: bool
    onboarding_status: str | None = None


class VerifyForSetupRequest(BaseModel):
    """Request to verify the current (assigned) password before setup."""

    identifier: str = Field(..., min_length=1, max_length=255, description="Email address")
    current_password: str = Field(..., min_length=1, max_length=128)


class VerifyForSetupResponse(BaseModel):
    success: bool = True
    requires_setup: bool
    client_name: str | None = None


class CompletePasswordSetupRequest(BaseModel):
    """Request to replace the assigned password with a chosen one."""

    identifier: str = Field(..., min_length=1, max_length=255, description="Email address")
    current_password: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)
    confirm_password: str = Field(..., min_length=1, max_length=128)


class SetupTokenInfoResponse(BaseModel):
    """Summary of the client a valid setup token belongs to."""

    valid: bool = True
    client_code: str
    client_name: str | None = None
    email: str | None = None


class CompleteSetupRequest(BaseModel):
    """Request to set the first password with a setup link token."""

    code: str = Field(..., min_length=1, max_length=64)
    token: str = Field(..., min_length=1, max_length=128)
    password: str = Field(..., min_length=1, max_length=128)
    confirm_password: str = Field(..., min_length=1, max_length=128)


class VerifyOtpRequest(BaseModel):
    email: str = Field(..., min_length=1, max_length=255)
    otp: str = Field(..., min_length=1, max_length=16)


class CompleteOtpSetupRequest(BaseModel):
    """Request to set the first password with an emailed OTP."""

    email: str = Field(..., min_length=1, max_length=255)
    otp: str = Field(..., min_length=1, max_length=16)
    new_password: str = Field(..., min_length=1, max_length=128)
    confirm_password: str = Field(..., min_length=1, max_length=128)


class ResetPasswordRequest(BaseModel):
    token: str = Field(..., min_length=1, max_length=128)
    new_password: str = Field(..., min_length=1, max_length=128)


class MessageResponse(BaseModel):
    """Generic message response."""

    message: str


# --- Admin auth ---


class AdminStatusResponse(BaseModel):
    """Response for admin auth status check."""

    setup_required: bool = Field(description="True if no admin user exists and setup is needed")


class AdminSetupRequest(BaseModel):
    """Request for initial admin setup."""

    username: str = Field(
        ...,
        min_length=3,
        max_length=50,
        pattern=r"^[a-zA-Z][a-zA-Z0-9_]*$",
        description="Username (3-50 chars, alphanumeric and underscore, must start with letter)",
    )
    password: str = Field(
        ...,
        min_length=12,
        max_length=128,
        description="Password (minimum 12 characters)",
    )
    display_name: str | None = Field(None, max_length=255)


class AdminSetupResponse(BaseModel):
    message: str
    username: str


class AdminLoginRequest(BaseModel):
    """Request for admin login."""

    username: str = Field(..., min_length=1)
    password: str = Field(..., min_length=1)
    redirect: str | None = Field(None, max_length=2048)


class AdminLoginResponse(BaseModel):
    """Pending ticket to be committed by the completion call."""

    ticket: str
    complete_url: str
    expires_in: int = Field(description="Ticket validity in seconds")


class AdminCompleteRequest(BaseModel):
    token: str = Field(..., min_length=1)


class AdminSessionResponse(BaseModel):
    """The current admin session."""

    authenticated: bool = True
    username: str
    display_name: str | None = None
    expires_at: datetime
    expires_in: int = Field(description="Seconds until the session expires")
