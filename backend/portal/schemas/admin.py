"""Pydantic schemas for the admin onboarding API."""

from datetime import datetime

from pydantic import BaseModel, Field


class OnboardingClientResponse(BaseModel):
    """One client in the onboarding listing."""

    client_id: str
    client_code: str
    client_name: str | None = None
    email: str | None = None
    status: str = Field(description="Derived onboarding stage")
    stored_status: str | None = Field(None, description="Stage as recorded in the database")
    password_set_at: datetime | None = None
    first_login_at: datetime | None = None
    created_at: datetime | None = None


class OnboardingListResponse(BaseModel):
    clients: list[OnboardingClientResponse]
    total: int


class OnboardingStatsResponse(BaseModel):
    """Campaign-oriented totals."""

    total_with_email: int
    ready_for_campaign: int
    email_sent: int
    completed: int
    missing_email: int
    ready_clients: list[OnboardingClientResponse]


class CampaignSentRequest(BaseModel):
    client_codes: list[str] = Field(..., min_length=1, max_length=1000)


class CampaignSentResponse(BaseModel):
    updated: int


class ClientCodeRequest(BaseModel):
    client_code: str = Field(..., min_length=1, max_length=64)


class SetupLinkResponse(BaseModel):
    """Result of issuing a setup link."""

    client_code: str
    email: str
    expires_at: datetime
    email_sent: bool
    setup_link: str | None = Field(
        None, description="Returned only when the email could not be delivered"
    )


class ImpersonateResponse(BaseModel):
    client_code: str
    accounts: int


class DefaultPasswordResponse(BaseModel):
    client_code: str
    password_state: str
