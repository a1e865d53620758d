# Client Portal Models
from portal.models.admin_user import AdminUser
from portal.models.base import BaseModel
from portal.models.client_credential import ClientCredential, OnboardingStatus, PasswordState
from portal.models.password_reset_token import PasswordResetToken

__all__ = [
    "AdminUser",
    "BaseModel",
    "ClientCredential",
    "OnboardingStatus",
    "PasswordResetToken",
    "PasswordState",
]
