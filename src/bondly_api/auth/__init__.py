"""Email OTP authentication and bearer tokens."""

from bondly_api.auth.otp import OTPStore, generate_code, normalize_email
from bondly_api.auth.service import AuthService, CodeStatus, LoginResult
from bondly_api.auth.tokens import TokenClaims, TokenIssuer

__all__ = [
    "AuthService",
    "CodeStatus",
    "LoginResult",
    "OTPStore",
    "TokenClaims",
    "TokenIssuer",
    "generate_code",
    "normalize_email",
]
