# Bearer-token authentication against Microsoft Entra ID
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt
from fastapi import Header, Request

from config import Settings
from errors import ApiError

logger = logging.getLogger(__name__)


@dataclass
class AuthenticatedUser:
    oid: str
    name: str
    email: str


class TokenValidator:
    """Verifies RS256 access tokens with keys from the tenant's JWKS endpoint."""

    def __init__(self, tenant_id: str, client_id: str, jwks_client: Optional[Any] = None):
        self.tenant_id = tenant_id
        self.audience = f"api://{client_id}"
        # v2.0 and v1.0 app registrations issue tokens with different issuers
        self.issuers = [
            f"https://login.microsoftonline.com/{tenant_id}/v2.0",
            f"https://sts.windows.net/{tenant_id}/",
        ]
        self.jwks_client = jwks_client or jwt.PyJWKClient(
            f"https://login.microsoftonline.com/{tenant_id}/discovery/v2.0/keys",
            cache_keys=True,
            lifespan=86400,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "TokenValidator":
        return cls(settings.entra_tenant_id, settings.entra_client_id)

    def validate(self, token: str) -> AuthenticatedUser:
        header = jwt.get_unverified_header(token)
        if not header.get("kid"):
            raise jwt.InvalidTokenError("No kid in token header")

        signing_key = self.jwks_client.get_signing_key_from_jwt(token)
        payload = jwt.decode(
            token,
            signing_key.key,
            algorithms=["RS256"],
            audience=self.audience,
            issuer=self.issuers,
        )
        return user_from_claims(payload)


def user_from_claims(payload: Dict[str, Any]) -> AuthenticatedUser:
    # v1.0 tokens carry upn/unique_name, v2.0 tokens preferred_username/email
    email = (
        payload.get("email")
        or payload.get("preferred_username")
        or payload.get("upn")
        or payload.get("unique_name")
        or ""
    )
    return AuthenticatedUser(
        oid=payload.get("oid", ""),
        name=payload.get("name") or "Unknown",
        email=email,
    )


def _validator(request: Request) -> TokenValidator:
    return request.app.state.token_validator


def authenticate(request: Request, authorization: Optional[str]) -> AuthenticatedUser:
    if not authorization:
        raise ApiError.unauthorized("No authorization header")
    if not authorization.startswith("Bearer "):
        raise ApiError.unauthorized("Invalid authorization format")
    token = authorization[7:].strip()
    if not token:
        raise ApiError.unauthorized("No token provided")

    try:
        user = _validator(request).validate(token)
    except jwt.ExpiredSignatureError:
        raise ApiError.unauthorized("Token expired")
    except jwt.InvalidTokenError:
        raise ApiError.unauthorized("Invalid token")
    except Exception as e:
        logger.error("Authentication error: %s", e, exc_info=True)
        raise ApiError.unauthorized("Authentication failed")

    logger.debug("User authenticated: oid=%s name=%s", user.oid, user.name)
    return user


def get_current_user(request: Request, authorization: Optional[str] = Header(None)) -> AuthenticatedUser:
    return authenticate(request, authorization)


def get_optional_user(request: Request, authorization: Optional[str] = Header(None)) -> Optional[AuthenticatedUser]:
    if not authorization or not authorization.startswith("Bearer "):
        return None
    try:
        return authenticate(request, authorization)
    except ApiError:
        return None
