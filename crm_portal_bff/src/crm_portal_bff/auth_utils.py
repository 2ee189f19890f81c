# src/crm_portal_bff/auth_utils.py

import logging
import typing

from jose import JWTError, jwt

from .models import TokenPair

logger = logging.getLogger(__name__)


def bearer_headers(token: str) -> typing.Dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def expiry_from_jwt(token: str) -> typing.Optional[int]:
    """
    Reads the `exp` claim of an access token, in milliseconds since the epoch.
    The signature is not checked; the CRM backend remains the authority on validity.
    """
    try:
        claims = jwt.get_unverified_claims(token)
    except JWTError as e:
        logger.debug("Access token is not a readable JWT: %s", e)
        return None
    exp = claims.get("exp")
    if not isinstance(exp, (int, float)):
        return None
    return int(exp * 1000)


def resolve_token_expiry(tokens: TokenPair) -> int:
    """
    Absolute expiry of `tokens.token` in ms. Prefers the backend's `tokenExpires`,
    falls back to the JWT `exp` claim, and finally to 0 (already expired) so that
    the next use forces a refresh instead of trusting an unknown lifetime.
    """
    if tokens.token_expires:
        return int(tokens.token_expires)
    from_claims = expiry_from_jwt(tokens.token)
    if from_claims is not None:
        return from_claims
    logger.warning("Backend sent no tokenExpires and the token carries no exp claim")
    return 0
