"""
Firebase Authentication Module - ID Token Verification for FastAPI Backend

Firebase ID tokens are RS256 JWTs signed by Google's securetoken service.
This module:
- Fetches Google's public signing keys (JWK format) and caches them
- Verifies the signature, expiry, audience (project id) and issuer
- Returns the decoded claims; `sub` is the Firebase uid

Usage:
    from salonops.firebase_auth import verify_firebase_token

    claims = verify_firebase_token(token)
    uid = claims["sub"]
"""

import logging
from functools import lru_cache

import httpx
import jwt
from fastapi import HTTPException, status

from .core.config import get_settings

logger = logging.getLogger(__name__)

GOOGLE_JWKS_URL = "https://www.googleapis.com/service_accounts/v1/jwk/securetoken@system.gserviceaccount.com"
ISSUER_PREFIX = "https://securetoken.google.com/"


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


@lru_cache(maxsize=1)
def fetch_google_jwks() -> dict:
    """
    Fetch the securetoken JWKS from Google.

    Cached; `get_signing_key` clears the cache once when a token carries an
    unknown key id, which covers Google's key rotation.
    """
    try:
        with httpx.Client(timeout=10.0) as client:
            response = client.get(GOOGLE_JWKS_URL, headers={"User-Agent": "SalonOps-Backend/1.0"})
            response.raise_for_status()
            jwks_data = response.json()
            logger.info(f"Fetched {len(jwks_data.get('keys', []))} Firebase signing keys")
            return jwks_data
    except httpx.HTTPStatusError as e:
        logger.error(f"HTTP {e.response.status_code} fetching Firebase JWKS: {e.response.text}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Unable to fetch Firebase signing keys: HTTP Error {e.response.status_code}",
        )
    except httpx.HTTPError as e:
        logger.error(f"Failed to fetch Firebase JWKS: {e}")
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=f"Unable to fetch Firebase signing keys: {e}",
        )


def _find_key(jwks_data: dict, kid: str):
    for key in jwks_data.get("keys", []):
        if key.get("kid") == kid:
            return jwt.PyJWK.from_dict(key).key
    return None


def get_signing_key(kid: str):
    """Public key for `kid`, refreshing the cached JWKS once on a miss."""
    signing_key = _find_key(fetch_google_jwks(), kid)
    if signing_key is None:
        fetch_google_jwks.cache_clear()
        signing_key = _find_key(fetch_google_jwks(), kid)
    if signing_key is None:
        raise _unauthorized(f"No matching key found for kid: {kid}")
    return signing_key


def verify_firebase_token(token: str) -> dict:
    """
    Verify a Firebase ID token and return its claims.

    Raises:
        HTTPException 401: expired, malformed, wrong audience/issuer or bad signature
        HTTPException 500: FIREBASE_PROJECT_ID is not configured
    """
    settings = get_settings()
    project_id = settings.firebase_project_id
    if not project_id:
        logger.error("FIREBASE_PROJECT_ID is not configured; cannot verify ID tokens")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Authentication is not configured",
        )

    try:
        unverified_header = jwt.get_unverified_header(token)
    except jwt.InvalidTokenError as e:
        logger.warning(f"Malformed ID token header: {e}")
        raise _unauthorized("Invalid token") from e

    kid = unverified_header.get("kid")
    if not kid:
        raise _unauthorized("Token header missing key ID (kid)")

    signing_key = get_signing_key(kid)

    try:
        decoded = jwt.decode(
            token,
            signing_key,
            algorithms=["RS256"],
            audience=project_id,
            issuer=f"{ISSUER_PREFIX}{project_id}",
            options={"require": ["exp", "iat", "sub"]},
        )
    except jwt.ExpiredSignatureError as e:
        logger.warning("Token verification failed: Token has expired")
        raise _unauthorized("Token has expired") from e
    except jwt.InvalidTokenError as e:
        logger.warning(f"Token verification failed: {e}")
        raise _unauthorized("Invalid token") from e

    if not decoded.get("sub"):
        logger.error("Token verified but missing 'sub' claim")
        raise _unauthorized("Invalid token: missing user ID claim")

    logger.debug(f"Token verified for user: {decoded['sub']}")
    return decoded
