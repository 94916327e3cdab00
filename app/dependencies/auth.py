from fastapi import Header, HTTPException, status
import jwt  # PyJWT
import logging
import requests
import time
from typing import Optional
from app.core import config

logger = logging.getLogger(__name__)

# Cache for JWKS (Public Keys)
JWKS_CACHE = None
JWKS_CACHE_TIMESTAMP = None
JWKS_CACHE_TTL = 3600  # Cache for 1 hour


def get_jwks(jwks_url: str, force_refresh: bool = False):
    """
    Fetch the identity provider's JWKS with caching and retry logic.
    Only caches successful fetches - failures are not cached to allow retries.
    """
    global JWKS_CACHE, JWKS_CACHE_TIMESTAMP

    if JWKS_CACHE and JWKS_CACHE_TIMESTAMP and not force_refresh:
        if time.time() - JWKS_CACHE_TIMESTAMP < JWKS_CACHE_TTL:
            return JWKS_CACHE

    max_retries = 3
    last_error = None

    for attempt in range(max_retries):
        try:
            r = requests.get(jwks_url, timeout=10)
            r.raise_for_status()
            JWKS_CACHE = r.json()
            JWKS_CACHE_TIMESTAMP = time.time()
            logger.info("[AUTH] Fetched JWKS with %s keys", len(JWKS_CACHE.get("keys", [])))
            return JWKS_CACHE
        except requests.exceptions.RequestException as e:
            last_error = str(e)
            logger.warning("[AUTH] JWKS fetch failed (attempt %s/%s): %s", attempt + 1, max_retries, last_error)
            if attempt < max_retries - 1:
                time.sleep(1)

    logger.error("[AUTH] Failed to fetch JWKS after %s attempts: %s", max_retries, last_error)
    # Stale keys are better than locking everyone out during a provider blip
    return JWKS_CACHE


def _signing_key(token: str, kid: Optional[str]):
    if not config.AUTH_JWKS_URL:
        logger.error("[AUTH] AUTH_JWKS_URL is missing for RS256 verification")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Server misconfiguration: AUTH_JWKS_URL not set"
        )
    jwks = get_jwks(config.AUTH_JWKS_URL)
    if not jwks:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication service temporarily unavailable. Please try again in a moment."
        )
    for key in jwt.PyJWKSet.from_dict(jwks).keys:
        if kid is None or key.key_id == kid:
            return key.key
    raise HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Unknown signing key"
    )


def verify_session_token(authorization: Optional[str]) -> dict:
    """
    Verifies the identity provider's session JWT and returns its claims.
    RS256 tokens are checked against the provider JWKS, HS256 tokens against
    AUTH_JWT_SECRET.
    """
    if not authorization:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized"
        )
    if not authorization.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid header format. Expected 'Bearer <token>'"
        )

    token = authorization[len("Bearer "):].strip()
    if not token or token.lower() in ["null", "undefined", "none"]:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing token"
        )

    try:
        header = jwt.get_unverified_header(token)
    except jwt.DecodeError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token header"
        )
    algo = header.get("alg")

    if algo == "RS256":
        key = _signing_key(token, header.get("kid"))
    elif algo == "HS256":
        if not config.AUTH_JWT_SECRET:
            logger.error("[AUTH] AUTH_JWT_SECRET is missing in environment variables")
            raise HTTPException(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                detail="Server misconfiguration: AUTH_JWT_SECRET not set"
            )
        key = config.AUTH_JWT_SECRET
    else:
        logger.warning("[AUTH] Unsupported algorithm: %s", algo)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Unsupported token algorithm: {algo}"
        )

    try:
        return jwt.decode(token, key, algorithms=[algo], options={"verify_aud": False})
    except jwt.PyJWTError as e:
        logger.warning("[AUTH] %s verification failed: %s", algo, e)
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token signature"
        )


def get_current_user_id(authorization: Optional[str] = Header(None)) -> str:
    """
    FastAPI dependency returning the caller's user id (the token's `sub` claim).
    This is the id written into subscription notes and usage counters.
    """
    payload = verify_session_token(authorization)
    user_id = payload.get("sub")
    if not user_id or not isinstance(user_id, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )
    return user_id
