"""Magic-link token service — signed, expiring portal tokens (HS256 JWT).

Claims: email (normalized), exp, iat, iss, aud and a schema version "v".

verify_token() has exactly one failure outcome (None). Callers must not
be able to tell a bad signature from an expired or malformed token.

Two strategies, picked by PORTAL_TOKEN_STRATEGY:
- stateless:  signature + expiry only, nothing stored
- single_use: issuance also stores a hash of the token; the first
              exchange consumes it atomically
"""

import hashlib
import logging
import time
from datetime import datetime, timezone

import jwt
from flask import current_app
from sqlalchemy import update

from storefront.errors import ConfigurationError
from storefront.extensions import db
from storefront.models.portal_token import PortalToken
from storefront.services.utils import normalize_email

logger = logging.getLogger(__name__)

TOKEN_VERSION = 1
TOKEN_ALGORITHM = "HS256"
TOKEN_ISSUER = "kimora-storefront"
TOKEN_AUDIENCE = "billing-portal"

STATELESS = "stateless"
SINGLE_USE = "single_use"
STRATEGIES = (STATELESS, SINGLE_USE)


def _secret():
    secret = current_app.config.get("PORTAL_TOKEN_SECRET")
    if not secret:
        raise ConfigurationError("PORTAL_TOKEN_SECRET is not set")
    return secret


def get_strategy():
    strategy = current_app.config.get("PORTAL_TOKEN_STRATEGY", STATELESS)
    if strategy not in STRATEGIES:
        raise ConfigurationError(f"Unknown PORTAL_TOKEN_STRATEGY: {strategy}")
    return strategy


def token_hash(token):
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def issue_token(email, now=None):
    """Create a signed token binding `email` for PORTAL_TOKEN_TTL_MINUTES."""
    now = int(now if now is not None else time.time())
    ttl = int(current_app.config.get("PORTAL_TOKEN_TTL_MINUTES", 15)) * 60
    payload = {
        "email": normalize_email(email),
        "iat": now,
        "exp": now + ttl,
        "iss": TOKEN_ISSUER,
        "aud": TOKEN_AUDIENCE,
        "v": TOKEN_VERSION,
    }
    return jwt.encode(payload, _secret(), algorithm=TOKEN_ALGORITHM)


def decode_token(token, now=None):
    """Verify a token and return its claims dict, or None.

    `now` pins the clock (epoch seconds); a token is valid while now < exp.
    """
    if not isinstance(token, str) or not token:
        return None

    # PyJWT reads the wall clock; shift it to `now` through the leeway.
    # Leeway widens the iat check the other way, so iat is required only.
    leeway = time.time() - now if now is not None else 0

    try:
        payload = jwt.decode(
            token,
            _secret(),
            algorithms=[TOKEN_ALGORITHM],
            issuer=TOKEN_ISSUER,
            audience=TOKEN_AUDIENCE,
            leeway=leeway,
            options={"require": ["exp", "iat"], "verify_iat": False},
        )
    except jwt.ExpiredSignatureError:
        logger.info("Portal token expired")
        return None
    except jwt.InvalidTokenError as e:
        logger.info(f"Invalid portal token: {e}")
        return None

    if payload.get("v") != TOKEN_VERSION:
        return None
    email = payload.get("email")
    exp = payload.get("exp")
    if not isinstance(email, str) or not email:
        return None
    # PyJWT coerces numeric strings; only a real integer is accepted here
    if not isinstance(exp, int) or isinstance(exp, bool):
        return None
    return payload


def verify_token(token, now=None):
    """Return the normalized email bound by a valid token, else None."""
    payload = decode_token(token, now=now)
    if payload is None:
        return None
    return normalize_email(payload["email"])


def remember_token(token, email, stripe_customer_id=None, now=None):
    """single_use strategy: store the token hash at issuance.

    Caller commits.
    """
    payload = decode_token(token, now=now)
    if payload is None:
        raise ValueError("Refusing to store an invalid token")
    record = PortalToken(
        token_hash=token_hash(token),
        email=normalize_email(email),
        stripe_customer_id=stripe_customer_id,
        expires_at=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
    )
    db.session.add(record)
    return record


def consume_token(token):
    """single_use strategy: mark the stored token used.

    Check-and-set in one UPDATE, so two concurrent exchanges of the same
    token can't both succeed. Returns True if this call consumed it.
    Caller commits.
    """
    now = datetime.now(timezone.utc)
    result = db.session.execute(
        update(PortalToken)
        .where(PortalToken.token_hash == token_hash(token))
        .where(PortalToken.used_at.is_(None))
        .values(used_at=now)
    )
    return result.rowcount == 1
