"""
middleware/auth_middleware.py — Bearer token verification for ledger routes.

The ledger does not issue tokens. Access tokens are minted by the planning
service's identity layer with a shared HS256 secret; this module only
verifies them and exposes the caller as flask.g.actor_id.

Two decorators, one per kind of route:

  @require_auth   — every ledger WRITE (expenses, participants, manual
                    payments, checkout) and order lookups. No token → 401.
                    g.actor_id is always an int; the ledger stores it on the
                    PaymentEvent rows it writes.

  @optional_auth  — plan READ models (participants, expenses, contribution
                    snapshot, payment history). A shared plan link is viewable
                    without signing in, so a missing header is allowed and
                    g.actor_id is None. A header that IS present must still be
                    valid: a bad or expired token is rejected, never silently
                    downgraded to anonymous.

The gateway notification endpoint uses neither: the gateway cannot present a
bearer token. It is authenticated by its payload signature instead
(services/reconciliation_service.verify_signature).

Error codes:
  TOKEN_MISSING  (401) — no Authorization header on a @require_auth route
  TOKEN_INVALID  (401) — malformed header, invalid signature, or bad `sub`
  TOKEN_EXPIRED  (401) — valid token but exp claim is in the past
"""

from __future__ import annotations

import functools
from typing import Callable

import jwt
from flask import current_app, g, request

from holiday_ledger.app.errors import AppError, ErrorCode


def require_auth(f: Callable) -> Callable:
    """
    Route decorator for ledger writes.

    Usage:
        @expenses_bp.route("/expenses", methods=["POST"])
        @require_auth
        def create_expense():
            actor_id = g.actor_id  # always an int when this runs
    """
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header:
            raise AppError(
                ErrorCode.TOKEN_MISSING,
                "Authentication required. Provide a Bearer token in the Authorization header.",
                401,
            )
        g.actor_id = actor_id_from_header(auth_header)
        return f(*args, **kwargs)

    return decorated


def optional_auth(f: Callable) -> Callable:
    """Route decorator for plan read models; g.actor_id is None for anonymous viewers."""
    @functools.wraps(f)
    def decorated(*args, **kwargs):
        auth_header = request.headers.get("Authorization", "")
        g.actor_id = actor_id_from_header(auth_header) if auth_header else None
        return f(*args, **kwargs)

    return decorated


def actor_id_from_header(auth_header: str) -> int:
    """
    Parses "Bearer <token>", verifies the token and returns its `sub` as an
    int. Raises AppError(TOKEN_INVALID | TOKEN_EXPIRED, 401).
    """
    parts = auth_header.split()
    if len(parts) != 2 or parts[0].lower() != "bearer":
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "Authorization header must be in the format: Bearer <token>.",
            401,
        )

    try:
        payload = jwt.decode(
            parts[1],
            current_app.config["JWT_SECRET_KEY"],
            algorithms=[current_app.config.get("JWT_ALGORITHM", "HS256")],
        )
    except jwt.ExpiredSignatureError:
        raise AppError(
            ErrorCode.TOKEN_EXPIRED,
            "The access token has expired. Sign in again to obtain a new one.",
            401,
        )
    except jwt.InvalidTokenError:
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token is invalid or has been tampered with.",
            401,
        )

    # Identity-service tokens carry the user id as a string or an int.
    try:
        return int(payload["sub"])
    except (KeyError, TypeError, ValueError):
        raise AppError(
            ErrorCode.TOKEN_INVALID,
            "The access token's 'sub' claim must be a numeric user id.",
            401,
        )
