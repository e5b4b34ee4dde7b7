"""Authorization policy for job triggers."""

from __future__ import annotations

import hmac

BEARER_PREFIX = "bearer "


def is_authorized(has_valid_token: bool, is_trusted_scheduler_signal: bool) -> bool:
    """A trigger is allowed with a matching bearer token or the scheduler's own signal."""

    return has_valid_token or is_trusted_scheduler_signal


def bearer_token_matches(authorization: str | None, secret: str | None) -> bool:
    if not authorization or not secret:
        return False
    if not authorization.lower().startswith(BEARER_PREFIX):
        return False
    token = authorization[len(BEARER_PREFIX):].strip()
    return hmac.compare_digest(token.encode(), secret.encode())


def is_scheduler_signal(value: str | None) -> bool:
    return (value or "").strip().lower() == "true"


__all__ = ["bearer_token_matches", "is_authorized", "is_scheduler_signal"]
