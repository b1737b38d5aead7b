"""Bearer token handling for the Altered API.

The token is the ``Authorization`` header value (without the ``Bearer ``
prefix) that the altered.gg web app sends to ``api.altered.gg`` once logged
in.  It is read from ``ALTERED_BEARER_TOKEN``; tokens are short-lived JWTs, so
the helpers below decode the payload to tell the operator when to refresh.
"""

from __future__ import annotations

import base64
import json
import os
import time
from datetime import datetime, timezone
from typing import Any, Dict, Optional

TOKEN_ENV_VAR = "ALTERED_BEARER_TOKEN"


def get_bearer_token() -> Optional[str]:
    token = os.environ.get(TOKEN_ENV_VAR, "").strip()
    if token.lower().startswith("bearer "):
        token = token[len("bearer "):].strip()
    return token or None


def _decode_payload(token: str) -> Dict[str, Any]:
    parts = token.split(".")
    if len(parts) != 3:
        raise ValueError("Invalid JWT format")
    segment = parts[1]
    segment += "=" * (-len(segment) % 4)
    payload = json.loads(base64.urlsafe_b64decode(segment.encode("ascii")))
    if not isinstance(payload, dict):
        raise ValueError("JWT payload is not an object")
    return payload


def is_token_likely_expired(token: Optional[str], now: Optional[float] = None) -> bool:
    """True when the token is missing, unparsable or past its ``exp`` claim."""
    if not token:
        return True
    try:
        exp = int(_decode_payload(token)["exp"])
    except (ValueError, KeyError, TypeError):
        return True
    current = int(now if now is not None else time.time())
    return current >= exp


def get_token_info(token: Optional[str], now: Optional[float] = None) -> Dict[str, Any]:
    if not token:
        return {"error": "No token configured"}
    try:
        payload = _decode_payload(token)
        exp = int(payload["exp"])
    except (ValueError, KeyError, TypeError):
        return {"error": "Failed to parse token"}

    current = int(now if now is not None else time.time())
    expired = current >= exp
    return {
        "is_expired": expired,
        "expires_at": datetime.fromtimestamp(exp, tz=timezone.utc).isoformat().replace("+00:00", "Z"),
        "expires_in_minutes": 0 if expired else (exp - current) // 60,
        "subject": payload.get("sub"),
        "preferred_username": payload.get("preferred_username"),
    }
