"""Miscellaneous helpers."""

from __future__ import annotations

import base64
import json
from typing import Any, Dict


def decode_jwt_without_verification(token: str) -> Dict[str, Any]:
    """Decode the payload of a JWT without validating the signature.

    Only used to log identifying claims; never to make trust decisions.
    """

    try:
        _, payload, _ = token.split(".")
    except ValueError as exc:
        raise ValueError("Token is not a valid JWT") from exc

    padded_payload = payload + "=" * (-len(payload) % 4)
    decoded_bytes = base64.urlsafe_b64decode(padded_payload.encode("ascii"))
    return json.loads(decoded_bytes.decode("utf-8"))
