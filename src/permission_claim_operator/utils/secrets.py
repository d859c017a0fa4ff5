"""Utilities for reading and writing Kubernetes Secret payloads."""

from __future__ import annotations

import base64
import binascii
from typing import Any


def encode_secret_data(data: dict[str, str]) -> dict[str, str]:
    """Base64 encode string values for the ``data`` field of a Secret."""
    return {k: base64.b64encode(v.encode("utf-8")).decode("utf-8") for k, v in data.items()}


def decode_secret_value(secret: dict[str, Any], key: str) -> str | None:
    """Decode one value from the ``data`` field of a Secret.

    Args:
        secret: Secret object as a dict
        key: Key in the secret's data

    Returns:
        Decoded value, or None if the key is missing or empty

    Raises:
        ValueError: If the value is not valid base64 encoded UTF-8
    """
    value = (secret.get("data") or {}).get(key)
    if not value:
        return None
    try:
        return base64.b64decode(value, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError) as e:
        name = (secret.get("metadata") or {}).get("name", "unknown")
        raise ValueError(f"Key '{key}' of secret '{name}' is not valid base64 data") from e
