"""Deterministic names for previews and sandboxes."""

from __future__ import annotations

import hashlib
import re
import time
from typing import Optional

from .constants import APP_NAME_HASH_LENGTH, DEFAULT_APP_NAME_PREFIX, MAX_APP_NAME_LENGTH

_INVALID_CHARS = re.compile(r"[^a-z0-9-]")


def _sanitize(value: str) -> str:
    return _INVALID_CHARS.sub("-", value.lower())


def derive_app_name(
    user_id: str,
    project_key: str,
    salt: Optional[str] = None,
    prefix: str = DEFAULT_APP_NAME_PREFIX,
    max_length: int = MAX_APP_NAME_LENGTH,
) -> str:
    """Return ``<prefix>-<hash8>`` for the given inputs.

    Identical ``user_id``/``project_key``/``salt`` always yield the same name,
    so callers that want a fresh resource per attempt pass a time based salt
    (see :func:`time_salt`). The result matches ``^[a-z0-9-]+$`` and is cut to
    ``max_length`` characters rather than rejected.
    """

    material = f"{user_id}-{project_key}"
    if salt:
        material = f"{material}-{salt}"
    digest = hashlib.sha256(material.encode("utf-8")).hexdigest()[:APP_NAME_HASH_LENGTH]

    clean_prefix = _sanitize(prefix).strip("-")
    name = f"{clean_prefix}-{digest}" if clean_prefix else digest
    return name[: max(1, max_length)]


def time_salt() -> str:
    """Salt that changes on every call, for one resource per attempt."""
    return str(time.time_ns())
