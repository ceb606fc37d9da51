"""Run identifier and idempotency key derivation."""

from __future__ import annotations

import hashlib
import json
import re
import uuid
from typing import Any, Optional
from urllib.parse import urlparse

from pydantic import BaseModel

_UNSAFE = re.compile(r"[^a-zA-Z0-9\-_]")
_EXTENSION = re.compile(r"\.[^/.]+$")


def _slugify(value: str) -> str:
    return _UNSAFE.sub("-", _EXTENSION.sub("", value)).lower()


def media_slug(media: str, file_name: Optional[str] = None) -> str:
    """Human readable slug of the source file name, without extension."""
    if file_name:
        return _slugify(file_name) or "video"
    path = media
    if media.startswith(("http://", "https://")):
        path = urlparse(media).path
    name = path.replace("\\", "/").rstrip("/").split("/")[-1]
    return _slugify(name) if name else "video"


def new_run_id(media: str, target_language: str, file_name: Optional[str] = None) -> str:
    """Return ``<file-slug>-<target-language>-<uuid4>``."""
    language = _UNSAFE.sub("-", re.sub(r"\s+", "-", target_language.strip())).lower()
    return f"{media_slug(media, file_name)}-{language}-{uuid.uuid4()}"


def canonicalize(value: Any) -> Any:
    """Reduce ``value`` to plain JSON types with a stable shape."""
    if isinstance(value, BaseModel):
        return value.model_dump(mode="json")
    if isinstance(value, dict):
        return {str(k): canonicalize(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [canonicalize(v) for v in value]
    return value


def canonical_json(value: Any) -> str:
    return json.dumps(
        canonicalize(value), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def idempotency_key(run_id: str, ordinal: int, stage_input: Any) -> str:
    """Deterministic key for one stage invocation of one run."""
    material = canonical_json([run_id, ordinal, canonicalize(stage_input)])
    return hashlib.sha256(material.encode("utf-8")).hexdigest()
