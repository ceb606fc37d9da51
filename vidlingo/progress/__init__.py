"""Progress publisher factory and initialization."""

from __future__ import annotations

import os
from typing import Optional

from ..config import VidlingoConfig, load_config
from .base import BaseProgressPublisher
from .inmemory import InMemoryProgressPublisher


def get_progress_publisher(
    backend: Optional[str] = None, config: Optional[VidlingoConfig] = None
) -> BaseProgressPublisher:
    """Factory function to get the configured progress publisher."""

    config = config or load_config()
    backend = (
        backend
        or os.getenv("VIDLINGO_PROGRESS_BACKEND")
        or config.progress.backend
    ).lower()

    if backend == "inmemory":
        return InMemoryProgressPublisher()
    elif backend == "redis":
        from .redis import RedisProgressPublisher

        redis_conf = config.progress.redis
        return RedisProgressPublisher(
            host=redis_conf.host,
            port=redis_conf.port,
            db=redis_conf.db,
            password=redis_conf.password,
            key_prefix=redis_conf.key_prefix,
            ttl_seconds=redis_conf.ttl_seconds,
        )
    else:
        raise ValueError(f"Unsupported progress backend: {backend}")


__all__ = ["BaseProgressPublisher", "InMemoryProgressPublisher", "get_progress_publisher"]
