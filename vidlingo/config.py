from __future__ import annotations

import os
from typing import Dict, Literal, Optional

import yaml
from pydantic import BaseModel, Field


class RedisConfig(BaseModel):
    """Connection settings for the Redis progress backend."""

    host: str = "localhost"
    port: int = 6379
    db: int = 0
    password: Optional[str] = None
    key_prefix: str = "vidlingo:progress"
    ttl_seconds: Optional[int] = 7 * 24 * 3600


class ProgressConfig(BaseModel):
    """Progress publisher settings."""

    backend: Literal["inmemory", "redis"] = "inmemory"
    redis: RedisConfig = RedisConfig()


class StagePolicy(BaseModel):
    """Timeout and retry policy for one stage."""

    timeout_seconds: float = Field(default=600.0, gt=0)
    max_attempts: int = Field(default=3, ge=1)
    backoff_base: float = Field(default=2.0, ge=0)
    backoff_cap: float = Field(default=60.0, ge=0)
    backoff_jitter: float = Field(default=0.5, ge=0)


class BreakerConfig(BaseModel):
    """Circuit breaker thresholds shared by every dependency."""

    failure_threshold: int = Field(default=5, ge=1)
    cooldown_seconds: float = Field(default=30.0, ge=0)


class WorkerConfig(BaseModel):
    max_concurrent_runs: int = Field(default=4, ge=1)


class PathsConfig(BaseModel):
    temp_dir: str = "/tmp/vidlingo"
    output_dir: str = "./output"


class OpenAIConfig(BaseModel):
    """Settings for the hosted models used by the default activities."""

    api_key: Optional[str] = None
    base_url: Optional[str] = None
    model: str = "gpt-4o-mini"
    transcription_model: str = "whisper-1"
    request_timeout_seconds: float = 300.0
    align_subtitles_with_model: bool = True
    # the transcription endpoint rejects uploads above 25 MB
    max_upload_bytes: int = 24 * 1024 * 1024
    chunk_seconds: int = 600


class VidlingoConfig(BaseModel):
    """Top-level configuration model."""

    database_url: Optional[str] = None
    progress: ProgressConfig = ProgressConfig()
    workers: WorkerConfig = WorkerConfig()
    paths: PathsConfig = PathsConfig()
    openai: OpenAIConfig = OpenAIConfig()
    breaker: BreakerConfig = BreakerConfig()
    stages: Dict[str, StagePolicy] = Field(default_factory=dict)
    purge_checkpoints_on_completion: bool = False
    resume_failed_runs: bool = True


def load_config(path: Optional[str] = None) -> VidlingoConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to VIDLINGO_CONFIG env
            variable or 'config.yaml' in the current directory.
    """

    config_path = path or os.getenv("VIDLINGO_CONFIG", "config.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = VidlingoConfig(**data)
    else:
        config = VidlingoConfig()

    env_db_url = os.getenv("VIDLINGO_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.database_url = env_db_url
    env_progress = os.getenv("VIDLINGO_PROGRESS_BACKEND")
    if env_progress:
        config.progress.backend = env_progress.lower()
    if os.getenv("OPENAI_API_KEY") and not config.openai.api_key:
        config.openai.api_key = os.environ["OPENAI_API_KEY"]
    if os.getenv("VIDLINGO_TEMP_DIR"):
        config.paths.temp_dir = os.environ["VIDLINGO_TEMP_DIR"]
    if os.getenv("VIDLINGO_OUTPUT_DIR"):
        config.paths.output_dir = os.environ["VIDLINGO_OUTPUT_DIR"]
    return config
