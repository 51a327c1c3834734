from __future__ import annotations

import os
from dataclasses import dataclass, field


def _env_int(name: str, default: int) -> int:
    return int(os.getenv(name, str(default)))


def _host_user() -> str:
    """uid:gid of this process, so sandbox output stays removable by us."""
    if hasattr(os, "getuid"):
        return f"{os.getuid()}:{os.getgid()}"
    return ""


@dataclass(frozen=True)
class Settings:
    job_data_dir: str = field(
        default_factory=lambda: os.getenv("JOB_DATA_DIR", "data/jobs")
    )

    # Sandbox
    docker_bin: str = field(default_factory=lambda: os.getenv("DOCKER_BIN", "docker"))
    docker_image: str = field(
        default_factory=lambda: os.getenv(
            "DOCKER_IMAGE", "manimcommunity/manim:stable"
        )
    )
    render_timeout_sec: int = field(
        default_factory=lambda: _env_int("RENDER_TIMEOUT_SEC", 300)
    )
    sandbox_network: str = field(
        default_factory=lambda: os.getenv("SANDBOX_NETWORK", "none")
    )
    sandbox_memory: str = field(
        default_factory=lambda: os.getenv("SANDBOX_MEMORY", "2g")
    )
    sandbox_cpus: str = field(default_factory=lambda: os.getenv("SANDBOX_CPUS", "2"))
    sandbox_pids_limit: int = field(
        default_factory=lambda: _env_int("SANDBOX_PIDS_LIMIT", 256)
    )
    sandbox_user: str = field(
        default_factory=lambda: os.getenv("SANDBOX_USER", _host_user())
    )
    artifact_extension: str = field(
        default_factory=lambda: os.getenv("ARTIFACT_EXTENSION", ".mp4")
    )

    # Object storage
    aws_region: str = field(
        default_factory=lambda: os.getenv("AWS_REGION", "us-east-1")
    )
    aws_access_key_id: str | None = field(
        default_factory=lambda: os.getenv("AWS_ACCESS_KEY_ID") or None
    )
    aws_secret_access_key: str | None = field(
        default_factory=lambda: os.getenv("AWS_SECRET_ACCESS_KEY") or None
    )
    s3_bucket_name: str = field(
        default_factory=lambda: os.getenv("S3_BUCKET_NAME", "")
    )
    s3_endpoint: str | None = field(
        default_factory=lambda: os.getenv("S3_ENDPOINT") or None
    )
    s3_key_prefix: str = field(
        default_factory=lambda: os.getenv("S3_KEY_PREFIX", "videos")
    )

    # Service
    max_concurrent_jobs: int = field(
        default_factory=lambda: _env_int("MAX_CONCURRENT_JOBS", 0)
    )
    diagnostics_max_chars: int = field(
        default_factory=lambda: _env_int("DIAGNOSTICS_MAX_CHARS", 4000)
    )
    log_level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


def get_settings() -> Settings:
    return Settings()
