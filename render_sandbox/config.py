from __future__ import annotations

from pathlib import Path

from render_sandbox.settings import Settings, get_settings


def jobs_root(settings: Settings | None = None) -> Path:
    """Root directory for transient job workspaces (one subdir per job)."""
    settings = settings or get_settings()
    root = Path(settings.job_data_dir).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root
