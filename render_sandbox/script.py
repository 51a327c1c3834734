from __future__ import annotations

from pathlib import Path

from render_sandbox.errors import WorkspaceCreationError
from render_sandbox.models import WorkspacePaths

SCRIPT_NAME = "scene.py"


def script_path(workspace: WorkspacePaths) -> Path:
    return workspace.snippets / SCRIPT_NAME


def container_script_path() -> str:
    """Script location relative to the workspace mount inside the container."""
    return f"snippets/{SCRIPT_NAME}"


def write_script(workspace: WorkspacePaths, code: str) -> Path:
    """Persist the submitted source verbatim. The code is never parsed here."""
    path = script_path(workspace)
    try:
        path.write_text(code, encoding="utf-8")
    except OSError as exc:
        raise WorkspaceCreationError(
            f"Failed to write script into workspace: {exc.strerror or exc}"
        ) from exc
    return path
