"""Failure taxonomy for render jobs.

Every pipeline stage raises one of these. The orchestrator annotates the
error with the state the job had reached and the API layer turns it into a
500 response.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from render_sandbox.models import JobState


class RenderError(Exception):
    """Base class for render job failures."""

    kind = "RenderError"
    default_message = "Rendering failed."

    def __init__(
        self, message: str | None = None, diagnostics: str | None = None
    ) -> None:
        self.message = message or self.default_message
        self.diagnostics = diagnostics or None
        self.state: JobState | None = None
        super().__init__(self.message)


class WorkspaceCreationError(RenderError):
    kind = "WorkspaceCreationError"
    default_message = "Failed to prepare the job workspace."


class SandboxUnavailable(RenderError):
    kind = "SandboxUnavailable"
    default_message = "The rendering sandbox is unavailable."


class ExecutionTimeout(RenderError):
    kind = "ExecutionTimeout"
    default_message = "Rendering timed out."


class ScriptExecutionFailed(RenderError):
    kind = "ScriptExecutionFailed"
    default_message = "The animation script failed to render."

    def __init__(
        self,
        message: str | None = None,
        diagnostics: str | None = None,
        exit_status: int | None = None,
    ) -> None:
        super().__init__(message, diagnostics)
        self.exit_status = exit_status


class ArtifactNotFound(RenderError):
    kind = "ArtifactNotFound"
    default_message = "Rendering finished, but no video file was produced."


class UploadFailed(RenderError):
    kind = "UploadFailed"
    default_message = "Failed to upload the rendered video to storage."
