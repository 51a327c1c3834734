from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from render_sandbox.artifacts import resolve_artifact
from render_sandbox.errors import RenderError
from render_sandbox.models import (
    ExecutionResult,
    JobState,
    RenderJob,
    RenderOutcome,
    UploadReference,
)
from render_sandbox.runner import DockerRuntime, SandboxRunner
from render_sandbox.script import write_script
from render_sandbox.settings import Settings, get_settings
from render_sandbox.storage import ArtifactUploader, S3Uploader
from render_sandbox.workspace import WorkspaceManager

logger = logging.getLogger(__name__)


class RenderOrchestrator:
    """Turns one code string into one stored video reference.

    The workspace is released on every exit path before the outcome (or the
    error) leaves this class.
    """

    def __init__(
        self,
        workspaces: WorkspaceManager,
        runner: SandboxRunner,
        uploader: ArtifactUploader,
        artifact_extension: str = ".mp4",
        max_concurrent_jobs: int = 0,
    ) -> None:
        self.workspaces = workspaces
        self.runner = runner
        self.uploader = uploader
        self.artifact_extension = artifact_extension
        self._admission = (
            asyncio.Semaphore(max_concurrent_jobs) if max_concurrent_jobs > 0 else None
        )

    async def render(self, job: RenderJob) -> RenderOutcome:
        if self._admission is None:
            return await self._render(job)
        async with self._admission:
            return await self._render(job)

    async def _render(self, job: RenderJob) -> RenderOutcome:
        state = JobState.validated
        result: ExecutionResult | None = None
        reference: UploadReference
        try:
            async with self.workspaces.session(job.id) as workspace:
                state = self._advance(job, JobState.workspace_acquired)

                write_script(workspace, job.code)
                state = self._advance(job, JobState.script_written)

                result = await self.runner.execute(
                    job.id, workspace, job.quality, job.timeout_sec
                )
                state = self._advance(job, JobState.executed)

                artifact = resolve_artifact(
                    workspace.root, result, self.artifact_extension
                )
                state = self._advance(job, JobState.artifact_located)

                reference = await self.uploader.upload(artifact.path, artifact.name)
                state = self._advance(job, JobState.uploaded)
        except RenderError as exc:
            exc.state = state
            if exc.diagnostics is None and result is not None:
                exc.diagnostics = result.stderr or result.stdout or None
            logger.warning(
                "job %s: %s -> %s (%s): %s",
                job.id,
                state.value,
                JobState.failed.value,
                exc.kind,
                exc.message,
            )
            raise

        self._advance(job, JobState.done)
        assert result is not None
        return RenderOutcome(job_id=job.id, reference=reference, execution=result)

    @staticmethod
    def _advance(job: RenderJob, state: JobState) -> JobState:
        logger.info("job %s: %s", job.id, state.value)
        return state


def build_orchestrator(settings: Settings | None = None) -> RenderOrchestrator:
    settings = settings or get_settings()
    return RenderOrchestrator(
        workspaces=WorkspaceManager(Path(settings.job_data_dir).resolve()),
        runner=SandboxRunner(DockerRuntime(settings), settings.docker_image),
        uploader=S3Uploader(settings=settings),
        artifact_extension=settings.artifact_extension,
        max_concurrent_jobs=settings.max_concurrent_jobs,
    )
