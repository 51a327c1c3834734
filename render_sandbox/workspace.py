from __future__ import annotations

import logging
import shutil
from contextlib import asynccontextmanager
from pathlib import Path
from typing import AsyncIterator
from uuid import uuid4

from render_sandbox import config
from render_sandbox.errors import WorkspaceCreationError
from render_sandbox.models import WorkspacePaths

logger = logging.getLogger(__name__)

WORKSPACE_PREFIX = "render-job-"


class WorkspaceManager:
    """Creates and destroys one isolated directory per render job."""

    def __init__(self, root: Path | None = None) -> None:
        self._root = root

    @property
    def root(self) -> Path:
        if self._root is None:
            return config.jobs_root()
        self._root.mkdir(parents=True, exist_ok=True)
        return self._root

    def acquire(self, job_id: str) -> WorkspacePaths:
        try:
            root = self.root / f"{WORKSPACE_PREFIX}{uuid4().hex}"
            # exist_ok=False: a name collision must never hand out a shared dir
            root.mkdir(exist_ok=False)
        except OSError as exc:
            raise WorkspaceCreationError(
                f"Failed to create job workspace: {exc.strerror or exc}"
            ) from exc

        paths = WorkspacePaths(
            root=root, snippets=root / "snippets", media=root / "media"
        )
        try:
            paths.snippets.mkdir()
            paths.media.mkdir()
        except OSError as exc:
            self.release(paths)
            raise WorkspaceCreationError(
                f"Failed to create job workspace: {exc.strerror or exc}"
            ) from exc

        logger.info("job %s: acquired workspace %s", job_id, root)
        return paths

    def release(self, workspace: WorkspacePaths) -> None:
        """Remove the workspace tree. Safe to call on an already-removed path."""
        try:
            shutil.rmtree(workspace.root)
        except FileNotFoundError:
            return
        except OSError:
            logger.exception("failed to remove workspace %s", workspace.root)
            return
        logger.info("released workspace %s", workspace.root)

    @asynccontextmanager
    async def session(self, job_id: str) -> AsyncIterator[WorkspacePaths]:
        workspace = self.acquire(job_id)
        try:
            yield workspace
        finally:
            self.release(workspace)
