import asyncio
import os
import subprocess

import pytest

from conftest import workspace_dirs
from render_sandbox.errors import ScriptExecutionFailed
from render_sandbox.models import Quality, RenderJob
from render_sandbox.orchestrator import RenderOrchestrator
from render_sandbox.runner import DockerRuntime, SandboxRunner
from render_sandbox.settings import Settings
from render_sandbox.workspace import WorkspaceManager

SCENE = """
from manim import *


class Intro(Scene):
    def construct(self):
        self.play(Create(Circle()))
"""


def _docker_available() -> bool:
    try:
        result = subprocess.run(
            ["docker", "version"],
            capture_output=True,
            text=True,
            timeout=10,
            check=False,
        )
        return result.returncode == 0
    except Exception:
        return False


pytestmark = pytest.mark.skipif(
    os.getenv("RENDER_DOCKER_TESTS") != "1" or not _docker_available(),
    reason="set RENDER_DOCKER_TESTS=1 with a working docker engine",
)


@pytest.fixture
def docker_orchestrator(tmp_job_dir, uploader):
    settings = Settings()
    return RenderOrchestrator(
        WorkspaceManager(tmp_job_dir),
        SandboxRunner(DockerRuntime(settings), settings.docker_image),
        uploader,
    )


def test_renders_scene_in_container(docker_orchestrator, fake_s3, tmp_job_dir):
    job = RenderJob(id="docker-1", code=SCENE, quality=Quality.low, timeout_sec=600)

    outcome = asyncio.run(docker_orchestrator.render(job))

    assert outcome.reference.key.endswith("/Intro.mp4")
    assert len(next(iter(fake_s3.objects.values()))) > 0
    assert workspace_dirs(tmp_job_dir) == []


def test_container_cannot_read_host_paths(docker_orchestrator, tmp_path, tmp_job_dir):
    secret = tmp_path / "host-secret.txt"
    secret.write_text("do not leak")
    code = f"open({str(secret)!r}).read()\n"
    job = RenderJob(id="docker-2", code=code, quality=Quality.low, timeout_sec=600)

    with pytest.raises(ScriptExecutionFailed) as exc_info:
        asyncio.run(docker_orchestrator.render(job))

    assert "No such file" in exc_info.value.diagnostics
    assert workspace_dirs(tmp_job_dir) == []
