from __future__ import annotations

import asyncio
import logging
import os
import shlex
import signal
import time
from typing import Protocol, Sequence

from render_sandbox.errors import (
    ExecutionTimeout,
    SandboxUnavailable,
    ScriptExecutionFailed,
)
from render_sandbox.models import (
    ExecutionResult,
    Quality,
    SandboxParams,
    WorkspacePaths,
)
from render_sandbox.script import container_script_path
from render_sandbox.settings import Settings, get_settings

logger = logging.getLogger(__name__)

# `docker run` reserves 125 for failures of the docker CLI/daemon itself.
DOCKER_ENGINE_FAILURE = 125

_READ_CHUNK = 64 * 1024
_DRAIN_GRACE_SEC = 5.0
_FORCE_REMOVE_TIMEOUT_SEC = 30.0


class ContainerRuntime(Protocol):
    async def run(
        self, workspace: WorkspacePaths, params: SandboxParams
    ) -> ExecutionResult: ...


async def run_process(
    cmd: Sequence[str], timeout_sec: float, cwd: str | None = None
) -> ExecutionResult:
    """Run ``cmd`` without a shell, capturing stdout and stderr in full.

    The process gets its own session so that a timeout (or cancellation of
    the caller) can kill it together with every child it spawned.
    """
    started = time.perf_counter()
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            start_new_session=True,
        )
    except OSError as exc:
        raise SandboxUnavailable(
            f"Failed to start the sandbox process: {exc}"
        ) from exc

    stdout_chunks: list[bytes] = []
    stderr_chunks: list[bytes] = []

    async def consume(stream: asyncio.StreamReader | None, sink: list[bytes]):
        assert stream is not None
        while True:
            chunk = await stream.read(_READ_CHUNK)
            if not chunk:
                break
            sink.append(chunk)

    readers = asyncio.gather(
        consume(process.stdout, stdout_chunks),
        consume(process.stderr, stderr_chunks),
    )

    timed_out = False
    try:
        await asyncio.wait_for(process.wait(), timeout=timeout_sec)
    except asyncio.TimeoutError:
        timed_out = True
    finally:
        if process.returncode is None:
            _kill_process_group(process)
            await process.wait()
        try:
            await asyncio.wait_for(readers, timeout=_DRAIN_GRACE_SEC)
        except asyncio.TimeoutError:
            logger.warning("output pipes of pid %s did not close", process.pid)

    result = ExecutionResult(
        exit_status=process.returncode,
        stdout=_decode(stdout_chunks),
        stderr=_decode(stderr_chunks),
        duration_sec=time.perf_counter() - started,
    )
    if timed_out:
        raise ExecutionTimeout(
            f"Rendering timed out after {timeout_sec:g} seconds.",
            diagnostics=result.stderr or result.stdout,
        )
    return result


def _kill_process_group(process: asyncio.subprocess.Process) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:  # pragma: no cover - non-posix
            process.kill()
    except ProcessLookupError:
        pass


def _decode(chunks: list[bytes]) -> str:
    return b"".join(chunks).decode(errors="replace")


class DockerRuntime:
    """Runs the renderer in a throwaway container that sees only one workspace."""

    mount_target = "/manim"

    def __init__(self, settings: Settings | None = None) -> None:
        self.settings = settings or get_settings()

    @staticmethod
    def container_name(workspace: WorkspacePaths) -> str:
        return workspace.root.name

    def build_command(
        self, workspace: WorkspacePaths, params: SandboxParams
    ) -> list[str]:
        settings = self.settings
        command = [
            settings.docker_bin,
            "run",
            "--rm",
            "--name",
            self.container_name(workspace),
            "--network",
            settings.sandbox_network,
            "--cap-drop",
            "ALL",
            "--security-opt",
            "no-new-privileges",
            "--pids-limit",
            str(settings.sandbox_pids_limit),
            "--memory",
            settings.sandbox_memory,
            "--cpus",
            settings.sandbox_cpus,
        ]
        if settings.sandbox_user:
            command.extend(["--user", settings.sandbox_user])
        command.extend(
            [
                "--mount",
                f"type=bind,source={workspace.root.resolve()},target={self.mount_target}",
                "-w",
                self.mount_target,
                params.image,
                "manim",
                "render",
                params.script,
                params.quality.value,
            ]
        )
        return command

    async def run(
        self, workspace: WorkspacePaths, params: SandboxParams
    ) -> ExecutionResult:
        name = self.container_name(workspace)
        cmd = self.build_command(workspace, params)
        logger.info("starting container %s: %s", name, shlex.join(cmd))

        try:
            result = await run_process(cmd, params.timeout_sec)
        except (ExecutionTimeout, asyncio.CancelledError):
            # Killing the CLI does not stop the container it started.
            await self._force_remove(name)
            raise

        if result.exit_status == DOCKER_ENGINE_FAILURE:
            raise SandboxUnavailable(
                "The container runtime could not start the sandbox.",
                diagnostics=result.stderr,
            )
        return result

    async def _force_remove(self, name: str) -> None:
        try:
            process = await asyncio.create_subprocess_exec(
                self.settings.docker_bin,
                "rm",
                "-f",
                name,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
            await asyncio.wait_for(process.wait(), timeout=_FORCE_REMOVE_TIMEOUT_SEC)
        except (OSError, asyncio.TimeoutError) as exc:
            logger.warning("failed to remove container %s: %s", name, exc)


class SandboxRunner:
    def __init__(self, runtime: ContainerRuntime, image: str) -> None:
        self.runtime = runtime
        self.image = image

    async def execute(
        self,
        job_id: str,
        workspace: WorkspacePaths,
        quality: Quality,
        timeout_sec: float,
    ) -> ExecutionResult:
        params = SandboxParams(
            image=self.image,
            quality=quality,
            script=container_script_path(),
            timeout_sec=timeout_sec,
        )
        result = await self.runtime.run(workspace, params)
        logger.info(
            "job %s: sandbox exited with status %s after %.1fs",
            job_id,
            result.exit_status,
            result.duration_sec,
        )
        if result.stderr:
            logger.debug("job %s: sandbox stderr:\n%s", job_id, result.stderr)

        if result.exit_status != 0:
            raise ScriptExecutionFailed(
                f"Animation script exited with status {result.exit_status}.",
                diagnostics=result.stderr or result.stdout,
                exit_status=result.exit_status,
            )
        return result
