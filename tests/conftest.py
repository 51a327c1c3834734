import sys
from pathlib import Path

import pytest
from botocore.exceptions import ClientError

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from render_sandbox.models import ExecutionResult, SandboxParams, WorkspacePaths  # noqa: E402
from render_sandbox.orchestrator import RenderOrchestrator  # noqa: E402
from render_sandbox.runner import SandboxRunner, run_process  # noqa: E402
from render_sandbox.settings import Settings  # noqa: E402
from render_sandbox.storage import S3Uploader  # noqa: E402
from render_sandbox.workspace import WorkspaceManager  # noqa: E402

BUCKET = "render-artifacts"

WRITES_VIDEO = """
from pathlib import Path
out = Path("media/videos/scene/720p30")
out.mkdir(parents=True, exist_ok=True)
(out / "Intro.mp4").write_bytes(b"fake-video")
print("Rendered Intro")
"""


class PythonRuntime:
    """Runs the scene with the local interpreter, cwd set to the workspace.

    Stands in for Docker so the pipeline can be exercised end to end.
    """

    def __init__(self) -> None:
        self.calls: list[SandboxParams] = []

    async def run(
        self, workspace: WorkspacePaths, params: SandboxParams
    ) -> ExecutionResult:
        self.calls.append(params)
        return await run_process(
            [sys.executable, params.script], params.timeout_sec, cwd=str(workspace.root)
        )


class FakeS3:
    """In-memory stand-in for a boto3 S3 client."""

    def __init__(self) -> None:
        self.objects: dict[tuple[str, str], bytes] = {}
        self.extra_args: dict[str, dict] = {}
        self.streamed = True
        self.fail = False

    def upload_fileobj(self, Fileobj, Bucket, Key, ExtraArgs=None):
        if self.fail:
            raise ClientError(
                {"Error": {"Code": "AccessDenied", "Message": "Access Denied"}},
                "PutObject",
            )
        if isinstance(Fileobj, (bytes, bytearray)):
            self.streamed = False
        chunks = []
        while True:
            chunk = Fileobj.read(8192)
            if not chunk:
                break
            chunks.append(chunk)
        self.objects[(Bucket, Key)] = b"".join(chunks)
        self.extra_args[Key] = ExtraArgs or {}

    def download_fileobj(self, Bucket, Key, Fileobj):
        try:
            data = self.objects[(Bucket, Key)]
        except KeyError:
            raise ClientError(
                {"Error": {"Code": "404", "Message": "Not Found"}}, "HeadObject"
            ) from None
        Fileobj.write(data)


@pytest.fixture
def tmp_job_dir(tmp_path, monkeypatch):
    """Set up temporary job data directory."""
    monkeypatch.setenv("JOB_DATA_DIR", str(tmp_path / "jobs"))
    return tmp_path / "jobs"


@pytest.fixture
def fake_s3():
    return FakeS3()


@pytest.fixture
def storage_settings():
    return Settings(s3_bucket_name=BUCKET, s3_key_prefix="videos")


@pytest.fixture
def uploader(fake_s3, storage_settings):
    return S3Uploader(client=fake_s3, settings=storage_settings)


@pytest.fixture
def runtime():
    return PythonRuntime()


@pytest.fixture
def orchestrator(tmp_job_dir, runtime, uploader):
    return RenderOrchestrator(
        workspaces=WorkspaceManager(tmp_job_dir),
        runner=SandboxRunner(runtime, "test-image"),
        uploader=uploader,
    )


def workspace_dirs(root: Path) -> list[Path]:
    if not root.exists():
        return []
    return list(root.iterdir())
