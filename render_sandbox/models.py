from __future__ import annotations

from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Quality(str, Enum):
    low = "-ql"
    medium = "-qm"
    high = "-qh"
    production = "-qp"
    fourk = "-qk"


class JobState(str, Enum):
    validated = "validated"
    workspace_acquired = "workspace_acquired"
    script_written = "script_written"
    executed = "executed"
    artifact_located = "artifact_located"
    uploaded = "uploaded"
    done = "done"
    failed = "failed"


class RenderRequest(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    code_content: str
    quality: Quality | None = None

    @field_validator("code_content")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Code content cannot be empty.")
        return value


class RenderJob(BaseModel):
    id: str
    code: str
    quality: Quality = Quality.medium
    timeout_sec: float = Field(default=300, gt=0)


class WorkspacePaths(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    root: Path
    snippets: Path
    media: Path


class SandboxParams(BaseModel):
    image: str
    quality: Quality
    script: str
    timeout_sec: float = Field(gt=0)


class ExecutionResult(BaseModel):
    exit_status: int | None = None
    stdout: str = ""
    stderr: str = ""
    duration_sec: float = 0.0


class Artifact(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    path: Path
    name: str


class UploadReference(BaseModel):
    key: str
    uri: str


class RenderOutcome(BaseModel):
    job_id: str
    reference: UploadReference
    execution: ExecutionResult


class RenderResponse(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    message: str
    job_id: str
    artifact_key: str
    artifact_uri: str


class ErrorResponse(BaseModel):
    message: str
    kind: str | None = None
    diagnostics: str | None = None
