from __future__ import annotations

import logging
from typing import Annotated
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from render_sandbox.errors import RenderError
from render_sandbox.models import (
    ErrorResponse,
    Quality,
    RenderJob,
    RenderRequest,
    RenderResponse,
)
from render_sandbox.orchestrator import RenderOrchestrator, build_orchestrator
from render_sandbox.settings import get_settings

logger = logging.getLogger(__name__)

API_DESCRIPTION = """
Render Sandbox - turn animation source code into a stored video.

## Submitting a render

`POST /api/render` with a JSON body:

```json
{
  "codeContent": "from manim import *\\n\\nclass Intro(Scene):\\n    def construct(self):\\n        self.play(Write(Text(\\"Hello\\")))\\n",
  "quality": "-qm"
}
```

`quality` is optional and must be one of `-ql`, `-qm`, `-qh`, `-qp`, `-qk`
(default `-qm`).

The code runs in a throwaway container with no network access. Only the
job's private workspace is mounted. The rendered `.mp4` is uploaded to
object storage and the response carries its `artifactKey`.

## Failures

Rejected input returns `400` with field-level `errors`. Render failures
return `500` with a `kind` (`WorkspaceCreationError`, `SandboxUnavailable`,
`ExecutionTimeout`, `ScriptExecutionFailed`, `ArtifactNotFound`,
`UploadFailed`) and, where available, renderer `diagnostics`.
"""

app = FastAPI(
    title="Render Sandbox",
    version="0.1.0",
    description=API_DESCRIPTION,
)

_orchestrator: RenderOrchestrator | None = None


def get_orchestrator() -> RenderOrchestrator:
    global _orchestrator
    if _orchestrator is None:
        _orchestrator = build_orchestrator()
    return _orchestrator


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError):
    errors = [
        {"loc": list(err["loc"]), "msg": err["msg"], "type": err["type"]}
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=400, content={"message": "Invalid request", "errors": errors}
    )


def _error_response(exc: RenderError, max_chars: int) -> JSONResponse:
    diagnostics = exc.diagnostics
    if diagnostics and max_chars > 0 and len(diagnostics) > max_chars:
        diagnostics = diagnostics[-max_chars:]
    body = ErrorResponse(message=exc.message, kind=exc.kind, diagnostics=diagnostics)
    return JSONResponse(status_code=500, content=body.model_dump(exclude_none=True))


@app.get("/health")
async def health():
    return {"message": "Health is OK"}


@app.post(
    "/api/render",
    response_model=RenderResponse,
    responses={500: {"model": ErrorResponse}},
)
@app.post("/generate", response_model=RenderResponse, include_in_schema=False)
async def render(
    payload: RenderRequest,
    orchestrator: Annotated[RenderOrchestrator, Depends(get_orchestrator)],
):
    settings = get_settings()
    job_id = uuid4().hex

    try:
        job = RenderJob(
            id=job_id,
            code=payload.code_content,
            quality=payload.quality or Quality.medium,
            timeout_sec=settings.render_timeout_sec,
        )
        outcome = await orchestrator.render(job)
    except RenderError as exc:
        return _error_response(exc, settings.diagnostics_max_chars)
    except Exception:
        logger.exception("job %s: unexpected failure", job_id)
        return JSONResponse(
            status_code=500, content={"message": "An unexpected error occurred."}
        )

    return RenderResponse(
        message="Video created successfully.",
        job_id=job.id,
        artifact_key=outcome.reference.key,
        artifact_uri=outcome.reference.uri,
    )
