# server.py
import json
import logging
import queue
import threading
from typing import List, Optional

from fastapi import Depends, FastAPI, Header, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel

from artifactflow.errors import (
    BadRequestError,
    ForbiddenError,
    GenerationError,
    MissingRequiredDependencyError,
    NotFoundError,
    WorkflowError,
)
from artifactflow.llm_client import MaxRetryErrorsException
from artifactflow.workflow_orchestrator import WorkflowOrchestrator

logger = logging.getLogger("artifactflow")

app = FastAPI(title="artifactflow")

# CORS configuration
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Allow all origins for dev
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

_backend = None
_backend_lock = threading.Lock()


def get_orchestrator() -> WorkflowOrchestrator:
    global _backend
    with _backend_lock:
        if _backend is None:
            from backend import build_backend
            _backend = build_backend()
        return _backend.orchestrator


# -----------------------
# Request models
# -----------------------

class ProjectCreate(BaseModel):
    name: str
    project_type_id: Optional[int] = None


class ProjectUpdate(BaseModel):
    name: str


class ArtifactCreate(BaseModel):
    artifact_type_name: str


class ArtifactUpdate(BaseModel):
    name: Optional[str] = None
    content: Optional[str] = None


class ChatMessage(BaseModel):
    role: str = "user"
    content: str


class InteractRequest(BaseModel):
    messages: List[ChatMessage]


def _user_message(body: InteractRequest) -> str:
    if not body.messages or not body.messages[0].content.strip():
        raise BadRequestError("messages[0].content is required")
    return body.messages[0].content


# -----------------------
# Error mapping
# -----------------------

def _error_status(exc: Exception) -> int:
    if isinstance(exc, NotFoundError):
        return 404
    if isinstance(exc, ForbiddenError):
        return 403
    if isinstance(exc, MissingRequiredDependencyError):
        return 409
    if isinstance(exc, BadRequestError):
        return 400
    if isinstance(exc, (GenerationError, MaxRetryErrorsException)):
        return 502
    return 500


@app.exception_handler(WorkflowError)
async def workflow_error_handler(request: Request, exc: WorkflowError):
    status = _error_status(exc)
    logger.info(f"{request.method} {request.url.path} -> {status}: {exc}")
    body = {"detail": str(exc)}
    if isinstance(exc, MissingRequiredDependencyError):
        body["dependency_type_name"] = exc.dependency_type_name
    return JSONResponse(status_code=status, content=body)


@app.exception_handler(MaxRetryErrorsException)
async def llm_error_handler(request: Request, exc: MaxRetryErrorsException):
    logger.error(f"{request.method} {request.url.path} -> LLM failure: {exc!r} (cause: {exc.__cause__!r})")
    return JSONResponse(status_code=502, content={"detail": "The language model did not respond. Please retry."})


def _debug(label: str, payload) -> None:
    try:
        preview = json.dumps(payload, indent=2, default=str)
    except (TypeError, ValueError):
        preview = str(payload)
    logger.debug(f"{label} {preview}")


# -----------------------
# Routes
# -----------------------

@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/projects")
def create_project(
    body: ProjectCreate,
    x_user_id: Optional[int] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    _debug("create_project request", body.model_dump())
    return orchestrator.create_project(body.name, user_id=x_user_id, project_type_id=body.project_type_id)


@app.get("/projects")
def list_projects(
    x_user_id: Optional[int] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    if x_user_id is not None:
        return orchestrator.list_projects_by_user(x_user_id)
    return orchestrator.list_projects()


@app.get("/projects/{project_id}")
def view_project(
    project_id: int,
    x_user_id: Optional[int] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.view_project(project_id, user_id=x_user_id)


@app.put("/projects/{project_id}")
def rename_project(
    project_id: int,
    body: ProjectUpdate,
    x_user_id: Optional[int] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.rename_project(project_id, body.name, user_id=x_user_id)


@app.delete("/projects/{project_id}", status_code=204)
def delete_project(
    project_id: int,
    x_user_id: Optional[int] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    orchestrator.delete_project(project_id, user_id=x_user_id)


@app.post("/projects/{project_id}/artifacts")
def create_artifact(
    project_id: int,
    body: ArtifactCreate,
    x_ai_model: Optional[str] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    _debug("create_artifact request", body.model_dump())
    result = orchestrator.create_artifact(project_id, body.artifact_type_name, model=x_ai_model)
    _debug("create_artifact response", result)
    return result


@app.get("/artifacts/{artifact_id}")
def view_artifact(artifact_id: int, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    return orchestrator.get_artifact_details(artifact_id)


@app.get("/artifacts/{artifact_id}/versions")
def list_artifact_versions(artifact_id: int, orchestrator: WorkflowOrchestrator = Depends(get_orchestrator)):
    return orchestrator.list_artifact_versions(artifact_id)


@app.put("/artifacts/{artifact_id}")
def update_artifact(
    artifact_id: int,
    body: ArtifactUpdate,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.update_artifact(artifact_id, name=body.name, content=body.content)


@app.post("/artifacts/{artifact_id}/interact")
def interact_artifact(
    artifact_id: int,
    body: InteractRequest,
    x_ai_model: Optional[str] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    _debug("interact_artifact request", body.model_dump())
    result = orchestrator.interact_artifact(artifact_id, _user_message(body), model=x_ai_model)
    _debug("interact_artifact response", result)
    return result


@app.post("/artifacts/{artifact_id}/interact/stream")
def stream_interact_artifact(
    artifact_id: int,
    body: InteractRequest,
    x_ai_model: Optional[str] = Header(default=None),
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    """
    Server-sent events: one {"chunk": ...} per model piece, then a final
    {"done": true, "artifact_content": ..., "commentary": ...}.

    Failures before the first chunk (unknown artifact, missing dependency)
    answer with the usual error status. Later failures end the stream with
    {"done": true, "error": <exception class>, ...}.
    """
    user_message = _user_message(body)
    events: "queue.Queue[dict | Exception | None]" = queue.Queue()

    def run():
        try:
            result = orchestrator.stream_interact_artifact(
                artifact_id,
                user_message,
                lambda piece: events.put({"chunk": piece}),
                model=x_ai_model,
            )
            events.put({"chunk": "", "done": True, **result})
        except Exception as e:
            logger.error(f"stream_interact_artifact({artifact_id}) failed: {e}")
            events.put(e)
        finally:
            events.put(None)

    threading.Thread(target=run, daemon=True).start()

    first = events.get()
    if isinstance(first, Exception):
        raise first

    def sse():
        event = first
        while event is not None:
            if isinstance(event, Exception):
                event = _stream_error_event(event)
            yield f"data: {json.dumps(event)}\n\n"
            event = events.get()

    return StreamingResponse(sse(), media_type="text/event-stream")


def _stream_error_event(exc: Exception) -> dict:
    event = {"chunk": f"Error: {exc}", "done": True, "error": type(exc).__name__, "status": _error_status(exc)}
    if isinstance(exc, MissingRequiredDependencyError):
        event["dependency_type_name"] = exc.dependency_type_name
    return event


@app.put("/artifacts/{artifact_id}/state/{state_id}")
def transition_artifact(
    artifact_id: int,
    state_id: int,
    orchestrator: WorkflowOrchestrator = Depends(get_orchestrator),
):
    return orchestrator.transition_artifact(artifact_id, state_id)


if __name__ == "__main__":
    import uvicorn

    logging.basicConfig(
        level=logging.DEBUG,
        format="%(asctime)s | %(levelname)s | %(name)s\n%(message)s\n"
    )
    uvicorn.run(app, host="0.0.0.0", port=8000)
