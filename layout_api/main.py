import logging
import os
import time
import uuid
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field, field_validator

from layout_api import documents, dumps, llm_client, llm_prompts, page_rules
from layout_api.sessions import RecordStatus, SessionStore

if not logging.getLogger().handlers:
    logging.basicConfig(
        level=os.getenv("LOG_LEVEL", "INFO").upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

log = logging.getLogger(__name__)

SESSION_RETENTION_SECONDS = int(os.getenv("SESSION_RETENTION_SECONDS", "86400") or 86400)
SESSION_SWEEP_SECONDS = float(os.getenv("SESSION_SWEEP_SECONDS", "300") or 300)
APP_ENV = os.getenv("APP_ENV", "development")
_STARTED_AT = time.time()


def _sweeper_enabled() -> bool:
    # No background threads during pytest runs
    if os.getenv("PYTEST_CURRENT_TEST"):
        return False
    return SESSION_SWEEP_SECONDS > 0


@asynccontextmanager
async def lifespan(app: FastAPI):
    store: SessionStore = app.state.sessions
    if _sweeper_enabled():
        log.info("sessions: starting sweeper interval=%.0fs", SESSION_SWEEP_SECONDS)
        store.start_sweeper(SESSION_SWEEP_SECONDS)
    try:
        yield
    finally:
        store.stop_sweeper()


app = FastAPI(lifespan=lifespan)
app.state.sessions = SessionStore(retention_seconds=SESSION_RETENTION_SECONDS)

allow_origins = [
    o.strip() for o in os.getenv("ALLOW_ORIGINS", "null,https://www.figma.com").split(",") if o.strip()
]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allow_origins,
    allow_origin_regex=r"^https?://(localhost|127\.0\.0\.1)(:\d+)?$",
    allow_credentials=True,
    allow_methods=["GET", "POST", "DELETE"],
    allow_headers=["*"],
)


@app.middleware("http")
async def add_request_id(request: Request, call_next):
    rid = str(uuid.uuid4())
    start = time.time()
    request.state.request_id = rid
    response = None
    try:
        response = await call_next(request)
        return response
    finally:
        dur_ms = int((time.time() - start) * 1000)
        log.info(
            "rid=%s method=%s path=%s status=%s dur_ms=%d",
            rid,
            request.method,
            request.url.path,
            getattr(response, "status_code", "?"),
            dur_ms,
        )


def get_store(request: Request) -> SessionStore:
    return request.app.state.sessions


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def _llm_available() -> bool:
    return bool(llm_client.status().get("has_token"))


def _missing_credentials() -> JSONResponse:
    return JSONResponse(status_code=503, content={"success": False, "error": "Missing LLM credentials"})


class GenerateDesignRequest(BaseModel):
    prompt: str = Field("", description="Free-text description of the screen to design")


class SelectionNode(BaseModel):
    id: str
    name: str = ""
    type: str = ""
    visible: bool = True
    locked: bool = False


class ProcessRequest(BaseModel):
    selection: List[SelectionNode] = Field(default_factory=list)
    count: Optional[int] = None
    timestamp: Optional[str] = None
    plugin: Optional[str] = None


class ValidateRequest(BaseModel):
    design: Dict[str, Any]


class CreateProjectRequest(BaseModel):
    name: str = Field(..., min_length=1, description="Human name of the project")
    description: str = Field("", description="Used to infer the page sequence when pages is omitted")
    pages: Optional[List[str]] = Field(default=None, description="Explicit ordered page types")

    @field_validator("pages")
    @classmethod
    def _known_page_types(cls, v: Optional[List[str]]) -> Optional[List[str]]:
        if v is None:
            return v
        cleaned = [p.strip().lower() for p in v if p and p.strip()]
        unknown = [p for p in cleaned if p not in page_rules.PAGE_TYPES]
        if unknown:
            raise ValueError(f"unknown page types: {', '.join(unknown)}")
        return cleaned


@app.get("/")
def root() -> Dict[str, str]:
    return {"status": "online", "message": "Layout backend is live", "timestamp": _now_iso()}


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.get("/api/status")
def api_status(store: SessionStore = Depends(get_store)) -> Dict[str, Any]:
    return {
        "status": "online",
        "uptime": round(time.time() - _STARTED_AT, 3),
        "environment": APP_ENV,
        "features": ["design-generation", "json-repair", "multi-page-projects"],
        "projects": len(store),
    }


@app.get("/llm/status")
def llm_status_endpoint() -> Dict[str, Any]:
    return llm_client.status()


@app.post("/api/generate-design")
def generate_design(req: GenerateDesignRequest):
    prompt = (req.prompt or "").strip()
    if not prompt:
        return JSONResponse(status_code=400, content={"success": False, "error": "Prompt is required"})
    if not _llm_available():
        return _missing_credentials()

    log.info("generate-design: prompt=%s", prompt[:80])
    raw = llm_client.generate_text(llm_prompts.build_design_prompt(prompt))
    design, meta = documents.parse_design(raw, title=prompt)
    dumps.dump_generation("design", raw, design, meta)
    return {
        "success": True,
        "prompt": prompt,
        "design": design,
        "repair": {"stage": meta.get("stage"), "shape": meta.get("shape")},
        "fallback": meta["fallback"],
        "timestamp": _now_iso(),
    }


@app.post("/api/process")
def process_selection(req: ProcessRequest) -> Dict[str, Any]:
    """Acknowledge selection data posted by the Figma plugin."""
    log.info("process: received %d nodes from plugin=%s", len(req.selection), req.plugin or "?")
    return {
        "success": True,
        "message": "Data processed successfully!",
        "receivedAt": _now_iso(),
        "data": req.model_dump(),
    }


@app.post("/api/validate")
def validate_endpoint(req: ValidateRequest):
    """200 with {"detail": {"valid": true}} or 422 with the schema errors."""
    valid, errors = documents.validate_document(req.design)
    detail: Dict[str, Any] = {"valid": valid}
    if not valid:
        detail["errors"] = errors
        return JSONResponse(status_code=422, content={"detail": detail})
    return {"detail": detail}


@app.post("/api/projects", status_code=201)
def create_project(req: CreateProjectRequest, store: SessionStore = Depends(get_store)) -> Dict[str, Any]:
    session = store.initialize(req.name, req.description, req.pages)
    snapshot = store.snapshot(session)
    return {
        "project_id": session.id,
        "sequence": list(snapshot["pending"]),
        "project": snapshot,
    }


@app.post("/api/projects/{project_id}/generate")
def generate_project_page(project_id: str, store: SessionStore = Depends(get_store)):
    found, page_type = store.claim_next_page(project_id)
    if not found:
        raise HTTPException(status_code=404, detail="Project not found")
    if page_type is None:
        snapshot = store.status(project_id)
        if snapshot is not None and snapshot["status"] != "completed":
            raise HTTPException(status_code=409, detail="Another page of this project is being generated")
        return {"complete": True, "project": snapshot}
    if not _llm_available():
        store.release_page(project_id, page_type)
        return _missing_credentials()

    snapshot = store.status(project_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Project not found")

    log.info("projects.generate: id=%s page=%s", project_id, page_type)
    try:
        raw = llm_client.generate_text(llm_prompts.build_page_prompt(snapshot, page_type))
        design, meta = documents.parse_design(
            raw,
            title=snapshot["name"],
            page_type=page_type,
            colors=snapshot["design_system"],
        )
    except Exception:
        store.release_page(project_id, page_type)
        raise
    outcome = store.record_page(project_id, page_type, design)
    if outcome is RecordStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail="Project not found")
    if outcome is RecordStatus.COMPLETED:
        raise HTTPException(status_code=409, detail="Project already completed")
    dumps.dump_generation(f"{project_id}-{page_type}", raw, design, meta)
    return {
        "complete": False,
        "page_type": page_type,
        "design": design,
        "repair": {"stage": meta.get("stage"), "shape": meta.get("shape")},
        "fallback": meta["fallback"],
        "project": store.status(project_id),
    }


@app.get("/api/projects/{project_id}")
def project_status(project_id: str, store: SessionStore = Depends(get_store)) -> Dict[str, Any]:
    snapshot = store.status(project_id)
    if snapshot is None:
        raise HTTPException(status_code=404, detail="Project not found")
    return snapshot


@app.delete("/api/projects/{project_id}")
def delete_project(project_id: str, store: SessionStore = Depends(get_store)) -> Dict[str, Any]:
    if not store.expire(project_id):
        raise HTTPException(status_code=404, detail="Project not found")
    return {"deleted": True, "project_id": project_id}
