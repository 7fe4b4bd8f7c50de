import logging
import os
import shutil
import tempfile
import uuid
from pathlib import Path
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import TypeAdapter, ValidationError
from starlette.concurrency import run_in_threadpool

from .analysis import analyze_recording
from .constants import MAX_AUDIO_UPLOAD_BYTES, MAX_REQUEST_BYTES, MAX_UPLOAD_BYTES
from .errors import MediaLoadError, SheetPipelineError
from .models import (
    AnalysisResult,
    AnalyzeRequest,
    ContactSheetsResponse,
    ConversationMessage,
    CreateSessionResponse,
    SessionStatusResponse,
    Task,
    TaskCreate,
    TaskUpdate,
    Transcription,
)
from .processing import cancel_session, start_session_processing
from .sheet_pipeline import SheetPipelineRun
from .storage import build_session_store
from .tasks import TaskRegistry
from .transcription import audio_suffix, transcribe_audio, write_upload_to_disk


logger = logging.getLogger("uvicorn.error")

UPLOAD_PATH_PREFIXES = ("/api/sessions", "/api/contact-sheets", "/api/transcribe")
_conversation_adapter = TypeAdapter(List[ConversationMessage])

app = FastAPI(title="AI Soft Skills Coach Backend")
session_store = build_session_store()
task_registry = TaskRegistry()


frontend_origins = os.getenv(
    "FRONTEND_ORIGINS",
    "http://localhost:5173,http://127.0.0.1:5173",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[origin.strip() for origin in frontend_origins.split(",") if origin.strip()],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def enforce_upload_size(request, call_next):
    if request.method in ("POST", "PUT") and request.url.path.startswith(UPLOAD_PATH_PREFIXES):
        content_length = request.headers.get("content-length")
        if content_length:
            try:
                if int(content_length) > MAX_REQUEST_BYTES:
                    return JSONResponse(
                        status_code=413,
                        content={"detail": f"Request too large. Max size is {MAX_REQUEST_BYTES} bytes."},
                    )
            except ValueError:
                pass
    return await call_next(request)


def _provider_error(exc: RuntimeError) -> HTTPException:
    detail = str(exc)
    status_code = 500 if "API_KEY" in detail else 502
    return HTTPException(status_code=status_code, detail=detail)


def _parse_conversation_log(raw: Optional[str]) -> Optional[List[ConversationMessage]]:
    if raw is None or not raw.strip():
        return None
    try:
        return _conversation_adapter.validate_json(raw)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=f"Invalid conversation_log: {exc.errors()[:3]}") from exc


def _video_suffix(video: UploadFile) -> str:
    return Path(video.filename or "").suffix or ".webm"


@app.get("/health")
def health() -> dict:
    return {
        "status": "ok",
        "storage": session_store.storage_name,
        "tasks": len(task_registry.list_tasks()),
    }


@app.get("/api/tasks", response_model=List[Task])
def list_tasks() -> List[Task]:
    return task_registry.list_tasks()


@app.post("/api/tasks", response_model=Task, status_code=201)
def create_task(payload: TaskCreate) -> Task:
    if not payload.title.strip() or not payload.rubric.strip():
        raise HTTPException(status_code=400, detail="Task title and rubric are required.")
    task = task_registry.add_task(payload)
    logger.info("task_id=%s task_created interactive=%s", task.id, task.interactive)
    return task


@app.get("/api/tasks/{task_id}", response_model=Task)
def get_task(task_id: str) -> Task:
    task = task_registry.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found.")
    return task


@app.patch("/api/tasks/{task_id}", response_model=Task)
def update_task(task_id: str, updates: TaskUpdate) -> Task:
    try:
        return task_registry.update_task(task_id, updates)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Task not found.") from exc
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc


@app.delete("/api/tasks/{task_id}", status_code=204)
def delete_task(task_id: str) -> None:
    if task_registry.get_task(task_id) is None:
        raise HTTPException(status_code=404, detail="Task not found.")
    task_registry.delete_task(task_id)


@app.post("/api/sessions", response_model=CreateSessionResponse)
async def create_session(
    video: Optional[UploadFile] = File(None),
    audio: Optional[UploadFile] = File(None),
    task_id: str = Form(...),
    conversation_log: Optional[str] = Form(None),
) -> CreateSessionResponse:
    if video is None:
        raise HTTPException(status_code=400, detail="Missing video file.")
    task = task_registry.get_task(task_id)
    if task is None:
        raise HTTPException(status_code=404, detail="Task not found.")
    turns = _parse_conversation_log(conversation_log)

    session_id = str(uuid.uuid4())
    session_store.create_session(session_id, task.id)

    temp_dir = Path(tempfile.mkdtemp(prefix=f"session_{session_id}_"))
    video_path = temp_dir / f"input{_video_suffix(video)}"
    audio_path = None

    try:
        await write_upload_to_disk(video, video_path, field_name="video", max_size_bytes=MAX_UPLOAD_BYTES)
        if audio is not None:
            audio_path = temp_dir / f"audio{audio_suffix(audio.filename, audio.content_type)}"
            await write_upload_to_disk(
                audio,
                audio_path,
                field_name="audio",
                max_size_bytes=MAX_AUDIO_UPLOAD_BYTES,
            )
    except Exception:
        session_store.delete_session(session_id)
        shutil.rmtree(temp_dir, ignore_errors=True)
        raise

    start_session_processing(
        session_store,
        session_id,
        video_path=video_path,
        audio_path=audio_path,
        task=task,
        conversation_log=turns if task.interactive else None,
        temp_dir=temp_dir,
    )
    logger.info("session_id=%s session_created task=%s", session_id, task.id)
    return CreateSessionResponse(session_id=session_id, status="queued")


@app.get("/api/sessions/{session_id}", response_model=SessionStatusResponse)
def get_session_status(session_id: str) -> SessionStatusResponse:
    session = session_store.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found.")
    return SessionStatusResponse(
        session_id=session_id,
        task_id=session.task_id,
        status=session.status,
        steps=dict(session.steps),
        contact_sheet_count=session.contact_sheet_count,
        transcription=session.transcription,
        analysis=session.analysis,
        error=session.error,
        created_at=session.created_at,
        updated_at=session.updated_at,
    )


@app.post("/api/sessions/{session_id}/cancel", response_model=CreateSessionResponse)
def cancel_session_processing(session_id: str) -> CreateSessionResponse:
    session = session_store.get_session(session_id)
    if not session:
        raise HTTPException(status_code=404, detail="Session not found.")
    if session.status in ("complete", "error", "cancelled"):
        return CreateSessionResponse(session_id=session_id, status=session.status)
    cancel_session(session_id)
    return CreateSessionResponse(session_id=session_id, status="cancelling")


@app.delete("/api/sessions/{session_id}", status_code=204)
def delete_session(session_id: str) -> None:
    if not session_store.get_session(session_id):
        raise HTTPException(status_code=404, detail="Session not found.")
    cancel_session(session_id)
    session_store.delete_session(session_id)


@app.post("/api/contact-sheets", response_model=ContactSheetsResponse)
async def create_contact_sheets(video: Optional[UploadFile] = File(None)) -> ContactSheetsResponse:
    if video is None:
        raise HTTPException(status_code=400, detail="Missing video file.")

    temp_dir = Path(tempfile.mkdtemp(prefix="sheets_upload_"))
    video_path = temp_dir / f"input{_video_suffix(video)}"
    try:
        await write_upload_to_disk(video, video_path, field_name="video", max_size_bytes=MAX_UPLOAD_BYTES)
        run = SheetPipelineRun(video_path, label="contact-sheets")
        sheets = await run_in_threadpool(run.run)
    except MediaLoadError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    except SheetPipelineError as exc:
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)

    return ContactSheetsResponse(
        video_duration=run.plan.video_duration,
        interval=run.plan.interval,
        contact_sheets=sheets or [],
    )


@app.post("/api/transcribe", response_model=Transcription)
async def transcribe(audio: Optional[UploadFile] = File(None)) -> Transcription:
    if audio is None:
        raise HTTPException(status_code=400, detail="Missing audio file.")

    temp_dir = Path(tempfile.mkdtemp(prefix="transcribe_"))
    audio_path = temp_dir / f"audio{audio_suffix(audio.filename, audio.content_type)}"
    try:
        await write_upload_to_disk(audio, audio_path, field_name="audio", max_size_bytes=MAX_AUDIO_UPLOAD_BYTES)
        return await run_in_threadpool(transcribe_audio, audio_path)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise _provider_error(exc) from exc
    finally:
        shutil.rmtree(temp_dir, ignore_errors=True)


@app.post("/api/analyze", response_model=AnalysisResult)
def analyze(request: AnalyzeRequest) -> AnalysisResult:
    if not request.contact_sheets and not request.transcription.text.strip():
        raise HTTPException(status_code=400, detail="Nothing to analyze: no contact sheets and no transcript.")
    try:
        return analyze_recording(request)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc)) from exc
    except RuntimeError as exc:
        raise _provider_error(exc) from exc
