from __future__ import annotations

import logging
import shutil
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor
from pathlib import Path
from typing import List, Optional

from .analysis import analyze_recording
from .errors import SheetPipelineError
from .models import AnalyzeRequest, ContactSheet, ConversationMessage, Task, Transcription
from .sheet_pipeline import extract_all
from .storage import SessionStore
from .transcription import extract_audio_track, transcribe_audio


logger = logging.getLogger("uvicorn.error")

_cancel_lock = threading.Lock()
_cancel_events: dict[str, threading.Event] = {}


def register_session(session_id: str) -> threading.Event:
    with _cancel_lock:
        event = _cancel_events.get(session_id)
        if event is None:
            event = threading.Event()
            _cancel_events[session_id] = event
        return event


def cancel_session(session_id: str) -> bool:
    """Ask a running session to stop after its current contact sheet."""
    with _cancel_lock:
        event = _cancel_events.get(session_id)
    if event is None:
        return False
    event.set()
    logger.info("session_id=%s cancel_requested", session_id)
    return True


def _release_session(session_id: str) -> None:
    with _cancel_lock:
        _cancel_events.pop(session_id, None)


def _mark_cancelled(store: SessionStore, session_id: str) -> None:
    session = store.get_session(session_id)
    if session is not None:
        for step, state in list(session.steps.items()):
            if state.get("status") in ("pending", "processing"):
                store.update_step(session_id, step, status="cancelled")
    store.update_session(session_id, status="cancelled", error=None)


def _pipeline_error_message(exc: SheetPipelineError) -> str:
    return f"Could not read frames from the recording ({exc.kind}): {exc}. Please record again and retry."


def process_session(
    store: SessionStore,
    session_id: str,
    *,
    video_path: Path,
    task: Task,
    temp_dir: Path,
    audio_path: Optional[Path] = None,
    conversation_log: Optional[List[ConversationMessage]] = None,
    cancel_event: Optional[threading.Event] = None,
) -> None:
    """Extract contact sheets and transcribe in parallel, then analyse.

    Cancellation discards everything produced so far and leaves the session
    in ``cancelled``.
    """
    start_ts = time.monotonic()
    cancel_event = cancel_event or register_session(session_id)
    interactive = bool(task.interactive)

    def _cancelled() -> bool:
        return cancel_event.is_set()

    def _extract_sheets() -> Optional[List[ContactSheet]]:
        store.update_step(session_id, "frames", status="processing", progress=0.0, error=None)

        def on_progress(fraction: float) -> None:
            if not _cancelled():
                store.update_step(session_id, "frames", progress=round(fraction * 100.0, 1))

        try:
            sheets = extract_all(
                video_path,
                on_progress=on_progress,
                cancel_event=cancel_event,
                suffix=video_path.suffix or ".webm",
                label=session_id,
            )
        except Exception as exc:
            store.update_step(session_id, "frames", status="error", error=str(exc))
            raise
        if sheets is None:
            return None
        store.update_step(session_id, "frames", status="complete", progress=100.0)
        return sheets

    def _transcribe() -> Optional[Transcription]:
        store.update_step(session_id, "transcription", status="processing", error=None)
        try:
            source_audio = audio_path
            if source_audio is None:
                source_audio = temp_dir / "audio.mp3"
                extract_audio_track(video_path, source_audio)
            transcription = transcribe_audio(source_audio)
        except Exception as exc:
            store.update_step(session_id, "transcription", status="error", error=str(exc))
            raise
        if _cancelled():
            return None
        if interactive and conversation_log:
            transcription = transcription.model_copy(update={"turns": list(conversation_log)})
        store.update_step(session_id, "transcription", status="complete")
        return transcription

    try:
        store.update_session(session_id, status="processing", error=None)
        logger.info(
            "session_id=%s processing_started task=%s interactive=%s audio_provided=%s",
            session_id,
            task.id,
            interactive,
            audio_path is not None,
        )

        with ThreadPoolExecutor(max_workers=2) as pool:
            frames_future: Future = pool.submit(_extract_sheets)
            transcription_future: Future = pool.submit(_transcribe)
            sheets = frames_future.result()
            transcription = transcription_future.result()

        if _cancelled() or sheets is None or transcription is None:
            _mark_cancelled(store, session_id)
            logger.info("session_id=%s processing_cancelled", session_id)
            return

        store.update_session(
            session_id,
            status="analyzing",
            contact_sheet_count=len(sheets),
            transcription=transcription.model_dump(),
        )
        store.update_step(session_id, "analysis", status="processing", error=None)

        request = AnalyzeRequest(
            contact_sheets=sheets,
            transcription=transcription,
            conversation_log=conversation_log,
            rubric=task.rubric,
            task_title=task.title,
            is_interactive=interactive,
        )
        try:
            result = analyze_recording(request)
        except Exception as exc:
            store.update_step(session_id, "analysis", status="error", error=str(exc))
            raise

        if _cancelled():
            _mark_cancelled(store, session_id)
            logger.info("session_id=%s processing_cancelled stage=analysis", session_id)
            return

        store.update_step(session_id, "analysis", status="complete")
        store.update_session(
            session_id,
            status="complete",
            analysis=result.model_dump(by_alias=True),
            error=None,
        )
        logger.info(
            "session_id=%s processing_done sheets=%s score=%s",
            session_id,
            len(sheets),
            result.overall_score,
        )
    except SheetPipelineError as exc:
        store.update_session(session_id, status="error", error=_pipeline_error_message(exc))
        logger.warning("session_id=%s processing_failed kind=%s error=%s", session_id, exc.kind, exc)
    except Exception as exc:
        store.update_session(session_id, status="error", error=str(exc) or "Processing failed")
        logger.error("session_id=%s processing_failed", session_id, exc_info=True)
    finally:
        _release_session(session_id)
        shutil.rmtree(temp_dir, ignore_errors=True)
        elapsed_ms = int((time.monotonic() - start_ts) * 1000)
        logger.info("session_id=%s processing_finished elapsed_ms=%s", session_id, elapsed_ms)


def start_session_processing(store: SessionStore, session_id: str, **kwargs) -> threading.Thread:
    """Run ``process_session`` on a daemon thread so the request returns at once."""
    kwargs.setdefault("cancel_event", register_session(session_id))
    thread = threading.Thread(
        target=process_session,
        args=(store, session_id),
        kwargs=kwargs,
        daemon=True,
    )
    thread.start()
    return thread
