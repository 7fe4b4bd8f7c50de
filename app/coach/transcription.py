import logging
import os
import shutil
import subprocess
from pathlib import Path
from typing import Any, Optional

from fastapi import HTTPException, UploadFile
from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from .constants import CHUNK_SIZE, MAX_UPLOAD_BYTES
from .models import Transcription, TranscriptionWord


logger = logging.getLogger("uvicorn.error")

DEFAULT_MODEL = "whisper-1"
DEFAULT_TIMEOUT_SECONDS = 60.0
MAX_ERROR_CHARS = 1200
# Whisper accepts these containers; anything else is sent as webm.
AUDIO_SUFFIX_BY_TYPE = {
    "audio/wav": ".wav",
    "audio/x-wav": ".wav",
    "audio/ogg": ".ogg",
    "audio/mpeg": ".mp3",
    "audio/mp4": ".m4a",
}


async def write_upload_to_disk(
    upload: UploadFile,
    destination: Path,
    *,
    field_name: str,
    max_size_bytes: int = MAX_UPLOAD_BYTES,
) -> int:
    total_bytes = 0
    destination.parent.mkdir(parents=True, exist_ok=True)

    with destination.open("wb") as output:
        while True:
            chunk = await upload.read(CHUNK_SIZE)
            if not chunk:
                break
            total_bytes += len(chunk)
            if total_bytes > max_size_bytes:
                raise HTTPException(
                    status_code=413,
                    detail=f"{field_name} is too large. Max size is {max_size_bytes} bytes.",
                )
            output.write(chunk)

    await upload.close()
    if total_bytes == 0:
        raise HTTPException(status_code=400, detail=f"{field_name} file is empty.")
    return total_bytes


def audio_suffix(filename: Optional[str], content_type: Optional[str]) -> str:
    name = (filename or "").lower()
    for suffix in (".wav", ".ogg", ".mp3", ".m4a", ".webm"):
        if name.endswith(suffix):
            return suffix
    mime = (content_type or "").split(";")[0].strip().lower()
    return AUDIO_SUFFIX_BY_TYPE.get(mime, ".webm")


def _truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def _get_api_key() -> str:
    api_key = os.getenv("OPENAI_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError(
            "Missing OPENAI_API_KEY. Set it before calling /api/transcribe "
            '(example: export OPENAI_API_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def _build_client() -> OpenAI:
    base_url = os.getenv("OPENAI_BASE_URL", "").strip() or None
    timeout = float(os.getenv("TRANSCRIPTION_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    return OpenAI(base_url=base_url, api_key=_get_api_key(), timeout=timeout)


def extract_audio_track(input_path: Path, audio_path: Path) -> None:
    """Pull a 16 kHz mono mp3 out of a recording for transcription."""
    ffmpeg_path = shutil.which("ffmpeg")
    if not ffmpeg_path:
        raise RuntimeError(
            "ffmpeg is not installed or not on PATH. Install ffmpeg (macOS: brew install ffmpeg)."
        )

    command = [
        ffmpeg_path,
        "-y",
        "-i",
        str(input_path),
        "-vn",
        "-ac",
        "1",
        "-ar",
        "16000",
        "-b:a",
        "48k",
        str(audio_path),
    ]
    ffmpeg_result = subprocess.run(command, capture_output=True, text=True)
    if ffmpeg_result.returncode != 0:
        stderr_tail = (ffmpeg_result.stderr or "").strip().splitlines()
        message = stderr_tail[-1] if stderr_tail else "Unknown ffmpeg error"
        raise RuntimeError(f"Audio extraction failed: {message}")

    if not audio_path.exists() or audio_path.stat().st_size == 0:
        raise RuntimeError("Extracted audio track is empty.")


def _field(item: Any, name: str, default: Any = None) -> Any:
    if isinstance(item, dict):
        return item.get(name, default)
    return getattr(item, name, default)


def parse_transcription_response(response: Any) -> Transcription:
    words = []
    for item in _field(response, "words") or []:
        token = str(_field(item, "word") or "").strip()
        if not token:
            continue
        words.append(
            TranscriptionWord(
                word=token,
                start=float(_field(item, "start") or 0.0),
                end=float(_field(item, "end") or 0.0),
            )
        )
    return Transcription(text=str(_field(response, "text") or "").strip(), words=words)


def transcribe_audio(audio_path: Path) -> Transcription:
    """Send *audio_path* to Whisper and return text plus word timestamps."""
    if not audio_path.exists() or audio_path.stat().st_size == 0:
        raise ValueError(f"Audio file is missing or empty: {audio_path}")

    client = _build_client()
    model = os.getenv("TRANSCRIPTION_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL
    size_kb = audio_path.stat().st_size / 1024
    logger.info("transcription_request file=%s size_kb=%.1f model=%s", audio_path.name, size_kb, model)

    try:
        with audio_path.open("rb") as audio_file:
            response = client.audio.transcriptions.create(
                file=audio_file,
                model=model,
                response_format="verbose_json",
                timestamp_granularities=["word"],
            )
    except APIStatusError as exc:
        status_code = getattr(exc, "status_code", None)
        detail = _truncate(getattr(exc, "message", None) or str(exc))
        if status_code is not None:
            raise RuntimeError(f"Transcription request failed ({status_code}): {detail}") from exc
        raise RuntimeError(f"Transcription request failed: {detail}") from exc
    except APITimeoutError as exc:
        raise RuntimeError("Transcription request timed out.") from exc
    except APIConnectionError as exc:
        raise RuntimeError(f"Failed to connect to transcription provider: {exc}") from exc

    result = parse_transcription_response(response)
    logger.info("transcription_done text_len=%s words=%s", len(result.text), len(result.words))
    return result
