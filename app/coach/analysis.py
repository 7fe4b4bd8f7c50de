from __future__ import annotations

import json
import logging
import os
import re
import uuid
from typing import Any, List, Optional

from openai import APIConnectionError, APIStatusError, APITimeoutError, OpenAI

from .models import AnalysisResult, AnalyzeRequest, ContactSheet, ConversationMessage, Transcription
from .prompts.analysis import (
    ANALYSIS_PROMPT_VERSION,
    INTERACTIVE_SYSTEM_PROMPT,
    PRESENTATION_SYSTEM_PROMPT,
    USER_PROMPT_TEMPLATE,
)
from .sheet_compositor import format_timestamp


logger = logging.getLogger("uvicorn.error")
DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "google/gemini-3-flash-preview"
DEFAULT_TIMEOUT_SECONDS = 180.0
DEFAULT_IMAGE_DETAIL = "low"
MAX_ERROR_CHARS = 1200
WORDS_PER_MARKER = 10
CHARACTER_NAME = "Alex"
VALID_CATEGORIES = {"positive", "improvement", "critical"}
_FENCED_JSON = re.compile(r"```(?:json)?\s*([\s\S]*?)```")


def _truncate(text: str, max_chars: int = MAX_ERROR_CHARS) -> str:
    value = (text or "").strip()
    if len(value) <= max_chars:
        return value
    return value[: max_chars - 3] + "..."


def _get_api_key() -> str:
    api_key = os.getenv("OPENROUTER_API_KEY", "").strip()
    if not api_key:
        raise RuntimeError(
            "Missing OPENROUTER_API_KEY. Set it before calling /api/analyze "
            '(example: export OPENROUTER_API_KEY="YOUR_KEY_HERE").'
        )
    return api_key


def _build_client() -> OpenAI:
    base_url = os.getenv("ANALYSIS_BASE_URL", DEFAULT_BASE_URL).strip() or DEFAULT_BASE_URL
    timeout = float(os.getenv("ANALYSIS_TIMEOUT_SECONDS", str(DEFAULT_TIMEOUT_SECONDS)))
    referer = os.getenv("APP_PUBLIC_URL", "http://localhost:3000").strip() or "http://localhost:3000"
    return OpenAI(
        base_url=base_url,
        api_key=_get_api_key(),
        timeout=timeout,
        default_headers={"HTTP-Referer": referer, "X-Title": "BLE Skills Analyzer"},
    )


def _extract_content(value: Any) -> str:
    if isinstance(value, str):
        return value
    if isinstance(value, list):
        parts: list[str] = []
        for item in value:
            if isinstance(item, dict):
                text = item.get("text")
                if text:
                    parts.append(str(text))
        return "\n".join(parts).strip()
    return str(value or "").strip()


def _status_message(exc: APIStatusError) -> str:
    return (getattr(exc, "message", "") or str(exc)).lower()


def _unsupported_response_format(exc: APIStatusError) -> bool:
    message = _status_message(exc)
    return "response_format" in message or "json_object" in message


def _unsupported_temperature(exc: APIStatusError) -> bool:
    message = _status_message(exc)
    return "temperature" in message and "default (1)" in message


# ---------------------------------------------------------------------------
# Prompt assembly
# ---------------------------------------------------------------------------

def _speaker(turn: ConversationMessage, *, long_name: bool = False) -> str:
    if turn.role == "assistant":
        return f"{CHARACTER_NAME} (AI Character)" if long_name else CHARACTER_NAME
    return "User"


def format_transcript_with_timestamps(transcription: Transcription, interactive: bool) -> str:
    """Render the transcript with ``[M:SS.s]`` markers the model can cite."""
    if interactive and transcription.turns:
        return "\n".join(
            f"[{format_timestamp(turn.timestamp)}] {_speaker(turn)}: {turn.content}"
            for turn in transcription.turns
        )

    if transcription.words:
        parts: list[str] = []
        for i, word in enumerate(transcription.words):
            if i % WORDS_PER_MARKER == 0:
                parts.append(f"[{format_timestamp(word.start)}]")
            parts.append(word.word)
        return " ".join(parts)

    return transcription.text


def _conversation_section(conversation_log: Optional[List[ConversationMessage]]) -> str:
    if not conversation_log:
        return ""
    lines = [
        f"[{format_timestamp(msg.timestamp)}] {_speaker(msg, long_name=True)}: {msg.content}"
        for msg in conversation_log
    ]
    return "\n## Conversation Log\n" + "\n".join(lines)


def _sheet_index(sheets: List[ContactSheet]) -> str:
    lines = []
    for i, sheet in enumerate(sheets, start=1):
        end = sheet.timestamp + sheet.duration
        lines.append(
            f"Sheet {i}: {format_timestamp(sheet.timestamp)}-{format_timestamp(end)} "
            f"({len(sheet.frame_timestamps)} frames)"
        )
    return "\n".join(lines) if lines else "(no contact sheets)"


def build_user_prompt(request: AnalyzeRequest) -> str:
    interactive = request.is_interactive
    return (
        USER_PROMPT_TEMPLATE.replace("{task_title}", request.task_title)
        .replace("{rubric}", request.rubric)
        .replace(
            "{conversation_section}",
            _conversation_section(request.conversation_log) if interactive else "",
        )
        .replace("{sheet_index}", _sheet_index(request.contact_sheets))
        .replace(
            "{timestamped_transcript}",
            format_transcript_with_timestamps(request.transcription, interactive),
        )
        .replace("{full_transcript}", request.transcription.text)
        .replace("{subject}", "conversation" if interactive else "presentation")
    )


def build_messages(request: AnalyzeRequest) -> list[dict]:
    detail = os.getenv("ANALYSIS_IMAGE_DETAIL", DEFAULT_IMAGE_DETAIL).strip() or DEFAULT_IMAGE_DETAIL
    system_prompt = INTERACTIVE_SYSTEM_PROMPT if request.is_interactive else PRESENTATION_SYSTEM_PROMPT
    image_content = [
        {"type": "image_url", "image_url": {"url": sheet.image_data_url, "detail": detail}}
        for sheet in request.contact_sheets
    ]
    return [
        {"role": "system", "content": system_prompt},
        {
            "role": "user",
            "content": [{"type": "text", "text": build_user_prompt(request)}, *image_content],
        },
    ]


# ---------------------------------------------------------------------------
# Provider call
# ---------------------------------------------------------------------------

def _request_analysis_content(request: AnalyzeRequest) -> str:
    client = _build_client()
    model = os.getenv("ANALYSIS_MODEL", DEFAULT_MODEL).strip() or DEFAULT_MODEL

    base_kwargs = {
        "model": model,
        "messages": build_messages(request),
        "max_tokens": 4096,
        "temperature": 0.7,
        "response_format": {"type": "json_object"},
    }

    attempts = [
        dict(base_kwargs),
        {k: v for k, v in base_kwargs.items() if k != "temperature"},
        {k: v for k, v in base_kwargs.items() if k != "response_format"},
        {k: v for k, v in base_kwargs.items() if k not in {"temperature", "response_format"}},
    ]
    seen_signatures: set[str] = set()
    last_status_error: APIStatusError | None = None

    for kwargs in attempts:
        signature = json.dumps(sorted(kwargs.keys()))
        if signature in seen_signatures:
            continue
        seen_signatures.add(signature)

        try:
            response = client.chat.completions.create(**kwargs)
        except APIStatusError as exc:
            last_status_error = exc
            if _unsupported_response_format(exc) or _unsupported_temperature(exc):
                continue
            status_code = getattr(exc, "status_code", None)
            detail = _truncate(getattr(exc, "message", None) or str(exc))
            if status_code is not None:
                raise RuntimeError(f"Analysis request failed ({status_code}): {detail}") from exc
            raise RuntimeError(f"Analysis request failed: {detail}") from exc
        except APITimeoutError as exc:
            raise RuntimeError("Analysis request timed out.") from exc
        except APIConnectionError as exc:
            raise RuntimeError(f"Failed to connect to analysis provider: {exc}") from exc

        choice = response.choices[0] if response.choices else None
        if choice is None:
            raise RuntimeError("Analysis response did not contain choices.")
        content = _extract_content(choice.message.content)
        if not content:
            raise RuntimeError("No response from analysis model.")
        return content

    if last_status_error is not None:
        status_code = getattr(last_status_error, "status_code", None)
        detail = _truncate(getattr(last_status_error, "message", None) or str(last_status_error))
        if status_code is not None:
            raise RuntimeError(f"Analysis request failed ({status_code}): {detail}")
        raise RuntimeError(f"Analysis request failed: {detail}")
    raise RuntimeError("Analysis request failed before receiving a response.")


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------

def parse_json_with_repair(raw_content: str) -> dict:
    match = _FENCED_JSON.search(raw_content)
    candidate = (match.group(1) if match else raw_content).strip()
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end <= start:
            raise RuntimeError("Analysis output is not valid JSON.")
        try:
            parsed = json.loads(candidate[start : end + 1])
        except json.JSONDecodeError as exc:
            raise RuntimeError("Analysis output could not be repaired into valid JSON.") from exc

    if not isinstance(parsed, dict):
        raise RuntimeError("Analysis JSON root must be an object.")
    return parsed


def _to_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _string_list(payload: dict, key: str) -> list[str]:
    value = payload.get(key)
    if value is None:
        return []
    if not isinstance(value, list):
        raise RuntimeError(f'"{key}" must be an array.')
    return [str(item).strip() for item in value if str(item or "").strip()]


def validate_analysis_payload(payload: dict) -> AnalysisResult:
    if "overallScore" not in payload:
        raise RuntimeError('Analysis payload is missing "overallScore".')
    score = int(round(min(100.0, max(0.0, _to_float(payload.get("overallScore"))))))

    summary = str(payload.get("summary") or "").strip()
    if not summary:
        raise RuntimeError('Analysis payload must contain a non-empty "summary".')

    raw_feedback = payload.get("feedback")
    if not isinstance(raw_feedback, list):
        raise RuntimeError('Analysis payload must include "feedback" as an array.')

    feedback: list[dict] = []
    for item in raw_feedback:
        if not isinstance(item, dict):
            raise RuntimeError("Each feedback item must be an object.")
        category = str(item.get("category") or "").strip().lower()
        if category not in VALID_CATEGORIES:
            raise RuntimeError(f'Invalid feedback category "{category}".')
        start_time = max(0.0, _to_float(item.get("startTime")))
        end_time = max(start_time, _to_float(item.get("endTime"), start_time))
        suggestion = str(item.get("suggestion") or "").strip() or None
        feedback.append(
            {
                "id": str(item.get("id") or "").strip() or uuid.uuid4().hex[:12],
                "startTime": start_time,
                "endTime": end_time,
                "category": category,
                "title": str(item.get("title") or "").strip(),
                "feedback": str(item.get("feedback") or "").strip(),
                "suggestion": suggestion,
            }
        )

    feedback.sort(key=lambda entry: (entry["startTime"], entry["endTime"]))
    return AnalysisResult.model_validate(
        {
            "overallScore": score,
            "summary": summary,
            "strengths": _string_list(payload, "strengths"),
            "areasForImprovement": _string_list(payload, "areasForImprovement"),
            "feedback": feedback,
        }
    )


def analyze_recording(request: AnalyzeRequest) -> AnalysisResult:
    """Submit contact sheets, transcript and rubric; return validated feedback."""
    logger.info(
        "analysis_request version=%s task=%r sheets=%s interactive=%s",
        ANALYSIS_PROMPT_VERSION,
        request.task_title,
        len(request.contact_sheets),
        request.is_interactive,
    )
    raw_content = _request_analysis_content(request)
    try:
        result = validate_analysis_payload(parse_json_with_repair(raw_content))
    except RuntimeError:
        logger.warning("analysis_parse_failed content=%s", _truncate(raw_content))
        raise
    logger.info(
        "analysis_done score=%s feedback_items=%s",
        result.overall_score,
        len(result.feedback),
    )
    return result
