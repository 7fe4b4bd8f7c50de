"""
API tests for the FastAPI app. Background processing and providers are mocked.
"""
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from app.coach import web
from app.coach.errors import MediaLoadError
from app.coach.models import AnalysisResult, ContactSheet, Transcription
from app.coach.tasks import TaskRegistry

ANALYSIS = AnalysisResult.model_validate(
    {
        "overallScore": 64,
        "summary": "Decent.",
        "strengths": [],
        "areasForImprovement": ["Volume"],
        "feedback": [],
    }
)


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(web, "task_registry", TaskRegistry())
    with TestClient(web.app) as c:
        yield c


@pytest.fixture
def start_processing():
    with patch("app.coach.web.start_session_processing") as mock:
        yield mock


def _create_session(client, **data):
    files = {"video": ("take.webm", b"fake-video", "video/webm")}
    form = {"task_id": "ted-talk"}
    form.update(data)
    return client.post("/api/sessions", files=files, data=form)


class TestHealthAndTasks:
    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200
        assert resp.json()["status"] == "ok"
        assert resp.json()["storage"] == "memory"

    def test_list_tasks_uses_camel_case(self, client):
        tasks = client.get("/api/tasks").json()
        assert [task["id"] for task in tasks] == ["ted-talk", "dilemma"]
        assert tasks[1]["scenarioPrompt"]

    def test_task_lifecycle(self, client):
        resp = client.post(
            "/api/tasks",
            json={"title": "Sales Call", "rubric": "Close the deal.", "interactive": True},
        )
        assert resp.status_code == 201
        task_id = resp.json()["id"]
        assert task_id == "sales-call"

        resp = client.patch(f"/api/tasks/{task_id}", json={"description": "Cold call practice"})
        assert resp.status_code == 200
        assert resp.json()["description"] == "Cold call practice"
        assert resp.json()["rubric"] == "Close the deal."

        assert client.delete(f"/api/tasks/{task_id}").status_code == 204
        assert client.get(f"/api/tasks/{task_id}").status_code == 404

    def test_patch_with_null_fields_rejected(self, client):
        before = client.get("/api/tasks/ted-talk").json()
        for payload in ({"title": None}, {"rubric": None}, {"icon": None}):
            resp = client.patch("/api/tasks/ted-talk", json=payload)
            assert resp.status_code == 400
        assert client.get("/api/tasks/ted-talk").json() == before

    def test_patch_unknown_task(self, client):
        assert client.patch("/api/tasks/missing", json={"title": "X"}).status_code == 404

    def test_blank_rubric_rejected(self, client):
        resp = client.post("/api/tasks", json={"title": "X", "rubric": "   "})
        assert resp.status_code == 400

    def test_unknown_task(self, client):
        assert client.get("/api/tasks/missing").status_code == 404
        assert client.patch("/api/tasks/missing", json={"title": "x"}).status_code == 404
        assert client.delete("/api/tasks/missing").status_code == 404


class TestSessions:
    def test_create_and_poll(self, client, start_processing):
        resp = _create_session(client)
        assert resp.status_code == 200
        body = resp.json()
        assert body["status"] == "queued"
        session_id = body["session_id"]

        kwargs = start_processing.call_args.kwargs
        assert kwargs["audio_path"] is None
        assert kwargs["task"].id == "ted-talk"
        assert kwargs["video_path"].read_bytes() == b"fake-video"

        status = client.get(f"/api/sessions/{session_id}").json()
        assert status["status"] == "queued"
        assert status["task_id"] == "ted-talk"
        assert status["steps"]["frames"]["status"] == "pending"

    def test_audio_upload_passed_through(self, client, start_processing):
        files = {
            "video": ("take.webm", b"fake-video", "video/webm"),
            "audio": ("take.ogg", b"fake-audio", "audio/ogg"),
        }
        resp = client.post("/api/sessions", files=files, data={"task_id": "ted-talk"})
        assert resp.status_code == 200
        audio_path = start_processing.call_args.kwargs["audio_path"]
        assert audio_path.suffix == ".ogg"
        assert audio_path.read_bytes() == b"fake-audio"

    def test_conversation_log_for_interactive_task(self, client, start_processing):
        log = '[{"role": "assistant", "content": "Hi", "timestamp": 0.5}]'
        resp = _create_session(client, task_id="dilemma", conversation_log=log)
        assert resp.status_code == 200
        turns = start_processing.call_args.kwargs["conversation_log"]
        assert turns[0].content == "Hi"

    def test_invalid_conversation_log(self, client, start_processing):
        resp = _create_session(client, task_id="dilemma", conversation_log='[{"role": "narrator"}]')
        assert resp.status_code == 400
        start_processing.assert_not_called()

    def test_missing_video(self, client, start_processing):
        resp = client.post("/api/sessions", data={"task_id": "ted-talk"})
        assert resp.status_code == 400

    def test_unknown_task(self, client, start_processing):
        resp = _create_session(client, task_id="missing")
        assert resp.status_code == 404

    def test_empty_video(self, client, start_processing):
        files = {"video": ("take.webm", b"", "video/webm")}
        resp = client.post("/api/sessions", files=files, data={"task_id": "ted-talk"})
        assert resp.status_code == 400
        start_processing.assert_not_called()

    def test_cancel_and_delete(self, client, start_processing):
        session_id = _create_session(client).json()["session_id"]
        with patch("app.coach.web.cancel_session") as cancel:
            resp = client.post(f"/api/sessions/{session_id}/cancel")
            assert resp.json()["status"] == "cancelling"
            cancel.assert_called_once_with(session_id)

            assert client.delete(f"/api/sessions/{session_id}").status_code == 204
        assert client.get(f"/api/sessions/{session_id}").status_code == 404

    def test_cancel_finished_session_is_noop(self, client, start_processing):
        session_id = _create_session(client).json()["session_id"]
        web.session_store.update_session(session_id, status="complete")
        with patch("app.coach.web.cancel_session") as cancel:
            resp = client.post(f"/api/sessions/{session_id}/cancel")
        assert resp.json()["status"] == "complete"
        cancel.assert_not_called()

    def test_unknown_session(self, client):
        assert client.get("/api/sessions/nope").status_code == 404
        assert client.post("/api/sessions/nope/cancel").status_code == 404
        assert client.delete("/api/sessions/nope").status_code == 404


class TestContactSheets:
    def test_returns_sheets(self, client):
        sheet = ContactSheet(
            timestamp=0.0,
            duration=4.5,
            image_data_url="data:image/jpeg;base64,AAAA",
            frame_timestamps=[0.0, 0.5],
            frames_captured=2,
        )
        run = MagicMock()
        run.run.return_value = [sheet]
        run.plan = SimpleNamespace(video_duration=1.0, interval=0.5)
        with patch("app.coach.web.SheetPipelineRun", return_value=run):
            resp = client.post(
                "/api/contact-sheets",
                files={"video": ("take.webm", b"fake-video", "video/webm")},
            )
        assert resp.status_code == 200
        body = resp.json()
        assert body["videoDuration"] == 1.0
        assert body["interval"] == 0.5
        assert body["contactSheets"][0]["frameTimestamps"] == [0.0, 0.5]
        assert "framesCaptured" not in body["contactSheets"][0]

    def test_unreadable_video(self, client):
        run = MagicMock()
        run.run.side_effect = MediaLoadError("Failed to load video metadata")
        with patch("app.coach.web.SheetPipelineRun", return_value=run):
            resp = client.post(
                "/api/contact-sheets",
                files={"video": ("take.webm", b"garbage", "video/webm")},
            )
        assert resp.status_code == 422


class TestTranscribeAndAnalyze:
    def test_transcribe(self, client):
        with patch(
            "app.coach.web.transcribe_audio",
            return_value=Transcription(text="hi", words=[]),
        ):
            resp = client.post("/api/transcribe", files={"audio": ("a.webm", b"audio", "audio/webm")})
        assert resp.status_code == 200
        assert resp.json()["text"] == "hi"

    def test_transcribe_provider_failure(self, client):
        with patch(
            "app.coach.web.transcribe_audio",
            side_effect=RuntimeError("Transcription request failed (503): busy"),
        ):
            resp = client.post("/api/transcribe", files={"audio": ("a.webm", b"audio", "audio/webm")})
        assert resp.status_code == 502

    def test_transcribe_missing_key(self, client):
        with patch(
            "app.coach.web.transcribe_audio",
            side_effect=RuntimeError("Missing OPENAI_API_KEY."),
        ):
            resp = client.post("/api/transcribe", files={"audio": ("a.webm", b"audio", "audio/webm")})
        assert resp.status_code == 500

    def test_analyze(self, client):
        payload = {
            "contactSheets": [],
            "transcription": {"text": "hello", "words": []},
            "rubric": "Be clear.",
            "taskTitle": "TED Talk",
        }
        with patch("app.coach.web.analyze_recording", return_value=ANALYSIS) as analyze:
            resp = client.post("/api/analyze", json=payload)
        assert resp.status_code == 200
        assert resp.json()["overallScore"] == 64
        assert resp.json()["areasForImprovement"] == ["Volume"]
        assert analyze.call_args.args[0].task_title == "TED Talk"

    def test_analyze_nothing_to_grade(self, client):
        payload = {
            "contactSheets": [],
            "transcription": {"text": "  "},
            "rubric": "r",
            "taskTitle": "t",
        }
        assert client.post("/api/analyze", json=payload).status_code == 400

    def test_analyze_provider_failure(self, client):
        payload = {
            "contactSheets": [],
            "transcription": {"text": "hello"},
            "rubric": "r",
            "taskTitle": "t",
        }
        with patch(
            "app.coach.web.analyze_recording",
            side_effect=RuntimeError("Analysis request timed out."),
        ):
            assert client.post("/api/analyze", json=payload).status_code == 502
