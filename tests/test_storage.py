"""
Unit tests for the in-memory session store.
"""
from app.coach.storage import InMemorySessionStore, build_session_store


class TestInMemorySessionStore:
    def test_create_session(self):
        store = InMemorySessionStore()
        store.create_session("s1", "ted-talk")
        session = store.get_session("s1")
        assert session.status == "queued"
        assert session.task_id == "ted-talk"
        assert set(session.steps) == {"frames", "transcription", "analysis"}
        assert session.steps["frames"]["status"] == "pending"

    def test_update_keeps_unset_fields(self):
        store = InMemorySessionStore()
        store.create_session("s1", "ted-talk")
        store.update_session("s1", status="processing", error="boom")
        store.update_session("s1", contact_sheet_count=3)
        session = store.get_session("s1")
        assert session.status == "processing"
        assert session.error == "boom"
        assert session.contact_sheet_count == 3
        store.update_session("s1", error=None)
        assert store.get_session("s1").error is None

    def test_update_step(self):
        store = InMemorySessionStore()
        store.create_session("s1", "ted-talk")
        before = store.get_session("s1").updated_at
        store.update_step("s1", "frames", status="processing", progress=40.0)
        store.update_step("s1", "frames", progress=60.0)
        step = store.get_session("s1").steps["frames"]
        assert step == {"status": "processing", "progress": 60.0, "error": None}
        assert store.get_session("s1").updated_at >= before

    def test_updates_after_delete_are_ignored(self):
        store = InMemorySessionStore()
        store.create_session("s1", "ted-talk")
        store.delete_session("s1")
        store.update_session("s1", status="complete")
        store.update_step("s1", "analysis", status="complete")
        assert store.get_session("s1") is None

    def test_build_session_store(self):
        assert build_session_store().storage_name == "memory"
