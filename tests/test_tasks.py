"""
Unit tests for the in-memory task registry.
"""
import pytest

from app.coach.models import TaskCreate, TaskUpdate
from app.coach.tasks import DEFAULT_COLOR, TaskRegistry


class TestTaskRegistry:
    def test_defaults_loaded(self):
        registry = TaskRegistry()
        ids = [task.id for task in registry.list_tasks()]
        assert ids == ["ted-talk", "dilemma"]
        dilemma = registry.get_task("dilemma")
        assert dilemma.interactive is True
        assert dilemma.scenario_prompt

    def test_registries_do_not_share_state(self):
        first = TaskRegistry()
        second = TaskRegistry()
        first.delete_task("ted-talk")
        assert second.get_task("ted-talk") is not None

    def test_add_task_slugifies_title(self):
        registry = TaskRegistry(tasks=[])
        task = registry.add_task(TaskCreate(title="Elevator Pitch!", rubric="Be brief."))
        assert task.id == "elevator-pitch"
        assert task.color == DEFAULT_COLOR
        assert registry.get_task("elevator-pitch") == task

    def test_add_task_avoids_id_collision(self):
        registry = TaskRegistry(tasks=[])
        first = registry.add_task(TaskCreate(title="Pitch", rubric="r"))
        second = registry.add_task(TaskCreate(title="Pitch", rubric="r"))
        assert first.id == "pitch"
        assert second.id.startswith("pitch-")
        assert len(registry.list_tasks()) == 2

    def test_update_only_sent_fields(self):
        registry = TaskRegistry()
        updated = registry.update_task("ted-talk", TaskUpdate(title="New title"))
        assert updated.title == "New title"
        assert updated.rubric == registry.get_task("ted-talk").rubric
        assert updated.icon == "presentation"

    def test_update_rejects_null_required_fields(self):
        registry = TaskRegistry()
        before = registry.get_task("ted-talk")
        for payload in ({"title": None}, {"rubric": None}, {"description": None}, {"title": "  "}):
            with pytest.raises(ValueError):
                registry.update_task("ted-talk", TaskUpdate.model_validate(payload))
        assert registry.get_task("ted-talk") == before

    def test_update_can_clear_scenario_prompt(self):
        registry = TaskRegistry()
        assert registry.get_task("dilemma").scenario_prompt
        updated = registry.update_task("dilemma", TaskUpdate.model_validate({"scenarioPrompt": None}))
        assert updated.scenario_prompt is None
        assert updated.title == registry.get_task("dilemma").title

    def test_update_missing_task(self):
        with pytest.raises(KeyError):
            TaskRegistry().update_task("nope", TaskUpdate(title="x"))

    def test_delete_task(self):
        registry = TaskRegistry()
        registry.delete_task("dilemma")
        assert registry.get_task("dilemma") is None
        registry.delete_task("dilemma")
