"""Practice tasks and their grading rubrics.

Tasks live in memory only; edits are lost when the process restarts.
"""

from __future__ import annotations

import re
import threading
import uuid
from typing import Dict, List, Optional

from pydantic import ValidationError

from .models import Task, TaskCreate, TaskUpdate

TED_TALK_RUBRIC = """# BLE III Final Project – Part III: Lead – Your Leadership TED Talk

## Overview
This final project brings together everything you've learned in BLE I–III—Habits, Grit, and Everyday Leadership—to help you design your life intentionally and reflect on your growth as a leader.

In Part III, you will bring your leadership journey to life by delivering a TED Talk–style presentation. You'll share your story of growth—what you've learned, how you've developed, and how you plan to lead moving forward.

## Purpose
To help you:
- Reflect on your values, strengths, and leadership growth
- Communicate your leadership journey through authentic storytelling
- Inspire others by connecting your BLE experiences to your future vision
- Strengthen your public speaking and presentation skills

## Task
You will present a 5-minute TED Talk–style presentation that showcases your leadership development from BLE I–III and connects your insights to your future life designs.

This is your opportunity to tell your story as a leader—past, present, and future.

## Reflect On (Content Rubric - 15 pts)
Use these prompts to guide your talk:
- BLE I (Habits): What habits have shaped your leadership?
- BLE II (Grit): How have passion and perseverance fueled your growth?
- BLE III (Everyday Leadership): How have you practiced leadership in daily life?
- What actions, mindsets, or habits will sustain your leadership growth moving forward?
- How do your three life designs connect to your leadership vision and goals?

**Scoring:**
- 15 pts: All prompts are addressed thoughtfully
- 0 pts: All prompts are not addressed thoughtfully

## Presentation Guidelines (Style Rubric - 5 pts)
- Deliver in a TED Talk–style—engaging, confident, and authentic
- Use the classroom whiteboard or minimal visuals to enhance your story (no notes or cue cards)
- Keep your presentation within the 5-minute time limit
- Maintain strong eye contact, voice projection, and body language
- Dress Code: Business casual (no jeans, shorts, or flip-flops)

**Scoring:**
- 5 pts: All presentation guidelines are met
- 0 pts: Presentation guidelines are not met

## Total Points: 20"""

CREDIT_TAKER_RUBRIC = """# Workplace Dilemma: The Credit Taker

## Scenario
Your team just finished a major project that took 3 months to complete. You were the lead contributor, working late nights and weekends to ensure its success.

During the final presentation to senior leadership, your colleague—who contributed minimally—presents your key insights as their own ideas. Leadership is impressed and praises them directly, even suggesting they might be ready for a promotion.

After the meeting, your colleague approaches you and says, "Great teamwork! I think that went really well."

## Your Task
Record a 2-3 minute response addressing:
1. How would you handle this situation in the moment?
2. What would you say to your colleague?
3. How would you ensure your contributions are recognized without damaging team dynamics?
4. What would you do differently to prevent this in the future?

## Evaluation Criteria (20 pts total)

### Emotional Intelligence (5 pts)
- Demonstrates self-awareness and emotional regulation
- Shows empathy while maintaining boundaries
- Avoids reactive or aggressive responses

### Communication Skills (5 pts)
- Clear and articulate delivery
- Uses "I" statements effectively
- Maintains professional tone

### Problem-Solving (5 pts)
- Proposes practical, actionable solutions
- Considers multiple perspectives
- Balances short-term and long-term outcomes

### Professionalism (5 pts)
- Maintains composure and confidence
- Shows leadership qualities
- Demonstrates ethical reasoning"""

CREDIT_TAKER_CHARACTER = (
    "You are Alex, a colleague who just presented the user's key project insights to senior "
    "leadership as your own. You are friendly and a little defensive. Begin by explaining the "
    "scenario to the user, then respond naturally as Alex while they address the situation."
)

DEFAULT_COLOR = "from-slate-500/20 to-zinc-500/20"
NULLABLE_TASK_FIELDS = {"scenario_prompt"}
REQUIRED_TEXT_FIELDS = {"title", "rubric"}

DEFAULT_TASKS: List[Task] = [
    Task(
        id="ted-talk",
        title="TED Talk Presentation",
        description="Deliver a 5-minute TED Talk showcasing your leadership development from BLE I–III",
        icon="presentation",
        color="from-violet-500/20 to-purple-500/20",
        rubric=TED_TALK_RUBRIC,
    ),
    Task(
        id="dilemma",
        title="The Credit Taker",
        description="Respond to a workplace dilemma where a colleague takes credit for your work",
        icon="dilemma",
        color="from-amber-500/20 to-orange-500/20",
        rubric=CREDIT_TAKER_RUBRIC,
        interactive=True,
        scenario_prompt=CREDIT_TAKER_CHARACTER,
    ),
]


def _slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower()).strip("-")
    return slug or "task"


class TaskRegistry:
    def __init__(self, tasks: Optional[List[Task]] = None) -> None:
        self._tasks: Dict[str, Task] = {}
        self._lock = threading.Lock()
        for task in tasks if tasks is not None else DEFAULT_TASKS:
            self._tasks[task.id] = task.model_copy(deep=True)

    def list_tasks(self) -> List[Task]:
        with self._lock:
            return list(self._tasks.values())

    def get_task(self, task_id: str) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(task_id)

    def add_task(self, payload: TaskCreate) -> Task:
        with self._lock:
            task_id = _slugify(payload.title)
            if task_id in self._tasks:
                task_id = f"{task_id}-{uuid.uuid4().hex[:6]}"
            task = Task(
                id=task_id,
                title=payload.title,
                description=payload.description,
                rubric=payload.rubric,
                icon=payload.icon,
                color=payload.color or DEFAULT_COLOR,
                interactive=payload.interactive,
                scenario_prompt=payload.scenario_prompt,
            )
            self._tasks[task_id] = task
            return task

    def update_task(self, task_id: str, updates: TaskUpdate) -> Task:
        with self._lock:
            task = self._tasks.get(task_id)
            if task is None:
                raise KeyError(f"Task {task_id} not found.")
            changes = updates.model_dump(exclude_unset=True)
            rejected = sorted(
                name
                for name, value in changes.items()
                if (value is None and name not in NULLABLE_TASK_FIELDS)
                or (name in REQUIRED_TEXT_FIELDS and not str(value or "").strip())
            )
            if rejected:
                raise ValueError(f"Task fields cannot be empty: {', '.join(rejected)}")
            try:
                updated = Task.model_validate({**task.model_dump(), **changes})
            except ValidationError as exc:
                raise ValueError(f"Invalid task update: {exc.errors()[:3]}") from exc
            self._tasks[task_id] = updated
            return updated

    def delete_task(self, task_id: str) -> None:
        with self._lock:
            self._tasks.pop(task_id, None)
