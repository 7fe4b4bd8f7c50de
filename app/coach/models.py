from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


FeedbackCategory = Literal["positive", "improvement", "critical"]
TaskIcon = Literal["presentation", "dilemma", "custom"]
StepName = Literal["frames", "transcription", "analysis"]


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class ContactSheet(CamelModel):
    timestamp: float
    duration: float
    image_data_url: str = Field(alias="imageDataUrl")
    frame_timestamps: List[float] = Field(alias="frameTimestamps")
    # Diagnostics only; never sent to the analysis model.
    frames_captured: int = Field(default=0, alias="framesCaptured", exclude=True)


class TranscriptionWord(BaseModel):
    word: str
    start: float
    end: float


class ConversationMessage(BaseModel):
    role: Literal["user", "assistant"]
    content: str
    timestamp: float


class Transcription(BaseModel):
    text: str
    words: List[TranscriptionWord] = Field(default_factory=list)
    # Turn-level timestamps from a live conversation, used instead of words.
    turns: Optional[List[ConversationMessage]] = None


class FeedbackItem(CamelModel):
    id: str
    start_time: float = Field(alias="startTime")
    end_time: float = Field(alias="endTime")
    category: FeedbackCategory
    title: str
    feedback: str
    suggestion: Optional[str] = None


class AnalysisResult(CamelModel):
    overall_score: int = Field(alias="overallScore", ge=0, le=100)
    summary: str
    strengths: List[str]
    areas_for_improvement: List[str] = Field(alias="areasForImprovement")
    feedback: List[FeedbackItem]


class AnalyzeRequest(CamelModel):
    contact_sheets: List[ContactSheet] = Field(alias="contactSheets")
    transcription: Transcription
    conversation_log: Optional[List[ConversationMessage]] = Field(default=None, alias="conversationLog")
    rubric: str
    task_title: str = Field(alias="taskTitle")
    is_interactive: bool = Field(default=False, alias="isInteractive")


class Task(CamelModel):
    id: str
    title: str
    description: str
    rubric: str
    icon: TaskIcon = "custom"
    color: str = "from-slate-500/20 to-zinc-500/20"
    interactive: bool = False
    scenario_prompt: Optional[str] = Field(default=None, alias="scenarioPrompt")


class TaskCreate(CamelModel):
    title: str
    description: str = ""
    rubric: str
    icon: TaskIcon = "custom"
    color: Optional[str] = None
    interactive: bool = False
    scenario_prompt: Optional[str] = Field(default=None, alias="scenarioPrompt")


class TaskUpdate(CamelModel):
    title: Optional[str] = None
    description: Optional[str] = None
    rubric: Optional[str] = None
    icon: Optional[TaskIcon] = None
    color: Optional[str] = None
    interactive: Optional[bool] = None
    scenario_prompt: Optional[str] = Field(default=None, alias="scenarioPrompt")


class StepStatus(BaseModel):
    status: Literal["pending", "processing", "complete", "error", "cancelled"] = "pending"
    progress: Optional[float] = None
    error: Optional[str] = None


def default_steps() -> Dict[str, dict]:
    return {name: StepStatus().model_dump() for name in ("frames", "transcription", "analysis")}


@dataclass
class SessionRecord:
    created_at: datetime
    updated_at: datetime
    task_id: str
    status: str
    steps: Dict[str, dict] = field(default_factory=default_steps)
    contact_sheet_count: Optional[int] = None
    transcription: Optional[dict] = None
    analysis: Optional[dict] = None
    error: Optional[str] = None


class CreateSessionResponse(BaseModel):
    session_id: str
    status: str


class SessionStatusResponse(BaseModel):
    session_id: str
    task_id: str
    status: str
    steps: Dict[str, StepStatus]
    contact_sheet_count: Optional[int]
    transcription: Optional[Transcription]
    analysis: Optional[AnalysisResult]
    error: Optional[str]
    created_at: datetime
    updated_at: datetime


class ContactSheetsResponse(CamelModel):
    video_duration: float = Field(alias="videoDuration")
    interval: float
    contact_sheets: List[ContactSheet] = Field(alias="contactSheets")
