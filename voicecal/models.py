from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from .agent.schemas import (BusyInterval, CamelModel, EventDetails,
                            ItemAnalysis, SchedulingPreferences)


class Event(BaseModel):
    """Local calendar entry. ``start``/``end`` are "YYYY-MM-DDTHH:MM"."""
    model_config = ConfigDict(populate_by_name=True)

    id: str
    title: str
    start: str
    end: Optional[str] = None
    location: Optional[str] = None
    description: Optional[str] = None
    all_day: bool = Field(default=False, alias="allDay")
    type: str = "General"
    is_ai_generated: bool = Field(default=False, alias="isAIGenerated")
    original_event_id: Optional[str] = Field(default=None, alias="originalEventId")
    task_id: Optional[str] = Field(default=None, alias="taskId")
    created_at: Optional[str] = Field(default=None, alias="createdAt")


# -------------------------
# /api/voice
# -------------------------
class ProcessRequest(CamelModel):
    transcript: str = ""
    context: Dict[str, Any] = Field(default_factory=dict)


class GoogleAuthMixin(CamelModel):
    # OAuth tokens held by the client session; absent means the local calendar.
    tokens: Optional[Dict[str, Any]] = None


class ConflictCheckRequest(GoogleAuthMixin):
    conversation_id: Optional[str] = None
    event_details: Optional[EventDetails] = None
    preferences: Optional[SchedulingPreferences] = None
    count: int = 3


class SelectAlternativeRequest(CamelModel):
    conversation_id: str
    index: int = 0


class ConversationRequest(CamelModel):
    conversation_id: Optional[str] = None


class CreateEventRequest(GoogleAuthMixin):
    conversation_id: Optional[str] = None
    event_details: Optional[EventDetails] = None
    override: bool = False


# -------------------------
# /api/free-slots
# -------------------------
class FreeSlotsRequest(GoogleAuthMixin):
    start: Optional[datetime] = None
    end: Optional[datetime] = None
    min_duration: int = 120
    days_to_check: int = 14
    # When omitted the busy intervals come from the calendar provider.
    busy: Optional[List[BusyInterval]] = None


class SlotSuggestRequest(FreeSlotsRequest):
    item_id: str
    analysis: ItemAnalysis = Field(default_factory=ItemAnalysis)
    count: int = 3


# -------------------------
# /api/tasks
# -------------------------
class TaskAnalysisRequest(CamelModel):
    event_id: str
    tasks: List[Dict[str, Any]] = Field(default_factory=list)


class CachedAnalysisRequest(CamelModel):
    event_id: str
    linked_count: int = 0


class EventIdRequest(CamelModel):
    event_id: str


class ScheduleTasksRequest(GoogleAuthMixin):
    original_event_id: Optional[str] = None
    original_event_title: Optional[str] = None
    selected_tasks: List[Dict[str, Any]] = Field(default_factory=list)
