from __future__ import annotations

import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..config import DEFAULT_DURATION_MINUTES

# checking_conflict and creating are set on the working copy while a calendar
# call is in flight. They are never stored: success moves on, failure discards
# the copy.
ConversationStatus = Literal[
    "collecting",
    "ready",
    "checking_conflict",
    "awaiting_user_choice",
    "creating",
]

# Intents whose slot data the dialogue coordinator owns. Everything else is
# executed by the caller and leaves the in-progress slots alone.
EVENT_INTENTS = ("add_event", "needs_clarification")


class CamelModel(BaseModel):
  """camelCase on the wire, snake_case in Python."""
  model_config = ConfigDict(extra="ignore",
                            alias_generator=to_camel,
                            populate_by_name=True)


# ---------------------------------------------------------------------------
#  Dialogue
# ---------------------------------------------------------------------------

class ConversationMessage(CamelModel):
  role: Literal["user", "assistant"]
  content: str


class EventDetails(CamelModel):
  """Partially filled event slots."""

  title: Optional[str] = None
  date: Optional[str] = None
  time: Optional[str] = None
  duration_minutes: Optional[int] = Field(
      default=None,
      validation_alias=AliasChoices("durationMinutes", "duration_minutes",
                                    "duration"),
      serialization_alias="durationMinutes",
  )
  location: Optional[str] = None
  description: Optional[str] = None

  @field_validator("title", "date", "time", "location", "description",
                   mode="before")
  @classmethod
  def _blank_to_none(cls, value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() in ("", "null", "none"):
      return None
    return value

  @field_validator("duration_minutes", mode="before")
  @classmethod
  def _coerce_duration(cls, value: Any) -> Optional[int]:
    # Model output sends "60", 60.0 or "90 minutes".
    if value is None or isinstance(value, bool):
      return None
    if isinstance(value, (int, float)):
      return int(value) if value > 0 else None
    match = re.search(r"\d+", str(value))
    if not match:
      return None
    minutes = int(match.group(0))
    return minutes if minutes > 0 else None

  def has_meaningful_details(self) -> bool:
    return any(_is_filled(getattr(self, name))
               for name in ("title", "date", "time", "location", "description"))

  def has_core_slot(self) -> bool:
    return any(_is_filled(getattr(self, name)) for name in ("title", "date", "time"))


def _is_filled(value: Any) -> bool:
  if value is None:
    return False
  if isinstance(value, str):
    return value.strip() != ""
  return True


class IntentContext(CamelModel):
  current_date: str
  conversation_history: List[ConversationMessage] = Field(default_factory=list)
  follow_up_count: int = 0
  summary: Optional[str] = None


class IntentResult(CamelModel):
  """What the intent collaborator returns for a single transcript."""

  intent: str = "needs_clarification"
  event_details: EventDetails = Field(default_factory=EventDetails)
  follow_up_question: Optional[str] = None
  missing_info: List[str] = Field(default_factory=list)
  confidence: float = 0.8
  ready_to_process: bool = True
  abort: bool = False
  abort_message: Optional[str] = None
  response: Optional[str] = None
  wishlist_item_id: Optional[str] = None
  wishlist_item_match: Optional[str] = None
  updates: Optional[Dict[str, Any]] = None

  @field_validator("event_details", mode="before")
  @classmethod
  def _details_or_empty(cls, value: Any) -> Any:
    return value if value is not None else {}

  @field_validator("missing_info", mode="before")
  @classmethod
  def _missing_or_empty(cls, value: Any) -> Any:
    return value if value is not None else []

  @field_validator("confidence", mode="before")
  @classmethod
  def _clamp_confidence(cls, value: Any) -> float:
    try:
      number = float(value)
    except (TypeError, ValueError):
      return 0.8
    return min(1.0, max(0.0, number))

  def is_event_intent(self) -> bool:
    return self.intent in EVENT_INTENTS

  def is_ambiguous(self) -> bool:
    return self.intent == "needs_clarification" or not self.ready_to_process


# ---------------------------------------------------------------------------
#  Conflict engine
# ---------------------------------------------------------------------------

class CandidateEvent(CamelModel):
  title: Optional[str] = None
  date: str
  time: str
  duration_minutes: int = DEFAULT_DURATION_MINUTES

  def starts_at(self) -> datetime:
    return datetime.strptime(f"{self.date}T{self.time}", "%Y-%m-%dT%H:%M")

  def ends_at(self) -> datetime:
    return self.starts_at() + timedelta(minutes=self.duration_minutes)


class NormalizedEvent(CamelModel):
  """An existing commitment reduced to local wall-clock date/time/duration."""

  id: Optional[str] = None
  title: Optional[str] = None
  date: str
  time: str
  duration_minutes: int = DEFAULT_DURATION_MINUTES
  source: str = "local"

  def starts_at(self) -> datetime:
    return datetime.strptime(f"{self.date}T{self.time}", "%Y-%m-%dT%H:%M")

  def ends_at(self) -> datetime:
    return self.starts_at() + timedelta(minutes=self.duration_minutes)


class NormalizationReport(CamelModel):
  events: List[NormalizedEvent] = Field(default_factory=list)
  dropped: int = 0
  skipped_all_day: int = 0


class ConflictResult(CamelModel):
  has_conflict: bool = False
  conflicting_event: Optional[NormalizedEvent] = None
  conflicts: List[NormalizedEvent] = Field(default_factory=list)


class SchedulingPreferences(CamelModel):
  """Optional bonuses supplied by an external analysis step."""

  time_of_day: str = "any"  # morning, afternoon, evening, any
  day_of_week: str = "any"  # weekday, weekend, monday..sunday, any


class AlternativeSlot(CamelModel):
  date: str
  time: str
  end_time: str
  duration_minutes: int
  score: float
  same_day: bool
  reason: str = ""


# ---------------------------------------------------------------------------
#  Free slot finder
# ---------------------------------------------------------------------------

class BusyInterval(CamelModel):
  start: datetime
  end: datetime
  title: Optional[str] = None


class FreeSlot(CamelModel):
  start_time: datetime
  end_time: datetime
  duration_minutes: int
  date: str


class ItemAnalysis(CamelModel):
  estimated_duration: int = 120
  min_duration: Optional[int] = None
  best_time_of_day: str = "any"
  best_day_of_week: str = "any"


class SlotSuggestion(CamelModel):
  id: str
  start_time: datetime
  end_time: datetime
  duration_minutes: int
  available_minutes: int
  score: float
  confidence: float
  reasoning: str


# ---------------------------------------------------------------------------
#  Coordinator results
# ---------------------------------------------------------------------------

TurnAction = Literal["follow_up", "abort", "ready", "collecting", "passthrough"]


class TurnDecision(CamelModel):
  action: TurnAction
  follow_up_question: Optional[str] = None
  abort_message: Optional[str] = None
  follow_up_count: int = 0


class TurnOutcome(CamelModel):
  success: bool = True
  intent: str
  status: Optional[ConversationStatus] = None
  event_details: EventDetails = Field(default_factory=EventDetails)
  wishlist_item_id: Optional[str] = None
  wishlist_item_match: Optional[str] = None
  updates: Optional[Dict[str, Any]] = None
  follow_up_question: Optional[str] = None
  follow_up_count: int = 0
  missing_info: List[str] = Field(default_factory=list)
  confidence: float = 0.8
  ready_to_process: bool = True
  abort: bool = False
  abort_message: Optional[str] = None
  response: Optional[str] = None
  conversation_history: List[ConversationMessage] = Field(default_factory=list)
  conversation_id: Optional[str] = None
  history_length: int = 0


class ConflictCheckOutcome(CamelModel):
  success: bool = True
  conversation_id: Optional[str] = None
  status: Optional[ConversationStatus] = None
  event_details: EventDetails
  has_conflict: bool
  conflicting_event: Optional[NormalizedEvent] = None
  conflicts: List[NormalizedEvent] = Field(default_factory=list)
  alternatives: List[AlternativeSlot] = Field(default_factory=list)
  allow_override: bool = True
  dropped_events: int = 0
  skipped_all_day: int = 0
  message: str = ""


class CreateOutcome(CamelModel):
  success: bool = True
  event: Dict[str, Any]
  conversation_cleared: bool = False
  override: bool = False
  message: str = ""
