from __future__ import annotations

import logging
import re
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional, Protocol

from ..config import (ABORT_MESSAGE, ALTERNATIVE_SEARCH_DAYS,
                      DEFAULT_ALTERNATIVE_COUNT, DEFAULT_DURATION_MINUTES,
                      DEFAULT_FOLLOWUP_QUESTION, HISTORY_KEEP_MESSAGES,
                      MAX_FOLLOWUPS, SUMMARY_THRESHOLD,
                      UPSTREAM_TIMEOUT_SECONDS)
from ..errors import NotFoundError, ValidationError, VoicecalError
from ..utils import _log_debug, _now_local, call_with_timeout, normalize_text
from .conflict_manager import ConflictEngine
from .intent_agent import fallback_summary, should_summarize, split_for_summary
from .normalizer import normalize_calendar_date, normalize_clock_time
from .schemas import (CandidateEvent, ConflictCheckOutcome, ConversationMessage,
                      CreateOutcome, EventDetails, IntentContext, IntentResult,
                      SchedulingPreferences, TurnDecision, TurnOutcome,
                      _is_filled)
from .state import ConversationState, ConversationStore

logger = logging.getLogger(__name__)

_SLOT_FIELDS = ("title", "date", "time", "duration_minutes", "location",
                "description")

# First matching keyword wins.
_EVENT_TYPE_KEYWORDS = (
    ("Appointment", ("doctor", "dentist", "appointment", "checkup", "clinic")),
    ("Meeting", ("meeting", "call", "sync", "standup", "interview")),
    ("Travel", ("flight", "trip", "travel", "airport", "train")),
    ("Band Practice", ("band", "rehearsal", "practice")),
    ("Concert", ("concert", "show", "gig")),
)


class IntentCollaborator(Protocol):

  async def parse_intent(self, transcript: str,
                         context: IntentContext) -> IntentResult:
    ...

  async def summarize_conversation(self, messages: List[ConversationMessage],
                                   existing_summary: Optional[str]) -> str:
    ...


class CalendarProvider(Protocol):

  async def fetch_events(self, start: datetime,
                         end: datetime) -> List[Dict[str, Any]]:
    ...

  async def create_event(self, event: Dict[str, Any]) -> Dict[str, Any]:
    ...

  async def delete_event(self, event_id: str) -> bool:
    ...


def merge_slots(existing: Optional[EventDetails],
                incoming: Optional[EventDetails]) -> EventDetails:
  """Field-by-field overwrite; empty incoming values never erase a slot."""
  merged = (existing or EventDetails()).model_copy(deep=True)
  if incoming is not None:
    for field in _SLOT_FIELDS:
      value = getattr(incoming, field)
      if _is_filled(value):
        setattr(merged, field, value)
  if merged.duration_minutes is None:
    merged.duration_minutes = DEFAULT_DURATION_MINUTES
  return merged


def determine_event_type(title: Optional[str]) -> str:
  lowered = (title or "").lower()
  for event_type, keywords in _EVENT_TYPE_KEYWORDS:
    if any(re.search(rf"\b{keyword}\b", lowered) for keyword in keywords):
      return event_type
  return "General"


def _ready_message(details: EventDetails) -> str:
  parts = [details.title or "your event"]
  if details.date:
    parts.append(f"on {details.date}")
  if details.time:
    parts.append(f"at {details.time}")
  return f"Got it: {' '.join(parts)}."


def _conflict_message(outcome: ConflictCheckOutcome) -> str:
  if not outcome.has_conflict:
    return "That time is free."
  first = outcome.conflicting_event
  label = (first.title if first and first.title else "another event")
  if outcome.alternatives:
    options = ", ".join(f"{alt.date} {alt.time}" for alt in outcome.alternatives)
    return (f"That overlaps with {label}. Open times: {options}. "
            "You can also keep the original time.")
  return f"That overlaps with {label}. You can still keep the original time."


class DialogueCoordinator:
  """
  Keeps one scheduling dialogue coherent across request/response turns.

  Every mutation happens on a copy of the stored conversation and is written
  back only after all collaborator calls have succeeded, so a failed or timed
  out call leaves the stored state exactly as it was.
  """

  def __init__(self,
               store: ConversationStore,
               intent_agent: IntentCollaborator,
               engine: Optional[ConflictEngine] = None,
               timeout_seconds: float = UPSTREAM_TIMEOUT_SECONDS,
               max_followups: int = MAX_FOLLOWUPS,
               summary_threshold: int = SUMMARY_THRESHOLD,
               history_keep: int = HISTORY_KEEP_MESSAGES):
    self.store = store
    self.intent_agent = intent_agent
    self.engine = engine or ConflictEngine()
    self.timeout_seconds = timeout_seconds
    self.max_followups = max_followups
    self.summary_threshold = summary_threshold
    self.history_keep = history_keep

  # ------------------------------------------------------------------
  #  Pure-ish steps
  # ------------------------------------------------------------------

  def merge_slots(self, existing: Optional[EventDetails],
                  incoming: Optional[EventDetails]) -> EventDetails:
    return merge_slots(existing, incoming)

  async def record_exchange(self, conversation: ConversationState,
                            transcript: str, ai_response: str) -> None:
    """Append the user/assistant pair, compacting history when it is due."""
    conversation.conversation_history.extend([
        ConversationMessage(role="user", content=transcript),
        ConversationMessage(role="assistant", content=ai_response),
    ])
    conversation.message_count += 2

    if not should_summarize(conversation.message_count,
                            conversation.last_summarized_at,
                            self.summary_threshold):
      return

    to_summarize, to_keep = split_for_summary(conversation.conversation_history,
                                              self.history_keep)
    if to_summarize:
      try:
        conversation.summary = await call_with_timeout(
            self.intent_agent.summarize_conversation(to_summarize,
                                                     conversation.summary),
            self.timeout_seconds, "conversation summary")
      except VoicecalError as exc:
        logger.warning("summary for %s failed, keeping local fallback: %s",
                       conversation.id, exc)
        conversation.summary = fallback_summary(to_summarize,
                                                conversation.summary)
      _log_debug(f"[DIALOGUE] compacted {len(to_summarize)} messages "
                 f"for {conversation.id}, keeping {len(to_keep)}")
    conversation.conversation_history = to_keep
    conversation.last_summarized_at = conversation.message_count

  def decide_next_action(self,
                         conversation: Optional[ConversationState],
                         result: IntentResult,
                         follow_up_count: int) -> TurnDecision:
    """
    Follow-up loop step for one event-managing turn.

    Ambiguous below the limit: count one more follow-up and keep collecting.
    Ambiguous at the limit, or an agent-requested abort: abort (the caller
    deletes the conversation). Otherwise ``ready`` when at least one of
    title/date/time is known.
    """
    if not result.is_event_intent():
      return TurnDecision(action="passthrough", follow_up_count=follow_up_count)

    if result.abort:
      return TurnDecision(action="abort",
                          abort_message=result.abort_message or ABORT_MESSAGE,
                          follow_up_count=follow_up_count)

    details = conversation.event_details if conversation else result.event_details
    ambiguous = result.is_ambiguous() or not details.has_core_slot()

    if ambiguous:
      if follow_up_count >= self.max_followups:
        return TurnDecision(action="abort",
                            abort_message=ABORT_MESSAGE,
                            follow_up_count=follow_up_count)
      if conversation is not None:
        conversation.follow_up_count = follow_up_count + 1
        conversation.status = "collecting"
      return TurnDecision(
          action="follow_up",
          follow_up_question=result.follow_up_question or DEFAULT_FOLLOWUP_QUESTION,
          follow_up_count=follow_up_count + 1)

    if conversation is not None:
      conversation.status = "ready"
    return TurnDecision(action="ready", follow_up_count=follow_up_count)

  # ------------------------------------------------------------------
  #  Turn handling
  # ------------------------------------------------------------------

  async def process_turn(self,
                         conversation_id: Optional[str],
                         transcript: str,
                         context: Optional[Dict[str, Any]] = None) -> TurnOutcome:
    text = normalize_text(transcript)
    if not text:
      raise ValidationError("Transcript is required")
    context = context or {}

    conversation = self.store.get(conversation_id)
    if conversation_id and conversation is None:
      _log_debug(f"[DIALOGUE] unknown conversation {conversation_id}, starting fresh")

    if conversation is not None:
      history = list(conversation.conversation_history)
      follow_up_count = conversation.follow_up_count
    else:
      history = [
          ConversationMessage.model_validate(msg)
          for msg in context.get("conversationHistory") or []
          if isinstance(msg, dict) and msg.get("role") in ("user", "assistant")
      ]
      follow_up_count = int(context.get("followUpCount") or 0)

    intent_context = IntentContext(
        current_date=context.get("currentDate") or _now_local().strftime("%Y-%m-%d"),
        conversation_history=history,
        follow_up_count=follow_up_count,
        summary=conversation.summary if conversation else None,
    )
    result = await call_with_timeout(
        self.intent_agent.parse_intent(text, intent_context),
        self.timeout_seconds, "intent parsing")
    _log_debug(f"[DIALOGUE] intent={result.intent} ready={result.ready_to_process}")

    if result.is_event_intent():
      if conversation is None and result.event_details.has_meaningful_details():
        conversation = ConversationState()
      if conversation is not None:
        conversation.event_details = self.merge_slots(conversation.event_details,
                                                      result.event_details)
        conversation.last_intent = result.intent

    decision = self.decide_next_action(conversation, result, follow_up_count)
    if decision.action == "passthrough":
      # The caller executes it; in-progress slots stay as they are.
      details = result.event_details
    elif conversation is not None:
      details = conversation.event_details
    else:
      details = self.merge_slots(None, result.event_details)

    if decision.action == "abort":
      if conversation is not None and self.store.delete(conversation.id):
        logger.info("conversation %s aborted after %d follow-ups",
                    conversation.id, follow_up_count)
      return TurnOutcome(
          intent=result.intent,
          event_details=details,
          follow_up_count=follow_up_count,
          missing_info=result.missing_info,
          confidence=0.0,
          ready_to_process=False,
          abort=True,
          abort_message=decision.abort_message,
          response=decision.abort_message,
          conversation_id=None,
      )

    if decision.action == "follow_up":
      ai_response = decision.follow_up_question
    elif decision.action == "ready":
      ai_response = result.response or _ready_message(details)
    else:
      ai_response = result.response or "Understood"

    if conversation is not None:
      await self.record_exchange(conversation, text, ai_response)
      self.store.save(conversation)

    history_out = conversation.conversation_history if conversation else []
    return TurnOutcome(
        intent=result.intent,
        status=conversation.status if conversation else None,
        event_details=details,
        wishlist_item_id=result.wishlist_item_id,
        wishlist_item_match=result.wishlist_item_match,
        updates=result.updates,
        follow_up_question=(decision.follow_up_question
                            if decision.action == "follow_up" else None),
        follow_up_count=decision.follow_up_count,
        missing_info=result.missing_info,
        confidence=result.confidence,
        ready_to_process=decision.action == "ready" or (
            decision.action == "passthrough" and result.ready_to_process),
        response=ai_response,
        conversation_history=history_out,
        conversation_id=conversation.id if conversation else None,
        history_length=len(history_out) // 2,
    )

  # ------------------------------------------------------------------
  #  Conflict resolution
  # ------------------------------------------------------------------

  def _load(self, conversation_id: Optional[str]) -> Optional[ConversationState]:
    if not conversation_id:
      return None
    conversation = self.store.get(conversation_id)
    if conversation is None:
      raise NotFoundError(f"Conversation not found: {conversation_id}")
    return conversation

  def build_candidate(self, details: EventDetails) -> CandidateEvent:
    if not _is_filled(details.date) or not _is_filled(details.time):
      raise ValidationError("Event date and time are required")
    date_value = normalize_calendar_date(details.date, self.engine.tz)
    if date_value is None:
      raise ValidationError(f"Invalid event date: {details.date}")
    time_value = normalize_clock_time(details.time)
    if time_value is None:
      raise ValidationError(f"Invalid event time: {details.time}")
    return CandidateEvent(
        title=details.title,
        date=date_value,
        time=time_value,
        duration_minutes=details.duration_minutes or DEFAULT_DURATION_MINUTES,
    )

  async def check_conflict(
      self,
      conversation_id: Optional[str],
      event_details: Optional[EventDetails],
      provider: CalendarProvider,
      preferences: Optional[SchedulingPreferences] = None,
      count: int = DEFAULT_ALTERNATIVE_COUNT,
      now: Optional[datetime] = None,
  ) -> ConflictCheckOutcome:
    conversation = self._load(conversation_id)
    if conversation is not None:
      conversation.status = "checking_conflict"
      _log_debug(f"[DIALOGUE] {conversation.id} status=checking_conflict")
    base = conversation.event_details if conversation else None
    details = self.merge_slots(base, event_details)
    candidate = self.build_candidate(details)

    window_start = datetime.strptime(candidate.date, "%Y-%m-%d")
    window_end = window_start + timedelta(days=ALTERNATIVE_SEARCH_DAYS + 1)
    raw_events = await call_with_timeout(
        provider.fetch_events(window_start, window_end),
        self.timeout_seconds, "calendar fetch")

    report = self.engine.normalize_events(raw_events)
    if report.dropped:
      logger.warning("conflict check ignored %d unparseable events", report.dropped)
    result = self.engine.check_conflict(candidate, report.events)
    alternatives = []
    if result.has_conflict:
      alternatives = self.engine.get_alternative_suggestions(
          candidate, report.events, count=count, preferences=preferences,
          now=now)

    details.date = candidate.date
    details.time = candidate.time
    outcome = ConflictCheckOutcome(
        conversation_id=conversation.id if conversation else None,
        event_details=details,
        has_conflict=result.has_conflict,
        conflicting_event=result.conflicting_event,
        conflicts=result.conflicts,
        alternatives=alternatives,
        allow_override=True,
        dropped_events=report.dropped,
        skipped_all_day=report.skipped_all_day,
    )
    outcome.message = _conflict_message(outcome)

    if conversation is not None:
      conversation.event_details = details
      conversation.status = ("awaiting_user_choice" if result.has_conflict
                             else "ready")
      conversation.alternatives = alternatives
      conversation.last_conflict = result if result.has_conflict else None
      self.store.save(conversation)
      outcome.status = conversation.status
    return outcome

  def select_alternative(self, conversation_id: str,
                         index: int) -> ConversationState:
    conversation = self._load(conversation_id)
    if conversation is None:
      raise ValidationError("conversationId is required")
    if index < 0 or index >= len(conversation.alternatives):
      raise NotFoundError(f"No alternative at index {index}")
    chosen = conversation.alternatives[index]
    conversation.event_details = self.merge_slots(
        conversation.event_details,
        EventDetails(date=chosen.date, time=chosen.time,
                     duration_minutes=chosen.duration_minutes))
    conversation.status = "ready"
    conversation.alternatives = []
    conversation.last_conflict = None
    return self.store.save(conversation)

  def cancel_pending_choice(self, conversation_id: str) -> ConversationState:
    """Drop the pending conflict resolution. No calendar side effects."""
    conversation = self._load(conversation_id)
    if conversation is None:
      raise ValidationError("conversationId is required")
    conversation.alternatives = []
    conversation.last_conflict = None
    conversation.event_details.date = None
    conversation.event_details.time = None
    conversation.status = "collecting"
    return self.store.save(conversation)

  # ------------------------------------------------------------------
  #  Commit
  # ------------------------------------------------------------------

  async def create_event(self,
                         conversation_id: Optional[str],
                         event_details: Optional[EventDetails],
                         provider: CalendarProvider,
                         override: bool = False) -> CreateOutcome:
    conversation = self._load(conversation_id)
    base = conversation.event_details if conversation else None
    details = self.merge_slots(base, event_details)
    if not _is_filled(details.title):
      raise ValidationError("Event title is required")
    candidate = self.build_candidate(details)
    if conversation is not None:
      conversation.status = "creating"
      _log_debug(f"[DIALOGUE] {conversation.id} status=creating")

    payload = {
        "title": details.title.strip(),
        "date": candidate.date,
        "time": candidate.time,
        "durationMinutes": candidate.duration_minutes,
        "location": details.location,
        "description": details.description,
        "type": determine_event_type(details.title),
        "isAIGenerated": True,
    }
    created = await call_with_timeout(provider.create_event(payload),
                                      self.timeout_seconds, "calendar create")

    cleared = False
    if conversation is not None:
      cleared = self.store.delete(conversation.id)
    message = f"Added {payload['title']} on {candidate.date} at {candidate.time}."
    if override:
      message += " It overlaps another event."
    return CreateOutcome(event=created,
                         conversation_cleared=cleared,
                         override=override,
                         message=message)

  # ------------------------------------------------------------------
  #  Session lifecycle
  # ------------------------------------------------------------------

  def end_session(self, conversation_id: Optional[str]) -> bool:
    return self.store.delete(conversation_id)

  def conversation_view(self, conversation_id: str) -> Dict[str, Any]:
    conversation = self._load(conversation_id)
    if conversation is None:
      raise ValidationError("conversationId is required")
    return conversation.debug_view()
