from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends

from .agent.conflict_manager import ConflictEngine
from .agent.intent_agent import IntentAgent
from .agent.orchestrator import CalendarProvider, DialogueCoordinator
from .agent.state import ConversationStore
from .agent.task_cache import TaskReconciliationCache, derive_key
from .agent.time_block_planner import (FreeSlotFinder, _naive_local,
                                       busy_intervals_from_events)
from .config import API_BASE, LOCAL_TZ, UPSTREAM_TIMEOUT_SECONDS
from .errors import ValidationError
from .gcal import GoogleCalendarProvider, is_gcal_configured
from .models import (CachedAnalysisRequest, ConflictCheckRequest,
                     ConversationRequest, CreateEventRequest, EventIdRequest,
                     FreeSlotsRequest, GoogleAuthMixin, ProcessRequest,
                     ScheduleTasksRequest, SelectAlternativeRequest,
                     SlotSuggestRequest, TaskAnalysisRequest)
from .state import LocalCalendarProvider
from .utils import _log_debug, _now_local, call_with_timeout

router = APIRouter(prefix=API_BASE)
logger = logging.getLogger(__name__)

# 프로세스 단위 저장소. 테스트는 dependency_overrides 로 교체한다.
conversation_store = ConversationStore()
task_cache = TaskReconciliationCache()
local_calendar = LocalCalendarProvider()
_coordinator = DialogueCoordinator(conversation_store, IntentAgent(),
                                   ConflictEngine())
_slot_finder = FreeSlotFinder()


def get_coordinator() -> DialogueCoordinator:
  return _coordinator


def get_task_cache() -> TaskReconciliationCache:
  return task_cache


def get_slot_finder() -> FreeSlotFinder:
  return _slot_finder


def get_local_calendar() -> LocalCalendarProvider:
  return local_calendar


def _provider_for(payload: GoogleAuthMixin,
                  local: LocalCalendarProvider) -> CalendarProvider:
  if payload.tokens and is_gcal_configured():
    return GoogleCalendarProvider(payload.tokens)
  return local


def _dump(model) -> Dict[str, Any]:
  return model.model_dump(by_alias=True, mode="json")


# -------------------------
# Voice dialogue
# -------------------------
@router.post("/voice/process")
async def process_voice(payload: ProcessRequest,
                        coordinator: DialogueCoordinator = Depends(get_coordinator)):
  conversation_id = payload.context.get("conversationId")
  outcome = await coordinator.process_turn(conversation_id, payload.transcript,
                                           payload.context)
  return _dump(outcome)


@router.post("/voice/check-conflict")
async def check_conflict(payload: ConflictCheckRequest,
                         coordinator: DialogueCoordinator = Depends(get_coordinator),
                         local: LocalCalendarProvider = Depends(get_local_calendar)):
  outcome = await coordinator.check_conflict(
      payload.conversation_id,
      payload.event_details,
      _provider_for(payload, local),
      preferences=payload.preferences,
      count=payload.count,
      now=_now_local(),
  )
  return _dump(outcome)


@router.post("/voice/select-alternative")
async def select_alternative(payload: SelectAlternativeRequest,
                             coordinator: DialogueCoordinator = Depends(get_coordinator)):
  conversation = coordinator.select_alternative(payload.conversation_id,
                                                payload.index)
  return {
      "success": True,
      "conversationId": conversation.id,
      "status": conversation.status,
      "eventDetails": _dump(conversation.event_details),
  }


@router.post("/voice/cancel-conflict")
async def cancel_conflict(payload: ConversationRequest,
                          coordinator: DialogueCoordinator = Depends(get_coordinator)):
  conversation = coordinator.cancel_pending_choice(payload.conversation_id)
  return {
      "success": True,
      "conversationId": conversation.id,
      "status": conversation.status,
      "eventDetails": _dump(conversation.event_details),
  }


@router.post("/voice/create-event")
async def create_event(payload: CreateEventRequest,
                       coordinator: DialogueCoordinator = Depends(get_coordinator),
                       local: LocalCalendarProvider = Depends(get_local_calendar)):
  outcome = await coordinator.create_event(payload.conversation_id,
                                           payload.event_details,
                                           _provider_for(payload, local),
                                           override=payload.override)
  return _dump(outcome)


@router.post("/voice/conversation/clear")
@router.post("/voice/end-session")
async def end_session(payload: ConversationRequest,
                      coordinator: DialogueCoordinator = Depends(get_coordinator)):
  cleared = coordinator.end_session(payload.conversation_id)
  return {"success": True, "cleared": cleared}


@router.get("/voice/conversation/{conversation_id}")
async def conversation_debug(conversation_id: str,
                             coordinator: DialogueCoordinator = Depends(get_coordinator)):
  return {"success": True, "conversation": coordinator.conversation_view(conversation_id)}


# -------------------------
# Free slots
# -------------------------
async def _busy_for(payload: FreeSlotsRequest, local: LocalCalendarProvider,
                    window_start: datetime, window_end: datetime):
  if payload.busy is not None:
    return payload.busy
  provider = _provider_for(payload, local)
  raw_events = await call_with_timeout(provider.fetch_events(window_start, window_end),
                                       UPSTREAM_TIMEOUT_SECONDS, "calendar fetch")
  return busy_intervals_from_events(raw_events)


def _window(payload: FreeSlotsRequest):
  # Mixed naive and offset inputs are compared in local wall-clock time.
  start = _naive_local(payload.start or _now_local(), LOCAL_TZ)
  end = (_naive_local(payload.end, LOCAL_TZ) if payload.end is not None
         else start + timedelta(days=payload.days_to_check))
  if end <= start:
    raise ValidationError("end must be after start")
  return start, end


@router.post("/free-slots")
async def free_slots(payload: FreeSlotsRequest,
                     finder: FreeSlotFinder = Depends(get_slot_finder),
                     local: LocalCalendarProvider = Depends(get_local_calendar)):
  start, end = _window(payload)
  busy = await _busy_for(payload, local, start, end)
  slots = finder.find_free_slots(busy, start, end,
                                 min_duration=payload.min_duration,
                                 days_to_check=payload.days_to_check)
  return {"success": True, "freeSlots": [_dump(slot) for slot in slots],
          "count": len(slots)}


@router.post("/free-slots/suggest")
async def suggest_slots(payload: SlotSuggestRequest,
                        finder: FreeSlotFinder = Depends(get_slot_finder),
                        local: LocalCalendarProvider = Depends(get_local_calendar)):
  start, end = _window(payload)
  busy = await _busy_for(payload, local, start, end)
  minimum = payload.analysis.min_duration or min(payload.analysis.estimated_duration, 60)
  slots = finder.find_free_slots(busy, start, end, min_duration=minimum,
                                 days_to_check=payload.days_to_check)
  suggestions = finder.suggest_slots_for_item(payload.item_id, payload.analysis,
                                              slots, now=start, count=payload.count)
  return {"success": True, "itemId": payload.item_id,
          "suggestions": [_dump(s) for s in suggestions]}


# -------------------------
# Preparation tasks
# -------------------------
@router.post("/tasks/analysis")
async def store_task_analysis(payload: TaskAnalysisRequest,
                              cache: TaskReconciliationCache = Depends(get_task_cache)):
  remaining = cache.set_remaining_tasks(payload.event_id, payload.tasks)
  return {
      "success": True,
      "eventId": payload.event_id,
      "remainingTasks": remaining,
      "count": len(remaining),
      "suppressed": len(payload.tasks) - len(remaining),
  }


@router.post("/tasks/cached-analysis")
async def cached_task_analysis(payload: CachedAnalysisRequest,
                               cache: TaskReconciliationCache = Depends(get_task_cache)):
  remaining = cache.cached_view(payload.event_id, payload.linked_count)
  return {
      "success": True,
      "eventId": payload.event_id,
      "cached": remaining is not None,
      "remainingTasks": remaining or [],
      "needsAnalysis": remaining is None,
  }


@router.post("/tasks/remaining")
async def remaining_tasks(payload: EventIdRequest,
                          cache: TaskReconciliationCache = Depends(get_task_cache)):
  remaining = cache.get_remaining(payload.event_id)
  return {
      "success": True,
      "eventId": payload.event_id,
      "remainingTasks": remaining or [],
      "count": cache.get_remaining_count(payload.event_id),
      "hasEntry": remaining is not None,
  }


def _task_title(task: Dict[str, Any]) -> str:
  text = (task.get("task") or "").strip()
  if text:
    return text
  description = (task.get("description") or "").strip()
  if description:
    return description.split(".")[0].split(",")[0].strip() or "Preparation Task"
  return (task.get("title") or "").strip() or "Preparation Task"


def _task_event_payload(task: Dict[str, Any], original_event_id: Optional[str],
                        original_title: Optional[str]) -> Dict[str, Any]:
  suggested = task.get("suggestedDate")
  if not suggested:
    raise ValidationError(f"Task '{_task_title(task)}' has no suggestedDate")
  try:
    start = datetime.fromisoformat(str(suggested).replace("Z", "+00:00"))
  except ValueError as exc:
    raise ValidationError(f"Invalid suggestedDate: {suggested}") from exc
  if start.tzinfo is not None:
    start = start.astimezone(_now_local().tzinfo).replace(tzinfo=None)
  details = [f'Preparation task for "{original_title or "the event"}".']
  for label, key in (("Estimated time", "estimatedTime"), ("Priority", "priority"),
                     ("Category", "category")):
    if task.get(key):
      details.append(f"{label}: {task[key]}")
  if task.get("description"):
    details.insert(1, str(task["description"]))
  key = derive_key(task)
  return {
      "title": f"📋 {_task_title(task)}",
      "date": start.strftime("%Y-%m-%d"),
      "time": start.strftime("%H:%M"),
      "durationMinutes": 60,
      "description": "\n".join(details),
      "type": "ai-preparation",
      "isAIGenerated": True,
      "originalEventId": original_event_id,
      "taskId": str(key) if key else None,
  }


@router.post("/tasks/schedule")
async def schedule_tasks(payload: ScheduleTasksRequest,
                         cache: TaskReconciliationCache = Depends(get_task_cache),
                         local: LocalCalendarProvider = Depends(get_local_calendar)):
  if not payload.selected_tasks:
    raise ValidationError("selectedTasks is required")
  # Validate every task before anything is written.
  bodies = [
      _task_event_payload(task, payload.original_event_id,
                          payload.original_event_title)
      for task in payload.selected_tasks
  ]
  provider = _provider_for(payload, local)
  created: List[Dict[str, Any]] = []
  remaining: Optional[List[Dict[str, Any]]] = None
  try:
    for body in bodies:
      created.append(await call_with_timeout(provider.create_event(body),
                                             UPSTREAM_TIMEOUT_SECONDS,
                                             "calendar create"))
  finally:
    # Tasks already on the calendar are recorded even when a later insert fails.
    if payload.original_event_id and created:
      remaining = cache.mark_completed(payload.original_event_id,
                                       payload.selected_tasks[:len(created)])
      _log_debug(f"[TASK CACHE] {payload.original_event_id} scheduled="
                 f"{len(created)}/{len(bodies)} remaining="
                 f"{len(remaining) if remaining is not None else 'n/a'}")
  return {
      "success": True,
      "addedEvents": created,
      "count": len(created),
      "remainingTasks": remaining or [],
  }


@router.post("/tasks/clear")
async def clear_tasks(payload: EventIdRequest,
                      cache: TaskReconciliationCache = Depends(get_task_cache)):
  cache.clear(payload.event_id)
  return {"success": True, "eventId": payload.event_id}
