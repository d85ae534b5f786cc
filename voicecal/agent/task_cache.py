"""
Tracks remaining preparation tasks for analyzed events so that a re-analysis
never brings back items that were already put on the calendar. Only the
unscheduled tasks and the set of completed task keys are kept, in memory.
"""

from __future__ import annotations

import copy
import logging
import time
from threading import Lock
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional, Set

from pydantic import BaseModel, ConfigDict, Field

from ..errors import StateConflict

logger = logging.getLogger(__name__)


class TaskKey(NamedTuple):
  """Stable identifier of a preparation task across regenerated lists."""

  kind: str  # id, task, title, fallback
  value: str

  def __str__(self) -> str:
    return f"{self.kind}:{self.value}"


class PreparationTask(BaseModel):
  """Task as produced by the task-generation step. Unknown fields are kept."""
  model_config = ConfigDict(extra="allow", populate_by_name=True)

  id: Optional[Any] = None
  task: Optional[str] = None
  title: Optional[str] = None
  category: Optional[str] = None
  description: Optional[str] = None
  estimated_time: Optional[Any] = Field(default=None, alias="estimatedTime")
  priority: Optional[str] = None
  suggested_date: Optional[str] = Field(default=None, alias="suggestedDate")


def _clean(value: Any) -> str:
  if value is None:
    return ""
  return str(value).strip().lower()


def _as_mapping(task: Any) -> Optional[Mapping[str, Any]]:
  if isinstance(task, BaseModel):
    return task.model_dump(by_alias=True, exclude_none=True)
  if isinstance(task, Mapping):
    return task
  return None


def derive_key(task: Any) -> Optional[TaskKey]:
  """
  The one identity rule for preparation tasks.

  Explicit id first, then the task text, then the title, then the
  ``category|description|estimatedTime`` composite. Every part is trimmed and
  lowercased, so the key does not depend on casing, padding or dict order.
  """
  data = _as_mapping(task)
  if not data:
    return None

  task_id = _clean(data.get("id"))
  if task_id:
    return TaskKey("id", task_id)

  text = _clean(data.get("task"))
  if text:
    return TaskKey("task", text)

  title = _clean(data.get("title"))
  if title:
    return TaskKey("title", title)

  parts = [
      _clean(data.get("category")),
      _clean(data.get("description")),
      _clean(data.get("estimatedTime", data.get("estimated_time"))),
  ]
  return TaskKey("fallback", "|".join(parts))


def _clone_tasks(tasks: Iterable[Any]) -> List[Dict[str, Any]]:
  cloned: List[Dict[str, Any]] = []
  for task in tasks or []:
    data = _as_mapping(task)
    if data is None:
      logger.warning("taskCache: skipping non-mapping task %r", task)
      continue
    cloned.append(copy.deepcopy(dict(data)))
  return cloned


class TaskCacheEntry(BaseModel):
  remaining_tasks: List[Dict[str, Any]] = Field(default_factory=list)
  completed_keys: Set[TaskKey] = Field(default_factory=set)
  created_at: float = Field(default_factory=time.time)
  updated_at: float = Field(default_factory=time.time)

  def is_completed(self, task: Mapping[str, Any]) -> bool:
    key = derive_key(task)
    return key is not None and key in self.completed_keys

  def refilter(self) -> None:
    self.remaining_tasks = [task for task in self.remaining_tasks
                            if not self.is_completed(task)]


class TaskReconciliationCache:
  """Per source event: which preparation tasks are still unscheduled."""

  def __init__(self):
    self._entries: Dict[str, TaskCacheEntry] = {}
    self._lock = Lock()

  def set_remaining_tasks(self, event_id: Any, fresh_tasks: Iterable[Any]) -> List[Dict[str, Any]]:
    """Store a fresh task list, minus anything already scheduled."""
    if not event_id:
      return []
    key = str(event_id)
    cloned = _clone_tasks(fresh_tasks)
    with self._lock:
      entry = self._entries.get(key)
      if entry is None:
        entry = TaskCacheEntry()
        self._entries[key] = entry
      entry.remaining_tasks = cloned
      entry.refilter()
      entry.updated_at = time.time()
      return copy.deepcopy(entry.remaining_tasks)

  def mark_completed(self, event_id: Any, scheduled_tasks: Iterable[Any],
                     strict: bool = False) -> Optional[List[Dict[str, Any]]]:
    """
    Record tasks as scheduled and drop them from the remaining list.

    Marking the same task twice changes nothing further. Returns the remaining
    tasks, or None when the event has no cache entry (nothing is recorded).
    With ``strict`` a missing entry raises StateConflict instead.
    """
    if not event_id:
      return None
    key = str(event_id)
    tasks = list(scheduled_tasks or [])
    with self._lock:
      entry = self._entries.get(key)
      if entry is None:
        if strict:
          raise StateConflict(f"No task cache entry for event {key}")
        logger.warning("taskCache: mark_completed for unknown event %s ignored", key)
        return None
      for task in tasks:
        identifier = derive_key(task)
        if identifier is not None:
          entry.completed_keys.add(identifier)
      entry.refilter()
      entry.updated_at = time.time()
      return copy.deepcopy(entry.remaining_tasks)

  def get_remaining(self, event_id: Any) -> Optional[List[Dict[str, Any]]]:
    if not event_id:
      return None
    with self._lock:
      entry = self._entries.get(str(event_id))
      if entry is None:
        return None
      return copy.deepcopy(entry.remaining_tasks)

  def get_remaining_count(self, event_id: Any) -> int:
    with self._lock:
      entry = self._entries.get(str(event_id))
      return len(entry.remaining_tasks) if entry else 0

  def completed_keys(self, event_id: Any) -> Set[TaskKey]:
    with self._lock:
      entry = self._entries.get(str(event_id))
      return set(entry.completed_keys) if entry else set()

  def has_entry(self, event_id: Any) -> bool:
    with self._lock:
      return str(event_id) in self._entries

  def cached_view(self, event_id: Any, linked_count: int) -> Optional[List[Dict[str, Any]]]:
    """
    Remaining tasks for an already-analyzed event, or None when the caller
    has to analyze again. An entry with nothing remaining and nothing linked
    means the linked tasks were deleted upstream, so it is cleared.
    """
    remaining = self.get_remaining(event_id)
    if remaining is None:
      return None
    if not remaining and linked_count <= 0:
      logger.info("taskCache: event %s has no remaining or linked tasks, clearing", event_id)
      self.clear(event_id)
      return None
    return remaining

  def clear(self, event_id: Any) -> None:
    if not event_id:
      return
    with self._lock:
      self._entries.pop(str(event_id), None)

  def clear_all(self) -> None:
    with self._lock:
      self._entries.clear()
