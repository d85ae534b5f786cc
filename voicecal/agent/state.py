from __future__ import annotations

import secrets
import time
from threading import Lock
from typing import Dict, List, Optional

from pydantic import Field

from ..utils import _to_base36
from .schemas import (AlternativeSlot, CamelModel, ConflictResult,
                      ConversationMessage, ConversationStatus, EventDetails)


def generate_conversation_id() -> str:
  suffix = "".join(secrets.choice("0123456789abcdefghijklmnopqrstuvwxyz")
                   for _ in range(6))
  return f"conv_{_to_base36(int(time.time() * 1000))}_{suffix}"


class ConversationState(CamelModel):
  id: str = Field(default_factory=generate_conversation_id)
  created_at: float = Field(default_factory=time.time)
  updated_at: float = Field(default_factory=time.time)
  status: ConversationStatus = "collecting"
  event_details: EventDetails = Field(default_factory=EventDetails)
  follow_up_count: int = 0
  conversation_history: List[ConversationMessage] = Field(default_factory=list)
  summary: Optional[str] = None
  # Watermark: total messages recorded when history was last compacted.
  last_summarized_at: int = 0
  # Total messages ever recorded, including compacted ones.
  message_count: int = 0
  last_intent: Optional[str] = None
  alternatives: List[AlternativeSlot] = Field(default_factory=list)
  last_conflict: Optional[ConflictResult] = None

  def debug_view(self) -> Dict[str, object]:
    return {
        "id": self.id,
        "status": self.status,
        "exchangeCount": len(self.conversation_history) // 2,
        "messageCount": self.message_count,
        "hasEventDetails": self.event_details.has_meaningful_details(),
        "eventTitle": self.event_details.title,
        "followUpCount": self.follow_up_count,
        "hasSummary": bool(self.summary),
        "createdAt": self.created_at,
        "updatedAt": self.updated_at,
    }


class ConversationStore:
  """Process-lifetime conversation map. Reads and writes are copies."""

  def __init__(self):
    self._conversations: Dict[str, ConversationState] = {}
    self._lock = Lock()

  def get(self, conversation_id: Optional[str]) -> Optional[ConversationState]:
    if not conversation_id:
      return None
    with self._lock:
      stored = self._conversations.get(conversation_id)
      return stored.model_copy(deep=True) if stored is not None else None

  def save(self, conversation: ConversationState) -> ConversationState:
    conversation.updated_at = time.time()
    with self._lock:
      self._conversations[conversation.id] = conversation.model_copy(deep=True)
    return conversation

  def delete(self, conversation_id: Optional[str]) -> bool:
    if not conversation_id:
      return False
    with self._lock:
      return self._conversations.pop(conversation_id, None) is not None

  def __contains__(self, conversation_id: object) -> bool:
    with self._lock:
      return conversation_id in self._conversations

  def __len__(self) -> int:
    with self._lock:
      return len(self._conversations)
