from __future__ import annotations

import logging
from typing import List, Optional, Sequence, Tuple

from ..config import (AGENT_INTENT_MODEL, AGENT_SUMMARY_MODEL,
                      DEFAULT_FOLLOWUP_QUESTION, HISTORY_KEEP_MESSAGES,
                      INTENT_MAX_COMPLETION_TOKENS, MAX_FOLLOWUPS,
                      SUMMARY_MAX_COMPLETION_TOKENS, SUMMARY_THRESHOLD)
from ..errors import UpstreamFailure
from .llm_provider import run_structured_completion, run_text_completion
from .schemas import ConversationMessage, IntentContext, IntentResult

logger = logging.getLogger(__name__)

INTENT_SYSTEM_PROMPT = """You are a calendar assistant that understands voice commands.
Decide whether the user wants to add or delete a calendar event, or add,
update or delete a wishlist item, and extract every detail that was said.

Conversation context:
- Previous exchanges are provided in conversation_history, older context in summary.
- Use them to resolve references like "that meeting", "change it", "make it 3pm".
- History is cleared after an event is created, so each creation starts fresh.

Rules:
1. intent is one of: add_event, delete_event, add_to_wishlist, update_wishlist,
   delete_wishlist, needs_clarification.
2. "I want to...", "someday I'd like to..." without a date means add_to_wishlist.
3. For needs_clarification ask exactly ONE short follow-up question about the
   most important missing piece (date first, then time, then title).
4. Be confident; only use needs_clarification when the request is truly unclear.
"""

INTENT_DEVELOPER_PROMPT = """Return one JSON object with this structure:
{
  "intent": "add_event|delete_event|add_to_wishlist|update_wishlist|delete_wishlist|needs_clarification",
  "eventDetails": {
    "title": string or null,
    "date": "YYYY-MM-DD" or null,
    "time": "HH:MM" (24-hour) or null,
    "duration": minutes as integer or null,
    "location": string or null,
    "description": string or null
  },
  "wishlistItemId": string or null,
  "wishlistItemMatch": string or null,
  "updates": {"title": ..., "location": ..., "description": ...} or null,
  "followUpQuestion": string or null,
  "missingInfo": ["date", "time", "title"],
  "confidence": 0.0-1.0,
  "readyToProcess": true or false
}

Guidelines:
- Convert relative dates (tomorrow, next Friday) to YYYY-MM-DD using current_date.
- Convert spoken times (2pm, half past ten) to 24-hour HH:MM.
- Leave unknown fields null; never invent a date or time.
"""

SUMMARY_SYSTEM_PROMPT = """You are a conversation summarizer. Write a concise 2-3 sentence summary that:
- focuses on event details, decisions and user preferences
- keeps specific dates, times, locations, names and activities
- is written in past tense
- builds on the existing context when one is given
"""


def should_summarize(message_count: int,
                     watermark: int,
                     threshold: int = SUMMARY_THRESHOLD) -> bool:
  """True once ``message_count`` reaches the threshold and has grown by at
  least the threshold since the last compaction."""
  return message_count >= threshold and (message_count - watermark) >= threshold


def split_for_summary(
    history: Sequence[ConversationMessage],
    keep: int = HISTORY_KEEP_MESSAGES,
) -> Tuple[List[ConversationMessage], List[ConversationMessage]]:
  """Split into (messages to summarize, most recent messages to keep)."""
  items = list(history)
  if len(items) <= keep:
    return [], items
  split_point = len(items) - keep
  return items[:split_point], items[split_point:]


def fallback_summary(messages: Sequence[ConversationMessage],
                     existing_summary: Optional[str]) -> str:
  if existing_summary:
    return existing_summary
  topics = [msg.content[:50] for msg in messages if msg.role == "user"]
  return f"Discussed: {'; '.join(topics)}"


def _transcript_lines(messages: Sequence[ConversationMessage]) -> str:
  return "\n".join(
      f"{'User' if msg.role == 'user' else 'Assistant'}: {msg.content}"
      for msg in messages)


class IntentAgent:
  """LLM collaborator: intent parsing and history compaction."""

  def __init__(self,
               intent_model: str = AGENT_INTENT_MODEL,
               summary_model: str = AGENT_SUMMARY_MODEL,
               max_followups: int = MAX_FOLLOWUPS):
    self.intent_model = intent_model
    self.summary_model = summary_model
    self.max_followups = max_followups

  async def parse_intent(self, transcript: str,
                         context: IntentContext) -> IntentResult:
    payload = {
        "transcript": transcript,
        "current_date": context.current_date,
        "follow_up_count": f"{context.follow_up_count}/{self.max_followups}",
        "summary": context.summary,
        "conversation_history": [
            msg.model_dump() for msg in context.conversation_history
        ],
    }
    parsed, raw_output, _meta = await run_structured_completion(
        model=self.intent_model,
        system_prompt=INTENT_SYSTEM_PROMPT,
        developer_prompt=INTENT_DEVELOPER_PROMPT,
        user_payload=payload,
        response_model=IntentResult,
        max_completion_tokens=INTENT_MAX_COMPLETION_TOKENS,
    )
    if parsed is None:
      raise UpstreamFailure(
          f"Invalid JSON response from intent model (raw_len={len(raw_output)})")

    if parsed.intent == "needs_clarification":
      parsed.ready_to_process = False
      if not parsed.follow_up_question:
        parsed.follow_up_question = DEFAULT_FOLLOWUP_QUESTION
    else:
      parsed.follow_up_question = None
      parsed.missing_info = []
    return parsed

  async def summarize_conversation(
      self,
      messages: Sequence[ConversationMessage],
      existing_summary: Optional[str] = None,
  ) -> str:
    """
    Fold ``messages`` into a short rolling summary.

    A failing or empty model answer falls back to the existing summary, or to
    a "Discussed: ..." line built from the user turns.
    """
    if not messages:
      return existing_summary or ""

    conversation_text = _transcript_lines(messages)
    if existing_summary:
      payload = {
          "existing_context": existing_summary,
          "new_conversation": conversation_text,
          "task": "Provide an updated summary combining the existing context "
                  "with the new conversation.",
      }
    else:
      payload = {
          "conversation": conversation_text,
          "task": "Provide a concise summary.",
      }

    try:
      text, _meta = await run_text_completion(
          model=self.summary_model,
          system_prompt=SUMMARY_SYSTEM_PROMPT,
          developer_prompt=None,
          user_payload=payload,
          max_completion_tokens=SUMMARY_MAX_COMPLETION_TOKENS,
      )
    except Exception as exc:
      logger.warning("summarizer failed, using fallback: %s", exc)
      return fallback_summary(messages, existing_summary)

    summary = (text or "").strip()
    if not summary:
      return fallback_summary(messages, existing_summary)
    return summary
