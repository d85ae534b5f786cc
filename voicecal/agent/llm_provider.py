"""
OpenAI chat-completion helpers shared by the agent collaborators.

Two entry points: ``run_structured_completion`` (JSON mode, validated into a
pydantic model) and ``run_text_completion`` (free text). Both return the
same meta dict so callers can log which model answered.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, Iterator, List, Optional, Tuple, Type, TypeVar

from pydantic import BaseModel
from pydantic import ValidationError as SchemaError

from ..config import OPENAI_REASONING_EFFORT, OPENAI_VERBOSITY
from ..llm import get_async_client
from ..utils import _log_debug

T = TypeVar("T", bound=BaseModel)

logger = logging.getLogger(__name__)

_FENCE_OPEN_RE = re.compile(r"^```[\w-]*\s*")
_FENCE_CLOSE_RE = re.compile(r"\s*```$")


def message_text(content: Any) -> str:
  """Flatten a chat message ``content`` (plain string or list of parts)."""
  if isinstance(content, str):
    return content.strip()
  if not isinstance(content, list):
    return ""
  parts: List[str] = []
  for part in content:
    text = part.get("text") if isinstance(part, dict) else part
    if isinstance(text, str) and text.strip():
      parts.append(text.strip())
  return " ".join(parts)


def strip_code_fence(text: str) -> str:
  stripped = (text or "").strip()
  if not stripped.startswith("```"):
    return stripped
  return _FENCE_CLOSE_RE.sub("", _FENCE_OPEN_RE.sub("", stripped)).strip()


def _json_candidates(raw_output: str) -> Iterator[str]:
  # Models sometimes wrap the object in a fence or a sentence.
  unfenced = strip_code_fence(raw_output)
  seen = set()
  for candidate in (raw_output, unfenced, _outer_object(unfenced)):
    candidate = (candidate or "").strip()
    if candidate and candidate not in seen:
      seen.add(candidate)
      yield candidate


def _outer_object(text: str) -> str:
  left, right = text.find("{"), text.rfind("}")
  if left == -1 or right <= left:
    return ""
  return text[left:right + 1]


def parse_structured(response_model: Type[T], raw_output: str) -> Optional[T]:
  """First candidate that validates against ``response_model``, else None."""
  for candidate in _json_candidates(raw_output or ""):
    try:
      return response_model.model_validate_json(candidate)
    except SchemaError:
      continue
  return None


def build_messages(system_prompt: str,
                   developer_prompt: Optional[str],
                   user_payload: Dict[str, Any],
                   json_mode: bool) -> List[Dict[str, str]]:
  instruction = system_prompt.strip()
  if developer_prompt and developer_prompt.strip():
    instruction += "\n\n" + developer_prompt.strip()
  # OpenAI JSON mode rejects prompts that never mention JSON.
  if json_mode and "json" not in instruction.lower():
    instruction += "\n\nAnswer with a single JSON object."
  return [
      {"role": "system", "content": instruction},
      {"role": "user", "content": json.dumps(user_payload, ensure_ascii=False)},
  ]


async def _complete(*,
                    kind: str,
                    model: str,
                    messages: List[Dict[str, str]],
                    max_completion_tokens: int,
                    reasoning_effort: Optional[str],
                    verbosity: Optional[str],
                    json_mode: bool) -> Tuple[str, Dict[str, Any]]:
  effort = reasoning_effort or OPENAI_REASONING_EFFORT
  request: Dict[str, Any] = {
      "model": model,
      "messages": messages,
      "reasoning_effort": effort,
      "verbosity": verbosity or OPENAI_VERBOSITY,
      "max_completion_tokens": max_completion_tokens,
  }
  if json_mode:
    request["response_format"] = {"type": "json_object"}

  completion = await get_async_client().chat.completions.create(**request)
  text = message_text(completion.choices[0].message.content)
  _log_debug(f"[AGENT LLM RAW] kind={kind} model={model} reasoning_effort={effort}\n"
             f"{text or '(empty)'}\n[AGENT LLM RAW END]")
  return text, {"model": model, "reasoning_effort": effort, "llm_available": True}


async def run_structured_completion(
    *,
    model: str,
    system_prompt: str,
    developer_prompt: Optional[str],
    user_payload: Dict[str, Any],
    response_model: Type[T],
    max_completion_tokens: int,
    reasoning_effort: Optional[str] = None,
    verbosity: Optional[str] = None,
) -> Tuple[Optional[T], str, Dict[str, Any]]:
  """
  Ask the model for one JSON object and validate it against ``response_model``.

  Client errors propagate; a response that does not validate comes back as
  ``(None, raw_output, meta)`` so callers can decide what invalid means.
  """
  raw_output, meta = await _complete(
      kind="structured",
      model=model,
      messages=build_messages(system_prompt, developer_prompt, user_payload,
                              json_mode=True),
      max_completion_tokens=max_completion_tokens,
      reasoning_effort=reasoning_effort,
      verbosity=verbosity,
      json_mode=True,
  )
  parsed = parse_structured(response_model, raw_output)
  if parsed is None:
    logger.warning("Structured output did not match %s (raw_len=%d)",
                   response_model.__name__, len(raw_output))
  return parsed, raw_output, meta


async def run_text_completion(
    *,
    model: str,
    system_prompt: str,
    developer_prompt: Optional[str],
    user_payload: Dict[str, Any],
    max_completion_tokens: int,
    reasoning_effort: Optional[str] = None,
    verbosity: Optional[str] = None,
) -> Tuple[str, Dict[str, Any]]:
  return await _complete(
      kind="text",
      model=model,
      messages=build_messages(system_prompt, developer_prompt, user_payload,
                              json_mode=False),
      max_completion_tokens=max_completion_tokens,
      reasoning_effort=reasoning_effort,
      verbosity=verbosity,
      json_mode=False,
  )
