from __future__ import annotations

import asyncio
import re
from datetime import datetime, timedelta
from typing import Awaitable, TypeVar

from .config import LLM_DEBUG, LOCAL_TZ
from .errors import UpstreamFailure, UpstreamTimeout, VoicecalError

T = TypeVar("T")

_BASE36_DIGITS = "0123456789abcdefghijklmnopqrstuvwxyz"


def _log_debug(message: str) -> None:
    if LLM_DEBUG:
        print(message, flush=True)


def _now_local() -> datetime:
    return datetime.now(LOCAL_TZ)


def _now_iso_minute() -> str:
    return _now_local().strftime("%Y-%m-%dT%H:%M")


def normalize_text(text: str) -> str:
    t = (text or "").strip()
    t = re.sub(r"\s+", " ", t)
    return t


def _to_base36(value: int) -> str:
    if value <= 0:
        return "0"
    digits = []
    while value:
        value, rem = divmod(value, 36)
        digits.append(_BASE36_DIGITS[rem])
    return "".join(reversed(digits))


def ceil_to_hour(value: datetime) -> datetime:
    """Round up to the next hour boundary. Values already on the hour are kept."""
    floored = value.replace(minute=0, second=0, microsecond=0)
    if floored == value:
        return value
    return floored + timedelta(hours=1)


async def call_with_timeout(awaitable: Awaitable[T],
                            seconds: float,
                            label: str) -> T:
    """Await a collaborator call, mapping timeouts and foreign errors to the
    typed upstream errors. Our own errors pass through untouched."""
    try:
        return await asyncio.wait_for(awaitable, timeout=seconds)
    except asyncio.TimeoutError as exc:
        raise UpstreamTimeout(label, seconds) from exc
    except VoicecalError:
        raise
    except Exception as exc:
        raise UpstreamFailure(f"{label} failed: {exc}") from exc
