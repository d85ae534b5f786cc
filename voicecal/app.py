from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from .config import ENABLE_GCAL, cors_origins
from .errors import VoicecalError
from .llm import llm_available
from .routes import router
from .utils import _log_debug

logger = logging.getLogger(__name__)


async def _voicecal_error_handler(request: Request, exc: VoicecalError):
  if exc.status_code >= 500:
    logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
  else:
    _log_debug(f"[HTTP] {request.method} {request.url.path} -> "
               f"{exc.status_code} {exc.message}")
  return JSONResponse(status_code=exc.status_code,
                      content={
                          "success": False,
                          "error": exc.message,
                          "errorType": type(exc).__name__,
                      })


def create_app() -> FastAPI:
  application = FastAPI(title="voicecal")
  if cors_origins:
    application.add_middleware(
        CORSMiddleware,
        allow_origins=cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
  application.add_exception_handler(VoicecalError, _voicecal_error_handler)
  application.include_router(router)

  @application.get("/health")
  def health():
    return {
        "status": "ok",
        "llm": llm_available(),
        "googleCalendar": ENABLE_GCAL,
    }

  return application


app = create_app()
