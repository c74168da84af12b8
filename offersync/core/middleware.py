import logging
import time
import uuid

from starlette.datastructures import MutableHeaders
from starlette.types import ASGIApp, Message, Receive, Scope, Send

logger = logging.getLogger("offersync.core.middleware")

_REQUEST_ID_HEADER = "x-request-id"


def _incoming_request_id(scope: Scope) -> str | None:
  for key, value in scope.get("headers", []):
    if key.decode("latin-1").lower() == _REQUEST_ID_HEADER:
      candidate = value.decode("latin-1").strip()
      # Reject oversized ids so clients cannot stuff logs.
      if candidate and len(candidate) <= 128:
        return candidate
  return None


class RequestIdMiddleware:
  """Attach a request id to each HTTP request and log its duration."""

  def __init__(self, app: ASGIApp) -> None:
    self.app = app

  async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
    if scope["type"] != "http":
      await self.app(scope, receive, send)
      return

    request_id = _incoming_request_id(scope) or uuid.uuid4().hex
    scope.setdefault("state", {})["request_id"] = request_id
    started = time.perf_counter()
    status_code = 500

    async def send_wrapper(message: Message) -> None:
      nonlocal status_code
      if message["type"] == "http.response.start":
        status_code = message["status"]
        headers = MutableHeaders(scope=message)
        headers.append("X-Request-ID", request_id)
      await send(message)

    try:
      await self.app(scope, receive, send_wrapper)
    finally:
      elapsed_ms = (time.perf_counter() - started) * 1000
      logger.info("%s %s -> %s in %.1fms request_id=%s", scope.get("method"), scope.get("path"), status_code, elapsed_ms, request_id)
