"""
Per-request upload deadline.

Each HTTP request gets a fixed time budget. When it runs out the handler is
cancelled (which closes its body reader and abandons the storage write) and
the caller gets a short plain-text timeout response instead of a hung or
reset connection.
"""
import asyncio
import logging

from starlette.responses import PlainTextResponse
from starlette.types import ASGIApp, Message, Receive, Scope, Send

from upload_relay.utils.metrics import uploads_total

logger = logging.getLogger(__name__)


class UploadTimeoutMiddleware:
    """
    Pure ASGI middleware that bounds every HTTP request by ``timeout`` seconds.

    If the wrapped app already started its response when the deadline hits,
    the response is cut off as-is; otherwise a ``408 Upload timeout`` is sent.
    """

    def __init__(self, app: ASGIApp, timeout: float, message: str = "Upload timeout"):
        self.app = app
        self.timeout = timeout
        self.message = message

    async def __call__(self, scope: Scope, receive: Receive, send: Send) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_started = False

        async def send_wrapper(message: Message) -> None:
            nonlocal response_started
            if message["type"] == "http.response.start":
                response_started = True
            await send(message)

        try:
            await asyncio.wait_for(self.app(scope, receive, send_wrapper), timeout=self.timeout)
        except asyncio.TimeoutError:
            uploads_total.labels(outcome="timeout").inc()
            logger.warning(
                f"Request {scope['method']} {scope['path']} exceeded {self.timeout}s",
                extra={"event": "upload_timeout", "timeout_s": self.timeout}
            )
            if response_started:
                return
            response = PlainTextResponse(self.message, status_code=408)
            await response(scope, receive, send)
