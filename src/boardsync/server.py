"""HTTP webhook receiver.

Deliveries arrive on ``http.server`` worker threads and are handed to a single
asyncio loop running on a background thread, so the board cache is only ever
touched from that loop.
"""

from __future__ import annotations

import asyncio
import threading
from collections.abc import Coroutine
from concurrent.futures import Future
from contextlib import ExitStack
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, TypeVar

from .concurrency import AsyncBoardClient
from .logging import get_logger
from .models import ActionResult
from .runtime import BoardSyncRuntime
from .webhooks import SIGNATURE_HEADER, WebhookError, parse_delivery, verify_signature

T = TypeVar("T")

MAX_BODY_BYTES = 25 * 1024 * 1024


class EventLoopThread:
    """Owns an asyncio loop running forever on a daemon thread."""

    def __init__(self) -> None:
        self.loop = asyncio.new_event_loop()
        self._thread = threading.Thread(
            target=self._run, name="boardsync-loop", daemon=True
        )

    def _run(self) -> None:
        asyncio.set_event_loop(self.loop)
        self.loop.run_forever()

    def start(self) -> EventLoopThread:
        self._thread.start()
        return self

    def submit(self, coro: Coroutine[Any, Any, T]) -> Future[T]:
        return asyncio.run_coroutine_threadsafe(coro, self.loop)

    def stop(self) -> None:
        self.loop.call_soon_threadsafe(self.loop.stop)
        self._thread.join(timeout=5)


class WebhookServer(ThreadingHTTPServer):
    daemon_threads = True

    def __init__(
        self,
        address: tuple[str, int],
        runtime: BoardSyncRuntime,
        loop_thread: EventLoopThread,
    ) -> None:
        super().__init__(address, WebhookRequestHandler)
        self.runtime = runtime
        self.loop_thread = loop_thread
        self.logger = get_logger()

    def dispatch(self, event_coro: Coroutine[Any, Any, list[ActionResult]], delivery: str | None) -> None:
        future = self.loop_thread.submit(event_coro)

        def _done(fut: Future[list[ActionResult]]) -> None:
            exc = fut.exception()
            if exc is not None:
                self.runtime.diagnostics.report_exception(
                    exc, "Webhook delivery failed", delivery_id=delivery
                )
                return
            results = fut.result()
            failed = [r for r in results if not r.ok]
            self.logger.info(
                f"Delivery handled with {len(results)} result(s), {len(failed)} failed",
                delivery_id=delivery,
            )

        future.add_done_callback(_done)


class WebhookRequestHandler(BaseHTTPRequestHandler):
    server: WebhookServer
    server_version = "boardsync"

    def log_message(self, format: str, *args: Any) -> None:  # noqa: A002
        get_logger().debug("http " + format % args)

    def _reply(self, status: HTTPStatus, message: str) -> None:
        body = message.encode("utf-8")
        self.send_response(status)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def do_GET(self) -> None:  # noqa: N802
        if self.path.rstrip("/") == "/healthz":
            self._reply(HTTPStatus.OK, "ok")
        else:
            self._reply(HTTPStatus.NOT_FOUND, "not found")

    def do_POST(self) -> None:  # noqa: N802
        try:
            length = int(self.headers.get("Content-Length") or 0)
        except ValueError:
            length = -1
        if length < 0:
            self._reply(HTTPStatus.BAD_REQUEST, "bad Content-Length")
            return
        if length > MAX_BODY_BYTES:
            self._reply(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "payload too large")
            return
        body = self.rfile.read(length)
        secret = self.server.runtime.config.webhook_secret
        if not verify_signature(secret, body, self.headers.get(SIGNATURE_HEADER)):
            self.server.logger.warning("Rejected delivery with bad signature")
            self._reply(HTTPStatus.UNAUTHORIZED, "bad signature")
            return
        try:
            event = parse_delivery(self.headers, body)
        except WebhookError as exc:
            self._reply(HTTPStatus.BAD_REQUEST, str(exc))
            return
        self.server.logger.debug(
            "Received delivery", event=event.key, delivery_id=event.delivery_id
        )
        self.server.dispatch(self.server.runtime.engine.handle(event), event.delivery_id)
        self._reply(HTTPStatus.ACCEPTED, "accepted")


def serve(runtime: BoardSyncRuntime) -> None:
    """Run the receiver until interrupted."""
    logger = get_logger()
    with ExitStack() as stack:
        if isinstance(runtime.api, AsyncBoardClient):
            stack.enter_context(runtime.api)
        loop_thread = EventLoopThread().start()
        stack.callback(loop_thread.stop)
        server = WebhookServer(
            (runtime.config.server_host, runtime.config.server_port), runtime, loop_thread
        )
        stack.callback(server.server_close)
        logger.log_operation(
            "serve", host=runtime.config.server_host, port=runtime.config.server_port
        )
        try:
            server.serve_forever()
        except KeyboardInterrupt:
            logger.info("Shutting down")


__all__ = ["EventLoopThread", "WebhookRequestHandler", "WebhookServer", "serve"]
