"""
Worker - Background execution context for imports.

The worker owns a dedicated thread with its own event loop, store handle
and HTTP client. Callers talk to it only through messages:

    inbound:  {"type": "start", "payload": {"url": ..., "options": {...}}}
              {"type": "cancel"}
    outbound: {"type": "start" | "progress", "progress": {...}}
              {"type": "batch", "sample": [{"loc": ..., "lastmod": ...}]}
              {"type": "complete", "total": n}
              {"type": "error", "message": "..."}

Usage:
    with ImportWorker() as worker:
        worker.post({"type": "start", "payload": {"url": url}})
        for msg in worker.messages_until({"complete", "error"}):
            print(msg)
"""

import asyncio
import logging
import queue
import threading
import time
from typing import Any, Callable, Dict, Iterator, Optional, Set

from .cancellation import CancellationToken
from .config import get_config, CacheConfig
from .fetcher import SitemapFetcher, SitemapSource
from .models import ImportEvent, ImportOptions
from .orchestrator import ImportOrchestrator
from .store import PageStore


logger = logging.getLogger(__name__)

Message = Dict[str, Any]


class ImportWorker:
    """
    Runs imports off the caller's thread.

    Outbound messages are delivered to on_message (called on the worker
    thread) and also queued on self.messages for polling.
    """

    def __init__(
        self,
        config: Optional[CacheConfig] = None,
        on_message: Optional[Callable[[Message], None]] = None,
        store_factory: Optional[Callable[[], PageStore]] = None,
        fetcher_factory: Optional[Callable[[], SitemapSource]] = None,
    ):
        self.config = config or get_config()
        self.on_message = on_message
        self.messages: "queue.Queue[Message]" = queue.Queue()

        self._store_factory = store_factory or (lambda: PageStore(self.config))
        self._fetcher_factory = fetcher_factory or (lambda: SitemapFetcher(self.config))

        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._ready = threading.Event()
        self._orchestrator: Optional[ImportOrchestrator] = None
        self._current: Optional[asyncio.Task] = None
        self._startup_error: Optional[Exception] = None

    def start(self):
        """Start the worker thread and wait for its loop to be ready."""
        if self._thread is not None:
            return
        self._thread = threading.Thread(
            target=self._run_loop, name="import-worker", daemon=True
        )
        self._thread.start()
        self._ready.wait()

        if self._startup_error is not None:
            error, self._startup_error = self._startup_error, None
            self._thread.join()
            self._thread = None
            self._ready.clear()
            raise error
        logger.info("Import worker started")

    def stop(self, timeout: float = 5.0):
        """Cancel any running import and stop the worker thread."""
        if self._thread is None or self._loop is None:
            return
        self._loop.call_soon_threadsafe(self._loop.stop)
        self._thread.join(timeout=timeout)
        self._thread = None
        self._loop = None
        logger.info("Import worker stopped")

    def post(self, message: Message):
        """Send an inbound message. Safe to call from any thread."""
        if self._loop is None:
            raise RuntimeError("Worker is not running; call start() first")
        self._loop.call_soon_threadsafe(self._dispatch, message)

    def messages_until(
        self,
        terminal: Set[str],
        timeout: float = 30.0,
    ) -> Iterator[Message]:
        """
        Yield queued outbound messages until one of the terminal types.

        Raises queue.Empty if nothing arrives within timeout.
        """
        deadline = time.monotonic() + timeout
        while True:
            remaining = max(deadline - time.monotonic(), 0.0)
            msg = self.messages.get(timeout=remaining)
            yield msg
            if msg.get("type") in terminal:
                return

    def _run_loop(self):
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self._loop = loop

        # Store and client are created here so they live on this thread.
        store = None
        try:
            store = self._store_factory()
            self._orchestrator = ImportOrchestrator(
                self.config, store=store, fetcher=self._fetcher_factory()
            )
        except Exception as e:
            logger.error(f"Import worker failed to start: {e}")
            self._startup_error = e
            if store is not None:
                store.close()
            self._loop = None
            loop.close()
            return
        finally:
            self._ready.set()

        try:
            loop.run_forever()
        finally:
            pending = asyncio.all_tasks(loop)
            for task in pending:
                task.cancel()
            if pending:
                loop.run_until_complete(asyncio.gather(*pending, return_exceptions=True))
            loop.run_until_complete(self._orchestrator.aclose())
            store.close()
            loop.close()

    def _dispatch(self, message: Message):
        kind = message.get("type")

        if kind == "start":
            payload = message.get("payload") or {}
            if self._current is not None and not self._current.done():
                logger.info("New import requested, cancelling the current one")
                self._orchestrator.cancel()
                self._current.cancel()
            # Installed now so a cancel queued right behind this start reaches it.
            token = self._orchestrator.new_run()
            self._current = self._loop.create_task(
                self._run(payload.get("url"), payload.get("options"), token)
            )
        elif kind == "cancel":
            self._orchestrator.cancel()
        else:
            logger.warning(f"Ignoring unknown worker message: {kind!r}")

    async def _run(
        self,
        url: Optional[str],
        options: Optional[Dict[str, Any]],
        token: CancellationToken,
    ):
        if token.cancelled:
            return
        if not url:
            self._send({"type": "error", "message": "Missing url"})
            return
        try:
            opts = ImportOptions.from_dict(options, self.config)
        except (TypeError, ValueError) as e:
            self._send({"type": "error", "message": f"Invalid options: {e}"})
            return

        await self._orchestrator.run(url, opts, emit=self._send_event, token=token)

    def _send_event(self, event: ImportEvent):
        self._send(event.to_message())

    def _send(self, message: Message):
        self.messages.put(message)
        if self.on_message is not None:
            try:
                self.on_message(message)
            except Exception as e:
                logger.error(f"Message handler error: {e}")

    def __enter__(self) -> "ImportWorker":
        self.start()
        return self

    def __exit__(self, *exc):
        self.stop()
