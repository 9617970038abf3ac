from __future__ import annotations

import errno
import logging
import os
import threading
import time
from pathlib import Path
from typing import IO
from uuid import uuid4

from structlog.contextvars import bind_contextvars, reset_contextvars

from backend.app.services.field_dispatcher import FieldDispatcher
from backend.app.telemetry import TelemetryClient

LOGGER = logging.getLogger("youtube_field.scheduler")

try:
    import fcntl
except ImportError:  # pragma: no cover - non-POSIX fallback
    fcntl = None


class SchedulerService:
    """Background thread that keeps the stored access token fresh.

    Runs `FieldDispatcher.check_and_refresh_token` once at start and then on
    every interval. With a `lock_path`, only the process holding the file lock
    runs the loop; other workers skip scheduling.
    """

    def __init__(
        self,
        dispatcher: FieldDispatcher,
        interval_seconds: int,
        *,
        telemetry: TelemetryClient | None = None,
        lock_path: Path | None = None,
    ) -> None:
        self._dispatcher = dispatcher
        self._interval_seconds = max(1, interval_seconds)
        self._telemetry = telemetry if telemetry is not None else TelemetryClient.disabled()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._lock_path = lock_path
        self._lock_file: IO[str] | None = None

    @property
    def running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.running:
            return
        if not self._try_acquire_process_lock():
            return

        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run_loop,
            name="youtube-field-token-check",
            daemon=True,
        )
        self._thread.start()
        LOGGER.info("scheduler started interval_seconds=%s", self._interval_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout=3)
            self._thread = None
        self._release_process_lock()

    def run_token_check(self) -> bool:
        tick_id = uuid4().hex
        tick_tokens = bind_contextvars(scheduler_tick_id=tick_id, scheduler_tick_type="token")
        started_at = time.perf_counter()
        try:
            response = self._dispatcher.check_and_refresh_token()
        except Exception as exc:
            # A failed tick must not kill the loop; the next tick retries.
            LOGGER.warning("scheduler token check crashed tick_id=%s", tick_id, exc_info=True)
            self._telemetry.emit(
                "scheduler.tick.error",
                tick_id=tick_id,
                duration_ms=int((time.perf_counter() - started_at) * 1000),
                error_type=type(exc).__name__,
            )
            return False
        finally:
            reset_contextvars(**tick_tokens)

        authorized = bool(response.ok and response.result.get("authorized"))
        if not response.ok and response.error is not None:
            LOGGER.warning(
                "scheduler token check failed tick_id=%s code=%s",
                tick_id,
                response.error.code,
            )
        self._telemetry.emit(
            "scheduler.tick.finish",
            tick_id=tick_id,
            duration_ms=int((time.perf_counter() - started_at) * 1000),
            outcome="ok" if response.ok else "error",
            authorized=authorized,
        )
        return authorized

    def _run_loop(self) -> None:
        while not self._stop_event.is_set():
            self.run_token_check()
            self._stop_event.wait(self._interval_seconds)

    def _try_acquire_process_lock(self) -> bool:
        if self._lock_path is None:
            return True
        if fcntl is None:
            LOGGER.warning("scheduler single-instance lock unavailable on this platform")
            return True

        lock_path = self._lock_path
        lock_path.parent.mkdir(parents=True, exist_ok=True)
        lock_file = lock_path.open("a+", encoding="utf-8")
        try:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
        except OSError as exc:
            lock_file.close()
            if exc.errno in (errno.EACCES, errno.EAGAIN):
                LOGGER.info("scheduler start skipped; lock held path=%s", lock_path)
                return False
            LOGGER.warning(
                "scheduler lock acquisition failed path=%s; starting anyway",
                lock_path,
                exc_info=True,
            )
            return True

        lock_file.seek(0)
        lock_file.truncate()
        lock_file.write(f"{os.getpid()}\n")
        lock_file.flush()
        self._lock_file = lock_file
        return True

    def _release_process_lock(self) -> None:
        lock_file = self._lock_file
        if lock_file is None:
            return
        self._lock_file = None
        try:
            if fcntl is not None:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)
        finally:
            lock_file.close()
