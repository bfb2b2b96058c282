"""
Client-side driving loop for a sweep.

The server keeps no timer of its own; this loop issues ``process_batch``
calls at a fixed interval and owns the interactive semantics: pause stops
the timer before the server confirms, and stop wins over any response that
was already in flight when it was requested.
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Optional

from batch.errors import PermanentConfigurationError, SweepError, TransientNetworkError

from .tokens import CancellationToken
from .transport import SweepTransport

BatchCallback = Callable[[dict[str, Any]], None]
ErrorCallback = Callable[[Exception], None]
LogCallback = Callable[[str, str], None]


class ClientOrchestrator:
    """Drive one sweep kind through a transport until it completes or is stopped."""

    def __init__(
        self,
        transport: SweepTransport,
        kind: str,
        interval_seconds: float = 2.0,
        max_retries: int = 2,
        retry_delay_seconds: float = 1.0,
        on_batch: Optional[BatchCallback] = None,
        on_complete: Optional[BatchCallback] = None,
        on_error: Optional[ErrorCallback] = None,
        on_log: Optional[LogCallback] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.transport = transport
        self.kind = kind
        self.interval_seconds = max(float(interval_seconds), 0.0)
        self.max_retries = max(int(max_retries), 0)
        self.retry_delay_seconds = max(float(retry_delay_seconds), 0.0)
        self.on_batch = on_batch
        self.on_complete = on_complete
        self.on_error = on_error
        self.on_log = on_log
        self.logger = logger or logging.getLogger("media_offload")
        self._running = False
        self._paused = False
        self._token: Optional[CancellationToken] = None
        self._thread: Optional[threading.Thread] = None
        self._call_lock = threading.Lock()
        self._state_lock = threading.Lock()
        self._discard_logged = False
        self.last_response: Optional[dict[str, Any]] = None

    @property
    def running(self) -> bool:
        return self._running

    @property
    def paused(self) -> bool:
        return self._paused

    # Control

    def start(self, options: Optional[dict[str, Any]] = None, background: bool = True) -> dict[str, Any]:
        """Start the sweep on the server, then batch immediately and on every interval."""
        response = self._control("start", options or {})
        if not response.get("success"):
            return response
        self._log("info", "Started %s sweep", self.kind)
        self._begin_loop(background)
        return response

    def pause(self, background: bool = True) -> dict[str, Any]:
        """Cancel the local timer first, then ask the server to pause."""
        was_running = self._running
        self._cancel_loop("pause")
        response = self._control("pause")
        if response.get("success"):
            self._paused = True
            self._log("info", "Paused %s sweep", self.kind)
            return response
        if was_running:
            self._log("warning", "Pause failed; continuing %s sweep", self.kind)
            self._begin_loop(background)
        return response

    def stop(self) -> dict[str, Any]:
        """Clear the local loop synchronously, then ask the server to stop."""
        with self._state_lock:
            self._running = False
            self._paused = False
            self._discard_logged = False
            if self._token is not None:
                self._token.cancel("stop")
        response = self._control("stop")
        self._log("info", "Stopped %s sweep", self.kind)
        return response

    def resume(self, background: bool = True) -> dict[str, Any]:
        """Re-read the server state and pick the loop back up from it."""
        status = self._control("status")
        if not status.get("success"):
            return status
        server_status = status.get("state", {}).get("status")
        if server_status == "running":
            self._paused = False
            self._log("info", "Re-attached to running %s sweep", self.kind)
            self._begin_loop(background)
            return status
        if server_status == "paused":
            response = self._control("resume")
            if response.get("success"):
                self._paused = False
                self._log("info", "Resumed %s sweep", self.kind)
                self._begin_loop(background)
            return response
        return {
            "success": False,
            "message": f"The {self.kind} sweep is {server_status}; start a new one instead.",
            "error_type": "state",
            "state": status.get("state"),
        }

    def attach(self, background: bool = True) -> bool:
        """Continue driving a sweep another client started; True when the loop was started."""
        status = self._control("status")
        server_status = status.get("state", {}).get("status") if status.get("success") else None
        if server_status == "running":
            self._log("info", "Attached to running %s sweep", self.kind)
            self._begin_loop(background)
            return True
        self._paused = server_status == "paused"
        return False

    def retry_failed(self) -> dict[str, Any]:
        return self._control("retry_failed")

    def status(self) -> dict[str, Any]:
        return self._control("status")

    def wait(self, timeout: Optional[float] = None) -> bool:
        """Block until the worker thread exits; True if it has."""
        thread = self._thread
        if thread is None:
            return True
        thread.join(timeout)
        return not thread.is_alive()

    # Loop

    def tick(self, token: Optional[CancellationToken] = None) -> bool:
        """Issue one batch call; True when the loop should end."""
        token = token or self._token
        if token is None or token.cancelled or not self._running:
            return True
        try:
            with self._call_lock:
                if token.cancelled:
                    return True
                response = self._call_with_retry("process_batch", token)
        except PermanentConfigurationError as exc:
            self._halt(exc, "Configuration error, not retrying: %s", exc)
            return True
        except TransientNetworkError as exc:
            self._halt(
                exc,
                "Batch request failed after %s retries: %s. The sweep is unchanged on the server; resume to continue.",
                self.max_retries,
                exc,
            )
            return True

        if response is None or token.cancelled or not self._running:
            self._acknowledge_discard(token)
            return True

        self.last_response = response
        if not response.get("success"):
            error = SweepError(str(response.get("message") or "Batch failed"))
            self._halt(error, "Batch failed (%s): %s", response.get("error_type"), error)
            return True

        for entry in response.get("batch_errors") or []:
            self._log("warning", "Item %s failed: %s", entry.get("item_id"), entry.get("error"))
        if self.on_batch is not None:
            self.on_batch(response)

        if response.get("complete"):
            with self._state_lock:
                self._running = False
                token.cancel("complete")
            self._log("info", "Completed %s sweep", self.kind)
            if self.on_complete is not None:
                self.on_complete(response)
            return True
        return False

    def _run(self, token: CancellationToken) -> None:
        while not self.tick(token):
            if token.wait(self.interval_seconds):
                break

    def _begin_loop(self, background: bool) -> None:
        with self._state_lock:
            if self._token is not None:
                self._token.cancel("restart")
            token = CancellationToken()
            self._token = token
            self._running = True
            self._paused = False
            self._discard_logged = False
        if background:
            self._thread = threading.Thread(target=self._run, args=(token,), name=f"{self.kind}-sweep", daemon=True)
            self._thread.start()
        else:
            self.tick(token)

    def _cancel_loop(self, reason: str) -> None:
        with self._state_lock:
            self._running = False
            self._discard_logged = False
            if self._token is not None:
                self._token.cancel(reason)

    def _halt(self, error: Exception, message: str, *args: Any) -> None:
        with self._state_lock:
            self._running = False
            if self._token is not None:
                self._token.cancel("halt")
        self._log("error", message, *args)
        if self.on_error is not None:
            self.on_error(error)

    def _acknowledge_discard(self, token: CancellationToken) -> None:
        if self._discard_logged:
            return
        self._discard_logged = True
        if token.reason == "pause":
            self._log("info", "Pause acknowledged; discarded in-flight %s batch response", self.kind)
        elif token.reason == "stop":
            self._log("info", "Stop acknowledged; discarded in-flight %s batch response", self.kind)
        else:
            self._log("debug", "Discarded stale %s batch response", self.kind)

    def _call_with_retry(self, action: str, token: CancellationToken) -> Optional[dict[str, Any]]:
        attempt = 0
        while True:
            try:
                return self.transport.call(self.kind, action)
            except TransientNetworkError as exc:
                if attempt >= self.max_retries:
                    raise
                delay = self.retry_delay_seconds * (2 ** attempt)
                attempt += 1
                self._log(
                    "warning",
                    "%s %s failed (attempt %s/%s), retrying in %.1fs: %s",
                    self.kind,
                    action,
                    attempt,
                    self.max_retries,
                    delay,
                    exc,
                )
                if token.wait(delay) or not self._running:
                    return None

    def _control(self, action: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        try:
            return self.transport.call(self.kind, action, payload)
        except SweepError as exc:
            self._log("error", "%s %s failed: %s", self.kind, action, exc)
            if self.on_error is not None:
                self.on_error(exc)
            return {"success": False, "message": str(exc), "error_type": exc.error_type}

    def _log(self, level: str, message: str, *args: Any) -> None:
        getattr(self.logger, level)(message, *args)
        if self.on_log is not None:
            self.on_log(level, message % args if args else message)
