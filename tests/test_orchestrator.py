import threading
from pathlib import Path
from typing import Any, Callable, Optional

from api import build_service
from batch import PermanentConfigurationError, TransientNetworkError
from config import AppConfig
from orchestrator import CancellationToken, ClientOrchestrator, LocalTransport, SweepTransport


class ScriptedTransport(SweepTransport):
    """Records calls and answers them from per-action handlers."""

    def __init__(self) -> None:
        self.calls: list[str] = []
        self.handlers: dict[str, Callable[[Optional[dict]], dict]] = {}

    def call(self, kind: str, action: str, payload: Optional[dict[str, Any]] = None) -> dict[str, Any]:
        self.calls.append(action)
        handler = self.handlers.get(action)
        if handler is not None:
            return handler(payload)
        return {"success": True, "state": {"status": "running"}}


def batch_response(complete: bool = False) -> dict[str, Any]:
    return {
        "success": True,
        "complete": complete,
        "state": {"status": "completed" if complete else "running"},
        "batch_errors": [],
    }


def failing(error: Exception, times: Optional[int] = None, then: Optional[dict] = None):
    remaining = {"count": times}

    def handler(payload):
        if remaining["count"] is None or remaining["count"] > 0:
            if remaining["count"] is not None:
                remaining["count"] -= 1
            raise error
        return then

    return handler


def test_stop_during_batch_discards_the_response() -> None:
    transport = ScriptedTransport()
    batches: list[dict] = []
    logs: list[str] = []
    orchestrator = ClientOrchestrator(
        transport,
        "cloudsync",
        interval_seconds=0,
        on_batch=batches.append,
        on_log=lambda level, message: logs.append(message),
    )

    def in_flight(payload):
        orchestrator.stop()
        return batch_response()

    transport.handlers["process_batch"] = in_flight

    orchestrator.start()

    assert orchestrator.wait(timeout=5) is True
    assert orchestrator.running is False
    assert batches == []
    assert orchestrator.last_response is None
    assert transport.calls == ["start", "process_batch", "stop"]
    assert sum("Stop acknowledged" in message for message in logs) == 1


def test_pause_during_batch_acknowledges_the_pause() -> None:
    transport = ScriptedTransport()
    batches: list[dict] = []
    logs: list[str] = []
    orchestrator = ClientOrchestrator(
        transport,
        "optimization",
        interval_seconds=0,
        on_batch=batches.append,
        on_log=lambda level, message: logs.append(message),
    )

    def in_flight(payload):
        orchestrator.pause()
        return batch_response()

    transport.handlers["process_batch"] = in_flight

    orchestrator.start()

    assert orchestrator.wait(timeout=5) is True
    assert orchestrator.paused is True
    assert batches == []
    assert transport.calls == ["start", "process_batch", "pause"]
    assert "Paused optimization sweep" in logs
    assert "Pause acknowledged; discarded in-flight optimization batch response" in logs
    assert not any("Stop acknowledged" in message for message in logs)


def test_failed_pause_keeps_the_loop_running() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = lambda payload: batch_response()
    transport.handlers["pause"] = lambda payload: {
        "success": False,
        "message": "sweep is idle",
        "error_type": "state",
    }
    orchestrator = ClientOrchestrator(transport, "migration", interval_seconds=0)
    orchestrator.start(background=False)

    response = orchestrator.pause(background=False)

    assert response["success"] is False
    assert orchestrator.running is True
    assert orchestrator.paused is False
    assert transport.calls == ["start", "process_batch", "pause", "process_batch"]


def test_successful_pause_cancels_the_timer_first() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = lambda payload: batch_response()
    orchestrator = ClientOrchestrator(transport, "migration", interval_seconds=0)
    orchestrator.start(background=False)

    assert orchestrator.pause(background=False)["success"] is True
    assert orchestrator.running is False
    assert orchestrator.paused is True
    assert orchestrator.tick() is True
    assert transport.calls.count("process_batch") == 1


def test_transient_errors_are_retried_with_backoff() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = failing(
        TransientNetworkError("gateway timeout", status_code=504), times=2, then=batch_response(complete=True)
    )
    completed: list[dict] = []
    orchestrator = ClientOrchestrator(
        transport,
        "migration",
        interval_seconds=0,
        max_retries=2,
        retry_delay_seconds=0,
        on_complete=completed.append,
    )

    orchestrator.start(background=False)

    assert transport.calls.count("process_batch") == 3
    assert len(completed) == 1
    assert orchestrator.running is False


def test_retry_exhaustion_halts_only_the_local_loop() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = failing(TransientNetworkError("connection reset"))
    errors: list[Exception] = []
    orchestrator = ClientOrchestrator(
        transport,
        "migration",
        max_retries=2,
        retry_delay_seconds=0,
        on_error=errors.append,
    )

    orchestrator.start(background=False)

    assert transport.calls == ["start", "process_batch", "process_batch", "process_batch"]
    assert isinstance(errors[0], TransientNetworkError)
    assert orchestrator.running is False


def test_configuration_errors_are_not_retried() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = failing(PermanentConfigurationError("bad key"))
    errors: list[Exception] = []
    orchestrator = ClientOrchestrator(transport, "migration", max_retries=3, on_error=errors.append)

    orchestrator.start(background=False)

    assert transport.calls.count("process_batch") == 1
    assert isinstance(errors[0], PermanentConfigurationError)


def test_failed_batch_response_halts_the_loop() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = lambda payload: {
        "success": False,
        "message": "Remote listing failed",
        "error_type": "scan",
    }
    errors: list[Exception] = []
    orchestrator = ClientOrchestrator(transport, "cloudsync", on_error=errors.append)

    orchestrator.start(background=False)

    assert orchestrator.running is False
    assert "Remote listing failed" in str(errors[0])


def test_resume_follows_the_server_state() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = lambda payload: batch_response()
    transport.handlers["status"] = lambda payload: {"success": True, "state": {"status": "paused"}}
    orchestrator = ClientOrchestrator(transport, "migration")

    assert orchestrator.resume(background=False)["success"] is True
    assert transport.calls == ["status", "resume", "process_batch"]
    assert orchestrator.running is True

    transport.handlers["status"] = lambda payload: {"success": True, "state": {"status": "completed"}}
    response = orchestrator.resume(background=False)
    assert response["success"] is False
    assert response["error_type"] == "state"


def test_attach_only_drives_running_sweeps() -> None:
    transport = ScriptedTransport()
    transport.handlers["process_batch"] = lambda payload: batch_response()
    transport.handlers["status"] = lambda payload: {"success": True, "state": {"status": "paused"}}
    orchestrator = ClientOrchestrator(transport, "migration")

    assert orchestrator.attach(background=False) is False
    assert orchestrator.paused is True

    transport.handlers["status"] = lambda payload: {"success": True, "state": {"status": "running"}}
    assert orchestrator.attach(background=False) is True
    assert transport.calls.count("process_batch") == 1


def test_cancellation_token_wakes_waiters() -> None:
    token = CancellationToken()
    timer = threading.Timer(0.05, token.cancel)
    timer.start()

    assert token.wait(5) is True
    assert token.cancelled is True
    timer.join()


def test_cancellation_token_keeps_the_first_reason() -> None:
    token = CancellationToken()
    assert token.reason is None

    token.cancel("pause")
    token.cancel("stop")

    assert token.cancelled is True
    assert token.reason == "pause"


def test_local_loop_drives_a_sweep_to_completion(tmp_path: Path, db, storage, uploads) -> None:
    for name in ("a.pdf", "b.pdf", "c.pdf", "d.pdf", "e.pdf"):
        (uploads / name).write_bytes(b"data")
        db.add_attachment(name, 4)
    config = AppConfig.from_dict({"paths": {"uploads": "uploads"}}, root_dir=tmp_path)
    transport = LocalTransport(build_service(config, db, storage))
    batches: list[dict] = []
    completed: list[dict] = []
    orchestrator = ClientOrchestrator(
        transport,
        "migration",
        interval_seconds=0,
        on_batch=batches.append,
        on_complete=completed.append,
    )

    orchestrator.start({"batch_size": 2})

    assert orchestrator.wait(timeout=10) is True
    assert len(batches) == 3
    assert completed[0]["state"]["processed"] == 5
    assert completed[0]["stats"]["pending"] == 0
    assert len(storage.objects) == 5
