"""
JSON-over-HTTP front end for the sweep service.
"""

from __future__ import annotations

import hmac
import json
import logging
import threading
from datetime import datetime
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any, Optional
from urllib.parse import parse_qs, urlparse

from .service import SweepService

API_KEY_HEADER = "X-API-Key"
MAX_BODY_BYTES = 1024 * 1024


class SweepApiServer:
    """Serve sweep control endpoints over HTTP."""

    def __init__(
        self,
        service: SweepService,
        host: str = "127.0.0.1",
        port: int = 8765,
        token: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.service = service
        self.host = host
        self.port = port
        self.token = token or None
        self.logger = logger or logging.getLogger("media_offload")
        self._server: Optional[ThreadingHTTPServer] = None
        self._thread: Optional[threading.Thread] = None

    @property
    def address(self) -> tuple[str, int]:
        if self._server is None:
            return self.host, self.port
        host, port = self._server.server_address[:2]
        return str(host), int(port)

    def start(self) -> None:
        """Start the server in a background thread."""
        if self._server is not None:
            return
        handler = self._build_handler()
        self._server = ThreadingHTTPServer((self.host, self.port), handler)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        host, port = self.address
        self.logger.info("Sweep API listening at http://%s:%s", host, port)
        if self.token is None:
            self.logger.warning("API token not configured; requests are not authenticated")

    def serve_forever(self) -> None:
        """Run in the calling thread until interrupted."""
        handler = self._build_handler()
        self._server = ThreadingHTTPServer((self.host, self.port), handler)
        self.logger.info("Sweep API listening at http://%s:%s", *self.address)
        try:
            self._server.serve_forever()
        finally:
            self._server.server_close()
            self._server = None

    def stop(self) -> None:
        """Stop the server."""
        if self._server is None:
            return
        self._server.shutdown()
        self._server.server_close()
        self._server = None
        if self._thread is not None:
            self._thread.join(timeout=5)
            self._thread = None

    def _build_handler(self):
        service = self.service
        token = self.token
        logger = self.logger

        class Handler(BaseHTTPRequestHandler):
            def do_GET(self) -> None:
                if not self._authorized():
                    return
                parsed = urlparse(self.path)
                parts = _route_parts(parsed.path)
                if parts == ["status"]:
                    self._send_json(_all_status(service))
                    return
                if parts == ["cloudsync", "discrepancies"]:
                    query = parse_qs(parsed.query)
                    try:
                        limit = int(query.get("limit", ["100"])[0])
                    except ValueError:
                        self._send_json(_bad_request("limit must be an integer"), HTTPStatus.BAD_REQUEST)
                        return
                    self._send_result(service.discrepancies(limit=limit))
                    return
                if len(parts) == 2 and parts[1] == "status":
                    self._send_result(service.handle(parts[0], "status"))
                    return
                self._send_json(_not_found(parsed.path), HTTPStatus.NOT_FOUND)

            def do_POST(self) -> None:
                if not self._authorized():
                    return
                parsed = urlparse(self.path)
                parts = _route_parts(parsed.path)
                body = self._read_json()
                if body is None:
                    return
                if len(parts) != 2:
                    self._send_json(_not_found(parsed.path), HTTPStatus.NOT_FOUND)
                    return
                kind, action = parts
                if kind == "cloudsync" and action == "analyze":
                    self._send_result(service.analyze(deep=bool(body.get("deep", False))))
                    return
                if kind == "cloudsync" and action == "fix-integrity":
                    self._send_result(service.fix_integrity())
                    return
                if kind == "cloudsync" and action == "clear-metadata":
                    self._send_result(service.clear_metadata())
                    return
                if kind == "reconciliation" and action == "single":
                    try:
                        attachment_id = int(body["attachment_id"])
                    except (KeyError, TypeError, ValueError):
                        self._send_json(_bad_request("attachment_id is required"), HTTPStatus.BAD_REQUEST)
                        return
                    self._send_result(service.reconcile_single(attachment_id))
                    return
                self._send_result(service.handle(kind, action, body))

            def _authorized(self) -> bool:
                if token is None:
                    return True
                supplied = self.headers.get(API_KEY_HEADER, "")
                if supplied and hmac.compare_digest(supplied, token):
                    return True
                logger.warning("Rejected unauthenticated request to %s from %s", self.path, self.client_address[0])
                self._send_json(
                    {"success": False, "message": "Invalid or missing API key", "error_type": "auth"},
                    HTTPStatus.UNAUTHORIZED,
                )
                return False

            def _read_json(self) -> Optional[dict]:
                try:
                    length = int(self.headers.get("Content-Length") or 0)
                except ValueError:
                    length = -1
                if length < 0:
                    self._send_json(_bad_request("Invalid Content-Length"), HTTPStatus.BAD_REQUEST)
                    return None
                if length > MAX_BODY_BYTES:
                    self._send_json(_bad_request("Request body too large"), HTTPStatus.REQUEST_ENTITY_TOO_LARGE)
                    return None
                if length == 0:
                    return {}
                raw = self.rfile.read(length)
                try:
                    payload = json.loads(raw.decode("utf-8"))
                except (UnicodeDecodeError, json.JSONDecodeError):
                    self._send_json(_bad_request("Body must be JSON"), HTTPStatus.BAD_REQUEST)
                    return None
                if not isinstance(payload, dict):
                    self._send_json(_bad_request("Body must be a JSON object"), HTTPStatus.BAD_REQUEST)
                    return None
                return payload

            def _send_result(self, payload: dict) -> None:
                error_type = payload.get("error_type")
                if error_type == "not_found":
                    status = HTTPStatus.NOT_FOUND
                elif error_type == "internal":
                    status = HTTPStatus.INTERNAL_SERVER_ERROR
                else:
                    status = HTTPStatus.OK
                self._send_json(payload, status)

            def _send_json(self, payload: dict, status: HTTPStatus = HTTPStatus.OK) -> None:
                encoded = json.dumps(payload).encode("utf-8")
                self.send_response(status)
                self.send_header("Content-Type", "application/json; charset=utf-8")
                self.send_header("Content-Length", str(len(encoded)))
                self.end_headers()
                self.wfile.write(encoded)

            def log_message(self, format: str, *args) -> None:
                logger.debug("API: " + format, *args)

        return Handler


def _route_parts(path: str) -> list[str]:
    parts = [part for part in path.split("/") if part]
    if not parts or parts[0] != "api":
        return []
    return parts[1:]


def _all_status(service: SweepService) -> dict[str, Any]:
    return {
        "success": True,
        "timestamp": datetime.utcnow().isoformat(),
        "sweeps": {kind: service.get_status(kind) for kind in service.controllers},
    }


def _not_found(path: str) -> dict[str, Any]:
    return {"success": False, "message": f"No route for {path}", "error_type": "not_found"}


def _bad_request(message: str) -> dict[str, Any]:
    return {"success": False, "message": message, "error_type": "bad_request"}
