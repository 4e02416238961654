"""HTTP front for terminals (``/iclock/*``) and administrative tooling (``/api/*``)."""

from __future__ import annotations

import json
import threading
from http import HTTPStatus
from http.server import BaseHTTPRequestHandler, ThreadingHTTPServer
from typing import Any
from urllib.parse import parse_qs, urlparse

from loguru import logger

from iclockhub.runtime.gateway import GatewayError, IClockGateway
from iclockhub.runtime.realtime import SSE_KEEPALIVE, RealtimeHub, sse_frame

DEVICE_OK = "OK"


def _first_query_value(params: dict[str, list[str]], *keys: str) -> str | None:
    for key in keys:
        values = params.get(key, [])
        if values:
            return str(values[0])
    return None


def _to_bool_query(value: Any, default: bool = False) -> bool:
    if isinstance(value, bool):
        return value
    if value is None:
        return bool(default)
    text = str(value).strip().lower()
    if text in {"1", "true", "yes", "on"}:
        return True
    if text in {"0", "false", "no", "off"}:
        return False
    return bool(default)


def _device_path(path: str) -> list[str]:
    parts = [p for p in path.split("/") if p]
    # Older firmware appends ".aspx" to every endpoint.
    return [p[:-5] if p.lower().endswith(".aspx") else p for p in parts]


def json_response(payload: dict[str, Any]) -> bytes:
    return json.dumps(payload, ensure_ascii=False, default=str).encode("utf-8")


class _IClockRequestHandler(BaseHTTPRequestHandler):
    """Threaded handler; each request runs to completion on its own thread."""

    gateway: IClockGateway | None = None
    hub: RealtimeHub | None = None
    admin_enabled: bool = True
    realtime_enabled: bool = True
    max_push_bytes: int = 10 * 1024 * 1024
    max_admin_body_bytes: int = 1024 * 1024
    keepalive_seconds: float = 15.0
    stop_event: threading.Event = threading.Event()

    server_version = "iclockhub/0.1"

    def do_GET(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        parts = _device_path(parsed.path)
        params = parse_qs(parsed.query or "")
        if parts[:1] == ["iclock"]:
            self._get_device(parts[1:], params)
            return
        if parts == ["api", "events", "stream"] and self.realtime_enabled:
            self._get_event_stream()
            return
        if parts[:1] == ["api"] and self.admin_enabled:
            self._dispatch_admin("GET", parts[1:], params, {})
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"success": False, "error": "unknown endpoint"})

    def do_POST(self) -> None:  # noqa: N802
        parsed = urlparse(self.path)
        parts = _device_path(parsed.path)
        params = parse_qs(parsed.query or "")
        if parts[:1] == ["iclock"]:
            self._post_device(parts[1:], params)
            return
        if parts[:1] == ["api"] and self.admin_enabled:
            payload = self._read_json_body()
            if payload is None:
                return
            self._dispatch_admin("POST", parts[1:], params, payload)
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"success": False, "error": "unknown endpoint"})

    def log_message(self, fmt: str, *args: Any) -> None:
        logger.debug("iclock-http " + fmt % args)

    # ------------------------------------------------------------------
    # Device endpoints
    # ------------------------------------------------------------------

    def _get_device(self, parts: list[str], params: dict[str, list[str]]) -> None:
        gateway = self.gateway
        sn = _first_query_value(params, "SN", "sn") or ""
        if gateway is None:
            self._send_text(HTTPStatus.OK, "")
            return
        if parts == ["getrequest"]:
            body = gateway.handle_poll(sn, remote=self._remote())
            self._send_text(HTTPStatus.OK, body)
            return
        if parts in (["cdata"], ["ping"]):
            gateway.touch(sn)
            self._send_text(HTTPStatus.OK, DEVICE_OK)
            return
        self._send_text(HTTPStatus.NOT_FOUND, "")

    def _post_device(self, parts: list[str], params: dict[str, list[str]]) -> None:
        gateway = self.gateway
        sn = _first_query_value(params, "SN", "sn") or ""
        body = self._read_raw_body(self.max_push_bytes)
        if body is None:
            return
        if gateway is None:
            self._send_text(HTTPStatus.OK, DEVICE_OK)
            return
        if parts == ["cdata"]:
            table = _first_query_value(params, "table", "options") or ""
            try:
                gateway.handle_push(sn, body, table=table, remote=self._remote())
            except Exception:
                # The device re-pushes on anything but OK; keep the ack unconditional.
                logger.exception(f"cdata ingest failed SN={sn}")
            self._send_text(HTTPStatus.OK, DEVICE_OK)
            return
        if parts in (["devicecmd"], ["fdata"]):
            gateway.handle_device_reply(sn, body, endpoint=parts[0], remote=self._remote())
            self._send_text(HTTPStatus.OK, DEVICE_OK)
            return
        self._send_text(HTTPStatus.NOT_FOUND, "")

    # ------------------------------------------------------------------
    # Admin endpoints
    # ------------------------------------------------------------------

    def _dispatch_admin(
        self,
        method: str,
        parts: list[str],
        params: dict[str, list[str]],
        payload: dict[str, Any],
    ) -> None:
        gateway = self.gateway
        if gateway is None:
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"success": False, "error": "gateway unavailable"})
            return
        args = {key: values[0] for key, values in params.items() if values}
        args.update(payload)
        sn = args.get("sn") or args.get("SN")
        try:
            if method == "GET" and parts == ["device", "state"]:
                self._send_json(HTTPStatus.OK, gateway.device_state(sn))
                return
            if method == "GET" and parts == ["users"]:
                users = gateway.users(sn)
                self._send_json(HTTPStatus.OK, {"success": True, "sn": sn, "count": len(users), "users": users})
                return
            if method == "GET" and parts == ["devices"]:
                self._send_json(HTTPStatus.OK, {"success": True, **gateway.runtime_status()})
                return
            if method == "POST" and parts == ["device", "pull"]:
                command = gateway.queue_attendance_pull(sn, args.get("hours"))
                self._send_json(HTTPStatus.OK, {"success": True, "enqueued": command})
                return
            if method == "POST" and parts == ["device", "pull-users"]:
                command = gateway.queue_user_sync(sn)
                self._send_json(HTTPStatus.OK, {"success": True, "enqueued": command})
                return
            if method == "POST" and parts == ["device", "users"]:
                self._send_json(HTTPStatus.OK, gateway.add_user(sn, args))
                return
            if method == "POST" and parts == ["device", "users", "delete"]:
                self._send_json(HTTPStatus.OK, gateway.delete_user(sn, args.get("pin")))
                return
            if method == "POST" and parts == ["device", "users", "clone"]:
                result = gateway.clone_user(
                    args.get("source_sn") or args.get("sourceSn"),
                    args.get("pin"),
                    args.get("target_sn") or args.get("targetSn"),
                    args.get("target_pin") or args.get("targetPin"),
                )
                self._send_json(HTTPStatus.OK, result)
                return
            if method == "POST" and parts == ["device", "drip"]:
                enabled = gateway.set_drip_mode(sn, _to_bool_query(args.get("enabled"), True))
                self._send_json(HTTPStatus.OK, {"success": True, "sn": sn, "drip_mode": enabled})
                return
            if method == "POST" and parts == ["device", "pin-key"]:
                key = gateway.set_pin_key(sn, args.get("key"))
                self._send_json(HTTPStatus.OK, {"success": True, "sn": sn, "pin_key": key})
                return
            if method == "POST" and parts == ["device", "command"]:
                command = gateway.inject_command(sn, args.get("command"))
                self._send_json(HTTPStatus.OK, {"success": True, "enqueued": command})
                return
        except GatewayError as e:
            self._send_json(_error_to_status(e.code), e.to_dict())
            return
        except Exception as e:
            logger.exception(f"admin request failed: {e}")
            self._send_json(HTTPStatus.INTERNAL_SERVER_ERROR, {"success": False, "error": "internal error"})
            return
        self._send_json(HTTPStatus.NOT_FOUND, {"success": False, "error": "unknown endpoint"})

    def _get_event_stream(self) -> None:
        hub = self.hub
        if hub is None:
            self._send_json(HTTPStatus.SERVICE_UNAVAILABLE, {"success": False, "error": "realtime unavailable"})
            return
        self.send_response(HTTPStatus.OK)
        self.send_header("Content-Type", "text/event-stream")
        self.send_header("Cache-Control", "no-cache")
        self.send_header("Connection", "keep-alive")
        self.end_headers()
        subscription = hub.subscribe()
        try:
            self._write_frame(sse_frame("ready", {"ok": True}))
            while not subscription.closed and not self.stop_event.is_set():
                frame = subscription.next_frame(self.keepalive_seconds)
                self._write_frame(frame if frame is not None else SSE_KEEPALIVE)
        except (BrokenPipeError, ConnectionResetError, ConnectionAbortedError):
            logger.debug("realtime stream closed by client")
        finally:
            hub.unsubscribe(subscription)
            self.close_connection = True

    # ------------------------------------------------------------------
    # I/O helpers
    # ------------------------------------------------------------------

    def _remote(self) -> str | None:
        if self.client_address:
            return str(self.client_address[0])
        return None

    def _content_length(self) -> int:
        try:
            return max(0, int(self.headers.get("Content-Length", "0")))
        except ValueError:
            return 0

    def _read_raw_body(self, limit: int) -> bytes | None:
        length = self._content_length()
        if length > limit:
            logger.warning(f"request body too large ({length} > {limit} bytes) from {self._remote()}")
            self._send_text(HTTPStatus.REQUEST_ENTITY_TOO_LARGE, "")
            return None
        return self.rfile.read(length) if length > 0 else b""

    def _read_json_body(self) -> dict[str, Any] | None:
        length = self._content_length()
        max_body = max(1024, int(self.max_admin_body_bytes))
        if length > max_body:
            self._send_json(
                HTTPStatus.REQUEST_ENTITY_TOO_LARGE,
                {
                    "success": False,
                    "error": f"request body too large (max {max_body} bytes)",
                },
            )
            return None
        body = self.rfile.read(length) if length > 0 else b"{}"
        try:
            payload = json.loads(body.decode("utf-8") or "{}")
        except (json.JSONDecodeError, UnicodeDecodeError):
            self._send_json(HTTPStatus.BAD_REQUEST, {"success": False, "error": "invalid json"})
            return None
        if not isinstance(payload, dict):
            self._send_json(HTTPStatus.BAD_REQUEST, {"success": False, "error": "json body must be an object"})
            return None
        return payload

    def _write_frame(self, frame: bytes) -> None:
        self.wfile.write(frame)
        self.wfile.flush()

    def _send_text(self, code: HTTPStatus, text: str) -> None:
        body = text.encode("utf-8")
        self.send_response(code)
        self.send_header("Content-Type", "text/plain; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)

    def _send_json(self, code: HTTPStatus, payload: dict[str, Any]) -> None:
        body = json_response(payload)
        self.send_response(code)
        self.send_header("Content-Type", "application/json; charset=utf-8")
        self.send_header("Content-Length", str(len(body)))
        self.end_headers()
        self.wfile.write(body)


class IClockServer:
    """Threaded HTTP server bound to one ``IClockGateway``."""

    def __init__(
        self,
        *,
        host: str,
        port: int,
        gateway: IClockGateway,
        hub: RealtimeHub | None = None,
        admin_enabled: bool = True,
        realtime_enabled: bool = True,
        max_push_bytes: int = 10 * 1024 * 1024,
        max_admin_body_bytes: int = 1024 * 1024,
        keepalive_seconds: float = 15.0,
    ) -> None:
        self.host = host
        self.port = port
        self.gateway = gateway
        self.hub = hub if hub is not None else gateway.hub
        self.admin_enabled = bool(admin_enabled)
        self.realtime_enabled = bool(realtime_enabled)
        self.max_push_bytes = max(1024, int(max_push_bytes))
        self.max_admin_body_bytes = max(1024, int(max_admin_body_bytes))
        self.keepalive_seconds = max(0.1, float(keepalive_seconds))
        self._thread: threading.Thread | None = None
        self._server: ThreadingHTTPServer | None = None
        self._stop_event = threading.Event()

    @property
    def server_port(self) -> int:
        if self._server is None:
            return self.port
        return int(self._server.server_address[1])

    def start(self) -> None:
        handler_cls = type("BoundIClockRequestHandler", (_IClockRequestHandler,), {})
        handler_cls.gateway = self.gateway
        handler_cls.hub = self.hub
        handler_cls.admin_enabled = self.admin_enabled
        handler_cls.realtime_enabled = self.realtime_enabled
        handler_cls.max_push_bytes = self.max_push_bytes
        handler_cls.max_admin_body_bytes = self.max_admin_body_bytes
        handler_cls.keepalive_seconds = self.keepalive_seconds
        handler_cls.stop_event = self._stop_event
        self._stop_event.clear()
        self._server = ThreadingHTTPServer((self.host, self.port), handler_cls)
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)
        self._thread.start()
        logger.info(f"iClock server listening on http://{self.host}:{self.server_port}")
        logger.info(f"Point devices at http://<server-ip>:{self.server_port}/iclock/")

    def serve_forever(self) -> None:
        if self._thread is None:
            self.start()
        try:
            while self._thread is not None and self._thread.is_alive():
                self._thread.join(timeout=0.5)
        finally:
            self.stop()

    def stop(self) -> None:
        self._stop_event.set()
        if self._server:
            self._server.shutdown()
            self._server.server_close()
            self._server = None
        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=2)
        self._thread = None


def _error_to_status(error_code: Any) -> HTTPStatus:
    code = str(error_code or "")
    if code == "not_found":
        return HTTPStatus.NOT_FOUND
    if code == "conflict":
        return HTTPStatus.CONFLICT
    return HTTPStatus.BAD_REQUEST


def create_server_from_config(config: Any, *, gateway: IClockGateway | None = None) -> IClockServer:
    """Factory helper wiring gateway, hub and server from a root ``Config``."""
    hub = RealtimeHub(queue_size=config.realtime.queue_size) if config.realtime.enabled else None
    if gateway is None:
        gateway = IClockGateway(config.iclock, hub=hub)
    return IClockServer(
        host=config.iclock.host,
        port=config.iclock.port,
        gateway=gateway,
        hub=hub if hub is not None else gateway.hub,
        admin_enabled=config.admin.enabled,
        realtime_enabled=config.realtime.enabled,
        max_push_bytes=config.iclock.max_push_bytes,
        max_admin_body_bytes=config.admin.max_body_bytes,
        keepalive_seconds=config.realtime.keepalive_seconds,
    )
