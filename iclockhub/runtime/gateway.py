"""Poll/push handling and administrative operations over device sessions."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from loguru import logger

from iclockhub.config.schema import IClockConfig
from iclockhub.iclock import commands as cmd
from iclockhub.iclock.parser import (
    AttendanceRecord,
    OperationLogRecord,
    RosterRecord,
    UnknownRecord,
    max_device_time,
    parse,
)
from iclockhub.iclock.timefmt import parse_device_time, resolve_zone, to_instant
from iclockhub.iclock.verify import decode as decode_verify
from iclockhub.runtime import command_ledger as ledger
from iclockhub.runtime import user_directory as directory
from iclockhub.runtime.fetch_window import build_incremental_fetch, build_window_fetch
from iclockhub.runtime.realtime import RealtimeHub
from iclockhub.runtime.session_manager import (
    AttendanceEvent,
    BufferLimits,
    DeviceSession,
    DeviceSessionManager,
    now_ms,
)
from iclockhub.utils.helpers import truncate_string

RAW_SAMPLE_MAX_CHARS = 256 * 1024
USER_FIELDS = ("name", "card", "privilege", "department", "internal_id")


class GatewayError(Exception):
    """Rejected administrative request."""

    def __init__(self, message: str, *, code: str = "bad_request", **details: Any) -> None:
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        return {"success": False, "error": self.message, "error_code": self.code, **self.details}


def _has_serial(serial_number: str | None) -> bool:
    return bool(str(serial_number or "").strip())


def _require(value: Any, name: str) -> str:
    text = str(value or "").strip()
    if not text:
        raise GatewayError(f"{name} is required")
    return text


class IClockGateway:
    """Orchestrates parser, ledger, directory and planner per device request."""

    def __init__(
        self,
        config: IClockConfig | None = None,
        *,
        sessions: DeviceSessionManager | None = None,
        hub: RealtimeHub | None = None,
        now_fn: Callable[[], int] = now_ms,
    ) -> None:
        self.config = config or IClockConfig()
        if sessions is None:
            buffers = self.config.buffers
            sessions = DeviceSessionManager(
                limits=BufferLimits(
                    ledger=buffers.ledger,
                    events=buffers.events,
                    push_summaries=buffers.push_summaries,
                    poll_history=buffers.poll_history,
                    raw_samples=buffers.raw_samples,
                    operation_logs=buffers.operation_logs,
                )
            )
        self.sessions = sessions
        self.hub = hub
        self.zone = resolve_zone(self.config.device_timezone)
        self.dialect = cmd.normalize_dialect(self.config.command_dialect)
        self._now = now_fn

    # ------------------------------------------------------------------
    # Device-facing handlers
    # ------------------------------------------------------------------

    def handle_poll(self, serial_number: str, *, remote: str | None = None) -> str:
        """Answer ``GET /iclock/getrequest``: pending commands, a catch-up fetch, or nothing."""
        if not _has_serial(serial_number):
            logger.debug(f"getrequest without SN from {remote}")
            return ""
        session = self.sessions.session_for(serial_number)
        now = self._now()
        with session.lock:
            session.touch(now)
            ledger.mark_stale(session, self.config.stale_seconds, ts_ms=now)
            if not session.queue:
                self._maybe_queue_user_sync(session, now)
            if not session.queue and self.config.pull_mode:
                ledger.enqueue(session, self._incremental_fetch(session, now))
            queue_before = len(session.queue)
            mode = ledger.DrainMode.ONE if session.drip_mode else ledger.DrainMode.ALL
            body, records = ledger.drain(
                session,
                mode,
                remote=remote,
                line_ending=self.config.line_ending,
                ts_ms=now,
            )
            session.poll_history.append(
                {
                    "at_ms": now,
                    "remote": remote,
                    "queue_before": queue_before,
                    "delivered_count": len(records),
                }
            )
        if records:
            logger.info(
                f"getrequest SN={session.serial_number} delivered={len(records)} "
                f"bytes={records[0].bytes_delivered} pending={queue_before - len(records)}"
            )
        else:
            logger.debug(f"getrequest SN={session.serial_number} idle")
        return body

    def handle_push(
        self,
        serial_number: str,
        body: str | bytes | None,
        *,
        table: str = "",
        remote: str | None = None,
    ) -> str:
        """Ingest ``POST /iclock/cdata``; the reply is always ``OK``."""
        text = self._decode_body(body)
        if not _has_serial(serial_number):
            logger.warning(f"cdata without SN from {remote} dropped chars={len(text)}")
            return "OK"
        records = parse(text)
        session = self.sessions.session_for(serial_number)
        now = self._now()
        counts = {"attendance": 0, "roster": 0, "oplog": 0, "unknown": 0}
        events: list[AttendanceEvent] = []
        with session.lock:
            session.touch(now)
            session.raw_samples.append(
                {
                    "at_ms": now,
                    "table": table,
                    "remote": remote,
                    "chars": len(text),
                    "truncated": len(text) > RAW_SAMPLE_MAX_CHARS,
                    "body": text[:RAW_SAMPLE_MAX_CHARS],
                }
            )
            for record in records:
                if isinstance(record, RosterRecord):
                    counts["roster"] += 1
                    directory.detect_pin_key(session, record)
                    directory.upsert_from_roster(session, record, ts_ms=now)
            for record in records:
                if isinstance(record, AttendanceRecord):
                    counts["attendance"] += 1
                    event = self._attendance_event(session, record, table=table, ts_ms=now)
                    session.events.append(event)
                    events.append(event)
                elif isinstance(record, OperationLogRecord):
                    counts["oplog"] += 1
                    session.operation_logs.append(
                        {"at_ms": now, "table": table, "fields": list(record.fields)}
                    )
                elif isinstance(record, UnknownRecord):
                    counts["unknown"] += 1
            newest = max_device_time(records)
            self._advance_stamp(session, newest)
            if counts["roster"]:
                ledger.mark_responded(session, cmd.is_roster_command, ts_ms=now)
            if counts["attendance"]:
                ledger.mark_responded(session, cmd.is_attendance_command, ts_ms=now)
            session.push_summaries.append(
                {
                    "at_ms": now,
                    "endpoint": "cdata",
                    "table": table,
                    "remote": remote,
                    "lines": len(records),
                    "newest": newest,
                    **counts,
                }
            )
            ledger.link_post_delivery(session, now)
        if counts["unknown"]:
            logger.debug(f"cdata SN={session.serial_number} unknown lines={counts['unknown']}")
        logger.info(
            f"cdata SN={session.serial_number} table={table or '-'} items={len(records)} "
            f"newest={newest or 'n/a'}"
        )
        self._broadcast(events)
        return "OK"

    def handle_device_reply(
        self,
        serial_number: str,
        body: str | bytes | None,
        *,
        endpoint: str = "devicecmd",
        remote: str | None = None,
    ) -> str:
        """Acknowledge ``devicecmd``/``fdata`` posts, keeping them as weak reply signals."""
        text = self._decode_body(body)
        if not _has_serial(serial_number):
            return "OK"
        session = self.sessions.session_for(serial_number)
        now = self._now()
        with session.lock:
            session.touch(now)
            session.push_summaries.append(
                {
                    "at_ms": now,
                    "endpoint": endpoint,
                    "remote": remote,
                    "chars": len(text),
                    "preview": truncate_string(text.strip(), 200),
                }
            )
            ledger.link_post_delivery(session, now)
        logger.debug(f"{endpoint} SN={session.serial_number} chars={len(text)}")
        return "OK"

    def touch(self, serial_number: str) -> None:
        if not _has_serial(serial_number):
            return
        session = self.sessions.session_for(serial_number)
        with session.lock:
            session.touch(self._now())

    # ------------------------------------------------------------------
    # Administrative operations
    # ------------------------------------------------------------------

    def queue_attendance_pull(self, serial_number: str, hours: float | None = None) -> str:
        sn = _require(serial_number, "sn")
        lookback = self.config.default_lookback_hours if hours is None else hours
        try:
            lookback = float(lookback)
        except (TypeError, ValueError) as e:
            raise GatewayError("hours must be a number") from e
        if lookback <= 0:
            raise GatewayError("hours must be positive")
        command = build_window_fetch(lookback, self.dialect, zone=self.zone, ts_ms=self._now())
        ledger.enqueue(self.sessions.session_for(sn), command)
        return command

    def queue_user_sync(self, serial_number: str) -> str:
        sn = _require(serial_number, "sn")
        session = self.sessions.session_for(sn)
        command = cmd.user_query()
        with session.lock:
            ledger.enqueue(session, command)
            session.last_user_sync_ms = self._now()
        return command

    def ensure_users_fetched(self, session: DeviceSession) -> bool:
        """Queue a full roster query when nothing is cached and none is pending."""
        with session.lock:
            if session.users:
                return False
            if ledger.has_pending(session, lambda text: cmd.command_body(text) == cmd.USER_QUERY):
                return False
            ledger.enqueue(session, cmd.user_query())
        logger.info(f"roster empty, user query queued SN={session.serial_number}")
        return True

    def add_user(self, serial_number: str, fields: dict[str, Any]) -> dict[str, Any]:
        sn = _require(serial_number, "sn")
        session = self.sessions.session_for(sn)
        requested = str(fields.get("pin") or "").strip()
        with session.lock:
            if requested:
                if requested in session.users:
                    hint = int(requested) if requested.isdigit() else 1
                    raise GatewayError(
                        f"pin {requested} already exists",
                        code="conflict",
                        suggested_pin=directory.next_available_pin(session, hint),
                    )
                pin = requested
            else:
                pin = directory.next_available_pin(session)
            user = directory.create_optimistic(session, pin, fields, ts_ms=self._now())
            enqueued = self._queue_user_upsert(session, user.to_dict())
        logger.info(f"user add SN={sn} pin={pin} commands={len(enqueued)}")
        return {"success": True, "sn": sn, "user": user.to_dict(), "enqueued": enqueued}

    def delete_user(self, serial_number: str, pin: str) -> dict[str, Any]:
        sn = _require(serial_number, "sn")
        key = _require(pin, "pin")
        session = self.sessions.session_for(sn)
        with session.lock:
            removed = directory.remove(session, key)
            enqueued = ledger.enqueue_unique(
                session, cmd.build_user_delete(key, pin_key=directory.pin_key_for(session))
            )
        logger.info(f"user delete SN={sn} pin={key} cached={removed is not None}")
        return {"success": True, "sn": sn, "pin": key, "removed": removed is not None, "enqueued": enqueued}

    def clone_user(
        self,
        source_sn: str,
        pin: str,
        target_sn: str,
        target_pin: str | None = None,
    ) -> dict[str, Any]:
        source_key = _require(source_sn, "source_sn")
        target_key = _require(target_sn, "target_sn")
        key = _require(pin, "pin")
        source = self.sessions.get(source_key)
        fields = self._user_fields(source, key)
        if fields is None:
            raise GatewayError(f"user {key} not found on {source_key}", code="not_found")
        new_pin = str(target_pin or key).strip()
        target = self.sessions.session_for(target_key)
        with target.lock:
            if new_pin in target.users:
                hint = int(new_pin) if new_pin.isdigit() else 1
                raise GatewayError(
                    f"pin {new_pin} already exists on {target_key}",
                    code="conflict",
                    suggested_pin=directory.next_available_pin(target, hint),
                )
            clone = directory.create_optimistic(target, new_pin, fields, ts_ms=self._now())
            enqueued = self._queue_user_upsert(target, clone.to_dict())
        logger.info(f"user clone {source_key}/{key} -> {target_key}/{new_pin}")
        return {"success": True, "sn": target_key, "user": clone.to_dict(), "enqueued": enqueued}

    def set_drip_mode(self, serial_number: str, enabled: bool) -> bool:
        session = self.sessions.session_for(_require(serial_number, "sn"))
        with session.lock:
            session.drip_mode = bool(enabled)
        return session.drip_mode

    def set_pin_key(self, serial_number: str, key: str) -> str:
        session = self.sessions.session_for(_require(serial_number, "sn"))
        label = _require(key, "key")
        return directory.override_pin_key(session, label)

    def inject_command(self, serial_number: str, command: str) -> str:
        session = self.sessions.session_for(_require(serial_number, "sn"))
        text = cmd.frame(_require(command, "command"))
        ledger.enqueue(session, text)
        return text

    def users(self, serial_number: str) -> list[dict[str, Any]]:
        session = self.sessions.session_for(_require(serial_number, "sn"))
        self.ensure_users_fetched(session)
        return directory.list_users(session)

    def attendance_events(self, serial_number: str) -> list[AttendanceEvent]:
        session = self.sessions.get(serial_number)
        if session is None:
            return []
        with session.lock:
            return list(session.events)

    def device_state(self, serial_number: str) -> dict[str, Any]:
        sn = _require(serial_number, "sn")
        session = self.sessions.get(sn)
        if session is None:
            raise GatewayError(f"device {sn} not found", code="not_found")
        with session.lock:
            ledger.mark_stale(session, self.config.stale_seconds, ts_ms=self._now())
            return {
                "success": True,
                "device": session.to_status(),
                "queue": list(session.queue),
                "ledger": [record.to_dict() for record in session.ledger],
                "users": [user.to_dict() for user in session.users.values()],
                "poll_history": list(session.poll_history),
                "push_summaries": list(session.push_summaries),
                "raw_samples": [
                    {key: value for key, value in sample.items() if key != "body"}
                    | {"preview": truncate_string(sample["body"], 200)}
                    for sample in session.raw_samples
                ],
                "operation_logs": len(session.operation_logs),
            }

    def runtime_status(self) -> dict[str, Any]:
        return {
            "pull_mode": self.config.pull_mode,
            "command_dialect": self.dialect,
            "devices": self.sessions.serial_numbers(),
            "sessions": self.sessions.all_status(),
            "subscribers": self.hub.subscriber_count if self.hub else 0,
        }

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _user_fields(session: DeviceSession | None, pin: str) -> dict[str, str] | None:
        if session is None:
            return None
        with session.lock:
            user = session.users.get(pin)
            if user is None:
                return None
            return {name: getattr(user, name) for name in USER_FIELDS}

    def _incremental_fetch(self, session: DeviceSession, ts_ms: int) -> str:
        return build_incremental_fetch(
            session,
            self.dialect,
            lookback_hours=self.config.default_lookback_hours,
            zone=self.zone,
            ts_ms=ts_ms,
        )

    def _maybe_queue_user_sync(self, session: DeviceSession, ts_ms: int) -> None:
        interval_hours = float(self.config.user_sync_interval_hours)
        if interval_hours <= 0:
            return
        last = session.last_user_sync_ms
        if last is not None and ts_ms - last <= interval_hours * 3600 * 1000:
            return
        ledger.enqueue(session, cmd.user_query())
        session.last_user_sync_ms = ts_ms
        logger.debug(f"auto user sync queued SN={session.serial_number}")

    def _queue_user_upsert(self, session: DeviceSession, user: dict[str, Any]) -> list[str]:
        pin_key = directory.pin_key_for(session)
        variants = cmd.build_user_upsert(user, pin_key=pin_key)
        confirm = cmd.user_query(user["pin"], pin_key=pin_key)
        return ledger.enqueue_unique(session, [*variants, confirm])

    def _attendance_event(
        self,
        session: DeviceSession,
        record: AttendanceRecord,
        *,
        table: str,
        ts_ms: int,
    ) -> AttendanceEvent:
        return AttendanceEvent(
            serial_number=session.serial_number,
            pin=record.pin,
            timestamp=to_instant(record.timestamp, self.zone),
            device_time=record.timestamp,
            status=record.status,
            verify=record.verify,
            verify_method=decode_verify(record.verify),
            workcode=record.workcode,
            raw_line=record.raw_line,
            user=directory.resolve(session, record.pin),
            table=table,
            received_at_ms=ts_ms,
        )

    @staticmethod
    def _advance_stamp(session: DeviceSession, newest: str | None) -> None:
        if not newest:
            return
        current = parse_device_time(session.last_stamp)
        candidate = parse_device_time(newest)
        if candidate is not None and (current is None or candidate > current):
            session.last_stamp = newest

    def _broadcast(self, events: list[AttendanceEvent]) -> None:
        if self.hub is None:
            return
        for event in events:
            payload = event.to_dict()
            payload.pop("raw", None)
            self.hub.broadcast("attendance", payload)

    @staticmethod
    def _decode_body(body: str | bytes | None) -> str:
        if body is None:
            return ""
        if isinstance(body, bytes):
            return body.decode("utf-8", errors="replace")
        return str(body)
