"""Queue and ledger operations tracking each command through
Queued -> Delivered -> {Responded, Stale}.

The protocol carries no request ids, so response matching is heuristic:
``mark_responded`` takes a predicate over command text, and
``link_post_delivery`` only records that *some* push followed a delivery.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from enum import StrEnum

from loguru import logger

from iclockhub.runtime.session_manager import CommandRecord, DeviceSession, next_command_id, now_ms


class DrainMode(StrEnum):
    ALL = "all"
    ONE = "one"


def enqueue(session: DeviceSession | None, command: str) -> bool:
    text = str(command or "").strip()
    if session is None or not text:
        return False
    with session.lock:
        session.queue.append(text)
    logger.debug(f"queued command sn={session.serial_number} cmd={text!r}")
    return True


def enqueue_unique(session: DeviceSession | None, commands: Iterable[str]) -> list[str]:
    """Queue ``commands`` dropping exact-text repeats and anything already pending."""
    if session is None:
        return []
    added: list[str] = []
    with session.lock:
        seen = set(session.queue)
        for command in commands:
            text = str(command or "").strip()
            if not text or text in seen:
                continue
            seen.add(text)
            session.queue.append(text)
            added.append(text)
    if added:
        logger.debug(f"queued {len(added)} command(s) sn={session.serial_number}")
    return added


def has_pending(session: DeviceSession | None, predicate: Callable[[str], bool]) -> bool:
    if session is None:
        return False
    with session.lock:
        return any(predicate(command) for command in session.queue)


def render_body(commands: list[str], line_ending: str = "\n") -> str:
    if not commands:
        return ""
    return line_ending.join(commands) + line_ending


def drain(
    session: DeviceSession | None,
    mode: DrainMode | str = DrainMode.ALL,
    *,
    remote: str | None = None,
    line_ending: str = "\n",
    ts_ms: int | None = None,
) -> tuple[str, list[CommandRecord]]:
    """Take pending commands off the queue and record them as delivered.

    Returns the response body and the new ledger records. Delivery is treated as
    synchronous with the poll response, so all records share one timestamp.
    """
    if session is None:
        return "", []
    with session.lock:
        if not session.queue:
            return "", []
        if DrainMode(mode) == DrainMode.ONE:
            taken = [session.queue.pop(0)]
        else:
            taken = list(session.queue)
            session.queue.clear()
        body = render_body(taken, line_ending)
        delivered_at = ts_ms if ts_ms is not None else now_ms()
        size = len(body.encode("utf-8"))
        records = [
            CommandRecord(
                id=next_command_id(),
                command=command,
                queued_at_ms=delivered_at,
                delivered_at_ms=delivered_at,
                bytes_delivered=size,
                remote=remote,
            )
            for command in taken
        ]
        session.ledger.extend(records)
    return body, records


def mark_responded(
    session: DeviceSession | None,
    predicate: Callable[[str], bool],
    *,
    ts_ms: int | None = None,
) -> list[int]:
    if session is None:
        return []
    stamped: list[int] = []
    with session.lock:
        for record in session.ledger:
            if record.responded_at_ms is not None or record.delivered_at_ms is None:
                continue
            if not predicate(record.command):
                continue
            when = ts_ms if ts_ms is not None else now_ms()
            record.responded_at_ms = max(when, record.delivered_at_ms)
            stamped.append(record.id)
    if stamped:
        logger.debug(f"commands responded sn={session.serial_number} ids={stamped}")
    return stamped


def mark_stale(
    session: DeviceSession | None,
    threshold_seconds: float,
    *,
    ts_ms: int | None = None,
) -> list[int]:
    if session is None:
        return []
    now = ts_ms if ts_ms is not None else now_ms()
    threshold_ms = max(0.0, float(threshold_seconds)) * 1000
    stamped: list[int] = []
    with session.lock:
        for record in session.ledger:
            if record.delivered_at_ms is None or record.responded_at_ms is not None:
                continue
            if record.stale_at_ms is not None:
                continue
            if now - record.delivered_at_ms > threshold_ms:
                record.stale_at_ms = now
                stamped.append(record.id)
    if stamped:
        logger.info(f"commands stale sn={session.serial_number} ids={stamped}")
    return stamped


def link_post_delivery(session: DeviceSession | None, event_ms: int) -> list[int]:
    if session is None:
        return []
    linked: list[int] = []
    with session.lock:
        for record in session.ledger:
            if record.delivered_at_ms is None or record.responded_at_ms is not None:
                continue
            if record.post_seen_after_delivery:
                continue
            if record.delivered_at_ms <= event_ms:
                record.post_seen_after_delivery = True
                linked.append(record.id)
    return linked
