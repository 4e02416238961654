"""Device sessions, command lifecycle and request orchestration."""

from iclockhub.runtime.gateway import GatewayError, IClockGateway
from iclockhub.runtime.realtime import RealtimeHub, Subscription
from iclockhub.runtime.session_manager import (
    AttendanceEvent,
    BufferLimits,
    CommandRecord,
    DeviceSession,
    DeviceSessionManager,
    UserRecord,
)

__all__ = [
    "AttendanceEvent",
    "BufferLimits",
    "CommandRecord",
    "DeviceSession",
    "DeviceSessionManager",
    "GatewayError",
    "IClockGateway",
    "RealtimeHub",
    "Subscription",
    "UserRecord",
]
