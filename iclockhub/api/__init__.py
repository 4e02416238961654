"""HTTP endpoints for terminals and administrative tooling."""

from iclockhub.api.iclock_server import IClockServer, create_server_from_config

__all__ = ["IClockServer", "create_server_from_config"]
