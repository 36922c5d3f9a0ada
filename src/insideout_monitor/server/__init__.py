"""UDP receive loop and service lifecycle."""

from insideout_monitor.server.service import MonitorService
from insideout_monitor.server.udp import UdpIngestServer

__all__ = ["MonitorService", "UdpIngestServer"]
