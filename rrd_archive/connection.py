"""
In-memory connection used by the command-line tool and the tests.

The console's real connection object lives elsewhere; this one carries just
enough state to satisfy the Connection protocol.
"""

import logging
from typing import Optional

from rrd_archive.protocols import MonitoredEntity
from rrd_archive.schemas import EntityType, HostRef

logger = logging.getLogger(__name__)


class SessionConnection:
    """A logged-in session against one pool."""

    def __init__(
        self,
        hostname: str,
        port: int = 443,
        session_id: Optional[str] = None,
        pool_master: Optional[HostRef] = None,
    ):
        """
        Initialize connection.

        Args:
            hostname: Address the session was opened against
            port: Management API port
            session_id: Opaque session reference, None when logged out
            pool_master: Master host, used to route VM requests without a resident host
        """
        self.hostname = hostname
        self.port = port
        self.session_id = session_id
        self.pool_master = pool_master
        self._server_time_offset = 0

    def get_session_id(self) -> Optional[str]:
        return self.session_id

    def get_port(self) -> int:
        return self.port

    def get_host_address(self, entity: MonitoredEntity) -> Optional[str]:
        """Address serving RRDs for an entity; see the Connection protocol."""
        if entity.object_type == EntityType.HOST:
            address = getattr(entity, "address", None)
            return address or self.hostname or None

        if entity.object_type == EntityType.VM:
            resident = getattr(entity, "resident_on", None)
            if resident is not None and resident.address:
                return resident.address
            if self.pool_master is not None and self.pool_master.address:
                return self.pool_master.address

        return self.hostname or None

    def get_server_time_offset(self) -> int:
        return self._server_time_offset

    def set_server_time_offset(self, seconds: int) -> None:
        if seconds != self._server_time_offset:
            logger.info(f"Server time offset for {self.hostname} now {seconds}s")
        self._server_time_offset = seconds
