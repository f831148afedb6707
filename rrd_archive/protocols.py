"""
Protocols for the collaborators the archive maintainer depends on.

The maintainer never reaches into global connection state; everything it needs
about the session, the monitored object and the network is supplied through
these contracts.
"""

from typing import Optional, Protocol, runtime_checkable

from rrd_archive.schemas import EntityType


@runtime_checkable
class MonitoredEntity(Protocol):
    """A host or VM whose performance counters are archived."""

    @property
    def object_type(self) -> EntityType:
        """HOST or VM."""
        ...

    @property
    def uuid(self) -> str:
        """Opaque reference used in URLs and data-source ids."""
        ...


@runtime_checkable
class Connection(Protocol):
    """Session-level facts about the pool the entity belongs to."""

    def get_session_id(self) -> Optional[str]:
        """
        Current API session identifier.

        Promises:
        - Returns None when not logged in
        - Never raises exceptions
        """
        ...

    def get_host_address(self, entity: MonitoredEntity) -> Optional[str]:
        """
        Address of the physical host that serves RRD data for the entity.

        Promises:
        - Hosts resolve to their own address
        - VMs resolve to their resident host, then the pool master
        - Falls back to the connection hostname
        - Returns None only if nothing is known
        """
        ...

    def get_port(self) -> int:
        """Port of the management API (443 implies HTTPS)."""
        ...

    def get_server_time_offset(self) -> int:
        """Local clock minus server clock, in whole seconds."""
        ...

    def set_server_time_offset(self, seconds: int) -> None:
        """Record a new clock offset estimate."""
        ...


@runtime_checkable
class Transport(Protocol):
    """Blocking HTTP GET used from worker threads."""

    def fetch(self, url: Optional[str]) -> bytes:
        """
        Download a URL.

        Promises:
        - Returns the response body on success
        - Returns b"" for a missing URL, non-success status or any error
        - Never raises exceptions
        - Bounded by the configured request timeout
        """
        ...

    def close(self) -> None:
        """Release pooled connections."""
        ...
