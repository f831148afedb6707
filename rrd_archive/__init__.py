"""
rrd-archive: performance-metrics archive maintainer.

Pulls RRD performance counters for a host or VM from a virtualization pool,
parses the full and incremental XML exports, and keeps a bounded
multi-resolution window of samples in memory for live graphing.

Usage:
    from rrd_archive import ArchiveMaintainer, SessionConnection, HostRef

    maintainer = ArchiveMaintainer(
        HostRef(uuid=host_uuid, address="10.0.0.2"),
        SessionConnection("pool.example.com", session_id=session_ref),
    )
    maintainer.subscribe(lambda m: redraw(m.get_data_set(ds_id, Resolution.FIVE_SECOND)))
    await maintainer.start()
"""

from rrd_archive.config import MaintainerConfig
from rrd_archive.connection import SessionConnection
from rrd_archive.maintainer import ArchiveMaintainer
from rrd_archive.parsers import (
    normalize_data_source_id,
    parse_full_dump,
    parse_rrd_value,
    parse_updates,
)
from rrd_archive.protocols import Connection, MonitoredEntity, Transport
from rrd_archive.schemas import (
    DataPoint,
    EntityType,
    HostRef,
    MaintainerState,
    PointUpdate,
    Resolution,
    VmRef,
)
from rrd_archive.store import DataArchive, DataSet
from rrd_archive.transport import HttpTransport

__all__ = [
    # Orchestration
    "ArchiveMaintainer",
    "MaintainerConfig",
    "MaintainerState",
    # Store
    "DataArchive",
    "DataSet",
    "DataPoint",
    "Resolution",
    # Parsing
    "PointUpdate",
    "parse_full_dump",
    "parse_updates",
    "parse_rrd_value",
    "normalize_data_source_id",
    # Collaborators
    "Connection",
    "MonitoredEntity",
    "Transport",
    "HttpTransport",
    "SessionConnection",
    "EntityType",
    "HostRef",
    "VmRef",
]

__version__ = "1.0.0"
