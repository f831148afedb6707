"""
URL construction for the RRD HTTP handlers.

Full dump:   /host_rrds?session_id=..          (host)
             /vm_rrds?session_id=..&uuid=..    (VM)
Incremental: /rrd_updates?session_id=..&start=..&cf=AVERAGE&interval=..
             plus &host=true (host) or &vm_uuid=.. (VM)
"""

import logging
from typing import Dict, Optional

import httpx

from rrd_archive.parsers import AVERAGE_CF
from rrd_archive.protocols import Connection, MonitoredEntity
from rrd_archive.schemas import (
    EntityType,
    Resolution,
    period_seconds_for,
    window_seconds_for,
)

logger = logging.getLogger(__name__)


def object_type_name(entity: MonitoredEntity) -> str:
    """Lower-case type prefix used in canonical data-source ids."""
    object_type = entity.object_type
    if isinstance(object_type, EntityType):
        return object_type.value
    return str(object_type).lower()


def _server_url(
    connection: Connection, entity: MonitoredEntity, path: str, params: Dict[str, str]
) -> Optional[str]:
    session_id = connection.get_session_id()
    host = connection.get_host_address(entity)
    if not session_id or not host:
        logger.debug(f"No session or host address for {object_type_name(entity)} {entity.uuid}")
        return None

    port = connection.get_port()
    scheme = "https" if port == 443 else "http"
    if ":" in host and not host.startswith("["):
        host = f"[{host}]"

    # Formatted by hand so the default port stays explicit in the URL
    query = httpx.QueryParams({"session_id": session_id, **params})
    return f"{scheme}://{host}:{port}{path}?{query}"


def build_full_dump_url(connection: Connection, entity: MonitoredEntity) -> Optional[str]:
    """
    URL of the complete RRD export for an entity.

    Returns:
        The URL, or None when the session or host address is unknown
    """
    if entity.object_type == EntityType.HOST:
        return _server_url(connection, entity, "/host_rrds", {})
    if entity.object_type == EntityType.VM:
        return _server_url(connection, entity, "/vm_rrds", {"uuid": entity.uuid})
    return None


def update_start_time(
    resolution: Resolution, last_collected: Optional[float], server_now: float
) -> int:
    """
    Epoch second an incremental request for a tier should start at.

    One native period before the previous collection, so consecutive polls
    overlap by a sample instead of leaving a gap; a tier never collected asks
    for its whole window.
    """
    if last_collected is not None:
        return int(last_collected) - period_seconds_for(resolution)
    return int(server_now) - window_seconds_for(resolution)


def build_update_url(
    connection: Connection,
    entity: MonitoredEntity,
    resolution: Resolution,
    start: int,
) -> Optional[str]:
    """
    URL of the ``rrd_updates`` export for one tier.

    Args:
        connection: Session and address source
        entity: Monitored host or VM
        resolution: Tier being polled; sets the ``interval`` parameter
        start: First epoch second wanted

    Returns:
        The URL, or None when the session or host address is unknown
    """
    params = {
        "start": str(start),
        "cf": AVERAGE_CF,
        "interval": str(period_seconds_for(resolution)),
    }
    if entity.object_type == EntityType.HOST:
        params["host"] = "true"
    elif entity.object_type == EntityType.VM:
        params["vm_uuid"] = entity.uuid

    return _server_url(connection, entity, "/rrd_updates", params)
