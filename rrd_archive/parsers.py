"""
Parsers for the two RRD wire formats.

``parse_full_dump`` reads the complete round-robin database exported by
``/host_rrds`` and ``/vm_rrds``; ``parse_updates`` reads the ``/rrd_updates``
export for a single tier. The schemas differ in how row timestamps are known
(computed from ``lastupdate`` versus an explicit ``<t>`` per row), so they are
kept as two separate functions producing the same PointUpdate tuples.

Both are pure and never raise: unknown elements are skipped and a truncated or
malformed document yields what was complete before the error. That is whole
rows for ``parse_updates`` and whole archives for ``parse_full_dump``, whose
row times depend on the archive's row count.
"""

import io
import logging
import math
import xml.etree.ElementTree as ET
from typing import Iterable, List, Optional

from rrd_archive.schemas import PointUpdate, Resolution, resolution_from_pdp_per_row

logger = logging.getLogger(__name__)

AVERAGE_CF = "AVERAGE"
_AVERAGE_PREFIX = AVERAGE_CF + ":"

_NAN_TOKENS = frozenset({"nan", "+nan", "-nan"})
_POSITIVE_INF_TOKENS = frozenset({"inf", "+inf", "infinity", "+infinity"})
_NEGATIVE_INF_TOKENS = frozenset({"-inf", "-infinity"})


# ============================================================================
# VALUES AND IDENTIFIERS
# ============================================================================


def parse_rrd_value(text: Optional[str]) -> Optional[float]:
    """
    Parse a numeric token as written by the RRD exporter.

    Recognises NaN and the infinity spellings case-insensitively, then falls
    back to an ordinary float literal.

    Returns:
        The parsed value (possibly non-finite), or None if unparsable
    """
    if text is None:
        return None

    token = text.strip()
    if not token:
        return None

    lowered = token.lower()
    if lowered in _NAN_TOKENS:
        return math.nan
    if lowered in _POSITIVE_INF_TOKENS:
        return math.inf
    if lowered in _NEGATIVE_INF_TOKENS:
        return -math.inf

    try:
        return float(token)
    except ValueError:
        return None


def normalize_value(value: float) -> float:
    """Replace non-finite values with the -1.0 "no data" sentinel."""
    return value if math.isfinite(value) else -1.0


def normalize_data_source_id(raw_id: str, object_type: str, object_uuid: str) -> str:
    """
    Bring a data-source id into ``objectType:objectUuid:counter`` form.

    Ids that already carry at least three segments are kept verbatim apart from
    the lower-cased object type; bare counter names are prefixed with the
    monitored entity's type and uuid.
    """
    data_source_id = raw_id.strip()
    if not data_source_id:
        return data_source_id

    parts = data_source_id.split(":")
    if len(parts) >= 3:
        return ":".join([parts[0].lower()] + parts[1:])

    if object_type and object_uuid:
        return f"{object_type}:{object_uuid}:{data_source_id}"

    return data_source_id


def _selected(data_source_id: str, selected_ids: frozenset) -> Optional[str]:
    # None keeps the column slot so later values stay aligned
    if not data_source_id:
        return None
    if selected_ids and data_source_id not in selected_ids:
        return None
    return data_source_id


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _parse_int(text: Optional[str]) -> int:
    try:
        return int((text or "").strip())
    except ValueError:
        return 0


# ============================================================================
# FULL DUMP (/host_rrds, /vm_rrds)
# ============================================================================


def _rra_updates(
    rows: List[List[Optional[float]]],
    names: List[Optional[str]],
    step: int,
    last_update: int,
    pdp_per_row: int,
) -> List[PointUpdate]:
    resolution = resolution_from_pdp_per_row(pdp_per_row)
    if resolution == Resolution.NONE or step <= 0 or not rows:
        return []

    # The newest row ends at lastupdate rounded down to the row spacing
    spacing = step * pdp_per_row
    newest = last_update - (last_update % spacing)
    first = newest - spacing * (len(rows) - 1)

    updates = []
    for row_index, row in enumerate(rows):
        timestamp_ms = (first + spacing * row_index) * 1000
        if timestamp_ms <= 0:
            continue
        for column, value in enumerate(row):
            if value is None or column >= len(names):
                continue
            data_source_id = names[column]
            if data_source_id is None:
                continue
            updates.append(
                PointUpdate(resolution, data_source_id, timestamp_ms, normalize_value(value))
            )
    return updates


def parse_full_dump(
    data: bytes,
    object_type: str,
    object_uuid: str,
    selected_ids: Optional[Iterable[str]] = None,
) -> List[PointUpdate]:
    """
    Parse a full RRD export into point updates for every known tier.

    Only AVERAGE archives are consumed; other consolidation functions and
    unrecognised ``pdp_per_row`` multipliers are skipped.

    Args:
        data: Raw XML body, empty on transport failure
        object_type: Lower-case type of the monitored entity ("host" or "vm")
        object_uuid: UUID of the monitored entity
        selected_ids: Canonical ids to keep; empty or None keeps everything

    Returns:
        Point updates in document order (oldest row first within a tier)
    """
    updates: List[PointUpdate] = []
    if not data:
        return updates

    selected = frozenset(selected_ids or ())
    names: List[Optional[str]] = []
    step = 0
    last_update = 0

    in_rra = False
    rra_average = False
    pdp_per_row = 0
    rows: List[List[Optional[float]]] = []
    row: Optional[List[Optional[float]]] = None

    try:
        for event, elem in ET.iterparse(io.BytesIO(data), events=("start", "end")):
            tag = _local_name(elem.tag)

            if event == "start":
                if tag == "rra":
                    in_rra = True
                    rra_average = False
                    pdp_per_row = 0
                    rows = []
                elif tag == "row" and in_rra and rra_average:
                    row = []
                continue

            if not in_rra:
                if tag == "name":
                    normalized = normalize_data_source_id(elem.text or "", object_type, object_uuid)
                    names.append(_selected(normalized, selected))
                elif tag == "step":
                    step = _parse_int(elem.text)
                elif tag == "lastupdate":
                    last_update = _parse_int(elem.text)
            elif tag == "cf":
                rra_average = (elem.text or "").strip().upper() == AVERAGE_CF
            elif tag == "pdp_per_row":
                pdp_per_row = _parse_int(elem.text)
            elif tag == "v" and row is not None:
                row.append(parse_rrd_value(elem.text))
            elif tag == "row" and row is not None:
                rows.append(row)
                row = None
            elif tag == "rra":
                if rra_average:
                    updates.extend(_rra_updates(rows, names, step, last_update, pdp_per_row))
                in_rra = False
                rows = []

            elem.clear()
    except ET.ParseError as e:
        logger.debug(f"Full RRD dump truncated or malformed, keeping {len(updates)} points: {e}")

    logger.debug(f"Parsed {len(updates)} points from full dump of {object_type}:{object_uuid}")
    return updates


# ============================================================================
# INCREMENTAL UPDATES (/rrd_updates)
# ============================================================================


def parse_updates(
    data: bytes,
    resolution: Resolution,
    object_type: str,
    object_uuid: str,
    selected_ids: Optional[Iterable[str]] = None,
) -> List[PointUpdate]:
    """
    Parse an ``rrd_updates`` export for one tier.

    The legend lists ``AVERAGE:<id>`` entries; each ``<row>`` carries its own
    ``<t>`` (epoch seconds) followed by one ``<v>`` per legend entry.

    Args:
        data: Raw XML body, empty on transport failure
        resolution: Tier the request was made for
        object_type: Lower-case type of the monitored entity
        object_uuid: UUID of the monitored entity
        selected_ids: Canonical ids to keep; empty or None keeps everything

    Returns:
        Point updates in document order
    """
    updates: List[PointUpdate] = []
    if not data:
        return updates

    selected = frozenset(selected_ids or ())
    entries: List[Optional[str]] = []
    row_time_ms = 0
    column = 0

    try:
        for event, elem in ET.iterparse(io.BytesIO(data), events=("start", "end")):
            tag = _local_name(elem.tag)

            if event == "start":
                if tag == "row":
                    row_time_ms = 0
                    column = 0
                continue

            if tag == "entry":
                entry = (elem.text or "").strip()
                if entry.upper().startswith(_AVERAGE_PREFIX):
                    entry = entry[len(_AVERAGE_PREFIX) :]
                normalized = normalize_data_source_id(entry, object_type, object_uuid)
                entries.append(_selected(normalized, selected))
            elif tag == "t":
                row_time_ms = _parse_int(elem.text) * 1000
            elif tag == "v":
                value = parse_rrd_value(elem.text)
                if value is not None and row_time_ms > 0 and column < len(entries):
                    data_source_id = entries[column]
                    if data_source_id is not None:
                        updates.append(
                            PointUpdate(
                                resolution, data_source_id, row_time_ms, normalize_value(value)
                            )
                        )
                column += 1

            elem.clear()
    except ET.ParseError as e:
        logger.debug(f"RRD update truncated or malformed, keeping {len(updates)} points: {e}")

    return updates
