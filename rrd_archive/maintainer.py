"""
Archive maintainer: keeps a monitored entity's multi-resolution archives fresh.

Lifecycle:
    STOPPED --start()--> LOADING_INITIAL --full dump merged--> POLLING --stop()--> STOPPED

The event loop the maintainer is started on owns the archives. Network fetches
and XML parsing run as one blocking unit on a worker thread pool; results come
back to the loop after the await and are applied there, so the archives need no
lock. Every request is tagged with the request token current at issue time and
a result whose token is stale (Stop/Start happened meanwhile) is dropped.
"""

import asyncio
import functools
import logging
import time
from concurrent.futures import Executor, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Callable, Dict, FrozenSet, Iterable, List, NamedTuple, Optional, Set, Tuple

from rrd_archive.config import MaintainerConfig
from rrd_archive.endpoints import (
    build_full_dump_url,
    build_update_url,
    object_type_name,
    update_start_time,
)
from rrd_archive.parsers import parse_full_dump, parse_updates
from rrd_archive.protocols import Connection, MonitoredEntity, Transport
from rrd_archive.schemas import (
    TIERS,
    DataPoint,
    MaintainerState,
    PointUpdate,
    Resolution,
    max_points_for,
    period_seconds_for,
)
from rrd_archive.store import DataArchive, DataSet
from rrd_archive.transport import HttpTransport

logger = logging.getLogger(__name__)

Subscriber = Callable[["ArchiveMaintainer"], None]


class _PollRequest(NamedTuple):
    resolution: Resolution
    url: Optional[str]
    previous_collected: Optional[float]


class _PollResult(NamedTuple):
    resolution: Resolution
    fetched: bool
    updates: List[PointUpdate]
    previous_collected: Optional[float]


# ============================================================================
# WORKER-THREAD UNITS OF WORK
# ============================================================================


def _fetch_full_dump(
    transport: Transport,
    url: Optional[str],
    object_type: str,
    object_uuid: str,
    selected_ids: FrozenSet[str],
) -> List[PointUpdate]:
    data = transport.fetch(url)
    return parse_full_dump(data, object_type, object_uuid, selected_ids)


def _fetch_updates(
    transport: Transport,
    requests: Tuple[_PollRequest, ...],
    object_type: str,
    object_uuid: str,
    selected_ids: FrozenSet[str],
) -> List[_PollResult]:
    results = []
    for request in requests:
        data = transport.fetch(request.url)
        updates = parse_updates(data, request.resolution, object_type, object_uuid, selected_ids)
        results.append(
            _PollResult(request.resolution, bool(data), updates, request.previous_collected)
        )
    return results


# ============================================================================
# MAINTAINER
# ============================================================================


class ArchiveMaintainer:
    """
    Maintains the five resolution archives of one monitored host or VM.

    Public methods must be called from the event loop that owns the
    maintainer. Subscribers are called on that loop after every successful
    merge (full load or poll).
    """

    def __init__(
        self,
        entity: MonitoredEntity,
        connection: Connection,
        transport: Optional[Transport] = None,
        executor: Optional[Executor] = None,
        config: Optional[MaintainerConfig] = None,
        clock: Callable[[], float] = time.time,
    ):
        """
        Initialize archive maintainer.

        Args:
            entity: Host or VM whose counters are archived
            connection: Session, address and clock-offset source
            transport: Blocking HTTP GET; an HttpTransport is created and owned if omitted
            executor: Worker pool, possibly shared between maintainers;
                a private pool is created and owned if omitted
            config: Polling and networking settings
            clock: Local UTC epoch seconds, injectable for tests
        """
        self.entity = entity
        self.connection = connection
        self.config = config or MaintainerConfig()
        self.name = f"ArchiveMaintainer[{object_type_name(entity)}:{entity.uuid}]"

        self._owns_transport = transport is None
        self.transport: Transport = transport or HttpTransport(self.config)
        self._owns_executor = executor is None
        self._executor: Executor = executor or ThreadPoolExecutor(
            max_workers=self.config.worker_threads, thread_name_prefix="rrd-archive"
        )
        self._clock = clock

        self._archives: Dict[Resolution, DataArchive] = {
            resolution: DataArchive(max_points_for(resolution)) for resolution in Resolution
        }
        self._last_collected: Dict[Resolution, Optional[float]] = dict.fromkeys(TIERS)
        self._data_source_ids: List[str] = []
        self._subscribers: List[Subscriber] = []

        self._request_token = 0
        self._running = False
        self._closed = False
        self._state = MaintainerState.STOPPED
        self._initial_load_in_flight = False
        self._poll_in_flight = False
        self._poll_task: Optional[asyncio.Task] = None
        self._pending: Set[asyncio.Task] = set()

        self._full_load_count = 0
        self._poll_count = 0
        self._discarded_count = 0
        self._error_count = 0
        self._last_error: Optional[str] = None
        self._last_merge_time: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Reset the archives and begin the full load; no-op if already running."""
        if self._closed:
            raise RuntimeError(f"{self.name} is closed")

        if self._running:
            logger.warning(f"{self.name} already running")
            return

        self._running = True
        self._request_token += 1
        self._initial_load_in_flight = False
        self._poll_in_flight = False
        self._cancel_poll_task()

        for resolution, archive in self._archives.items():
            archive.set_max_points(max_points_for(resolution))
            archive.clear()
        self._last_collected = dict.fromkeys(TIERS)

        self._state = MaintainerState.LOADING_INITIAL
        self._initial_load_in_flight = True
        token = self._request_token
        url = build_full_dump_url(self.connection, self.entity)
        if url is None:
            logger.warning(f"{self.name} has no session or host address; full load will be empty")

        self._spawn(
            self._initial_load(
                token,
                url,
                object_type_name(self.entity),
                self.entity.uuid,
                frozenset(self._data_source_ids),
            )
        )
        logger.info(
            f"Started {self.name} (token {token})",
            extra={"entity_uuid": self.entity.uuid, "request_token": token},
        )

    async def stop(self) -> None:
        """Halt polling and invalidate any request still in flight.

        Archived samples stay readable until the next start().
        """
        was_running = self._running
        self._running = False
        self._request_token += 1
        self._initial_load_in_flight = False
        self._poll_in_flight = False
        self._state = MaintainerState.STOPPED

        task = self._poll_task
        self._poll_task = None
        if task is not None and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

        if was_running:
            logger.info(
                f"Stopped {self.name}",
                extra={"entity_uuid": self.entity.uuid, "request_token": self._request_token},
            )

    async def close(self) -> None:
        """Stop, wait for worker tasks to finish, then release owned resources."""
        if self._closed:
            return

        await self.stop()
        await self.wait_idle()
        self._closed = True
        self._subscribers.clear()

        if self._owns_executor:
            self._executor.shutdown(wait=True)
        if self._owns_transport:
            self.transport.close()

        logger.debug(f"Closed {self.name}")

    async def wait_idle(self) -> None:
        """Wait until no full load or poll task is outstanding."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def __aenter__(self) -> "ArchiveMaintainer":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Full load
    # ------------------------------------------------------------------

    async def _initial_load(
        self,
        token: int,
        url: Optional[str],
        object_type: str,
        object_uuid: str,
        selected_ids: FrozenSet[str],
    ) -> None:
        loop = asyncio.get_running_loop()
        try:
            updates = await loop.run_in_executor(
                self._executor,
                functools.partial(
                    _fetch_full_dump, self.transport, url, object_type, object_uuid, selected_ids
                ),
            )
        except Exception as e:
            self._record_error(f"Full load failed: {e}")
            updates = []

        self._complete_initial_load(token, updates)

    def _complete_initial_load(self, token: int, updates: List[PointUpdate]) -> None:
        if not self._running or token != self._request_token:
            self._discarded_count += 1
            logger.debug(
                f"{self.name} discarded stale full load (token {token})",
                extra={"entity_uuid": self.entity.uuid, "request_token": token},
            )
            return

        newest_timestamp_ms = self._merge(updates)
        self._calibrate_clock(newest_timestamp_ms)

        now = self.server_now()
        for resolution in TIERS:
            self._last_collected[resolution] = now

        self._initial_load_in_flight = False
        self._state = MaintainerState.POLLING
        self._full_load_count += 1
        self._poll_task = asyncio.create_task(self._poll_loop())

        logger.info(
            f"{self.name} loaded {len(updates)} points from full dump",
            extra={"entity_uuid": self.entity.uuid, "request_token": token},
        )
        self._notify()

    def _calibrate_clock(self, newest_timestamp_ms: int) -> None:
        """Derive the server clock offset from the newest sample of a full load."""
        if newest_timestamp_ms <= 0:
            return

        derived_offset = int(self._clock()) - newest_timestamp_ms // 1000
        current_offset = self.connection.get_server_time_offset()
        if abs(derived_offset - current_offset) >= self.config.clock_skew_threshold_seconds:
            logger.info(
                f"{self.name} derived server time offset {derived_offset}s "
                f"(was {current_offset}s)"
            )
            self.connection.set_server_time_offset(derived_offset)

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    async def _poll_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self.config.poll_interval_seconds)
            try:
                self.collect_updates()
            except Exception as e:
                self._record_error(f"Poll tick failed: {e}")

    def collect_updates(self) -> bool:
        """
        Issue one incremental request covering every tier that is due.

        A tier is due once its native period has elapsed since it was last
        collected. Nothing is issued while the full load or a previous poll is
        still outstanding.

        Returns:
            True if a request was dispatched to the worker pool
        """
        if not self._running or self._state != MaintainerState.POLLING:
            return False
        if self._poll_in_flight or self._initial_load_in_flight:
            return False

        now = self.server_now()
        requests = []
        for resolution in TIERS:
            last = self._last_collected[resolution]
            if last is not None and now - last < period_seconds_for(resolution):
                continue
            start = update_start_time(resolution, last, now)
            url = build_update_url(self.connection, self.entity, resolution, start)
            requests.append(_PollRequest(resolution, url, last))
            self._last_collected[resolution] = now

        if not requests:
            return False

        self._poll_in_flight = True
        token = self._request_token
        self._spawn(
            self._poll(
                token,
                tuple(requests),
                object_type_name(self.entity),
                self.entity.uuid,
                frozenset(self._data_source_ids),
            )
        )
        logger.debug(
            f"{self.name} polling {', '.join(r.resolution.value for r in requests)}",
            extra={"entity_uuid": self.entity.uuid, "request_token": token},
        )
        return True

    async def _poll(
        self,
        token: int,
        requests: Tuple[_PollRequest, ...],
        object_type: str,
        object_uuid: str,
        selected_ids: FrozenSet[str],
    ) -> None:
        loop = asyncio.get_running_loop()
        try:
            results = await loop.run_in_executor(
                self._executor,
                functools.partial(
                    _fetch_updates, self.transport, requests, object_type, object_uuid, selected_ids
                ),
            )
        except Exception as e:
            self._record_error(f"Poll failed: {e}")
            results = [_PollResult(r.resolution, False, [], r.previous_collected) for r in requests]

        self._complete_poll(token, results)

    def _complete_poll(self, token: int, results: List[_PollResult]) -> None:
        if not self._running or token != self._request_token:
            self._discarded_count += 1
            logger.debug(
                f"{self.name} discarded stale poll (token {token})",
                extra={"entity_uuid": self.entity.uuid, "request_token": token},
            )
            return

        merged = 0
        for result in results:
            if not result.fetched and self.config.rollback_failed_polls:
                self._last_collected[result.resolution] = result.previous_collected
            merged += len(result.updates)
            self._merge(result.updates)

        self._poll_in_flight = False
        self._poll_count += 1
        logger.debug(f"{self.name} merged {merged} polled points")
        self._notify()

    # ------------------------------------------------------------------
    # Archive access
    # ------------------------------------------------------------------

    def _merge(self, updates: List[PointUpdate]) -> int:
        """Insert updates newest first; returns the newest timestamp seen.

        Parsers emit rows oldest first; the list is walked in reverse.
        """
        newest_timestamp_ms = 0
        for update in reversed(updates):
            self._archives[update.resolution].insert(
                update.data_source_id,
                DataPoint(timestamp_ms=update.timestamp_ms, value=update.value),
            )
            newest_timestamp_ms = max(newest_timestamp_ms, update.timestamp_ms)

        if updates:
            self._last_merge_time = datetime.now(timezone.utc)
        return newest_timestamp_ms

    def archive(self, resolution: Resolution) -> DataArchive:
        return self._archives[resolution]

    def get_data_set(self, data_source_id: str, resolution: Resolution) -> Tuple[DataPoint, ...]:
        """Copy of one id's history in a tier, newest first; empty if unknown."""
        return self._archives[resolution].get(data_source_id)

    def try_get_data_set(self, data_source_id: str, resolution: Resolution) -> Optional[DataSet]:
        """The live data set without copying, or None."""
        archive = self._archives.get(resolution)
        if archive is None:
            return None
        return archive.try_get(data_source_id)

    def set_data_source_ids(self, data_source_ids: Iterable[str]) -> None:
        """Restrict parsing to these canonical ids; empty means all.

        Takes effect for requests issued after the call.
        """
        self._data_source_ids = list(data_source_ids)

    def get_data_source_ids(self) -> List[str]:
        return list(self._data_source_ids)

    # ------------------------------------------------------------------
    # Clock
    # ------------------------------------------------------------------

    def server_now(self) -> float:
        """Current time on the server's clock, in epoch seconds."""
        return self._clock() - self.connection.get_server_time_offset()

    def graph_now(self) -> datetime:
        """Right edge for graph X axes: server time minus a safety margin."""
        return datetime.fromtimestamp(
            self.server_now() - self.config.graph_margin_seconds, tz=timezone.utc
        )

    # ------------------------------------------------------------------
    # Notifications and status
    # ------------------------------------------------------------------

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        """
        Register a callback fired after every merge.

        Returns:
            A function that removes the subscription
        """
        self._subscribers.append(callback)

        def unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self)
            except Exception as e:
                logger.error(f"{self.name} subscriber failed: {e}")

    def _spawn(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    def _cancel_poll_task(self) -> None:
        if self._poll_task is not None:
            self._poll_task.cancel()
            self._poll_task = None

    def _record_error(self, message: str) -> None:
        self._error_count += 1
        self._last_error = message
        logger.error(f"{self.name}: {message}")

    @property
    def state(self) -> MaintainerState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def request_token(self) -> int:
        return self._request_token

    def last_collected(self, resolution: Resolution) -> Optional[float]:
        """Server time a tier was last requested at, None if never."""
        return self._last_collected.get(resolution)

    def get_stats(self) -> dict:
        """
        Get maintainer statistics.

        Returns:
            Dictionary with lifecycle and collection counters
        """
        return {
            "name": self.name,
            "state": self._state.value,
            "request_token": self._request_token,
            "full_loads": self._full_load_count,
            "polls": self._poll_count,
            "discarded": self._discarded_count,
            "errors": self._error_count,
            "last_error": self._last_error,
            "last_merge": self._last_merge_time.isoformat() if self._last_merge_time else None,
            "data_sources": {
                resolution.value: len(self._archives[resolution]) for resolution in TIERS
            },
        }
