"""
Pytest configuration and fixtures for rrd-archive tests.
"""

import os
import threading
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

import pytest

from rrd_archive.config import MaintainerConfig
from rrd_archive.connection import SessionConnection
from rrd_archive.schemas import HostRef, VmRef

# Divisible by 5, 60 and 3600 so every tier's newest row lands exactly on it
NOW = 1_202_400


def pytest_configure(config):
    """Keep environment-driven config out of the tests."""
    for key in list(os.environ):
        if key.startswith("RRD_ARCHIVE_"):
            del os.environ[key]


def build_full_dump(
    last_update: int,
    names: Sequence[str],
    rras: Iterable[Tuple[str, int, List[List[str]]]],
    step: int = 5,
) -> bytes:
    """Render a /host_rrds style document; rras are (cf, pdp_per_row, rows)."""
    parts = [f"<rrd><version>0003</version><step>{step}</step><lastupdate>{last_update}</lastupdate>"]
    for name in names:
        parts.append(
            f"<ds><name>{name}</name><type>GAUGE</type><minimal_heartbeat>300.0000</minimal_heartbeat>"
            "<min>0.0</min><max>Infinity</max><last_ds>0.0</last_ds></ds>"
        )
    for cf, pdp_per_row, rows in rras:
        parts.append(f"<rra><cf>{cf}</cf><pdp_per_row>{pdp_per_row}</pdp_per_row>")
        parts.append("<params><xff>0.5000</xff></params><cdp_prep>")
        for _ in names:
            parts.append(
                "<ds><primary_value>0.0</primary_value><secondary_value>0.0</secondary_value>"
                "<value>0.0</value><unknown_datapoints>0</unknown_datapoints></ds>"
            )
        parts.append("</cdp_prep><database>")
        for row in rows:
            parts.append("<row>" + "".join(f"<v>{v}</v>" for v in row) + "</row>")
        parts.append("</database></rra>")
    parts.append("</rrd>")
    return "".join(parts).encode()


def build_updates(entries: Sequence[str], rows: Iterable[Tuple[int, List[str]]], step: int = 5) -> bytes:
    """Render an /rrd_updates style document; rows are (epoch seconds, values)."""
    rows = list(rows)
    parts = [
        f"<xport><meta><start>0</start><step>{step}</step><end>0</end>"
        f"<rows>{len(rows)}</rows><columns>{len(entries)}</columns><legend>"
    ]
    parts.extend(f"<entry>{entry}</entry>" for entry in entries)
    parts.append("</legend></meta><data>")
    for t, values in rows:
        parts.append(f"<row><t>{t}</t>" + "".join(f"<v>{v}</v>" for v in values) + "</row>")
    parts.append("</data></xport>")
    return "".join(parts).encode()


class FakeTransport:
    """Transport double answering by URL path, optionally blocking until released."""

    def __init__(self):
        self.responses: Dict[str, bytes] = {}
        self.urls: List[Optional[str]] = []
        self.gates: Dict[str, threading.Event] = {}
        self.closed = False

    def gate(self, path: str) -> threading.Event:
        """Make fetches of a path block until the returned event is set."""
        event = threading.Event()
        self.gates[path] = event
        return event

    def fetch(self, url: Optional[str]) -> bytes:
        self.urls.append(url)
        if not url:
            return b""
        for path, event in self.gates.items():
            if path in url:
                event.wait(timeout=5)
        for path, body in self.responses.items():
            if path in url:
                return body
        return b""

    def close(self) -> None:
        self.closed = True

    def urls_for(self, path: str) -> List[str]:
        return [u for u in self.urls if u and path in u]


class FakeClock:
    """Settable epoch-seconds clock."""

    def __init__(self, now: float = NOW):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def fake_transport():
    return FakeTransport()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def host():
    return HostRef(uuid="h1", address="10.0.0.2")


@pytest.fixture
def vm():
    return VmRef(uuid="vm1", resident_on=HostRef(uuid="h1", address="10.0.0.2"))


@pytest.fixture
def connection():
    return SessionConnection("pool.example.com", port=80, session_id="OpaqueRef:s1")


@pytest.fixture
def quiet_config():
    """Config whose timer never fires during a test; polls are driven by hand."""
    return MaintainerConfig(poll_interval_seconds=3600)


@pytest.fixture
def full_dump_builder():
    return build_full_dump


@pytest.fixture
def updates_builder():
    return build_updates


@pytest.fixture
def now():
    return NOW
