"""
Tests for MaintainerConfig loading.
"""

import pytest
from pydantic import ValidationError

from rrd_archive.config import MaintainerConfig


class TestMaintainerConfig:
    """Test defaults, environment and YAML loading."""

    def test_defaults(self):
        config = MaintainerConfig()

        assert config.poll_interval_seconds == 5.0
        assert config.rollback_failed_polls is True
        assert config.request_timeout_seconds == 30.0
        assert config.verify_tls is False
        assert config.worker_threads == 1
        assert config.graph_margin_seconds == 15
        assert config.clock_skew_threshold_seconds == 2

    def test_from_env(self, monkeypatch):
        monkeypatch.setenv("RRD_ARCHIVE_POLL_INTERVAL", "2.5")
        monkeypatch.setenv("RRD_ARCHIVE_ROLLBACK_FAILED_POLLS", "no")
        monkeypatch.setenv("RRD_ARCHIVE_VERIFY_TLS", "TRUE")
        monkeypatch.setenv("RRD_ARCHIVE_WORKER_THREADS", "4")

        config = MaintainerConfig.from_env()

        assert config.poll_interval_seconds == 2.5
        assert config.rollback_failed_polls is False
        assert config.verify_tls is True
        assert config.worker_threads == 4
        assert config.request_timeout_seconds == 30.0

    def test_from_env_rejects_bad_number(self, monkeypatch):
        monkeypatch.setenv("RRD_ARCHIVE_REQUEST_TIMEOUT", "soon")

        with pytest.raises(ValueError):
            MaintainerConfig.from_env()

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "rrd.yaml"
        path.write_text("poll_interval_seconds: 1\nuser_agent: probe/1\n")

        config = MaintainerConfig.from_yaml(path)

        assert config.poll_interval_seconds == 1.0
        assert config.user_agent == "probe/1"

    def test_from_empty_yaml(self, tmp_path):
        path = tmp_path / "empty.yaml"
        path.write_text("")

        assert MaintainerConfig.from_yaml(path) == MaintainerConfig()

    def test_unknown_key_rejected(self, tmp_path):
        path = tmp_path / "rrd.yaml"
        path.write_text("poll_every: 3\n")

        with pytest.raises(ValidationError):
            MaintainerConfig.from_yaml(path)

    @pytest.mark.parametrize(
        "field,value",
        [
            ("poll_interval_seconds", 0),
            ("request_timeout_seconds", -1),
            ("worker_threads", 0),
            ("worker_threads", 65),
        ],
    )
    def test_out_of_range(self, field, value):
        with pytest.raises(ValidationError):
            MaintainerConfig(**{field: value})

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            MaintainerConfig.from_yaml(tmp_path / "missing.yaml")
