"""
Tests for the command-line tool and its output formatting.
"""

import json
import logging
from unittest.mock import Mock

import pytest
import yaml

from rrd_archive import cli
from rrd_archive.maintainer import ArchiveMaintainer
from rrd_archive.output import formatter
from rrd_archive.schemas import DataPoint, Resolution


class TestOutputFormatter:
    """Test table, JSON and YAML rendering."""

    ROWS = [{"data_source": "host:h1:cpu0", "value": 0.123456, "points": 3}]

    def test_table(self):
        output = formatter.format_output(self.ROWS, "table")

        assert "data_source" in output
        assert "host:h1:cpu0" in output
        assert "0.1235" in output

    def test_table_empty(self):
        assert formatter.format_output([], "table") == "No data available."

    def test_dict_as_key_value_table(self):
        output = formatter.format_output({"state": "polling"}, "table")

        assert "key" in output
        assert "polling" in output

    def test_json(self):
        assert json.loads(formatter.format_output(self.ROWS, "JSON")) == self.ROWS

    def test_yaml(self):
        assert yaml.safe_load(formatter.format_output(self.ROWS, "yaml")) == self.ROWS

    def test_unknown_format(self):
        with pytest.raises(ValueError):
            formatter.format_output(self.ROWS, "xml")


class TestParser:
    """Test argument parsing."""

    def test_watch_host(self):
        args = cli.build_parser().parse_args(
            ["watch", "pool", "--session-id", "s", "--host-uuid", "h1", "--data-source", "a"]
        )

        assert args.command == "watch"
        assert args.port == 443
        assert args.resolution == "five_second"
        assert args.data_sources == ["a"]
        assert args.updates == 1

    def test_host_and_vm_exclusive(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(
                ["watch", "pool", "--session-id", "s", "--host-uuid", "h", "--vm-uuid", "v"]
            )

    def test_target_required(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(["watch", "pool", "--session-id", "s"])

    def test_none_resolution_not_offered(self):
        with pytest.raises(SystemExit):
            cli.build_parser().parse_args(
                ["watch", "pool", "--session-id", "s", "--host-uuid", "h", "--resolution", "none"]
            )


class TestLatestSamples:
    def test_one_row_per_data_source(self, host, connection, fake_transport):
        maintainer = ArchiveMaintainer(host, connection, transport=fake_transport)
        archive = maintainer.archive(Resolution.ONE_MINUTE)
        archive.insert("host:h1:cpu0", DataPoint(timestamp_ms=60_000, value=0.5))
        archive.insert("host:h1:cpu0", DataPoint(timestamp_ms=120_000, value=0.75))

        rows = cli.latest_samples(maintainer, Resolution.ONE_MINUTE)

        assert rows == [
            {
                "data_source": "host:h1:cpu0",
                "timestamp": "1970-01-01T00:02:00+00:00",
                "value": 0.75,
                "points": 2,
            }
        ]
        maintainer._executor.shutdown()


class TestMain:
    """Test main() exit codes and the watch command."""

    @pytest.fixture(autouse=True)
    def no_logging_setup(self, monkeypatch):
        monkeypatch.setattr(cli, "setup_logging", Mock())

    def test_no_command(self, capsys):
        assert cli.main([]) == cli.EXIT_INVALID_ARGS

    def test_missing_config_file(self, tmp_path):
        argv = ["--config", str(tmp_path / "nope.yaml")]
        argv += ["watch", "pool", "--session-id", "s", "--host-uuid", "h1"]

        assert cli.main(argv) == cli.EXIT_INVALID_ARGS

    def test_invalid_config_value(self, tmp_path):
        path = tmp_path / "rrd.yaml"
        path.write_text("worker_threads: 0\n")
        argv = ["--config", str(path), "watch", "pool", "--session-id", "s", "--host-uuid", "h1"]

        assert cli.main(argv) == cli.EXIT_INVALID_ARGS

    @pytest.fixture
    def patched_maintainer(self, monkeypatch, fake_transport, full_dump_builder, clock, now):
        """Route the watch command's maintainer to the fake transport."""
        fake_transport.responses["/host_rrds"] = full_dump_builder(
            now, ["cpu0"], [("AVERAGE", 1, [["0.5"]])]
        )

        def make_maintainer(entity, connection, config):
            return ArchiveMaintainer(
                entity, connection, transport=fake_transport, config=config, clock=clock
            )

        monkeypatch.setattr(cli, "ArchiveMaintainer", make_maintainer)
        return fake_transport

    @staticmethod
    def watch_args(*extra):
        argv = ["watch", "pool", "--port", "80", "--session-id", "s", "--host-uuid", "h1"]
        argv += ["--address", "10.0.0.2", *extra]
        return cli.build_parser().parse_args(argv)

    @pytest.mark.asyncio
    async def test_watch_prints_after_load(self, patched_maintainer, capsys, quiet_config):
        result = await cli.run_watch(self.watch_args("--format", "json"), quiet_config)

        assert result == cli.EXIT_SUCCESS
        rows = json.loads(capsys.readouterr().out)
        assert rows[0]["data_source"] == "host:h1:cpu0"
        assert rows[0]["value"] == 0.5
        assert patched_maintainer.urls[0].startswith("http://10.0.0.2:80/host_rrds?")

    @pytest.mark.asyncio
    async def test_watch_with_debug_logging(
        self, patched_maintainer, capsys, caplog, quiet_config
    ):
        with caplog.at_level(logging.DEBUG):
            result = await cli.run_watch(self.watch_args("--format", "json"), quiet_config)

        assert result == cli.EXIT_SUCCESS
        assert json.loads(capsys.readouterr().out)[0]["value"] == 0.5
        started = [r for r in caplog.records if r.getMessage().startswith("Started")]
        assert started
        assert started[0].entity_uuid == "h1"
        assert started[0].pool_host == "pool"

    @pytest.mark.asyncio
    async def test_watch_prints_stats(self, patched_maintainer, capsys, quiet_config):
        result = await cli.run_watch(self.watch_args("--stats"), quiet_config)

        assert result == cli.EXIT_SUCCESS
        output = capsys.readouterr().out
        assert "host:h1:cpu0" in output
        assert "full_loads" in output
        assert "ArchiveMaintainer[host:h1]" in output
