import io
import json
import subprocess
import tarfile
import tempfile
import time
import unittest
import zipfile
from contextlib import ExitStack
from pathlib import Path
from unittest import mock

import requests

from netcheck.background import run_in_background
from netcheck.measurements import ping_runner, speedtest_runner, trace_runner
from netcheck.measurements.models import TIMEOUT
from netcheck.runner import RunInterrupted

from support import make_config, quiet_console


def _completed(stdout: str, returncode: int = 0, stderr: str = "") -> subprocess.CompletedProcess:
    return subprocess.CompletedProcess(args=[], returncode=returncode, stdout=stdout, stderr=stderr)


class PingProbeTests(unittest.TestCase):
    def test_sequential_single_packets_with_progress(self):
        replies = iter([12.0, None, 14.0, None])
        progress = []
        with mock.patch.object(ping_runner, "ping_once", side_effect=lambda target, timeout: next(replies)) as once:
            result = ping_runner.run_ping("1.1.1.1", 4, 500, progress=lambda sent, got: progress.append((sent, got)))

        self.assertEqual(once.call_count, 4)
        self.assertEqual(progress, [(1, 1), (2, 1), (3, 2), (4, 2)])
        self.assertEqual(result.loss_pct, 50.0)
        self.assertEqual(result.avg_ms, 13.0)

    def test_ping_once_requires_reply_time(self):
        with mock.patch.object(ping_runner.subprocess, "run", return_value=_completed("time=8.5 ms")):
            self.assertEqual(ping_runner.ping_once("1.1.1.1"), 8.5)
        with mock.patch.object(ping_runner.subprocess, "run", return_value=_completed("Destination host unreachable.")):
            self.assertIsNone(ping_runner.ping_once("192.0.2.1"))
        with mock.patch.object(ping_runner.subprocess, "run", return_value=_completed("", returncode=1)):
            self.assertIsNone(ping_runner.ping_once("192.0.2.1"))

    def test_single_echo_command_per_platform(self):
        with mock.patch.object(ping_runner.platform, "system", return_value="Linux"):
            self.assertEqual(ping_runner._ping_command("1.1.1.1", 1000), ["ping", "-c", "1", "-W", "1", "1.1.1.1"])
        with mock.patch.object(ping_runner.platform, "system", return_value="Windows"):
            self.assertEqual(ping_runner._ping_command("1.1.1.1", 750), ["ping", "-n", "1", "-w", "750", "1.1.1.1"])

    def test_missing_ping_tool_is_raised_to_the_caller(self):
        with mock.patch.object(ping_runner.subprocess, "run", side_effect=FileNotFoundError("ping")):
            with self.assertRaises(FileNotFoundError):
                ping_runner.run_ping("1.1.1.1", 3)


class TracerouteProbeTests(unittest.TestCase):
    def test_numeric_traceroute_is_parsed(self):
        output = " 1  192.168.1.1  0.5 ms  0.4 ms  0.3 ms\n 2  * * *\n"
        with mock.patch.object(trace_runner.platform, "system", return_value="Linux"), mock.patch.object(
            trace_runner.subprocess, "run", return_value=_completed(output)
        ) as run:
            trace = trace_runner.run_traceroute("1.1.1.1", max_hops=5)

        self.assertEqual(run.call_args[0][0], ["traceroute", "-n", "-q", "3", "-m", "5", "1.1.1.1"])
        self.assertEqual(trace.hop_count, 2)
        self.assertEqual(trace.hops[1].latency, TIMEOUT)
        self.assertEqual(trace.path, "192.168.1.1 > *")

    def test_windows_uses_tracert_without_dns(self):
        with mock.patch.object(trace_runner.platform, "system", return_value="Windows"):
            self.assertEqual(trace_runner.traceroute_command("8.8.8.8", 30), ["tracert", "-d", "-h", "30", "8.8.8.8"])

    def test_failure_without_output_raises(self):
        with mock.patch.object(
            trace_runner.subprocess, "run", return_value=_completed("", returncode=2, stderr="unknown host")
        ):
            with self.assertRaises(RuntimeError):
                trace_runner.run_traceroute("nowhere.invalid")


class SpeedtestProbeTests(unittest.TestCase):
    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config = make_config(Path(self._tmp.name), speedtest={"timeout_seconds": 30})
        self.binary = self.config.paths.bin_dir / "speedtest"

    def tearDown(self):
        self._tmp.cleanup()

    def test_server_id_and_json_flags_are_passed(self):
        payload = {
            "type": "result",
            "download": {"bandwidth": 1_310_720},
            "upload": {"bandwidth": 655_360},
            "ping": {"latency": 20.0, "jitter": 2.0},
            "server": {"id": 42, "name": "Example"},
        }
        with mock.patch.object(speedtest_runner.subprocess, "run", return_value=_completed(json.dumps(payload))) as run:
            result = speedtest_runner.run_speedtest(self.config, self.binary, "42")

        command = run.call_args[0][0]
        self.assertIn("--format=json", command)
        self.assertIn("--accept-license", command)
        self.assertIn("--accept-gdpr", command)
        self.assertEqual(command[-2:], ["--server-id", "42"])
        self.assertEqual(run.call_args[1]["stderr"], subprocess.STDOUT)
        self.assertEqual(result.download_mbps, 10.0)
        self.assertEqual(result.upload_mbps, 5.0)

    def test_non_zero_exit_raises(self):
        with mock.patch.object(speedtest_runner.subprocess, "run", return_value=_completed("Network unreachable", 2)):
            with self.assertRaises(RuntimeError):
                speedtest_runner.run_speedtest(self.config, self.binary)

    def test_invalid_output_raises(self):
        with mock.patch.object(speedtest_runner.subprocess, "run", return_value=_completed("not json at all")):
            with self.assertRaises(ValueError):
                speedtest_runner.run_speedtest(self.config, self.binary)

    def test_nearest_servers_by_distance(self):
        servers = [
            {"id": 1, "distance": 40.5},
            {"id": 2, "distance": 3.2},
            {"id": 3},
            {"id": 4, "distance": 12},
            {"id": 5, "distance": 7.7},
        ]
        self.assertEqual(speedtest_runner.select_nearest_servers(servers, 3), ["2", "5", "4"])
        self.assertEqual(speedtest_runner.select_nearest_servers(servers[:1], 3), ["1"])

    def test_existing_binary_is_used(self):
        self.binary.write_text("#!/bin/sh\n", encoding="utf-8")
        self.assertEqual(speedtest_runner.ensure_ookla_binary(self.config), self.binary)

    def test_missing_binary_without_download_raises(self):
        with mock.patch.object(speedtest_runner.shutil, "which", return_value=None):
            with self.assertRaises(FileNotFoundError):
                speedtest_runner.ensure_ookla_binary(self.config)


def _tgz(files):
    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as archive:
        for name, data in files.items():
            info = tarfile.TarInfo(name)
            info.size = len(data)
            archive.addfile(info, io.BytesIO(data))
    return buffer.getvalue()


def _zip(files):
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as archive:
        for name, data in files.items():
            archive.writestr(name, data)
    return buffer.getvalue()


class BinaryDownloadTests(unittest.TestCase):
    URL = "https://install.example.net/ookla-speedtest-linux-x86_64.tgz"

    def setUp(self):
        self._tmp = tempfile.TemporaryDirectory()
        self.config = make_config(
            Path(self._tmp.name), ookla={"auto_download": True, "urls": {"linux_x86_64": self.URL}}
        )
        self.patches = ExitStack()
        self.patches.enter_context(mock.patch.object(speedtest_runner.platform, "system", return_value="Linux"))
        self.patches.enter_context(
            mock.patch.object(
                type(self.config), "ookla_platform_key", new_callable=mock.PropertyMock, return_value="linux_x86_64"
            )
        )
        self.patches.enter_context(mock.patch.object(speedtest_runner.shutil, "which", return_value=None))
        self.binary = self.config.paths.bin_dir / "speedtest"

    def tearDown(self):
        self.patches.close()
        self._tmp.cleanup()

    def _respond(self, content=b"", error=None):
        response = mock.Mock(content=content)
        if error is not None:
            response.raise_for_status.side_effect = error
        return mock.patch.object(speedtest_runner.requests, "get", return_value=response)

    def test_missing_binary_is_downloaded_from_release_archive(self):
        payload = _tgz({"speedtest.md": b"readme", "speedtest": b"\x7fELF new", "speedtest.5": b"man"})
        with self._respond(payload) as get:
            installed = speedtest_runner.ensure_ookla_binary(self.config)

        get.assert_called_once_with(self.URL, timeout=120)
        self.assertEqual(installed, self.binary)
        self.assertEqual(self.binary.read_bytes(), b"\x7fELF new")
        self.assertFalse(self.binary.with_name("speedtest.part").exists())

    def test_refresh_replaces_installed_binary(self):
        self.binary.write_bytes(b"old")
        with self._respond(_tgz({"speedtest": b"new"})):
            speedtest_runner.download_ookla_binary(self.config)
        self.assertEqual(self.binary.read_bytes(), b"new")

    def test_failed_download_keeps_installed_binary(self):
        self.binary.write_bytes(b"old")
        with self._respond(error=requests.HTTPError("503 Server Error")):
            with self.assertRaises(requests.HTTPError):
                speedtest_runner.download_ookla_binary(self.config)
        self.assertEqual(self.binary.read_bytes(), b"old")

    def test_archive_without_executable_is_rejected(self):
        self.binary.write_bytes(b"old")
        with self._respond(_tgz({"README": b"nothing here"})):
            with self.assertRaises(RuntimeError):
                speedtest_runner.download_ookla_binary(self.config)
        self.assertEqual(self.binary.read_bytes(), b"old")

    def test_windows_zip_member_is_found_in_subfolder(self):
        payload = _zip({"ookla/speedtest.exe": b"MZ binary", "ookla/speedtest.md": b"readme"})
        self.assertEqual(speedtest_runner.extract_binary(payload, ".zip"), b"MZ binary")

    def test_platform_without_url_is_reported(self):
        self.config.ookla.urls.clear()
        with self.assertRaises(ValueError):
            speedtest_runner.download_ookla_binary(self.config)


class BackgroundTests(unittest.TestCase):
    def test_result_is_returned_after_polling(self):
        def slow(value):
            time.sleep(0.05)
            return value * 2

        self.assertEqual(run_in_background(slow, 21, label="slow", console=quiet_console(), poll_interval=0.01), 42)

    def test_worker_exception_is_reraised(self):
        def broken():
            raise RuntimeError("tool crashed")

        with self.assertRaises(RuntimeError):
            run_in_background(broken, label="broken", console=quiet_console(), poll_interval=0.01)

    def test_termination_in_worker_reaches_the_caller(self):
        def stopped():
            raise RunInterrupted("received signal 15")

        with self.assertRaises(RunInterrupted):
            run_in_background(stopped, label="stopped", console=quiet_console(), poll_interval=0.01)


if __name__ == "__main__":
    unittest.main()
