"""Unit tests for the server process supervisors."""

import signal
import sys
import threading
import time

import pytest

from mgit_mcp.supervisor import (
    CliSupervisor,
    ProcessSupervisor,
    main_managed,
    normalize_exit_code,
)


def python_command(source):
    return [sys.executable, "-c", source]


def counting_command(tmp_path, *bodies):
    """Command whose n-th launch runs ``bodies[n]`` (the last one repeats)."""
    counter = tmp_path / "launches"
    script = tmp_path / "child.py"
    script.write_text(
        "import os, signal, sys, time\n"
        f"counter = {str(counter)!r}\n"
        f"bodies = {list(bodies)!r}\n"
        "n = int(open(counter).read()) if os.path.exists(counter) else 0\n"
        "open(counter, 'w').write(str(n + 1))\n"
        "exec(bodies[min(n, len(bodies) - 1)])\n",
        encoding="utf-8",
    )
    return [sys.executable, str(script)]


def in_background(target):
    thread = threading.Thread(target=target, daemon=True)
    thread.start()
    return thread


def wait_for(predicate, timeout=10.0):
    deadline = time.monotonic() + timeout
    while not predicate():
        if time.monotonic() >= deadline:
            raise AssertionError("condition not met in time")
        time.sleep(0.02)


def test_normalize_exit_code():
    assert normalize_exit_code(0) == 0
    assert normalize_exit_code(3) == 3
    assert normalize_exit_code(-9) == 137
    assert normalize_exit_code(-15) == 143


class TestProcessSupervisor:
    """Tests for managed mode."""

    def test_default_command_runs_the_server_module(self, config):
        supervisor = ProcessSupervisor(config)

        assert supervisor.command == [sys.executable, "-m", "mgit_mcp"]

    def test_child_env_carries_resolved_settings(self, config):
        config.project_name = "Shop"
        env = ProcessSupervisor(config).child_env()

        assert env["MGIT_CMD"] == "mgit"
        assert env["REPO_NAME"] == "demo"
        assert env["PROJECT_NAME"] == "Shop"
        assert env["MCP_LOG_DIR"] == str(config.log_dir)
        assert env["MCP_LOG_FILE"] == "mcp-mgit.log"

    def test_crashing_server_is_restarted_then_abandoned(self, config):
        config.max_restarts = 1
        supervisor = ProcessSupervisor(config, python_command("import sys; sys.exit(7)"))

        assert supervisor.supervise() == 1
        assert supervisor.launch_count == 2
        assert supervisor.restart_count == 1

    def test_clean_exit_ends_supervision(self, config):
        supervisor = ProcessSupervisor(config, python_command("pass"))

        assert supervisor.supervise() == 0
        assert supervisor.launch_count == 1
        assert supervisor.restart_count == 0

    def test_recovers_after_one_crash(self, config, tmp_path):
        command = counting_command(tmp_path, "sys.exit(1)", "sys.exit(0)")
        supervisor = ProcessSupervisor(config, command)

        assert supervisor.supervise() == 0
        assert supervisor.launch_count == 2
        assert supervisor.restart_count == 1

    def test_launch_failure_counts_as_crash(self, config, tmp_path):
        config.max_restarts = 0
        supervisor = ProcessSupervisor(config, [str(tmp_path / "missing-server")])

        assert supervisor.supervise() == 1
        assert supervisor.launch_count == 1

    def test_shutdown_forwards_signal(self, config):
        supervisor = ProcessSupervisor(config, python_command("import time; time.sleep(30)"))

        def stop():
            wait_for(lambda: supervisor.child is not None)
            supervisor.request_shutdown(signal.SIGTERM)

        in_background(stop)

        assert supervisor.supervise() == 0
        assert supervisor.launch_count == 1

    def test_shutdown_timeout_kills_unresponsive_server(self, config, tmp_path):
        config.shutdown_timeout = 0.3
        ready = tmp_path / "ready"
        supervisor = ProcessSupervisor(config, python_command(
            "import pathlib, signal, time\n"
            "signal.signal(signal.SIGTERM, signal.SIG_IGN)\n"
            f"pathlib.Path({str(ready)!r}).touch()\n"
            "time.sleep(30)\n"
        ))

        def stop():
            wait_for(ready.exists)
            supervisor.request_shutdown(signal.SIGTERM)

        in_background(stop)

        assert supervisor.supervise() == 1
        assert supervisor.child.returncode is not None

    def test_shutdown_without_server_exits_immediately(self, config):
        supervisor = ProcessSupervisor(config)

        with pytest.raises(SystemExit) as exc_info:
            supervisor.request_shutdown(signal.SIGINT)

        assert exc_info.value.code == 0

    def test_uncaught_exception_ends_supervision(self, config, monkeypatch):
        supervisor = ProcessSupervisor(config)
        monkeypatch.setattr(supervisor, "install_signal_handlers", lambda: None)
        monkeypatch.setattr(supervisor, "supervise", lambda: 1 / 0)

        assert supervisor.run() == 1


class TestCliSupervisor:
    """Tests for CLI mode."""

    @pytest.fixture
    def make_supervisor(self, config):
        def _make(command):
            supervisor = CliSupervisor(config, command)
            supervisor.exit_delay = 0
            return supervisor
        return _make

    def test_failure_code_is_propagated(self, make_supervisor):
        supervisor = make_supervisor(python_command("import sys; sys.exit(5)"))

        assert supervisor.supervise() == 5
        assert supervisor.launch_count == 1

    def test_clean_exit_restarts_server(self, make_supervisor, tmp_path):
        command = counting_command(tmp_path, "sys.exit(0)", "sys.exit(0)", "sys.exit(4)")
        supervisor = make_supervisor(command)

        assert supervisor.supervise() == 4
        assert supervisor.launch_count == 3

    def test_killed_server_reports_signal_status(self, make_supervisor):
        supervisor = make_supervisor(python_command(
            "import os, signal; os.kill(os.getpid(), signal.SIGKILL)"
        ))

        assert supervisor.supervise() == 128 + signal.SIGKILL

    def test_launch_failure_is_final(self, make_supervisor, tmp_path):
        supervisor = make_supervisor([str(tmp_path / "missing-server")])

        assert supervisor.supervise() == 1
        assert supervisor.launch_count == 1

    def test_restart_request_relaunches_server(self, make_supervisor, tmp_path):
        command = counting_command(tmp_path, "time.sleep(30)", "sys.exit(6)")
        supervisor = make_supervisor(command)

        def restart():
            wait_for(lambda: supervisor.child is not None)
            supervisor.request_restart()

        in_background(restart)

        assert supervisor.supervise() == 6
        assert supervisor.launch_count == 2
        assert supervisor.restart_count == 0

    def test_restart_request_without_server_is_ignored(self, make_supervisor):
        supervisor = make_supervisor(python_command("pass"))

        supervisor.request_restart()

        assert supervisor._restart_requested is False


def test_managed_entry_point_rejects_missing_repository(monkeypatch, tmp_path):
    monkeypatch.chdir(tmp_path)
    monkeypatch.delenv("REPO_NAME", raising=False)

    with pytest.raises(SystemExit) as exc_info:
        main_managed()

    assert exc_info.value.code == 1
