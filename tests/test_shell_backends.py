"""Persistent session and one-shot runner against a real bash."""

from __future__ import annotations

import os
import shutil
import threading

import pytest

from conftest import FakeOracle, answered, plan, synthesis
from terminal_assistant.errors import CommandTimeoutError, SessionUnavailableError
from terminal_assistant.tools.oneshot_runner import OneShotRunner
from terminal_assistant.tools.shell_session import PersistentShellSession, SessionState

BASH = shutil.which("bash") or "/bin/bash"

pytestmark = pytest.mark.skipif(not os.path.exists(BASH), reason="bash is not available")


@pytest.fixture
def session():
    shell = PersistentShellSession(shell_path=BASH, timeout_sec=5.0, max_output_size=10000, kill_grace_sec=1.0)
    yield shell
    shell.stop()


def test_exported_variables_persist(session):
    session.execute("export X=1")
    assert session.execute("echo $X").stdout == "1"


def test_working_directory_persists(session, tmp_path):
    session.execute(f"cd {tmp_path}")
    assert session.execute("pwd").stdout == str(tmp_path)


def test_exit_codes_are_reported(session):
    assert session.execute("true").exit_code == 0
    assert session.execute("false").exit_code == 1
    assert session.execute("(exit 7)").exit_code == 7


def test_streams_are_kept_apart(session):
    output = session.execute("echo out; echo err >&2")
    assert output.stdout == "out"
    assert output.stderr == "err"
    assert output.combined == "out\nerr"


def test_output_without_trailing_newline(session):
    assert session.execute("printf abc").stdout == "abc"


def test_commands_reading_stdin_do_not_hang(session):
    output = session.execute("cat")
    assert output.exit_code == 0
    assert output.stdout == ""


def test_large_output_is_truncated(session):
    small = PersistentShellSession(shell_path=BASH, timeout_sec=5.0, max_output_size=100)
    try:
        output = small.execute("head -c 1000 /dev/zero | tr '\\0' a")
    finally:
        small.stop()
    assert output.truncated
    assert output.stdout.startswith("a" * 100)
    assert "output truncated" in output.stdout


def test_secrets_are_redacted(session):
    output = session.execute("echo password=hunter2; echo 'Authorization: Bearer abc.def-123'")
    assert "hunter2" not in output.stdout
    assert "abc.def-123" not in output.stdout
    assert "password=[REDACTED]" in output.stdout
    assert "Bearer [REDACTED]" in output.stdout


def test_syntax_error_returns_without_touching_session(session):
    session.execute("export KEEP=yes")
    broken = session.execute("echo 'unterminated")
    assert broken.exit_code == 2
    assert broken.stderr
    assert session.execute("echo $KEEP").stdout == "yes"


def test_timeout_then_fail_fast_until_restart():
    shell = PersistentShellSession(shell_path=BASH, timeout_sec=0.5, kill_grace_sec=1.0)
    try:
        with pytest.raises(CommandTimeoutError):
            shell.execute("sleep 5")
        assert shell.state == SessionState.TIMEOUT
        with pytest.raises(SessionUnavailableError):
            shell.execute("echo hi")
        shell.restart()
        assert shell.execute("echo hi").stdout == "hi"
    finally:
        shell.stop()


def test_shell_exit_marks_session_crashed(session):
    with pytest.raises(SessionUnavailableError):
        session.execute("exit 3")
    assert session.state == SessionState.CRASHED
    with pytest.raises(SessionUnavailableError):
        session.execute("echo hi")
    session.restart()
    assert session.execute("echo hi").stdout == "hi"


def test_restart_discards_shell_state(session):
    session.execute("export Y=2")
    session.restart()
    assert session.execute('echo "${Y:-unset}"').stdout == "unset"


def test_stopped_session_refuses_commands(session):
    session.execute("true")
    session.stop()
    with pytest.raises(SessionUnavailableError):
        session.execute("true")


def test_oneshot_runner_keeps_nothing_between_commands():
    runner = OneShotRunner(shell_path=BASH, timeout_sec=5.0)
    runner.run("export X=1")
    assert runner.run('echo "${X:-unset}"').stdout == "unset"
    output = runner.run("echo hi; exit 4")
    assert output.stdout == "hi"
    assert output.exit_code == 4


def test_oneshot_runner_times_out():
    runner = OneShotRunner(shell_path=BASH, timeout_sec=0.5)
    with pytest.raises(CommandTimeoutError):
        runner.run("sleep 5")


def test_interrupt_while_idle_respawns_the_shell(session):
    session.execute("export Z=1")
    session.interrupt()

    assert session.state == SessionState.RUNNING
    assert session.execute('echo "${Z:-unset}"').stdout == "unset"


def test_interrupt_kills_a_blocked_command(session):
    timer = threading.Timer(0.3, session.interrupt)
    timer.start()
    try:
        with pytest.raises(CommandTimeoutError):
            session.execute("sleep 5")
    finally:
        timer.cancel()
    session.restart()
    assert session.execute("echo back").stdout == "back"


def test_cancel_between_runs_leaves_the_session_usable(make_orchestrator, session):
    oracle = FakeOracle([plan("echo hello"), answered("hello"), synthesis("The shell printed hello.")])
    orchestrator = make_orchestrator(session, oracle)
    session.execute("true")
    orchestrator.cancel()

    result = orchestrator.run("say hello please")

    assert result.stop_reason == "complete"
    assert result.results[0].error is None
    assert result.results[0].stdout == "hello"
