import asyncio
import re

import pytest

from sandboxkit.archs.sandbox.base_sandbox import (
    CommandRecord,
    CommandStartError,
    SandboxError,
    SandboxExecutionError,
)
from sandboxkit.archs.sandbox.command_executor import CommandStore, exit_code_from_error, run_shell

from .fakes import FakeCommandExitError, FakeCommandResult, FakeSandbox, make_manager

SYNTHESIZED_ID = re.compile(r"cmd_\d+_[0-9a-z]{9}")


async def _settle(rounds: int = 10) -> None:
    for _ in range(rounds):
        await asyncio.sleep(0)


async def _manager_with_sandbox(monkeypatch: pytest.MonkeyPatch):
    manager, fake_class = make_manager(monkeypatch)
    info = await manager.create_session()
    sandbox: FakeSandbox = fake_class.sandboxes[info.sandbox_id]
    return manager, sandbox, info.sandbox_id


class TestExitCodeFromError:
    def test_exit_code_attribute(self):
        assert exit_code_from_error(FakeCommandExitError("", "", 3)) == 3

    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            ("process exited with status 2", 2),
            ("exit status 127", 127),
            ("Command exited with code 1 and error", 1),
            ("EXIT CODE 9", 9),
        ],
    )
    def test_message_patterns(self, message: str, expected: int):
        assert exit_code_from_error(RuntimeError(message)) == expected

    def test_unrelated_error(self):
        assert exit_code_from_error(RuntimeError("connection refused")) is None


class TestCommandStore:
    def test_add_and_get(self):
        store = CommandStore()
        record = CommandRecord(command_id="42", sandbox_id="sbx", command=["ls"])
        store.add(record)
        assert store.get("42") is record
        assert "42" in store
        assert len(store) == 1

    def test_duplicate_id_rejected(self):
        store = CommandStore()
        store.add(CommandRecord(command_id="42", sandbox_id="sbx", command=["ls"]))
        with pytest.raises(SandboxError, match="already recorded"):
            store.add(CommandRecord(command_id="42", sandbox_id="other", command=["ls"]))


class TestWaitMode:
    @pytest.mark.anyio
    async def test_successful_command(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        result = await manager.run_command(sandbox_id, "echo", ["hello", "world"], wait=True)

        assert SYNTHESIZED_ID.fullmatch(result.command_id)
        assert result.exit_code == 0
        assert result.stdout == "hello world\n"
        assert result.stderr == ""
        record = manager.get_command(result.command_id)
        assert record.command == ["echo", "hello", "world"]
        assert record.exit_code == 0
        assert not record.running

    @pytest.mark.anyio
    async def test_arguments_are_quoted_at_provider_boundary(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        result = await manager.run_command(sandbox_id, "echo", ["a b", "$HOME"], wait=True)

        assert sandbox.commands.lines[-1] == "echo 'a b' '$HOME'"
        assert result.stdout == "a b $HOME\n"

    @pytest.mark.anyio
    async def test_sudo_prefix(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        result = await manager.run_command(sandbox_id, "echo", ["root"], sudo=True, wait=True)

        assert sandbox.commands.lines[-1] == "sudo echo root"
        assert manager.get_command(result.command_id).command == ["sudo", "echo", "root"]

    @pytest.mark.anyio
    async def test_non_zero_exit_is_a_normal_result(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        result = await manager.run_command(sandbox_id, "sh", ["-c", "exit 3"], wait=True)

        assert result.exit_code == 3
        assert result.stderr == "exit 3"
        assert "exited with code 3" in (result.error_text or "")
        assert manager.get_command(result.command_id).exit_code == 3

    @pytest.mark.anyio
    async def test_exit_status_in_message_only(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.fail_on("make", RuntimeError("process failed: exit status 2"))

        result = await manager.run_command(sandbox_id, "make", ["build"], wait=True)

        assert result.exit_code == 2
        assert result.stdout == ""
        assert result.stderr == "process failed: exit status 2"
        assert result.error_text == "process failed: exit status 2"

    @pytest.mark.anyio
    async def test_other_provider_error(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.fail_on("ls", RuntimeError("websocket closed"))

        with pytest.raises(SandboxExecutionError, match="websocket closed"):
            await manager.run_command(sandbox_id, "ls", wait=True)
        assert len(manager.command_store) == 0

    @pytest.mark.anyio
    async def test_provider_returns_nothing(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.return_none = True

        with pytest.raises(CommandStartError):
            await manager.run_command(sandbox_id, "ls", wait=True)

    @pytest.mark.anyio
    async def test_cancelled_caller_still_records_command(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.foreground_gate = asyncio.Event()

        caller = asyncio.create_task(manager.run_command(sandbox_id, "echo", ["late"], wait=True))
        await _settle()
        caller.cancel()
        with pytest.raises(asyncio.CancelledError):
            await caller

        sandbox.commands.foreground_gate.set()
        await _settle()

        assert len(manager.command_store) == 1


class TestBackgroundMode:
    @pytest.mark.anyio
    async def test_returns_pid_and_completes_record(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        result = await manager.run_command(sandbox_id, "echo", ["bg"])

        assert result.command_id == "1000"
        assert result.exit_code is None
        assert result.stdout is None
        assert sandbox.commands.calls[-1][1]["background"] is True

        await _settle()
        record = manager.get_command("1000")
        assert record.exit_code == 0
        assert record.stdout.text == "bg\n"

    @pytest.mark.anyio
    async def test_record_is_live_while_running(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.hold_background = True

        result = await manager.run_command(sandbox_id, "npm", ["run", "dev"])
        handle = sandbox.commands.handles[-1]
        record = manager.get_command(result.command_id)

        handle.emit_stdout("ready on :3000\n")
        assert record.running
        assert record.stdout.text == "ready on :3000\n"

        handle.finish(exit_code=0)
        await _settle()
        assert record.exit_code == 0
        assert record.stdout.text == "ready on :3000\n"

    @pytest.mark.anyio
    async def test_background_non_zero_exit(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        result = await manager.run_command(sandbox_id, "false")
        await _settle()

        record = manager.get_command(result.command_id)
        assert record.exit_code == 1
        assert record.error_text

    @pytest.mark.anyio
    async def test_background_failure_without_exit_code(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.hold_background = True

        result = await manager.run_command(sandbox_id, "tail", ["-f", "log"])
        sandbox.commands.handles[-1].crash(RuntimeError("stream reset"))
        await _settle()

        record = manager.get_command(result.command_id)
        assert record.exit_code is None
        assert record.error_text == "stream reset"
        assert not record.running

    @pytest.mark.anyio
    async def test_missing_pid_synthesizes_id(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.next_pid = None

        result = await manager.run_command(sandbox_id, "echo", ["x"])

        assert SYNTHESIZED_ID.fullmatch(result.command_id)
        assert result.command_id in manager.command_store

    @pytest.mark.anyio
    async def test_repeated_pid_synthesizes_id(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)

        first = await manager.run_command(sandbox_id, "echo", ["one"])
        second = await manager.run_command(sandbox_id, "echo", ["two"])

        assert first.command_id == "1000"
        assert SYNTHESIZED_ID.fullmatch(second.command_id)
        assert len(manager.command_store) == 2

    @pytest.mark.anyio
    async def test_start_failure(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.fail_on("server", RuntimeError("rpc unavailable"))

        with pytest.raises(CommandStartError, match="rpc unavailable"):
            await manager.run_command(sandbox_id, "server")
        assert len(manager.command_store) == 0

    @pytest.mark.anyio
    async def test_start_returns_nothing(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        sandbox.commands.return_none = True

        with pytest.raises(CommandStartError):
            await manager.run_command(sandbox_id, "server")


class TestRunShell:
    @pytest.mark.anyio
    async def test_not_recorded(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        session = await manager.ensure_connected(sandbox_id)

        outcome = await run_shell(session.handle, "mkdir -p /app")

        assert outcome.exit_code == 0
        assert "/app" in sandbox.shell.dirs
        assert len(manager.command_store) == 0

    @pytest.mark.anyio
    async def test_non_zero_exit(self, monkeypatch: pytest.MonkeyPatch):
        manager, sandbox, sandbox_id = await _manager_with_sandbox(monkeypatch)
        session = await manager.ensure_connected(sandbox_id)
        sandbox.commands.fail_on("cat", FakeCommandResult(stderr="denied", exit_code=1))

        outcome = await run_shell(session.handle, "cat /etc/shadow")

        assert outcome.exit_code == 1
        assert outcome.stderr == "denied"
