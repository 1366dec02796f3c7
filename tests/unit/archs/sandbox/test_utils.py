import re

import pytest

from sandboxkit.archs.sandbox.base_sandbox import SandboxTimeoutError
from sandboxkit.archs.sandbox.utils import double_quote, generate_command_id, poll_until, random_suffix


class TestPollUntil:
    @pytest.mark.anyio
    async def test_returns_first_non_none_value(self):
        calls = 0

        async def probe() -> str | None:
            nonlocal calls
            calls += 1
            return "ready" if calls == 3 else None

        assert await poll_until(probe, interval=0, max_attempts=5) == "ready"
        assert calls == 3

    @pytest.mark.anyio
    async def test_falsy_values_count_as_ready(self):
        async def probe() -> bool | None:
            return False

        assert await poll_until(probe, interval=0, max_attempts=1) is False

    @pytest.mark.anyio
    async def test_times_out_after_max_attempts(self):
        calls = 0

        async def probe() -> None:
            nonlocal calls
            calls += 1
            return None

        with pytest.raises(SandboxTimeoutError, match="filesystem after 4 attempts"):
            await poll_until(probe, interval=0, max_attempts=4, description="filesystem")
        assert calls == 4

    @pytest.mark.anyio
    async def test_rejects_non_positive_attempts(self):
        async def probe() -> int:
            return 1

        with pytest.raises(ValueError):
            await poll_until(probe, interval=0, max_attempts=0)


class TestIds:
    def test_command_id_format(self):
        assert re.fullmatch(r"cmd_\d{13}_[0-9a-z]{9}", generate_command_id())

    def test_command_ids_differ(self):
        assert len({generate_command_id() for _ in range(50)}) == 50

    def test_random_suffix_length(self):
        assert len(random_suffix(4)) == 4


class TestDoubleQuote:
    def test_plain_path(self):
        assert double_quote("/app/src/index.js") == '"/app/src/index.js"'

    def test_escapes_shell_specials(self):
        assert double_quote('a"b') == '"a\\"b"'
        assert double_quote("$HOME") == '"\\$HOME"'
        assert double_quote("`id`") == '"\\`id\\`"'
        assert double_quote("a\\b") == '"a\\\\b"'
