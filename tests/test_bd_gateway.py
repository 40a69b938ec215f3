"""Gateway tests run the real Python interpreter as the external tool."""
from __future__ import annotations

import json
import sys
from pathlib import Path
from tempfile import TemporaryDirectory

import pytest

from beadsui.adapters.bd_gateway import (
    COMMAND_NOT_FOUND_EXIT,
    BdGateway,
    ToolResult,
    file_browser_command,
)


def _py(code: str) -> list[str]:
    return ["-c", code]


class _CannedGateway(BdGateway):
    """Returns one canned result for every invocation."""

    def __init__(self, result: ToolResult) -> None:
        super().__init__("bd")
        self.result = result
        self.calls: list[list[str]] = []

    async def invoke(self, args, cwd):
        self.calls.append(list(args))
        return self.result


@pytest.mark.asyncio
async def test_invoke_captures_streams_and_exit_code() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        result = await gateway.invoke(
            _py("import sys; print('out'); print('err', file=sys.stderr); sys.exit(3)"),
            Path(tmpdir),
        )
        assert result.exit_code == 3
        assert result.stdout.strip() == "out"
        assert result.stderr.strip() == "err"
        assert not result.ok


@pytest.mark.asyncio
async def test_invoke_runs_in_project_directory() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        result = await gateway.invoke(_py("import os; print(os.getcwd())"), Path(tmpdir))
        assert Path(result.stdout.strip()).resolve() == Path(tmpdir).resolve()


@pytest.mark.asyncio
async def test_arguments_are_not_shell_interpreted() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        hostile = "$(touch pwned); `touch pwned2`"
        result = await gateway.invoke(
            _py("import sys; print(sys.argv[1])") + [hostile], Path(tmpdir),
        )
        assert result.stdout.strip() == hostile
        assert not (Path(tmpdir) / "pwned").exists()


@pytest.mark.asyncio
async def test_missing_executable_uses_sentinel_exit_code() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway("beads-ui-no-such-binary-for-tests")
        result = await gateway.invoke(["list", "--json"], Path(tmpdir))
        assert result.exit_code == COMMAND_NOT_FOUND_EXIT
        assert "Command not found" in result.stderr

        decoded = await gateway.invoke_json(["list", "--json"], Path(tmpdir))
        assert decoded.ok is False
        assert decoded.kind == "tool"


@pytest.mark.asyncio
async def test_invoke_json_decodes_stdout() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        result = await gateway.invoke_json(
            _py("import json; print(json.dumps([{'id': 'demo-1'}]))"), Path(tmpdir),
        )
        assert result.ok
        assert result.data == [{"id": "demo-1"}]


@pytest.mark.asyncio
async def test_invoke_json_nonzero_exit_returns_stderr() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        result = await gateway.invoke_json(
            _py("import sys; sys.stderr.write('Error: no database\\n'); sys.exit(1)"),
            Path(tmpdir),
        )
        assert result.ok is False
        assert result.kind == "tool"
        assert result.error == "Error: no database\n"


@pytest.mark.asyncio
async def test_invoke_json_blank_stderr_falls_back_to_exit_code() -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        result = await gateway.invoke_json(_py("import sys; sys.exit(4)"), Path(tmpdir))
        assert result.kind == "tool"
        assert "exited with code 4" in result.error


@pytest.mark.asyncio
@pytest.mark.parametrize("code", ["pass", "print('not json')"])
async def test_invoke_json_empty_or_garbage_is_decode_failure(code: str) -> None:
    with TemporaryDirectory() as tmpdir:
        gateway = BdGateway(sys.executable)
        result = await gateway.invoke_json(_py(code), Path(tmpdir))
        assert result.ok is False
        assert result.kind == "decode"


@pytest.mark.asyncio
async def test_list_issues_drops_records_without_id() -> None:
    items = [{"id": "demo-1"}, {"title": "no id"}, "junk", {"id": 5}, {"id": "demo-2"}]
    gateway = _CannedGateway(ToolResult(0, json.dumps(items), ""))
    result = await gateway.list_issues(Path("/tmp"))
    assert result.ok
    assert [item["id"] for item in result.data] == ["demo-1", "demo-2"]
    assert gateway.calls == [["list", "--json"]]


@pytest.mark.asyncio
async def test_list_issues_rejects_non_array() -> None:
    gateway = _CannedGateway(ToolResult(0, json.dumps({"id": "demo-1"}), ""))
    result = await gateway.list_issues(Path("/tmp"))
    assert result.ok is False
    assert result.kind == "decode"


@pytest.mark.asyncio
async def test_show_issue_unwraps_single_element_list() -> None:
    gateway = _CannedGateway(ToolResult(0, json.dumps([{"id": "demo-1", "title": "T"}]), ""))
    result = await gateway.show_issue("demo-1", Path("/tmp"))
    assert result.ok
    assert result.data == {"id": "demo-1", "title": "T"}
    assert gateway.calls == [["show", "demo-1", "--json"]]


@pytest.mark.asyncio
async def test_show_issue_empty_list_is_decode_failure() -> None:
    gateway = _CannedGateway(ToolResult(0, "[]", ""))
    result = await gateway.show_issue("demo-1", Path("/tmp"))
    assert result.ok is False
    assert result.kind == "decode"


@pytest.mark.parametrize(
    ("platform", "opener"),
    [("darwin", "open"), ("win32", "explorer"), ("linux", "xdg-open")],
)
def test_file_browser_command_per_platform(platform: str, opener: str) -> None:
    assert file_browser_command(Path("/tmp/demo"), platform=platform) == [opener, "/tmp/demo"]


@pytest.mark.asyncio
@pytest.mark.skipif(sys.platform == "win32", reason="exec format errors are POSIX-specific")
async def test_unloadable_executable_becomes_tool_failure() -> None:
    with TemporaryDirectory() as tmpdir:
        fake_bd = Path(tmpdir) / "bd"
        fake_bd.write_bytes(b"\x00\x01\x02 not a program")
        fake_bd.chmod(0o755)
        gateway = BdGateway(str(fake_bd))

        result = await gateway.invoke(["list", "--json"], Path(tmpdir))
        decoded = await gateway.list_issues(Path(tmpdir))

        assert result.exit_code == COMMAND_NOT_FOUND_EXIT
        assert result.stderr.startswith(f"Could not run {fake_bd}")
        assert decoded.ok is False
        assert decoded.kind == "tool"
