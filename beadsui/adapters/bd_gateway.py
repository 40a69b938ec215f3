"""Gateway to the ``bd`` command-line tool.

``bd`` owns the canonical issue store; every read and mutation goes
through one subprocess invocation here. Uses
``asyncio.create_subprocess_exec`` (argument vector, no shell) and
buffers both streams until the process exits. There is no retry and no
timeout: a hung ``bd`` holds its request open.
"""
from __future__ import annotations

import asyncio
import json
import logging
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Literal

logger = logging.getLogger(__name__)

# Distinct from bd's own exit codes; mirrors the shell convention.
COMMAND_NOT_FOUND_EXIT = 127


@dataclass
class ToolResult:
    """Raw outcome of one ``bd`` invocation."""
    exit_code: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.exit_code == 0

    def error_message(self, command: str) -> str:
        """Captured stderr, or a generic line when bd wrote nothing."""
        if self.stderr.strip():
            return self.stderr
        return f"{command} exited with code {self.exit_code}"


@dataclass
class JsonResult:
    """Decoded JSON outcome.

    ``kind`` separates a failed invocation ("tool") from a successful one
    whose stdout could not be used ("decode").
    """
    ok: bool
    data: Any = None
    error: str = ""
    kind: Literal["ok", "tool", "decode"] = "ok"

    @classmethod
    def success(cls, data: Any) -> JsonResult:
        return cls(ok=True, data=data)

    @classmethod
    def tool_failure(cls, message: str) -> JsonResult:
        return cls(ok=False, error=message, kind="tool")

    @classmethod
    def decode_failure(cls, message: str) -> JsonResult:
        return cls(ok=False, error=message, kind="decode")


class BdGateway:
    """Runs ``bd`` in a project directory and interprets its output."""

    def __init__(self, command: str = "bd") -> None:
        self._command = command

    @property
    def command(self) -> str:
        return self._command

    async def invoke(self, args: list[str], cwd: Path) -> ToolResult:
        """Run ``bd *args`` in *cwd* and wait for it to exit."""
        argv = [self._command, *args]
        logger.debug("bd invoke cwd=%s argv=%s", cwd, argv)
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                cwd=str(cwd),
            )
        except OSError as exc:
            # Any spawn failure means bd never ran.
            logger.warning("bd executable not runnable: %s (%s)", self._command, exc)
            if isinstance(exc, FileNotFoundError):
                message = f"Command not found: {self._command}"
            else:
                message = f"Could not run {self._command}: {exc.strerror or exc}"
            return ToolResult(
                exit_code=COMMAND_NOT_FOUND_EXIT,
                stdout="",
                stderr=message,
            )

        stdout_bytes, stderr_bytes = await proc.communicate()
        # A signal-terminated bd reports a negative code; still a failure.
        exit_code = proc.returncode if proc.returncode is not None else 1
        result = ToolResult(
            exit_code=exit_code,
            stdout=stdout_bytes.decode("utf-8", errors="replace"),
            stderr=stderr_bytes.decode("utf-8", errors="replace"),
        )
        if not result.ok:
            logger.info(
                "bd %s failed rc=%d cwd=%s stderr=%s",
                args[0] if args else "", exit_code, cwd, result.stderr.strip()[:200],
            )
        return result

    async def invoke_json(self, args: list[str], cwd: Path) -> JsonResult:
        """Run ``bd`` and decode stdout as JSON."""
        result = await self.invoke(args, cwd)
        if not result.ok:
            return JsonResult.tool_failure(result.error_message(self._command))
        body = result.stdout.strip()
        if not body:
            return JsonResult.decode_failure("Empty output from bd")
        try:
            return JsonResult.success(json.loads(body))
        except json.JSONDecodeError:
            logger.warning("bd %s produced non-JSON output: %s", args[:1], body[:200])
            return JsonResult.decode_failure("Invalid JSON output from bd")

    async def list_issues(self, cwd: Path) -> JsonResult:
        """Full issue list, keeping only records that carry a string id."""
        result = await self.invoke_json(["list", "--json"], cwd)
        if not result.ok:
            return result
        if not isinstance(result.data, list):
            return JsonResult.decode_failure("Expected a JSON array from bd list")
        items = [
            item for item in result.data
            if isinstance(item, dict) and isinstance(item.get("id"), str)
        ]
        dropped = len(result.data) - len(items)
        if dropped:
            logger.warning("Dropped %d malformed record(s) from bd list in %s", dropped, cwd)
        return JsonResult.success(items)

    async def show_issue(self, issue_id: str, cwd: Path) -> JsonResult:
        """One record's full detail. bd may wrap it in a single-element list."""
        result = await self.invoke_json(["show", issue_id, "--json"], cwd)
        if not result.ok:
            return result
        data = result.data
        if isinstance(data, list):
            data = data[0] if data else None
        if not isinstance(data, dict):
            return JsonResult.decode_failure(f"Unexpected bd show output for {issue_id}")
        return JsonResult.success(data)


def file_browser_command(path: Path, platform: str | None = None) -> list[str]:
    """Platform command that opens *path* in the host file browser."""
    platform = platform or sys.platform
    if platform == "darwin":
        return ["open", str(path)]
    if platform.startswith("win"):
        return ["explorer", str(path)]
    return ["xdg-open", str(path)]


_background_reapers: set[asyncio.Task] = set()


async def open_in_file_browser(path: Path) -> None:
    """Launch the file browser detached; the process is reaped in the background.

    Raises:
        OSError: if the opener cannot be started.
    """
    proc = await asyncio.create_subprocess_exec(
        *file_browser_command(path),
        stdin=asyncio.subprocess.DEVNULL,
        stdout=asyncio.subprocess.DEVNULL,
        stderr=asyncio.subprocess.DEVNULL,
        start_new_session=True,
    )
    task = asyncio.create_task(proc.wait())
    _background_reapers.add(task)
    task.add_done_callback(_background_reapers.discard)
