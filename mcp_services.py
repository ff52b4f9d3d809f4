"""Built-in MCP services: shell, fs and browser.

Handlers receive the call's optional string argument and report through the
interpreter. A failing side effect raises :class:`ServiceError` naming the
operation; the interpreter turns that into a fatal runtime error.
"""

from __future__ import annotations

import json
import logging
import os
from typing import Optional

from services import ExtensionAPI, McpContext, ServiceError, ShellCommandError

logger = logging.getLogger(__name__)

FILE_MODE = 0o644
DIR_MODE = 0o755


def _shell_run(ctx: McpContext, arg: Optional[str]) -> None:
    try:
        ctx.services.shell.run(arg or "", ctx.output)
    except ShellCommandError as exc:
        raise ServiceError(f"MCP command failed: {exc}") from exc


def _fs_write(ctx: McpContext, arg: Optional[str]) -> None:
    try:
        payload = json.loads(arg or "")
    except ValueError:
        return
    # Only a flat object of strings counts; anything else writes nothing.
    if not isinstance(payload, dict) or not all(isinstance(v, str) for v in payload.values()):
        return
    path = payload.get("path")
    if path is None:
        return
    content = payload.get("content", "")
    try:
        fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, FILE_MODE)
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as handle:
            handle.write(content)
    except OSError as exc:
        raise ServiceError(f"fs.write failed: {exc}") from exc
    ctx.report(f"  ✓ Created file: {path}")


def _fs_mkdir(ctx: McpContext, arg: Optional[str]) -> None:
    path = arg or ""
    try:
        os.makedirs(path, mode=DIR_MODE, exist_ok=True)
    except OSError as exc:
        raise ServiceError(f"fs.mkdir failed: {exc}") from exc
    ctx.report(f"  ✓ Created directory: {path}")


def _fs_read(ctx: McpContext, arg: Optional[str]) -> None:
    try:
        with open(arg or "", "rb") as handle:
            content = handle.read().decode("utf-8", errors="replace")
    except OSError as exc:
        raise ServiceError(f"fs.read failed: {exc}") from exc
    ctx.report(f"  File content:\n{content}")


def _browser(ctx: McpContext, arg: Optional[str]) -> None:
    logger.warning("browser MCP operations require external browser automation; skipping")


def register_builtin_services(ext: ExtensionAPI) -> None:
    ext.metadata(name="builtin", version="1.0.0")
    ext.register_mcp("shell", "run", _shell_run)
    ext.register_mcp("fs", "write", _fs_write)
    ext.register_mcp("fs", "mkdir", _fs_mkdir)
    ext.register_mcp("fs", "read", _fs_read)
    ext.register_mcp("browser", "*", _browser)
