"""
Shared Blender process helpers.

Two ways of talking to headless Blender live here:

  - ``run_blender_command_sync`` / ``run_blender_command``: one-shot
    invocations (``--version`` checks) that return a structured result.
  - ``spawn_blender_bridge``: starts a long-lived ``-b --python`` process
    with piped stdin/stdout for the line-oriented render bridge.
"""

from __future__ import annotations

import asyncio
import logging
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

# Big enough for Blender's longest warning lines; replies themselves are tiny
STREAM_LIMIT = 1024 * 1024


@dataclass
class BlenderExecResult:
    success: bool
    returncode: int = -1
    stdout: str = ""
    stderr: str = ""
    elapsed: float = 0.0
    missing_executable: bool = False
    error: str = ""

    @property
    def version_line(self) -> str:
        for line in self.stdout.splitlines():
            if line.strip().startswith("Blender"):
                return line.strip()
        return ""


def run_blender_command_sync(
    blender_executable: str,
    args: list[str],
    timeout: int = 60,
) -> BlenderExecResult:
    """Run Blender once with ``args`` and capture its output."""
    t0 = time.time()
    try:
        result = subprocess.run(
            [blender_executable, *args],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except (FileNotFoundError, PermissionError) as e:
        logger.error("Blender executable unusable: %s (%s)", blender_executable, e)
        return BlenderExecResult(
            success=False,
            elapsed=time.time() - t0,
            missing_executable=True,
            error=str(e),
        )
    except subprocess.TimeoutExpired:
        logger.error("Blender TIMEOUT (%ds)", timeout)
        return BlenderExecResult(
            success=False,
            elapsed=time.time() - t0,
            error=f"timed out after {timeout}s",
        )

    return BlenderExecResult(
        success=result.returncode == 0,
        returncode=result.returncode,
        stdout=result.stdout or "",
        stderr=result.stderr or "",
        elapsed=time.time() - t0,
    )


async def run_blender_command(
    blender_executable: str,
    args: list[str],
    timeout: int = 60,
) -> BlenderExecResult:
    """Run ``run_blender_command_sync`` in the default thread pool."""
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(
        None,
        run_blender_command_sync,
        blender_executable,
        args,
        timeout,
    )


async def spawn_blender_bridge(
    blender_executable: str,
    script_path: Path,
) -> asyncio.subprocess.Process:
    """
    Start headless Blender running ``script_path`` with piped stdio.

    stderr is folded into stdout so a chatty renderer can never block on a
    full pipe nobody reads. Raises ``FileNotFoundError`` / ``PermissionError``
    unchanged when the executable cannot be started.
    """
    logger.info("Blender bridge: %s", script_path)
    return await asyncio.create_subprocess_exec(
        blender_executable,
        "-b",
        "--factory-startup",
        "--python",
        str(script_path),
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.STDOUT,
        limit=STREAM_LIMIT,
    )
