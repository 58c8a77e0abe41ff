"""
Headless Blender render backend.

One Blender process per session. The Python side writes JSON commands to
the process's stdin and reads marker-prefixed JSON replies from its stdout
(see ``bridge_script``); anything else Blender prints is logged at DEBUG.
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import shutil
import tempfile
from pathlib import Path
from typing import Any

from sequencer_shared.blender_exec import run_blender_command, spawn_blender_bridge
from sequencer_shared.files import sha256_bytes, to_data_uri

from ..errors import FrameRenderError, RenderBackendUnavailable, RenderSessionError
from ..schemas import MaterialPreset
from .bridge_script import BRIDGE_MARKER, build_bridge_script
from .render_backend import RenderBackend, RenderSession

logger = logging.getLogger(__name__)

SHUTDOWN_GRACE_SECONDS = 10


class BlenderRenderSession(RenderSession):
    def __init__(
        self,
        process: Any,
        work_dir: Path,
        frame_timeout: float | None = None,
    ):
        self.process = process
        self.work_dir = work_dir
        self.frame_timeout = frame_timeout or None
        self.blender_version = ""
        self._request_id = 0
        self._model_digest: str | None = None
        self._closed = False

    # ------------------------------------------------------------------
    # Bridge plumbing
    # ------------------------------------------------------------------

    async def _read_message(self) -> dict[str, Any]:
        while True:
            raw = await self.process.stdout.readline()
            if not raw:
                code = self.process.returncode
                raise RenderSessionError(f"renderer exited unexpectedly (code={code})")
            line = raw.decode("utf-8", errors="replace").rstrip()
            if not line.startswith(BRIDGE_MARKER):
                if line:
                    logger.debug("[blender] %s", line)
                continue
            try:
                return json.loads(line[len(BRIDGE_MARKER):])
            except ValueError:
                logger.warning("Unparseable bridge reply: %s", line[:200])

    async def _read_reply(self, request_id: int) -> dict[str, Any]:
        while True:
            message = await self._read_message()
            if message.get("id") == request_id:
                return message
            logger.debug("Discarding stale bridge reply: %s", message)

    async def _request(self, payload: dict[str, Any], timeout: float | None = None) -> dict[str, Any]:
        if self._closed:
            raise RenderSessionError("render session is closed")
        if self.process.returncode is not None:
            raise RenderSessionError(f"renderer is not running (code={self.process.returncode})")

        self._request_id += 1
        request_id = self._request_id
        line = json.dumps({"id": request_id, **payload}) + "\n"
        try:
            self.process.stdin.write(line.encode("utf-8"))
            await self.process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as e:
            raise RenderSessionError(f"renderer pipe closed: {e}") from e

        if timeout:
            try:
                return await asyncio.wait_for(self._read_reply(request_id), timeout=timeout)
            except asyncio.TimeoutError:
                raise FrameRenderError(f"no reply within {timeout:.0f}s")
        return await self._read_reply(request_id)

    async def wait_ready(self, timeout: float) -> None:
        try:
            message = await asyncio.wait_for(self._read_message(), timeout=timeout)
        except asyncio.TimeoutError:
            raise RenderSessionError(f"renderer not ready after {timeout:.0f}s")
        if message.get("event") != "ready":
            raise RenderSessionError(f"unexpected first bridge message: {message}")
        self.blender_version = str(message.get("blender", ""))
        logger.info("Render session ready (blender %s)", self.blender_version or "?")

    # ------------------------------------------------------------------
    # RenderSession
    # ------------------------------------------------------------------

    async def render_frame(
        self,
        model: bytes,
        material: MaterialPreset,
        angle_degrees: float,
    ) -> bytes:
        digest = sha256_bytes(model)
        if digest != self._model_digest:
            reply = await self._request(
                {"op": "load_model", "data_uri": to_data_uri(model), "digest": digest}
            )
            if not reply.get("ok"):
                raise FrameRenderError(f"model load failed: {reply.get('error')}")
            self._model_digest = digest

        output = self.work_dir / f"frame_{self._request_id + 1}.png"
        reply = await self._request(
            {
                "op": "render",
                "material": material.model_dump(mode="json"),
                "angle": float(angle_degrees),
                "output": str(output),
            },
            timeout=self.frame_timeout,
        )
        if not reply.get("ok"):
            raise FrameRenderError(str(reply.get("error") or "render failed"))

        path = Path(reply.get("path") or output)
        try:
            data = path.read_bytes()
        except OSError as e:
            raise FrameRenderError(f"rendered frame unreadable: {e}") from e
        finally:
            if path.exists():
                path.unlink()
        return data

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        try:
            if self.process.returncode is None:
                try:
                    self.process.stdin.write(b'{"op": "shutdown"}\n')
                    await self.process.stdin.drain()
                    self.process.stdin.close()
                except (BrokenPipeError, ConnectionResetError):
                    pass
                try:
                    await asyncio.wait_for(self.process.wait(), timeout=SHUTDOWN_GRACE_SECONDS)
                except asyncio.TimeoutError:
                    logger.warning("Renderer did not exit, killing pid=%s", self.process.pid)
                    self.process.kill()
                    await self.process.wait()
        finally:
            shutil.rmtree(self.work_dir, ignore_errors=True)


class BlenderRenderBackend(RenderBackend):
    name = "blender"

    def __init__(
        self,
        blender_executable: Path | str,
        resolution: int = 1024,
        startup_timeout: float = 120,
        frame_timeout: float | None = None,
    ):
        self.blender_executable = str(blender_executable)
        self.resolution = resolution
        self.startup_timeout = startup_timeout
        self.frame_timeout = frame_timeout

    def _check_executable(self) -> None:
        exe = Path(self.blender_executable)
        if not exe.is_file() or not os.access(exe, os.X_OK):
            raise RenderBackendUnavailable(
                f"Blender executable not found at {exe}. "
                "Install Blender or set SEQGEN_BLENDER_EXECUTABLE / BLENDER_PATH."
            )

    async def preflight(self) -> None:
        self._check_executable()
        result = await run_blender_command(self.blender_executable, ["--version"])
        if result.missing_executable or not result.success:
            raise RenderBackendUnavailable(
                f"Blender at {self.blender_executable} failed to start: "
                f"{result.error or result.stderr[-300:] or f'exit code {result.returncode}'}"
            )
        logger.info("Renderer: %s", result.version_line or self.blender_executable)

    async def open_session(self) -> BlenderRenderSession:
        self._check_executable()

        work_dir = Path(tempfile.mkdtemp(prefix="seqgen_session_"))
        script_path = work_dir / "bridge.py"
        script_path.write_text(build_bridge_script(str(work_dir), self.resolution))

        try:
            process = await spawn_blender_bridge(self.blender_executable, script_path)
        except (FileNotFoundError, PermissionError) as e:
            shutil.rmtree(work_dir, ignore_errors=True)
            raise RenderBackendUnavailable(
                f"Cannot launch Blender at {self.blender_executable}: {e}"
            ) from e

        session = BlenderRenderSession(process, work_dir, frame_timeout=self.frame_timeout)
        try:
            await session.wait_ready(self.startup_timeout)
        except BaseException:
            await session.close()
            raise
        return session
