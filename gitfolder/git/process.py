"""Run an external executable with a timeout and a cap on buffered output."""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Mapping, Optional, Sequence

from gitfolder.errors import CommandError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_MS = 30_000
DEFAULT_MAX_BUFFER = 10 * 1024 * 1024
_READ_SIZE = 64 * 1024


@dataclass(frozen=True)
class CommandResult:
    """Output of one finished process. Text is decoded and stripped."""

    stdout: str
    stderr: str
    exit_code: int
    stdout_bytes: bytes = b""

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class _CappedBuffer:
    """Keeps at most `limit` bytes but counts everything it was offered."""

    def __init__(self, limit: int) -> None:
        self.limit = limit
        self.size = 0
        self._data = bytearray()

    def feed(self, chunk: bytes) -> None:
        self.size += len(chunk)
        room = self.limit - len(self._data)
        if room > 0:
            self._data.extend(chunk[:room])

    @property
    def exceeded(self) -> bool:
        return self.size > self.limit

    def getvalue(self) -> bytes:
        return bytes(self._data)


async def _drain(stream: Optional[asyncio.StreamReader], buf: _CappedBuffer) -> None:
    if stream is None:
        return
    while True:
        chunk = await stream.read(_READ_SIZE)
        if not chunk:
            return
        buf.feed(chunk)


async def run_process(
    executable: str,
    args: Sequence[str],
    *,
    cwd: Optional[str] = None,
    env: Optional[Mapping[str, str]] = None,
    timeout_ms: int = DEFAULT_TIMEOUT_MS,
    max_buffer: int = DEFAULT_MAX_BUFFER,
) -> CommandResult:
    """
    Spawn `executable args...` and wait for it to exit.
    A non-zero exit code is returned, not raised; interpretation belongs to the caller.
    Raises CommandError with code SPAWN_ERROR, TIMEOUT or BUFFER_EXCEEDED.
    """
    full_env = dict(os.environ)
    if env:
        full_env.update(env)
    started = time.monotonic()
    log.debug("Executing: %s %s (cwd=%s)", executable, " ".join(args), cwd)
    try:
        proc = await asyncio.create_subprocess_exec(
            executable,
            *args,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=cwd,
            env=full_env,
        )
    except OSError as e:
        log.error("Failed to spawn %s: %s", executable, e)
        raise CommandError(
            f"Failed to execute {executable}: {e}", "SPAWN_ERROR", stderr=str(e)
        ) from e

    out = _CappedBuffer(max_buffer)
    err = _CappedBuffer(max_buffer)
    try:
        await asyncio.wait_for(
            asyncio.gather(_drain(proc.stdout, out), _drain(proc.stderr, err), proc.wait()),
            timeout=timeout_ms / 1000,
        )
    except asyncio.TimeoutError:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
        await proc.wait()
        log.warning("%s %s killed after %dms timeout", executable, args[:1], timeout_ms)
        raise CommandError(
            f"{executable} timed out after {timeout_ms}ms",
            "TIMEOUT",
            stderr=err.getvalue().decode("utf-8", errors="replace").strip(),
        )

    exit_code = proc.returncode if proc.returncode is not None else 0
    log.debug(
        "%s finished in %dms exit=%d stdout=%d stderr=%d",
        executable,
        int((time.monotonic() - started) * 1000),
        exit_code,
        out.size,
        err.size,
    )
    if out.exceeded or err.exceeded:
        raise CommandError(
            f"{executable} output exceeded buffer limit of {max_buffer} bytes",
            "BUFFER_EXCEEDED",
        )
    raw = out.getvalue()
    return CommandResult(
        stdout=raw.decode("utf-8", errors="replace").strip(),
        stderr=err.getvalue().decode("utf-8", errors="replace").strip(),
        exit_code=exit_code,
        stdout_bytes=raw,
    )
