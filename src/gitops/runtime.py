"""
Process runner for allowlisted commands.

This module provides:
- Signal decoding for negative return codes
- ProcessResult, the uniform (stdout, stderr, exit_code) outcome
- LocalRunner, which executes a CommandRequest with no shell, a hard
  timeout and a per-stream output ceiling
- ProcessRunner protocol so callers can substitute a fake runner in tests

Every failure mode (could not start, timed out, killed by a signal) is
normalized to exit code 1 with a diagnostic appended to stderr. Nothing is
retried.
"""

import contextlib
import os
import signal
import subprocess
import threading
from dataclasses import dataclass
from typing import IO, Final, Protocol

from .commands import CommandRequest
from .errors import GitEnvironmentError

DEFAULT_MAX_OUTPUT_BYTES: Final[int] = 10 * 1024 * 1024
FAILURE_EXIT_CODE: Final[int] = 1

_READ_CHUNK_BYTES: Final[int] = 64 * 1024
# Grace period for reader threads after the process has exited or been killed
_DRAIN_GRACE_SECONDS: Final[float] = 2.0


def decode_signal(returncode: int) -> str | None:
    """
    Decode negative return codes to signal names.

    Args:
        returncode: Process return code (negative indicates signal)

    Returns:
        Signal name (e.g., "SIGTERM") or None if not a signal

    Examples:
        decode_signal(-15) -> "SIGTERM"
        decode_signal(-9) -> "SIGKILL"
        decode_signal(0) -> None
    """
    if returncode >= 0:
        return None

    sig_num = abs(returncode)
    try:
        return signal.Signals(sig_num).name
    except ValueError:
        return f"SIG{sig_num}"


@dataclass(slots=True, frozen=True)
class ProcessResult:
    """Immutable result of one CommandRequest. Produced exactly once."""

    exit_code: int
    stdout: str
    stderr: str
    timed_out: bool = False
    truncated: bool = False
    start_failed: bool = False
    signal_name: str | None = None

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class _BoundedReader:
    """Drain a pipe on a background thread, keeping at most limit bytes.

    Bytes beyond the limit are read and discarded so the child never blocks
    on a full pipe.
    """

    __slots__ = ("_chunks", "_limit", "_lock", "_size", "_stream", "_thread", "truncated")

    def __init__(self, stream: IO[bytes], limit: int) -> None:
        self._stream = stream
        self._limit = limit
        self._chunks: list[bytes] = []
        self._size = 0
        self._lock = threading.Lock()
        self.truncated = False
        self._thread = threading.Thread(target=self._drain, daemon=True)
        self._thread.start()

    def _drain(self) -> None:
        try:
            while chunk := self._stream.read1(_READ_CHUNK_BYTES):  # type: ignore[attr-defined]
                with self._lock:
                    remaining = self._limit - self._size
                    if remaining > 0:
                        kept = chunk[:remaining]
                        self._chunks.append(kept)
                        self._size += len(kept)
                    if len(chunk) > remaining:
                        self.truncated = True
        except (OSError, ValueError):
            # Pipe closed underneath us; whatever was read is kept
            pass
        finally:
            with contextlib.suppress(OSError):
                self._stream.close()

    def collect(self, timeout: float) -> str:
        self._thread.join(timeout)
        with self._lock:
            data = b"".join(self._chunks)
        return data.decode("utf-8", errors="replace")


class ProcessRunner(Protocol):
    """Protocol for command execution engines."""

    def run(self, request: CommandRequest) -> ProcessResult:
        """Execute request and return its normalized result. Never raises."""
        ...

    def check_executable(self, name: str) -> None:
        """
        Verify an external executable can be started.

        Raises:
            GitEnvironmentError: If the executable is not available
        """
        ...


class LocalRunner:
    """Runner that executes commands directly on the host, without a shell."""

    __slots__ = ("env", "max_output_bytes")

    def __init__(
        self,
        max_output_bytes: int = DEFAULT_MAX_OUTPUT_BYTES,
        env: dict[str, str] | None = None,
    ) -> None:
        self.max_output_bytes = max_output_bytes
        self.env = env

    def _build_env(self) -> dict[str, str]:
        # Inherit the host environment; never block on an interactive prompt
        return {**os.environ, "GIT_TERMINAL_PROMPT": "0", **(self.env or {})}

    def run(self, request: CommandRequest) -> ProcessResult:
        """Execute request.argv() in request.cwd.

        Returns:
            ProcessResult; exit_code is the executable's own code on normal
            termination and 1 when it could not start, timed out, or was
            killed by a signal.
        """
        argv = request.argv()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=request.cwd,
                env=self._build_env(),
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                # Own process group so a timeout also kills helpers (ssh, credential helpers)
                start_new_session=True,
            )
        except (OSError, ValueError) as e:
            return ProcessResult(
                exit_code=FAILURE_EXIT_CODE,
                stdout="",
                stderr=f"failed to start {argv[0]}: {e}",
                start_failed=True,
            )

        assert proc.stdout is not None and proc.stderr is not None
        out_reader = _BoundedReader(proc.stdout, self.max_output_bytes)
        err_reader = _BoundedReader(proc.stderr, self.max_output_bytes)

        timed_out = False
        try:
            returncode = proc.wait(timeout=request.timeout_seconds)
        except subprocess.TimeoutExpired:
            timed_out = True
            with contextlib.suppress(ProcessLookupError, PermissionError):
                os.killpg(proc.pid, signal.SIGKILL)
            returncode = proc.wait()

        stdout = out_reader.collect(_DRAIN_GRACE_SECONDS)
        stderr = err_reader.collect(_DRAIN_GRACE_SECONDS)
        truncated = out_reader.truncated or err_reader.truncated
        label = " ".join(argv[:2])

        notes: list[str] = []
        if truncated:
            notes.append(f"{label}: output truncated at {self.max_output_bytes} bytes")

        signal_name = decode_signal(returncode)
        exit_code = returncode
        if timed_out:
            notes.append(f"{label} timed out after {request.timeout_seconds:g}s")
            exit_code = FAILURE_EXIT_CODE
        elif signal_name:
            notes.append(f"{label} terminated by {signal_name}")
            exit_code = FAILURE_EXIT_CODE

        if notes:
            sep = "\n" if stderr and not stderr.endswith("\n") else ""
            stderr = stderr + sep + "\n".join(notes)

        return ProcessResult(
            exit_code=exit_code,
            stdout=stdout,
            stderr=stderr,
            timed_out=timed_out,
            truncated=truncated,
            signal_name=signal_name,
        )

    def check_executable(self, name: str) -> None:
        """
        Verify name is installed by running `name --version`.

        Raises:
            GitEnvironmentError: If the executable cannot be run
        """
        try:
            result = subprocess.run(
                [name, "--version"],
                capture_output=True,
                timeout=5,
                env=self._build_env(),
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            raise GitEnvironmentError(f"{name} not found in PATH") from e
        if result.returncode != 0:
            raise GitEnvironmentError(f"{name} not found in PATH")
