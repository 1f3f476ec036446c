"""Thin wrapper around the ``rclone`` command line tool.

Every invocation goes through :func:`_run_command` (buffered) or
:func:`_spawn` (streamed) so tests can substitute either seam without a real
rclone binary.
"""

from __future__ import annotations

import os
import re
import shutil
import subprocess
import threading
import time
from typing import Callable, Optional, Sequence

from ..cancellation import CancellationToken
from ..config import (
    GOOGLE_DRIVE_BATCH_FLAGS,
    GOOGLE_DRIVE_MARKERS,
    PROCESS_POLL_INTERVAL_SEC,
    RCLONE_EXECUTABLE,
)
from ..errors import (
    ExternalToolError,
    OperationCancelledError,
    RcloneNotFoundError,
    RemoteAuthError,
    RemoteNotFoundError,
    ToolTimeoutError,
)
from ..utils.logging import get_logger

logger = get_logger()

_REPEATED_SLASHES = re.compile(r"/{2,}")


def _windows_process_options() -> dict:
    if os.name != "nt":
        return {}
    startupinfo = subprocess.STARTUPINFO()
    startupinfo.dwFlags |= subprocess.STARTF_USESHOWWINDOW
    startupinfo.wShowWindow = subprocess.SW_HIDE
    return {
        "startupinfo": startupinfo,
        "creationflags": getattr(subprocess, "CREATE_NO_WINDOW", 0),
    }


def _run_command(command: Sequence[str], timeout: Optional[float] = None) -> subprocess.CompletedProcess[str]:
    """Execute *command* and return the completed process."""

    try:
        return subprocess.run(
            list(command),
            check=False,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            timeout=timeout,
            **_windows_process_options(),
        )
    except FileNotFoundError as exc:  # pragma: no cover - depends on environment
        raise RcloneNotFoundError("rclone executable not found on PATH") from exc
    except subprocess.TimeoutExpired as exc:
        raise ToolTimeoutError(f"rclone {command[1] if len(command) > 1 else ''} timed out after {timeout:.0f} seconds") from exc


def _spawn(command: Sequence[str]) -> subprocess.Popen[str]:
    """Start *command* with piped output for line-by-line consumption."""

    try:
        return subprocess.Popen(
            list(command),
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
            bufsize=1,
            **_windows_process_options(),
        )
    except FileNotFoundError as exc:  # pragma: no cover - depends on environment
        raise RcloneNotFoundError("rclone executable not found on PATH") from exc


# ---------------------------------------------------------------------------
# Remote specifications
# ---------------------------------------------------------------------------


def split_remote(remote: str) -> tuple[str, str]:
    """Return ``(name, base_path)`` for a ``name[:base]`` specification."""

    name, sep, base = remote.partition(":")
    if not sep:
        return remote, ""
    return name, base


def remote_name(remote: str) -> str:
    return split_remote(remote)[0]


def base_remote(remote: str) -> str:
    """Return ``name:``, the root of the remote without any base path."""

    return f"{remote_name(remote)}:"


def is_google_drive_remote(remote: str) -> bool:
    name = remote_name(remote).lower()
    return any(marker in name for marker in GOOGLE_DRIVE_MARKERS)


def _normalise(path: str) -> str:
    return _REPEATED_SLASHES.sub("/", path.replace("\\", "/"))


def build_remote_path(remote: str, sub_path: str = "") -> str:
    """Join *sub_path* onto the base path of *remote*.

    Backslashes become forward slashes, repeated slashes collapse and the
    result never contains ``::``. A base path that started with ``/`` stays
    absolute.

    >>> build_remote_path("A:base/", "x//y/")
    'A:base/x/y'
    >>> build_remote_path("sftp:/abs", "p")
    'sftp:/abs/p'
    """

    name, base = split_remote(remote)
    absolute = base.startswith("/")
    base = _normalise(base).strip("/")
    if absolute:
        base = "/" + base
    sub = _normalise(sub_path).strip("/")

    if not sub:
        return f"{name}:{base}"
    if not base:
        return f"{name}:{sub}"
    if base == "/":
        return f"{name}:/{sub}"
    return f"{name}:{base}/{sub}"


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class RcloneClient:
    """Assemble rclone argument vectors for one remote and run them.

    The client knows nothing about plans or manifests: it copies staged
    directories, copies single files, lists paths and runs checks.
    """

    def __init__(self, remote: str, *, parallel: int = 1, verbose: bool = False, executable: str = RCLONE_EXECUTABLE) -> None:
        self.remote = remote
        self.parallel = parallel
        self.verbose = verbose
        self.executable = executable
        self.google_drive = is_google_drive_remote(remote)

    def remote_path(self, sub_path: str = "") -> str:
        return build_remote_path(self.remote, sub_path)

    @property
    def base_remote(self) -> str:
        return base_remote(self.remote)

    def _command(self, *args: str) -> list[str]:
        return [self.executable, *args]

    def _run(self, *args: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess[str]:
        command = self._command(*args)
        logger.debug("Running %s", " ".join(command))
        return _run_command(command, timeout=timeout)

    @staticmethod
    def _failure(action: str, process: subprocess.CompletedProcess[str]) -> ExternalToolError:
        detail = (process.stderr or process.stdout or "").strip()
        return ExternalToolError(f"rclone {action} failed (exit code {process.returncode}): {detail}")

    # -- transfers -----------------------------------------------------

    def copy_args(
        self,
        source_dir: str,
        dest: str,
        *,
        ignore_existing: bool = False,
    ) -> list[str]:
        args = ["copy", source_dir, dest]
        if ignore_existing:
            args.append("--ignore-existing")
        args.append("--copy-links")
        if self.parallel > 1:
            args.append(f"--transfers={self.parallel}")
        if self.google_drive:
            args.extend(GOOGLE_DRIVE_BATCH_FLAGS)
        args.extend(["--progress", "--stats-one-line"])
        if self.verbose:
            args.append("--verbose")
        return args

    def copy(
        self,
        source_dir: str,
        dest: str,
        *,
        ignore_existing: bool = False,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Copy *source_dir* to *dest*, streaming stdout lines to *on_line*.

        Raises
        ------
        OperationCancelledError
            Raised when *token* is cancelled while rclone runs.
        ToolTimeoutError
            Raised when the process outlives *timeout* seconds.
        ExternalToolError
            Raised for a non-zero exit status.
        """

        args = self.copy_args(source_dir, dest, ignore_existing=ignore_existing)
        self.stream(args, token=token, timeout=timeout, on_line=on_line)

    def copyto(self, source: str, dest: str, *, ignore_existing: bool = False) -> None:
        args = ["copyto"]
        if ignore_existing:
            args.append("--ignore-existing")
        args.extend([source, dest])
        process = self._run(*args)
        if process.returncode != 0:
            raise self._failure("copyto", process)

    def stream(
        self,
        args: Sequence[str],
        *,
        token: Optional[CancellationToken] = None,
        timeout: Optional[float] = None,
        on_line: Optional[Callable[[str], None]] = None,
    ) -> None:
        """Run rclone with *args*, terminating it on cancellation or timeout."""

        if token is not None:
            token.raise_if_cancelled()
        command = self._command(*args)
        logger.debug("Running %s", " ".join(command))
        process = _spawn(command)

        stderr_lines: list[str] = []
        stop = threading.Event()
        outcome: dict[str, bool] = {"timed_out": False, "cancelled": False}
        started = time.monotonic()

        def _drain_stderr() -> None:
            if process.stderr is None:
                return
            for line in process.stderr:
                stderr_lines.append(line)

        def _watch() -> None:
            while not stop.wait(PROCESS_POLL_INTERVAL_SEC):
                if process.poll() is not None:
                    return
                if token is not None and token.cancelled:
                    outcome["cancelled"] = True
                elif timeout is not None and time.monotonic() - started > timeout:
                    outcome["timed_out"] = True
                else:
                    continue
                process.terminate()
                try:
                    process.wait(timeout=5)
                except subprocess.TimeoutExpired:
                    process.kill()
                return

        stderr_thread = threading.Thread(target=_drain_stderr, daemon=True)
        watcher = threading.Thread(target=_watch, daemon=True)
        stderr_thread.start()
        watcher.start()
        try:
            if process.stdout is not None:
                for raw in process.stdout:
                    line = raw.rstrip("\r\n")
                    logger.debug("rclone output: %s", line)
                    if on_line is not None:
                        on_line(line)
            returncode = process.wait()
        finally:
            stop.set()
            watcher.join()
            stderr_thread.join(timeout=5)

        stderr = "".join(stderr_lines).strip()
        if outcome["cancelled"]:
            raise OperationCancelledError(token.reason if token is not None else "operation cancelled")
        if outcome["timed_out"]:
            raise ToolTimeoutError(f"batch upload timed out after {timeout:.0f} seconds")
        if returncode != 0:
            if stderr:
                logger.error("rclone stderr output: %s", stderr)
            raise ExternalToolError(f"rclone {args[0]} failed (exit code {returncode}): {stderr}")
        if stderr:
            logger.debug("rclone stderr output (success case): %s", stderr)

    # -- listings and checks -------------------------------------------

    def lsf(
        self,
        path: str,
        *,
        recursive: bool = False,
        max_depth: Optional[int] = None,
        files_only: bool = False,
    ) -> list[str]:
        """Return the entries below *path*, one relative name per item."""

        args = ["lsf", path]
        if recursive:
            args.append("-R")
        if files_only:
            args.append("--files-only")
        if max_depth is not None:
            args.extend(["--max-depth", str(max_depth)])
        if self.google_drive:
            args.append("--fast-list")
        process = self._run(*args)
        if process.returncode != 0:
            raise self._failure("lsf", process)
        return [line.strip() for line in process.stdout.splitlines() if line.strip()]

    def lsd(self, path: str) -> str:
        process = self._run("lsd", path)
        if process.returncode != 0:
            raise self._failure("lsd", process)
        return process.stdout.strip()

    def check(self, source: str, dest: str, *, one_way: bool = False) -> None:
        """Raise :class:`ExternalToolError` unless *dest* matches *source*.

        With *one_way* only files present in *source* are compared.
        """

        args = ["check", source, dest]
        if one_way:
            args.append("--one-way")
        args.append("--copy-links")
        process = self._run(*args)
        if process.returncode != 0:
            raise self._failure("check", process)

    def listremotes(self) -> list[str]:
        process = self._run("listremotes")
        if process.returncode != 0:
            raise self._failure("listremotes", process)
        return [line.strip() for line in process.stdout.splitlines() if line.strip()]

    def version(self) -> str:
        process = self._run("version")
        if process.returncode != 0:
            raise self._failure("version", process)
        return process.stdout


# ---------------------------------------------------------------------------
# Startup validation
# ---------------------------------------------------------------------------


def validate_rclone_installation(client: RcloneClient) -> str:
    """Return the ``rclone version`` output after checking the binary exists."""

    if shutil.which(client.executable) is None:
        raise RcloneNotFoundError("rclone not found in PATH - install it from https://rclone.org/install/")
    try:
        output = client.version()
    except ExternalToolError as exc:
        raise ExternalToolError(f"failed to get rclone version: {exc}") from exc
    if "rclone" not in output:
        raise ExternalToolError(f"unexpected rclone version output: {output.strip()}")
    logger.debug("Validated rclone installation: %s", output.strip().splitlines()[0])
    return output


def validate_remote(client: RcloneClient) -> None:
    """Raise :class:`RemoteNotFoundError` unless rclone knows the client's remote name."""

    try:
        configured = set(client.listremotes())
    except ExternalToolError as exc:
        raise ExternalToolError(f"failed to list rclone remotes: {exc}") from exc
    wanted = client.base_remote
    if wanted not in configured:
        raise RemoteNotFoundError(f"remote '{wanted}' not found in configured remotes")
    logger.debug("Remote found: %s", wanted)


def validate_remote_authentication(client: RcloneClient) -> None:
    """List the remote root to prove the stored credentials still work."""

    if shutil.which(client.executable) is None:
        raise RcloneNotFoundError("rclone binary not found in PATH")
    try:
        client.lsf(client.base_remote, max_depth=1)
    except ExternalToolError as exc:
        raise RemoteAuthError(f"remote authentication failed for {client.base_remote}: {exc}") from exc
    logger.debug("Remote authentication successful: %s", client.base_remote)


__all__ = [
    "RcloneClient",
    "base_remote",
    "build_remote_path",
    "is_google_drive_remote",
    "remote_name",
    "split_remote",
    "validate_rclone_installation",
    "validate_remote",
    "validate_remote_authentication",
]
