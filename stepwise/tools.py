"""Action implementations, confined to a single project root."""

import os
import subprocess
import sys
import threading
from pathlib import Path

from . import actions
from .conversation import ActionResult, ErrorKind
from .errors import PathEscapeError

COMMAND_TIMEOUT = 60  # seconds
BINARY_CHECK_BYTES = 8 * 1024  # 8 KB
MAX_CAPTURE_BYTES = 1024 * 1024  # per stream
EMPTY_DIRECTORY = "(empty directory)"
NO_OUTPUT = "(no output)"

_KILL_WAIT_TIMEOUT = 5  # seconds to wait for process to die after kill signals


def safe_resolve(file_path: str, root: Path) -> Path:
    """Resolve file_path against root, refusing anything that lands outside it.

    Symlinks are resolved on both sides, so a link pointing out of the root
    is rejected just like `..` traversal or an absolute path.

    Raises:
        PathEscapeError: If the resolved path is not inside root.
    """
    base = Path(root).resolve()
    resolved = (base / file_path).resolve()
    if not resolved.is_relative_to(base):
        raise PathEscapeError(
            f"Path traversal not allowed: {file_path!r} resolves outside {base}"
        )
    return resolved


def _coerce_lines(value) -> int:
    """Loose line-count parsing: anything unusable falls back to the default."""
    if isinstance(value, bool):
        return actions.DEFAULT_LINES
    try:
        n = int(value)
    except (TypeError, ValueError):
        return actions.DEFAULT_LINES
    return n if n > 0 else actions.DEFAULT_LINES


def _coerce_bool(value) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("1", "true", "yes")
    return bool(value)


def _read_text(resolved: Path, file_path: str) -> ActionResult | str:
    """Read a text file, or return the failure result explaining why not."""
    if not resolved.exists():
        return ActionResult.failure(ErrorKind.NOT_FOUND, f"File not found: {file_path}")
    if resolved.is_dir():
        return ActionResult.failure(
            ErrorKind.IO_ERROR, f"Path is a directory, not a file: {file_path}"
        )
    data = resolved.read_bytes()
    if b"\x00" in data[:BINARY_CHECK_BYTES]:
        return ActionResult.failure(
            ErrorKind.IO_ERROR, f"Binary file detected: {file_path}"
        )
    try:
        # Decoded from raw bytes so \r\n and lone \r come back untouched.
        return data.decode("utf-8")
    except UnicodeDecodeError as exc:
        return ActionResult.failure(
            ErrorKind.IO_ERROR, f"Failed to decode {file_path} as UTF-8: {exc}"
        )


def _split_lines(text: str) -> list[str]:
    """Split on \\n only; a trailing newline does not start another line."""
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return lines


def _kill_process_tree(proc: subprocess.Popen) -> None:
    """Kill a process and its descendants.

    On Unix the command runs in its own session, so the whole process group
    goes. On Windows, taskkill /T handles the tree.
    """
    if sys.platform != "win32":
        import signal

        try:
            os.killpg(proc.pid, signal.SIGKILL)
        except OSError:
            pass  # already exited
    else:
        try:
            subprocess.run(
                ["taskkill", "/T", "/F", "/PID", str(proc.pid)],
                stdout=subprocess.DEVNULL,
                stderr=subprocess.DEVNULL,
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            pass
    try:
        proc.kill()
    except OSError:
        pass


def _drain(stream, chunks: list[bytes]) -> None:
    """Read a pipe to EOF, keeping at most MAX_CAPTURE_BYTES."""
    total = 0
    try:
        while True:
            chunk = stream.read(4096)
            if not chunk:
                break
            if total >= MAX_CAPTURE_BYTES:
                continue  # keep draining to prevent pipe backpressure
            chunk = chunk[: MAX_CAPTURE_BYTES - total]
            chunks.append(chunk)
            total += len(chunk)
    except (OSError, ValueError):
        pass  # pipe closed after kill


def _command_failure(kind: str, headline: str, stdout: str, stderr: str) -> ActionResult:
    if stdout or stderr:
        return ActionResult.failure(
            kind, f"{headline}\nstdout:\n{stdout}\nstderr:\n{stderr}"
        )
    return ActionResult.failure(kind, headline)


class Executor:
    """Runs catalogued actions against a confined root directory.

    Every failure comes back as an ActionResult; nothing raised by an action
    crosses execute().
    """

    def __init__(self, root, command_timeout: int = COMMAND_TIMEOUT):
        self.root = Path(root).resolve()
        self.command_timeout = command_timeout
        self._handlers = {
            "read_file": self.read_file,
            "write_file": self.write_file,
            "head_file": self.head_file,
            "tail_file": self.tail_file,
            "list_dir": self.list_dir,
            "run_command": self.run_command,
            "edit_file": self.edit_file,
        }

    def execute(self, name: str, args: dict) -> ActionResult:
        handler = self._handlers.get(name)
        if handler is None:
            return ActionResult.failure(ErrorKind.UNKNOWN_ACTION, f"Unknown action: {name}")
        args = args or {}
        missing = [key for key in actions.required_args(name) if args.get(key) is None]
        if missing:
            return ActionResult.failure(
                ErrorKind.INVALID_ARGUMENTS,
                f"{name}: missing required argument(s): {', '.join(missing)}",
            )
        # Models sometimes invent extra arguments; ignore them.
        accepted = actions.ACTIONS[name].parameters["properties"]
        kwargs = {k: v for k, v in args.items() if k in accepted}
        try:
            return handler(**kwargs)
        except PathEscapeError as exc:
            return ActionResult.failure(ErrorKind.PATH_ESCAPE, str(exc))
        except ValueError as exc:
            # e.g. "embedded null byte" from Path.resolve()
            return ActionResult.failure(ErrorKind.INVALID_ARGUMENTS, f"{name}: {exc}")
        except OSError as exc:
            return ActionResult.failure(ErrorKind.IO_ERROR, f"{name}: {exc}")

    def _resolve(self, path) -> Path:
        return safe_resolve(str(path), self.root)

    # -- Files ---------------------------------------------------------------

    def read_file(self, path) -> ActionResult:
        text = _read_text(self._resolve(path), path)
        if isinstance(text, ActionResult):
            return text
        return ActionResult.ok(text)

    def write_file(self, path, content) -> ActionResult:
        resolved = self._resolve(path)
        resolved.parent.mkdir(parents=True, exist_ok=True)
        data = str(content).encode("utf-8")
        resolved.write_bytes(data)
        return ActionResult.ok(f"Wrote {len(data)} bytes to {path}")

    def head_file(self, path, lines=None) -> ActionResult:
        text = _read_text(self._resolve(path), path)
        if isinstance(text, ActionResult):
            return text
        n = _coerce_lines(lines)
        return ActionResult.ok("\n".join(_split_lines(text)[:n]))

    def tail_file(self, path, lines=None) -> ActionResult:
        text = _read_text(self._resolve(path), path)
        if isinstance(text, ActionResult):
            return text
        n = _coerce_lines(lines)
        return ActionResult.ok("\n".join(_split_lines(text)[-n:]))

    def edit_file(self, path, old_string, new_string) -> ActionResult:
        resolved = self._resolve(path)
        text = _read_text(resolved, path)
        if isinstance(text, ActionResult):
            return text
        old_string = str(old_string)
        if not old_string:
            return ActionResult.failure(
                ErrorKind.INVALID_ARGUMENTS, "old_string must not be empty"
            )
        if old_string not in text:
            preview = old_string[:50] + ("..." if len(old_string) > 50 else "")
            return ActionResult.failure(
                ErrorKind.NO_MATCH, f"String not found in file: {preview!r}"
            )
        resolved.write_bytes(text.replace(old_string, str(new_string), 1).encode("utf-8"))
        return ActionResult.ok(f"Edited {path}")

    # -- Directories ---------------------------------------------------------

    def list_dir(self, path, recursive=False) -> ActionResult:
        resolved = self._resolve(path)
        if not resolved.exists():
            return ActionResult.failure(
                ErrorKind.NOT_FOUND, f"Directory not found: {path}"
            )
        if not resolved.is_dir():
            return ActionResult.failure(ErrorKind.IO_ERROR, f"Not a directory: {path}")
        items = self._walk(resolved, "", _coerce_bool(recursive))
        return ActionResult.ok("\n".join(items) or EMPTY_DIRECTORY)

    def _walk(self, directory: Path, prefix: str, recursive: bool) -> list[str]:
        items = []
        for child in sorted(directory.iterdir(), key=lambda p: p.name):
            display = prefix + child.name
            if child.is_dir():
                items.append(display + "/")
                # Don't follow links that leave the root.
                if recursive and child.resolve().is_relative_to(self.root):
                    items.extend(self._walk(child, display + "/", recursive))
            else:
                items.append(display)
        return items

    # -- Commands ------------------------------------------------------------

    def run_command(self, command) -> ActionResult:
        """Run a shell string in the root; errors carry whatever output was captured."""
        command = str(command)
        if sys.platform == "win32":
            shell_cmd = ["cmd.exe", "/c", command]
        else:
            shell_cmd = ["/bin/sh", "-c", command]

        popen_kwargs: dict = dict(
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            stdin=subprocess.DEVNULL,
            cwd=self.root,
        )
        if sys.platform != "win32":
            popen_kwargs["start_new_session"] = True

        try:
            proc = subprocess.Popen(shell_cmd, **popen_kwargs)
        except OSError as exc:
            return ActionResult.failure(
                ErrorKind.COMMAND_FAILURE, f"Command failed: {exc}"
            )

        out_chunks: list[bytes] = []
        err_chunks: list[bytes] = []
        readers = [
            threading.Thread(target=_drain, args=(proc.stdout, out_chunks), daemon=True),
            threading.Thread(target=_drain, args=(proc.stderr, err_chunks), daemon=True),
        ]
        for t in readers:
            t.start()

        timed_out = False
        try:
            proc.wait(timeout=self.command_timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            _kill_process_tree(proc)
            try:
                proc.wait(timeout=_KILL_WAIT_TIMEOUT)
            except subprocess.TimeoutExpired:
                pass  # unkillable; report what we have

        for t in readers:
            t.join(timeout=2)
        proc.stdout.close()
        proc.stderr.close()

        stdout = b"".join(out_chunks).decode("utf-8", errors="replace")
        stderr = b"".join(err_chunks).decode("utf-8", errors="replace")

        if timed_out:
            return _command_failure(
                ErrorKind.TIMEOUT,
                f"Command timed out after {self.command_timeout}s",
                stdout,
                stderr,
            )
        if proc.returncode != 0:
            return _command_failure(
                ErrorKind.COMMAND_FAILURE,
                f"Command failed with exit code {proc.returncode}",
                stdout,
                stderr,
            )
        return ActionResult.ok(stdout or NO_OUTPUT)
