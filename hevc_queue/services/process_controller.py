"""
Subprocess controller for ffmpeg and the other external tools.

`ProcessRunner.run(spec)` spawns one external command and immediately returns
a `ProcessHandle`. A reader thread turns the command's diagnostic stream into
events pushed on `handle.events`, in this order:

    zero or one  STARTED        (carries the resolved command line)
    zero or more PROGRESS_LINE  (one raw line of stderr)
    exactly one  COMPLETED / FAILED

The handle can suspend (SIGSTOP), continue (SIGCONT) and terminate the
process. Suspension is a capability: on platforms without job-control signals
`can_suspend` is False and `pause()` reports that nothing was delivered.
"""
import io
import queue
import re
import shlex
import signal
import subprocess
import sys
import threading
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, List, Optional, Tuple

from loguru import logger

from ..domain.exceptions import (
    ExternalToolMissingException,
    KilledException,
    NonZeroExitException,
    ProcessException,
)

STARTED = "started"
PROGRESS_LINE = "progress_line"
COMPLETED = "completed"
FAILED = "failed"

SUPPORTS_SUSPEND = hasattr(signal, "SIGSTOP") and hasattr(signal, "SIGCONT")

# ffmpeg rewrites its status line with carriage returns.
_LINE_BREAK = re.compile(rb"\r\n|\r|\n")
_READ_CHUNK = 4096


class OutputTarget(Enum):
    DISCARD = "discard"
    FILE = "file"
    MEMORY = "memory"


def display_command(argv: List[str]) -> str:
    """Returns a shell-pasteable rendering of an argument list."""
    if sys.platform == "win32":
        return subprocess.list2cmdline(argv)
    return shlex.join(argv)


@dataclass(frozen=True)
class CommandSpec:
    """
    Description of one external invocation.

    For ffmpeg-style commands (`inputs` not empty) the argument vector is laid
    out as::

        program -hide_banner -nostdin -y [-ss SEEK] [-t DURATION] -i IN0 [-i IN1 ...] ARGS OUTPUT

    where the seek window applies to the first input and OUTPUT depends on the
    output target: `-f null -` to discard, the output path, or `pipe:1` to
    capture into memory. Plain tool commands (no inputs) run as
    `program ARGS`; MEMORY then captures their stdout.
    """

    program: str
    args: Tuple[str, ...] = ()
    inputs: Tuple[Path, ...] = ()
    seek: Optional[float] = None
    duration: Optional[float] = None
    output: OutputTarget = OutputTarget.DISCARD
    output_path: Optional[Path] = None

    @property
    def tool(self) -> str:
        return Path(self.program).name

    def argv(self) -> List[str]:
        if not self.inputs:
            return [self.program, *self.args]
        argv = [self.program, "-hide_banner", "-nostdin", "-y"]
        for i, input_path in enumerate(self.inputs):
            if i == 0:
                if self.seek is not None:
                    argv += ["-ss", f"{self.seek:.3f}"]
                if self.duration is not None:
                    argv += ["-t", f"{self.duration:.3f}"]
            argv += ["-i", str(input_path)]
        argv += list(self.args)
        if self.output is OutputTarget.FILE:
            if self.output_path is None:
                raise ValueError("A file output target requires an output path")
            argv.append(str(self.output_path))
        elif self.output is OutputTarget.MEMORY:
            argv.append("pipe:1")
        else:
            argv += ["-f", "null", "-"]
        return argv

    def command_line(self) -> str:
        return display_command(self.argv())


@dataclass
class ProcessResult:
    """Exit metadata of a completed command."""

    command_line: str
    exit_code: int
    lines: List[str] = field(default_factory=list)
    stdout: Optional[bytes] = None

    @property
    def output(self) -> str:
        return "\n".join(self.lines)


@dataclass
class ProcessEvent:
    kind: str
    command_line: Optional[str] = None
    line: Optional[str] = None
    result: Optional[ProcessResult] = None
    error: Optional[ProcessException] = None


class ProcessHandle:
    """
    The caller's view of one running command.

    Subclasses deliver the lifecycle events; `wait()` consumes them, forwarding
    every progress line to `on_line`, and returns the `ProcessResult` or raises
    the failure cause.
    """

    can_suspend = False

    def __init__(self, spec: CommandSpec):
        self.spec = spec
        self.command_line = spec.command_line()
        self.events: "queue.Queue[ProcessEvent]" = queue.Queue()
        self.suspended = False

    def pause(self) -> bool:
        return False

    def resume(self) -> bool:
        return False

    def kill(self) -> None:
        pass

    def wait(self, on_line: Optional[Callable[[str], None]] = None) -> ProcessResult:
        while True:
            event = self.events.get()
            if event.kind == STARTED:
                logger.debug(f"Running Query: {event.command_line}")
            elif event.kind == PROGRESS_LINE:
                if on_line is not None:
                    on_line(event.line)
            elif event.kind == COMPLETED:
                return event.result
            elif event.kind == FAILED:
                raise event.error


class PopenProcessHandle(ProcessHandle):
    """`ProcessHandle` backed by `subprocess.Popen` and a reader thread."""

    can_suspend = SUPPORTS_SUSPEND

    def __init__(self, spec: CommandSpec):
        super().__init__(spec)
        self.process: Optional[subprocess.Popen] = None
        self._killed = False
        self._finished = threading.Event()
        self._signal_lock = threading.Lock()
        self._stdout = io.BytesIO()

    def start(self) -> "PopenProcessHandle":
        argv = self.spec.argv()
        capture_stdout = self.spec.output is OutputTarget.MEMORY
        try:
            self.process = subprocess.Popen(
                argv,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE if capture_stdout else subprocess.DEVNULL,
                stderr=subprocess.PIPE,
            )
        except FileNotFoundError:
            logger.error(f"Executable not found: {argv[0]}")
            self._finished.set()
            self.events.put(
                ProcessEvent(FAILED, error=ExternalToolMissingException(self.spec.tool))
            )
            return self
        self.events.put(ProcessEvent(STARTED, command_line=self.command_line))
        threading.Thread(
            target=self._read, name=f"{self.spec.tool}-reader", daemon=True
        ).start()
        return self

    def _read(self) -> None:
        stdout_reader = None
        if self.process.stdout is not None:
            stdout_reader = threading.Thread(
                target=self._drain_stdout, name=f"{self.spec.tool}-stdout", daemon=True
            )
            stdout_reader.start()

        lines: List[str] = []
        pending = b""
        stream = self.process.stderr
        while True:
            chunk = stream.read1(_READ_CHUNK) if hasattr(stream, "read1") else stream.read(_READ_CHUNK)
            if not chunk:
                break
            parts = _LINE_BREAK.split(pending + chunk)
            pending = parts.pop()
            for raw in parts:
                self._emit_line(raw, lines)
        if pending:
            self._emit_line(pending, lines)
        stream.close()

        exit_code = self.process.wait()
        if stdout_reader is not None:
            stdout_reader.join()
        self._finished.set()

        if exit_code == 0:
            stdout = self._stdout.getvalue() if self.process.stdout is not None else None
            result = ProcessResult(self.command_line, exit_code, lines, stdout)
            self.events.put(ProcessEvent(COMPLETED, result=result))
        elif self._killed or exit_code < 0:
            self.events.put(
                ProcessEvent(FAILED, error=KilledException(diagnostic="\n".join(lines)))
            )
        else:
            self.events.put(
                ProcessEvent(
                    FAILED,
                    error=NonZeroExitException(self.spec.tool, exit_code, "\n".join(lines)),
                )
            )

    def _emit_line(self, raw: bytes, lines: List[str]) -> None:
        line = raw.decode("utf-8", errors="replace").rstrip()
        if not line:
            return
        lines.append(line)
        self.events.put(ProcessEvent(PROGRESS_LINE, line=line))

    def _drain_stdout(self) -> None:
        for chunk in iter(lambda: self.process.stdout.read(_READ_CHUNK), b""):
            self._stdout.write(chunk)
        self.process.stdout.close()

    def _send(self, sig: int) -> bool:
        if self.process is None or self._finished.is_set():
            return False
        try:
            self.process.send_signal(sig)
        except (ProcessLookupError, OSError) as e:
            logger.debug(f"Could not signal {self.spec.tool} ({sig}): {e}")
            return False
        return True

    def pause(self) -> bool:
        if not self.can_suspend:
            return False
        with self._signal_lock:
            delivered = self._send(signal.SIGSTOP)
            if delivered:
                self.suspended = True
            return delivered

    def resume(self) -> bool:
        if not self.can_suspend:
            return False
        with self._signal_lock:
            delivered = self._send(signal.SIGCONT)
            if delivered:
                self.suspended = False
            return delivered

    def kill(self) -> None:
        with self._signal_lock:
            self._killed = True
            if self.process is None or self._finished.is_set():
                return
            try:
                self.process.terminate()
                # A stopped process only acts on SIGTERM once continued.
                if self.suspended and SUPPORTS_SUSPEND:
                    self.process.send_signal(signal.SIGCONT)
                    self.suspended = False
            except (ProcessLookupError, OSError) as e:
                logger.debug(f"Could not terminate {self.spec.tool}: {e}")


class ProcessRunner:
    """Spawns `CommandSpec`s. Tests substitute a scripted runner."""

    def run(self, spec: CommandSpec) -> ProcessHandle:
        return PopenProcessHandle(spec).start()


def run_to_completion(
    spec: CommandSpec,
    runner: Optional[ProcessRunner] = None,
    on_line: Optional[Callable[[str], None]] = None,
) -> ProcessResult:
    """Runs a command and blocks until its terminal event."""
    return (runner or ProcessRunner()).run(spec).wait(on_line)
