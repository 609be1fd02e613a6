"""
ProcessSupervisor - run one external step at a time.

The supervisor owns at most one live process. run() blocks until the process
exits and returns a ProcessOutcome; kill() may be called from another thread
to stop the process together with its children.

Directive steps whose options are one opaque string (TeXMagicProgram,
BibMagicProgram) run through the shell so the string is split by the shell.
All other steps run with an explicit argument vector.
"""

import logging
import os
import signal
import subprocess
import sys
import threading
import time
from typing import Callable, Optional, TextIO

import psutil

from texorchestra.materializer import MAX_PRINT_LINE
from texorchestra.schemas import ProcessOutcome, Step

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == "win32"

# Seconds to keep reading output after the step exits.
DRAIN_TIMEOUT = 1.0


def _signal_name(returncode: int) -> Optional[str]:
    if returncode >= 0:
        return None
    try:
        return signal.Signals(-returncode).name
    except ValueError:
        return f"SIG{-returncode}"


def build_env(step: Step) -> dict[str, str]:
    """Process environment for a step: os.environ, step overrides, max_print_line."""
    env = dict(os.environ)
    env.update(step.env)
    env["max_print_line"] = MAX_PRINT_LINE
    return env


def _kill_descendants(pid: int) -> None:
    """Terminate the process tree rooted at pid, excluding the root handle itself."""
    if IS_WINDOWS:
        for child in psutil.Process(pid).children(recursive=True):
            child.kill()
    else:
        # Children start a new session, so the process group id is the pid.
        os.killpg(pid, signal.SIGTERM)


class ProcessSupervisor:
    """
    Supervises the single running toolchain process.

    Usage:
        supervisor = ProcessSupervisor(sink=compiler_log.append)
        outcome = supervisor.run(step, cwd="/project")
        # from another thread:
        supervisor.kill()
    """

    def __init__(
        self,
        sink: Optional[Callable[[str], None]] = None,
        drain_timeout: float = DRAIN_TIMEOUT,
    ):
        """
        Initialize the supervisor.

        Args:
            sink: Receives stdout/stderr text as it arrives
            drain_timeout: Seconds to wait for output pipes to close once the
                step has exited. Descendants that keep them open longer
                (a previewer, a backgrounded shell job) are not waited for.
        """
        self._sink = sink
        self.drain_timeout = drain_timeout
        self._lock = threading.Lock()
        self._process: Optional[subprocess.Popen] = None
        self._spawning = False
        self._killed = False

    @property
    def running(self) -> bool:
        with self._lock:
            return self._process is not None and self._process.poll() is None

    @property
    def pid(self) -> Optional[int]:
        with self._lock:
            return self._process.pid if self._process is not None else None

    def run(self, step: Step, cwd: str) -> ProcessOutcome:
        """
        Run a step to completion.

        Args:
            step: Materialized step
            cwd: Working directory

        Returns:
            ProcessOutcome for the step
        """
        env = build_env(step)
        popen_kwargs = dict(
            cwd=cwd,
            env=env,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        if not IS_WINDOWS:
            popen_kwargs["start_new_session"] = True

        if step.is_raw_directive:
            command = step.command
            if step.args:
                command += " " + step.args[0]
            popen_args = command
            popen_kwargs["shell"] = True
        else:
            popen_args = [step.command, *step.arg_list()]

        logger.info(f"cwd: {cwd}")
        with self._lock:
            self._spawning = True
            self._killed = False
        try:
            process = subprocess.Popen(popen_args, **popen_kwargs)
        except OSError as e:
            with self._lock:
                self._spawning = False
            logger.error(
                f"LaTeX fatal error: {e}. Does the executable exist?",
                extra={
                    "event": "spawn_failed",
                    "step": step.name,
                    "metadata": {
                        "command": step.command,
                        "PATH": env.get("PATH"),
                        "Path": env.get("Path"),
                        "SHELL": os.environ.get("SHELL"),
                    },
                },
            )
            logger.info(f"Does the executable exist? $PATH: {env.get('PATH')}")
            logger.info(f"Does the executable exist? $Path: {env.get('Path')}")
            logger.info(f"The environment variable $SHELL: {os.environ.get('SHELL')}")
            return ProcessOutcome.spawn_error(str(e))

        with self._lock:
            self._process = process
            self._spawning = False
            kill_requested = self._killed
        pid = process.pid
        logger.info(
            f"LaTeX build process spawned. PID: {pid}.",
            extra={"event": "process_spawned", "step": step.name, "metadata": {"pid": pid}},
        )
        if kill_requested:
            logger.info(f"Kill was requested while spawning. PID: {pid}")
            self._terminate(process)

        stdout_chunks: list[str] = []
        stderr_chunks: list[str] = []
        readers = [
            threading.Thread(target=self._pump, args=(process.stdout, stdout_chunks), daemon=True),
            threading.Thread(target=self._pump, args=(process.stderr, stderr_chunks), daemon=True),
        ]
        for reader in readers:
            reader.start()

        returncode = process.wait()
        # Descendants may inherit the pipes and outlive the step.
        deadline = time.monotonic() + self.drain_timeout
        for reader in readers:
            reader.join(max(0.0, deadline - time.monotonic()))
        if any(reader.is_alive() for reader in readers):
            logger.warning(
                f"Output pipes of PID {pid} are still held open by a descendant process; "
                "not waiting for them.",
                extra={"event": "output_drain_abandoned", "step": step.name, "metadata": {"pid": pid}},
            )

        with self._lock:
            self._process = None
            killed = self._killed

        stdout = "".join(list(stdout_chunks))
        stderr = "".join(list(stderr_chunks))

        if returncode == 0:
            return ProcessOutcome.success(pid=pid, stdout=stdout, stderr=stderr)

        sig = _signal_name(returncode)
        if sig is None and killed:
            sig = "SIGTERM"
        return ProcessOutcome.failure(
            exit_code=returncode if returncode >= 0 else None,
            signal=sig,
            pid=pid,
            stdout=stdout,
            stderr=stderr,
        )

    def _pump(self, stream: TextIO, chunks: list[str]) -> None:
        try:
            for line in iter(stream.readline, ""):
                chunks.append(line)
                if self._sink is not None:
                    self._sink(line)
        finally:
            stream.close()

    def kill(self) -> None:
        """
        Kill the current process and its descendants.

        A kill that arrives while the process is being spawned is applied as
        soon as it exists. A no-op (logged) when no process is tracked.
        """
        with self._lock:
            process = self._process
            if process is None and self._spawning:
                self._killed = True
                logger.info("LaTeX build process is being spawned; it will be killed once started.")
                return
            if process is not None:
                self._killed = True

        if process is None:
            logger.info("LaTeX build process to kill is not found.")
            return
        self._terminate(process)

    def _terminate(self, process: subprocess.Popen) -> None:
        """Signal the process tree; the tracked process is terminated regardless."""
        pid = process.pid
        try:
            logger.info(f"Kill child processes of the current process. PPID: {pid}")
            _kill_descendants(pid)
        except (OSError, psutil.Error) as e:
            logger.info(f"Error when killing child processes of the current process. {e}")
        finally:
            if process.poll() is None:
                process.terminate()
            logger.info(
                f"Kill the current process. PID: {pid}",
                extra={"event": "process_killed", "metadata": {"pid": pid}},
            )
