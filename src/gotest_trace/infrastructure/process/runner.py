"""Test process infrastructure: spawning `go test -json` and streaming its output."""

import subprocess
from typing import Iterator, List, Optional, Sequence

import psutil
from loguru import logger

from gotest_trace.config import Settings
from gotest_trace.domains.tracing.exceptions import ProcessError


class GoTestProcess:
    """Runs the test command with its stdout piped back line by line.

    Used as a context manager, the whole process tree is terminated if the
    block exits with an exception, so an aborted run never leaves test
    binaries behind.
    """

    def __init__(self, command: Sequence[str], cwd: Optional[str] = None):
        self.command: List[str] = list(command)
        self.cwd = cwd
        self._process: Optional[subprocess.Popen] = None

    @classmethod
    def for_package(cls, settings: Settings, path: str, cwd: Optional[str] = None) -> "GoTestProcess":
        return cls([settings.go_binary, "test", *settings.go_test_args, path], cwd=cwd)

    def __enter__(self) -> "GoTestProcess":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            self.terminate()
        if self._process is not None and self._process.stdout is not None:
            self._process.stdout.close()

    @property
    def pid(self) -> Optional[int]:
        return self._process.pid if self._process is not None else None

    def start(self) -> None:
        try:
            self._process = subprocess.Popen(
                self.command,
                cwd=self.cwd,
                stdout=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
            )
        except OSError as e:
            raise ProcessError(f"Failed to start {' '.join(self.command)}: {e}") from e
        logger.info(f"Started {' '.join(self.command)} (pid {self._process.pid})")

    def _require(self) -> subprocess.Popen:
        if self._process is None:
            raise ProcessError("Test process has not been started")
        return self._process

    def lines(self) -> Iterator[str]:
        """Yield stdout lines until the process closes the stream."""
        process = self._require()
        if process.stdout is None:
            return
        for line in process.stdout:
            yield line

    def wait(self) -> int:
        """Wait for the process to exit and return its exit code."""
        returncode = self._require().wait()
        logger.debug(f"Test process exited with code {returncode}")
        return returncode

    def terminate(self, timeout: float = 3.0) -> None:
        """Terminate the test process and all of its descendants.

        `go test` runs every package's test binary as a child process, so
        terminating only the direct child would orphan them.
        """
        if self._process is None or self._process.poll() is not None:
            return

        try:
            parent = psutil.Process(self._process.pid)
            processes = parent.children(recursive=True) + [parent]
        except psutil.NoSuchProcess:
            return

        logger.info(f"Terminating {len(processes)} test process(es)...")
        for proc in processes:
            try:
                logger.debug(f"Terminating process {proc.pid}")
                proc.terminate()
            except psutil.NoSuchProcess:
                pass

        gone, alive = psutil.wait_procs(processes, timeout=timeout)
        if gone:
            logger.debug(f"Successfully terminated {len(gone)} process(es)")

        # Force kill any remaining processes
        if alive:
            logger.warning(f"Force killing {len(alive)} remaining process(es)")
            for proc in alive:
                try:
                    proc.kill()
                except psutil.NoSuchProcess:
                    pass
            psutil.wait_procs(alive, timeout=1)
        self._process.poll()
