from __future__ import annotations

import logging
import subprocess
import time
from pathlib import Path
from typing import IO, List, Optional, Sequence

from .errors import ProcessError

logger = logging.getLogger(__name__)


class ProcessController:
    """One launch of the node-under-test: spawn, terminate, poll for exit."""

    def __init__(
        self,
        command: Sequence[str],
        log_path: Optional[Path] = None,
        poll_interval: float = 1.0,
    ):
        self.command: List[str] = list(command)
        self.log_path = log_path
        self.poll_interval = poll_interval
        self._proc: Optional[subprocess.Popen] = None
        self._log_file: Optional[IO[bytes]] = None

    @property
    def exit_code(self) -> Optional[int]:
        if self._proc is None:
            return None
        return self._proc.poll()

    @property
    def running(self) -> bool:
        return self._proc is not None and self._proc.poll() is None

    def start(self) -> None:
        if self._proc is not None:
            raise ProcessError("Node process already started")
        output = subprocess.DEVNULL
        if self.log_path is not None:
            try:
                self.log_path.parent.mkdir(parents=True, exist_ok=True)
                self._log_file = open(self.log_path, "wb")
            except OSError as exc:
                raise ProcessError(f"Unable to open node log {self.log_path}: {exc}") from exc
            output = self._log_file
        print_cmd = " ".join(self.command)
        logger.info("[RUN] %s", print_cmd)
        try:
            self._proc = subprocess.Popen(self.command, stdout=output, stderr=subprocess.STDOUT)
        except OSError as exc:
            self._close_log()
            raise ProcessError(f"Unable to start node '{print_cmd}': {exc}") from exc

    def wait_for_exit(self) -> int:
        # Exit is observed by polling only.
        if self._proc is None:
            raise ProcessError("Node process was never started")
        while self._proc.poll() is None:
            time.sleep(self.poll_interval)
        self._close_log()
        return self._proc.returncode

    def stop(self) -> int:
        """Terminate the node and block until its exit status is observed."""
        if self._proc is None:
            raise ProcessError("Node process was never started")
        if self._proc.poll() is None:
            logger.info("Terminating node (pid %d)", self._proc.pid)
            self._proc.terminate()
        code = self.wait_for_exit()
        logger.info("Node exited with code %s", code)
        return code

    def kill(self) -> None:
        """Last-resort cleanup; never raises."""
        if self._proc is None:
            return
        if self._proc.poll() is None:
            try:
                self._proc.kill()
                self._proc.wait(timeout=10)
            except (OSError, subprocess.TimeoutExpired) as exc:
                logger.warning("Unable to kill node (pid %d): %s", self._proc.pid, exc)
        self._close_log()

    def _close_log(self) -> None:
        if self._log_file is not None:
            self._log_file.close()
            self._log_file = None
