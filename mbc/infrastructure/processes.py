import logging
import subprocess
import threading
from dataclasses import dataclass
from typing import Dict, List, Optional

from mbc.domain.errors import CancellationError


@dataclass
class ProcessOutcome:
    returncode: int
    output: str
    cancelled: bool = False


class ProcessRegistry:
    """Tracks every external process this run spawns.

    Adapters start processes through ``run()`` so that ``terminate_all()`` can
    stop exactly the processes owned by this batch on cancellation. Once
    ``terminate_all()`` has been called, new spawns are refused.
    """

    def __init__(self, terminate_timeout: float = 3.0):
        self.terminate_timeout = terminate_timeout
        self.logger = logging.getLogger(__name__)
        self._processes: Dict[int, subprocess.Popen] = {}
        self._lock = threading.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def active_pids(self) -> List[int]:
        with self._lock:
            return list(self._processes)

    def spawn(self, cmd: List[str]) -> Optional[subprocess.Popen]:
        """Starts ``cmd`` and registers it. Returns None after cancellation."""
        with self._lock:
            if self._closed:
                return None
            process = subprocess.Popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                universal_newlines=True,
            )
            self._processes[process.pid] = process
        self.logger.debug(f"PROCESS_SPAWN: pid={process.pid} {cmd[0]}")
        return process

    def release(self, process: subprocess.Popen) -> None:
        with self._lock:
            self._processes.pop(process.pid, None)

    def run(self, cmd: List[str]) -> ProcessOutcome:
        """Runs ``cmd`` to completion, collecting stdout+stderr."""
        process = self.spawn(cmd)
        if process is None:
            return ProcessOutcome(returncode=-1, output="Cancelled before start", cancelled=True)
        try:
            output, _ = process.communicate()
        finally:
            self.release(process)
        return ProcessOutcome(
            returncode=process.returncode,
            output=output or "",
            cancelled=self._closed,
        )

    def terminate_all(self) -> List[int]:
        """Terminates all registered processes. Returns pids that could not be stopped."""
        with self._lock:
            self._closed = True
            processes = list(self._processes.values())

        survivors: List[int] = []
        for process in processes:
            try:
                self._terminate(process)
            except CancellationError as exc:
                self.logger.warning(exc.message)
                survivors.append(process.pid)
        return survivors

    def _terminate(self, process: subprocess.Popen) -> None:
        if process.poll() is not None:
            return
        self.logger.info(f"PROCESS_TERMINATE: pid={process.pid}")
        try:
            process.terminate()
            try:
                process.wait(timeout=self.terminate_timeout)
            except subprocess.TimeoutExpired:
                process.kill()
                process.wait(timeout=self.terminate_timeout)
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise CancellationError(f"Could not terminate pid {process.pid}: {exc}") from exc
