"""
Client executable supervision for manual testing.

Launches a client under test with the arguments the course harness uses
(<netid> <port> <host>), waits for it without blocking the event loop, and
tears down its whole process tree on shutdown.
"""
import asyncio
import os
import subprocess
from pathlib import Path
from typing import List, Optional

import psutil
import structlog

logger = structlog.get_logger()

SHUTDOWN_TIMEOUT_SEC = 5.0


class ClientProcess:
    """A launched client executable"""

    def __init__(
        self,
        executable: Path,
        identity: str,
        host: str,
        port: int,
        hide_stderr: bool = False,
    ):
        self.executable = Path(executable)
        self.identity = identity
        self.host = host
        self.port = port
        self.hide_stderr = hide_stderr
        self._popen: Optional[subprocess.Popen] = None
        self._process_handle: Optional[psutil.Process] = None

    @property
    def argv(self) -> List[str]:
        return [str(self.executable), self.identity, str(self.port), self.host]

    @property
    def pid(self) -> Optional[int]:
        return self._popen.pid if self._popen else None

    @property
    def returncode(self) -> Optional[int]:
        return self._popen.returncode if self._popen else None

    def start(self) -> int:
        """
        Launch the client.

        Returns:
            PID of the launched process

        Raises:
            OSError: The executable could not be started
        """
        if self._popen:
            return self._popen.pid

        kwargs = {
            "stdin": subprocess.DEVNULL,
            "stderr": subprocess.DEVNULL if self.hide_stderr else None,
        }
        if os.name != "nt":
            kwargs["start_new_session"] = True

        self._popen = subprocess.Popen(self.argv, **kwargs)
        try:
            self._process_handle = psutil.Process(self._popen.pid)
        except psutil.NoSuchProcess:
            # Exited before we could look at it; wait() still reports the code
            self._process_handle = None
        logger.info("launched_client_process", pid=self._popen.pid, argv=self.argv)
        return self._popen.pid

    async def wait(self) -> int:
        """Wait for the client to exit and return its exit code."""
        if not self._popen:
            raise RuntimeError("Client process was never started")
        loop = asyncio.get_running_loop()
        code = await loop.run_in_executor(None, self._popen.wait)
        logger.info("client_process_exited", pid=self._popen.pid, exit_code=code)
        return code

    async def shutdown(self) -> None:
        """Terminate the client and any children it spawned."""
        if not self._popen:
            return

        try:
            if self._popen.poll() is None and self._process_handle:
                procs = self._process_handle.children(recursive=True) + [self._process_handle]
                for proc in procs:
                    try:
                        proc.terminate()
                    except psutil.NoSuchProcess:
                        pass
                _, alive = psutil.wait_procs(procs, timeout=SHUTDOWN_TIMEOUT_SEC)
                for proc in alive:
                    logger.warning("client_process_kill", pid=proc.pid)
                    proc.kill()
                self._popen.wait(timeout=SHUTDOWN_TIMEOUT_SEC)
        except (psutil.Error, subprocess.TimeoutExpired) as exc:
            logger.warning("failed_to_shutdown_client", error=str(exc))
        finally:
            self._popen = None
            self._process_handle = None
