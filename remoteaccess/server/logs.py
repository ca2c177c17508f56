"""Collects the server's rotating log files into a zip offered for download."""

import asyncio
import logging
import threading
import time
import zipfile
from pathlib import Path
from typing import List, Optional

from remoteaccess.errors import ErrorCode, RemoteAccessError

logger = logging.getLogger(__name__)

GATHER_TIMEOUT = 20.0


class LogGatherer:
    def __init__(self, logs_dir: Path, downloads_dir: Path, timeout: float = GATHER_TIMEOUT):
        self.logs_dir = Path(logs_dir)
        self.downloads_dir = Path(downloads_dir)
        self.timeout = timeout
        self._task: Optional[asyncio.Task] = None
        self._abandoned = threading.Event()

    def _collect(self) -> List[Path]:
        if not self.logs_dir.is_dir():
            return []
        return sorted(
            p for p in self.logs_dir.iterdir()
            if p.is_file() and (".log" in p.name or p.name.startswith("crash_"))
        )

    def _write_zip(self, files: List[Path], target: Path) -> Optional[Path]:
        """Runs on a worker thread. Returns None when the gather was abandoned."""
        abandoned = self._abandoned
        self.downloads_dir.mkdir(parents=True, exist_ok=True)
        partial = target.with_suffix(".zip.part")
        try:
            with zipfile.ZipFile(partial, "w", compression=zipfile.ZIP_DEFLATED) as zf:
                for path in files:
                    if abandoned.is_set():
                        break
                    zf.write(path, arcname=path.name)
            if abandoned.is_set():
                partial.unlink(missing_ok=True)
                logger.debug(f"[Logs] Discarded abandoned archive {target.name}")
                return None
            partial.replace(target)
        except BaseException:
            partial.unlink(missing_ok=True)
            raise
        return target

    async def gather(self) -> Path:
        """
        Zip the log files into the downloads dir.

        Raises:
            RemoteAccessError: LOGS_GATHERING_FAILED on timeout, I/O error or release()
        """
        files = self._collect()
        target = self.downloads_dir / f"logs_{time.strftime('%Y%m%d_%H%M%S')}.zip"
        logger.info(f"[Logs] Gathering {len(files)} log file(s) into {target.name}")

        self._abandoned = threading.Event()
        self._task = asyncio.ensure_future(asyncio.to_thread(self._write_zip, files, target))
        try:
            return await asyncio.wait_for(self._task, timeout=self.timeout)
        except asyncio.TimeoutError as e:
            self._abandoned.set()
            raise RemoteAccessError(
                ErrorCode.LOGS_GATHERING_FAILED,
                "Cannot complete log gathering in time",
                details={"timeout": self.timeout},
            ) from e
        except asyncio.CancelledError as e:
            self._abandoned.set()
            if asyncio.current_task().cancelling():
                raise
            raise RemoteAccessError(ErrorCode.LOGS_GATHERING_FAILED, "Log gathering was cancelled") from e
        except OSError as e:
            raise RemoteAccessError(
                ErrorCode.LOGS_GATHERING_FAILED,
                "Cannot write the logs archive",
                details={"error": str(e)},
            ) from e
        finally:
            self._task = None

    def release(self) -> None:
        """Abandon an in-progress gather."""
        task = self._task
        self._abandoned.set()
        if task is not None and not task.done():
            task.cancel()
            logger.info("[Logs] Log gathering cancelled")
