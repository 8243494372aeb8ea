"""
System utilities for logging and process management

This module provides the logging setup used by the command-line harness and the
process cleanup used when a language server session is torn down.
"""

import asyncio
import logging
import psutil
from datetime import datetime

from constants import PROCESS_TERMINATE_TIMEOUT


class MicrosecondFormatter(logging.Formatter):
    """Custom formatter that provides microsecond precision timestamps"""
    def formatTime(self, record, datefmt=None):
        dt = datetime.fromtimestamp(record.created)
        return dt.strftime('%Y-%m-%d %H:%M:%S.%f')[:-3]  # Keep 3 decimal places (milliseconds)


def setup_logging(level: str | int = logging.INFO) -> None:
    """Configure root logging with millisecond timestamps on stderr"""
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO

    handler = logging.StreamHandler()
    handler.setFormatter(
        MicrosecondFormatter('%(asctime)s [%(levelname)s] %(name)s: %(message)s')
    )

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)


def get_process_tree_state(pid: int) -> dict:
    """Describe a process and its children as a dictionary"""
    try:
        proc = psutil.Process(pid)
        children = []
        for child in proc.children(recursive=True):
            try:
                children.append({
                    'pid': child.pid,
                    'name': child.name(),
                    'status': child.status()
                })
            except (psutil.NoSuchProcess, psutil.AccessDenied):
                pass

        return {
            'pid': proc.pid,
            'name': proc.name(),
            'status': proc.status(),
            'children': children,
            'timestamp': datetime.now().isoformat()
        }

    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        return {
            'pid': pid,
            'error': str(e),
            'timestamp': datetime.now().isoformat()
        }


def collect_descendants(pid: int) -> list[psutil.Process]:
    """Return all descendants of a process, or an empty list if it is gone.

    Must be called before the parent exits: orphaned children are re-parented
    and can no longer be found through it.
    """
    try:
        return psutil.Process(pid).children(recursive=True)
    except (psutil.NoSuchProcess, psutil.AccessDenied):
        return []


def terminate_processes(procs: list[psutil.Process], timeout: float = PROCESS_TERMINATE_TIMEOUT,
                        logger: logging.Logger | None = None) -> int:
    """Terminate processes, killing any that outlive the timeout.

    Returns:
        Number of processes that had to be killed
    """
    logger = logger or logging.getLogger(__name__)
    if not procs:
        return 0

    for proc in procs:
        try:
            proc.terminate()
        except psutil.NoSuchProcess:
            pass
        except psutil.AccessDenied as e:
            logger.warning(f"Cannot terminate process {proc.pid}: {e}")

    _, alive = psutil.wait_procs(procs, timeout=timeout)
    for proc in alive:
        logger.warning(f"Process {proc.pid} did not terminate, killing")
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            pass

    logger.debug(f"Terminated {len(procs)} helper processes ({len(alive)} killed)")
    return len(alive)


async def terminate_processes_async(procs: list[psutil.Process],
                                    timeout: float = PROCESS_TERMINATE_TIMEOUT,
                                    logger: logging.Logger | None = None) -> int:
    """Async version of terminate_processes"""
    # psutil.wait_procs blocks, so run it off the event loop
    loop = asyncio.get_running_loop()
    return await loop.run_in_executor(None, terminate_processes, procs, timeout, logger)
