"""
Tests for logging setup and process cleanup helpers.
"""

import asyncio
import logging
import os
import subprocess
import sys

import psutil
import pytest

from system_utils import (
    MicrosecondFormatter,
    collect_descendants,
    get_process_tree_state,
    setup_logging,
    terminate_processes,
    terminate_processes_async,
)

SLEEPER = [sys.executable, "-c", "import time; time.sleep(60)"]


@pytest.fixture
def sleeper():
    process = subprocess.Popen(SLEEPER)
    yield process
    if process.poll() is None:
        process.kill()
    process.wait()


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in list(root.handlers):
        root.removeHandler(handler)
    for handler in handlers:
        root.addHandler(handler)
    root.setLevel(level)


class TestLogging:
    def test_formatter_uses_milliseconds(self):
        formatter = MicrosecondFormatter("%(asctime)s %(message)s")
        record = logging.LogRecord("x", logging.INFO, __file__, 1, "hello", None, None)

        timestamp = formatter.format(record).split(" hello")[0]
        # YYYY-MM-DD HH:MM:SS.mmm
        assert len(timestamp) == 23
        assert timestamp[19] == "."

    def test_setup_logging_replaces_handlers(self, restore_root_logger):
        restore_root_logger.addHandler(logging.NullHandler())

        setup_logging("debug")

        assert restore_root_logger.level == logging.DEBUG
        assert len(restore_root_logger.handlers) == 1
        assert isinstance(restore_root_logger.handlers[0].formatter, MicrosecondFormatter)

    def test_unknown_level_falls_back_to_info(self, restore_root_logger):
        setup_logging("chatty")
        assert restore_root_logger.level == logging.INFO


class TestProcessHelpers:
    def test_collect_descendants(self, sleeper):
        pids = [proc.pid for proc in collect_descendants(os.getpid())]
        assert sleeper.pid in pids

    def test_collect_descendants_of_missing_process(self, sleeper):
        sleeper.kill()
        sleeper.wait()
        assert collect_descendants(sleeper.pid) == []

    def test_process_tree_state(self, sleeper):
        state = get_process_tree_state(os.getpid())

        assert state["pid"] == os.getpid()
        assert sleeper.pid in [child["pid"] for child in state["children"]]

    def test_terminate_processes(self, sleeper):
        killed = terminate_processes([psutil.Process(sleeper.pid)], timeout=5)

        assert killed == 0
        assert sleeper.wait(timeout=5) is not None

    def test_terminate_nothing(self):
        assert terminate_processes([]) == 0

    @pytest.mark.asyncio
    async def test_terminate_processes_async(self, sleeper):
        killed = await terminate_processes_async([psutil.Process(sleeper.pid)], timeout=5)

        assert killed == 0
        await asyncio.get_running_loop().run_in_executor(None, sleeper.wait)
