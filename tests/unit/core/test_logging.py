"""
core/logging.py 테스트
"""

import logging
from logging.handlers import TimedRotatingFileHandler
from pathlib import Path

import pytest

from core.constants import Paths
from core.logging import get_log_file_path, setup_logging


@pytest.fixture
def restore_root_logger():
    """setup_logging이 추가한 핸들러 제거"""
    root = logging.getLogger()
    level = root.level
    yield
    for handler in list(root.handlers):
        if isinstance(handler, TimedRotatingFileHandler) or type(handler) is logging.StreamHandler:
            root.removeHandler(handler)
            handler.close()
    root.setLevel(level)


class TestLogging:
    """setup_logging 함수 테스트"""

    def test_log_file_path(self) -> None:
        assert get_log_file_path("scripts") == Paths.SCRIPTS_LOGS_DIR / "scripts.log"
        assert get_log_file_path("ledger") == Paths.LOGS_DIR / "ledger.log"

    def test_setup(self, temp_dir: Path, restore_root_logger) -> None:
        log_file = temp_dir / "logs" / "ledger.log"

        root = setup_logging("ledger", log_file=log_file)

        assert log_file.parent.exists()
        file_handlers = [h for h in root.handlers if isinstance(h, TimedRotatingFileHandler)]
        assert len(file_handlers) == 1
        assert logging.getLogger("aiosqlite").level == logging.WARNING

    def test_no_duplicate_handlers(self, temp_dir: Path, restore_root_logger) -> None:
        log_file = temp_dir / "ledger.log"

        setup_logging("ledger", log_file=log_file)
        root = setup_logging("ledger", log_file=log_file)

        assert len(root.handlers) == 2
