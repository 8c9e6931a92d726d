# Tests for logging setup

import logging

import pytest

from offline_sync.logging_config import SyncAlertBuffer, setup_logging


@pytest.fixture
def restore_root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for h in list(root.handlers):
        if h not in handlers:
            root.removeHandler(h)
            h.close()
    root.setLevel(level)


class TestSetupLogging:
    """Test handlers installed on the root logger"""

    def test_writes_to_log_file(self, tmp_path, restore_root_logger):
        log_path = tmp_path / 'logs' / 'pos.log'
        setup_logging(log_path, console=False)

        logging.getLogger('offline_sync.test').info("sale queued")
        for h in restore_root_logger.handlers:
            h.flush()

        assert 'sale queued' in log_path.read_text(encoding='utf-8')

    def test_warnings_and_errors_buffered(self, tmp_path, restore_root_logger):
        alerts = setup_logging(tmp_path / 'pos.log', console=False)

        logging.getLogger('offline_sync.test').info("pass done")
        logging.getLogger('offline_sync.sync_queue').warning("Sync action 3 failed: timeout")
        logging.getLogger('offline_sync.test').error("store unavailable")

        recent = alerts.recent()
        assert [(a['level'], a['message']) for a in recent] == [
            ('WARNING', 'Sync action 3 failed: timeout'),
            ('ERROR', 'store unavailable'),
        ]
        assert recent[0]['source'] == 'offline_sync.sync_queue'

    def test_setup_is_idempotent(self, tmp_path, restore_root_logger):
        setup_logging(tmp_path / 'pos.log', console=False)
        setup_logging(tmp_path / 'pos.log', 'debug', console=False)

        assert len(restore_root_logger.handlers) == 2
        assert restore_root_logger.level == logging.DEBUG


class TestSyncAlertBuffer:
    """Test the bounded alert buffer"""

    def test_keeps_only_latest(self):
        buffer = SyncAlertBuffer(capacity=2)
        log = logging.getLogger('offline_sync.buffer_test')
        log.addHandler(buffer)
        try:
            for n in range(3):
                log.warning(f"failure {n}")
        finally:
            log.removeHandler(buffer)

        assert [a['message'] for a in buffer.recent()] == ['failure 1', 'failure 2']
