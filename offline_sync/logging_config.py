# Logging setup for the sync agent
# Rotating log file, optional console, and a buffer of recent problems for the recovery status

import logging
import sys
from collections import deque
from datetime import datetime
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Dict, List, Optional, Union

LOG_FILE = Path(__file__).resolve().parent.parent / "logs" / "offline_pos.log"
LOG_MAX_BYTES = 5 * 1024 * 1024  # 5 MB
LOG_BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"

# urllib3 logs every pooled connection
NOISY_LOGGERS = ("urllib3", "requests")


class SyncAlertBuffer(logging.Handler):
    """Remembers the last few WARNING+ records (failed actions, unreachable backend)"""

    def __init__(self, capacity: int = 50, level: int = logging.WARNING):
        super().__init__(level=level)
        self._alerts = deque(maxlen=capacity)

    def emit(self, record: logging.LogRecord):
        try:
            self._alerts.append({
                'at': datetime.fromtimestamp(record.created).isoformat(timespec='seconds'),
                'level': record.levelname,
                'source': record.name,
                'message': record.getMessage(),
            })
        except Exception:
            self.handleError(record)

    def recent(self) -> List[Dict]:
        return list(self._alerts)


def setup_logging(log_path: Optional[Union[str, Path]] = None,
                  level: Union[int, str] = logging.INFO,
                  console: bool = True) -> SyncAlertBuffer:
    """Replace the root handlers; returns the alert buffer the agent reports from"""
    log_path = Path(log_path or LOG_FILE)
    log_path.parent.mkdir(parents=True, exist_ok=True)
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)
        h.close()

    formatter = logging.Formatter(LOG_FORMAT, datefmt="%Y-%m-%d %H:%M:%S")
    handlers = [RotatingFileHandler(log_path, maxBytes=LOG_MAX_BYTES,
                                    backupCount=LOG_BACKUP_COUNT, encoding="utf-8")]
    if console:
        handlers.append(logging.StreamHandler(sys.stderr))
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    alerts = SyncAlertBuffer()
    root.addHandler(alerts)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)
    return alerts
