# outreach/core/logging_config.py
"""
Logging configuration for the outreach engine.
Provides console output plus rotating log files, including a dedicated
log of campaign passes for operator inspection.
"""
import logging
import logging.handlers
import sys
from pathlib import Path


LOGS_DIR = Path(__file__).parent.parent.parent / "logs"

# Log files
ERROR_LOG_FILE = LOGS_DIR / "error.log"
DEBUG_LOG_FILE = LOGS_DIR / "debug.log"
CAMPAIGN_LOG_FILE = LOGS_DIR / "campaigns.log"

CAMPAIGN_LOGGER_NAME = "campaign_runs"


class ColoredFormatter(logging.Formatter):
    """Colored console formatter for better readability"""

    COLORS = {
        'DEBUG': '\033[36m',      # Cyan
        'INFO': '\033[32m',       # Green
        'WARNING': '\033[33m',    # Yellow
        'ERROR': '\033[31m',      # Red
        'CRITICAL': '\033[35m',   # Magenta
        'RESET': '\033[0m'
    }

    def format(self, record):
        log_color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{log_color}{record.levelname}{self.COLORS['RESET']}"
        return super().format(record)


def setup_logging(app_name: str = "outreach", level: str = "DEBUG", logs_dir: Path = None):
    """
    Setup logging with console and file handlers.

    Creates three log files:
    - error.log: Only ERROR and CRITICAL messages
    - debug.log: All messages at `level` and above
    - campaigns.log: One summary line per campaign pass
    """
    logs_dir = Path(logs_dir) if logs_dir else LOGS_DIR
    logs_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)

    # Remove existing handlers
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    # ═══════════════════════════════════════════════════════════
    # Console Handler - with colors
    # ═══════════════════════════════════════════════════════════
    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.INFO)
    console_handler.setFormatter(ColoredFormatter('%(levelname)s | %(name)s | %(message)s'))
    root_logger.addHandler(console_handler)

    # ═══════════════════════════════════════════════════════════
    # ERROR Log File - Rotating, only errors
    # ═══════════════════════════════════════════════════════════
    error_handler = logging.handlers.RotatingFileHandler(
        logs_dir / ERROR_LOG_FILE.name,
        maxBytes=10 * 1024 * 1024,  # 10 MB
        backupCount=5,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)s | %(name)s | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(error_handler)

    # ═══════════════════════════════════════════════════════════
    # DEBUG Log File - Rotating, all messages
    # ═══════════════════════════════════════════════════════════
    debug_handler = logging.handlers.RotatingFileHandler(
        logs_dir / DEBUG_LOG_FILE.name,
        maxBytes=20 * 1024 * 1024,  # 20 MB
        backupCount=5,
        encoding='utf-8'
    )
    debug_handler.setLevel(getattr(logging, level.upper(), logging.DEBUG))
    debug_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(name)-30s | %(filename)s:%(lineno)d | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))
    root_logger.addHandler(debug_handler)

    # ═══════════════════════════════════════════════════════════
    # Campaign Log File - one line per pass
    # ═══════════════════════════════════════════════════════════
    campaign_handler = logging.handlers.RotatingFileHandler(
        logs_dir / CAMPAIGN_LOG_FILE.name,
        maxBytes=20 * 1024 * 1024,  # 20 MB
        backupCount=5,
        encoding='utf-8'
    )
    campaign_handler.setLevel(logging.DEBUG)
    campaign_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    ))

    campaign_logger = get_campaign_logger()
    for handler in campaign_logger.handlers[:]:
        campaign_logger.removeHandler(handler)
    campaign_logger.addHandler(campaign_handler)
    campaign_logger.setLevel(logging.DEBUG)
    campaign_logger.propagate = True  # Also send to root handlers

    logger = logging.getLogger(__name__)
    logger.info(f"{'='*60}")
    logger.info(f"Logging initialized for {app_name}")
    logger.info(f"Log directory: {logs_dir}")
    logger.info(f"{'='*60}")

    return root_logger


def get_campaign_logger():
    """Get logger specifically for campaign pass summaries"""
    return logging.getLogger(CAMPAIGN_LOGGER_NAME)
