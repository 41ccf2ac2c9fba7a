"""
Logging infrastructure for the daytrader engine.
"""

import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, TYPE_CHECKING

if TYPE_CHECKING:
    from .config import LoggingConfig


class ColoredFormatter(logging.Formatter):
    """Colored formatter for console output."""

    COLORS = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    RESET = '\033[0m'

    def format(self, record: logging.LogRecord) -> str:
        levelname = record.levelname
        if levelname in self.COLORS:
            record.levelname = f"{self.COLORS[levelname]}{levelname}{self.RESET}"
        try:
            return super().format(record)
        finally:
            record.levelname = levelname


class StructuredFormatter(logging.Formatter):
    """Structured formatter for file output with trading context prefixes."""

    def format(self, record: logging.LogRecord) -> str:
        prefix = ""
        if hasattr(record, 'phase'):
            prefix += f"[{record.phase}] "
        if hasattr(record, 'symbol'):
            prefix += f"[{record.symbol}] "
        if hasattr(record, 'order_id'):
            prefix += f"[ORDER:{record.order_id}] "
        message = super().format(record)
        return f"{prefix}{message}" if prefix else message


def setup_logger(
    name: str,
    level: str = "INFO",
    log_file: Optional[str] = None,
    max_size: str = "10MB",
    backup_count: int = 5,
    console_output: bool = True
) -> logging.Logger:
    """
    Set up a logger with file rotation and optional console output.

    Args:
        name: Logger name
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        log_file: Path to log file (optional)
        max_size: Maximum log file size before rotation
        backup_count: Number of backup files to keep
        console_output: Whether to output to console

    Returns:
        Configured logger instance
    """
    logger = logging.getLogger(name)
    logger.handlers.clear()

    log_level = getattr(logging, level.upper(), logging.INFO)
    logger.setLevel(log_level)

    if console_output:
        console_handler = logging.StreamHandler(sys.stdout)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(ColoredFormatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(console_handler)

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=_parse_size(max_size),
            backupCount=backup_count,
            encoding='utf-8'
        )
        file_handler.setLevel(log_level)
        file_handler.setFormatter(StructuredFormatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(funcName)s:%(lineno)d | %(message)s",
            datefmt="%Y-%m-%d %H:%M:%S"
        ))
        logger.addHandler(file_handler)

    logger.propagate = False
    return logger


def configure_logging(config: "LoggingConfig") -> logging.Logger:
    """Configure the package root logger from a LoggingConfig section."""
    return setup_logger(
        name="daytrader",
        level=config.level,
        log_file=config.file_path,
        max_size=config.max_size,
        backup_count=config.backup_count,
        console_output=config.console_output
    )


def _parse_size(size_str: str) -> int:
    """
    Parse size string (e.g., '10MB', '1GB') to bytes.

    Falls back to 10MB when the string cannot be parsed.
    """
    size_str = size_str.upper().strip()

    # Longest suffixes first so "10MB" is not read as "10M" + "B"
    for unit, multiplier in (('GB', 1024 ** 3), ('MB', 1024 ** 2), ('KB', 1024), ('B', 1)):
        if size_str.endswith(unit):
            number = size_str[:-len(unit)].strip()
            try:
                return int(float(number) * multiplier)
            except ValueError:
                break

    try:
        return int(size_str)
    except ValueError:
        return 10 * 1024 * 1024


class TradingLoggerAdapter(logging.LoggerAdapter):
    """Logger adapter that stamps records with phase and symbol context."""

    def process(self, msg: str, kwargs: dict) -> tuple:
        extra = dict(self.extra)
        extra.update(kwargs.get('extra', {}))
        kwargs['extra'] = extra
        return msg, kwargs


def get_trading_adapter(
    logger: logging.Logger,
    phase: Optional[str] = None,
    symbol: Optional[str] = None
) -> TradingLoggerAdapter:
    """
    Wrap a logger with trading context.

    Args:
        logger: Logger to wrap
        phase: State machine phase (e.g. 'BUYING')
        symbol: Trading symbol

    Returns:
        Logger adapter with trading context
    """
    extra = {}
    if phase:
        extra['phase'] = phase
    if symbol:
        extra['symbol'] = symbol
    return TradingLoggerAdapter(logger, extra)
