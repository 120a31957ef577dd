"""
Logging Configuration Module.

Sets up the back office's root logger: a rotating ``backoffice.log`` file plus
console output, both passed through a formatter that masks credentials, JWTs,
recipient signing tokens and email addresses before anything is written.
"""

import logging
import re
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import NamedTuple, Optional


LOG_FILENAME = "backoffice.log"
MAX_BYTES = 10 * 1024 * 1024  # 10 MB
BACKUP_COUNT = 5
LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

NOISY_LOGGERS = ("httpx", "httpcore", "aiosmtplib", "aiosqlite", "uvicorn", "uvicorn.access", "uvicorn.error")


class MaskingRule(NamedTuple):
    name: str
    pattern: re.Pattern
    replacement: str


# Applied in order; URL credentials go first so the key/value rule
# does not eat the password segment of a DSN.
MASKING_RULES: tuple[MaskingRule, ...] = (
    MaskingRule(
        "dsn_credentials",
        re.compile(r"(postgresql(?:\+asyncpg)?|sqlite(?:\+aiosqlite)?|mysql|redis|smtps?)://([^:/\s]+):([^@\s]+)@", re.IGNORECASE),
        r"\1://\2:***@",
    ),
    MaskingRule(
        "secret_assignment",
        re.compile(
            r"(password|secret|token|access_token|refresh_token|api_key|apikey|"
            r"authorization|cookie|credential|private_key|signer_token|"
            r"jwt_secret_key|smtp_password)\s*[:=]\s*['\"]?([^'\"\s&]+)['\"]?",
            re.IGNORECASE,
        ),
        r"\1=***",
    ),
    MaskingRule("bearer", re.compile(r"(Bearer\s+)([A-Za-z0-9\-_\.]+)", re.IGNORECASE), r"\1***"),
    MaskingRule(
        "jwt",
        re.compile(r"\b(eyJ[A-Za-z0-9\-_]+\.eyJ[A-Za-z0-9\-_]+\.[A-Za-z0-9\-_]+)\b"),
        "[JWT:***]",
    ),
    MaskingRule(
        "query_param",
        re.compile(r"([?&])(token|key|secret|password|api_key|apikey|access_token)=([^&\s]+)", re.IGNORECASE),
        r"\1\2=***",
    ),
    MaskingRule("recipient_link", re.compile(r"(/sign/|/signing/assets/)([^/\s?#\"']+)"), r"\1***"),
    MaskingRule(
        "email",
        re.compile(r"\b([a-zA-Z0-9._%+-]{2})([a-zA-Z0-9._%+-]*)(@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})\b"),
        r"\1***\3",
    ),
)


def mask_sensitive(text: str) -> str:
    """Return ``text`` with every masking rule applied."""
    for rule in MASKING_RULES:
        text = rule.pattern.sub(rule.replacement, text)
    return text


class SensitiveDataFormatter(logging.Formatter):
    """Formatter that masks the fully rendered line, tracebacks included."""

    def format(self, record: logging.LogRecord) -> str:
        return mask_sensitive(super().format(record))


def get_log_path(log_dir: Optional[Path] = None) -> Path:
    """Resolve (and create) the log directory; defaults to ``<project>/logs``."""
    logs_dir = log_dir or Path(__file__).resolve().parent.parent / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    return logs_dir / LOG_FILENAME


def setup_logging(log_level: int = logging.INFO, log_dir: Optional[Path] = None, console: bool = True) -> Path:
    """
    Configure the root logger for the back office.

    Args:
        log_level: Level for the root logger and its handlers.
        log_dir: Directory for the rotating log file.
        console: Also log to stdout.

    Returns:
        Path of the active log file.
    """
    log_file_path = get_log_path(log_dir)
    formatter = SensitiveDataFormatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handlers: list[logging.Handler] = [
        RotatingFileHandler(
            filename=str(log_file_path),
            maxBytes=MAX_BYTES,
            backupCount=BACKUP_COUNT,
            encoding="utf-8",
        )
    ]
    if console:
        handlers.append(logging.StreamHandler(sys.stdout))
    for handler in handlers:
        handler.setLevel(log_level)
        handler.setFormatter(formatter)
        root_logger.addHandler(handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    root_logger.info(f"Logging initialized. Log file: {log_file_path}")
    return log_file_path
