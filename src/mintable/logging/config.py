"""Logging configuration for Mintable.

Log lines from the provider and sink clients can echo request details, so
every handler installed here runs records through ``SecretFilter`` first.
"""

import logging
import os
import re
import sys
from dataclasses import dataclass
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any

# Plaid access/public/link tokens, OAuth bearer tokens and key=value secrets
_SECRET_PATTERNS = [
    re.compile(r"\b(access|public|link)-(sandbox|development|production)-[\w-]+"),
    re.compile(r"(Bearer\s+)[\w.~+/-]+=*", re.IGNORECASE),
    re.compile(
        r"((?:secret|api_key|apikey|password|refresh_token|access_token)[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+",
        re.IGNORECASE,
    ),
]
MASK = "***"

QUIET_LOGGERS = {
    "urllib3": logging.WARNING,
    "requests": logging.WARNING,
    "googleapiclient": logging.WARNING,
    "google_auth_httplib2": logging.WARNING,
    "plaid": logging.INFO,
}


def redact(message: str) -> str:
    """Mask credentials in a log message."""
    message = _SECRET_PATTERNS[0].sub(lambda m: f"{m.group(1)}-{m.group(2)}-{MASK}", message)
    for pattern in _SECRET_PATTERNS[1:]:
        message = pattern.sub(lambda m: f"{m.group(1)}{MASK}", message)
    return message


class SecretFilter(logging.Filter):
    """Rewrite records so tokens and secrets never reach a handler."""

    def filter(self, record: logging.LogRecord) -> bool:
        message = record.getMessage()
        redacted = redact(message)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


@dataclass
class LoggingConfig:
    """Configuration settings for application logging."""

    level: str = "INFO"
    format_string: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    cli_format_string: str = "%(message)s"
    log_to_file: bool = False
    log_file_path: Path = Path("logs/mintable.log")
    max_file_size_mb: int = 10
    backup_count: int = 3
    redact_secrets: bool = True
    force_reconfigure: bool = False

    @classmethod
    def from_environment(cls) -> "LoggingConfig":
        """Create logging configuration from ``LOG_*`` environment variables.

        Returns:
            LoggingConfig: Configuration loaded from environment
        """
        return cls(
            level=os.getenv("LOG_LEVEL", "INFO").upper(),
            log_to_file=os.getenv("LOG_TO_FILE", "false").lower() == "true",
            log_file_path=Path(os.getenv("LOG_FILE_PATH", "logs/mintable.log")),
            max_file_size_mb=int(os.getenv("LOG_MAX_FILE_SIZE_MB", "10")),
            backup_count=int(os.getenv("LOG_BACKUP_COUNT", "3")),
            redact_secrets=os.getenv("LOG_REDACT_SECRETS", "true").lower() != "false",
        )


def _file_handler(config: LoggingConfig) -> logging.Handler:
    config.log_file_path.parent.mkdir(parents=True, exist_ok=True)
    handler = RotatingFileHandler(
        config.log_file_path,
        maxBytes=config.max_file_size_mb * 1024 * 1024,
        backupCount=config.backup_count,
    )
    handler.setFormatter(logging.Formatter(config.format_string))
    return handler


def setup_logging(
    config: LoggingConfig | None = None,
    cli_mode: bool = False,
    verbose: bool = False,
) -> None:
    """Configure the root logger once per process.

    Args:
        config: Optional logging configuration. If None, loads from environment.
        cli_mode: If True, console lines carry only the message
        verbose: If True, enable DEBUG level logging (overrides config level)
    """
    if config is None:
        config = LoggingConfig.from_environment()

    level = logging.DEBUG if verbose else getattr(logging, config.level, logging.INFO)

    # stderr keeps stdout free for command output
    console = logging.StreamHandler(sys.stderr)
    console.setFormatter(
        logging.Formatter(config.cli_format_string if cli_mode else config.format_string)
    )
    handlers: list[logging.Handler] = [console]
    if config.log_to_file:
        handlers.append(_file_handler(config))

    if config.redact_secrets:
        for handler in handlers:
            handler.addFilter(SecretFilter())

    logging.basicConfig(level=level, handlers=handlers, force=config.force_reconfigure)

    for name, quiet_level in QUIET_LOGGERS.items():
        logging.getLogger(name).setLevel(quiet_level)


def get_log_config_summary() -> dict[str, Any]:
    """Describe the active root logger and the environment's logging settings."""
    config = LoggingConfig.from_environment()
    root_logger = logging.getLogger()

    return {
        "level": logging.getLevelName(root_logger.level),
        "handlers": [type(h).__name__ for h in root_logger.handlers],
        "log_to_file": config.log_to_file,
        "log_file_path": str(config.log_file_path),
        "redact_secrets": config.redact_secrets,
    }
