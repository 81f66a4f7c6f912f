# ruff: noqa: S101
"""Tests for centralized logging configuration."""

import logging
import sys
from collections.abc import Generator
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, cast

import pytest
from pytest_mock import MockerFixture

from mintable.logging import LoggingConfig, get_log_config_summary, setup_logging
from mintable.logging.config import SecretFilter, redact


def _force_config(log_to_file: bool = False, **kwargs: Any) -> LoggingConfig:
    """Return a LoggingConfig that forces handler replacement."""
    return LoggingConfig(log_to_file=log_to_file, force_reconfigure=True, **kwargs)


class TestSetupLogging:
    """Tests for setup_logging handler configuration."""

    @pytest.fixture(autouse=True)
    def _reset_root_logger(self) -> Generator[None, Any, None]:
        """Remove handlers added during each test to avoid leaking state."""
        root = logging.getLogger()
        original_handlers = list(root.handlers)
        original_level = root.level
        yield
        root.handlers = original_handlers
        root.setLevel(original_level)

    @pytest.mark.unit
    def test_console_handler_uses_stderr(self) -> None:
        """Console output must go to stderr so stdout stays clean."""
        setup_logging(config=_force_config(), cli_mode=True)
        root = logging.getLogger()

        stream_handlers = [
            h
            for h in root.handlers
            if isinstance(h, logging.StreamHandler)
            and not isinstance(h, logging.FileHandler)
        ]
        assert stream_handlers, "Expected at least one StreamHandler"
        for h in stream_handlers:
            stream: object = getattr(cast(Any, h), "stream", None)
            assert stream is sys.stderr

    @pytest.mark.unit
    def test_verbose_enables_debug(self) -> None:
        setup_logging(config=_force_config(level="WARNING"), verbose=True)
        assert logging.getLogger().level == logging.DEBUG

    @pytest.mark.unit
    def test_level_from_config(self) -> None:
        setup_logging(config=_force_config(level="WARNING"))
        assert logging.getLogger().level == logging.WARNING

    @pytest.mark.unit
    def test_file_handler_when_enabled(self, tmp_path: Path) -> None:
        """A rotating file handler is added and its directory created."""
        log_file = tmp_path / "logs" / "mintable.log"
        setup_logging(config=_force_config(log_to_file=True, log_file_path=log_file))

        file_handlers = [
            h for h in logging.getLogger().handlers if isinstance(h, RotatingFileHandler)
        ]
        assert len(file_handlers) == 1
        assert log_file.parent.exists()
        file_handlers[0].close()

    @pytest.mark.unit
    def test_quiets_http_clients(self) -> None:
        setup_logging(config=_force_config(), verbose=True)
        assert logging.getLogger("urllib3").level == logging.WARNING
        assert logging.getLogger("googleapiclient").level == logging.WARNING


class TestLoggingConfigFromEnvironment:
    """Tests for loading LoggingConfig from environment variables."""

    @pytest.mark.unit
    def test_defaults(self, mocker: MockerFixture) -> None:
        mocker.patch.dict("os.environ", {}, clear=True)
        config = LoggingConfig.from_environment()

        assert config.level == "INFO"
        assert config.log_to_file is False
        assert config.log_file_path == Path("logs/mintable.log")

    @pytest.mark.unit
    def test_reads_environment(self, mocker: MockerFixture) -> None:
        mocker.patch.dict(
            "os.environ",
            {
                "LOG_LEVEL": "debug",
                "LOG_TO_FILE": "true",
                "LOG_FILE_PATH": "/tmp/custom.log",
                "LOG_BACKUP_COUNT": "7",
            },
            clear=True,
        )
        config = LoggingConfig.from_environment()

        assert config.level == "DEBUG"
        assert config.log_to_file is True
        assert config.log_file_path == Path("/tmp/custom.log")
        assert config.backup_count == 7

    @pytest.mark.unit
    def test_summary_reports_root_logger(self, mocker: MockerFixture) -> None:
        mocker.patch.dict("os.environ", {}, clear=True)
        summary = get_log_config_summary()

        assert summary["log_to_file"] is False
        assert isinstance(summary["handlers"], list)


class TestSecretRedaction:
    """Tests for masking credentials in log output."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        ("message", "expected"),
        [
            (
                "Fetching with access-sandbox-de3ce8ef-33f8",
                "Fetching with access-sandbox-***",
            ),
            ("Authorization: Bearer ya29.a0AfH6SMC", "Authorization: Bearer ***"),
            ("partner secret=hunter2 rejected", "partner secret=*** rejected"),
            ('{"refresh_token": "1//0g-abc"}', '{"refresh_token": "***"}'),
            ("Fetched 3 accounts", "Fetched 3 accounts"),
        ],
    )
    def test_redact(self, message: str, expected: str) -> None:
        assert redact(message) == expected

    @pytest.mark.unit
    def test_filter_formats_arguments_before_masking(self) -> None:
        record = logging.LogRecord(
            "mintable", logging.INFO, __file__, 1, "token %s", ("public-sandbox-1",), None
        )

        assert SecretFilter().filter(record) is True
        assert record.getMessage() == "token public-sandbox-***"
        assert record.args is None

    @pytest.mark.unit
    def test_handlers_get_the_filter(self) -> None:
        root = logging.getLogger()
        original_handlers = list(root.handlers)
        try:
            setup_logging(config=_force_config())
            assert all(
                any(isinstance(f, SecretFilter) for f in h.filters) for h in root.handlers
            )
        finally:
            root.handlers = original_handlers

    @pytest.mark.unit
    def test_redaction_can_be_disabled(self, mocker: MockerFixture) -> None:
        mocker.patch.dict("os.environ", {"LOG_REDACT_SECRETS": "false"}, clear=True)

        assert LoggingConfig.from_environment().redact_secrets is False
