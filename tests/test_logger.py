"""
Tests for logger functionality.
"""

from placements.logger import StructuredLogger, get_logger, reset_logger


class TestStructuredLogger:
    """Test structured logging functionality."""

    def test_logger_creation(self, tmp_path):
        """Logger should be created with empty metrics."""
        logger = StructuredLogger(name="test", level="INFO", log_dir=tmp_path, enable_console=False)

        assert logger.logger.name == "test"
        assert logger.metrics["operations_attempted"] == 0
        assert logger.metrics["notifications_sent"] == 0

    def test_log_with_context_written_to_file(self, tmp_path):
        """Context should be serialized onto the log line."""
        logger = StructuredLogger(name="test-file", log_dir=tmp_path, enable_console=False)

        logger.info("transition applied", placement_id="plc_1", version=3)
        for handler in logger.logger.handlers:
            handler.flush()

        log_files = list(tmp_path.glob("placements_*.log"))
        assert len(log_files) == 1
        content = log_files[0].read_text(encoding="utf-8")
        assert "transition applied" in content
        assert '"placement_id": "plc_1"' in content

    def test_log_methods(self, tmp_path):
        """All log level methods should work."""
        logger = StructuredLogger(name="test", log_dir=tmp_path, enable_console=False)

        logger.debug("Debug message")
        logger.info("Info message")
        logger.warning("Warning message")
        logger.error("Error message")
        logger.critical("Critical message")

    def test_operation_metrics(self):
        logger = StructuredLogger(name="test", enable_file=False, enable_console=False)

        logger.record_operation_attempt("transition")
        logger.record_operation_success("transition")
        logger.record_operation_attempt("transition")
        logger.record_operation_failure("transition", "invalid_transition")
        logger.record_operation_attempt("send_offer")
        logger.record_operation_failure("send_offer", "precondition_not_met")

        metrics = logger.get_metrics()

        assert metrics["operations_attempted"] == 3
        assert metrics["operations_succeeded"] == 1
        assert metrics["operations_failed"] == 2
        assert metrics["errors_by_type"] == {"invalid_transition": 1, "precondition_not_met": 1}
        assert metrics["operation_success_rate"]["transition"]["success_rate"] == 0.5
        assert metrics["operation_success_rate"]["send_offer"]["success_rate"] == 0

    def test_notification_metrics(self):
        logger = StructuredLogger(name="test", enable_file=False, enable_console=False)

        logger.record_notification(delivered=True)
        logger.record_notification(delivered=True)
        logger.record_notification(delivered=False)

        assert logger.metrics["notifications_sent"] == 2
        assert logger.metrics["notifications_failed"] == 1

    def test_metrics_summary(self, caplog):
        logger = StructuredLogger(name="test-summary", enable_file=False, enable_console=False)
        logger.record_operation_attempt("add_comment")
        logger.record_operation_success("add_comment")

        with caplog.at_level("INFO", logger="test-summary"):
            logger.log_metrics_summary()

        assert "Operations: 1/1 (100.0% success)" in caplog.text
        assert "add_comment: 1/1" in caplog.text


class TestGlobalLogger:

    def test_get_logger_returns_singleton(self):
        reset_logger()
        first = get_logger(enable_file=False, enable_console=False)
        assert get_logger() is first

    def test_reset_logger(self):
        first = get_logger(enable_file=False, enable_console=False)
        reset_logger()
        assert get_logger(enable_file=False, enable_console=False) is not first
