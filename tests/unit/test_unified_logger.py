"""
Tests for the console log sink.
"""

from batch_translator.utils.unified_logger import LogLevel, LogType, UnifiedLogger, setup_cli_logger


def make_logger(**kwargs):
    lines, entries = [], []
    logger = UnifiedLogger(enable_colors=False, writer=lines.append, entry_callback=entries.append, **kwargs)
    return logger, lines, entries


class TestUnifiedLogger:

    def test_info_has_no_level_tag(self):
        logger, lines, _ = make_logger()
        logger.info("Hello")
        assert len(lines) == 1
        assert lines[0].endswith("] Hello")
        assert "[INFO]" not in lines[0]

    def test_warning_is_tagged(self):
        logger, lines, _ = make_logger()
        logger.warning("Careful")
        assert "[WARNING] Careful" in lines[0]

    def test_min_level_filters(self):
        logger, lines, entries = make_logger(min_level=LogLevel.WARNING)
        logger.info("hidden")
        logger.error("shown")
        assert len(lines) == 1
        assert [entry.message for entry in entries] == ["shown"]

    def test_entries_carry_level_and_type(self):
        logger, _, entries = make_logger()
        logger.log(LogLevel.ERROR, "Unit failed", LogType.ERROR_DETAIL, {"chunk": 3})
        entry = entries[0]
        assert entry.level == "error"
        assert entry.data == {"chunk": 3, "type": "error_detail"}
        assert entry.timestamp > 0

    def test_error_detail_format(self):
        logger, lines, _ = make_logger()
        logger.error("Unit failed", LogType.ERROR_DETAIL, {"details": "HTTP 500", "chunk": 3})
        assert "Details: HTTP 500" in lines[0]
        assert "Unit: 3" in lines[0]

    def test_translation_end_summary(self):
        logger, lines, _ = make_logger()
        logger.info("done", LogType.TRANSLATION_END,
                    {"state": "stopped", "output_file": "out.txt", "stats": {"completed": 4, "failed": 1}})
        text = lines[0]
        assert "TRANSLATION STOPPED" in text
        assert "Output saved to: out.txt" in text
        assert "Failed units: 1" in text

    def test_log_callback_adapter(self):
        logger, lines, entries = make_logger()
        callback = logger.create_log_callback()
        callback('warning', "from the orchestrator")
        callback('nonsense', "defaults to info")
        assert [entry.level for entry in entries] == ["warning", "info"]

    def test_console_output_off(self):
        logger, lines, entries = make_logger(console_output=False)
        logger.info("quiet")
        assert lines == []
        assert len(entries) == 1


def test_setup_cli_logger_levels():
    assert setup_cli_logger(enable_colors=False, debug=True).min_level == LogLevel.DEBUG
    assert setup_cli_logger(enable_colors=False, debug=False).min_level == LogLevel.INFO
