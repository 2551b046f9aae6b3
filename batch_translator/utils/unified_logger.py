"""
Console log sink for the batch translator.

Turns the orchestrator's ``(level, message)`` log channel into coloured
console lines and optional structured ``LogEntry`` records. Output goes
through ``tqdm.write`` so messages do not break an active progress bar.
"""
import os
import sys
import time
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, Optional

from tqdm import tqdm

from batch_translator.core.models import LogEntry


class LogLevel(Enum):
    """Log levels with priority values"""
    DEBUG = 10
    INFO = 20
    WARNING = 30
    ERROR = 40
    CRITICAL = 50

    @classmethod
    def from_name(cls, name: str) -> 'LogLevel':
        return cls.__members__.get(str(name).upper(), cls.INFO)


class LogType(Enum):
    """Types of log messages for special handling"""
    GENERAL = "general"
    TRANSLATION_START = "translation_start"
    TRANSLATION_END = "translation_end"
    ERROR_DETAIL = "error_detail"
    QUALITY = "quality"


class Colors:
    """ANSI color codes for terminal output"""
    NO_COLOR = os.environ.get('NO_COLOR') is not None or not sys.stdout.isatty()

    YELLOW = '' if NO_COLOR else '\033[93m'
    WHITE = '' if NO_COLOR else '\033[97m'
    GRAY = '' if NO_COLOR else '\033[90m'
    GREEN = '' if NO_COLOR else '\033[92m'
    RED = '' if NO_COLOR else '\033[91m'
    ENDC = '' if NO_COLOR else '\033[0m'

    @classmethod
    def disable(cls):
        cls.YELLOW = cls.WHITE = cls.GRAY = cls.GREEN = cls.RED = cls.ENDC = ''


LEVEL_COLORS = {
    LogLevel.DEBUG: 'GRAY',
    LogLevel.INFO: 'WHITE',
    LogLevel.WARNING: 'YELLOW',
    LogLevel.ERROR: 'RED',
    LogLevel.CRITICAL: 'RED',
}


class UnifiedLogger:
    """
    Formats log messages for the console and forwards structured entries.

    Each instance is owned by its caller; there is no shared logger.
    """

    def __init__(self,
                 name: str = "batch_translator",
                 console_output: bool = True,
                 enable_colors: bool = True,
                 min_level: LogLevel = LogLevel.INFO,
                 entry_callback: Optional[Callable[[LogEntry], None]] = None,
                 writer: Optional[Callable[[str], None]] = None):
        """
        Args:
            name: Logger name/identifier
            console_output: Whether to write to the console
            enable_colors: Whether to use colored output
            min_level: Minimum log level to display
            entry_callback: Receives a LogEntry for every accepted message
            writer: Replaces the console writer (``tqdm.write``)
        """
        self.name = name
        self.console_output = console_output
        self.min_level = min_level
        self.entry_callback = entry_callback
        self.writer = writer or tqdm.write
        self.start_time: Optional[datetime] = None

        if not enable_colors:
            Colors.disable()

    def _format_timestamp(self) -> str:
        return datetime.now().strftime("%H:%M:%S")

    def _format_console_message(self, level: LogLevel, message: str,
                                log_type: LogType, data: Dict[str, Any]) -> str:
        if log_type == LogType.TRANSLATION_START:
            return self._format_translation_start(data)
        if log_type == LogType.TRANSLATION_END:
            return self._format_translation_end(data)
        if log_type == LogType.ERROR_DETAIL:
            return self._format_error_detail(message, data)
        if log_type == LogType.QUALITY:
            return f"{Colors.YELLOW}[QUALITY] {message}{Colors.ENDC}"

        color = getattr(Colors, LEVEL_COLORS.get(level, 'WHITE'))
        level_str = f"[{level.name}] " if level != LogLevel.INFO else ""
        return f"{color}[{self._format_timestamp()}] {level_str}{message}{Colors.ENDC}"

    def _format_translation_start(self, data: Dict[str, Any]) -> str:
        self.start_time = datetime.now()
        output = [f"{Colors.YELLOW}TRANSLATION STARTED{Colors.ENDC}"]
        output.append(f"{Colors.WHITE}Input: {data.get('input', 'Unknown')} ({data.get('mode', 'text')}){Colors.ENDC}")
        output.append(f"{Colors.GRAY}Model: {data.get('model', 'Unknown')}{Colors.ENDC}")
        if data.get('total_chunks'):
            output.append(f"{Colors.WHITE}Total units: {data['total_chunks']}{Colors.ENDC}")
        if data.get('restored'):
            output.append(f"{Colors.WHITE}Restored from snapshot: {data['restored']}{Colors.ENDC}")
        return '\n'.join(output)

    def _format_translation_end(self, data: Dict[str, Any]) -> str:
        output = [f"\n{Colors.WHITE}TRANSLATION {data.get('state', 'complete').upper()}{Colors.ENDC}"]
        if self.start_time:
            output.append(f"{Colors.GRAY}Duration: {datetime.now() - self.start_time}{Colors.ENDC}")
        if 'output_file' in data:
            output.append(f"{Colors.WHITE}Output saved to: {data['output_file']}{Colors.ENDC}")
        if 'snapshot_file' in data:
            output.append(f"{Colors.WHITE}Snapshot saved to: {data['snapshot_file']}{Colors.ENDC}")
        stats = data.get('stats') or {}
        if stats:
            output.append(f"{Colors.WHITE}Completed units: {stats.get('completed', 0)}{Colors.ENDC}")
            if stats.get('failed', 0) > 0:
                output.append(f"{Colors.YELLOW}Failed units: {stats['failed']}{Colors.ENDC}")
        return '\n'.join(output)

    def _format_error_detail(self, message: str, data: Dict[str, Any]) -> str:
        output = [f"{Colors.RED}[{self._format_timestamp()}] ERROR: {message}{Colors.ENDC}"]
        if 'details' in data:
            output.append(f"{Colors.RED}Details: {data['details']}{Colors.ENDC}")
        if 'chunk' in data:
            output.append(f"{Colors.RED}Unit: {data['chunk']}{Colors.ENDC}")
        return '\n'.join(output)

    def log(self, level: LogLevel, message: str,
            log_type: LogType = LogType.GENERAL,
            data: Optional[Dict[str, Any]] = None):
        """
        Main logging method

        Args:
            level: Log level
            message: Log message
            log_type: Type of log for special formatting
            data: Additional data for the log entry
        """
        if level.value < self.min_level.value:
            return
        data = data or {}

        if self.console_output:
            try:
                self.writer(self._format_console_message(level, message, log_type, data))
            except UnicodeEncodeError:
                # cp1252 consoles on Windows
                safe_message = message.encode('ascii', 'replace').decode('ascii')
                self.writer(f"[{self._format_timestamp()}] {safe_message}")

        if self.entry_callback:
            self.entry_callback(LogEntry(level=level.name.lower(), message=message,
                                         timestamp=time.time(), data=dict(data, type=log_type.value)))

    def debug(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.DEBUG, message, log_type, data)

    def info(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.INFO, message, log_type, data)

    def warning(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.WARNING, message, log_type, data)

    def error(self, message: str, log_type: LogType = LogType.GENERAL, data: Optional[Dict[str, Any]] = None):
        self.log(LogLevel.ERROR, message, log_type, data)

    def create_log_callback(self) -> Callable[[str, str], None]:
        """
        Adapter for the orchestrator's log channel.

        Returns a function taking ``(level, message)`` with level one of
        ``debug``, ``info``, ``warning`` or ``error``.
        """
        def log_callback(level: str, message: str):
            self.log(LogLevel.from_name(level), message)

        return log_callback


def setup_cli_logger(enable_colors: bool = True, debug: Optional[bool] = None) -> UnifiedLogger:
    """Logger for CLI usage; DEBUG_MODE from the environment enables debug output"""
    if debug is None:
        from batch_translator.config import DEBUG_MODE
        debug = DEBUG_MODE

    return UnifiedLogger(
        console_output=True,
        enable_colors=enable_colors,
        min_level=LogLevel.DEBUG if debug else LogLevel.INFO,
    )
