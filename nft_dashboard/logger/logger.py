import logging
import os
from datetime import datetime
from logging.handlers import TimedRotatingFileHandler
from typing import Optional

from rich.console import Console
from rich.logging import RichHandler

DATE_DIR_FORMAT = "%Y_%m_%d"


class DateDirectoryFileHandler(TimedRotatingFileHandler):
    """Writes to <log_dir>/<subdir>/<YYYY_MM_DD>/<name>.log and follows the date on every emit."""

    def __init__(self, log_dir: str, subdir: str, file_name: str, **kwargs):
        self.log_dir = log_dir
        self.subdir = subdir
        self.file_name = file_name
        super().__init__(self._current_path(), when='midnight', interval=1, backupCount=30,
                         encoding='utf-8', delay=True, **kwargs)

    def _current_path(self) -> str:
        day_dir = os.path.join(self.log_dir, self.subdir, datetime.now().strftime(DATE_DIR_FORMAT))
        os.makedirs(day_dir, exist_ok=True)
        return os.path.normpath(os.path.join(day_dir, self.file_name))

    def shouldRollover(self, record) -> bool:
        return False

    def emit(self, record):
        current = self._current_path()
        if os.path.normpath(self.baseFilename) != current:
            if self.stream:
                try:
                    self.stream.close()
                except OSError:
                    pass
                self.stream = None
            self.baseFilename = current
        super().emit(record)


class Logger(logging.Logger):
    """Application logger: rich console output plus per-day log files and a separate error log."""

    def __init__(self, logger_name: str = '', log_dir: Optional[str] = None,
                 logger_debug: bool = False, log_to_file: bool = True) -> None:
        sanitized_name = logger_name.replace('/', '_').replace('\\', '_') or "default"
        super().__init__(sanitized_name, logging.DEBUG if logger_debug else logging.INFO)

        if log_dir is None:
            # Imported here to avoid a config import at module load
            from nft_dashboard.config.loader import config
            log_dir = config.LOG_DIR
        self.log_dir = log_dir
        self.date_format = "%d.%m.%Y %H:%M:%S"

        if not self.handlers:
            self._add_console_handler()
            if log_to_file:
                self._add_file_handlers()
        self.debug(f"Logger {sanitized_name} initialized with log directory: {self.log_dir}")

    def _plain_formatter(self) -> logging.Formatter:
        if self.level == logging.DEBUG:
            fmt = "[{asctime}] {levelname} {filename}.{funcName} - {message}"
        else:
            fmt = "[{asctime}] {levelname} - {message}"
        return logging.Formatter(fmt, datefmt=self.date_format, style="{")

    def _add_console_handler(self) -> None:
        handler = RichHandler(console=Console(color_system="auto", width=160), rich_tracebacks=False,
                              log_time_format=self.date_format)
        handler.setLevel(self.level)
        self.addHandler(handler)

    def _add_file_handlers(self) -> None:
        file_name = f"{self.name}.log"
        main_handler = DateDirectoryFileHandler(self.log_dir, self.name, file_name)
        main_handler.setLevel(self.level)
        main_handler.setFormatter(self._plain_formatter())
        self.addHandler(main_handler)

        error_handler = DateDirectoryFileHandler(self.log_dir, "errors", file_name)
        error_handler.setLevel(logging.ERROR)
        error_handler.setFormatter(self._plain_formatter())
        self.addHandler(error_handler)
