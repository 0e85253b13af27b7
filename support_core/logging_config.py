import datetime
import logging
import shutil
from pathlib import Path
from typing import Callable, TextIO
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

_LOGGING_CONFIGURED = False

LOGGER_NAME = "supportcore"


def _resolve_tzinfo(timezone_name: str | None) -> datetime.tzinfo:
    if timezone_name:
        try:
            return ZoneInfo(timezone_name)
        except ZoneInfoNotFoundError:
            pass
    # Fallback to system local timezone
    return datetime.datetime.now().astimezone().tzinfo or datetime.UTC


class LocalTimezoneFormatter(logging.Formatter):
    """
    Logging formatter that forces timestamps into a configured timezone.
    Defaults to the system local timezone when LOG_TIMEZONE is not set
    or when the provided timezone is invalid.
    """

    def __init__(self, *args, timezone_name: str | None = None, **kwargs):
        super().__init__(*args, **kwargs)
        self._tzinfo = _resolve_tzinfo(timezone_name)

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        dt = datetime.datetime.fromtimestamp(record.created, tz=self._tzinfo)
        if datefmt:
            return dt.strftime(datefmt)
        return dt.isoformat(timespec="milliseconds")


def _project_root() -> Path:
    # support_core/logging_config.py -> support_core -> repo root
    return Path(__file__).resolve().parents[1]


def _resolve_log_dir(value: str | Path) -> Path:
    p = value if isinstance(value, Path) else Path(value)
    if p.is_absolute():
        return p
    return _project_root() / p


def infer_log_business(record: logging.LogRecord) -> str:
    """
    Best-effort mapping from a log record back to a "business bucket".

    Most modules share the single `logger` instance, so record.name is
    always "supportcore"; the callsite path decides the bucket.
    """
    name = record.name or ""
    if name.startswith("celery"):
        return "tasks"

    path = (record.pathname or "").replace("\\", "/")
    if "/support_core/lifecycle.py" in path:
        return "conversation"
    if "/support_core/context_cache.py" in path:
        return "cache"
    if "/support_core/locks.py" in path:
        return "locks"
    if "/support_core/tools/" in path or "/support_core/executor.py" in path:
        return "tools"
    if "/support_core/reasoning.py" in path or "/support_core/llm.py" in path:
        return "reasoning"
    if "/support_core/usage.py" in path:
        return "usage"
    if "/support_core/tasks/" in path or "/support_core/celery_app.py" in path:
        return "tasks"
    if "/support_core/db/" in path:
        return "db"

    return "app"


class DailyFolderFileHandler(logging.Handler):
    """
    Writes logs to: <log_dir>/<YYYY-MM-DD>/<filename>
    and keeps at most backup_days date folders.
    """

    def __init__(
        self,
        log_dir: Path,
        filename: str,
        backup_days: int = 7,
        encoding: str = "utf-8",
        timezone_name: str | None = None,
        now_fn: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.filename = filename
        self.backup_days = backup_days
        self.encoding = encoding
        self.terminator = "\n"
        self._tzinfo = _resolve_tzinfo(timezone_name)
        # now_fn is mainly for tests.
        self._now_fn = now_fn
        self._current_date: datetime.date | None = None
        self._stream: TextIO | None = None
        self._ensure_stream()

    def _today(self) -> datetime.date:
        if self._now_fn is not None:
            now = self._now_fn()
        else:
            now = datetime.datetime.now(tz=self._tzinfo)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tzinfo)
        return now.date()

    def _ensure_stream(self) -> None:
        today = self._today()
        if self._current_date == today and self._stream:
            return

        self._current_date = today
        if self._stream:
            try:
                self._stream.close()
            except OSError:
                pass
            self._stream = None

        file_path = self.log_dir / today.isoformat() / self.filename
        file_path.parent.mkdir(parents=True, exist_ok=True)
        self._stream = open(file_path, "a", encoding=self.encoding)
        _cleanup_old_dirs(self.log_dir, self.backup_days)

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._ensure_stream()
            if self._stream is None:
                return
            msg = self.format(record)
            self._stream.write(msg + self.terminator)
            self._stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            if self._stream:
                try:
                    self._stream.close()
                except OSError:
                    pass
                self._stream = None
        finally:
            super().close()


class DailyFolderBusinessFileHandler(logging.Handler):
    """
    Route logs into per-day folders and per-business files:
    <log_dir>/<YYYY-MM-DD>/<business>.log
    """

    def __init__(
        self,
        log_dir: Path,
        backup_days: int = 7,
        encoding: str = "utf-8",
        timezone_name: str | None = None,
        now_fn: Callable[[], datetime.datetime] | None = None,
    ) -> None:
        super().__init__()
        self.log_dir = log_dir
        self.backup_days = backup_days
        self.encoding = encoding
        self.terminator = "\n"
        self._tzinfo = _resolve_tzinfo(timezone_name)
        self._now_fn = now_fn
        self._current_date: datetime.date | None = None
        self._streams: dict[str, TextIO] = {}
        self._ensure_date()

    def _today(self) -> datetime.date:
        if self._now_fn is not None:
            now = self._now_fn()
        else:
            now = datetime.datetime.now(tz=self._tzinfo)
        if now.tzinfo is None:
            now = now.replace(tzinfo=self._tzinfo)
        return now.date()

    def _close_all_streams(self) -> None:
        for stream in self._streams.values():
            try:
                stream.close()
            except OSError:
                pass
        self._streams.clear()

    def _ensure_date(self) -> None:
        today = self._today()
        if self._current_date == today:
            return
        self._current_date = today
        self._close_all_streams()
        (self.log_dir / today.isoformat()).mkdir(parents=True, exist_ok=True)
        _cleanup_old_dirs(self.log_dir, self.backup_days)

    def _stream_for_biz(self, biz: str) -> TextIO:
        stream = self._streams.get(biz)
        if stream is not None:
            return stream
        if self._current_date is None:
            self._ensure_date()
        safe = "".join(c if (c.isalnum() or c in ("-", "_")) else "_" for c in biz)
        file_path = self.log_dir / self._current_date.isoformat() / f"{safe}.log"
        file_path.parent.mkdir(parents=True, exist_ok=True)
        stream = open(file_path, "a", encoding=self.encoding)
        self._streams[biz] = stream
        return stream

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self._ensure_date()
            biz = infer_log_business(record)
            # Expose biz for formatters.
            setattr(record, "biz", biz)
            stream = self._stream_for_biz(biz)
            msg = self.format(record)
            stream.write(msg + self.terminator)
            stream.flush()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        try:
            self._close_all_streams()
        finally:
            super().close()


def _cleanup_old_dirs(log_dir: Path, backup_days: int) -> None:
    if backup_days <= 0:
        return
    try:
        dirs = [p for p in log_dir.iterdir() if p.is_dir()]
    except OSError:
        return

    dated: list[tuple[datetime.date, Path]] = []
    for p in dirs:
        try:
            day = datetime.date.fromisoformat(p.name)
        except ValueError:
            continue
        dated.append((day, p))

    dated.sort(key=lambda x: x[0])
    if len(dated) <= backup_days:
        return
    for _, old_dir in dated[: len(dated) - backup_days]:
        try:
            shutil.rmtree(old_dir)
        except OSError:
            pass


class EnsureBizFilter(logging.Filter):
    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        if not hasattr(record, "biz"):
            setattr(record, "biz", infer_log_business(record))
        return True


def setup_logging() -> None:
    """
    Configure application logging.
    Writes logs to a daily folder under LOG_DIR (default: ./logs/),
    with files split by business, e.g. logs/2026-10-18/tools.log.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    log_dir = _resolve_log_dir(settings.log_dir)
    log_dir.mkdir(parents=True, exist_ok=True)

    root_logger = logging.getLogger()
    app_logger = logging.getLogger(LOGGER_NAME)

    level_value = getattr(logging, settings.log_level.upper(), logging.INFO)

    formatter = LocalTimezoneFormatter(
        "%(asctime)s [%(levelname)s] [%(biz)s] %(name)s - %(message)s",
        timezone_name=settings.log_timezone,
    )

    if settings.log_split_by_business:
        file_handler: logging.Handler = DailyFolderBusinessFileHandler(
            log_dir=log_dir,
            backup_days=settings.log_backup_days,
            encoding="utf-8",
            timezone_name=settings.log_timezone,
        )
    else:
        file_handler = DailyFolderFileHandler(
            log_dir=log_dir,
            filename="app.log",
            backup_days=settings.log_backup_days,
            encoding="utf-8",
            timezone_name=settings.log_timezone,
        )
    file_handler.setFormatter(formatter)
    file_handler.addFilter(EnsureBizFilter())
    # Only application logs go into the business log files.
    file_handler.addFilter(lambda record: record.name.startswith(LOGGER_NAME))
    app_logger.setLevel(level_value)
    app_logger.propagate = True  # let logs also reach the console handler on root
    app_logger.addHandler(file_handler)

    root_logger.setLevel(level_value)
    has_console = any(
        isinstance(h, logging.StreamHandler) and not isinstance(h, logging.FileHandler)
        for h in root_logger.handlers
    )
    if not has_console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        console_handler.addFilter(EnsureBizFilter())
        root_logger.addHandler(console_handler)

    # Third-party clients are chatty at INFO.
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)

    _LOGGING_CONFIGURED = True


logger = logging.getLogger(LOGGER_NAME)
