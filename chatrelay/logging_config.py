import datetime
import logging
from pathlib import Path
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from .settings import settings

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s - %(message)s"

_configured = False


class LocalTimezoneFormatter(logging.Formatter):
    """
    Render ``asctime`` in LOG_TIMEZONE, or in the host's local zone when the
    setting is empty or names an unknown zone.
    """

    def __init__(self, fmt: str | None = None, *, timezone_name: str | None = None) -> None:
        super().__init__(fmt)
        self.tz = self._zone(timezone_name)

    @staticmethod
    def _zone(name: str | None) -> datetime.tzinfo:
        try:
            if name:
                return ZoneInfo(name)
        except ZoneInfoNotFoundError:
            logging.getLogger(__name__).warning("Unknown LOG_TIMEZONE %r; using local time", name)
        return datetime.datetime.now().astimezone().tzinfo or datetime.timezone.utc

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        stamp = datetime.datetime.fromtimestamp(record.created, tz=self.tz)
        return stamp.strftime(datefmt) if datefmt else stamp.isoformat(timespec="milliseconds")


class DailyFileHandler(logging.FileHandler):
    """
    File handler writing to ``<log_dir>/<prefix>-YYYY-MM-DD.log``.

    The file is switched on the first record of a new day, and only the
    newest ``keep_days`` files are kept.
    """

    def __init__(self, log_dir: Path, prefix: str = "chatrelay", keep_days: int = 7) -> None:
        self.log_dir = Path(log_dir)
        self.prefix = prefix
        self.keep_days = keep_days
        self.day = datetime.date.today()
        self.log_dir.mkdir(parents=True, exist_ok=True)
        super().__init__(self._path(self.day), encoding="utf-8", delay=True)
        self._prune()

    def _path(self, day: datetime.date) -> Path:
        return self.log_dir / f"{self.prefix}-{day.isoformat()}.log"

    def _prune(self) -> None:
        if self.keep_days <= 0:
            return
        files = sorted(self.log_dir.glob(f"{self.prefix}-*.log"))
        for stale in files[: -self.keep_days]:
            stale.unlink(missing_ok=True)

    def emit(self, record: logging.LogRecord) -> None:
        today = datetime.date.today()
        if today != self.day:
            self.acquire()
            try:
                if self.stream is not None:
                    self.stream.close()
                    self.stream = None
                self.day = today
                self.baseFilename = str(self._path(today).resolve())
                self._prune()
            finally:
                self.release()
        super().emit(record)


def setup_logging() -> None:
    """
    Configure application logging.

    Records from the ``chatrelay`` logger tree go to the daily file under
    LOG_DIR. The console handler sits on the root logger so uvicorn's
    access and error logs share the same format.
    """
    global _configured
    if _configured:
        return

    level = logging.getLevelName(str(settings.log_level).upper())
    if not isinstance(level, int):
        level = logging.INFO
    formatter = LocalTimezoneFormatter(LOG_FORMAT, timezone_name=settings.log_timezone)

    file_handler = DailyFileHandler(
        Path(settings.log_dir),
        prefix="chatrelay",
        keep_days=settings.log_backup_days,
    )
    file_handler.setFormatter(formatter)
    app_logger = logging.getLogger("chatrelay")
    app_logger.setLevel(level)
    app_logger.addHandler(file_handler)

    root = logging.getLogger()
    root.setLevel(level)
    if not any(type(h) is logging.StreamHandler for h in root.handlers):
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        root.addHandler(console)

    _configured = True


logger = logging.getLogger("chatrelay")
