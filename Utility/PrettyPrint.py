import logging
import os
from typing import Any, Callable, Literal

from rich import box
from rich.console import Console
from rich.logging import RichHandler
from rich.table import Table
from tqdm import tqdm


def _terminal_width(default: int = 150) -> int:
    try:
        return os.get_terminal_size().columns
    except OSError:
        return default


GlobalConsole = Console(width=_terminal_width())


def print_as_table(headers: list[str], rows: list[list[Any]], title: str | None = None,
                   sort_rows: Callable[[list[Any]], Any] | None = None, digits: int = 4) -> None:
    def fmt(value: Any) -> str:
        match value:
            case None   : return ""
            case float(): return f"{value:.{digits}f}"
            case _      : return str(value)

    if sort_rows is not None: rows = sorted(rows, key=sort_rows)

    table = Table(title=title, box=box.MINIMAL_DOUBLE_HEAD)
    for header in headers: table.add_column(header, justify="left")
    for row in rows: table.add_row(*map(fmt, row))
    GlobalConsole.print(table)


class ColoredTqdm(tqdm):
    """Progress bar sized to the shared console, turns red when closed before reaching total."""
    def __init__(self, *args, **kwargs):
        kwargs.setdefault("colour", "yellow")
        super().__init__(*args, ascii=False, ncols=GlobalConsole.width - 10, **kwargs)

    def close(self, *args, **kwargs):
        finished = self.total is None or self.n >= self.total
        self.colour = "#35aca4" if finished else "red"
        self.desc   = ("✅" if finished else "❌") + self.desc
        super().close(*args, **kwargs)


class GlobalLog:
    """
    Single process-wide logger writing through rich onto `GlobalConsole`.

    `Logger.write(level, msg)` with level in info / warn / error / fatal.
    """
    LogLevel = Literal["info", "warn", "error", "fatal"]
    Levels: dict[str, int] = {
        "info" : logging.INFO,
        "warn" : logging.WARNING,
        "error": logging.ERROR,
        "fatal": logging.FATAL,
    }
    _instance: "GlobalLog | None" = None

    def __new__(cls) -> "GlobalLog":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
            cls._instance._setup()
        return cls._instance

    def _setup(self) -> None:
        self._logger = logging.getLogger("PhotoTemplate")
        self._logger.setLevel(logging.INFO)
        if not self._logger.handlers:
            self._logger.addHandler(RichHandler(console=GlobalConsole, log_time_format="[%X]"))
        self._logger.propagate = False

    def write(self, level: LogLevel, msg: Any, marked: bool = False) -> None:
        self._logger.log(self.Levels[level], msg, stacklevel=2, extra={"markup": marked})


Logger = GlobalLog()
