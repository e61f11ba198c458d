import multiprocessing as mp
from abc import ABC, abstractmethod
from concurrent.futures import ThreadPoolExecutor
from types import SimpleNamespace
from typing import Callable

from Utility.Extensions import ConfigTestableSubclass


class IExecutor(ABC, ConfigTestableSubclass):
    """
    "For-each over range" abstraction. `for_each(n, func)` calls `func(i)` for every i in [0, n) and
    returns once all calls finished. Calls must write to disjoint outputs, the order they run in is
    unspecified.
    """
    def __init__(self, config: SimpleNamespace | None = None) -> None:
        self.config = config if config is not None else SimpleNamespace()

    @abstractmethod
    def for_each(self, n: int, func: Callable[[int], None]) -> None: ...

    def close(self) -> None:
        """Release resources held between calls (worker threads)."""
        return


class SequentialExecutor(IExecutor):
    def for_each(self, n: int, func: Callable[[int], None]) -> None:
        for i in range(n): func(i)

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None: return


class ThreadedExecutor(IExecutor):
    """
    Runs the calls on a thread pool. Torch kernels release the GIL so per-channel passes overlap.
    The pool is created on first use and reused by every later `for_each` until `close()`.

    config
    * max_workers   - size of the pool, 0 means one worker per cpu core
    """
    def __init__(self, config: SimpleNamespace | None = None) -> None:
        super().__init__(config)
        self.max_workers = getattr(self.config, "max_workers", 0) or mp.cpu_count()
        self._pool: ThreadPoolExecutor | None = None

    def _get_pool(self) -> ThreadPoolExecutor:
        if self._pool is None:
            self._pool = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="TemplateExecutor")
        return self._pool

    def for_each(self, n: int, func: Callable[[int], None]) -> None:
        if n <= 1 or self.max_workers == 1:
            for i in range(n): func(i)
            return
        # list(...) re-raises the first exception thrown by any worker
        list(self._get_pool().map(func, range(n)))

    def close(self) -> None:
        if getattr(self, "_pool", None) is not None:
            self._pool.shutdown(wait=True)
            self._pool = None

    def __enter__(self) -> "ThreadedExecutor": return self
    def __exit__(self, *_) -> None: self.close()
    def __del__(self) -> None: self.close()

    @classmethod
    def is_valid_config(cls, config: SimpleNamespace | None) -> None:
        cls._enforce_config_spec(config, {
            "max_workers": lambda v: isinstance(v, int) and v >= 0,
        })
