import time
import torch
from pathlib import Path
from typing import ClassVar
from functools import wraps
from contextlib import contextmanager

from Utility.PrettyPrint import Logger, print_as_table


class Timer:
    """
    Process-wide wall clock timer. When `Timer.ACTIVE` is False all decorators and contexts
    pass straight through, so instrumented hot paths cost nothing in normal runs.
    """
    ACTIVE: ClassVar[bool] = False
    CPU_TIME_STREAM: ClassVar[dict[str, tuple[list[float], list[float]]]] = dict()

    @classmethod
    def setup(cls, active: bool):
        cls.ACTIVE = active
        if active: Logger.write("info", "Timer is set to active.")

    @classmethod
    def reset(cls):
        cls.CPU_TIME_STREAM.clear()

    @classmethod
    def cpu_timeit(cls, name: str):
        def decorator(func):
            @wraps(func)
            def wrapped(*args, **kwargs):
                if not cls.ACTIVE: return func(*args, **kwargs)
                time_stream = cls.CPU_TIME_STREAM.get(name, ([], []))

                time_stream[0].append(time.perf_counter() * 1000)
                result = func(*args, **kwargs)
                time_stream[1].append(time.perf_counter() * 1000)

                cls.CPU_TIME_STREAM[name] = time_stream
                return result
            return wrapped
        return decorator

    @classmethod
    @contextmanager
    def CPUTimingContext(cls, name: str):
        if not cls.ACTIVE:
            yield
            return
        time_stream = cls.CPU_TIME_STREAM.get(name, ([], []))
        time_stream[0].append(time.perf_counter() * 1000)
        yield
        time_stream[1].append(time.perf_counter() * 1000)
        cls.CPU_TIME_STREAM[name] = time_stream

    @classmethod
    def elapsed(cls, name: str) -> list[float]:
        starts, ends = cls.CPU_TIME_STREAM.get(name, ([], []))
        return [end - start for start, end in zip(starts, ends)]

    @classmethod
    def report(cls):
        if not cls.ACTIVE: return
        rows = []
        for name in cls.CPU_TIME_STREAM:
            elapsed = cls.elapsed(name)
            if len(elapsed) == 0:
                rows.append([name, 0, None, None])
            else:
                median_elapsed = torch.tensor(elapsed).median().item()
                rows.append([name, len(elapsed), sum(elapsed) / len(elapsed), median_elapsed])
        print_as_table(["Timer", "#Call", "Avg (ms)", "Median (ms)"], rows, title="CPU Timers")

    @classmethod
    def save_elapsed(cls, json_file: str | Path):
        if not cls.ACTIVE: return
        import json
        with open(json_file, "w") as f:
            json.dump({
                "CPU_ElapsedTime": {name: cls.elapsed(name) for name in cls.CPU_TIME_STREAM}
            }, f)
        Logger.write("info", f"Elapsed time information write to {json_file}")
