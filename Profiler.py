import time
import cProfile
import pstats
import threading
from functools import wraps
from contextlib import contextmanager
from typing import Optional, Dict, List
import numpy as np
import warp as wp
import line_profiler

class ProfilingScope:
    def __init__(self, name: str, parent: Optional['ProfilingScope'] = None):
        self.name = name
        self.parent = parent
        self.children: Dict[str, 'ProfilingScope'] = {}
        self.timings: List[float] = []

    def add_timing(self, duration: float):
        self.timings.append(duration)

    def get_stats(self):
        if not self.timings:
            return {"mean": 0, "std": 0, "min": 0, "max": 0, "total": 0, "calls": 0}

        return {
            "mean": np.mean(self.timings),
            "std": np.std(self.timings) if len(self.timings) > 1 else 0,
            "min": np.min(self.timings),
            "max": np.max(self.timings),
            "total": np.sum(self.timings),
            "calls": len(self.timings)
        }

class Profiler:
    """Process-wide hierarchical wall-clock profiler.

    Solver phases are timed with profile_scope(); passing a Warp device
    synchronizes it before the scope closes so that asynchronous kernel
    launches are charged to the phase that issued them.
    """
    _instance = None
    _lock = threading.Lock()

    def __new__(cls):
        with cls._lock:
            if cls._instance is None:
                cls._instance = super(Profiler, cls).__new__(cls)
                cls._instance._initialized = False
            return cls._instance

    def __init__(self):
        if self._initialized:
            return

        self._initialized = True
        self.enabled = True
        self.root = ProfilingScope("root")
        self.current_scope = self.root
        self.cprofile = cProfile.Profile()
        self.line_profiler = line_profiler.LineProfiler()

    @contextmanager
    def profile_scope(self, name: str, device=None):
        """Context manager timing a named child of the current scope"""
        if not self.enabled:
            yield
            return

        if name not in self.current_scope.children:
            self.current_scope.children[name] = ProfilingScope(name, self.current_scope)

        previous_scope = self.current_scope
        self.current_scope = self.current_scope.children[name]

        start_time = time.perf_counter()
        try:
            yield
            if device is not None:
                wp.synchronize_device(device)
        finally:
            self.current_scope.add_timing(time.perf_counter() - start_time)
            self.current_scope = previous_scope

    def profile_function(self):
        """Decorator adding line-level and scope timing to a host function"""
        def decorator(func):
            lined = self.line_profiler(func)

            @wraps(func)
            def wrapper(*args, **kwargs):
                with self.profile_scope(func.__name__):
                    return lined(*args, **kwargs)
            return wrapper
        return decorator

    def start_profiling(self):
        self.enabled = True
        self.cprofile.enable()

    def stop_profiling(self):
        self.enabled = False
        self.cprofile.disable()

    def reset(self):
        self.root = ProfilingScope("root")
        self.current_scope = self.root
        self.cprofile = cProfile.Profile()
        self.line_profiler = line_profiler.LineProfiler()

    def get_stats(self):
        """Hierarchical statistics, one dict per scope"""
        def _get_scope_stats(scope: ProfilingScope, depth: int = 0):
            stats = {
                "name": scope.name,
                "stats": scope.get_stats(),
                "depth": depth
            }
            if scope.children:
                stats["children"] = [
                    _get_scope_stats(child, depth + 1)
                    for child in scope.children.values()
                ]
            return stats

        return _get_scope_stats(self.root)

    def find(self, *path: str) -> Optional[ProfilingScope]:
        scope = self.root
        for name in path:
            scope = scope.children.get(name)
            if scope is None:
                return None
        return scope

    def print_stats(self):
        def _print_scope(stats, indent=""):
            s = stats['stats']
            if stats['depth'] == 0:
                print(f"{indent}{stats['name']}:")
            else:
                print(f"{indent}{stats['name']}: mean {s['mean']*1000:.3f}ms  "
                      f"max {s['max']*1000:.3f}ms  total {s['total']*1000:.1f}ms  calls {s['calls']}")

            for child in stats.get('children', []):
                _print_scope(child, indent + "  ")

        _print_scope(self.get_stats())

    def print_line_stats(self):
        self.line_profiler.print_stats()

    def print_cprofile_stats(self, limit=20):
        stats = pstats.Stats(self.cprofile)
        stats.strip_dirs()
        stats.sort_stats("cumulative")
        stats.print_stats(limit)
