"""Prometheus text exposition of the crawler's counters."""

from __future__ import annotations

import gc
import os
import sys
import time
from collections.abc import Callable, Iterable
from typing import Any

from magnetico.stats.counters import NAMESPACE, Stats, get_instance

CONTENT_TYPE = "text/plain; version=0.0.4; charset=utf-8; escaping=underscores"

_START_TIME = time.time()


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def _escape_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _family(name: str, kind: str, help_text: str, samples: Iterable[str]) -> list[str]:
    return [f"# HELP {name} {_escape_help(help_text)}", f"# TYPE {name} {kind}", *samples]


def _runtime_lines() -> list[str]:
    lines: list[str] = []
    version = sys.version_info
    lines += _family(
        "python_info",
        "gauge",
        "Python platform information",
        [
            f'python_info{{implementation="{_escape_label(sys.implementation.name)}",'
            f'major="{version.major}",minor="{version.minor}",patchlevel="{version.micro}"}} 1'
        ],
    )
    gc_stats = gc.get_stats()
    lines += _family(
        "python_gc_collections_total",
        "counter",
        "Number of times this generation was collected",
        [
            f'python_gc_collections_total{{generation="{gen}"}} {stat.get("collections", 0)}'
            for gen, stat in enumerate(gc_stats)
        ],
    )
    lines += _family(
        "python_gc_objects_collected_total",
        "counter",
        "Objects collected during gc",
        [
            f'python_gc_objects_collected_total{{generation="{gen}"}} {stat.get("collected", 0)}'
            for gen, stat in enumerate(gc_stats)
        ],
    )
    return lines


def _process_lines() -> list[str]:
    times = os.times()
    cpu_name = f"{NAMESPACE}_process_cpu_seconds_total"
    start_name = f"{NAMESPACE}_process_start_time_seconds"
    return [
        *_family(
            cpu_name,
            "counter",
            "Total user and system CPU time spent in seconds.",
            [f"{cpu_name} {times.user + times.system!r}"],
        ),
        *_family(
            start_name,
            "gauge",
            "Start time of the process since unix epoch in seconds.",
            [f"{start_name} {_START_TIME!r}"],
        ),
    ]


def render_metrics(stats: Stats) -> str:
    """Runtime, process and crawler metrics in Prometheus text format."""
    lines = _runtime_lines() + _process_lines()
    for counter in sorted(stats.collect(), key=lambda c: c.name):
        lines += _family(
            counter.name, "counter", counter.help_text, [f"{counter.name} {counter.value}"]
        )
    return "\n".join(lines) + "\n"


def make_prometheus_handler() -> Callable[[dict[str, Any], Callable[..., Any]], list[bytes]]:
    """A WSGI application serving the process-wide metrics."""

    def handler(environ: dict[str, Any], start_response: Callable[..., Any]) -> list[bytes]:
        body = render_metrics(get_instance()).encode("utf-8")
        start_response(
            "200 OK",
            [("Content-Type", CONTENT_TYPE), ("Content-Length", str(len(body)))],
        )
        return [body]

    return handler