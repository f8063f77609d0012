"""
Metrics collection for the LicitaBR service.
Exposes Prometheus counters, gauges and histograms for MCP tool calls,
the PNCP proxy and the chat relay.
"""

import time
from contextlib import contextmanager
from typing import Iterator

from prometheus_client import (
    CollectorRegistry, Counter, Gauge, Histogram, generate_latest, CONTENT_TYPE_LATEST
)

from ..core.config import config

registry = CollectorRegistry()

tool_calls_total = Counter(
    "mcp_tool_calls_total",
    "Total de chamadas de ferramentas MCP",
    ["tool_name", "status"],
    registry=registry,
)

tool_duration_seconds = Histogram(
    "mcp_tool_duration_seconds",
    "Duração das chamadas de ferramentas em segundos",
    ["tool_name"],
    buckets=[0.1, 0.5, 1, 2, 5, 10],
    registry=registry,
)

active_requests = Gauge(
    "mcp_active_requests",
    "Número de requisições MCP ativas",
    registry=registry,
)

rpc_requests_total = Counter(
    "mcp_rpc_requests_total",
    "Total de requisições JSON-RPC por método e resultado",
    ["method", "outcome"],
    registry=registry,
)

proxy_requests_total = Counter(
    "pncp_proxy_requests_total",
    "Total de requisições encaminhadas ao PNCP",
    ["status"],
    registry=registry,
)

chat_requests_total = Counter(
    "chat_relay_requests_total",
    "Total de requisições ao relay de chat",
    ["provider", "status"],
    registry=registry,
)


class ToolCallTimer:
    """Tracks the outcome of a single tool call"""

    def __init__(self, tool_name: str):
        self.tool_name = tool_name
        self.status = "success"

    def fail(self) -> None:
        self.status = "error"


@contextmanager
def track_tool_call(tool_name: str) -> Iterator[ToolCallTimer]:
    """Context manager recording duration, status and concurrency of a tool call"""
    timer = ToolCallTimer(tool_name)
    if config.monitoring.enable_metrics:
        active_requests.inc()
    start_time = time.perf_counter()
    try:
        yield timer
    except Exception:
        timer.fail()
        raise
    finally:
        if config.monitoring.enable_metrics:
            active_requests.dec()
            tool_duration_seconds.labels(tool_name=tool_name).observe(time.perf_counter() - start_time)
            tool_calls_total.labels(tool_name=tool_name, status=timer.status).inc()


def record_rpc_request(method: str, outcome: str) -> None:
    if config.monitoring.enable_metrics:
        rpc_requests_total.labels(method=method, outcome=outcome).inc()


def record_proxy_request(status: int) -> None:
    if config.monitoring.enable_metrics:
        proxy_requests_total.labels(status=str(status)).inc()


def record_chat_request(provider: str, status: str) -> None:
    if config.monitoring.enable_metrics:
        chat_requests_total.labels(provider=provider, status=status).inc()


def render_metrics() -> bytes:
    """Render all metrics in the Prometheus text exposition format"""
    return generate_latest(registry)


__all__ = [
    "registry",
    "track_tool_call",
    "record_rpc_request",
    "record_proxy_request",
    "record_chat_request",
    "render_metrics",
    "CONTENT_TYPE_LATEST",
]
