"""Prometheus-compatible metrics for application monitoring."""

import logging
import time
from typing import Dict, List

from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request

logger = logging.getLogger(__name__)


class MetricsCollector:
    """Collects HTTP and settlement metrics in Prometheus exposition format."""

    def __init__(self):
        self.request_count: Dict[str, int] = {}
        self.request_duration: Dict[str, List[float]] = {}
        self.error_count: Dict[int, int] = {}
        self.active_requests: int = 0
        # Business counters
        self.settlements: Dict[str, int] = {}
        self.conflicts: Dict[str, int] = {}
        self.invoices: Dict[str, int] = {}
        self.inconsistent_totals: int = 0

    def record_request(self, method: str, path: str, status: int, duration: float):
        # Normalize path to avoid cardinality explosion
        normalized = self._normalize_path(path)
        key = f"{method} {normalized}"
        self.request_count[key] = self.request_count.get(key, 0) + 1
        if key not in self.request_duration:
            self.request_duration[key] = []
        durations = self.request_duration[key]
        durations.append(duration)
        if len(durations) > 1000:
            self.request_duration[key] = durations[-1000:]
        if status >= 400:
            self.error_count[status] = self.error_count.get(status, 0) + 1

    def record_settlement(self, outcome: str):
        """Count a settlement by outcome: created, already_settled or race_lost."""
        self.settlements[outcome] = self.settlements.get(outcome, 0) + 1

    def record_conflict(self, kind: str):
        self.conflicts[kind] = self.conflicts.get(kind, 0) + 1

    def record_invoice(self, source: str):
        self.invoices[source] = self.invoices.get(source, 0) + 1

    def record_inconsistent_totals(self):
        self.inconsistent_totals += 1

    @staticmethod
    def _normalize_path(path: str) -> str:
        """Replace numeric IDs with :id to limit cardinality."""
        parts = path.split("/")
        return "/".join(":id" if p.isdigit() else p for p in parts)

    def get_prometheus_metrics(self) -> str:
        lines: List[str] = []
        lines.append("# HELP http_requests_total Total HTTP requests")
        lines.append("# TYPE http_requests_total counter")
        for key, count in sorted(self.request_count.items()):
            method, path = key.split(" ", 1)
            lines.append(f'http_requests_total{{method="{method}",path="{path}"}} {count}')

        lines.append("# HELP http_errors_total Total HTTP errors by status code")
        lines.append("# TYPE http_errors_total counter")
        for code, count in sorted(self.error_count.items()):
            lines.append(f'http_errors_total{{status="{code}"}} {count}')

        lines.append("# HELP http_active_requests Current active requests")
        lines.append("# TYPE http_active_requests gauge")
        lines.append(f"http_active_requests {self.active_requests}")

        lines.append("# HELP http_request_duration_seconds Request duration histogram")
        lines.append("# TYPE http_request_duration_seconds summary")
        for key, durations in sorted(self.request_duration.items()):
            if durations:
                method, path = key.split(" ", 1)
                avg = sum(durations) / len(durations)
                p99 = sorted(durations)[int(len(durations) * 0.99)] if len(durations) > 1 else durations[0]
                lines.append(f'http_request_duration_seconds{{method="{method}",path="{path}",quantile="0.99"}} {p99:.4f}')
                lines.append(f'http_request_duration_seconds{{method="{method}",path="{path}",quantile="0.5"}} {avg:.4f}')

        lines.append("# HELP settlements_total Order settlements by outcome")
        lines.append("# TYPE settlements_total counter")
        for outcome, count in sorted(self.settlements.items()):
            lines.append(f'settlements_total{{outcome="{outcome}"}} {count}')

        lines.append("# HELP order_conflicts_total Order writes rejected by conflict kind")
        lines.append("# TYPE order_conflicts_total counter")
        for kind, count in sorted(self.conflicts.items()):
            lines.append(f'order_conflicts_total{{kind="{kind}"}} {count}')

        lines.append("# HELP invoices_created_total Invoices created by source")
        lines.append("# TYPE invoices_created_total counter")
        for source, count in sorted(self.invoices.items()):
            lines.append(f'invoices_created_total{{source="{source}"}} {count}')

        lines.append("# HELP inconsistent_totals_total Settlements refused for inconsistent totals")
        lines.append("# TYPE inconsistent_totals_total counter")
        lines.append(f"inconsistent_totals_total {self.inconsistent_totals}")

        return "\n".join(lines) + "\n"


metrics = MetricsCollector()


class MetricsMiddleware(BaseHTTPMiddleware):
    """Middleware that records request metrics."""

    async def dispatch(self, request: Request, call_next):
        if request.url.path == "/metrics":
            return await call_next(request)

        metrics.active_requests += 1
        start = time.time()
        try:
            response = await call_next(request)
            duration = time.time() - start
            metrics.record_request(
                request.method,
                request.url.path,
                response.status_code,
                duration,
            )
            return response
        except Exception:
            duration = time.time() - start
            metrics.record_request(request.method, request.url.path, 500, duration)
            raise
        finally:
            metrics.active_requests -= 1
