"""
Metrics and observability for Routewise.

Provides structured logging and metrics collection for routing decisions
and recorded spend.
"""

import json
import logging
import statistics as stats
import threading
from collections import defaultdict
from dataclasses import dataclass, asdict
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

from routewise.models import Transaction


@dataclass
class MetricEvent:
    """A single metric event."""
    timestamp: str
    event_type: str  # route, skip, no_route, transaction, error
    request_id: str
    data: dict[str, Any]


class RoutingMetrics:
    """
    Collects and aggregates metrics from routing and the budget ledger.

    `record_transaction` has the ledger listener signature, so an instance
    can be registered directly:

        metrics = RoutingMetrics()
        ledger.add_listener(metrics.record_transaction)
    """

    def __init__(
        self,
        metrics_file: Optional[Path] = None,
        enable_logging: bool = True,
    ):
        """
        Initialize metrics collector.

        Args:
            metrics_file: Optional file to write metrics to (JSONL format)
            enable_logging: Whether to enable structured logging
        """
        self.metrics_file = metrics_file
        self.enable_logging = enable_logging

        self.logger = logging.getLogger("routewise.metrics")
        if enable_logging and not self.logger.handlers:
            handler = logging.StreamHandler()
            handler.setFormatter(
                logging.Formatter(
                    "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
                )
            )
            self.logger.addHandler(handler)
            self.logger.setLevel(logging.INFO)

        self._lock = threading.Lock()
        self._events: list[MetricEvent] = []
        self._counters: dict[str, int] = defaultdict(int)
        self._histograms: dict[str, list[float]] = defaultdict(list)

    def record_route(
        self,
        request_id: str,
        provider_id: str,
        model_name: str,
        rule_id: Optional[str],
        score: float,
        estimated_cost: Optional[float] = None,
        attempts: int = 1,
        **extra: Any,
    ) -> None:
        """
        Record a routing decision.

        Args:
            request_id: Request identifier
            provider_id: Chosen provider
            model_name: Chosen model
            rule_id: Winning rule, None for the default rule
            score: Rule score
            estimated_cost: Pre-flight cost estimate in USD
            attempts: Candidates tried, including the chosen one
            **extra: Additional fields
        """
        self._record_event(
            event_type="route",
            request_id=request_id,
            data={
                "provider": provider_id,
                "model": model_name,
                "rule": rule_id or "default",
                "score": score,
                "estimated_cost_usd": estimated_cost,
                "attempts": attempts,
                **extra,
            },
        )
        with self._lock:
            self._counters["routes_total"] += 1
            self._counters[f"routes_by_rule_{rule_id or 'default'}"] += 1
            self._counters[f"routes_by_model_{provider_id}:{model_name}"] += 1
            if attempts > 1:
                self._counters["routes_fallback"] += 1
            self._histograms["attempts"].append(attempts)
            if estimated_cost is not None:
                self._histograms["estimated_cost_usd"].append(estimated_cost)

    def record_skip(self, request_id: str, candidate: str, reason: str) -> None:
        """Record a candidate rejected by the validator."""
        self._record_event(
            event_type="skip",
            request_id=request_id,
            data={"candidate": candidate, "reason": reason},
        )
        with self._lock:
            self._counters["candidates_skipped"] += 1

    def record_no_route(self, request_id: str, reasoning: list[str]) -> None:
        """Record a request for which every candidate was exhausted."""
        self._record_event(
            event_type="no_route",
            request_id=request_id,
            data={"reasoning": list(reasoning)},
        )
        with self._lock:
            self._counters["routes_failed"] += 1

        if self.enable_logging:
            self.logger.warning(f"No available route for request {request_id}")

    def record_transaction(self, transaction: Transaction) -> None:
        """Record ledger spend. Usable as a ledger transaction listener."""
        self._record_event(
            event_type="transaction",
            request_id=transaction.id,
            data=transaction.to_dict(),
        )
        with self._lock:
            self._counters["transactions_total"] += 1
            self._counters[f"transactions_by_provider_{transaction.provider}"] += 1
            self._histograms["cost_usd"].append(transaction.cost)

    def record_error(
        self,
        request_id: str,
        error_type: str,
        error_message: str,
        **extra: Any,
    ) -> None:
        """
        Record error.

        Args:
            request_id: Request identifier
            error_type: Type of error
            error_message: Error message
            **extra: Additional fields
        """
        self._record_event(
            event_type="error",
            request_id=request_id,
            data={
                "error_type": error_type,
                "error_message": error_message,
                **extra,
            },
        )
        with self._lock:
            self._counters["errors_total"] += 1
            self._counters[f"errors_{error_type}"] += 1

        if self.enable_logging:
            self.logger.error(
                f"Error in request {request_id}: {error_type} - {error_message}"
            )

    def _record_event(self, event_type: str, request_id: str, data: dict) -> None:
        """Record a metric event."""
        event = MetricEvent(
            timestamp=datetime.now(timezone.utc).isoformat(),
            event_type=event_type,
            request_id=request_id,
            data=data,
        )

        with self._lock:
            self._events.append(event)

            if self.metrics_file:
                with open(self.metrics_file, "a") as f:
                    f.write(json.dumps(asdict(event), default=str) + "\n")

        if self.enable_logging:
            self.logger.info(
                f"{event_type.upper()}: request_id={request_id}, data={data}"
            )

    @property
    def events(self) -> list[MetricEvent]:
        with self._lock:
            return list(self._events)

    def get_stats(self) -> dict:
        """
        Get aggregated statistics.

        Returns:
            Dictionary with metrics summary
        """
        with self._lock:
            counters = dict(self._counters)
            cost_values = list(self._histograms.get("cost_usd", []))
            attempts = list(self._histograms.get("attempts", []))
            total_events = len(self._events)

        return {
            "counters": counters,
            "cost": {
                "total_usd": sum(cost_values),
                "avg_usd": stats.mean(cost_values) if cost_values else 0,
                "p50_usd": stats.median(cost_values) if cost_values else 0,
                "p95_usd": (
                    stats.quantiles(cost_values, n=20)[18]
                    if len(cost_values) >= 20
                    else (max(cost_values) if cost_values else 0)
                ),
            },
            "attempts": {
                "avg": stats.mean(attempts) if attempts else 0,
                "max": max(attempts) if attempts else 0,
            },
            "total_events": total_events,
        }

    def reset(self) -> None:
        """Reset all metrics."""
        with self._lock:
            self._events.clear()
            self._counters.clear()
            self._histograms.clear()
