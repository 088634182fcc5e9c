"""
Observability Metrics
Counters for cart reconciliation outcomes and bundle cache degradation
"""
from typing import Dict, Iterable, Any, Optional
import logging
import time
from collections import defaultdict, deque
from dataclasses import dataclass, asdict
import threading

logger = logging.getLogger(__name__)


@dataclass
class ReconciliationMetric:
    """Outcome counts of a single reconcile() call"""
    timestamp: float
    line_count: int
    states: Dict[str, int]
    orphan_count: int = 0


class MetricsCollector:
    """Collects and aggregates bundle cart counters"""

    def __init__(self, history_size: int = 200):
        self.reconciliation_states = defaultdict(int)  # state -> lines
        self.cache_events = defaultdict(int)  # event kind -> count
        self.recent_reconciliations = deque(maxlen=history_size)
        self.counters = {
            "reconcile_calls": 0,
            "lines_reconciled": 0,
            "bundles_priced": 0,
            "pricing_rejections": 0,
        }
        self.last_reconciliation: Optional[ReconciliationMetric] = None

        # Thread-safe lock
        self._lock = threading.Lock()

    def record_reconciliation(self, states: Iterable[str], orphan_count: int = 0) -> None:
        """Record the per-line states produced by one reconcile() call"""
        per_call: Dict[str, int] = defaultdict(int)
        for state in states:
            per_call[state] += 1

        metric = ReconciliationMetric(
            timestamp=time.time(),
            line_count=sum(per_call.values()),
            states=dict(per_call),
            orphan_count=orphan_count,
        )
        with self._lock:
            for state, count in per_call.items():
                self.reconciliation_states[state] += count
            self.counters["reconcile_calls"] += 1
            self.counters["lines_reconciled"] += metric.line_count
            self.recent_reconciliations.append(metric)
            self.last_reconciliation = metric

        if per_call.get("stale"):
            logger.info(f"Reconciliation found {per_call['stale']} stale bundle line(s)")

    def record_cache_event(self, kind: str, count: int = 1) -> None:
        """kind: unavailable | corrupt | expired | malformed | write_failed"""
        with self._lock:
            self.cache_events[kind] += count

    def record_pricing(self, success: bool) -> None:
        with self._lock:
            if success:
                self.counters["bundles_priced"] += 1
            else:
                self.counters["pricing_rejections"] += 1

    def snapshot(self) -> Dict[str, Any]:
        with self._lock:
            return {
                "counters": dict(self.counters),
                "reconciliation_states": dict(self.reconciliation_states),
                "cache_events": dict(self.cache_events),
                "last_reconciliation": asdict(self.last_reconciliation) if self.last_reconciliation else None,
                "recent_reconciliations": [asdict(metric) for metric in self.recent_reconciliations],
            }

    def reset(self) -> None:
        with self._lock:
            self.reconciliation_states.clear()
            self.cache_events.clear()
            self.recent_reconciliations.clear()
            for key in self.counters:
                self.counters[key] = 0
            self.last_reconciliation = None


# Global metrics collector instance
metrics_collector = MetricsCollector()
