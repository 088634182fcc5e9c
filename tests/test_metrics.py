import sys
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from services.obs.metrics import MetricsCollector


def test_record_reconciliation_counts_states():
    collector = MetricsCollector()

    collector.record_reconciliation(["reconciled", "stale", "reconciled"], orphan_count=2)
    collector.record_reconciliation(["uncached"])

    assert collector.reconciliation_states["reconciled"] == 2
    assert collector.reconciliation_states["stale"] == 1
    assert collector.reconciliation_states["uncached"] == 1
    assert collector.counters["reconcile_calls"] == 2
    assert collector.counters["lines_reconciled"] == 4
    assert collector.last_reconciliation.states == {"uncached": 1}
    assert len(collector.recent_reconciliations) == 2

    recent = collector.snapshot()["recent_reconciliations"]
    assert [metric["states"] for metric in recent] == [{"reconciled": 2, "stale": 1}, {"uncached": 1}]
    assert recent[0]["orphan_count"] == 2


def test_history_is_bounded():
    collector = MetricsCollector(history_size=3)
    for _ in range(5):
        collector.record_reconciliation(["reconciled"])

    assert len(collector.recent_reconciliations) == 3
    assert collector.counters["reconcile_calls"] == 5


def test_cache_events_and_pricing():
    collector = MetricsCollector()

    collector.record_cache_event("expired", count=3)
    collector.record_cache_event("corrupt")
    collector.record_pricing(True)
    collector.record_pricing(False)
    collector.record_pricing(True)

    snapshot = collector.snapshot()
    assert snapshot["cache_events"] == {"expired": 3, "corrupt": 1}
    assert snapshot["counters"]["bundles_priced"] == 2
    assert snapshot["counters"]["pricing_rejections"] == 1
    assert snapshot["last_reconciliation"] is None
    assert snapshot["recent_reconciliations"] == []


@pytest.mark.parametrize("states", [[], ["stale"]])
def test_reset_clears_everything(states):
    collector = MetricsCollector()
    collector.record_reconciliation(states, orphan_count=1)
    collector.record_cache_event("unavailable")

    collector.reset()

    snapshot = collector.snapshot()
    assert snapshot["reconciliation_states"] == {}
    assert snapshot["cache_events"] == {}
    assert all(value == 0 for value in snapshot["counters"].values())
    assert snapshot["last_reconciliation"] is None
    assert snapshot["recent_reconciliations"] == []
