"""Unit tests for logging, metrics and database wiring"""

import json
import logging
from prometheus_client import REGISTRY
from earlypay.infrastructure.database.session import engine_options
from earlypay.infrastructure.observability.logging import CustomJsonFormatter
from earlypay.infrastructure.observability.metrics import record_commit


def test_json_formatter_adds_service_metadata():
    formatter = CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")
    record = logging.LogRecord("earlypay.test", logging.WARNING, __file__, 1, "tier overlap", None, None)
    record.transaction_id = "txn_1"

    payload = json.loads(formatter.format(record))

    assert payload["service"] == "earlypay-engine"
    assert payload["level"] == "WARNING"
    assert payload["message"] == "tier overlap"
    assert payload["transaction_id"] == "txn_1"


def test_record_commit_counts_state_and_discount():
    def sample(name, labels=None):
        return REGISTRY.get_sample_value(name, labels or {}) or 0.0

    completed_before = sample("earlypay_commit_total", {"state": "completed"})
    rejected_before = sample("earlypay_commit_total", {"state": "rejected"})
    discount_before = sample("earlypay_discount_issued_cents_sum")

    record_commit("completed", 500)
    record_commit("rejected", 0)

    assert sample("earlypay_commit_total", {"state": "completed"}) == completed_before + 1
    assert sample("earlypay_commit_total", {"state": "rejected"}) == rejected_before + 1
    assert sample("earlypay_discount_issued_cents_sum") == discount_before + 500


def test_engine_options_per_backend():
    assert engine_options("sqlite:///./local.db") == {"connect_args": {"check_same_thread": False}}

    postgres = engine_options("postgresql+psycopg2://user:pw@db:5432/earlypay")
    assert postgres["pool_pre_ping"] is True
    assert postgres["pool_size"] == 10
