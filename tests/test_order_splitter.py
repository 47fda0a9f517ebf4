"""Sub-order numbering, pacing and per-item isolation when splitting an order."""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest
from sqlalchemy import func, select

import order_store
from conftest import make_line_item, make_order
from order_normalizer import normalize_order
from order_splitter import SyncPacer, build_sub_order, split_order, sub_order_id, sub_order_number
from measurement_extractor import extract_line_item

CARA = "d587eb.myshopify.com"


class FakeClock:
    def __init__(self, now=100.0):
        self.now = now
        self.sleeps = []

    def __call__(self):
        return self.now

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.now += seconds


class TestNumbering:
    def test_single_item_keeps_original(self):
        assert sub_order_number("#CARA1001", 0, 1) == "#CARA1001"
        assert sub_order_id("555", 0, 1) == "555"

    @pytest.mark.parametrize("total", [2, 3, 7])
    def test_multi_item_suffixes(self, total):
        numbers = [sub_order_number("#CARA1001", i, total) for i in range(total)]
        assert numbers == [f"#CARA1001-{i + 1}" for i in range(total)]
        assert len(set(numbers)) == total
        assert sub_order_id(555, 1, total) == "555-2"


class TestSyncPacer:
    def test_first_attempt_does_not_wait(self):
        clock = FakeClock()
        pacer = SyncPacer(0.1, clock=clock, sleep=clock.sleep)
        assert pacer.wait_turn() is True
        assert clock.sleeps == []

    def test_waits_between_attempts(self):
        clock = FakeClock()
        pacer = SyncPacer(0.1, clock=clock, sleep=clock.sleep)
        pacer.wait_turn()
        clock.now += 0.03
        assert pacer.wait_turn() is True
        assert clock.sleeps == [pytest.approx(0.07)]

    def test_wait_is_capped_by_deadline(self):
        clock = FakeClock()
        pacer = SyncPacer(5, deadline=clock.now + 1, clock=clock, sleep=clock.sleep)
        assert pacer.wait_turn() is True
        assert pacer.wait_turn() is False
        assert clock.sleeps == [pytest.approx(1)]

    def test_expired_deadline(self):
        clock = FakeClock()
        pacer = SyncPacer(0, deadline=clock.now - 1, clock=clock, sleep=clock.sleep)
        assert pacer.expired() is True
        assert pacer.wait_turn() is False


class TestBuildSubOrder:
    def test_snapshot_holds_only_its_item(self):
        items = [make_line_item("NOVOD272", properties=[{"name": "Dimension A", "value": "190"}]),
                 make_line_item("PLAINFOAM")]
        order = make_order(line_items=items)
        normalized = normalize_order(order, CARA)
        record = build_sub_order(order, normalized, items[1], extract_line_item(items[1]), 1, 2, None)
        assert record["order_number"] == "#CARA1001-2"
        assert record["shopify_order_id"] == "5551234567890-2"
        assert record["order_data"]["line_items"] == [items[1]]
        assert record["order_data"]["extracted_measurements"][0]["sku"] == "PLAINFOAM"
        assert len(order["line_items"]) == 2
        assert record["supplier_assigned"] is None
        assert record["supplier_name"] is None
        assert record["line_items"][0]["mapped"] is False

    def test_supplier_name_follows_key(self):
        item = make_line_item("ESSENTIAL-1")
        order = make_order(line_items=[item])
        record = build_sub_order(order, normalize_order(order, CARA), item, extract_line_item(item), 0, 1, "SOUTHERN")
        assert record["supplier_name"] == "Southern Production Schedule"
        assert record["order_number"] == "#CARA1001"


def _count_rows(engine):
    with engine.connect() as conn:
        return conn.execute(select(func.count()).select_from(order_store.processed_orders)).scalar_one()


class TestSplitOrder:
    def test_one_row_per_item_and_supplier_per_item(self, engine):
        order = make_order(line_items=[make_line_item("NOVOD272"), make_line_item("PLAINFOAM")])
        results = split_order(engine, order, normalize_order(order, CARA))
        assert [r["sub_order_number"] for r in results] == ["#CARA1001-1", "#CARA1001-2"]
        assert [r["supplier_assigned"] for r in results] == ["SOUTHERN", None]
        assert _count_rows(engine) == 2

    def test_forced_supplier_applies_to_all(self, engine):
        order = make_order(line_items=[make_line_item("NOVOD272"), make_line_item("PLAINFOAM")])
        results = split_order(engine, order, normalize_order(order, CARA), supplier_key="MATTRESSSHIRE")
        assert {r["supplier_assigned"] for r in results} == {"MATTRESSSHIRE"}

    def test_persist_failure_does_not_stop_later_items(self, engine, monkeypatch):
        order = make_order(line_items=[make_line_item(f"ESSENTIAL-{i}") for i in range(3)])
        real_upsert = order_store.upsert_sub_order
        calls = []

        def flaky_upsert(conn, data):
            calls.append(data["order_number"])
            if data["order_number"].endswith("-2"):
                raise RuntimeError("db hiccup")
            return real_upsert(conn, data)

        monkeypatch.setattr(order_store, "upsert_sub_order", flaky_upsert)
        results = split_order(engine, order, normalize_order(order, CARA))
        assert calls == ["#CARA1001-1", "#CARA1001-2", "#CARA1001-3"]
        assert results[1]["error"] == "db hiccup"
        assert "db_id" in results[0] and "db_id" in results[2]
        assert _count_rows(engine) == 2

    def test_sync_failure_only_marks_that_item(self, engine, fake_sheets):
        batch = fake_sheets.spreadsheets.return_value.values.return_value.batchUpdate.return_value
        batch.execute.side_effect = [{}, RuntimeError("quota exceeded"), {}]
        order = make_order(line_items=[make_line_item(s) for s in ("ESSENTIAL-1", "GRAND-2", "NOVO-3")])
        results = split_order(engine, order, normalize_order(order, CARA))
        assert [r["sheets_synced"] for r in results] == [True, False, True]
        with engine.connect() as conn:
            row = order_store.get_order(conn, results[1]["db_id"])
        assert row["sheets_synced"] is False
        assert row["sync_error_message"] == "quota exceeded"
        assert _count_rows(engine) == 3

    def test_deadline_skips_sync_but_still_persists(self, engine, fake_sheets):
        clock = FakeClock()
        pacer = SyncPacer(0, deadline=clock.now - 1, clock=clock, sleep=clock.sleep)
        order = make_order(line_items=[make_line_item("ESSENTIAL-1"), make_line_item("GRAND-2")])
        results = split_order(engine, order, normalize_order(order, CARA), pacer=pacer)
        assert [r["sync_note"] for r in results] == ["deadline exceeded", "deadline exceeded"]
        assert _count_rows(engine) == 2
        fake_sheets.spreadsheets.return_value.values.return_value.batchUpdate.assert_not_called()

    def test_slow_sheets_call_stops_at_deadline(self, engine):
        clock = FakeClock()
        start = clock.now
        client = MagicMock()
        values_api = client.spreadsheets.return_value.values.return_value

        def slow_read(**kwargs):
            clock.now += 0.6
            return {"values": []}

        values_api.get.return_value.execute.side_effect = slow_read
        pacer = SyncPacer(0.1, deadline=start + 0.5, clock=clock, sleep=clock.sleep)
        order = make_order(line_items=[make_line_item("ESSENTIAL-1")])

        results = split_order(engine, order, normalize_order(order, CARA), pacer=pacer, sheets_client=client)

        assert results[0]["sheets_synced"] is False
        assert results[0]["sync_note"] == "deadline exceeded"
        values_api.batchUpdate.assert_not_called()
        assert clock.now - start == pytest.approx(0.6)
        with engine.connect() as conn:
            row = order_store.get_order(conn, results[0]["db_id"])
        assert row["sheets_synced"] is False
        assert row["sync_error_message"] == "deadline exceeded"

    def test_redelivery_is_flagged(self, engine):
        order = make_order(line_items=[make_line_item("ESSENTIAL-1"), make_line_item("PLAINFOAM")])
        first = split_order(engine, order, normalize_order(order, CARA))
        second = split_order(engine, order, normalize_order(order, CARA))
        assert [r["redelivered"] for r in first] == [False, False]
        assert [r["redelivered"] for r in second] == [True, True]
        assert [r["db_id"] for r in first] == [r["db_id"] for r in second]

    def test_explicit_client_is_used(self, engine):
        client = MagicMock()
        client.spreadsheets.return_value.values.return_value.get.return_value.execute.return_value = {"values": []}
        order = make_order(line_items=[make_line_item("IMPERIAL-9")])
        results = split_order(engine, order, normalize_order(order, CARA), sheets_client=client)
        assert results[0]["sheets_synced"] is True
        assert results[0]["sheets_range"] == "Row 2"
