"""Shared fixtures: a throwaway SQLite database, the Flask test client and a fake Sheets API."""

from __future__ import annotations

import base64
import hashlib
import hmac
import json
import os
import tempfile
from unittest.mock import MagicMock

import pytest

_DB_DIR = tempfile.mkdtemp(prefix="order-ingestion-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'orders.db')}"
os.environ["DB_AUTO_CREATE_TABLES"] = "true"
os.environ["STORE1_DOMAIN"] = "uxyxaq-pu.myshopify.com"
os.environ["STORE1_WEBHOOK_SECRET"] = "moto-secret"
os.environ["STORE2_DOMAIN"] = "mattressmade.myshopify.com"
os.environ["STORE2_WEBHOOK_SECRET"] = "mybe-secret"
os.environ["STORE3_DOMAIN"] = "d587eb.myshopify.com"
os.environ["STORE3_WEBHOOK_SECRET"] = "cara-secret"
os.environ["SHEETS_SYNC_DELAY_SECONDS"] = "0"
os.environ["WEBHOOK_DEADLINE_SECONDS"] = "30"
os.environ.pop("GOOGLE_SERVICE_ACCOUNT_KEY", None)

import app as app_module  # noqa: E402
import order_store  # noqa: E402
import sheets_service  # noqa: E402

CARA_DOMAIN = "d587eb.myshopify.com"
CARA_SECRET = "cara-secret"
MOTO_DOMAIN = "uxyxaq-pu.myshopify.com"
MOTO_SECRET = "moto-secret"


def sign(body: bytes, secret: str) -> str:
    digest = hmac.new(secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


def make_line_item(sku, title="Custom Mattress", properties=None, price="250.00", variant_title=None):
    return {
        "id": abs(hash(sku)) % 10_000_000,
        "sku": sku,
        "title": title,
        "variant_title": variant_title,
        "quantity": 1,
        "price": price,
        "properties": properties or [],
    }


def make_order(order_number=1001, line_items=None, **extra):
    order = {
        "id": 5551234567890,
        "order_number": order_number,
        "name": f"#{order_number}",
        "email": "jane@example.com",
        "created_at": "2026-10-01T10:00:00+01:00",
        "total_price": "500.00",
        "currency": "GBP",
        "customer": {"first_name": "Jane", "last_name": "Doe", "email": "jane@example.com", "phone": "07700900000"},
        "billing_address": {
            "first_name": "Jane", "last_name": "Doe", "address1": "1 High Street",
            "city": "Leeds", "zip": "LS1 1AA", "country": "United Kingdom", "country_code": "GB",
        },
        "shipping_address": {
            "first_name": "Jane", "last_name": "Doe", "company": "Campsite Ltd", "address1": "2 Low Road",
            "city": "York", "province": "North Yorkshire", "zip": "YO1 1AA", "country": "United Kingdom",
        },
        "line_items": line_items if line_items is not None else [make_line_item("ESSENTIAL-100")],
    }
    order.update(extra)
    return order


@pytest.fixture
def engine():
    order_store.create_tables(app_module.engine)
    yield app_module.engine
    with app_module.engine.begin() as conn:
        conn.execute(order_store.processed_orders.delete())
        conn.execute(order_store.product_mappings.delete())


@pytest.fixture
def client(engine):
    app_module.app.config["TESTING"] = True
    return app_module.app.test_client()


@pytest.fixture
def post_webhook(client):
    """POSTs an order the way Shopify does: raw JSON bytes plus HMAC headers."""

    def _post(order, domain=CARA_DOMAIN, secret=CARA_SECRET, body=None, signature=None, headers=None):
        raw = body if body is not None else json.dumps(order).encode()
        all_headers = {
            "Content-Type": "application/json",
            "X-Shopify-Topic": "orders/create",
            "X-Shopify-Hmac-Sha256": signature if signature is not None else sign(raw, secret),
        }
        if domain:
            all_headers["X-Shopify-Shop-Domain"] = domain
        all_headers.update(headers or {})
        return client.post("/webhook/orders/create", data=raw, headers=all_headers)

    return _post


@pytest.fixture
def fake_sheets(monkeypatch):
    """Replaces the Google Sheets client with a MagicMock; column H starts with a header row."""
    fake = MagicMock()
    values_api = fake.spreadsheets.return_value.values.return_value
    values_api.get.return_value.execute.return_value = {"values": [["Order number"]]}
    values_api.batchUpdate.return_value.execute.return_value = {"totalUpdatedCells": 7}
    monkeypatch.setenv("GOOGLE_SERVICE_ACCOUNT_KEY", json.dumps({"client_email": "svc@example.com"}))
    monkeypatch.setattr(sheets_service, "get_sheets_client", lambda: fake)
    return fake


@pytest.fixture
def add_mapping(engine):
    def _add(sku, shape_id=None, specification=None):
        with engine.begin() as conn:
            conn.execute(order_store.product_mappings.insert().values(
                shopify_sku=sku, shape_id=shape_id, supplier_specification=specification,
            ))

    return _add
