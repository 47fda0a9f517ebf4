# order-ingestion-app/blueprints/webhooks.py
import json
import time
import traceback
from datetime import datetime, timezone
from flask import Blueprint, jsonify, request, current_app

from app import (
    engine, STORE_CONFIGS,
    SHEETS_SYNC_DELAY_SECONDS, WEBHOOK_DEADLINE_SECONDS,
    convert_row_to_dict, make_json_safe
)

import order_store
import sheets_service
import supplier_service
from webhook_security import resolve_store
from order_normalizer import normalize_order
from measurement_extractor import extract_line_item
from order_splitter import split_order, SyncPacer

webhooks_bp = Blueprint('webhooks_bp', __name__)


def _lookup_mappings(line_items):
    """Returns ({sku: mapping}, [unmapped skus]) using the product_mappings table."""
    mappings, unmapped = {}, []
    with engine.connect() as conn:
        for item in line_items:
            sku = item.get('sku')
            if not sku:
                continue
            try:
                mapping = order_store.get_product_mapping_by_sku(conn, sku)
            except Exception as e:
                current_app.logger.error(f"Mapping lookup failed for SKU {sku}: {e}", exc_info=True)
                mapping = None
            if mapping:
                mappings[sku] = mapping
            elif sku not in unmapped:
                unmapped.append(sku)
    return mappings, unmapped


@webhooks_bp.route('/orders/create', methods=['POST'])
def order_created_webhook():
    started_at = time.monotonic()
    timestamp = datetime.now(timezone.utc).isoformat()
    # Raw bytes first: the HMAC is over the body exactly as Shopify sent it.
    raw_body = request.get_data(cache=True, as_text=False)
    signature = request.headers.get('X-Shopify-Hmac-Sha256')
    shop_domain = request.headers.get('X-Shopify-Shop-Domain')
    topic = request.headers.get('X-Shopify-Topic')
    print(f"DEBUG WEBHOOK: Received {topic or 'unknown topic'} from {shop_domain or 'unknown shop'} ({len(raw_body)} bytes)")

    if not signature:
        print("ERROR WEBHOOK: Missing webhook signature")
        return jsonify({"error": "Missing signature"}), 401

    store = resolve_store(raw_body, signature, shop_domain, STORE_CONFIGS)
    if not store:
        print("ERROR WEBHOOK: Could not verify webhook signature or identify store")
        return jsonify({"error": "Invalid signature or unknown store"}), 401
    store_domain, store_config = store
    print(f"DEBUG WEBHOOK: Verified webhook from store: {store_config.get('name')} ({store_domain})")

    try:
        order = json.loads(raw_body.decode('utf-8'))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        print(f"ERROR WEBHOOK: Could not parse webhook body: {e}")
        return jsonify({"error": "Malformed JSON payload", "details": str(e)}), 400
    if not isinstance(order, dict) or order.get('id') is None:
        print("ERROR WEBHOOK: Payload is not an order object")
        return jsonify({"error": "Malformed order payload"}), 400

    if engine is None:
        print("ERROR WEBHOOK: Database engine not available.")
        return jsonify({"error": "Database engine not available."}), 500

    try:
        line_items = [item for item in (order.get('line_items') or []) if isinstance(item, dict)]
        order['line_items'] = line_items
        normalized = normalize_order(order, store_domain, store_config)
        meta = normalized['meta']
        extractions = [extract_line_item(item) for item in line_items]
        mappings, unmapped_products = _lookup_mappings(line_items)
        order_supplier = supplier_service.resolve_supplier(line_items)
    except Exception as e:
        print(f"ERROR WEBHOOK: Processing failed before sub-order creation: {e}")
        traceback.print_exc()
        return jsonify({"error": "Webhook processing failed", "details": str(e), "timestamp": timestamp}), 500

    pacer = SyncPacer(delay_seconds=SHEETS_SYNC_DELAY_SECONDS, deadline=started_at + WEBHOOK_DEADLINE_SECONDS)
    results = split_order(engine, order, normalized, extractions, mappings=mappings, pacer=pacer)

    created = [r for r in results if 'db_id' in r]
    failed = [r for r in results if 'error' in r]
    response_data = {
        "success": True,
        "orderId": meta['order_id'],
        "orderNumber": meta['order_number'],
        "store": store_config.get('name'),
        "productsProcessed": len(line_items),
        "subOrdersCreated": len(created),
        "supplierAssigned": supplier_service.supplier_name_for(order_supplier),
        "sheetsUpdated": any(r.get('sheets_synced') for r in created),
        "subOrders": [{
            "subOrderNumber": r['sub_order_number'],
            "dbId": r['db_id'],
            "sku": r['sku'],
            "productTitle": r['product_title'],
            "price": r['price'],
            "measurementsCount": r['measurements_count'],
            "shapeNumber": r['shape_number'],
            "supplierAssigned": r.get('supplier_assigned'),
            "sheetsSynced": r.get('sheets_synced', False),
            "sheetsRange": r.get('sheets_range'),
            "redelivered": r.get('redelivered', False),
        } for r in created],
        "measurementsExtracted": any(x['status']['provided'] for x in extractions),
        "customerNotesFound": bool(meta.get('notes')),
        "mattressLabelDetected": meta.get('mattress_label'),
        "timestamp": timestamp,
    }
    if unmapped_products:
        response_data["unmappedProducts"] = unmapped_products
    if failed:
        response_data["failedSubOrders"] = [
            {"subOrderNumber": r['sub_order_number'], "sku": r['sku'], "error": r['error']} for r in failed
        ]

    print(f"DEBUG WEBHOOK: Order {meta['order_number']}: {len(created)}/{len(line_items)} sub-orders created "
          f"in {time.monotonic() - started_at:.2f}s")
    if unmapped_products:
        print(f"WARN WEBHOOK: {len(unmapped_products)} products need mapping: {unmapped_products}")
    return jsonify(make_json_safe(response_data)), 200


@webhooks_bp.route('/orders/by-original/<path:original_number>', methods=['GET'])
def get_orders_by_original(original_number):
    print(f"DEBUG WEBHOOK_BY_ORIGINAL: Lookup for {original_number}")
    if engine is None: return jsonify({"error": "Database engine not available."}), 500
    conn = None
    try:
        conn = engine.connect()
        rows = order_store.get_sub_orders_by_original(conn, original_number)
        sub_orders = [convert_row_to_dict(r) for r in rows]
        return jsonify(make_json_safe({
            "success": True,
            "originalOrderNumber": original_number,
            "subOrdersCount": len(sub_orders),
            "subOrders": sub_orders,
        })), 200
    except Exception as e:
        print(f"ERROR WEBHOOK_BY_ORIGINAL: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to fetch sub-orders", "details": str(e)}), 500
    finally:
        if conn and not conn.closed: conn.close()


@webhooks_bp.route('/sheets/test', methods=['GET'])
def test_sheets_connection():
    if not sheets_service.is_sheets_configured():
        return jsonify({"success": False, "error": "GOOGLE_SERVICE_ACCOUNT_KEY is not set"}), 503
    report = sheets_service.test_connection()
    return jsonify(report), (200 if report.get('success') else 502)


@webhooks_bp.route('/test', methods=['GET'])
def webhook_test():
    return jsonify({
        "message": "Webhook endpoint is working",
        "stores": [
            {"domain": domain, "name": config.get('name'), "secretConfigured": bool(config.get('webhook_secret'))}
            for domain, config in STORE_CONFIGS.items()
        ],
        "sheetsConfigured": sheets_service.is_sheets_configured(),
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }), 200
