# order-ingestion-app/blueprints/orders.py
import traceback
from flask import Blueprint, jsonify, request

from app import engine, convert_row_to_dict, make_json_safe

import order_store
from order_splitter import sync_sub_order

orders_bp = Blueprint('orders_bp', __name__)


@orders_bp.route('/orders', methods=['GET'])
def get_orders():
    print("DEBUG GET_ORDERS: Received request")
    try:
        page = int(request.args.get('page', 1))
        limit = int(request.args.get('limit', 50))
    except ValueError:
        return jsonify({"error": "page and limit must be integers"}), 400
    if page < 1 or limit < 1:
        return jsonify({"error": "page and limit must be positive"}), 400
    db_conn = None
    try:
        if engine is None: return jsonify({"error": "Database engine not available."}), 500
        db_conn = engine.connect()
        rows, total = order_store.list_orders(db_conn, page, limit)
        limit = min(limit, 500)
        total_pages = (total + limit - 1) // limit
        orders_list = [convert_row_to_dict(row) for row in rows]
        return jsonify(make_json_safe({
            "orders": orders_list,
            "pagination": {
                "page": page,
                "limit": limit,
                "totalOrders": total,
                "totalPages": total_pages,
                "hasNext": page < total_pages,
                "hasPrev": page > 1,
            },
        })), 200
    except Exception as e:
        print(f"ERROR GET_ORDERS: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to fetch orders", "details": str(e)}), 500
    finally:
        if db_conn and not db_conn.closed: db_conn.close()


@orders_bp.route('/orders/stats', methods=['GET'])
def get_order_stats():
    db_conn = None
    try:
        if engine is None: return jsonify({"error": "Database engine not available."}), 500
        db_conn = engine.connect()
        return jsonify(order_store.get_order_stats(db_conn)), 200
    except Exception as e:
        print(f"ERROR ORDER_STATS: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to fetch order stats", "details": str(e)}), 500
    finally:
        if db_conn and not db_conn.closed: db_conn.close()


@orders_bp.route('/orders/unsynced', methods=['GET'])
def get_unsynced_orders():
    db_conn = None
    try:
        if engine is None: return jsonify({"error": "Database engine not available."}), 500
        db_conn = engine.connect()
        rows = order_store.get_unsynced_to_sheets(db_conn)
        return jsonify(make_json_safe([convert_row_to_dict(r) for r in rows])), 200
    except Exception as e:
        print(f"ERROR UNSYNCED_ORDERS: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to fetch unsynced orders", "details": str(e)}), 500
    finally:
        if db_conn and not db_conn.closed: db_conn.close()


@orders_bp.route('/orders/search/<path:query>', methods=['GET'])
def search_orders(query):
    print(f"DEBUG SEARCH_ORDERS: Query '{query}'")
    if not query.strip():
        return jsonify({"error": "Search query is required"}), 400
    db_conn = None
    try:
        if engine is None: return jsonify({"error": "Database engine not available."}), 500
        db_conn = engine.connect()
        rows = order_store.search_orders(db_conn, query.strip())
        return jsonify(make_json_safe([convert_row_to_dict(r) for r in rows])), 200
    except Exception as e:
        print(f"ERROR SEARCH_ORDERS: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to search orders", "details": str(e)}), 500
    finally:
        if db_conn and not db_conn.closed: db_conn.close()


@orders_bp.route('/orders/<int:order_id>', methods=['GET'])
def get_order_details(order_id):
    print(f"DEBUG GET_ORDER: Received request for order ID: {order_id}")
    db_conn = None
    try:
        if engine is None: return jsonify({"error": "Database engine not available."}), 500
        db_conn = engine.connect()
        order = order_store.get_order(db_conn, order_id)
        if not order:
            print(f"WARN GET_ORDER: Order with ID {order_id} not found.")
            return jsonify({"error": f"Order with ID {order_id} not found"}), 404
        return jsonify(make_json_safe(convert_row_to_dict(order))), 200
    except Exception as e:
        print(f"ERROR GET_ORDER: Error fetching order {order_id}: {e}")
        traceback.print_exc()
        return jsonify({"error": "An unexpected error occurred while fetching order details.", "details": str(e)}), 500
    finally:
        if db_conn and not db_conn.closed: db_conn.close()


def _apply_update(order_id, fields, log_prefix):
    db_conn, transaction = None, None
    try:
        if engine is None: return jsonify({"error": "Database engine not available."}), 500
        db_conn = engine.connect()
        transaction = db_conn.begin()
        updated = order_store.update_order(db_conn, order_id, fields)
        if not updated:
            transaction.rollback()
            return jsonify({"error": f"Order with ID {order_id} not found"}), 404
        transaction.commit()
        print(f"DEBUG {log_prefix}: Order {order_id} updated ({', '.join(fields)})")
        return jsonify(make_json_safe({"success": True, "order": convert_row_to_dict(updated)})), 200
    except ValueError as ve:
        if transaction and transaction.is_active: transaction.rollback()
        return jsonify({"error": str(ve)}), 400
    except Exception as e:
        if transaction and transaction.is_active: transaction.rollback()
        print(f"ERROR {log_prefix}: Failed for order {order_id}: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to update order", "details": str(e)}), 500
    finally:
        if db_conn and not db_conn.closed: db_conn.close()


@orders_bp.route('/orders/<int:order_id>', methods=['PUT'])
def update_order(order_id):
    fields = request.get_json(silent=True)
    if not isinstance(fields, dict) or not fields:
        return jsonify({"error": "Request body must be a non-empty JSON object"}), 400
    allowed = set(order_store.UI_EDITABLE_COLUMNS) | {'measurements'}
    unknown = sorted(set(fields) - allowed)
    if unknown:
        return jsonify({"error": f"Fields cannot be updated: {', '.join(unknown)}"}), 400
    return _apply_update(order_id, fields, "UPDATE_ORDER")


@orders_bp.route('/orders/<int:order_id>/status', methods=['PUT'])
def update_order_status(order_id):
    data = request.get_json(silent=True) or {}
    new_status = data.get('status') or data.get('processing_status')
    if not new_status:
        return jsonify({"error": "Missing 'status' in request body"}), 400
    return _apply_update(order_id, {'processing_status': new_status}, "UPDATE_STATUS")


@orders_bp.route('/orders/<int:order_id>/sheets-sync', methods=['POST'])
def retry_sheets_sync(order_id):
    print(f"DEBUG SHEETS_SYNC_RETRY: Order {order_id}")
    if engine is None: return jsonify({"error": "Database engine not available."}), 500
    try:
        with engine.connect() as conn:
            row = order_store.get_order(conn, order_id)
        if not row:
            return jsonify({"error": f"Order with ID {order_id} not found"}), 404
        outcome = sync_sub_order(engine, row)
        return jsonify(make_json_safe({"orderId": order_id, **outcome})), 200
    except Exception as e:
        print(f"ERROR SHEETS_SYNC_RETRY: Failed for order {order_id}: {e}")
        traceback.print_exc()
        return jsonify({"error": "Failed to sync order to sheet", "details": str(e)}), 500
