# order-ingestion-app/blueprints/suppliers.py

from flask import Blueprint, jsonify

import supplier_service

suppliers_bp = Blueprint('suppliers_bp', __name__)


@suppliers_bp.route('/suppliers', methods=['GET'])
def list_suppliers():
    print("Received request for GET /api/suppliers")
    suppliers_list = supplier_service.list_suppliers()
    print(f"DEBUG LIST_SUPPLIERS: {len(suppliers_list)} suppliers configured.")
    return jsonify(suppliers_list), 200


@suppliers_bp.route('/suppliers/<supplier_key>', methods=['GET'])
def get_supplier(supplier_key):
    supplier = supplier_service.get_supplier(supplier_key.upper())
    if not supplier:
        return jsonify({"message": "Supplier not found"}), 404
    return jsonify(supplier), 200
