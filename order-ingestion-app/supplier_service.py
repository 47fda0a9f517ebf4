# order-ingestion-app/supplier_service.py

import os
from dotenv import load_dotenv

load_dotenv()

# Order matters: resolution walks suppliers, then keywords, in this order.
SUPPLIERS = [
    {
        "key": "SOUTHERN",
        "name": "Southern Production Schedule",
        "sheet_id": os.getenv("SOUTHERN_SHEET_ID", "1msn3axI6YVuRbHYYf32APoxQPG61zKKlNx6CZR1iO3w"),
        "keywords": ["Essential", "Grand", "Cool", "Novo", "Body"],
    },
    {
        "key": "MATTRESSSHIRE",
        "name": "Mattressshire Production Schedule",
        "sheet_id": os.getenv("MATTRESSSHIRE_SHEET_ID", "16IssobN0vG-oYEyEW8HgZIOqAsiIO_pTCOt0czmqQJM"),
        "keywords": ["Comfi", "Imperial"],
    },
]

SUPPLIER_KEYS = tuple(s["key"] for s in SUPPLIERS)


def get_supplier(supplier_key):
    if not supplier_key:
        return None
    for supplier in SUPPLIERS:
        if supplier["key"] == supplier_key:
            return supplier
    return None


def supplier_name_for(supplier_key):
    supplier = get_supplier(supplier_key)
    return supplier["name"] if supplier else None


def match_supplier_for_sku(sku):
    """Returns the key of the first supplier with a keyword contained in the SKU, or None."""
    sku_lower = (sku or "").lower()
    if not sku_lower:
        return None
    for supplier in SUPPLIERS:
        for keyword in supplier["keywords"]:
            if keyword.lower() in sku_lower:
                return supplier["key"]
    return None


def resolve_supplier(line_items):
    """
    Picks at most one supplier for a set of line items.

    Items are checked in array order and the first SKU that matches any supplier
    keyword decides the result. There is no scoring between suppliers.

    Args:
        line_items (list): dicts carrying a 'sku' key (raw Shopify line items work).

    Returns:
        str: a key from SUPPLIER_KEYS, or None when nothing matches.
    """
    for item in line_items or []:
        supplier_key = match_supplier_for_sku((item or {}).get("sku"))
        if supplier_key:
            print(f"DEBUG SUPPLIER_SERVICE: SKU '{item.get('sku')}' matched supplier {supplier_key}")
            return supplier_key
    print("DEBUG SUPPLIER_SERVICE: No supplier keyword matched any SKU.")
    return None


def list_suppliers():
    return [
        {"key": s["key"], "name": s["name"], "sheet_id": s["sheet_id"], "keywords": list(s["keywords"])}
        for s in SUPPLIERS
    ]
