# order-ingestion-app/order_store.py

import re
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation

import sqlalchemy
from sqlalchemy import (
    MetaData, Table, Column, Integer, String, Text, Boolean, Numeric, DateTime, JSON,
    UniqueConstraint, select, update, func, or_,
)
from sqlalchemy.dialects import postgresql, sqlite

import supplier_service

metadata = MetaData()

JSONDocument = JSON().with_variant(postgresql.JSONB(), 'postgresql')

PROCESSING_STATUSES = ('received', 'processed')


def _utcnow():
    return datetime.now(timezone.utc)


processed_orders = Table(
    'processed_orders', metadata,
    Column('id', Integer, primary_key=True, autoincrement=True),
    Column('shopify_order_id', String(64), nullable=False),
    Column('original_order_id', String(64)),
    Column('order_number', String(64), nullable=False),
    Column('original_order_number', String(64)),
    Column('store_domain', String(255), nullable=False),
    Column('customer_name', String(255)),
    Column('customer_email', String(255)),
    Column('customer_phone', String(64)),
    Column('billing_address', JSONDocument),
    Column('shipping_address', JSONDocument),
    Column('total_price', Numeric(10, 2)),
    Column('order_data', JSONDocument, nullable=False),
    Column('line_items', JSONDocument),
    Column('extracted_measurements', JSONDocument),
    Column('measurement_status', JSONDocument),
    Column('link_attachment', String(255)),
    Column('delivery_option', String(255)),
    Column('supplier_assigned', String(50)),
    Column('supplier_name', String(255)),
    Column('notes', Text),
    Column('mattress_label', String(100)),
    Column('processing_status', String(50), nullable=False, default='received'),
    Column('sheets_synced', Boolean, nullable=False, default=False),
    Column('sheets_sync_date', DateTime(timezone=True)),
    Column('sheets_range', String(100)),
    Column('sync_error_message', Text),
    Column('email_sent', Boolean, nullable=False, default=False),
    Column('created_date', DateTime(timezone=True), nullable=False, default=_utcnow),
    Column('updated_date', DateTime(timezone=True), nullable=False, default=_utcnow),
    UniqueConstraint('store_domain', 'shopify_order_id', name='uq_processed_orders_store_order'),
)

product_mappings = Table(
    'product_mappings', metadata,
    Column('shopify_sku', String(100), primary_key=True),
    Column('supplier_specification', Text),
    Column('shape_id', String(100)),
    Column('measurement_diagram_url', Text),
    Column('applicable_stores', JSONDocument),
    Column('created_date', DateTime(timezone=True), default=_utcnow),
    Column('updated_date', DateTime(timezone=True), default=_utcnow),
)

# Columns a redelivered webhook is allowed to overwrite. Sync bookkeeping,
# processing status and email flags belong to later stages and are left alone.
UPSERT_MUTABLE_COLUMNS = (
    'order_number', 'original_order_number', 'original_order_id',
    'customer_name', 'customer_email', 'customer_phone',
    'billing_address', 'shipping_address', 'total_price',
    'order_data', 'line_items', 'extracted_measurements', 'measurement_status',
    'link_attachment', 'delivery_option', 'supplier_assigned', 'supplier_name',
    'notes', 'mattress_label',
)

UI_EDITABLE_COLUMNS = (
    'processing_status', 'notes', 'mattress_label', 'email_sent', 'order_number',
    'customer_name', 'customer_email', 'customer_phone', 'link_attachment', 'delivery_option',
)


def create_tables(engine):
    metadata.create_all(engine)
    print("DEBUG ORDER_STORE: processed_orders and product_mappings tables ensured.")


def _insert_for(conn):
    if conn.dialect.name == 'postgresql':
        return postgresql.insert
    if conn.dialect.name == 'sqlite':
        return sqlite.insert
    raise NotImplementedError(f"Upsert is not supported for dialect '{conn.dialect.name}'")


def _to_decimal(value):
    if value in (None, ''):
        return None
    try:
        return Decimal(str(value))
    except (InvalidOperation, ValueError):
        return None


def _row_to_dict(row):
    return dict(row._mapping) if row is not None else None


def validate_supplier(supplier_assigned, supplier_name):
    if supplier_assigned is None:
        if supplier_name is not None:
            raise ValueError("supplier_name set without supplier_assigned")
        return
    if supplier_assigned not in supplier_service.SUPPLIER_KEYS:
        raise ValueError(f"Unknown supplier key '{supplier_assigned}'")
    expected_name = supplier_service.supplier_name_for(supplier_assigned)
    if supplier_name != expected_name:
        raise ValueError(f"supplier_name '{supplier_name}' does not match supplier '{supplier_assigned}'")


def upsert_sub_order(conn, data):
    """
    Inserts one sub-order, or refreshes the mutable fields of an existing row
    with the same (store_domain, shopify_order_id).

    Returns:
        dict: the persisted row.
    """
    for required in ('shopify_order_id', 'order_number', 'store_domain', 'order_data'):
        if not data.get(required):
            raise ValueError(f"Missing required sub-order field: {required}")
    validate_supplier(data.get('supplier_assigned'), data.get('supplier_name'))

    values = {key: data.get(key) for key in ('shopify_order_id', 'store_domain') + UPSERT_MUTABLE_COLUMNS}
    values['total_price'] = _to_decimal(values.get('total_price'))
    now = _utcnow()
    values['created_date'] = now
    values['updated_date'] = now

    insert = _insert_for(conn)
    stmt = insert(processed_orders).values(**values)
    set_ = {col: stmt.excluded[col] for col in UPSERT_MUTABLE_COLUMNS}
    set_['updated_date'] = now
    stmt = stmt.on_conflict_do_update(
        index_elements=[processed_orders.c.store_domain, processed_orders.c.shopify_order_id],
        set_=set_,
    ).returning(*processed_orders.c)
    row = conn.execute(stmt).fetchone()
    return _row_to_dict(row)


def get_product_mapping_by_sku(conn, sku):
    if not sku:
        return None
    row = conn.execute(
        select(product_mappings).where(product_mappings.c.shopify_sku == sku)
    ).fetchone()
    return _row_to_dict(row)


def update_sheets_sync(conn, order_row_id, synced, sync_date=None, sheet_range=None, error_message=None):
    """
    Records the outcome of a sheet mirror attempt.

    order_row_id is always the internal processed_orders.id. Lookups by the
    Shopify order id go through find_by_external_id first.
    """
    if not isinstance(order_row_id, int) or isinstance(order_row_id, bool):
        raise TypeError(f"order_row_id must be the internal integer id, got {order_row_id!r}")
    now = _utcnow()
    if synced:
        if not sheet_range:
            raise ValueError("A synced sub-order needs a sheet range")
        values = {
            'sheets_synced': True,
            'sheets_sync_date': sync_date or now,
            'sheets_range': sheet_range,
            'sync_error_message': None,
        }
    else:
        values = {'sheets_synced': False, 'sync_error_message': error_message}
    values['updated_date'] = now
    row = conn.execute(
        update(processed_orders)
        .where(processed_orders.c.id == order_row_id)
        .values(**values)
        .returning(*processed_orders.c)
    ).fetchone()
    return _row_to_dict(row)


def find_by_external_id(conn, store_domain, shopify_order_id):
    row = conn.execute(
        select(processed_orders).where(
            processed_orders.c.store_domain == store_domain,
            processed_orders.c.shopify_order_id == str(shopify_order_id),
        )
    ).fetchone()
    return _row_to_dict(row)


def get_order(conn, order_row_id):
    row = conn.execute(select(processed_orders).where(processed_orders.c.id == order_row_id)).fetchone()
    return _row_to_dict(row)


def list_orders(conn, page=1, limit=50):
    page = max(int(page), 1)
    limit = min(max(int(limit), 1), 500)
    total = conn.execute(select(func.count()).select_from(processed_orders)).scalar_one()
    rows = conn.execute(
        select(processed_orders)
        .order_by(processed_orders.c.created_date.desc(), processed_orders.c.id.desc())
        .limit(limit)
        .offset((page - 1) * limit)
    ).fetchall()
    return [_row_to_dict(r) for r in rows], total


def search_orders(conn, term, limit=50):
    pattern = f"%{term}%"
    c = processed_orders.c
    rows = conn.execute(
        select(processed_orders)
        .where(or_(
            c.order_number.ilike(pattern),
            c.customer_name.ilike(pattern),
            c.customer_email.ilike(pattern),
            c.notes.ilike(pattern),
        ))
        .order_by(c.created_date.desc(), c.id.desc())
        .limit(limit)
    ).fetchall()
    return [_row_to_dict(r) for r in rows]


def base_order_number(number):
    """'#CARA1001-2' -> 'CARA1001'."""
    return re.sub(r'-\d+$', '', (number or '').strip().lstrip('#'))


def get_sub_orders_by_original(conn, original_number):
    base = base_order_number(original_number)
    if not base:
        return []
    c = processed_orders.c
    rows = conn.execute(
        select(processed_orders)
        .where(c.original_order_number.in_([base, f"#{base}"]))
        .order_by(c.id)
    ).fetchall()
    return [_row_to_dict(r) for r in rows]


def update_order(conn, order_row_id, fields):
    """Applies UI edits. Unknown keys are ignored; 'measurements' lands in order_data."""
    values = {k: v for k, v in (fields or {}).items() if k in UI_EDITABLE_COLUMNS}
    if 'processing_status' in values and values['processing_status'] not in PROCESSING_STATUSES:
        raise ValueError(f"Invalid processing_status '{values['processing_status']}'")
    if 'measurements' in (fields or {}):
        current = get_order(conn, order_row_id)
        if current is None:
            return None
        order_data = dict(current.get('order_data') or {})
        order_data['measurements'] = fields['measurements']
        values['order_data'] = order_data
    if not values:
        return get_order(conn, order_row_id)
    values['updated_date'] = _utcnow()
    row = conn.execute(
        update(processed_orders)
        .where(processed_orders.c.id == order_row_id)
        .values(**values)
        .returning(*processed_orders.c)
    ).fetchone()
    return _row_to_dict(row)


def update_processing_status(conn, order_row_id, status):
    return update_order(conn, order_row_id, {'processing_status': status})


def get_order_stats(conn):
    c = processed_orders.c

    def _count(*criteria):
        stmt = select(func.count()).select_from(processed_orders)
        if criteria:
            stmt = stmt.where(*criteria)
        return conn.execute(stmt).scalar_one()

    return {
        'total_orders': _count(),
        'received_orders': _count(c.processing_status == 'received'),
        'processed_orders': _count(c.processing_status == 'processed'),
        'synced_orders': _count(c.sheets_synced == sqlalchemy.true()),
        'unsynced_with_supplier': _count(c.sheets_synced == sqlalchemy.false(), c.supplier_assigned.isnot(None)),
    }


def get_unsynced_to_sheets(conn):
    c = processed_orders.c
    rows = conn.execute(
        select(processed_orders)
        .where(c.sheets_synced == sqlalchemy.false(), c.supplier_assigned.isnot(None))
        .order_by(c.created_date, c.id)
    ).fetchall()
    return [_row_to_dict(r) for r in rows]
