# order-ingestion-app/order_splitter.py

import time
import traceback

import order_store
import sheets_service
import supplier_service
from measurement_extractor import extract_line_item, build_measurement_record


class SyncPacer:
    """
    Spaces out sheet writes for one webhook request.

    Waits delay_seconds between successive sync attempts, never past the
    request deadline (a time.monotonic() value). Once the deadline has passed
    wait_turn() returns False and the caller skips the sync. time_left() is
    also handed to the sheet writer so a sync already under way stops between
    API calls once the deadline passes.
    """

    def __init__(self, delay_seconds=0.1, deadline=None, clock=time.monotonic, sleep=time.sleep):
        self.delay_seconds = max(float(delay_seconds or 0), 0.0)
        self.deadline = deadline
        self._clock = clock
        self._sleep = sleep
        self._last_attempt = None

    def time_left(self):
        if self.deadline is None:
            return None
        return self.deadline - self._clock()

    def expired(self):
        remaining = self.time_left()
        return remaining is not None and remaining <= 0

    def wait_turn(self):
        if self.expired():
            return False
        if self._last_attempt is not None and self.delay_seconds:
            pause = self.delay_seconds - (self._clock() - self._last_attempt)
            remaining = self.time_left()
            if remaining is not None:
                pause = min(pause, remaining)
            if pause > 0:
                self._sleep(pause)
            if self.expired():
                return False
        self._last_attempt = self._clock()
        return True


def sub_order_number(original_number, index, total):
    return original_number if total == 1 else f"{original_number}-{index + 1}"


def sub_order_id(original_id, index, total):
    return str(original_id) if total == 1 else f"{original_id}-{index + 1}"


def build_sub_order(raw_order, normalized, line_item, extraction, index, total, supplier_key, mapping=None):
    """Builds the processed_orders record for line item `index` of `total`."""
    customer = normalized['customer']
    meta = normalized['meta']
    sku = line_item.get('sku')
    measurement_record = build_measurement_record(sku, extraction)

    # Snapshot carries only this item so each sub-order stands alone downstream.
    snapshot = dict(raw_order)
    snapshot['line_items'] = [line_item]
    snapshot['extracted_measurements'] = [measurement_record]

    options = extraction.get('manufacturing_options') or {}
    return {
        'shopify_order_id': sub_order_id(meta['order_id'], index, total),
        'original_order_id': meta['order_id'],
        'order_number': sub_order_number(meta['order_number'], index, total),
        'original_order_number': meta['order_number'],
        'store_domain': meta['store_domain'],
        'customer_name': customer['name'],
        'customer_email': customer['email'],
        'customer_phone': customer['phone'],
        'billing_address': customer['billing_address'],
        'shipping_address': customer['shipping_address'],
        'total_price': line_item.get('price'),
        'order_data': snapshot,
        'line_items': [{
            'sku': sku,
            'title': line_item.get('title'),
            'variant_title': line_item.get('variant_title'),
            'quantity': line_item.get('quantity'),
            'price': line_item.get('price'),
            'properties': line_item.get('properties') or [],
            'specification': (mapping or {}).get('supplier_specification'),
            'shape_id': (mapping or {}).get('shape_id'),
            'mapped': bool(mapping),
        }],
        'extracted_measurements': measurement_record,
        'measurement_status': dict(extraction['status']),
        'link_attachment': options.get('link_attachment'),
        'delivery_option': options.get('delivery_option'),
        'supplier_assigned': supplier_key,
        'supplier_name': supplier_service.supplier_name_for(supplier_key),
        'notes': meta.get('notes'),
        'mattress_label': meta.get('mattress_label'),
    }


def sync_sub_order(engine, row, client=None, pacer=None):
    """
    Mirrors one persisted sub-order to its supplier sheet and records the outcome.

    Never raises for sync problems; the result dict says what happened.
    """
    supplier_key = row.get('supplier_assigned')
    if not supplier_key:
        return {'synced': False, 'reason': 'no supplier'}
    if row.get('sheets_synced'):
        return {'synced': True, 'sheet_range': row.get('sheets_range'), 'reason': 'already synced'}
    if client is None and not sheets_service.is_sheets_configured():
        return {'synced': False, 'reason': 'sheets not configured'}
    if pacer is not None and not pacer.wait_turn():
        print(f"WARN SPLITTER: Request deadline reached, sheet sync skipped for {row.get('order_number')}")
        _record_sync(engine, row['id'], False, error_message='deadline exceeded')
        return {'synced': False, 'reason': 'deadline exceeded'}

    try:
        outcome = sheets_service.add_order_to_sheet(
            row, supplier_key, client=client, time_left=pacer.time_left if pacer is not None else None
        )
    except sheets_service.SheetsDeadlineError:
        print(f"WARN SPLITTER: Request deadline reached during sheet sync for {row.get('order_number')}")
        _record_sync(engine, row['id'], False, error_message='deadline exceeded')
        return {'synced': False, 'reason': 'deadline exceeded'}
    except Exception as e:
        print(f"ERROR SPLITTER: Sheet sync failed for {row.get('order_number')}: {e}")
        _record_sync(engine, row['id'], False, error_message=str(e))
        return {'synced': False, 'error': str(e)}

    if not outcome.get('success'):
        return {'synced': False, 'reason': outcome.get('reason')}
    if not _record_sync(engine, row['id'], True, sheet_range=outcome['sheet_range']):
        return {'synced': False, 'error': 'sync succeeded but could not be recorded'}
    print(f"DEBUG SPLITTER: {row.get('order_number')} added to {outcome['supplier_name']} at {outcome['sheet_range']}")
    return {'synced': True, 'sheet_range': outcome['sheet_range']}


def _record_sync(engine, order_row_id, synced, sheet_range=None, error_message=None):
    try:
        with engine.begin() as conn:
            order_store.update_sheets_sync(
                conn, order_row_id, synced, sheet_range=sheet_range, error_message=error_message
            )
        return True
    except Exception as e:
        print(f"ERROR SPLITTER: Could not record sheet sync state for row {order_row_id}: {e}")
        traceback.print_exc()
        return False


def split_order(engine, raw_order, normalized, extractions=None, supplier_key=None,
                mappings=None, pacer=None, sheets_client=None):
    """
    Persists one sub-order per line item, each in its own transaction, and
    tries a sheet sync right after each successful write.

    A failure on one item is captured in its result and the loop moves on.

    Args:
        engine: SQLAlchemy engine.
        raw_order (dict): parsed Shopify order.
        normalized (dict): output of order_normalizer.normalize_order.
        extractions (list): per-item output of extract_line_item, same order as line_items.
        supplier_key (str): forces one supplier for every item. When None each
            item's supplier is resolved from its own SKU.
        mappings (dict): {sku: product mapping row} for items that have one.
        pacer (SyncPacer): spacing and deadline for sheet writes.

    Returns:
        list: one result dict per line item, in line item order.
    """
    line_items = raw_order.get('line_items') or []
    total = len(line_items)
    mappings = mappings or {}
    if extractions is None:
        extractions = [extract_line_item(item) for item in line_items]
    results = []

    for index, line_item in enumerate(line_items):
        number = sub_order_number(normalized['meta']['order_number'], index, total)
        sku = line_item.get('sku')
        mapping = mappings.get(sku)
        result = {
            'index': index,
            'sub_order_number': number,
            'sku': sku,
            'product_title': line_item.get('title'),
            'price': line_item.get('price'),
            'measurements_count': len(extractions[index]['status']['provided']),
            'shape_number': (mapping or {}).get('shape_id'),
        }
        print(f"DEBUG SPLITTER: Processing item {index + 1}/{total}: {number} (SKU: {sku})")

        item_supplier = supplier_key or supplier_service.resolve_supplier([line_item])
        try:
            record = build_sub_order(
                raw_order, normalized, line_item, extractions[index], index, total, item_supplier, mapping
            )
            with engine.begin() as conn:
                existing = order_store.find_by_external_id(
                    conn, record['store_domain'], record['shopify_order_id']
                )
                row = order_store.upsert_sub_order(conn, record)
        except Exception as e:
            print(f"ERROR SPLITTER: Failed to persist sub-order {number}: {e}")
            traceback.print_exc()
            result['error'] = str(e)
            results.append(result)
            continue

        result['db_id'] = row['id']
        result['supplier_assigned'] = row['supplier_assigned']
        result['redelivered'] = existing is not None
        if existing is not None:
            print(f"DEBUG SPLITTER: {number} was already stored (row {row['id']}); refreshed from redelivery")
        sync = sync_sub_order(engine, row, client=sheets_client, pacer=pacer)
        result['sheets_synced'] = sync['synced']
        result['sheets_range'] = sync.get('sheet_range')
        if sync.get('error') or sync.get('reason'):
            result['sync_note'] = sync.get('error') or sync.get('reason')
        results.append(result)

    return results
