# order-ingestion-app/sheets_service.py

import os
import json
import logging
import threading
from datetime import datetime, timezone

import httplib2
import google_auth_httplib2
from google.auth import exceptions as google_auth_exceptions
from google.oauth2 import service_account
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

import supplier_service
from measurement_extractor import summarize_measurements

SHEETS_SCOPES = ['https://www.googleapis.com/auth/spreadsheets']
ANCHOR_COLUMN_RANGE = 'H:H'

# Column letter for each of the seven fields written per sub-order.
SHEET_COLUMNS = {
    'order_received': 'B',
    'order_number': 'H',
    'customer_name': 'I',
    'contact_details': 'L',
    'telephone': 'M',
    'email': 'N',
    'notes': 'O',
}

CONTACT_ADDRESS_FIELDS = ('company', 'address1', 'address2', 'city', 'province', 'zip', 'country')


class SheetsSyncError(Exception):
    pass


class SheetsNotConfiguredError(SheetsSyncError):
    pass


class SheetsDeadlineError(SheetsSyncError):
    pass


_sheets_client = None
_sheets_credentials = None
_sheets_client_lock = threading.Lock()


def _timeout_seconds():
    try:
        return float(os.getenv('SHEETS_TIMEOUT_SECONDS', '3'))
    except ValueError:
        return 3.0


def is_sheets_configured():
    return bool(os.getenv('GOOGLE_SERVICE_ACCOUNT_KEY'))


def _load_service_account_info():
    raw_key = os.getenv('GOOGLE_SERVICE_ACCOUNT_KEY')
    if not raw_key:
        raise SheetsNotConfiguredError('GOOGLE_SERVICE_ACCOUNT_KEY environment variable is not set')
    try:
        info = json.loads(raw_key)
    except json.JSONDecodeError as e:
        raise SheetsNotConfiguredError(f'Invalid JSON format in GOOGLE_SERVICE_ACCOUNT_KEY: {e}') from e
    missing = [k for k in ('client_email', 'private_key', 'project_id') if not info.get(k)]
    if missing:
        raise SheetsNotConfiguredError(f'Service account JSON is missing required fields: {", ".join(missing)}')
    return info


def _build_sheets_client():
    global _sheets_credentials
    info = _load_service_account_info()
    credentials = service_account.Credentials.from_service_account_info(info, scopes=SHEETS_SCOPES)
    authorized_http = google_auth_httplib2.AuthorizedHttp(
        credentials, http=httplib2.Http(timeout=_timeout_seconds())
    )
    client = build('sheets', 'v4', http=authorized_http, cache_discovery=False)
    _sheets_credentials = credentials
    print("DEBUG SHEETS_SERVICE: Google Sheets client initialized successfully.")
    return client


def get_sheets_client():
    """Returns the process-wide Sheets client, creating it on first use."""
    global _sheets_client
    if _sheets_client is None:
        with _sheets_client_lock:
            if _sheets_client is None:
                _sheets_client = _build_sheets_client()
    return _sheets_client


def reset_sheets_client():
    """Drops the shared client so the next sync rebuilds it from fresh credentials."""
    global _sheets_client, _sheets_credentials
    with _sheets_client_lock:
        _sheets_client = None
        _sheets_credentials = None


def _remaining_budget(time_left):
    if time_left is None:
        return None
    remaining = time_left()
    if remaining is not None and remaining <= 0:
        raise SheetsDeadlineError('deadline exceeded')
    return remaining


def _bounded_http(seconds):
    """Per-call transport for the shared client, with a timeout no longer than `seconds`."""
    if seconds is None or _sheets_credentials is None or seconds >= _timeout_seconds():
        return None
    return google_auth_httplib2.AuthorizedHttp(_sheets_credentials, http=httplib2.Http(timeout=seconds))


def find_order_row(column_values, order_number):
    """1-based sheet row already holding order_number in column H, or None."""
    if not order_number:
        return None
    for index, cells in enumerate(column_values or []):
        if cells and str(cells[0]).lstrip("'").strip() == order_number:
            return index + 1
    return None


def format_contact_details(sub_order):
    # Shipping address first, that is where the mattress goes.
    address = sub_order.get('shipping_address') or sub_order.get('billing_address')
    if not address:
        return ''
    parts = [str(address.get(field)).strip() for field in CONTACT_ADDRESS_FIELDS if address.get(field)]
    return ', '.join(p for p in parts if p)


def format_product_notes(sub_order):
    line_items = sub_order.get('line_items') or []
    measurement_record = sub_order.get('extracted_measurements') or {}
    notes = []
    for item in line_items:
        note = f"{item.get('title') or ''}"
        if item.get('variant_title'):
            note += f" ({item['variant_title']})"
        note += f" - SKU: {item.get('sku') or 'N/A'}"
        summary = summarize_measurements(measurement_record.get('measurements'))
        if summary:
            note += f" | Measurements: {summary}"
        notes.append(note)
    return '\n'.join(notes)


def format_sheet_row(sub_order, received_at=None):
    received_at = received_at or sub_order.get('created_date') or datetime.now(timezone.utc)
    return {
        'order_received': received_at.strftime('%d/%m/%Y'),
        'order_number': sub_order.get('order_number') or '',
        'customer_name': sub_order.get('customer_name') or '',
        'contact_details': format_contact_details(sub_order),
        'telephone': sub_order.get('customer_phone') or '',
        'email': sub_order.get('customer_email') or '',
        'notes': format_product_notes(sub_order),
    }


def build_row_updates(row_values, row_number):
    """One ValueRange per cell. Never a contiguous write, so unrelated columns are untouched."""
    updates = []
    for field, column in SHEET_COLUMNS.items():
        value = row_values[field]
        if field == 'order_number':
            # Leading quote keeps USER_ENTERED from turning the number into a numeric cell.
            value = f"'{value}"
        updates.append({'range': f"{column}{row_number}", 'values': [[value]]})
    return updates


def add_order_to_sheet(sub_order, supplier_key, client=None, time_left=None):
    """
    Appends one sub-order to its supplier's production schedule.

    The next free row comes from the length of column H. All seven cells go in
    a single values.batchUpdate call. If column H already holds the order
    number (an earlier write whose bookkeeping was lost) that row is reported
    instead and nothing is written.

    Args:
        sub_order (dict): a persisted processed_orders row.
        supplier_key (str): supplier key, or None.
        client: an existing Sheets client (defaults to the shared one).
        time_left: callable returning the seconds left in the caller's time box,
            or None. Checked before each API call; with the shared client each
            call's timeout is also capped to it.

    Returns:
        dict: {'success': False, 'reason': ...} when there is nothing to do, otherwise
              {'success': True, 'supplier', 'supplier_name', 'sheet_range', 'row_number',
               'already_present'}.

    Raises:
        SheetsDeadlineError: the time box ran out before a call could start.
        SheetsSyncError: on credential, API or transport failures.
    """
    supplier = supplier_service.get_supplier(supplier_key)
    if supplier is None:
        print(f"WARN SHEETS_SERVICE: No supplier for {sub_order.get('order_number')}; skipping sheet sync.")
        return {'success': False, 'reason': 'no supplier'}
    if client is None and not is_sheets_configured():
        return {'success': False, 'reason': 'sheets not configured'}

    shared_client = client is None
    order_number = sub_order.get('order_number')
    try:
        client = client or get_sheets_client()
        row_values = format_sheet_row(sub_order)
        values_api = client.spreadsheets().values()
        budget = _remaining_budget(time_left)
        anchor = values_api.get(spreadsheetId=supplier['sheet_id'], range=ANCHOR_COLUMN_RANGE).execute(
            http=_bounded_http(budget) if shared_client else None
        )
        column_values = anchor.get('values') or []
        existing_row = find_order_row(column_values, order_number)
        if existing_row is not None:
            print(f"WARN SHEETS_SERVICE: {order_number} already on {supplier['name']} row {existing_row}; not appending.")
            next_row = existing_row
        else:
            next_row = (len(column_values) or 1) + 1
            budget = _remaining_budget(time_left)
            print(f"DEBUG SHEETS_SERVICE: Writing {order_number} to {supplier['name']} row {next_row}")
            values_api.batchUpdate(
                spreadsheetId=supplier['sheet_id'],
                body={'valueInputOption': 'USER_ENTERED', 'data': build_row_updates(row_values, next_row)},
            ).execute(http=_bounded_http(budget) if shared_client else None)
    except SheetsSyncError:
        raise
    except google_auth_exceptions.GoogleAuthError as e:
        logging.error(f"SHEETS_SERVICE: Credentials rejected while adding {order_number}: {e}", exc_info=True)
        if shared_client:
            reset_sheets_client()
        raise SheetsSyncError(f"Google credentials rejected for {supplier['name']}: {e}") from e
    except (HttpError, httplib2.HttpLib2Error, OSError, ValueError) as e:
        logging.error(f"SHEETS_SERVICE: Error adding {order_number} to {supplier['name']}: {e}", exc_info=True)
        raise SheetsSyncError(f"Failed to write to {supplier['name']}: {e}") from e

    return {
        'success': True,
        'supplier': supplier['key'],
        'supplier_name': supplier['name'],
        'sheet_range': f"Row {next_row}",
        'row_number': next_row,
        'already_present': existing_row is not None,
    }


def test_connection(client=None):
    """Checks that every supplier sheet can be opened. Returns a per-supplier report."""
    report = {'success': True, 'sheets': []}
    try:
        client = client or get_sheets_client()
    except SheetsSyncError as e:
        return {'success': False, 'error': str(e), 'sheets': []}
    for supplier in supplier_service.SUPPLIERS:
        entry = {'supplier': supplier['key'], 'name': supplier['name']}
        try:
            spreadsheet = client.spreadsheets().get(spreadsheetId=supplier['sheet_id']).execute()
            entry['title'] = (spreadsheet.get('properties') or {}).get('title')
            entry['connected'] = True
        except (HttpError, httplib2.HttpLib2Error, OSError, google_auth_exceptions.GoogleAuthError) as e:
            logging.warning(f"SHEETS_SERVICE: Connection test failed for {supplier['name']}: {e}")
            entry['connected'] = False
            entry['error'] = str(e)
            report['success'] = False
        report['sheets'].append(entry)
    return report
