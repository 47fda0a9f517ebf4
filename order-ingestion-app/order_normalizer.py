# order-ingestion-app/order_normalizer.py

import logging

from app_utils import get_country_name_from_iso

DEFAULT_ORDER_PREFIXES = {
    'uxyxaq-pu.myshopify.com': '#MOTO',
    'mattressmade.myshopify.com': '#MYBE',
    'd587eb.myshopify.com': '#CARA',
}
FALLBACK_ORDER_PREFIX = '#'
GUEST_CUSTOMER_NAME = 'Guest Customer'

# (substrings matched against the lowercased store domain, label)
MATTRESS_LABEL_MARKERS = [
    (('caravanmattresses', 'd587eb'), 'Caravan Mattresses'),
    (('motorhomemattresses', 'uxyxaq-pu'), 'Motorhome Mattresses'),
    (('mybespoke', 'mattressmade'), 'My Bespoke Mattresses'),
]

ADDRESS_FIELDS = (
    'first_name', 'last_name', 'company', 'address1', 'address2',
    'city', 'province', 'zip', 'country', 'country_code', 'phone',
)


def _clean(value):
    if value is None:
        return ''
    return str(value).strip()


def _attribute_note(order):
    for attr_list_key in ('attributes', 'note_attributes'):
        attributes = order.get(attr_list_key)
        if not isinstance(attributes, list):
            continue
        for attr in attributes:
            if isinstance(attr, dict) and 'note' in _clean(attr.get('name')).lower():
                return attr.get('value')
    return None


# Every place Shopify (or a theme app) may leave a customer note, highest priority first.
NOTE_PROBES = (
    ('note', lambda o: o.get('note')),
    ('notes', lambda o: o.get('notes')),
    ('customer_note', lambda o: o.get('customer_note')),
    ('order_note', lambda o: o.get('order_note')),
    ('attributes', _attribute_note),
)


def _full_name(source):
    if not isinstance(source, dict):
        return ''
    return ' '.join(p for p in (_clean(source.get('first_name')), _clean(source.get('last_name'))) if p)


NAME_PROBES = (
    ('customer_name', lambda o: o.get('customer_name')),
    ('billing_address', lambda o: _full_name(o.get('billing_address'))),
    ('customer', lambda o: _full_name(o.get('customer'))),
)

EMAIL_PROBES = (
    ('customer.email', lambda o: (o.get('customer') or {}).get('email')),
    ('email', lambda o: o.get('email')),
    ('contact_email', lambda o: o.get('contact_email')),
)

PHONE_PROBES = (
    ('customer.phone', lambda o: (o.get('customer') or {}).get('phone')),
    ('billing_address.phone', lambda o: (o.get('billing_address') or {}).get('phone')),
    ('shipping_address.phone', lambda o: (o.get('shipping_address') or {}).get('phone')),
    ('phone', lambda o: o.get('phone')),
)


def first_present(order, probes):
    """Runs the probes in order and returns (source, trimmed value) for the first non-empty hit."""
    for source, probe in probes:
        value = _clean(probe(order))
        if value:
            return source, value
    return None, None


def extract_customer_notes(order):
    source, notes = first_present(order, NOTE_PROBES)
    if source:
        logging.debug(f"NORMALIZER: Customer notes found in order.{source}")
    return notes


def normalize_address(address):
    if not isinstance(address, dict) or not address:
        return None
    normalized = {field: address.get(field) for field in ADDRESS_FIELDS}
    if not _clean(normalized['country']) and _clean(normalized['country_code']):
        country_name = get_country_name_from_iso(normalized['country_code'])
        if country_name and country_name != 'Unknown':
            normalized['country'] = country_name
    return normalized


def get_mattress_label(store_domain):
    if not store_domain:
        return None
    domain = store_domain.lower()
    for markers, label in MATTRESS_LABEL_MARKERS:
        if any(marker in domain for marker in markers):
            return label
    return None


def get_order_prefix(store_domain, store_config=None):
    if store_config and store_config.get('order_prefix'):
        return store_config['order_prefix']
    return DEFAULT_ORDER_PREFIXES.get(store_domain, FALLBACK_ORDER_PREFIX)


def build_order_number(raw_order, store_domain, store_config=None):
    raw_number = raw_order.get('order_number')
    if raw_number in (None, ''):
        raw_number = raw_order.get('name')
    raw_number = _clean(raw_number)
    if raw_number.startswith('#'):
        return raw_number
    return f"{get_order_prefix(store_domain, store_config)}{raw_number}"


def normalize_customer(raw_order):
    _, name = first_present(raw_order, NAME_PROBES)
    _, email = first_present(raw_order, EMAIL_PROBES)
    _, phone = first_present(raw_order, PHONE_PROBES)
    return {
        'name': name or GUEST_CUSTOMER_NAME,
        'email': email or '',
        'phone': phone or '',
        'billing_address': normalize_address(raw_order.get('billing_address')),
        'shipping_address': normalize_address(raw_order.get('shipping_address')),
    }


def normalize_order(raw_order, store_domain, store_config=None):
    """
    Builds the canonical customer and the order-level metadata shared by every
    sub-order of one inbound Shopify order.

    Returns:
        dict: {'customer': {...}, 'meta': {...}}
    """
    customer = normalize_customer(raw_order)
    notes = extract_customer_notes(raw_order)
    mattress_label = get_mattress_label(store_domain)
    meta = {
        'order_id': _clean(raw_order.get('id')),
        'order_number': build_order_number(raw_order, store_domain, store_config),
        'store_domain': store_domain,
        'store_name': (store_config or {}).get('name'),
        'notes': notes,
        'mattress_label': mattress_label,
        'order_date': raw_order.get('created_at'),
        'total_price': raw_order.get('total_price'),
        'currency': raw_order.get('currency'),
    }
    print(f"DEBUG NORMALIZER: Order {meta['order_number']} from {store_domain}: "
          f"notes={'yes' if notes else 'no'}, label={mattress_label or 'None'}")
    return {'customer': customer, 'meta': meta}
