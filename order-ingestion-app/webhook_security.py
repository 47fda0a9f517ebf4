# order-ingestion-app/webhook_security.py

import base64
import hashlib
import hmac

SIGNATURE_PREFIX = 'sha256='


def compute_signature(raw_body, shared_secret):
    digest = hmac.new(shared_secret.encode('utf-8'), raw_body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode('ascii')


def verify_webhook_signature(raw_body, provided_signature, shared_secret):
    """
    Checks a Shopify X-Shopify-Hmac-Sha256 value against the raw request bytes.

    raw_body must be the bytes exactly as received. Re-serialized JSON will not verify.
    """
    if not provided_signature or not shared_secret or raw_body is None:
        return False
    if isinstance(raw_body, str):
        raw_body = raw_body.encode('utf-8')
    provided = provided_signature.strip()
    if provided.startswith(SIGNATURE_PREFIX):
        provided = provided[len(SIGNATURE_PREFIX):]
    expected = compute_signature(raw_body, shared_secret)
    return hmac.compare_digest(expected.encode('ascii'), provided.encode('utf-8', errors='replace'))


def resolve_store(raw_body, provided_signature, shop_domain, store_configs):
    """
    Finds which configured store sent the webhook.

    A known X-Shopify-Shop-Domain is verified against that store's secret only.
    Without a usable header every secret is tried in registry order.

    Returns:
        tuple: (domain, config) for the verified store, or None.
    """
    if not provided_signature:
        return None
    if shop_domain and shop_domain in store_configs:
        config = store_configs[shop_domain]
        if verify_webhook_signature(raw_body, provided_signature, config.get('webhook_secret')):
            return shop_domain, config
        print(f"WARN WEBHOOK_SECURITY: Signature mismatch for declared store {shop_domain}")
        return None
    for domain, config in store_configs.items():
        if verify_webhook_signature(raw_body, provided_signature, config.get('webhook_secret')):
            print(f"DEBUG WEBHOOK_SECURITY: Store resolved by secret match: {domain}")
            return domain, config
    return None
