"""Shopify webhook signature checks and store resolution."""

from __future__ import annotations

import pytest

from conftest import sign
from webhook_security import resolve_store, verify_webhook_signature

STORES = {
    "uxyxaq-pu.myshopify.com": {"name": "Motorhome Mattresses", "webhook_secret": "moto-secret"},
    "mattressmade.myshopify.com": {"name": "My Bespoke Mattresses", "webhook_secret": "mybe-secret"},
    "d587eb.myshopify.com": {"name": "Caravan Mattresses", "webhook_secret": "cara-secret"},
}


class TestVerifyWebhookSignature:
    BODY = b'{"id": 123, "order_number": 1001,  "note": "spacing is preserved"}'

    def test_valid_signature(self):
        assert verify_webhook_signature(self.BODY, sign(self.BODY, "s3cret"), "s3cret") is True

    def test_sha256_prefix_is_stripped(self):
        assert verify_webhook_signature(self.BODY, "sha256=" + sign(self.BODY, "s3cret"), "s3cret") is True

    def test_wrong_secret(self):
        assert verify_webhook_signature(self.BODY, sign(self.BODY, "s3cret"), "other") is False

    def test_every_single_byte_mutation_fails(self):
        signature = sign(self.BODY, "s3cret")
        for i in range(len(self.BODY)):
            mutated = bytearray(self.BODY)
            mutated[i] = (mutated[i] + 1) % 256
            assert verify_webhook_signature(bytes(mutated), signature, "s3cret") is False

    def test_reserialized_body_does_not_verify(self):
        import json
        signature = sign(self.BODY, "s3cret")
        reserialized = json.dumps(json.loads(self.BODY)).encode()
        assert reserialized != self.BODY
        assert verify_webhook_signature(reserialized, signature, "s3cret") is False

    @pytest.mark.parametrize("signature,secret", [(None, "s3cret"), ("", "s3cret"), ("abc", None), ("abc", "")])
    def test_missing_inputs_reject(self, signature, secret):
        assert verify_webhook_signature(self.BODY, signature, secret) is False

    def test_garbage_signature(self):
        assert verify_webhook_signature(self.BODY, "not-base64-£", "s3cret") is False


class TestResolveStore:
    BODY = b'{"id": 1}'

    def test_header_domain_used_first(self):
        result = resolve_store(self.BODY, sign(self.BODY, "mybe-secret"), "mattressmade.myshopify.com", STORES)
        assert result[0] == "mattressmade.myshopify.com"
        assert result[1]["name"] == "My Bespoke Mattresses"

    def test_falls_back_to_trying_every_secret(self):
        result = resolve_store(self.BODY, sign(self.BODY, "cara-secret"), None, STORES)
        assert result[0] == "d587eb.myshopify.com"

    def test_unknown_header_falls_back(self):
        result = resolve_store(self.BODY, sign(self.BODY, "moto-secret"), "unknown.myshopify.com", STORES)
        assert result[0] == "uxyxaq-pu.myshopify.com"

    def test_known_header_with_other_store_secret_is_rejected(self):
        assert resolve_store(self.BODY, sign(self.BODY, "cara-secret"), "mattressmade.myshopify.com", STORES) is None

    def test_no_match(self):
        assert resolve_store(self.BODY, sign(self.BODY, "nobody"), None, STORES) is None

    def test_missing_signature(self):
        assert resolve_store(self.BODY, None, "d587eb.myshopify.com", STORES) is None
