from __future__ import annotations

from cloudcafe_api.core.logging import redact


def test_redact_masks_gateway_credentials():
    context = {
        "order_id": "3f2a9c1e",
        "Authorization": "Basic abc",
        "worldpay_service_key": "svc",
    }

    assert redact(context) == {
        "order_id": "3f2a9c1e",
        "Authorization": "[redacted]",
        "worldpay_service_key": "[redacted]",
    }
