"""
External system integrations.

  - Purchasing system (REST) — receives purchase-order drafts, assigns
    order numbers, reports the order lifecycle back via webhook

Usage:
    from integrations import PurchasingClient

    client = PurchasingClient.from_settings()
    confirmation = await client.submit_draft(payload)
"""

from integrations.purchasing import PurchasingClient, PurchasingConfirmation, PurchasingUnavailable

__all__ = [
    "PurchasingClient",
    "PurchasingConfirmation",
    "PurchasingUnavailable",
]
