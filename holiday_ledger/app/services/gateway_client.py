"""
services/gateway_client.py — Payment gateway (Midtrans Snap) client.

Opens a hosted checkout session for a PaymentOrder and returns the Snap
token and redirect URL the frontend needs to show the payment page.

Transaction parameters sent to Snap:
  transaction_details  order_id and gross_amount (net + service fee)
  customer_details     the paying participant's name
  item_details         one line per contribution (remaining due at checkout)
                       plus a "service-fee" line, so the lines add up to
                       gross_amount as Snap requires
  enabled_payments     cards, bank virtual accounts, e-wallets, QRIS
  callbacks            only when a callback base URL is configured

Failures from the gateway (API errors and network errors alike) become
AppError(GATEWAY_UNAVAILABLE, 502). The caller has not committed yet, so the
request rolls back and no order is left behind without a checkout session.

Layer rules:
  - No Flask imports. Keys arrive through the constructor.
"""

from __future__ import annotations

import logging

import midtransclient
import requests
from midtransclient.error_midtrans import MidtransAPIError

from holiday_ledger.app.errors import AppError, ErrorCode
from holiday_ledger.app.models.payment_order import PaymentOrder

logger = logging.getLogger(__name__)

SERVICE_FEE_ITEM_ID = "service-fee"
SERVICE_FEE_ITEM_NAME = "Payment gateway service fee"
DEFAULT_ITEM_NAME = "Contribution"

ENABLED_PAYMENTS = [
    "credit_card",
    "bca_va",
    "bni_va",
    "bri_va",
    "permata_va",
    "other_va",
    "gopay",
    "shopeepay",
    "qris",
]


def build_transaction_params(
        order: PaymentOrder,
        customer_name: str,
        item_names: dict[int, str] | None = None,
        callback_base_url: str | None = None,
) -> dict:
    """
    Snap `create_transaction` parameters for an order.

    Args:
        item_names: contribution id → line label (the expense description).
        callback_base_url: frontend base URL; finish/error/pending callbacks
            point at the plan page when it is set.
    """
    item_names = item_names or {}
    item_details = [
        {
            "id": str(item.contribution_id),
            "name": _item_name(item_names.get(item.contribution_id)),
            "price": item.amount,
            "quantity": 1,
        }
        for item in order.items
    ]
    item_details.append({
        "id": SERVICE_FEE_ITEM_ID,
        "name": SERVICE_FEE_ITEM_NAME,
        "price": order.service_fee,
        "quantity": 1,
    })

    params = {
        "transaction_details": {
            "order_id": order.order_ref,
            "gross_amount": order.gross_amount,
        },
        "customer_details": {"first_name": customer_name},
        "item_details": item_details,
        "enabled_payments": list(ENABLED_PAYMENTS),
    }
    if callback_base_url:
        plan_url = f"{callback_base_url.rstrip('/')}/plan/{order.plan_id}"
        params["callbacks"] = {
            "finish": f"{plan_url}?payment=success",
            "error": f"{plan_url}?payment=error",
            "pending": f"{plan_url}?payment=pending",
        }
    return params


def _item_name(name: str | None) -> str:
    # Snap rejects item names longer than 50 characters.
    return (name or DEFAULT_ITEM_NAME)[:50]


class SnapGateway:
    """Thin wrapper around midtransclient.Snap."""

    def __init__(
            self,
            server_key: str,
            client_key: str = "",
            is_production: bool = False,
            callback_base_url: str | None = None,
    ) -> None:
        self.callback_base_url = callback_base_url
        self._snap = midtransclient.Snap(
            is_production=is_production,
            server_key=server_key,
            client_key=client_key,
        )

    def create_transaction(
            self,
            order: PaymentOrder,
            customer_name: str,
            item_names: dict[int, str] | None = None,
    ) -> dict:
        """
        Opens a Snap checkout session for `order`.

        Returns:
            {"token": str, "redirect_url": str}

        Raises:
            AppError(GATEWAY_UNAVAILABLE, 502)
        """
        params = build_transaction_params(
            order,
            customer_name,
            item_names,
            callback_base_url=self.callback_base_url,
        )
        try:
            response = self._snap.create_transaction(params)
        except MidtransAPIError as e:
            logger.error(
                "Snap rejected order %s (HTTP %s): %s",
                order.order_ref,
                getattr(e, "http_status_code", None),
                getattr(e, "message", e),
            )
            raise AppError(
                ErrorCode.GATEWAY_UNAVAILABLE,
                "The payment gateway rejected the checkout. Please try again later.",
                502,
            ) from e
        except requests.RequestException as e:
            logger.error("Snap unreachable for order %s: %s", order.order_ref, e)
            raise AppError(
                ErrorCode.GATEWAY_UNAVAILABLE,
                "The payment gateway could not be reached. Please try again later.",
                502,
            ) from e

        token = response.get("token")
        if not token:
            logger.error("Snap returned no token for order %s: %r", order.order_ref, response)
            raise AppError(
                ErrorCode.GATEWAY_UNAVAILABLE,
                "The payment gateway did not open a checkout session.",
                502,
            )

        logger.info("Snap session opened for order %s", order.order_ref)
        return {"token": token, "redirect_url": response.get("redirect_url")}
