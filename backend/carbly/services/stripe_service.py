"""
Thin wrapper around the Stripe SDK.

Reservation payments are direct charges on the agency's Connect account with
Carbly's platform fee taken as ``application_fee_amount``. Platform
subscriptions are charged on the Carbly account itself.
"""
import json
import logging
from typing import Any, Dict, Optional

import stripe

from carbly.core.config import settings
from carbly.core.exceptions import ExternalServiceError

logger = logging.getLogger(__name__)

stripe.api_key = settings.STRIPE_SECRET_KEY


class WebhookSignatureError(Exception):
    pass


def construct_event(payload: bytes, sig_header: Optional[str]) -> Dict[str, Any]:
    """
    Verifies the Stripe-Signature header and returns the event as a plain dict.
    """
    if not sig_header:
        raise WebhookSignatureError("Missing Stripe-Signature header")
    try:
        stripe.WebhookSignature.verify_header(
            payload.decode("utf-8"), sig_header, settings.STRIPE_WEBHOOK_SECRET
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookSignatureError(str(e)) from e
    return json.loads(payload)


def create_checkout_session(
    *,
    connect_account_id: str,
    amount_cents: int,
    application_fee_cents: int,
    product_name: str,
    customer_email: Optional[str],
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, str],
):
    """Creates a one-off payment Checkout Session on the agency's Connect account."""
    try:
        return stripe.checkout.Session.create(
            mode="payment",
            payment_method_types=["card"],
            line_items=[{
                "price_data": {
                    "currency": "eur",
                    "unit_amount": amount_cents,
                    "product_data": {"name": product_name},
                },
                "quantity": 1,
            }],
            payment_intent_data={
                "application_fee_amount": application_fee_cents,
                "metadata": metadata,
            },
            customer_email=customer_email,
            success_url=success_url,
            cancel_url=cancel_url,
            metadata=metadata,
            stripe_account=connect_account_id,
        )
    except stripe.StripeError as e:
        logger.error("Checkout session creation failed on %s: %s", connect_account_id, e)
        raise ExternalServiceError("Impossible de créer la session de paiement") from e


def create_refund(
    *,
    payment_intent_id: str,
    amount_cents: int,
    metadata: Dict[str, str],
    connect_account_id: Optional[str] = None,
):
    params = dict(
        payment_intent=payment_intent_id,
        amount=amount_cents,
        reason="requested_by_customer",
        metadata=metadata,
    )
    if connect_account_id:
        params["stripe_account"] = connect_account_id
    try:
        return stripe.Refund.create(**params)
    except stripe.StripeError as e:
        logger.error("Refund of %s cents on %s failed: %s", amount_cents, payment_intent_id, e)
        raise ExternalServiceError(f"Remboursement refusé par Stripe: {e.user_message or e}") from e


def create_connect_account(*, email: str, business_name: str, country: str = "FR") -> str:
    try:
        account = stripe.Account.create(
            type="express",
            country=country,
            email=email,
            business_type="company",
            business_profile={"name": business_name},
            capabilities={
                "card_payments": {"requested": True},
                "transfers": {"requested": True},
            },
        )
    except stripe.StripeError as e:
        logger.error("Connect account creation failed for %s: %s", email, e)
        raise ExternalServiceError("Impossible de créer le compte Stripe Connect") from e
    return account.id


def create_account_link(*, account_id: str, refresh_url: str, return_url: str) -> str:
    try:
        link = stripe.AccountLink.create(
            account=account_id,
            refresh_url=refresh_url,
            return_url=return_url,
            type="account_onboarding",
        )
    except stripe.StripeError as e:
        logger.error("Account link creation failed for %s: %s", account_id, e)
        raise ExternalServiceError("Impossible de générer le lien d'onboarding") from e
    return link.url


def is_account_onboarded(account_id: str) -> bool:
    try:
        account = stripe.Account.retrieve(account_id)
    except stripe.StripeError as e:
        logger.error("Could not retrieve Connect account %s: %s", account_id, e)
        raise ExternalServiceError("Impossible de vérifier le compte Stripe Connect") from e
    return bool(account.charges_enabled and account.details_submitted)


def create_subscription_checkout_session(
    *,
    price_id: str,
    customer_email: str,
    customer_id: Optional[str],
    success_url: str,
    cancel_url: str,
    metadata: Dict[str, str],
):
    params = dict(
        mode="subscription",
        line_items=[{"price": price_id, "quantity": 1}],
        success_url=success_url,
        cancel_url=cancel_url,
        metadata=metadata,
        subscription_data={"metadata": metadata},
    )
    if customer_id:
        params["customer"] = customer_id
    else:
        params["customer_email"] = customer_email
    try:
        return stripe.checkout.Session.create(**params)
    except stripe.StripeError as e:
        logger.error("Subscription checkout failed for price %s: %s", price_id, e)
        raise ExternalServiceError("Impossible de créer la session d'abonnement") from e
