"""Credit purchases paid through Stripe Checkout.

The checkout session itself is created by the caller; this module records
the pending purchase and applies the signed webhook that settles it.
"""
import hashlib
import hmac
import json
from datetime import timezone
from threading import Event
from typing import Optional

from flask import current_app

from waypoint import repositories
from waypoint.clock import Clock, utcnow
from waypoint.transactions import transaction
from waypoint.errors import (
    InvalidInput,
    InvalidSignature,
    PaymentMismatch,
    PurchaseAlreadyProcessed,
    PurchaseNotFound,
    StripeNotConfigured,
)
from waypoint.models import CreditPurchase
from waypoint.services.credits import REASON_PURCHASE

EVENT_COMPLETED = 'checkout.session.completed'
EVENT_ASYNC_SUCCEEDED = 'checkout.session.async_payment_succeeded'
EVENT_ASYNC_FAILED = 'checkout.session.async_payment_failed'


def verify_signature(payload: bytes, header: str, secret: str, tolerance: int, now_ts: int) -> None:
    """Check a ``t=<ts>,v1=<hex>`` header against HMAC-SHA256 of ``"<ts>.<payload>"``."""
    timestamp, signatures = None, []
    for item in (header or '').split(','):
        key, _, value = item.strip().partition('=')
        if key == 't':
            timestamp = value
        elif key == 'v1':
            signatures.append(value)
    if not timestamp or not signatures:
        raise InvalidSignature('unable to extract timestamp and signatures from header')
    try:
        ts = int(timestamp)
    except ValueError:
        raise InvalidSignature('invalid timestamp in signature header')
    if tolerance and abs(now_ts - ts) > tolerance:
        raise InvalidSignature('timestamp outside the tolerance zone')

    expected = hmac.new(secret.encode('utf-8'), f'{ts}.'.encode('utf-8') + payload, hashlib.sha256).hexdigest()
    if not any(hmac.compare_digest(expected, sig) for sig in signatures):
        raise InvalidSignature()


def _payment_details(obj: dict):
    intent = obj.get('payment_intent')
    if isinstance(intent, dict):
        charge = intent.get('latest_charge') or {}
        receipt = charge.get('receipt_url') if isinstance(charge, dict) else None
        return intent.get('id'), receipt or obj.get('receipt_url')
    return intent, obj.get('receipt_url')


class PaymentService:
    def __init__(self, clock: Clock = utcnow):
        self.clock = clock

    def _require_config(self, key: str) -> str:
        value = current_app.config.get(key)
        if not value:
            raise StripeNotConfigured()
        return value

    def create_purchase(self, user_id: str, credits: int, stripe_session_id: str,
                        customer_id: Optional[str] = None, cancel: Optional[Event] = None) -> CreditPurchase:
        self._require_config('STRIPE_SECRET_KEY')
        low = current_app.config.get('MIN_CREDITS_PER_PURCHASE', 3)
        high = current_app.config.get('MAX_CREDITS_PER_PURCHASE', 1000)
        if not low <= credits <= high:
            raise InvalidInput(f'credits must be between {low} and {high}')
        if not stripe_session_id:
            raise InvalidInput('a checkout session id is required')

        with transaction(cancel) as session:
            purchase = CreditPurchase(
                user_id=user_id,
                credits=credits,
                amount_paid=credits * current_app.config.get('CREDIT_PRICE_CENTS', 35),
                stripe_session_id=stripe_session_id,
                stripe_customer_id=customer_id,
                status='pending',
                created_at=self.clock(),
            )
            session.add(purchase)
        current_app.logger.info(f"[purchase] pending user={user_id} credits={credits} session={stripe_session_id}")
        return purchase

    def process_webhook(self, payload: bytes, signature_header: str, cancel: Optional[Event] = None) -> str:
        """Verify and apply one webhook delivery; returns the event type."""
        secret = self._require_config('STRIPE_WEBHOOK_SECRET')
        tolerance = current_app.config.get('STRIPE_WEBHOOK_TOLERANCE_SEC', 300)
        now_ts = int(self.clock().replace(tzinfo=timezone.utc).timestamp())
        verify_signature(payload, signature_header, secret, tolerance, now_ts)

        try:
            event = json.loads(payload)
        except ValueError:
            raise InvalidInput('webhook payload is not valid JSON')
        event_type = event.get('type', '')
        obj = (event.get('data') or {}).get('object') or {}

        if event_type in (EVENT_COMPLETED, EVENT_ASYNC_SUCCEEDED):
            self.apply_completed_session(obj, cancel=cancel)
        elif event_type == EVENT_ASYNC_FAILED:
            self.apply_failed_session(obj, cancel=cancel)
        else:
            current_app.logger.info(f"[purchase] ignoring webhook event {event_type}")
        return event_type

    def apply_completed_session(self, obj: dict, cancel: Optional[Event] = None) -> CreditPurchase:
        session_id = obj.get('id', '')
        with transaction(cancel) as session:
            purchase = repositories.find_purchase_by_session_id(session_id, session=session)
            if purchase is None:
                raise PurchaseNotFound()
            if purchase.status == 'completed':
                raise PurchaseAlreadyProcessed()

            amount = obj.get('amount_total')
            try:
                mismatch = amount is None or int(amount) != purchase.amount_paid
            except (TypeError, ValueError):
                mismatch = True
            if mismatch:
                current_app.logger.error(
                    f"[purchase] amount mismatch session={session_id} expected={purchase.amount_paid} got={amount}")
                raise PaymentMismatch()
            credits = (obj.get('metadata') or {}).get('credits')
            if credits is not None:
                try:
                    mismatch = int(credits) != purchase.credits
                except (TypeError, ValueError):
                    mismatch = True
                if mismatch:
                    raise PaymentMismatch()

            payment_id, receipt_url = _payment_details(obj)
            # conditional flip first so a duplicate delivery cannot credit twice
            if repositories.complete_purchase(purchase.id, payment_id, receipt_url,
                                              obj.get('customer'), session=session) != 1:
                raise PurchaseAlreadyProcessed()
            repositories.add_user_credits(purchase.user_id, paid=purchase.credits, session=session)
            repositories.insert_adjustment(purchase.user_id, purchase.credits, REASON_PURCHASE,
                                           purchase_id=purchase.id, created_at=self.clock(), session=session)
            session.expire(purchase)

        current_app.logger.info(
            f"[purchase] completed user={purchase.user_id} credits={purchase.credits} session={session_id}")
        return purchase

    def apply_failed_session(self, obj: dict, cancel: Optional[Event] = None) -> bool:
        session_id = obj.get('id', '')
        with transaction(cancel) as session:
            changed = repositories.fail_purchase(session_id, session=session) == 1
        current_app.logger.info(f"[purchase] failed session={session_id} updated={changed}")
        return changed
