from flask import Blueprint, current_app, jsonify, request

from waypoint.errors import PurchaseAlreadyProcessed
from waypoint.services.payments import PaymentService

webhooks = Blueprint('webhooks', __name__)


@webhooks.route('/stripe', methods=['POST'])
def stripe_webhook():
    payload = request.get_data()
    signature = request.headers.get('Stripe-Signature', '')
    try:
        event_type = PaymentService().process_webhook(payload, signature)
    except PurchaseAlreadyProcessed:
        # redelivery of an event we already applied
        current_app.logger.info("[purchase] duplicate webhook acknowledged")
        return jsonify({'received': True, 'duplicate': True}), 200
    return jsonify({'received': True, 'type': event_type}), 200
