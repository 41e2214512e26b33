"""
Payment service client — hands approved bonuses to the payout system.

The engine never moves money itself. When PAYMENT_SERVICE_URL is unset (local
dev, tests) transfers are skipped and bonuses are only marked paid.
"""
import logging
from typing import Any, Dict, Optional

import requests

from gamification.config import PAYMENT_SERVICE_URL, PAYMENT_API_KEY, PAYMENT_TIMEOUT
from gamification.errors import DependencyError

logger = logging.getLogger('services.payments')


def transfer_bonus(bonus: Dict[str, Any], idempotency_key: str) -> Optional[str]:
    """
    Request a payout for one bonus. Returns the payout reference, or None when
    no payment service is configured.

    Raises DependencyError on timeout, connection failure or a non-2xx answer.
    """
    if not PAYMENT_SERVICE_URL:
        logger.info("PAYMENT_SERVICE_URL not set — skipping transfer for bonus %s", bonus['id'])
        return None

    headers = {'Idempotency-Key': idempotency_key}
    if PAYMENT_API_KEY:
        headers['Authorization'] = f'Bearer {PAYMENT_API_KEY}'

    try:
        resp = requests.post(
            f"{PAYMENT_SERVICE_URL.rstrip('/')}/payouts",
            json={
                'driver_id': bonus['driver_id'],
                'amount': bonus['amount'],
                'currency': 'USD',
                'reason': bonus['reason'],
                'reference_id': f"driver_bonus:{bonus['id']}",
            },
            headers=headers,
            timeout=PAYMENT_TIMEOUT,
        )
        resp.raise_for_status()
    except requests.Timeout as e:
        logger.error("Payment service timed out for bonus %s", bonus['id'])
        raise DependencyError('payment service', 'timeout') from e
    except requests.RequestException as e:
        logger.error("Payment service failed for bonus %s: %s", bonus['id'], e)
        raise DependencyError('payment service', str(e)) from e

    try:
        reference = resp.json().get('payout_id')
    except ValueError:
        reference = None
    logger.info("Payout requested for bonus %s (ref=%s)", bonus['id'], reference)
    return reference
