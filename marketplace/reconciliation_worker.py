"""Periodically settles payment intents that never got a confirmation call.

Run with ``python -m marketplace.reconciliation_worker``.
"""
import logging
import time

from . import config
from .checkout import reconcile_pending_payments
from .database import session_scope
from .notifications import build_notifier
from .payments import PaymentProvider

logger = logging.getLogger(__name__)


def run_once(provider, notifier) -> int:
    with session_scope() as db:
        return reconcile_pending_payments(db, provider, notifier)


def loop():
    provider = PaymentProvider()
    notifier = build_notifier()
    logger.info("[reconcile] started; poll=%ss age=%ss", config.RECONCILE_POLL_SEC, config.RECONCILE_AGE_SEC)
    try:
        while True:
            try:
                run_once(provider, notifier)
            except Exception:
                logger.exception("[reconcile] sweep failed")
            time.sleep(config.RECONCILE_POLL_SEC)
    finally:
        notifier.close()


if __name__ == "__main__":
    logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s %(message)s")
    loop()
