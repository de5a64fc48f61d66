"""
Domain events emitted by the ledger.

Subscribers (alerting, notifications, cache invalidation...) connect to the
signals below; the ledger itself never sends e-mails or renders toasts.

    from estoque_pdv.events import stock_below_minimum

    @stock_below_minimum.connect
    def alert(product, tenant_id, **extra):
        ...
"""
import logging

from blinker import Namespace

logger = logging.getLogger(__name__)

_signals = Namespace()

#: sender = Movement; kwargs: tenant_id, user_id
movement_recorded = _signals.signal('movement-recorded')

#: sender = dict snapshot of the deleted Movement; kwargs: tenant_id, user_id, new_stock
movement_reversed = _signals.signal('movement-reversed')

#: sender = Product; kwargs: tenant_id, stock, min_stock
stock_below_minimum = _signals.signal('stock-below-minimum')


def emit(signal, sender, **kwargs) -> None:
    """
    Send ``signal`` after the data it describes is committed.

    A failing subscriber is logged but never undoes or fails the committed
    operation.
    """
    try:
        signal.send(sender, **kwargs)
    except Exception:
        logger.exception(f"Subscriber failed while handling '{signal.name}'")
