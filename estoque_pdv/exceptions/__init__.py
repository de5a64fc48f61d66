"""Custom exceptions for the inventory ledger / PDV engine."""


def _fmt_qty(value):
    return f"{int(value)}" if value % 1 == 0 else f"{value:.2f}".rstrip('0').rstrip('.')


class EstoqueError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class BusinessLogicError(EstoqueError):
    """Exception raised for business logic violations."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class ValidationError(BusinessLogicError):
    """Invalid input: non-positive quantity, missing field, inactive product..."""
    def __init__(self, message, field=None, payload=None):
        payload = dict(payload or ())
        if field:
            payload['field'] = field
        super().__init__(message, 400, payload)
        self.field = field


class NotFoundError(EstoqueError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class InsufficientStockError(BusinessLogicError):
    """Raised when a requested quantity exceeds the available stock."""
    def __init__(self, product_name, required, available, product_id=None):
        message = (
            f"Estoque insuficiente para {product_name}: "
            f"solicitado {_fmt_qty(required)}, disponível {_fmt_qty(available)}"
        )
        super().__init__(message, status_code=409, payload={
            'product_id': product_id,
            'product_name': product_name,
            'requested': required,
            'available': available,
        })
        self.product_id = product_id
        self.required = required
        self.available = available


class WouldGoNegativeError(BusinessLogicError):
    """Raised when a stock delta (or a reversal) would leave stock below zero."""
    def __init__(self, product_name, current_stock, delta, product_id=None):
        message = (
            f"Operação recusada: o estoque de {product_name} ficaria negativo "
            f"(atual {_fmt_qty(current_stock)}, variação {delta:+d})"
        )
        super().__init__(message, status_code=409, payload={
            'product_id': product_id,
            'product_name': product_name,
            'current_stock': current_stock,
            'delta': delta,
        })
        self.product_id = product_id
        self.current_stock = current_stock
        self.delta = delta


class CreditLimitExceededError(BusinessLogicError):
    """Raised when an on-account sale exceeds the customer's credit limit."""
    def __init__(self, customer_name, total, credit_limit, customer_id=None):
        message = (
            f"Total da venda (R$ {total:.2f}) excede o limite de crédito "
            f"de {customer_name} (R$ {credit_limit:.2f})"
        )
        super().__init__(message, status_code=409, payload={
            'customer_id': customer_id,
            'total': str(total),
            'credit_limit': str(credit_limit),
        })


class PaymentInsufficientError(BusinessLogicError):
    """Raised when cash tendered is below the sale total."""
    def __init__(self, total, amount_tendered):
        message = (
            f"Valor pago (R$ {amount_tendered:.2f}) menor que o total "
            f"da venda (R$ {total:.2f})"
        )
        super().__init__(message, status_code=402, payload={
            'total': str(total),
            'amount_tendered': str(amount_tendered),
        })


class PartialCommitError(EstoqueError):
    """
    A multi-line settlement wrote some, but not all, of its lines.

    Stock of the committed lines has already been decremented, so the sale
    is in an indeterminate state and must be reconciled.
    """
    def __init__(self, sale_ref, committed_lines, pending_lines, cause):
        message = (
            f"Venda {sale_ref} parcialmente registrada: "
            f"{len(committed_lines)} item(ns) gravado(s), "
            f"{len(pending_lines)} pendente(s). Causa: {cause}"
        )
        super().__init__(message, 500, payload={
            'sale_ref': sale_ref,
            'committed_lines': committed_lines,
            'pending_lines': pending_lines,
            'cause': str(cause),
        })
        self.sale_ref = sale_ref
        self.committed_lines = committed_lines
        self.pending_lines = pending_lines
        self.cause = cause


class UnauthorizedError(EstoqueError):
    """Raised when the caller lacks the identity context for an action."""
    def __init__(self, message="Unauthorized access"):
        super().__init__(message, 403)
