"""Number parsing utilities for Brazilian formats."""
import re
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

BR_NUMBER_PATTERN = re.compile(r"^(?:\d{1,3}(?:\.\d{3})+|\d+)(?:,\d+)?$")

CENTS = Decimal('0.01')

# Column limits: Numeric(12, 2) and Integer
MAX_MONEY = Decimal('9999999999.99')
MAX_QUANTITY = 2147483647


def to_money(value) -> Decimal:
    """
    Convert ``value`` to a Decimal rounded to cents (half up).

    Raises:
        ValueError: if the value is not a finite number.
    """
    if value is None:
        return Decimal('0.00')
    if not isinstance(value, Decimal):
        try:
            value = Decimal(str(value))
        except (InvalidOperation, ValueError):
            raise ValueError('Valor inválido')
    if not value.is_finite():
        raise ValueError('Valor inválido')
    try:
        return value.quantize(CENTS, rounding=ROUND_HALF_UP)
    except InvalidOperation:
        raise ValueError('Valor fora do limite')


def parse_br_decimal(value) -> Decimal:
    """
    Parse a monetary value typed in Brazilian format (e.g., 1.234,56) to Decimal.

    Plain numbers ("1234.56", 10, Decimal) are accepted as well, so JSON
    clients can send regular numbers.

    Rules:
    - Thousands separator: dot (.)
    - Decimal separator: comma (,)
    - No negatives

    Raises:
        ValueError: if the value is invalid or empty.
    """
    if value is None:
        raise ValueError('Formato inválido. Use 1.234,56')

    if isinstance(value, (int, float, Decimal)) and not isinstance(value, bool):
        decimal_value = Decimal(str(value))
    else:
        cleaned = str(value).strip().replace('R$', '').strip()
        if not cleaned:
            raise ValueError('Formato inválido. Use 1.234,56')

        if BR_NUMBER_PATTERN.match(cleaned):
            normalized = cleaned.replace('.', '').replace(',', '.')
        else:
            normalized = cleaned
        try:
            decimal_value = Decimal(normalized)
        except (InvalidOperation, ValueError):
            raise ValueError('Formato inválido. Use 1.234,56')

    if not decimal_value.is_finite():
        raise ValueError('Formato inválido. Use 1.234,56')
    if decimal_value < 0:
        raise ValueError('O valor não pode ser negativo')
    if decimal_value > MAX_MONEY:
        raise ValueError('Valor fora do limite')

    return to_money(decimal_value)


def parse_quantity(value) -> int:
    """
    Parse a stock quantity. Quantities are whole units.

    Raises:
        ValueError: if the value is not an integer number.
    """
    if isinstance(value, bool):
        raise ValueError('Quantidade inválida')
    if isinstance(value, int):
        dec = Decimal(value)
    else:
        try:
            dec = Decimal(str(value).strip().replace(',', '.'))
        except (InvalidOperation, ValueError):
            raise ValueError('Quantidade inválida')
    if not dec.is_finite():
        raise ValueError('Quantidade inválida')
    if dec != dec.to_integral_value():
        raise ValueError('A quantidade deve ser um número inteiro')
    if abs(dec) > MAX_QUANTITY:
        raise ValueError('Quantidade fora do limite')
    return int(dec)
