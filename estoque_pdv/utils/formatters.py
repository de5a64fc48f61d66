"""
Utilidades de formatação para notas de movimentação e recibos.
Formatos de números no padrão brasileiro.
"""
from decimal import Decimal, InvalidOperation
from typing import Union


def _group_thousands(integer_part: str) -> str:
    reversed_int = integer_part[::-1]
    groups = [reversed_int[i:i+3] for i in range(0, len(reversed_int), 3)]
    return '.'.join(groups)[::-1]


def money_br(value: Union[int, float, Decimal, str, None]) -> str:
    """
    Formata um valor monetário com exatamente 2 casas decimais.
    Usa ponto para milhar e vírgula para decimais.

    Args:
        value: Valor a formatar

    Returns:
        String formatada (ex: 1.500,00). Retorna "-" se inválido.
    """
    if value is None or value == "":
        return "-"

    try:
        num = Decimal(str(value)).quantize(Decimal('0.01'))
    except (InvalidOperation, ValueError, TypeError):
        return "-"

    sign = "-" if num < 0 else ""
    num = abs(num)

    integer_part, decimal_part = f"{num:.2f}".split(".")
    return f"{sign}{_group_thousands(integer_part)},{decimal_part}"


def percent_br(value: Union[int, float, Decimal, str, None]) -> str:
    """Formata um percentual: 10 -> "10%", 12.5 -> "12,5%"."""
    if value is None or value == "":
        return "-"
    try:
        num = Decimal(str(value)).normalize()
    except (InvalidOperation, ValueError, TypeError):
        return "-"
    text = f"{num:f}"
    if '.' in text:
        text = text.rstrip('0').rstrip('.')
    return f"{text.replace('.', ',')}%"
