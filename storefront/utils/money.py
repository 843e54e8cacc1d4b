# module storefront.utils.money
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP
from typing import Any

TWOPLACES = Decimal("0.01")


def to_money(value: Any) -> Decimal:
    """
    Convertit str|int|float|Decimal en Decimal arrondi au centime (ROUND_HALF_UP).
    - Passe par str() pour éviter les artefacts binaires des floats (10.1 -> 10.10).
    - Lève ValueError si la valeur n'est pas numérique.
    """
    if value is None or value == "" or isinstance(value, bool):
        raise ValueError(f"Montant invalide: {value!r}")
    try:
        return Decimal(str(value)).quantize(TWOPLACES, rounding=ROUND_HALF_UP)
    except (InvalidOperation, ValueError, TypeError) as exc:
        raise ValueError(f"Montant invalide: {value!r}") from exc


def to_cents(amount: Decimal) -> int:
    # Montant en plus petite unité (centimes) pour la passerelle
    return int((to_money(amount) * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_cents(cents: int) -> Decimal:
    return to_money(Decimal(int(cents)) / 100)


def money_json(amount: Decimal) -> float:
    """Sérialisation JSON (nombre) d'un montant déjà arrondi au centime."""
    return float(to_money(amount))
