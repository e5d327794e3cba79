"""Fee-aware price arithmetic.

The marketplace keeps ``fee_rate`` of every sale price. A listing at ``s``
nets the seller ``s × (1 − fee_rate)``. Every intermediate product is
quantized to cents before the next step, so the same inputs always give the
same cent.
"""

from __future__ import annotations

from decimal import Decimal

from skintrader.core.money import HUNDRED, money, to_decimal

DEFAULT_FEE_RATE = Decimal("0.15")
DEFAULT_MIN_MARGIN_PCT = Decimal("3.0")


def _keep_rate(fee_rate: Decimal) -> Decimal:
    return Decimal("1") - to_decimal(fee_rate)


def target_sell_price(
    price: Decimal, profit_pct: Decimal, fee_rate: Decimal = DEFAULT_FEE_RATE
) -> Decimal:
    """Listing price that nets ``profit_pct`` % on ``price`` after the fee.

    10.00 at 10 % with a 15 % fee: 11.00 / 0.85 = 12.94.
    """
    desired_net = money(to_decimal(price) * (Decimal("1") + to_decimal(profit_pct) / HUNDRED))
    return money(desired_net / _keep_rate(fee_rate))


def net_proceeds(sell_price: Decimal, fee_rate: Decimal = DEFAULT_FEE_RATE) -> Decimal:
    """What the seller receives for a sale at ``sell_price``."""
    return money(to_decimal(sell_price) * _keep_rate(fee_rate))


def fee_amount(sell_price: Decimal, fee_rate: Decimal = DEFAULT_FEE_RATE) -> Decimal:
    return money(to_decimal(sell_price) - net_proceeds(sell_price, fee_rate))


def expected_profit(
    price: Decimal, target: Decimal, fee_rate: Decimal = DEFAULT_FEE_RATE
) -> Decimal:
    """``target × (1 − fee) − price``, to the cent."""
    return money(net_proceeds(target, fee_rate) - to_decimal(price))


def net_profit(price: Decimal, sell_price: Decimal, fee_rate: Decimal = DEFAULT_FEE_RATE) -> Decimal:
    return expected_profit(price, sell_price, fee_rate)


def min_profitable_price(
    price: Decimal,
    margin_pct: Decimal = DEFAULT_MIN_MARGIN_PCT,
    fee_rate: Decimal = DEFAULT_FEE_RATE,
) -> Decimal:
    """Lowest listing price that still clears ``margin_pct`` % after the fee."""
    return target_sell_price(price, margin_pct, fee_rate)


def break_even_price(price: Decimal, fee_rate: Decimal = DEFAULT_FEE_RATE) -> Decimal:
    """Listing price whose net proceeds equal the purchase price."""
    return money(to_decimal(price) / _keep_rate(fee_rate))
