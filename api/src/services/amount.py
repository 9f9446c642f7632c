import logging
from typing import Any
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP, localcontext

from clients.kommo import Lead
from settings import DealFieldsSettings


logger = logging.getLogger('kommo-pay-amount')

MINOR_UNITS = Decimal(100)
# Значения от 10^18 в полях Kommo считаем мусором, а не суммой
MAX_VALUE_DIGITS = 18
# Сумма уходит во Flitt и в ответы API как int64
MAX_AMOUNT = 2**63 - 1


def to_decimal(value: Any) -> Decimal:
    """Число из значения поля Kommo, 0 для пустого, нечислового или неправдоподобно большого значения."""
    if value is None or isinstance(value, bool):
        return Decimal(0)

    try:
        number = Decimal(str(value).strip().replace(',', '.'))
    except InvalidOperation:
        return Decimal(0)

    if not number.is_finite() or (number and number.adjusted() >= MAX_VALUE_DIGITS):
        return Decimal(0)
    return number


def calculate_amount(lead: Lead, fields: DealFieldsSettings) -> int:
    """
    Сумма к оплате в минимальных единицах валюты (тетри, центы):
    price + fee + (units * unit_price) * tax_multiplier.
    Наценка применяется только к произведению.
    Сумма, не помещающаяся в int64, считается нулевой.
    """
    price = to_decimal(lead.price)
    fee = to_decimal(lead.custom_field_value(fields.fee_field_id))
    units = to_decimal(lead.custom_field_value(fields.units_field_id))
    unit_price = to_decimal(lead.custom_field_value(fields.unit_price_field_id))

    with localcontext() as ctx:
        # Хватает для произведения двух 18-значных значений без округления целой части
        ctx.prec = 64
        total = price + fee + (units * unit_price) * fields.tax_multiplier
        amount = (total * MINOR_UNITS).quantize(Decimal(1), rounding=ROUND_HALF_UP)

    if abs(amount) > MAX_AMOUNT:
        logger.warning(f'amount {amount} of lead {lead.id} is out of range, using 0')
        return 0
    return int(amount)
