"""
Money/line calculator for sales documents.

Pure functions only: line math keeps full Decimal precision and rounding
(half-up, 2 places) happens once, when a value is presented or totalled.
"""
from collections import namedtuple
from decimal import Decimal, InvalidOperation, ROUND_HALF_UP

from .exceptions import InvalidLineError

MONEY_PLACES = Decimal('0.01')
HUNDRED = Decimal('100')
ZERO = Decimal('0')

# Storage limits of the line columns: (max integer digits, decimal places)
QUANTITY_LIMITS = (14, 4)
PRICE_LIMITS = (14, 4)
PERCENT_PLACES = 2
# Money columns hold 16 integer digits
MAX_AMOUNT = Decimal('1E16')

LineAmounts = namedtuple('LineAmounts', ['line_subtotal', 'line_tax', 'line_total', 'discount_amount'])
DocumentTotals = namedtuple('DocumentTotals', ['sub_total', 'discount_amount', 'vat_amount', 'total_amount'])


def round_money(value):
    """Round a Decimal to currency precision (half-up)"""
    return Decimal(value).quantize(MONEY_PLACES, rounding=ROUND_HALF_UP)


def to_decimal(value, field):
    """Coerce API/ORM input into a Decimal, rejecting anything non-numeric"""
    if isinstance(value, Decimal):
        result = value
    elif isinstance(value, bool) or value is None:
        raise InvalidLineError(f"{field} must be a number", field=field)
    else:
        try:
            result = Decimal(str(value).strip())
        except (InvalidOperation, ValueError):
            raise InvalidLineError(f"{field} must be a number", field=field, value=value)
    if not result.is_finite():
        raise InvalidLineError(f"{field} must be a finite number", field=field, value=value)
    return result


def _check_places(value, places, field):
    if value.normalize().as_tuple().exponent < -places:
        raise InvalidLineError(f"{field} allows at most {places} decimal places", field=field, value=value)


def _bounded(value, limits, field):
    integer_digits, places = limits
    if value >= Decimal(10) ** integer_digits:
        raise InvalidLineError(f"{field} is too large", field=field, value=value)
    _check_places(value, places, field)
    return value


def _percent(value, field):
    percent = to_decimal(value, field)
    if percent < ZERO or percent > HUNDRED:
        raise InvalidLineError(f"{field} must be between 0 and 100", field=field, value=percent)
    _check_places(percent, PERCENT_PLACES, field)
    return percent


def validate_line_inputs(quantity, unit_price, discount_percent=ZERO, tax_rate=ZERO):
    """
    Normalise and validate the four raw line inputs.

    Inputs must fit the line columns exactly, so a line read back from the
    database computes to the same amounts as the one that was saved.
    """
    quantity = to_decimal(quantity, 'quantity')
    if quantity <= ZERO:
        raise InvalidLineError("non-positive quantity", field='quantity', value=quantity)
    quantity = _bounded(quantity, QUANTITY_LIMITS, 'quantity')
    unit_price = to_decimal(unit_price, 'unitPrice')
    if unit_price < ZERO:
        raise InvalidLineError("negative unit price", field='unitPrice', value=unit_price)
    unit_price = _bounded(unit_price, PRICE_LIMITS, 'unitPrice')
    discount_percent = _percent(discount_percent if discount_percent is not None else ZERO, 'discountPercent')
    tax_rate = _percent(tax_rate if tax_rate is not None else ZERO, 'taxRate')
    return quantity, unit_price, discount_percent, tax_rate


def compute_line(quantity, unit_price, discount_percent=ZERO, tax_rate=ZERO):
    """
    Compute the derived amounts of one priced line.

    compute_line(3, 100, 10, 17) gives a discount of 30, a subtotal of 270,
    tax of 45.9 and a line total of 315.9.
    """
    quantity, unit_price, discount_percent, tax_rate = validate_line_inputs(
        quantity, unit_price, discount_percent, tax_rate
    )
    gross = quantity * unit_price
    discount_amount = gross * discount_percent / HUNDRED
    line_subtotal = gross - discount_amount
    line_tax = line_subtotal * tax_rate / HUNDRED
    line_total = line_subtotal + line_tax
    if max(gross, line_total) >= MAX_AMOUNT:
        raise InvalidLineError("line amount is too large", field='quantity', value=quantity)
    return LineAmounts(
        line_subtotal=line_subtotal,
        line_tax=line_tax,
        line_total=line_total,
        discount_amount=discount_amount,
    )


def _line_inputs(line):
    if isinstance(line, dict):
        return (
            line.get('quantity'),
            line.get('unit_price'),
            line.get('discount_percent', ZERO),
            line.get('tax_rate', ZERO),
        )
    return line.quantity, line.unit_price, line.discount_percent, line.tax_rate


def compute_document_totals(lines):
    """
    Sum line amounts into document totals.

    ``lines`` may hold DocumentLine instances or dicts keyed by
    quantity/unit_price/discount_percent/tax_rate. Sums are taken at full
    precision and rounded once; the total is the rounded subtotal plus the
    rounded VAT, so the three figures always add up on the document.
    """
    sub_total = ZERO
    discount_amount = ZERO
    vat_amount = ZERO
    for line in lines:
        amounts = compute_line(*_line_inputs(line))
        sub_total += amounts.line_subtotal
        discount_amount += amounts.discount_amount
        vat_amount += amounts.line_tax
    if sub_total + vat_amount >= MAX_AMOUNT:
        raise InvalidLineError("document total is too large", field='lines')
    sub_total = round_money(sub_total)
    vat_amount = round_money(vat_amount)
    return DocumentTotals(
        sub_total=sub_total,
        discount_amount=round_money(discount_amount),
        vat_amount=vat_amount,
        total_amount=sub_total + vat_amount,
    )
