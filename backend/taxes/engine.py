"""
Tax rule evaluation engine

Decides which configured taxes apply to a transaction context and computes
their amounts. Everything here is a pure function: no database access, no
cache, no I/O. Callers pass tax definitions (Tax model instances with their
rules/assignments prefetched, or plain dicts of the same shape) and a context
mapping such as the validated data of TaxCalculationContextSerializer.

Matching is fail-safe: a rule that cannot be evaluated (unknown operator,
operator not valid for the rule's value type, missing context field,
non-numeric value in a numeric comparison) does not match, so the tax is not
applied.
"""
import logging
from collections.abc import Mapping
from decimal import Decimal, InvalidOperation

logger = logging.getLogger(__name__)

HUNDRED = Decimal('100')
ZERO = Decimal('0')

# Rule condition field -> context key
CONDITION_FIELD_CONTEXT_KEYS = {
    'region': 'region',
    'total_amount': 'total_amount',
    'customer_type': 'customer_type',
    'product_category': 'product_category',
    'store_location': 'store_location',
    'quantity': 'quantity',
}

# Assignment target type -> context key
TARGET_TYPE_CONTEXT_KEYS = {
    'product': 'product_id',
    'category': 'category_id',
    'customer': 'customer_id',
    'store': 'store_id',
    'supplier': 'supplier_id',
}

# Operator -> rule value types it can be used with
OPERATOR_VALUE_TYPES = {
    '==': ('string', 'number'),
    '!=': ('string', 'number'),
    '>=': ('number',),
    '<=': ('number',),
    '>': ('number',),
    '<': ('number',),
    'in': ('array',),
    'not_in': ('array',),
}

ORDERING_OPERATORS = {
    '>=': lambda left, right: left >= right,
    '<=': lambda left, right: left <= right,
    '>': lambda left, right: left > right,
    '<': lambda left, right: left < right,
}


def _get(obj, name, default=None):
    if isinstance(obj, Mapping):
        return obj.get(name, default)
    return getattr(obj, name, default)


def _related(obj, name):
    """Rules/assignments of a tax as a list, whether a related manager or a plain list"""
    items = _get(obj, name)
    if items is None:
        return []
    if hasattr(items, 'all'):
        return list(items.all())
    return list(items)


def _is_number(value):
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def to_number(value):
    """
    Coerce a value to Decimal.

    Returns None for anything that is not a finite number (None, booleans,
    lists, blank or non-numeric strings, NaN, infinity). None plays the role
    of NaN: every ordering comparison against it is false.
    """
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        number = value
    elif isinstance(value, (int, float)):
        number = Decimal(str(value))
    elif isinstance(value, str):
        value = value.strip()
        if not value:
            return None
        try:
            number = Decimal(value)
        except InvalidOperation:
            return None
    else:
        return None
    return number if number.is_finite() else None


def to_text(value):
    """String form of a context value, used for list membership"""
    if isinstance(value, str):
        return value
    if isinstance(value, bool):
        return 'true' if value else 'false'
    number = to_number(value)
    if number is not None:
        if number == number.to_integral_value():
            return str(int(number))
        return format(number.normalize(), 'f')
    return str(value)


def _strict_equals(left, right):
    # Numbers equal numbers, strings equal strings, nothing else is equal
    if _is_number(left) and _is_number(right):
        left_number, right_number = to_number(left), to_number(right)
        return left_number is not None and right_number is not None and left_number == right_number
    if isinstance(left, str) and isinstance(right, str):
        return left == right
    return False


def evaluate_rule_condition(operator, rule_value, context_value, value_type=None) -> bool:
    """
    Check if a single rule condition is met.

    Args:
        operator: one of ==, !=, >=, <=, >, <, in, not_in
        rule_value: configured value (string, number or list of strings)
        context_value: value read from the transaction context, None when absent
        value_type: the rule's declared value type; when given, operators not
            valid for that type never match

    Returns:
        True if the condition holds, False otherwise (including every case
        the condition cannot be evaluated)
    """
    supported_types = OPERATOR_VALUE_TYPES.get(operator)
    if supported_types is None:
        logger.debug(f"Unknown tax rule operator {operator!r}, treating rule as not matching")
        return False
    if value_type is not None and value_type not in supported_types:
        logger.debug(f"Operator {operator!r} is not valid for {value_type!r} rule values, treating rule as not matching")
        return False
    if context_value is None:
        return False

    if operator == '==':
        return _strict_equals(context_value, rule_value)
    if operator == '!=':
        return not _strict_equals(context_value, rule_value)
    if operator in ORDERING_OPERATORS:
        left = to_number(context_value)
        right = to_number(rule_value)
        if left is None or right is None:
            return False
        return ORDERING_OPERATORS[operator](left, right)
    if not isinstance(rule_value, (list, tuple)):
        return False
    if operator == 'in':
        return to_text(context_value) in rule_value
    return to_text(context_value) not in rule_value


def get_context_value(context, condition_field):
    """Value of a rule condition field in the context, None when absent or unknown"""
    key = CONDITION_FIELD_CONTEXT_KEYS.get(condition_field)
    if key is None:
        return None
    return context.get(key)


def rule_matches(rule, context) -> bool:
    return evaluate_rule_condition(
        _get(rule, 'operator'),
        _get(rule, 'value'),
        get_context_value(context, _get(rule, 'condition_field')),
        _get(rule, 'value_type'),
    )


def assignment_matches(assignment, context) -> bool:
    key = TARGET_TYPE_CONTEXT_KEYS.get(_get(assignment, 'target_type'))
    if key is None:
        return False
    target_id = _get(assignment, 'target_id')
    context_id = context.get(key)
    if target_id is None or context_id is None:
        return False
    return to_text(target_id) == to_text(context_id)


def tax_applies(tax, context) -> bool:
    """
    A tax applies iff it is active, every rule matches (AND, stops at the
    first failing rule) and, when it has assignments, at least one of them
    matches (OR). No assignments means no scope restriction.
    """
    if _get(tax, 'status') != 'active':
        return False

    for rule in _related(tax, 'rules'):
        if not rule_matches(rule, context):
            return False

    assignments = _related(tax, 'assignments')
    if assignments and not any(assignment_matches(assignment, context) for assignment in assignments):
        return False
    return True


def calculate_tax_amount(tax, base_price) -> Decimal:
    """Percentage taxes are a share of base_price, anything else is the rate itself"""
    rate = to_number(_get(tax, 'rate')) or ZERO
    if _get(tax, 'type') == 'percentage':
        return (to_number(base_price) or ZERO) * rate / HUNDRED
    return rate


def _require_base_price(context):
    if context is None:
        raise ValueError("A tax calculation context is required")
    base_price = to_number(context.get('base_price'))
    if base_price is None:
        raise ValueError("Tax calculation context requires a numeric base_price")
    return base_price


def calculate_taxes(taxes, context):
    """
    Evaluate tax definitions against a transaction context.

    Returns one result dict per active tax, in input order. Inactive taxes
    are left out of the results entirely. The amount is computed whether or
    not the tax applied; only `applied` results count towards totals.
    """
    if taxes is None:
        raise ValueError("A list of taxes is required")
    base_price = _require_base_price(context)

    results = []
    for tax in taxes:
        if _get(tax, 'status') != 'active':
            continue
        results.append({
            'tax_id': _get(tax, 'id'),
            'tax_name': _get(tax, 'name'),
            'tax_type': _get(tax, 'type'),
            'rate': to_number(_get(tax, 'rate')) or ZERO,
            'amount': calculate_tax_amount(tax, base_price),
            'applied': tax_applies(tax, context),
        })
    return results


def calculate_total_tax(results) -> Decimal:
    return sum((result['amount'] for result in results if result['applied']), ZERO)


def calculate_final_price(base_price, results) -> Decimal:
    return (to_number(base_price) or ZERO) + calculate_total_tax(results)


def build_tax_preview(base_price, results, product_name=''):
    """Summary shown next to a product: its taxes, their total and the final price"""
    base_price = to_number(base_price) or ZERO
    total_tax = calculate_total_tax(results)
    return {
        'base_price': base_price,
        'product_name': product_name or '',
        'applied_taxes': results,
        'total_tax': total_tax,
        'final_price': base_price + total_tax,
    }
