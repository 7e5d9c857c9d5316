"""Helpers for listing, summarising and exporting tax definitions"""
import csv
import io
from django.db.models import Avg, Count, Q
from django.db.models.functions import Lower
from .engine import OPERATOR_VALUE_TYPES, to_text
from .models import (
    CONDITION_FIELDS, OPERATOR_CHOICES, TARGET_TYPE_CHOICES, PRODUCT_TYPE_CHOICES,
    TAX_TYPE_CHOICES, TAX_STATUS_CHOICES,
)

DEFAULT_SORT_BY = 'name'
DEFAULT_PAGE_SIZE = 10

SORT_FIELDS = {
    'name': 'name',
    'rate': 'rate',
    'type': 'type',
    'status': 'status',
    'updated_at': 'updated_at',
    'updatedAt': 'updated_at',
    'created_at': 'created_at',
    'createdAt': 'created_at',
}
TEXT_SORT_FIELDS = {'name', 'type', 'status'}

CSV_HEADERS = [
    'Name', 'Rate', 'Type', 'Status', 'Description', 'Product Type',
    'Rules Count', 'Assignments Count', 'Created At', 'Updated At',
]


def build_tax_ordering(sort_by=None, sort_order=None):
    """
    Build order_by() arguments for the tax list.

    Text columns sort case-insensitively. Unknown columns fall back to name,
    anything but 'desc' sorts ascending. id breaks ties so pages are stable.
    """
    field = SORT_FIELDS.get(sort_by or DEFAULT_SORT_BY, DEFAULT_SORT_BY)
    descending = (sort_order or '').lower() == 'desc'

    if field in TEXT_SORT_FIELDS:
        ordering = Lower(field).desc() if descending else Lower(field).asc()
    else:
        ordering = f'-{field}' if descending else field
    return [ordering, '-id' if descending else 'id']


def get_tax_statistics(queryset):
    """Counts by status, type and configuration plus the average rate"""
    stats = queryset.aggregate(
        total=Count('id'),
        active=Count('id', filter=Q(status='active')),
        inactive=Count('id', filter=Q(status='inactive')),
        percentage=Count('id', filter=Q(type='percentage')),
        fixed=Count('id', filter=Q(type='fixed')),
        average_rate=Avg('rate'),
    )
    stats['with_rules'] = queryset.filter(rules__isnull=False).distinct().count()
    stats['with_assignments'] = queryset.filter(assignments__isnull=False).distinct().count()
    stats['average_rate'] = float(stats['average_rate'] or 0)
    return stats


def export_taxes_to_csv(taxes):
    """Render taxes as CSV text with every field quoted"""
    output = io.StringIO()
    writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator='\n')
    writer.writerow(CSV_HEADERS)
    for tax in taxes:
        writer.writerow([
            tax.name,
            to_text(tax.rate),
            tax.type,
            tax.status,
            tax.description or '',
            tax.product_type or '',
            len(tax.rules.all()),
            len(tax.assignments.all()),
            tax.created_at.isoformat() if tax.created_at else '',
            tax.updated_at.isoformat() if tax.updated_at else '',
        ])
    return output.getvalue().rstrip('\n')


def get_rule_options():
    """Choices a tax editor needs to build assignments and rules"""
    return {
        'condition_fields': [
            {'value': value, 'label': label, 'type': value_type}
            for value, label, value_type in CONDITION_FIELDS
        ],
        'operators': [
            {'value': value, 'label': label, 'supported_types': list(OPERATOR_VALUE_TYPES[value])}
            for value, label in OPERATOR_CHOICES
        ],
        'target_types': [{'value': value, 'label': label} for value, label in TARGET_TYPE_CHOICES],
        'product_types': [{'value': value, 'label': label} for value, label in PRODUCT_TYPE_CHOICES],
        'tax_types': [{'value': value, 'label': label} for value, label in TAX_TYPE_CHOICES],
        'statuses': [{'value': value, 'label': label} for value, label in TAX_STATUS_CHOICES],
    }
