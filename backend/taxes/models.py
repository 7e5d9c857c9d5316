from django.core.validators import MinValueValidator
from django.db import models
from django.db.models import Prefetch
from decimal import Decimal


TAX_TYPE_CHOICES = [
    ('percentage', 'Percentage (%)'),
    ('fixed', 'Fixed Amount ($)'),
]

TAX_STATUS_CHOICES = [
    ('active', 'Active'),
    ('inactive', 'Inactive'),
]

PRODUCT_TYPE_CHOICES = [
    ('', 'All Products'),
    ('luxury', 'Luxury Items'),
    ('digital', 'Digital Products'),
    ('perishable', 'Perishable Goods'),
    ('hazardous', 'Hazardous Materials'),
]

TARGET_TYPE_CHOICES = [
    ('product', 'Products'),
    ('category', 'Categories'),
    ('customer', 'Customers'),
    ('store', 'Stores'),
    ('supplier', 'Suppliers'),
]

# (value, label, value type)
CONDITION_FIELDS = [
    ('region', 'Region', 'string'),
    ('total_amount', 'Total Amount', 'number'),
    ('customer_type', 'Customer Type', 'string'),
    ('product_category', 'Product Category', 'string'),
    ('store_location', 'Store Location', 'string'),
    ('quantity', 'Quantity', 'number'),
]
CONDITION_FIELD_CHOICES = [(value, label) for value, label, _ in CONDITION_FIELDS]

OPERATOR_CHOICES = [
    ('==', 'Equals'),
    ('!=', 'Not Equals'),
    ('>=', 'Greater than or equal'),
    ('<=', 'Less than or equal'),
    ('>', 'Greater than'),
    ('<', 'Less than'),
    ('in', 'In list'),
    ('not_in', 'Not in list'),
]

VALUE_TYPE_CHOICES = [
    ('string', 'String'),
    ('number', 'Number'),
    ('array', 'Array'),
]


class TaxQuerySet(models.QuerySet):
    """Read side of the tax store used by the calculation engine"""

    def active(self):
        return self.filter(status='active')

    def with_conditions(self):
        return self.prefetch_related(
            Prefetch('rules', queryset=TaxRule.objects.order_by('position', 'id')),
            Prefetch('assignments', queryset=TaxAssignment.objects.order_by('position', 'id')),
        )


class Tax(models.Model):
    """A configured tax: rate, type, status, scope assignments and conditional rules"""
    name = models.CharField(max_length=100)
    rate = models.DecimalField(max_digits=12, decimal_places=4, validators=[MinValueValidator(Decimal('0'))])
    type = models.CharField(max_length=20, choices=TAX_TYPE_CHOICES, default='percentage')
    status = models.CharField(max_length=20, choices=TAX_STATUS_CHOICES, default='active')
    description = models.CharField(max_length=500, blank=True)
    # Informational only, the calculation engine never reads it
    product_type = models.CharField(max_length=20, choices=PRODUCT_TYPE_CHOICES, blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)

    objects = TaxQuerySet.as_manager()

    def __str__(self):
        return self.name

    @property
    def is_active(self):
        return self.status == 'active'

    class Meta:
        db_table = 'taxes'
        ordering = ['name', 'id']
        verbose_name_plural = 'taxes'


class TaxAssignment(models.Model):
    """Restricts a tax to a specific product, category, customer, store or supplier"""
    tax = models.ForeignKey(Tax, on_delete=models.CASCADE, related_name='assignments')
    target_type = models.CharField(max_length=20, choices=TARGET_TYPE_CHOICES)
    target_id = models.CharField(max_length=100)
    target_name = models.CharField(max_length=255, blank=True)
    position = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.tax_id} -> {self.target_type}:{self.target_id}"

    class Meta:
        db_table = 'tax_assignments'
        ordering = ['position', 'id']


class TaxRule(models.Model):
    """A condition over the transaction context that must hold for the tax to apply"""
    tax = models.ForeignKey(Tax, on_delete=models.CASCADE, related_name='rules')
    condition_field = models.CharField(max_length=30, choices=CONDITION_FIELD_CHOICES)
    operator = models.CharField(max_length=10, choices=OPERATOR_CHOICES)
    value = models.JSONField(default=str, blank=True)  # string, number or list of strings
    value_type = models.CharField(max_length=10, choices=VALUE_TYPE_CHOICES, default='string')
    position = models.PositiveIntegerField(default=0)

    def __str__(self):
        return f"{self.condition_field} {self.operator} {self.value!r}"

    class Meta:
        db_table = 'tax_rules'
        ordering = ['position', 'id']
