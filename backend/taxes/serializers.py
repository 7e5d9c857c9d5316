from rest_framework import serializers
from django.db import transaction
from decimal import Decimal, ROUND_HALF_UP
from .engine import OPERATOR_VALUE_TYPES, to_number
from .models import Tax, TaxAssignment, TaxRule, CONDITION_FIELDS
from .signals import suspend_cache_signals

CONDITION_FIELD_TYPES = {value: value_type for value, _, value_type in CONDITION_FIELDS}


class TaxAssignmentSerializer(serializers.ModelSerializer):
    class Meta:
        model = TaxAssignment
        fields = ['id', 'target_type', 'target_id', 'target_name']

    def validate(self, attrs):
        # Nested lists always replace the stored ones, so partial updates still need whole items
        missing = {field: 'This field is required.' for field in ('target_type', 'target_id') if field not in attrs}
        if missing:
            raise serializers.ValidationError(missing)
        return attrs


class TaxRuleSerializer(serializers.ModelSerializer):
    value = serializers.JSONField()
    value_type = serializers.ChoiceField(choices=['string', 'number', 'array'], required=False)

    class Meta:
        model = TaxRule
        fields = ['id', 'condition_field', 'operator', 'value', 'value_type']

    def validate(self, attrs):
        missing = {field: 'This field is required.' for field in ('condition_field', 'operator', 'value') if field not in attrs}
        if missing:
            raise serializers.ValidationError(missing)

        condition_field = attrs['condition_field']
        operator = attrs['operator']
        field_type = CONDITION_FIELD_TYPES[condition_field]

        # Same defaulting as the rule editor: list operators switch the rule to array values
        value_type = attrs.get('value_type') or ('array' if operator in ('in', 'not_in') else field_type)
        if value_type not in ('array', field_type):
            raise serializers.ValidationError({
                'value_type': f"'{condition_field}' rules compare {field_type} values"
            })
        if value_type not in OPERATOR_VALUE_TYPES[operator]:
            raise serializers.ValidationError({
                'operator': f"Operator '{operator}' cannot be used with {value_type} values"
            })

        attrs['value_type'] = value_type
        attrs['value'] = self._clean_value(attrs['value'], value_type)
        return attrs

    def _clean_value(self, value, value_type):
        if value_type == 'array':
            if isinstance(value, str):
                value = [item.strip() for item in value.split(',') if item.strip()]
            if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
                raise serializers.ValidationError({'value': 'List rules require a list of text values'})
            return value

        if value_type == 'number':
            number = to_number(value)
            if number is None:
                raise serializers.ValidationError({'value': 'Number rules require a numeric value'})
            return int(number) if number == number.to_integral_value() else float(number)

        if not isinstance(value, str):
            raise serializers.ValidationError({'value': 'Text rules require a text value'})
        return value


class TaxSerializer(serializers.ModelSerializer):
    assignments = TaxAssignmentSerializer(many=True, required=False)
    rules = TaxRuleSerializer(many=True, required=False)

    class Meta:
        model = Tax
        fields = [
            'id', 'name', 'rate', 'type', 'status', 'description', 'product_type',
            'assignments', 'rules', 'created_at', 'updated_at'
        ]
        read_only_fields = ['created_at', 'updated_at']
        extra_kwargs = {
            'rate': {'error_messages': {'required': 'Tax rate is required', 'invalid': 'Tax rate must be a valid positive number'}},
            'type': {'error_messages': {'invalid_choice': 'Tax type must be either percentage or fixed'}},
            'status': {'error_messages': {'invalid_choice': 'Tax status must be either active or inactive'}},
        }

    def validate_name(self, value):
        value = value.strip()
        if not value:
            raise serializers.ValidationError('Tax name is required')
        return value

    def validate_rate(self, value):
        if value < 0:
            raise serializers.ValidationError('Tax rate must be a valid positive number')
        return value

    def validate(self, attrs):
        tax_type = attrs.get('type', getattr(self.instance, 'type', 'percentage'))
        rate = attrs.get('rate', getattr(self.instance, 'rate', None))
        if tax_type == 'percentage' and rate is not None and rate > 100:
            raise serializers.ValidationError({'rate': 'Percentage rate cannot exceed 100%'})
        return attrs

    def create(self, validated_data):
        assignments_data = validated_data.pop('assignments', [])
        rules_data = validated_data.pop('rules', [])

        with suspend_cache_signals(), transaction.atomic():
            tax = Tax.objects.create(**validated_data)
            self._replace_conditions(tax, assignments_data, rules_data)
        return tax

    def update(self, instance, validated_data):
        assignments_data = validated_data.pop('assignments', None)
        rules_data = validated_data.pop('rules', None)

        with suspend_cache_signals(), transaction.atomic():
            instance = super().update(instance, validated_data)
            self._replace_conditions(instance, assignments_data, rules_data)
        return instance

    def _replace_conditions(self, tax, assignments_data, rules_data):
        """Replace the tax's assignments and/or rules; None leaves the stored list untouched"""
        if assignments_data is not None:
            tax.assignments.all().delete()
            TaxAssignment.objects.bulk_create([
                TaxAssignment(tax=tax, position=position, **data)
                for position, data in enumerate(assignments_data)
            ])
        if rules_data is not None:
            tax.rules.all().delete()
            TaxRule.objects.bulk_create([
                TaxRule(tax=tax, position=position, **data)
                for position, data in enumerate(rules_data)
            ])


class TaxCalculationContextSerializer(serializers.Serializer):
    """Transaction facts a set of taxes is evaluated against"""
    base_price = serializers.DecimalField(max_digits=None, decimal_places=None, min_value=Decimal('0'))
    product_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    category_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    customer_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    store_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    supplier_id = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    region = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    customer_type = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    product_category = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    store_location = serializers.CharField(required=False, allow_null=True, allow_blank=True)
    quantity = serializers.DecimalField(max_digits=None, decimal_places=None, required=False, allow_null=True)
    total_amount = serializers.DecimalField(max_digits=None, decimal_places=None, required=False, allow_null=True)
    tax_ids = serializers.ListField(child=serializers.IntegerField(), required=False, allow_empty=True)
    product_name = serializers.CharField(required=False, allow_blank=True, max_length=255)

    def validate(self, attrs):
        # Blank and null values mean the fact is unknown, same as leaving it out
        return {key: value for key, value in attrs.items() if value is not None and value != ''}


class TaxCalculationResultSerializer(serializers.Serializer):
    tax_id = serializers.IntegerField(allow_null=True)
    tax_name = serializers.CharField()
    tax_type = serializers.CharField()
    rate = serializers.DecimalField(max_digits=None, decimal_places=4, coerce_to_string=False, rounding=ROUND_HALF_UP)
    amount = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)
    applied = serializers.BooleanField()


class TaxCalculationSummarySerializer(serializers.Serializer):
    base_price = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)
    results = TaxCalculationResultSerializer(many=True)
    total_tax = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)
    final_price = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)


class TaxPreviewSerializer(serializers.Serializer):
    base_price = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)
    product_name = serializers.CharField(allow_blank=True)
    applied_taxes = TaxCalculationResultSerializer(many=True)
    total_tax = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)
    final_price = serializers.DecimalField(max_digits=None, decimal_places=2, coerce_to_string=False, rounding=ROUND_HALF_UP)
