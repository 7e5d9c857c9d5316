"""
Test suite for the Taxes module
Tests: rule evaluation engine, tax CRUD API, calculation/preview endpoints,
statistics, CSV export, cache invalidation and sample data command
"""
from django.core.cache import cache
from django.core.management import call_command
from django.db import transaction
from django.test import SimpleTestCase, TestCase, TransactionTestCase
from rest_framework import status
from decimal import Decimal
from io import StringIO
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.taxes import engine
from backend.taxes.cache import get_active_taxes, ACTIVE_TAXES_CACHE_KEY
from backend.taxes.models import Tax, TaxRule


def make_tax(name='VAT', rate='7.5', type='percentage', status='active', rules=None, assignments=None, id=1):
    return {
        'id': id,
        'name': name,
        'rate': Decimal(rate),
        'type': type,
        'status': status,
        'rules': rules or [],
        'assignments': assignments or [],
    }


def make_rule(condition_field='region', operator='==', value='US', value_type='string'):
    return {'condition_field': condition_field, 'operator': operator, 'value': value, 'value_type': value_type}


class ExplodingRule:
    """A rule that fails the test if the engine reads it"""

    def __getattr__(self, name):
        raise AssertionError(f"rule attribute {name!r} should not have been read")


class EvaluateRuleConditionTests(SimpleTestCase):
    """Test individual operator semantics"""

    def test_equals_strings(self):
        self.assertTrue(engine.evaluate_rule_condition('==', 'US', 'US', 'string'))
        self.assertFalse(engine.evaluate_rule_condition('==', 'US', 'CA', 'string'))

    def test_equals_is_strict_between_strings_and_numbers(self):
        self.assertFalse(engine.evaluate_rule_condition('==', '5', 5))
        self.assertFalse(engine.evaluate_rule_condition('==', 5, '5'))
        self.assertTrue(engine.evaluate_rule_condition('==', 5, Decimal('5.00'), 'number'))

    def test_not_equals(self):
        self.assertTrue(engine.evaluate_rule_condition('!=', 'US', 'CA', 'string'))
        self.assertFalse(engine.evaluate_rule_condition('!=', 'US', 'US', 'string'))

    def test_ordering_operators(self):
        self.assertTrue(engine.evaluate_rule_condition('>=', 1000, Decimal('1000'), 'number'))
        self.assertTrue(engine.evaluate_rule_condition('<=', 1000, 999, 'number'))
        self.assertTrue(engine.evaluate_rule_condition('>', 10, '10.5', 'number'))
        self.assertFalse(engine.evaluate_rule_condition('>', 10, 10, 'number'))
        self.assertTrue(engine.evaluate_rule_condition('<', 10, 9.99, 'number'))
        self.assertFalse(engine.evaluate_rule_condition('<', 10, 10, 'number'))

    def test_non_numeric_values_never_compare(self):
        self.assertFalse(engine.evaluate_rule_condition('>=', 1000, 'lots', 'number'))
        self.assertFalse(engine.evaluate_rule_condition('<=', 'abc', 5, 'number'))
        self.assertFalse(engine.evaluate_rule_condition('<', 10, '', 'number'))
        self.assertFalse(engine.evaluate_rule_condition('>', 0, True, 'number'))
        self.assertFalse(engine.evaluate_rule_condition('>', 0, float('nan'), 'number'))

    def test_in_and_not_in(self):
        self.assertTrue(engine.evaluate_rule_condition('in', ['US', 'CA'], 'US', 'array'))
        self.assertFalse(engine.evaluate_rule_condition('in', ['US', 'CA'], 'UK', 'array'))
        self.assertTrue(engine.evaluate_rule_condition('not_in', ['US', 'CA'], 'UK', 'array'))
        self.assertFalse(engine.evaluate_rule_condition('not_in', ['US', 'CA'], 'CA', 'array'))

    def test_in_uses_string_form_of_context_value(self):
        self.assertTrue(engine.evaluate_rule_condition('in', ['2', '3'], 2, 'array'))
        self.assertTrue(engine.evaluate_rule_condition('in', ['2', '3'], Decimal('2.0000'), 'array'))
        self.assertTrue(engine.evaluate_rule_condition('in', ['2.5'], Decimal('2.50'), 'array'))

    def test_list_operators_require_a_list(self):
        self.assertFalse(engine.evaluate_rule_condition('in', 'US', 'US'))
        self.assertFalse(engine.evaluate_rule_condition('not_in', 'US', 'CA'))

    def test_unknown_operator_never_matches(self):
        self.assertFalse(engine.evaluate_rule_condition('~=', 'US', 'US'))
        self.assertFalse(engine.evaluate_rule_condition(None, 'US', 'US'))

    def test_operator_not_valid_for_value_type(self):
        self.assertFalse(engine.evaluate_rule_condition('>=', 5, 10, 'string'))
        self.assertFalse(engine.evaluate_rule_condition('in', ['US'], 'US', 'string'))
        self.assertFalse(engine.evaluate_rule_condition('==', ['US'], 'US', 'array'))

    def test_absent_context_value_never_matches(self):
        for operator, rule_value, value_type in [
            ('==', 'US', 'string'),
            ('!=', 'US', 'string'),
            ('>=', 0, 'number'),
            ('in', ['US'], 'array'),
            ('not_in', ['US'], 'array'),
        ]:
            self.assertFalse(engine.evaluate_rule_condition(operator, rule_value, None, value_type), operator)


class CalculateTaxesTests(SimpleTestCase):
    """Test the evaluator over plain tax definitions"""

    def test_percentage_match(self):
        tax = make_tax(rules=[make_rule()])
        context = {'base_price': Decimal('1200'), 'region': 'US'}

        results = engine.calculate_taxes([tax], context)

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]['amount'], Decimal('90'))
        self.assertTrue(results[0]['applied'])
        self.assertEqual(results[0]['tax_name'], 'VAT')
        self.assertEqual(results[0]['tax_type'], 'percentage')
        self.assertEqual(results[0]['rate'], Decimal('7.5'))
        self.assertEqual(engine.calculate_final_price(context['base_price'], results), Decimal('1290'))

    def test_percentage_no_match_wrong_region(self):
        tax = make_tax(rules=[make_rule()])
        context = {'base_price': Decimal('1200'), 'region': 'CA'}

        results = engine.calculate_taxes([tax], context)

        self.assertEqual(results[0]['amount'], Decimal('90'))
        self.assertFalse(results[0]['applied'])
        self.assertEqual(engine.calculate_final_price(context['base_price'], results), Decimal('1200'))

    def test_fixed_tax_with_threshold_rule(self):
        tax = make_tax(name='Luxury Tax', rate='50', type='fixed',
                       rules=[make_rule('total_amount', '>=', 1000, 'number')])
        results = engine.calculate_taxes([tax], {'base_price': 1200, 'total_amount': 1200})

        self.assertEqual(results[0]['amount'], Decimal('50'))
        self.assertTrue(results[0]['applied'])

    def test_fixed_tax_below_threshold(self):
        tax = make_tax(rate='50', type='fixed', rules=[make_rule('total_amount', '>=', 1000, 'number')])
        results = engine.calculate_taxes([tax], {'base_price': 800, 'total_amount': 800})

        self.assertEqual(results[0]['amount'], Decimal('50'))
        self.assertFalse(results[0]['applied'])

    def test_assignment_scoping(self):
        tax = make_tax(assignments=[{'target_type': 'product', 'target_id': 'iphone15', 'target_name': 'iPhone 15 Pro'}])

        matching = engine.calculate_taxes([tax], {'base_price': 1200, 'product_id': 'iphone15'})
        other = engine.calculate_taxes([tax], {'base_price': 1200, 'product_id': 'macbook'})
        missing = engine.calculate_taxes([tax], {'base_price': 1200})

        self.assertTrue(matching[0]['applied'])
        self.assertFalse(other[0]['applied'])
        self.assertFalse(missing[0]['applied'])

    def test_assignment_target_types_map_to_context_ids(self):
        for target_type, key in engine.TARGET_TYPE_CONTEXT_KEYS.items():
            tax = make_tax(assignments=[{'target_type': target_type, 'target_id': '42'}])
            self.assertTrue(engine.tax_applies(tax, {'base_price': 1, key: '42'}), target_type)
            self.assertFalse(engine.tax_applies(tax, {'base_price': 1, key: '43'}), target_type)

    def test_assignment_ids_compare_as_strings(self):
        tax = make_tax(assignments=[{'target_type': 'store', 'target_id': '7'}])
        self.assertTrue(engine.tax_applies(tax, {'base_price': 1, 'store_id': 7}))

    def test_any_assignment_is_enough(self):
        tax = make_tax(assignments=[
            {'target_type': 'product', 'target_id': 'iphone15'},
            {'target_type': 'category', 'target_id': 'electronics'},
        ])
        self.assertTrue(engine.tax_applies(tax, {'base_price': 1, 'category_id': 'electronics'}))

    def test_unknown_assignment_target_type_never_matches(self):
        tax = make_tax(assignments=[{'target_type': 'warehouse', 'target_id': 'w1'}])
        self.assertFalse(engine.tax_applies(tax, {'base_price': 1, 'warehouse_id': 'w1'}))

    def test_inactive_tax_excluded(self):
        taxes = [
            make_tax(name='Environmental Fee', status='inactive', id=1),
            make_tax(name='Digital Services Tax', id=2),
        ]
        results = engine.calculate_taxes(taxes, {'base_price': 100})

        self.assertEqual([r['tax_name'] for r in results], ['Digital Services Tax'])

    def test_multiple_rules_one_fails(self):
        tax = make_tax(rules=[
            make_rule('region', '==', 'US'),
            make_rule('customer_type', '==', 'wholesale'),
        ])
        results = engine.calculate_taxes([tax], {'base_price': 100, 'region': 'US', 'customer_type': 'retail'})

        self.assertFalse(results[0]['applied'])

    def test_rules_stop_at_first_failure(self):
        tax = make_tax(rules=[make_rule('region', '==', 'US'), ExplodingRule()])
        self.assertFalse(engine.tax_applies(tax, {'base_price': 100, 'region': 'CA'}))

    def test_assignments_skipped_when_rules_fail(self):
        tax = make_tax(rules=[make_rule('region', '==', 'US')], assignments=[ExplodingRule()])
        self.assertFalse(engine.tax_applies(tax, {'base_price': 100, 'region': 'CA'}))

    def test_every_condition_field_reads_its_context_key(self):
        for condition_field, key in engine.CONDITION_FIELD_CONTEXT_KEYS.items():
            tax = make_tax(rules=[make_rule(condition_field, '==', 'x', None)])
            self.assertTrue(engine.tax_applies(tax, {'base_price': 1, key: 'x'}), condition_field)

    def test_unknown_condition_field_never_matches(self):
        tax = make_tax(rules=[make_rule('country', '==', 'US')])
        self.assertFalse(engine.tax_applies(tax, {'base_price': 1, 'country': 'US'}))

    def test_results_keep_input_order(self):
        taxes = [make_tax(name=name, id=i) for i, name in enumerate(['Zeta', 'Alpha', 'Mid'])]
        results = engine.calculate_taxes(taxes, {'base_price': 10})
        self.assertEqual([r['tax_name'] for r in results], ['Zeta', 'Alpha', 'Mid'])

    def test_missing_inputs_are_programming_errors(self):
        with self.assertRaises(ValueError):
            engine.calculate_taxes(None, {'base_price': 10})
        with self.assertRaises(ValueError):
            engine.calculate_taxes([], None)
        with self.assertRaises(ValueError):
            engine.calculate_taxes([], {'region': 'US'})

    def test_build_tax_preview(self):
        results = engine.calculate_taxes(
            [make_tax(rules=[make_rule()]), make_tax(name='Flat', rate='5', type='fixed', id=2)],
            {'base_price': Decimal('200'), 'region': 'CA'},
        )
        preview = engine.build_tax_preview(Decimal('200'), results, 'Headphones')

        self.assertEqual(preview['product_name'], 'Headphones')
        self.assertEqual(preview['total_tax'], Decimal('5'))
        self.assertEqual(preview['final_price'], Decimal('205'))
        self.assertEqual(len(preview['applied_taxes']), 2)


class EvaluatorPropertyTests(SimpleTestCase):
    """Invariants that hold for every tax and context"""

    contexts = [
        {'base_price': Decimal('1200'), 'region': 'US', 'product_id': 'iphone15', 'total_amount': Decimal('1200')},
        {'base_price': Decimal('50'), 'region': 'CA', 'product_id': 'macbook', 'quantity': 3},
        {'base_price': Decimal('0')},
    ]

    def test_inactive_tax_never_in_output(self):
        tax = make_tax(status='inactive')
        for context in self.contexts:
            self.assertEqual(engine.calculate_taxes([tax], context), [])

    def test_unrestricted_tax_always_applies(self):
        tax = make_tax()
        for context in self.contexts:
            self.assertTrue(engine.calculate_taxes([tax], context)[0]['applied'])

    def test_amount_does_not_depend_on_applied(self):
        restricted = make_tax(rules=[make_rule('region', '==', 'nowhere')])
        unrestricted = make_tax()
        for context in self.contexts:
            self.assertEqual(
                engine.calculate_taxes([restricted], context)[0]['amount'],
                engine.calculate_taxes([unrestricted], context)[0]['amount'],
            )

    def test_adding_a_rule_never_turns_applied_on(self):
        candidate_rules = [
            make_rule('region', '==', 'US'),
            make_rule('region', '!=', 'US'),
            make_rule('total_amount', '>=', 1000, 'number'),
            make_rule('quantity', 'in', ['3'], 'array'),
        ]
        for context in self.contexts:
            for base_rules in ([], [make_rule('region', '==', 'CA')]):
                before = engine.tax_applies(make_tax(rules=base_rules), context)
                for rule in candidate_rules:
                    after = engine.tax_applies(make_tax(rules=base_rules + [rule]), context)
                    self.assertFalse(after and not before)

    def test_assignments_apply_as_a_set(self):
        context = self.contexts[0]
        self.assertTrue(engine.tax_applies(make_tax(assignments=[
            {'target_type': 'product', 'target_id': 'macbook'},
            {'target_type': 'product', 'target_id': 'iphone15'},
        ]), context))
        self.assertFalse(engine.tax_applies(make_tax(assignments=[
            {'target_type': 'product', 'target_id': 'macbook'},
        ]), context))

    def test_final_price_is_base_plus_applied_amounts(self):
        taxes = [
            make_tax(rules=[make_rule()], id=1),
            make_tax(name='Luxury Tax', rate='50', type='fixed', id=2,
                     rules=[make_rule('total_amount', '>=', 1000, 'number')]),
            make_tax(name='Digital', rate='3', id=3),
        ]
        for context in self.contexts:
            results = engine.calculate_taxes(taxes, context)
            expected = context['base_price'] + sum((r['amount'] for r in results if r['applied']), Decimal('0'))
            self.assertEqual(engine.calculate_final_price(context['base_price'], results), expected)


class ModelEvaluationTests(TestCase):
    """Test the evaluator against stored taxes"""

    def setUp(self):
        cache.clear()

    def test_calculate_with_model_instances(self):
        TestDataFactory.create_tax(
            name='VAT', rate=Decimal('7.50'),
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}],
            assignments=[{'target_type': 'category', 'target_id': 'electronics'}],
        )
        TestDataFactory.create_tax(name='Old Fee', rate=Decimal('25'), type='fixed', status='inactive')

        taxes = Tax.objects.with_conditions()
        results = engine.calculate_taxes(taxes, {'base_price': Decimal('1200'), 'region': 'US', 'category_id': 'electronics'})

        self.assertEqual(len(results), 1)
        self.assertEqual(results[0]['amount'], Decimal('90'))
        self.assertTrue(results[0]['applied'])

    def test_rules_are_evaluated_in_position_order(self):
        tax = TestDataFactory.create_tax()
        TestDataFactory.create_tax_rule(tax, 'region', '==', 'US')
        TestDataFactory.create_tax_rule(tax, 'quantity', '>', 1, 'number')

        rules = list(Tax.objects.with_conditions().get(pk=tax.pk).rules.all())
        self.assertEqual([r.condition_field for r in rules], ['region', 'quantity'])

    def test_stored_rule_with_mismatched_type_fails_closed(self):
        tax = TestDataFactory.create_tax(
            rules=[{'condition_field': 'region', 'operator': '>=', 'value': 'US', 'value_type': 'string'}]
        )
        self.assertFalse(engine.tax_applies(tax, {'base_price': 10, 'region': 'US'}))

    def test_active_taxes_are_cached_and_invalidated(self):
        TestDataFactory.create_tax(name='First')
        self.assertEqual([t.name for t in get_active_taxes()], ['First'])
        self.assertIsNotNone(cache.get(ACTIVE_TAXES_CACHE_KEY))

        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_tax(name='Second')
        self.assertIsNone(cache.get(ACTIVE_TAXES_CACHE_KEY))
        self.assertEqual([t.name for t in get_active_taxes()], ['First', 'Second'])

    def test_rule_change_invalidates_cache(self):
        tax = TestDataFactory.create_tax()
        get_active_taxes()
        with self.captureOnCommitCallbacks(execute=True):
            TestDataFactory.create_tax_rule(tax)
        self.assertIsNone(cache.get(ACTIVE_TAXES_CACHE_KEY))


class TaxAPITests(TestCase):
    """Test Tax CRUD API endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def tax_payload(self, **overrides):
        data = {
            'name': 'VAT',
            'rate': '7.5',
            'type': 'percentage',
            'status': 'active',
            'description': 'Value Added Tax',
            'product_type': '',
            'assignments': [
                {'target_type': 'category', 'target_id': 'electronics', 'target_name': 'Electronics'},
            ],
            'rules': [
                {'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'},
            ],
        }
        data.update(overrides)
        return data

    def test_requires_authentication(self):
        self.client.logout()
        response = self.client.get('/api/v1/taxes/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_create_tax(self):
        response = self.client.post('/api/v1/taxes/', self.tax_payload(), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['name'], 'VAT')
        self.assertEqual(len(response.data['assignments']), 1)
        self.assertEqual(len(response.data['rules']), 1)
        self.assertIn('created_at', response.data)

        tax = Tax.objects.get(pk=response.data['id'])
        self.assertEqual(tax.rate, Decimal('7.50'))
        self.assertEqual(tax.rules.get().value, 'US')
        self.assertTrue(AuditLog.objects.filter(action='create', model_name='Tax', object_id=str(tax.id)).exists())

    def test_create_tax_without_rules_or_assignments(self):
        response = self.client.post('/api/v1/taxes/', {'name': 'Digital', 'rate': '3'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['type'], 'percentage')
        self.assertEqual(response.data['status'], 'active')
        self.assertEqual(response.data['rules'], [])
        self.assertEqual(response.data['assignments'], [])

    def test_create_tax_validation_errors(self):
        cases = [
            ({'name': '   '}, 'name'),
            ({'name': 'x' * 101}, 'name'),
            ({'rate': '-1'}, 'rate'),
            ({'rate': 'abc'}, 'rate'),
            ({'rate': '150'}, 'rate'),
            ({'type': 'compound'}, 'type'),
            ({'status': 'archived'}, 'status'),
            ({'description': 'd' * 501}, 'description'),
        ]
        for overrides, field in cases:
            response = self.client.post('/api/v1/taxes/', self.tax_payload(**overrides), format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, overrides)
            self.assertIn(field, response.data, overrides)
        self.assertEqual(Tax.objects.count(), 0)

    def test_fixed_rate_above_hundred_is_allowed(self):
        response = self.client.post('/api/v1/taxes/', self.tax_payload(type='fixed', rate='150'), format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_rule_operator_must_fit_value_type(self):
        response = self.client.post('/api/v1/taxes/', self.tax_payload(rules=[
            {'condition_field': 'region', 'operator': '>=', 'value': 'US', 'value_type': 'string'},
        ]), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('rules', response.data)

    def test_rule_value_must_fit_value_type(self):
        response = self.client.post('/api/v1/taxes/', self.tax_payload(rules=[
            {'condition_field': 'total_amount', 'operator': '>=', 'value': 'a lot', 'value_type': 'number'},
        ]), format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('rules', response.data)

    def test_rule_value_type_defaults_from_field_and_operator(self):
        response = self.client.post('/api/v1/taxes/', self.tax_payload(rules=[
            {'condition_field': 'total_amount', 'operator': '>=', 'value': '1000'},
            {'condition_field': 'region', 'operator': 'in', 'value': 'US, CA , '},
        ]), format='json')

        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        rules = response.data['rules']
        self.assertEqual(rules[0]['value_type'], 'number')
        self.assertEqual(rules[0]['value'], 1000)
        self.assertEqual(rules[1]['value_type'], 'array')
        self.assertEqual(rules[1]['value'], ['US', 'CA'])

    def test_list_taxes_paginated(self):
        for i in range(12):
            TestDataFactory.create_tax(name=f'Tax {i:02d}')

        response = self.client.get('/api/v1/taxes/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 12)
        self.assertEqual(len(response.data['results']), 10)
        self.assertEqual(response.data['total_pages'], 2)
        self.assertEqual(response.data['next'], 2)

        response = self.client.get('/api/v1/taxes/?page=2&limit=10')
        self.assertEqual(len(response.data['results']), 2)
        self.assertEqual(response.data['previous'], 1)

    def test_list_taxes_search_and_filters(self):
        TestDataFactory.create_tax(name='VAT', description='Value Added Tax')
        TestDataFactory.create_tax(name='Luxury Tax', type='fixed', rate=Decimal('50'))
        TestDataFactory.create_tax(name='Environmental Fee', type='fixed', status='inactive', description='disposal')

        response = self.client.get('/api/v1/taxes/?search=added')
        self.assertEqual([t['name'] for t in response.data['results']], ['VAT'])

        response = self.client.get('/api/v1/taxes/?type=fixed&status=all')
        self.assertEqual([t['name'] for t in response.data['results']], ['Environmental Fee', 'Luxury Tax'])

        response = self.client.get('/api/v1/taxes/?type=all&status=inactive')
        self.assertEqual([t['name'] for t in response.data['results']], ['Environmental Fee'])

    def test_list_taxes_sorting(self):
        TestDataFactory.create_tax(name='b tax', rate=Decimal('3'))
        TestDataFactory.create_tax(name='A tax', rate=Decimal('9'))
        TestDataFactory.create_tax(name='C tax', rate=Decimal('5'))

        response = self.client.get('/api/v1/taxes/')
        self.assertEqual([t['name'] for t in response.data['results']], ['A tax', 'b tax', 'C tax'])

        response = self.client.get('/api/v1/taxes/?sort_by=rate&sort_order=desc')
        self.assertEqual([t['name'] for t in response.data['results']], ['A tax', 'C tax', 'b tax'])

    def test_get_tax_detail(self):
        tax = TestDataFactory.create_tax(
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}]
        )
        response = self.client.get(f'/api/v1/taxes/{tax.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['id'], tax.id)
        self.assertEqual(response.data['rules'][0]['operator'], '==')

    def test_get_missing_tax(self):
        response = self.client.get('/api/v1/taxes/999999/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_update_tax_replaces_rules_and_assignments(self):
        tax = TestDataFactory.create_tax(
            name='VAT',
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}],
            assignments=[{'target_type': 'product', 'target_id': 'iphone15'}],
        )
        original_updated_at = tax.updated_at

        payload = self.tax_payload(name='VAT (EU)', rules=[
            {'condition_field': 'region', 'operator': 'in', 'value': ['DE', 'FR'], 'value_type': 'array'},
            {'condition_field': 'quantity', 'operator': '>', 'value': 1, 'value_type': 'number'},
        ], assignments=[])
        response = self.client.put(f'/api/v1/taxes/{tax.id}/', payload, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        tax.refresh_from_db()
        self.assertEqual(tax.name, 'VAT (EU)')
        self.assertGreater(tax.updated_at, original_updated_at)
        self.assertEqual(list(tax.rules.values_list('condition_field', flat=True)), ['region', 'quantity'])
        self.assertEqual(tax.assignments.count(), 0)

        log = AuditLog.objects.get(action='update', object_id=str(tax.id))
        self.assertEqual(log.changes['name'], {'old': 'VAT', 'new': 'VAT (EU)'})

    def test_patch_keeps_rules_when_not_sent(self):
        tax = TestDataFactory.create_tax(
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}]
        )
        response = self.client.patch(f'/api/v1/taxes/{tax.id}/', {'status': 'inactive'}, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'inactive')
        self.assertEqual(len(response.data['rules']), 1)

    def test_patch_rate_checks_existing_type(self):
        tax = TestDataFactory.create_tax(type='percentage')
        response = self.client.patch(f'/api/v1/taxes/{tax.id}/', {'rate': '120'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('rate', response.data)

    def test_patch_incomplete_rule_rejected(self):
        tax = TestDataFactory.create_tax()
        response = self.client.patch(f'/api/v1/taxes/{tax.id}/', {'rules': [{'operator': '=='}]}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(TaxRule.objects.filter(tax=tax).count(), 0)

    def test_delete_tax(self):
        tax = TestDataFactory.create_tax(
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}]
        )
        response = self.client.delete(f'/api/v1/taxes/{tax.id}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Tax.objects.filter(pk=tax.id).exists())
        self.assertFalse(TaxRule.objects.filter(tax_id=tax.id).exists())
        self.assertTrue(AuditLog.objects.filter(action='delete', object_id=str(tax.id)).exists())

        response = self.client.delete(f'/api/v1/taxes/{tax.id}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class TaxCalculationAPITests(TestCase):
    """Test the calculate and preview endpoints"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.vat = TestDataFactory.create_tax(
            name='VAT', rate=Decimal('7.5'),
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}],
        )
        self.luxury = TestDataFactory.create_tax(
            name='Luxury Tax', rate=Decimal('50'), type='fixed',
            rules=[{'condition_field': 'total_amount', 'operator': '>=', 'value': 1000, 'value_type': 'number'}],
            assignments=[{'target_type': 'product', 'target_id': 'iphone15', 'target_name': 'iPhone 15 Pro'}],
        )
        self.fee = TestDataFactory.create_tax(name='Environmental Fee', rate=Decimal('25'), type='fixed', status='inactive')

    def test_calculate_taxes(self):
        response = self.client.post('/api/v1/taxes/calculate/', {
            'base_price': '1200',
            'region': 'US',
            'product_id': 'iphone15',
            'total_amount': '1200',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = {r['tax_name']: r for r in response.data['results']}
        self.assertEqual(set(results), {'VAT', 'Luxury Tax'})
        self.assertEqual(results['VAT']['amount'], Decimal('90.00'))
        self.assertTrue(results['VAT']['applied'])
        self.assertEqual(results['Luxury Tax']['amount'], Decimal('50.00'))
        self.assertTrue(results['Luxury Tax']['applied'])
        self.assertEqual(response.data['total_tax'], Decimal('140.00'))
        self.assertEqual(response.data['final_price'], Decimal('1340.00'))

    def test_calculate_unapplied_taxes_still_report_amount(self):
        response = self.client.post('/api/v1/taxes/calculate/', {
            'base_price': '1200',
            'region': 'CA',
            'product_id': 'macbook',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = {r['tax_name']: r for r in response.data['results']}
        self.assertFalse(results['VAT']['applied'])
        self.assertEqual(results['VAT']['amount'], Decimal('90.00'))
        self.assertFalse(results['Luxury Tax']['applied'])
        self.assertEqual(response.data['total_tax'], Decimal('0.00'))
        self.assertEqual(response.data['final_price'], Decimal('1200.00'))

    def test_calculate_with_selected_taxes(self):
        response = self.client.post('/api/v1/taxes/calculate/', {
            'base_price': '100',
            'region': 'US',
            'tax_ids': [self.fee.id, self.vat.id],
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([r['tax_name'] for r in response.data['results']], ['VAT'])
        self.assertEqual(response.data['results'][0]['tax_id'], self.vat.id)

    def test_calculate_requires_base_price(self):
        response = self.client.post('/api/v1/taxes/calculate/', {'region': 'US'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('base_price', response.data)

    def test_calculate_blank_context_fields_are_absent(self):
        response = self.client.post('/api/v1/taxes/calculate/', {
            'base_price': '100',
            'region': '',
            'product_id': None,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(any(r['applied'] for r in response.data['results']))

    def test_calculate_reflects_tax_changes(self):
        self.client.post('/api/v1/taxes/calculate/', {'base_price': '100'}, format='json')
        with self.captureOnCommitCallbacks(execute=True):
            self.client.patch(f'/api/v1/taxes/{self.fee.id}/', {'status': 'active'}, format='json')

        response = self.client.post('/api/v1/taxes/calculate/', {'base_price': '100'}, format='json')
        self.assertIn('Environmental Fee', [r['tax_name'] for r in response.data['results']])

    def test_calculate_accepts_float_context_values(self):
        response = self.client.post('/api/v1/taxes/calculate/', {
            'base_price': 35.97,
            'total_amount': 0.1 + 0.2,
            'quantity': 1.5,
            'region': 'US',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        results = {r['tax_name']: r for r in response.data['results']}
        self.assertEqual(results['VAT']['amount'], Decimal('2.70'))
        self.assertTrue(results['VAT']['applied'])
        self.assertFalse(results['Luxury Tax']['applied'])
        self.assertEqual(response.data['base_price'], Decimal('35.97'))
        self.assertEqual(response.data['final_price'], Decimal('38.67'))

    def test_calculate_rejects_non_finite_and_negative_prices(self):
        for base_price in ('NaN', '-1', 'abc'):
            response = self.client.post('/api/v1/taxes/calculate/', {'base_price': base_price}, format='json')
            self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST, base_price)
            self.assertIn('base_price', response.data)

    def test_three_decimal_rate_is_stored_and_applied(self):
        response = self.client.post('/api/v1/taxes/', {'name': 'NYC Sales Tax', 'rate': '8.875'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        tax = Tax.objects.get(pk=response.data['id'])
        self.assertEqual(tax.rate, Decimal('8.875'))

        response = self.client.post('/api/v1/taxes/calculate/', {
            'base_price': '200',
            'tax_ids': [tax.id],
        }, format='json')
        result = response.data['results'][0]
        self.assertEqual(result['rate'], Decimal('8.875'))
        self.assertEqual(result['amount'], Decimal('17.75'))
        self.assertTrue(result['applied'])

    def test_preview(self):
        response = self.client.post('/api/v1/taxes/preview/', {
            'base_price': '1200',
            'region': 'US',
            'product_name': 'iPhone 15 Pro',
        }, format='json')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['product_name'], 'iPhone 15 Pro')
        self.assertEqual(response.data['base_price'], Decimal('1200.00'))
        self.assertEqual(len(response.data['applied_taxes']), 2)
        self.assertEqual(response.data['total_tax'], Decimal('90.00'))
        self.assertEqual(response.data['final_price'], Decimal('1290.00'))


class TaxReportingAPITests(TestCase):
    """Test statistics, export and rule option endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_statistics(self):
        TestDataFactory.create_tax(
            rate=Decimal('10'),
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}],
        )
        TestDataFactory.create_tax(
            rate=Decimal('20'), type='fixed', status='inactive',
            assignments=[{'target_type': 'store', 'target_id': 's1'}, {'target_type': 'store', 'target_id': 's2'}],
        )

        response = self.client.get('/api/v1/taxes/statistics/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['total'], 2)
        self.assertEqual(response.data['active'], 1)
        self.assertEqual(response.data['inactive'], 1)
        self.assertEqual(response.data['percentage'], 1)
        self.assertEqual(response.data['fixed'], 1)
        self.assertEqual(response.data['with_rules'], 1)
        self.assertEqual(response.data['with_assignments'], 1)
        self.assertEqual(response.data['average_rate'], 15.0)

    def test_statistics_empty(self):
        response = self.client.get('/api/v1/taxes/statistics/')
        self.assertEqual(response.data['total'], 0)
        self.assertEqual(response.data['average_rate'], 0.0)

    def test_export_csv(self):
        TestDataFactory.create_tax(
            name='VAT', rate=Decimal('7.5'), description='Value Added Tax',
            rules=[{'condition_field': 'region', 'operator': '==', 'value': 'US', 'value_type': 'string'}],
        )
        TestDataFactory.create_tax(name='Old Fee', status='inactive')

        response = self.client.get('/api/v1/taxes/export/?status=active')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response['Content-Type'], 'text/csv; charset=utf-8')
        self.assertIn('attachment; filename="taxes.csv"', response['Content-Disposition'])
        lines = response.content.decode().split('\n')
        self.assertEqual(lines[0], '"Name","Rate","Type","Status","Description","Product Type","Rules Count","Assignments Count","Created At","Updated At"')
        self.assertEqual(len(lines), 2)
        self.assertTrue(lines[1].startswith('"VAT","7.5","percentage","active","Value Added Tax","","1","0",'))

    def test_rule_options(self):
        response = self.client.get('/api/v1/taxes/rule-options/')

        self.assertEqual(response.status_code, status.HTTP_200_OK)
        fields = {f['value']: f['type'] for f in response.data['condition_fields']}
        self.assertEqual(fields['total_amount'], 'number')
        self.assertEqual(fields['region'], 'string')
        operators = {o['value']: o['supported_types'] for o in response.data['operators']}
        self.assertEqual(operators['in'], ['array'])
        self.assertEqual(operators['=='], ['string', 'number'])
        self.assertEqual(len(response.data['target_types']), 5)


class SeedTaxesCommandTests(TestCase):
    """Test the sample data management command"""

    def test_seed_taxes(self):
        call_command('seed_taxes', stdout=StringIO())

        self.assertEqual(Tax.objects.count(), 4)
        luxury = Tax.objects.get(name='Luxury Tax')
        self.assertEqual(luxury.type, 'fixed')
        self.assertEqual(luxury.rules.get().value, 1000)
        self.assertEqual(luxury.assignments.get().target_id, 'iphone15')
        self.assertEqual(Tax.objects.get(name='Environmental Fee').status, 'inactive')

    def test_seed_taxes_is_idempotent(self):
        call_command('seed_taxes', stdout=StringIO())
        call_command('seed_taxes', stdout=StringIO())
        self.assertEqual(Tax.objects.count(), 4)

    def test_seed_taxes_clear(self):
        TestDataFactory.create_tax(name='Custom')
        call_command('seed_taxes', '--clear', stdout=StringIO())
        self.assertFalse(Tax.objects.filter(name='Custom').exists())
        self.assertEqual(Tax.objects.count(), 4)

    def test_seeded_luxury_tax_applies_to_iphone(self):
        call_command('seed_taxes', stdout=StringIO())
        results = engine.calculate_taxes(
            Tax.objects.with_conditions(),
            {'base_price': Decimal('1200'), 'product_id': 'iphone15', 'total_amount': Decimal('1200')},
        )
        applied = {r['tax_name'] for r in results if r['applied']}
        self.assertEqual(applied, {'Luxury Tax', 'Digital Services Tax'})


class TaxCacheCommitTests(TransactionTestCase):
    """Cache invalidation waits for the database commit"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def tearDown(self):
        cache.clear()

    def test_deleted_tax_is_not_served_from_cache_after_commit(self):
        tax = TestDataFactory.create_tax(name='Doomed', rate=Decimal('5'))
        cached_taxes = get_active_taxes()
        self.assertEqual([t.name for t in cached_taxes], ['Doomed'])

        with transaction.atomic():
            tax.delete()
            self.assertIsNotNone(cache.get(ACTIVE_TAXES_CACHE_KEY))
            # A concurrent request still sees the committed rows and caches them
            cache.set(ACTIVE_TAXES_CACHE_KEY, cached_taxes)

        self.assertIsNone(cache.get(ACTIVE_TAXES_CACHE_KEY))
        response = self.client.post('/api/v1/taxes/calculate/', {'base_price': '100'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['results'], [])

    def test_rolled_back_change_keeps_cache(self):
        TestDataFactory.create_tax(name='Stable')
        get_active_taxes()

        with self.assertRaises(RuntimeError):
            with transaction.atomic():
                TestDataFactory.create_tax(name='Draft')
                raise RuntimeError('abort')

        self.assertEqual([t.name for t in cache.get(ACTIVE_TAXES_CACHE_KEY)], ['Stable'])

    def test_api_update_invalidates_after_commit(self):
        tax = TestDataFactory.create_tax(name='Seasonal', status='active')
        get_active_taxes()

        response = self.client.patch(f'/api/v1/taxes/{tax.id}/', {'status': 'inactive'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIsNone(cache.get(ACTIVE_TAXES_CACHE_KEY))

        response = self.client.post('/api/v1/taxes/calculate/', {'base_price': '100'}, format='json')
        self.assertEqual(response.data['results'], [])
