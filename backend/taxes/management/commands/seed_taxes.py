"""
Management command to load the sample tax definitions
"""
from django.core.management.base import BaseCommand
from django.db import transaction
from decimal import Decimal
from backend.taxes.models import Tax, TaxAssignment, TaxRule
from backend.taxes.signals import suspend_cache_signals

SAMPLE_TAXES = [
    {
        'name': 'VAT',
        'rate': Decimal('7.5'),
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
    },
    {
        'name': 'Luxury Tax',
        'rate': Decimal('50'),
        'type': 'fixed',
        'status': 'active',
        'description': 'Fixed luxury tax for high-end products',
        'product_type': 'luxury',
        'assignments': [
            {'target_type': 'product', 'target_id': 'iphone15', 'target_name': 'iPhone 15 Pro'},
        ],
        'rules': [
            {'condition_field': 'total_amount', 'operator': '>=', 'value': 1000, 'value_type': 'number'},
        ],
    },
    {
        'name': 'Digital Services Tax',
        'rate': Decimal('3'),
        'type': 'percentage',
        'status': 'active',
        'description': 'Tax on digital products and services',
        'product_type': 'digital',
        'assignments': [],
        'rules': [],
    },
    {
        'name': 'Environmental Fee',
        'rate': Decimal('25'),
        'type': 'fixed',
        'status': 'inactive',
        'description': 'Environmental disposal fee',
        'product_type': 'hazardous',
        'assignments': [],
        'rules': [],
    },
]


class Command(BaseCommand):
    help = "Adds the sample tax definitions (with their rules and assignments) to the database"

    def add_arguments(self, parser):
        parser.add_argument(
            '--clear',
            action='store_true',
            help='Delete all existing taxes before adding the samples',
        )

    def handle(self, *args, **options):
        clear = options['clear']

        self.stdout.write(self.style.SUCCESS("=" * 60))
        self.stdout.write(self.style.SUCCESS("ADDING SAMPLE TAXES"))
        self.stdout.write(self.style.SUCCESS("=" * 60))

        created_count = 0
        skipped_count = 0

        with suspend_cache_signals(), transaction.atomic():
            if clear:
                self.stdout.write(self.style.WARNING("Clearing all existing taxes..."))
                Tax.objects.all().delete()
                self.stdout.write(self.style.SUCCESS("All taxes cleared."))

            for sample in SAMPLE_TAXES:
                data = dict(sample)
                assignments = data.pop('assignments')
                rules = data.pop('rules')

                if Tax.objects.filter(name=data['name']).exists():
                    skipped_count += 1
                    self.stdout.write(self.style.WARNING(f"  Skipped (already exists): {data['name']}"))
                    continue

                tax = Tax.objects.create(**data)
                TaxAssignment.objects.bulk_create([
                    TaxAssignment(tax=tax, position=position, **assignment)
                    for position, assignment in enumerate(assignments)
                ])
                TaxRule.objects.bulk_create([
                    TaxRule(tax=tax, position=position, **rule)
                    for position, rule in enumerate(rules)
                ])
                created_count += 1
                self.stdout.write(self.style.SUCCESS(f"  Created: {tax.name}"))

        self.stdout.write(self.style.SUCCESS("=" * 60))
        self.stdout.write(f"Taxes Created: {created_count}")
        self.stdout.write(f"Taxes Skipped (already exist): {skipped_count}")
        self.stdout.write(f"Total Taxes in Database: {Tax.objects.count()}")
