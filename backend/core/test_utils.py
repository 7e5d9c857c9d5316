"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.taxes.models import Tax, TaxAssignment, TaxRule
from decimal import Decimal
import random
import string

User = get_user_model()


class TestDataFactory:
    """Factory class for creating test data"""

    @staticmethod
    def random_string(length=10):
        """Generate a random string"""
        return ''.join(random.choices(string.ascii_letters + string.digits, k=length))

    @staticmethod
    def create_user(username=None, email=None, password='testpass123', is_staff=False, is_superuser=False):
        """Create a test user"""
        if not username:
            username = f'testuser_{TestDataFactory.random_string(6)}'
        if not email:
            email = f'{username}@test.com'
        return User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser
        )

    @staticmethod
    def create_tax(name=None, rate=None, type='percentage', status='active', description='',
                   product_type='', rules=None, assignments=None):
        """
        Create a test tax with optional rules and assignments

        rules: list of dicts with condition_field, operator, value and value_type
        assignments: list of dicts with target_type, target_id and target_name
        """
        if not name:
            name = f'Tax_{TestDataFactory.random_string(6)}'
        if rate is None:
            rate = Decimal('10.00')
        tax = Tax.objects.create(
            name=name,
            rate=rate,
            type=type,
            status=status,
            description=description,
            product_type=product_type
        )
        for rule in rules or []:
            TestDataFactory.create_tax_rule(tax, **rule)
        for assignment in assignments or []:
            TestDataFactory.create_tax_assignment(tax, **assignment)
        return tax

    @staticmethod
    def create_tax_rule(tax, condition_field='region', operator='==', value='US', value_type='string'):
        """Create a test tax rule, appended after the tax's existing rules"""
        return TaxRule.objects.create(
            tax=tax,
            condition_field=condition_field,
            operator=operator,
            value=value,
            value_type=value_type,
            position=tax.rules.count()
        )

    @staticmethod
    def create_tax_assignment(tax, target_type='product', target_id=None, target_name=None):
        """Create a test tax assignment, appended after the tax's existing assignments"""
        if not target_id:
            target_id = TestDataFactory.random_string(8)
        return TaxAssignment.objects.create(
            tax=tax,
            target_type=target_type,
            target_id=target_id,
            target_name=target_name or f'{target_type.title()} {target_id}',
            position=tax.assignments.count()
        )


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user):
        """Authenticate the client with a user"""
        refresh = RefreshToken.for_user(user)
        self.credentials(HTTP_AUTHORIZATION=f'Bearer {refresh.access_token}')
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
