"""
Test suite for Core module
Tests: audit log creation and audit log endpoints
"""
from django.test import TestCase, RequestFactory
from rest_framework import status
from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log, get_client_ip


class AuditLogUtilsTests(TestCase):
    """Test audit log helpers"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.factory = RequestFactory()

    def test_get_client_ip_prefers_forwarded_header(self):
        request = self.factory.get('/', HTTP_X_FORWARDED_FOR='10.0.0.1, 10.0.0.2', REMOTE_ADDR='127.0.0.1')
        self.assertEqual(get_client_ip(request), '10.0.0.1')

    def test_get_client_ip_without_request(self):
        self.assertIsNone(get_client_ip(None))

    def test_create_audit_log(self):
        request = self.factory.post('/', REMOTE_ADDR='192.168.1.5')
        request.user = self.user

        log = create_audit_log(
            request=request,
            action='create',
            model_name='Tax',
            object_id=5,
            object_name='VAT',
            changes={'name': 'VAT'}
        )

        self.assertIsNotNone(log)
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.object_id, '5')
        self.assertEqual(log.ip_address, '192.168.1.5')
        self.assertEqual(log.changes, {'name': 'VAT'})

    def test_action_choices_are_the_audited_writes(self):
        actions = [value for value, _ in AuditLog._meta.get_field('action').choices]
        self.assertEqual(actions, ['create', 'update', 'delete'])

    def test_create_audit_log_missing_fields_is_skipped(self):
        self.assertIsNone(create_audit_log(action='create', model_name='Tax'))
        self.assertEqual(AuditLog.objects.count(), 0)


class AuditLogAPITests(TestCase):
    """Test audit log endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.other_user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)
        self.own_log = create_audit_log(user=self.user, action='create', model_name='Tax', object_id=1)
        self.other_log = create_audit_log(user=self.other_user, action='delete', model_name='Tax', object_id=2)

    def test_list_only_own_logs(self):
        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([log['id'] for log in response.data['results']], [self.own_log.id])

    def test_staff_sees_all_logs_and_can_filter(self):
        staff = TestDataFactory.create_user(is_staff=True)
        self.client.authenticate_user(staff)

        response = self.client.get('/api/v1/audit-logs/')
        self.assertEqual(response.data['count'], 2)

        response = self.client.get('/api/v1/audit-logs/?action=delete')
        self.assertEqual([log['id'] for log in response.data['results']], [self.other_log.id])

    def test_list_is_paginated_and_filtered_by_date(self):
        for object_id in range(3, 6):
            create_audit_log(user=self.user, action='update', model_name='Tax', object_id=object_id)

        response = self.client.get('/api/v1/audit-logs/?limit=2')
        self.assertEqual(response.data['count'], 4)
        self.assertEqual(response.data['total_pages'], 2)
        self.assertEqual(len(response.data['results']), 2)
        self.assertEqual(response.data['next'], 2)

        response = self.client.get('/api/v1/audit-logs/?date_from=2000-01-01&date_to=2000-12-31')
        self.assertEqual(response.data['count'], 0)

        response = self.client.get('/api/v1/audit-logs/?object_id=4')
        self.assertEqual(response.data['count'], 1)

    def test_detail_permission(self):
        response = self.client.get(f'/api/v1/audit-logs/{self.own_log.id}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], self.user.username)

        response = self.client.get(f'/api/v1/audit-logs/{self.other_log.id}/')
        self.assertEqual(response.status_code, status.HTTP_403_FORBIDDEN)


class AuthAPITests(TestCase):
    """Test token endpoints"""

    def test_login_and_refresh(self):
        TestDataFactory.create_user(username='cashier', password='secret123')
        client = AuthenticatedAPIClient()

        response = client.post('/api/v1/auth/login/', {'username': 'cashier', 'password': 'secret123'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

        response = client.post('/api/v1/auth/refresh/', {'refresh': response.data['refresh']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)

    def test_login_with_bad_credentials(self):
        response = AuthenticatedAPIClient().post(
            '/api/v1/auth/login/', {'username': 'nobody', 'password': 'wrong'}, format='json'
        )
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)
