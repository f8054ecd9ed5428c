"""
Test suite for the Core module
Tests: authentication, tenant resolution, companies, audit logs and error mapping
"""
from decimal import Decimal

from django.test import RequestFactory, TestCase, override_settings
from rest_framework import status
from rest_framework.exceptions import ValidationError
from rest_framework.request import Request

from backend.core.exceptions import api_exception_handler
from backend.core.models import AuditLog
from backend.core.tenancy import tenant_for_company, tenant_from_request
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.core.utils import create_audit_log
from backend.sales.exceptions import NotFoundError, OverpaymentError


class AuthTests(TestCase):
    """Test login and the current user endpoint"""

    def setUp(self):
        self.user = TestDataFactory.create_user(username='clerk', password='s3cret-pass')
        self.company = TestDataFactory.create_company(name='Acme', members=[self.user])

    def test_login(self):
        """Test obtaining a token pair"""
        client = AuthenticatedAPIClient()
        response = client.post('/api/v1/auth/login/', {'username': 'clerk', 'password': 's3cret-pass'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertIn('access', response.data)
        self.assertIn('refresh', response.data)

    def test_login_wrong_password(self):
        """Test that bad credentials are refused"""
        client = AuthenticatedAPIClient()
        response = client.post('/api/v1/auth/login/', {'username': 'clerk', 'password': 'nope'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_me_lists_companies(self):
        """Test that the current user sees their companies"""
        TestDataFactory.create_company(name='Not mine')
        client = AuthenticatedAPIClient().authenticate_user(self.user)
        response = client.get('/api/v1/auth/me/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['username'], 'clerk')
        self.assertEqual([company['name'] for company in response.data['companies']], ['Acme'])


class TenancyTests(TestCase):
    """Test TenantContext resolution"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.factory = RequestFactory()

    def request(self, user, **extra):
        request = Request(self.factory.get('/', **extra))
        request.user = user
        return request

    def test_from_header(self):
        """Test the X-Company-Id header"""
        tenant = tenant_from_request(self.request(self.user, HTTP_X_COMPANY_ID=str(self.company.pk)))
        self.assertEqual(tenant.company_id, self.company.pk)
        self.assertEqual(tenant.user, self.user)

    def test_from_query_parameter(self):
        """Test the companyId query parameter"""
        request = Request(self.factory.get('/', {'companyId': self.company.pk}))
        request.user = self.user
        self.assertEqual(tenant_from_request(request).company_id, self.company.pk)

    def test_missing_or_malformed(self):
        """Test that a company id is required"""
        with self.assertRaises(ValidationError):
            tenant_from_request(self.request(self.user))
        with self.assertRaises(ValidationError):
            tenant_from_request(self.request(self.user, HTTP_X_COMPANY_ID='abc'))

    def test_non_member(self):
        """Test that outsiders get NotFound"""
        outsider = TestDataFactory.create_user()
        with self.assertRaises(NotFoundError):
            tenant_from_request(self.request(outsider, HTTP_X_COMPANY_ID=str(self.company.pk)))

    def test_superuser_may_act_anywhere(self):
        """Test superuser access"""
        admin = TestDataFactory.create_user(is_staff=True, is_superuser=True)
        tenant = tenant_from_request(self.request(admin, HTTP_X_COMPANY_ID=str(self.company.pk)))
        self.assertEqual(tenant.company_id, self.company.pk)

    def test_inactive_company(self):
        """Test that inactive companies cannot be used"""
        self.company.is_active = False
        self.company.save()
        with self.assertRaises(NotFoundError):
            tenant_from_request(self.request(self.user, HTTP_X_COMPANY_ID=str(self.company.pk)))

    @override_settings(SALES_DEFAULT_TAX_RATE=Decimal('16.00'))
    def test_vat_rate_fallback(self):
        """Test the default VAT rate and a company override"""
        self.assertEqual(tenant_for_company(self.company).vat_rate, Decimal('16.00'))
        self.company.vat_rate = Decimal('18.00')
        self.assertEqual(tenant_for_company(self.company).vat_rate, Decimal('18.00'))


class CompanyAPITests(TestCase):
    """Test company endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user)

    def test_create_company_adds_member(self):
        """Test that the creator becomes a member"""
        response = self.client.post('/api/v1/companies/', {'name': 'New Co', 'vatRate': '17.00'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.get('/api/v1/companies/')
        self.assertEqual([company['name'] for company in response.data], ['New Co'])

    def test_invalid_vat_rate(self):
        """Test VAT rate bounds"""
        response = self.client.post('/api/v1/companies/', {'name': 'Bad', 'vatRate': '120'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_other_company_not_found(self):
        """Test that foreign companies are hidden"""
        company = TestDataFactory.create_company()
        response = self.client.get(f'/api/v1/companies/{company.pk}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class AuditLogTests(TestCase):
    """Test audit logging"""

    def setUp(self):
        self.user = TestDataFactory.create_user(is_staff=True)
        self.company = TestDataFactory.create_company(members=[self.user])

    def test_create_audit_log(self):
        """Test writing an entry"""
        log = create_audit_log(
            action='update', model_name='SalesDocument', object_id='abc',
            object_reference='INV-2025-0001', user=self.user, company_id=self.company.pk,
        )
        self.assertIsNotNone(log)
        self.assertEqual(log.user, self.user)
        self.assertEqual(log.changes, {})

    def test_missing_fields_are_skipped(self):
        """Test that incomplete entries are not written"""
        self.assertIsNone(create_audit_log(action='update', model_name='SalesDocument'))
        self.assertFalse(AuditLog.objects.exists())

    def test_list_is_company_scoped(self):
        """Test the audit log endpoint"""
        create_audit_log(action='create', model_name='Customer', object_id=1, user=self.user, company_id=self.company.pk)
        other = TestDataFactory.create_company()
        create_audit_log(action='create', model_name='Customer', object_id=2, user=self.user, company_id=other.pk)
        client = AuthenticatedAPIClient().authenticate_user(self.user, self.company)
        response = client.get('/api/v1/audit-logs/?model=Customer')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['object_id'], '1')


class ExceptionHandlerTests(TestCase):
    """Test the mapping of engine errors to responses"""

    def test_engine_error(self):
        """Test status code and body of an engine error"""
        error = OverpaymentError("too much", amount=Decimal('300.00'), remainingAmount=Decimal('200.00'))
        response = api_exception_handler(error, {})
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data, {
            'error': 'Overpayment',
            'detail': 'too much',
            'amount': '300.00',
            'remainingAmount': '200.00',
        })

    def test_other_errors_fall_through(self):
        """Test that DRF errors keep the default handling"""
        response = api_exception_handler(ValidationError({'field': 'bad'}), {})
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_unhandled_errors(self):
        """Test that unknown exceptions are left to Django"""
        self.assertIsNone(api_exception_handler(ValueError('boom'), {}))
