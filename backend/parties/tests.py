"""
Test suite for the Parties module
Tests: customer and supplier endpoints, tenant scoping and engine lookups
"""
from django.test import TestCase
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.parties.models import Customer
from backend.parties.utils import get_customer, get_supplier
from backend.sales import documents
from backend.sales.choices import DocumentType
from backend.sales.exceptions import InvalidDocumentError, NotFoundError


class CustomerAPITests(TestCase):
    """Test customer endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user, self.company)

    def test_create_customer(self):
        """Test creating a customer with payment terms"""
        response = self.client.post('/api/v1/customers/', {
            'name': 'Acme Ltd',
            'taxId': '514000000',
            'paymentTermsDays': 45,
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['paymentTermsDays'], 45)
        customer = Customer.objects.get(pk=response.data['id'])
        self.assertEqual(customer.company, self.company)
        self.assertTrue(AuditLog.objects.filter(model_name='Customer', action='create').exists())

    def test_negative_payment_terms(self):
        """Test payment terms validation"""
        response = self.client.post('/api/v1/customers/', {'name': 'Acme', 'paymentTermsDays': -1}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_list_is_company_scoped(self):
        """Test that customers of other companies are hidden"""
        TestDataFactory.create_customer(self.company, name='Mine')
        TestDataFactory.create_customer(TestDataFactory.create_company(), name='Theirs')
        response = self.client.get('/api/v1/customers/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual([row['name'] for row in response.data], ['Mine'])

    def test_search(self):
        """Test customer search"""
        TestDataFactory.create_customer(self.company, name='Alpha')
        TestDataFactory.create_customer(self.company, name='Beta')
        response = self.client.get('/api/v1/customers/?search=alp')
        self.assertEqual([row['name'] for row in response.data], ['Alpha'])

    def test_update_customer(self):
        """Test patching a customer"""
        customer = TestDataFactory.create_customer(self.company)
        response = self.client.patch(f'/api/v1/customers/{customer.pk}/', {'isActive': False}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        customer.refresh_from_db()
        self.assertFalse(customer.is_active)

    def test_other_company_customer_not_found(self):
        """Test that another company's customer cannot be read"""
        customer = TestDataFactory.create_customer(TestDataFactory.create_company())
        response = self.client.get(f'/api/v1/customers/{customer.pk}/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)

    def test_delete_unused_customer(self):
        """Test deleting a customer without documents"""
        customer = TestDataFactory.create_customer(self.company)
        response = self.client.delete(f'/api/v1/customers/{customer.pk}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)
        self.assertFalse(Customer.objects.filter(pk=customer.pk).exists())

    def test_delete_customer_with_documents(self):
        """Test that customers on documents are kept"""
        customer = TestDataFactory.create_customer(self.company)
        item = TestDataFactory.create_item(self.company)
        documents.create_document(
            TestDataFactory.tenant(self.company, self.user), DocumentType.QUOTE, customer.pk,
            lines=[TestDataFactory.line(item)],
        )
        response = self.client.delete(f'/api/v1/customers/{customer.pk}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'InUse')
        self.assertTrue(Customer.objects.filter(pk=customer.pk).exists())


class SupplierAPITests(TestCase):
    """Test supplier endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user, self.company)

    def test_create_and_list_supplier(self):
        """Test creating and listing suppliers"""
        response = self.client.post('/api/v1/suppliers/', {
            'name': 'Parts Co',
            'code': 'P-01',
            'contactPerson': 'Dana',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        response = self.client.get('/api/v1/suppliers/?search=P-01')
        self.assertEqual(len(response.data), 1)
        self.assertEqual(response.data[0]['contactPerson'], 'Dana')

    def test_requires_company(self):
        """Test that the company header is required"""
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/suppliers/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)


class PartyLookupTests(TestCase):
    """Test the party lookups used when creating documents"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.tenant = TestDataFactory.tenant(self.company)

    def test_get_customer(self):
        """Test a valid lookup"""
        customer = TestDataFactory.create_customer(self.company)
        self.assertEqual(get_customer(self.tenant, customer.pk), customer)

    def test_unknown_or_foreign_customer(self):
        """Test that ids outside the company are not found"""
        foreign = TestDataFactory.create_customer(TestDataFactory.create_company())
        for customer_id in (999999, foreign.pk, 'abc'):
            with self.subTest(customer_id=customer_id):
                with self.assertRaises(NotFoundError) as ctx:
                    get_customer(self.tenant, customer_id)
                self.assertEqual(ctx.exception.details['resource'], 'Customer')
        with self.assertRaises(NotFoundError):
            get_supplier(self.tenant, 999999)

    def test_missing_customer(self):
        """Test that an absent customer id is a document error"""
        for customer_id in (None, ''):
            with self.subTest(customer_id=customer_id):
                with self.assertRaises(InvalidDocumentError):
                    get_customer(self.tenant, customer_id)

    def test_inactive_parties(self):
        """Test that inactive parties cannot be put on new documents"""
        customer = TestDataFactory.create_customer(self.company)
        customer.is_active = False
        customer.save()
        supplier = TestDataFactory.create_supplier(self.company)
        supplier.is_active = False
        supplier.save()
        with self.assertRaises(InvalidDocumentError):
            get_customer(self.tenant, customer.pk)
        with self.assertRaises(InvalidDocumentError):
            get_supplier(self.tenant, supplier.pk)
