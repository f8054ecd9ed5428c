"""
Test suite for the Catalog module
Tests: item endpoints, SKU uniqueness, filters and engine lookups
"""
from decimal import Decimal

from django.test import TestCase
from rest_framework import status

from backend.catalog.models import Item
from backend.catalog.utils import get_items
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.sales import documents
from backend.sales.choices import DocumentType
from backend.sales.exceptions import InvalidLineError, NotFoundError


class ItemAPITests(TestCase):
    """Test item endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user, self.company)

    def test_create_item(self):
        """Test creating an item"""
        response = self.client.post('/api/v1/items/', {
            'sku': 'WID-1',
            'name': 'Widget',
            'unit': 'box',
            'sellPrice': '12.50',
            'costPrice': '7.25',
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        item = Item.objects.get(pk=response.data['id'])
        self.assertEqual(item.company, self.company)
        self.assertEqual(item.sell_price, Decimal('12.50'))

    def test_duplicate_sku(self):
        """Test that SKUs are unique per company"""
        TestDataFactory.create_item(self.company, sku='WID-1')
        response = self.client.post('/api/v1/items/', {'sku': 'WID-1', 'name': 'Again'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertIn('sku', response.data)

    def test_same_sku_in_other_company(self):
        """Test that another company may reuse a SKU"""
        TestDataFactory.create_item(TestDataFactory.create_company(), sku='WID-1')
        response = self.client.post('/api/v1/items/', {'sku': 'WID-1', 'name': 'Widget'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)

    def test_negative_price(self):
        """Test price validation"""
        response = self.client.post('/api/v1/items/', {'sku': 'X', 'name': 'X', 'sellPrice': '-1'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_filters(self):
        """Test search and active filters"""
        TestDataFactory.create_item(self.company, name='Blue Widget', sku='BW')
        inactive = TestDataFactory.create_item(self.company, name='Red Widget', sku='RW')
        inactive.is_active = False
        inactive.save()
        TestDataFactory.create_item(self.company, name='Gadget', sku='GD')

        response = self.client.get('/api/v1/items/?search=widget')
        self.assertEqual({row['sku'] for row in response.data}, {'BW', 'RW'})
        response = self.client.get('/api/v1/items/?search=widget&active=true')
        self.assertEqual([row['sku'] for row in response.data], ['BW'])

    def test_delete_item_on_document(self):
        """Test that items used on documents are deactivated instead of deleted"""
        item = TestDataFactory.create_item(self.company)
        customer = TestDataFactory.create_customer(self.company)
        documents.create_document(
            TestDataFactory.tenant(self.company, self.user), DocumentType.QUOTE, customer.pk,
            lines=[TestDataFactory.line(item)],
        )
        response = self.client.delete(f'/api/v1/items/{item.pk}/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertFalse(response.data['isActive'])
        item.refresh_from_db()
        self.assertFalse(item.is_active)

    def test_delete_unused_item(self):
        """Test deleting an unused item"""
        item = TestDataFactory.create_item(self.company)
        response = self.client.delete(f'/api/v1/items/{item.pk}/')
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)


class ItemLookupTests(TestCase):
    """Test item lookups used when building document lines"""

    def setUp(self):
        self.company = TestDataFactory.create_company()
        self.tenant = TestDataFactory.tenant(self.company)

    def test_get_items(self):
        """Test fetching several items, repeated ids included"""
        first = TestDataFactory.create_item(self.company)
        second = TestDataFactory.create_item(self.company)
        items = get_items(self.tenant, [first.pk, second.pk, first.pk])
        self.assertEqual(items[first.pk], first)
        self.assertEqual(items[second.pk], second)

    def test_unknown_items(self):
        """Test unknown and foreign item ids"""
        foreign = TestDataFactory.create_item(TestDataFactory.create_company())
        for item_id in (999999, foreign.pk, 'abc'):
            with self.subTest(item_id=item_id):
                with self.assertRaises(NotFoundError) as ctx:
                    get_items(self.tenant, [item_id])
                self.assertEqual(ctx.exception.details['resource'], 'Item')

    def test_missing_item_id(self):
        """Test that a line without an item is a line error"""
        for item_id in (None, ''):
            with self.subTest(item_id=item_id):
                with self.assertRaises(InvalidLineError):
                    get_items(self.tenant, [item_id])
