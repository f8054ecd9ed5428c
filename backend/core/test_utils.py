"""
Test utilities and factories for creating test data
"""
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient
from rest_framework_simplejwt.tokens import RefreshToken
from backend.core.models import Company
from backend.core.tenancy import tenant_for_company
from backend.catalog.models import Item
from backend.parties.models import Customer, Supplier
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
        user = User.objects.create_user(
            username=username,
            email=email,
            password=password,
            is_staff=is_staff,
            is_superuser=is_superuser
        )
        return user

    @staticmethod
    def create_company(name=None, members=(), vat_rate=None, currency='ILS'):
        """Create a test company and add the given users as members"""
        if not name:
            name = f'Company_{TestDataFactory.random_string(6)}'
        company = Company.objects.create(name=name, vat_rate=vat_rate, currency=currency)
        for user in members:
            company.members.add(user)
        return company

    @staticmethod
    def tenant(company, user=None):
        """TenantContext for calling the engine directly"""
        return tenant_for_company(company, user=user)

    @staticmethod
    def create_customer(company, name=None, payment_terms_days=30):
        """Create a test customer"""
        if not name:
            name = f'Customer_{TestDataFactory.random_string(6)}'
        return Customer.objects.create(
            company=company,
            name=name,
            phone=f'05{random.randint(10000000, 99999999)}',
            email=f'{name.lower()}@test.com',
            payment_terms_days=payment_terms_days
        )

    @staticmethod
    def create_supplier(company, name=None, payment_terms_days=60):
        """Create a test supplier"""
        if not name:
            name = f'Supplier_{TestDataFactory.random_string(6)}'
        return Supplier.objects.create(
            company=company,
            name=name,
            email=f'{name.lower()}@test.com',
            payment_terms_days=payment_terms_days
        )

    @staticmethod
    def create_item(company, name=None, sku=None, sell_price=None, cost_price=None):
        """Create a test catalog item"""
        if not name:
            name = f'Item_{TestDataFactory.random_string(6)}'
        if not sku:
            sku = f'SKU_{TestDataFactory.random_string(8)}'
        return Item.objects.create(
            company=company,
            name=name,
            sku=sku,
            sell_price=sell_price if sell_price is not None else Decimal('100.00'),
            cost_price=cost_price if cost_price is not None else Decimal('60.00')
        )

    @staticmethod
    def line(item, quantity='1', unit_price=None, discount_percent='0', tax_rate='17'):
        """Engine line dict for ``item``"""
        return {
            'item_id': item.pk,
            'quantity': quantity,
            'unit_price': unit_price if unit_price is not None else item.sell_price,
            'discount_percent': discount_percent,
            'tax_rate': tax_rate,
        }


class AuthenticatedAPIClient(APIClient):
    """APIClient with authentication helper"""

    def authenticate_user(self, user, company=None):
        """Authenticate the client with a user, optionally acting for a company"""
        refresh = RefreshToken.for_user(user)
        headers = {'HTTP_AUTHORIZATION': f'Bearer {refresh.access_token}'}
        if company is not None:
            headers['HTTP_X_COMPANY_ID'] = str(company.pk)
        self.credentials(**headers)
        return self

    def logout(self):
        """Remove authentication"""
        self.credentials()
