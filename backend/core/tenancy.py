"""
Tenant resolution.

Every engine operation receives a ``TenantContext`` explicitly; nothing reads
the current company from a global. API views build one from the
``X-Company-Id`` header (or the ``companyId`` query parameter).
"""
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Optional

from django.conf import settings
from rest_framework.exceptions import ValidationError

from backend.sales.exceptions import NotFoundError

from .models import Company

COMPANY_HEADER = 'HTTP_X_COMPANY_ID'


@dataclass(frozen=True)
class TenantContext:
    company_id: int
    user: Optional[Any] = None
    request: Optional[Any] = None

    @property
    def company(self):
        cached = self.__dict__.get('_company')
        if cached is None:
            cached = Company.objects.get(pk=self.company_id)
            object.__setattr__(self, '_company', cached)
        return cached

    @property
    def vat_rate(self):
        rate = self.company.vat_rate
        if rate is None:
            rate = settings.SALES_DEFAULT_TAX_RATE
        return Decimal(str(rate))

    @property
    def currency(self):
        return self.company.currency or settings.SALES_DEFAULT_CURRENCY

    def audit_kwargs(self):
        """Keyword arguments shared by every create_audit_log call"""
        return {'request': self.request, 'user': self.user, 'company_id': self.company_id}


def tenant_for_company(company, user=None, request=None):
    context = TenantContext(company_id=company.pk, user=user, request=request)
    object.__setattr__(context, '_company', company)
    return context


def tenant_from_request(request):
    """
    Build the TenantContext for an API request.

    The company must exist, be active and list the requesting user as a
    member (superusers may act on any company).
    """
    raw = request.META.get(COMPANY_HEADER) or request.query_params.get('companyId')
    if not raw:
        raise ValidationError({'companyId': 'X-Company-Id header or companyId parameter is required'})
    try:
        company_id = int(raw)
    except (TypeError, ValueError):
        raise ValidationError({'companyId': f'Invalid company id: {raw}'})

    companies = Company.objects.filter(pk=company_id, is_active=True)
    user = request.user
    if not user.is_superuser:
        companies = companies.filter(members=user)
    company = companies.first()
    if company is None:
        raise NotFoundError(f"Company {company_id} not found", resource='Company', id=company_id)
    return tenant_for_company(company, user=user, request=request)
