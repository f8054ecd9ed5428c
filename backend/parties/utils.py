"""Tenant-scoped party lookups used by the document engine"""
from backend.sales.exceptions import InvalidDocumentError, NotFoundError

from .models import Customer, Supplier


def _as_pk(party_id):
    if isinstance(party_id, bool):
        return None
    try:
        return int(party_id)
    except (TypeError, ValueError):
        return None


def _get_party(model, tenant, party_id, field):
    label = model.__name__
    if party_id is None or party_id == '':
        raise InvalidDocumentError(f"{label} is required", field=field)
    pk = _as_pk(party_id)
    party = model.objects.filter(company_id=tenant.company_id, pk=pk).first() if pk is not None else None
    if party is None:
        raise NotFoundError(f"{label} {party_id} not found", resource=label, id=party_id)
    if not party.is_active:
        raise InvalidDocumentError(f"{label} {party.name} is inactive", field=field, value=party_id)
    return party


def get_customer(tenant, customer_id):
    return _get_party(Customer, tenant, customer_id, 'customerId')


def get_supplier(tenant, supplier_id):
    return _get_party(Supplier, tenant, supplier_id, 'supplierId')
