import logging

from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import ProtectedError, Q
from django.shortcuts import get_object_or_404

from backend.core.tenancy import tenant_from_request
from backend.core.utils import create_audit_log
from .models import Customer, Supplier
from .serializers import CustomerSerializer, SupplierSerializer

logger = logging.getLogger('backend.parties')


def _delete_party(request, tenant, party, model_name):
    try:
        party.delete()
    except ProtectedError:
        return Response(
            {'error': 'InUse', 'detail': f'{model_name} {party.name} is referenced by documents'},
            status=status.HTTP_409_CONFLICT
        )
    create_audit_log(
        action='delete', model_name=model_name, object_id=party.pk if party.pk else '-',
        object_name=party.name, **tenant.audit_kwargs()
    )
    return Response(status=status.HTTP_204_NO_CONTENT)


# Customer views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def customer_list_create(request):
    """List the company's customers or create a new customer"""
    tenant = tenant_from_request(request)
    if request.method == 'GET':
        queryset = Customer.objects.filter(company_id=tenant.company_id)
        search = request.query_params.get('search', None)
        if search:
            queryset = queryset.filter(Q(name__icontains=search) | Q(phone__icontains=search) | Q(email__icontains=search))
        if request.query_params.get('active') == 'true':
            queryset = queryset.filter(is_active=True)
        serializer = CustomerSerializer(queryset, many=True)
        return Response(serializer.data)
    else:
        serializer = CustomerSerializer(data=request.data)
        if serializer.is_valid():
            customer = serializer.save(company_id=tenant.company_id)
            create_audit_log(
                action='create', model_name='Customer', object_id=customer.pk,
                object_name=customer.name, **tenant.audit_kwargs()
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def customer_detail(request, pk):
    """Retrieve, update or delete a customer"""
    tenant = tenant_from_request(request)
    customer = get_object_or_404(Customer, pk=pk, company_id=tenant.company_id)

    if request.method == 'GET':
        serializer = CustomerSerializer(customer)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = CustomerSerializer(customer, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            create_audit_log(
                action='update', model_name='Customer', object_id=customer.pk,
                object_name=customer.name, changes=dict(request.data), **tenant.audit_kwargs()
            )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        return _delete_party(request, tenant, customer, 'Customer')


# Supplier views
@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def supplier_list_create(request):
    """List the company's suppliers or create a new supplier"""
    tenant = tenant_from_request(request)
    if request.method == 'GET':
        queryset = Supplier.objects.filter(company_id=tenant.company_id)
        search = request.query_params.get('search', None)
        if search:
            queryset = queryset.filter(
                Q(name__icontains=search) |
                Q(phone__icontains=search) |
                Q(code__icontains=search) |
                Q(email__icontains=search)
            )
        serializer = SupplierSerializer(queryset, many=True)
        return Response(serializer.data)
    else:
        serializer = SupplierSerializer(data=request.data)
        if serializer.is_valid():
            supplier = serializer.save(company_id=tenant.company_id)
            create_audit_log(
                action='create', model_name='Supplier', object_id=supplier.pk,
                object_name=supplier.name, **tenant.audit_kwargs()
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def supplier_detail(request, pk):
    """Retrieve, update or delete a supplier"""
    tenant = tenant_from_request(request)
    supplier = get_object_or_404(Supplier, pk=pk, company_id=tenant.company_id)

    if request.method == 'GET':
        serializer = SupplierSerializer(supplier)
        return Response(serializer.data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = SupplierSerializer(supplier, data=request.data, partial=request.method == 'PATCH')
        if serializer.is_valid():
            serializer.save()
            create_audit_log(
                action='update', model_name='Supplier', object_id=supplier.pk,
                object_name=supplier.name, changes=dict(request.data), **tenant.audit_kwargs()
            )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        return _delete_party(request, tenant, supplier, 'Supplier')
