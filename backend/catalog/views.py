from rest_framework import status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from django.db.models import ProtectedError
from django.shortcuts import get_object_or_404

from backend.core.tenancy import tenant_from_request
from backend.core.utils import create_audit_log
from .filters import ItemFilter
from .models import Item
from .serializers import ItemSerializer


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def item_list_create(request):
    """List the company's items or create a new item"""
    tenant = tenant_from_request(request)
    context = {'company_id': tenant.company_id}
    if request.method == 'GET':
        queryset = Item.objects.filter(company_id=tenant.company_id)
        filterset = ItemFilter(request.query_params, queryset=queryset)
        serializer = ItemSerializer(filterset.qs, many=True, context=context)
        return Response(serializer.data)
    else:
        serializer = ItemSerializer(data=request.data, context=context)
        if serializer.is_valid():
            item = serializer.save(company_id=tenant.company_id)
            create_audit_log(
                action='create', model_name='Item', object_id=item.pk,
                object_name=item.name, object_reference=item.sku, **tenant.audit_kwargs()
            )
            return Response(serializer.data, status=status.HTTP_201_CREATED)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)


@api_view(['GET', 'PUT', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def item_detail(request, pk):
    """Retrieve, update or delete an item"""
    tenant = tenant_from_request(request)
    item = get_object_or_404(Item, pk=pk, company_id=tenant.company_id)
    context = {'company_id': tenant.company_id}

    if request.method == 'GET':
        return Response(ItemSerializer(item, context=context).data)
    elif request.method in ('PUT', 'PATCH'):
        serializer = ItemSerializer(item, data=request.data, partial=request.method == 'PATCH', context=context)
        if serializer.is_valid():
            serializer.save()
            create_audit_log(
                action='update', model_name='Item', object_id=item.pk, object_name=item.name,
                object_reference=item.sku, changes=dict(request.data), **tenant.audit_kwargs()
            )
            return Response(serializer.data)
        return Response(serializer.errors, status=status.HTTP_400_BAD_REQUEST)
    else:  # DELETE
        try:
            item.delete()
        except ProtectedError:
            # Items on documents are deactivated instead
            item.is_active = False
            item.save(update_fields=['is_active', 'updated_at'])
            return Response(ItemSerializer(item, context=context).data)
        return Response(status=status.HTTP_204_NO_CONTENT)
