import logging
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated
from backend.core.tenancy import tenant_from_request
from .queries import customer_statement, group_by_month, list_documents, page_params
from .serializers import CustomerStatementParamsSerializer

logger = logging.getLogger('backend.reports')


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def sales_documents(request):
    """Paginated overview of sales documents across all types"""
    tenant = tenant_from_request(request)
    page, page_size = page_params(request.query_params)
    data = list_documents(tenant, request.query_params, page=page, page_size=page_size)
    logger.debug(f"Sales documents page {page} for company {tenant.company_id}: {data['count']} matches")
    return Response(data)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def sales_documents_monthly(request):
    """Sales documents grouped by month of document date, newest month first"""
    tenant = tenant_from_request(request)
    groups = group_by_month(tenant, request.query_params)
    logger.debug(f"Monthly overview for company {tenant.company_id}: {len(groups)} months")
    return Response({'results': groups, 'count': len(groups)})


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def customer_statement_report(request, customer_id):
    """Debits, credits and running balance of one customer between two dates"""
    tenant = tenant_from_request(request)
    params = CustomerStatementParamsSerializer(data=request.query_params.dict())
    params.is_valid(raise_exception=True)
    data = params.validated_data
    statement = customer_statement(
        tenant, customer_id, data['dateFrom'], data['dateTo'], include_zero=data['includeZero']
    )
    logger.debug(
        f"Statement for customer {customer_id} of company {tenant.company_id}: "
        f"{statement['summary']['totalTransactions']} transactions"
    )
    return Response(statement)
