from rest_framework import serializers, status
from rest_framework.decorators import api_view, permission_classes
from rest_framework.response import Response
from rest_framework.permissions import IsAuthenticated

from backend.catalog.utils import get_items
from backend.core.tenancy import tenant_from_request
from backend.reports.queries import list_documents, page_params

from . import conversion, documents, ledger
from .calculator import compute_document_totals, compute_line, round_money
from .exceptions import InvalidLineError
from .serializers import (
    ChainEntrySerializer, DocumentCreateSerializer, DocumentHeaderSerializer, PaymentRecordSerializer,
    SalesDocumentSerializer, line_inputs,
)


def _expected_version(request):
    value = request.data.get('version')
    if value is None or value == '':
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        raise serializers.ValidationError({'version': 'A valid integer is required.'})


def _optional_date(request, field):
    value = request.data.get(field)
    if value in (None, ''):
        return None
    try:
        return serializers.DateField().to_internal_value(value)
    except serializers.ValidationError as e:
        raise serializers.ValidationError({field: e.detail})


def _document_response(document, status_code=status.HTTP_200_OK):
    return Response(SalesDocumentSerializer(document).data, status=status_code)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def document_list_create(request):
    """List sales documents or create a new document"""
    tenant = tenant_from_request(request)
    if request.method == 'GET':
        page, page_size = page_params(request.query_params)
        return Response(list_documents(tenant, request.query_params, page=page, page_size=page_size))

    serializer = DocumentCreateSerializer(data=request.data)
    serializer.is_valid(raise_exception=True)
    data = serializer.validated_data
    party_id = data.get('supplierId') if data['type'] == 'PurchaseInvoice' else data.get('customerId')
    document = documents.create_document(
        tenant,
        data['type'],
        party_id,
        lines=line_inputs(data.get('lines')),
        document_date=data.get('documentDate'),
        due_date=data.get('dueDate'),
        currency=data.get('currency') or None,
        notes=data.get('notes') or '',
        payment_method=data.get('paymentMethod'),
        reference_number=data.get('referenceNumber') or '',
    )
    return _document_response(documents.get_document(tenant, document.pk), status.HTTP_201_CREATED)


@api_view(['GET', 'PATCH', 'DELETE'])
@permission_classes([IsAuthenticated])
def document_detail(request, pk):
    """Retrieve a document, update its header, or delete a draft"""
    tenant = tenant_from_request(request)
    if request.method == 'GET':
        return _document_response(documents.get_document(tenant, pk))
    elif request.method == 'PATCH':
        serializer = DocumentHeaderSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)
        document = documents.update_header(
            tenant, pk, serializer.changes(request.data),
            expected_version=serializer.validated_data.get('version'),
        )
        return _document_response(document)
    else:  # DELETE
        documents.delete_document(tenant, pk)
        return Response(status=status.HTTP_204_NO_CONTENT)


@api_view(['PUT'])
@permission_classes([IsAuthenticated])
def document_lines(request, pk):
    """Replace all lines of an editable document"""
    tenant = tenant_from_request(request)
    if 'lines' not in request.data:
        raise InvalidLineError("lines is required", field='lines')
    document = documents.update_lines(
        tenant, pk, line_inputs(request.data.get('lines')), expected_version=_expected_version(request)
    )
    return _document_response(document)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def document_status(request, pk):
    """Move a document to another status"""
    tenant = tenant_from_request(request)
    to_status = request.data.get('status')
    if not to_status:
        raise serializers.ValidationError({'status': 'This field is required.'})
    document = documents.set_status(tenant, pk, to_status, expected_version=_expected_version(request))
    return _document_response(document)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def document_convert(request, pk):
    """Convert a document into another type"""
    tenant = tenant_from_request(request)
    target_type = request.data.get('targetType')
    if not target_type:
        raise serializers.ValidationError({'targetType': 'This field is required.'})
    document = conversion.convert(
        tenant, pk, target_type,
        document_date=_optional_date(request, 'documentDate'),
        notes=request.data.get('notes'),
    )
    return _document_response(documents.get_document(tenant, document.pk), status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def document_duplicate(request, pk):
    """Copy a document into a new unrelated draft"""
    tenant = tenant_from_request(request)
    document = documents.duplicate_document(tenant, pk, document_date=_optional_date(request, 'documentDate'))
    return _document_response(documents.get_document(tenant, document.pk), status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def document_cancel(request, pk):
    """Cancel a document"""
    tenant = tenant_from_request(request)
    document = documents.cancel_document(tenant, pk, expected_version=_expected_version(request))
    return _document_response(document)


@api_view(['GET', 'POST'])
@permission_classes([IsAuthenticated])
def document_payments(request, pk):
    """List the payments of a document or record a new payment"""
    tenant = tenant_from_request(request)
    if request.method == 'GET':
        payments = ledger.list_payments(tenant, pk)
        return Response(PaymentRecordSerializer(payments, many=True).data)

    payment = ledger.record_payment(
        tenant, pk,
        amount=request.data.get('amount'),
        method=request.data.get('method'),
        date=_optional_date(request, 'date'),
        reference_number=request.data.get('referenceNumber') or '',
        notes=request.data.get('notes') or '',
    )
    document = documents.get_document(tenant, pk)
    return Response({
        'payment': PaymentRecordSerializer(payment).data,
        'document': SalesDocumentSerializer(document).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def payment_reverse(request, pk):
    """Reverse a payment with a compensating record"""
    tenant = tenant_from_request(request)
    reversal = ledger.reverse_payment(tenant, pk, notes=request.data.get('notes') or '')
    document = documents.get_document(tenant, reversal.document_id)
    return Response({
        'payment': PaymentRecordSerializer(reversal).data,
        'document': SalesDocumentSerializer(document).data,
    }, status=status.HTTP_201_CREATED)


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def document_receipt(request, pk):
    """Generate a receipt for the unreceipted payments of an invoice"""
    tenant = tenant_from_request(request)
    receipt = ledger.generate_receipt(tenant, pk, date=_optional_date(request, 'date'))
    return _document_response(documents.get_document(tenant, receipt.pk), status.HTTP_201_CREATED)


@api_view(['GET'])
@permission_classes([IsAuthenticated])
def document_chain(request, pk):
    """Provenance of a document (oldest ancestor first) and the documents derived from it"""
    tenant = tenant_from_request(request)
    chain = documents.provenance_chain(tenant, pk)
    derived = documents.derived_documents(tenant, pk)
    return Response({
        'chain': ChainEntrySerializer(chain, many=True).data,
        'derived': ChainEntrySerializer(derived, many=True).data,
    })


@api_view(['POST'])
@permission_classes([IsAuthenticated])
def documents_calculate(request):
    """
    Preview line and document totals without saving anything. Lines get the
    same defaults a saved document applies: catalog price for lines with an
    item, the company VAT rate when no tax rate is given.
    """
    tenant = tenant_from_request(request)
    raw_lines = line_inputs(request.data.get('lines'))
    documents.check_raw_lines(raw_lines)
    item_ids = [line.get('item_id') for line in raw_lines if line.get('item_id') not in (None, '')]
    items = get_items(tenant, item_ids)
    raw_lines = [documents.line_defaults(tenant, line, items.get(line.get('item_id'))) for line in raw_lines]
    results = []
    for index, line in enumerate(raw_lines, start=1):
        try:
            amounts = compute_line(
                line.get('quantity'), line.get('unit_price'),
                line.get('discount_percent'), line.get('tax_rate'),
            )
        except InvalidLineError as e:
            e.details['lineNumber'] = index
            raise
        results.append({
            'lineNumber': index,
            'discountAmount': str(round_money(amounts.discount_amount)),
            'lineSubtotal': str(round_money(amounts.line_subtotal)),
            'lineTax': str(round_money(amounts.line_tax)),
            'lineTotal': str(round_money(amounts.line_total)),
        })
    totals = compute_document_totals(raw_lines)
    return Response({
        'lines': results,
        'subTotal': str(totals.sub_total),
        'discountAmount': str(totals.discount_amount),
        'vatAmount': str(totals.vat_amount),
        'totalAmount': str(totals.total_amount),
    })
