"""
Read-only document overview: filtered, paginated summaries and the monthly
grouping behind the "Sales Documents" screen.
"""
from decimal import Decimal
from itertools import groupby

import django_filters
from django.conf import settings
from django.core.paginator import Paginator
from django.db.models import DecimalField, Q, Sum, Value
from django.db.models.functions import Coalesce, TruncMonth
from rest_framework.exceptions import ValidationError

from backend.parties.models import Customer
from backend.sales import state_machine
from backend.sales.calculator import round_money
from backend.sales.choices import DocumentStatus, DocumentType
from backend.sales.exceptions import NotFoundError
from backend.sales.models import PaymentRecord, SalesDocument

ZERO = Decimal('0.00')


class SalesDocumentFilter(django_filters.FilterSet):
    """Overview filters; all given filters must match"""

    dateFrom = django_filters.DateFilter(field_name='document_date', lookup_expr='gte')
    dateTo = django_filters.DateFilter(field_name='document_date', lookup_expr='lte')
    type = django_filters.MultipleChoiceFilter(field_name='document_type', choices=DocumentType.choices)
    status = django_filters.MultipleChoiceFilter(field_name='status', choices=DocumentStatus.choices)
    customer = django_filters.NumberFilter(field_name='customer_id')
    search = django_filters.CharFilter(method='filter_search', label='Search')

    class Meta:
        model = SalesDocument
        fields = ['dateFrom', 'dateTo', 'type', 'status', 'customer', 'search']

    def filter_search(self, queryset, name, value):
        """Match the document number or the customer name"""
        value = (value or '').strip()
        if not value:
            return queryset
        return queryset.filter(Q(number__icontains=value) | Q(customer__name__icontains=value))


def _filter_data(filters):
    if filters is None:
        return {}
    if hasattr(filters, 'getlist'):
        return filters
    data = dict(filters)
    for key in ('type', 'status'):
        if isinstance(data.get(key), str):
            data[key] = [data[key]]
    return data


def _filtered_queryset(tenant, filters):
    filters = _filter_data(filters)
    queryset = (
        SalesDocument.objects.filter(company_id=tenant.company_id)
        .select_related('customer')
        .annotate(
            unreceipted=Coalesce(
                Sum(
                    'payments__amount',
                    filter=Q(payments__receipt__isnull=True, payments__reversed_by__isnull=True, payments__amount__gt=0),
                ),
                Value(ZERO),
                output_field=DecimalField(max_digits=18, decimal_places=2),
            )
        )
    )
    filterset = SalesDocumentFilter(filters, queryset=queryset)
    if not filterset.is_valid():
        raise ValidationError(filterset.errors)
    queryset = filterset.qs
    if not filterset.form.cleaned_data.get('type'):
        # Purchase invoices are supplier documents; they only show when asked for
        queryset = queryset.exclude(document_type=DocumentType.PURCHASE_INVOICE)
    return queryset.order_by('-document_date', '-created_at')


def document_summary(document):
    """Flat overview row with the guard flags the UI uses to enable actions"""
    unreceipted = getattr(document, 'unreceipted', None)
    if unreceipted is None:
        unreceipted = document.unreceipted_amount()
    customer = document.customer
    return {
        'id': str(document.pk),
        'type': document.document_type,
        'number': document.number,
        'documentDate': document.document_date.isoformat(),
        'dueDate': document.due_date.isoformat() if document.due_date else None,
        'customerId': document.customer_id,
        'customerName': customer.name if customer else None,
        'status': document.status,
        'currency': document.currency,
        'subTotal': str(document.sub_total),
        'vatAmount': str(document.vat_amount),
        'totalAmount': str(document.total_amount),
        'paidAmount': str(document.paid_amount),
        'remainingAmount': str(document.remaining_amount),
        'sourceDocumentId': str(document.source_document_id) if document.source_document_id else None,
        'canEdit': state_machine.can_edit(document),
        'canCancel': state_machine.can_cancel(document),
        'canConvert': state_machine.can_convert(document, unreceipted_amount=unreceipted),
        'canGenerateReceipt': state_machine.can_generate_receipt(document, unreceipted),
    }


def list_documents(tenant, filters=None, page=1, page_size=None):
    """One page of document summaries, newest document date first"""
    page_size = page_size or settings.SALES_PAGE_SIZE
    paginator = Paginator(_filtered_queryset(tenant, filters), page_size)
    page_obj = paginator.get_page(page)
    return {
        'results': [document_summary(document) for document in page_obj],
        'count': paginator.count,
        'next': page_obj.next_page_number() if page_obj.has_next() else None,
        'previous': page_obj.previous_page_number() if page_obj.has_previous() else None,
        'page': page_obj.number,
        'page_size': page_size,
        'total_pages': paginator.num_pages,
    }


def group_by_month(tenant, filters=None):
    """
    Group matching documents by the month of their document date, newest
    month first. ``totalAmount`` leaves Cancelled documents out while
    ``totalCount`` counts every document in the month.
    """
    queryset = _filtered_queryset(tenant, filters).annotate(month=TruncMonth('document_date'))
    groups = []
    for month, documents in groupby(queryset, key=lambda document: document.month):
        documents = list(documents)
        total = sum(
            (document.total_amount for document in documents if document.status != DocumentStatus.CANCELLED),
            ZERO,
        )
        groups.append({
            'month': month.strftime('%Y-%m'),
            'documents': [document_summary(document) for document in documents],
            'totalCount': len(documents),
            'totalAmount': str(total),
        })
    return groups


MAX_PAGE_SIZE = 200


def page_params(query_params):
    """``page`` and ``page_size`` (or ``limit``) from query parameters, clamped to sane values"""
    try:
        page = int(query_params.get('page', 1))
    except (TypeError, ValueError):
        page = 1
    try:
        page_size = int(query_params.get('page_size', query_params.get('limit', settings.SALES_PAGE_SIZE)))
    except (TypeError, ValueError):
        page_size = settings.SALES_PAGE_SIZE
    return max(page, 1), min(max(page_size, 1), MAX_PAGE_SIZE)


# Customer statement

STATEMENT_DOCUMENT_TYPES = (DocumentType.INVOICE, DocumentType.TAX_INVOICE_RECEIPT)
MAX_STATEMENT_DAYS = 730


def _money(value):
    return str(round_money(value))


def _statement_customer(tenant, customer_id):
    try:
        pk = int(customer_id)
    except (TypeError, ValueError):
        pk = None
    customer = Customer.objects.filter(company_id=tenant.company_id, pk=pk).first() if pk is not None else None
    if customer is None:
        raise NotFoundError(f"Customer {customer_id} not found", resource='Customer', id=customer_id)
    return customer


def _total(queryset, field):
    return queryset.aggregate(
        total=Coalesce(Sum(field), Value(ZERO), output_field=DecimalField(max_digits=18, decimal_places=2))
    )['total']


def customer_statement(tenant, customer_id, date_from, date_to, include_zero=True):
    """
    Account statement of one customer between two dates (inclusive).

    Issued invoices and tax invoice receipts are debits, payments recorded
    against them are credits (reversals are negative credits). Drafts and
    cancelled documents are left out. The opening balance covers everything
    dated before ``date_from``; every transaction carries the running
    balance after it.
    """
    if date_from is None or date_to is None:
        raise ValidationError({'dateFrom': 'dateFrom and dateTo are required.'})
    if date_from > date_to:
        raise ValidationError({'dateTo': 'dateTo must not be before dateFrom.'})
    if (date_to - date_from).days > MAX_STATEMENT_DAYS:
        raise ValidationError({'dateTo': f'A statement covers at most {MAX_STATEMENT_DAYS} days.'})
    customer = _statement_customer(tenant, customer_id)

    documents = (
        SalesDocument.objects.filter(
            company_id=tenant.company_id, customer=customer, document_type__in=STATEMENT_DOCUMENT_TYPES
        )
        .exclude(status__in=[DocumentStatus.DRAFT, DocumentStatus.CANCELLED])
    )
    payments = PaymentRecord.objects.filter(document__in=documents).select_related('document', 'receipt')

    opening_balance = (
        _total(documents.filter(document_date__lt=date_from), 'total_amount')
        - _total(payments.filter(date__lt=date_from), 'amount')
    )

    entries = []
    for document in documents.filter(document_date__range=(date_from, date_to)):
        entries.append((document.document_date, 0, document.created_at, {
            'date': document.document_date,
            'transactionType': document.document_type,
            'documentId': str(document.pk),
            'documentNumber': document.number,
            'description': f"{document.document_type} {document.number}",
            'debit': document.total_amount,
            'credit': ZERO,
            'paymentMethod': None,
            'receiptNumber': None,
            'status': document.status,
        }))
    for payment in payments.filter(date__range=(date_from, date_to)):
        is_reversal = payment.amount < 0
        entries.append((payment.date, 1, payment.created_at, {
            'date': payment.date,
            'transactionType': 'Reversal' if is_reversal else 'Payment',
            'documentId': str(payment.document_id),
            'documentNumber': payment.document.number,
            'description': f"{'Reversal of payment' if is_reversal else 'Payment'} for {payment.document.number}",
            'debit': ZERO,
            'credit': payment.amount,
            'paymentMethod': payment.method,
            'receiptNumber': payment.receipt.number if payment.receipt else None,
            'status': payment.document.status,
        }))
    entries.sort(key=lambda entry: entry[:3])

    transactions = []
    balance = opening_balance
    for _, _, _, entry in entries:
        if not include_zero and entry['debit'] == ZERO and entry['credit'] == ZERO:
            continue
        balance += entry['debit'] - entry['credit']
        entry['balance'] = balance
        transactions.append(entry)

    return {
        'customer': {
            'id': customer.pk,
            'name': customer.name,
            'address': customer.address,
            'phone': customer.phone,
            'email': customer.email,
            'taxId': customer.tax_id,
        },
        'dateFrom': date_from.isoformat(),
        'dateTo': date_to.isoformat(),
        'openingBalance': _money(opening_balance),
        'closingBalance': _money(balance),
        'transactions': [_statement_row(entry) for entry in transactions],
        'summary': _statement_summary(transactions),
    }


def _statement_row(entry):
    row = dict(entry)
    row['date'] = entry['date'].isoformat()
    for key in ('debit', 'credit', 'balance'):
        row[key] = _money(entry[key])
    return row


def _statement_summary(transactions):
    total_debits = sum((entry['debit'] for entry in transactions), ZERO)
    total_credits = sum((entry['credit'] for entry in transactions), ZERO)
    count = len(transactions)
    average = sum((abs(entry['debit'] - entry['credit']) for entry in transactions), ZERO) / count if count else ZERO

    monthly = []
    for month, entries in groupby(transactions, key=lambda entry: entry['date'].strftime('%Y-%m')):
        entries = list(entries)
        debits = sum((entry['debit'] for entry in entries), ZERO)
        credits = sum((entry['credit'] for entry in entries), ZERO)
        monthly.append({
            'month': month,
            'totalDebits': _money(debits),
            'totalCredits': _money(credits),
            'netAmount': _money(debits - credits),
            'transactionCount': len(entries),
        })

    return {
        'totalDebits': _money(total_debits),
        'totalCredits': _money(total_credits),
        'netChange': _money(total_debits - total_credits),
        'totalTransactions': count,
        'averageTransactionAmount': _money(average),
        'monthlyActivity': monthly,
    }
