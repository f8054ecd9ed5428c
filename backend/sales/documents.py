"""
Document store: creation, numbering, line and header edits, status changes,
cancellation, duplication and deletion of sales documents.

Every mutating command takes the document's command lock, then runs inside
``transaction.atomic()`` against a ``select_for_update()`` re-read of the row.
"""
import logging
import uuid
from datetime import timedelta
from decimal import Decimal

from django.db import transaction
from django.utils import timezone

from backend.catalog.utils import get_items
from backend.core.utils import create_audit_log
from backend.parties.utils import get_customer, get_supplier

from . import state_machine
from .calculator import compute_document_totals, compute_line, validate_line_inputs
from .choices import NUMBER_PREFIXES, DocumentStatus, DocumentType, PaymentMethod
from .exceptions import (
    CancelWithPaymentsError, ConcurrencyConflictError, DocumentNotEditableError,
    IllegalTransitionError, InvalidDocumentError, InvalidLineError, InvalidPaymentError,
    NotFoundError,
)
from .locking import EDIT, document_lock
from .models import DocumentLine, DocumentSequence, PaymentRecord, SalesDocument

logger = logging.getLogger(__name__)

# Header fields update_header accepts, mapped to model attributes
HEADER_FIELDS = {
    'document_date': 'document_date',
    'due_date': 'due_date',
    'notes': 'notes',
    'customer_id': 'customer',
    'supplier_id': 'supplier',
}
IMMUTABLE_HEADER_FIELDS = {
    'type', 'document_type', 'currency', 'number', 'company_id',
    'source_document_id', 'source_document_type', 'paid_amount', 'total_amount',
}
DUE_DATE_TYPES = {DocumentType.INVOICE, DocumentType.PURCHASE_INVOICE}
LINELESS_TYPES = {DocumentType.RECEIPT}


def parse_document_id(document_id):
    try:
        return uuid.UUID(str(document_id))
    except (TypeError, ValueError):
        raise NotFoundError(f"Document {document_id} not found", resource='SalesDocument', id=document_id)


def _documents(tenant):
    return SalesDocument.objects.filter(company_id=tenant.company_id)


def get_document(tenant, document_id):
    """Fetch one of the tenant's documents with its lines"""
    document = (
        _documents(tenant)
        .select_related('customer', 'supplier', 'source_document')
        .prefetch_related('lines__item')
        .filter(pk=parse_document_id(document_id))
        .first()
    )
    if document is None:
        raise NotFoundError(f"Document {document_id} not found", resource='SalesDocument', id=document_id)
    return document


def lock_document_row(tenant, document_id):
    """Re-read a document under a row lock; call inside transaction.atomic()"""
    document = _documents(tenant).select_for_update().filter(pk=parse_document_id(document_id)).first()
    if document is None:
        raise NotFoundError(f"Document {document_id} not found", resource='SalesDocument', id=document_id)
    return document


def check_version(document, expected_version):
    if expected_version is not None and int(expected_version) != document.version:
        raise ConcurrencyConflictError(
            "Document was modified by another request",
            documentId=document.pk,
            expectedVersion=int(expected_version),
            currentVersion=document.version,
        )


def next_number(tenant, document_type, year):
    """Allocate the next number of a (company, type, year) sequence. Numbers are never reused."""
    sequence, _ = DocumentSequence.objects.select_for_update().get_or_create(
        company_id=tenant.company_id, document_type=document_type, year=year
    )
    sequence.last_number += 1
    sequence.save(update_fields=['last_number'])
    return f"{NUMBER_PREFIXES[document_type]}-{year}-{sequence.last_number:04d}"


def default_due_date(document_type, party, document_date):
    if document_type not in DUE_DATE_TYPES or party is None:
        return None
    return document_date + timedelta(days=party.payment_terms_days or 0)


def line_defaults(tenant, raw, item=None):
    """
    Copy of a raw line dict with the defaults a saved line gets: the catalog
    price of ``item`` and the company VAT rate.
    """
    line = dict(raw)
    if line.get('unit_price') is None and item is not None:
        line['unit_price'] = item.sell_price
    if line.get('tax_rate') is None:
        line['tax_rate'] = tenant.vat_rate
    if line.get('discount_percent') is None:
        line['discount_percent'] = Decimal('0')
    return line


def check_raw_lines(raw_lines):
    if not isinstance(raw_lines, (list, tuple)) or not all(isinstance(raw, dict) for raw in raw_lines):
        raise InvalidLineError("lines must be a list of objects", field='lines')


def build_lines(tenant, raw_lines):
    """
    Turn raw line dicts (item_id, description, quantity, unit_price,
    discount_percent, tax_rate) into unsaved DocumentLine objects.

    Missing unit price and description come from the catalog item, a missing
    tax rate from the company VAT rate.
    """
    if raw_lines is None:
        return []
    check_raw_lines(raw_lines)
    items = get_items(tenant, [raw.get('item_id') for raw in raw_lines])
    lines = []
    for index, raw in enumerate(raw_lines, start=1):
        item = items[raw.get('item_id')]
        line = line_defaults(tenant, raw, item)
        try:
            inputs = (line.get('quantity'), line.get('unit_price'), line['discount_percent'], line['tax_rate'])
            compute_line(*inputs)
            quantity, unit_price, discount_percent, tax_rate = validate_line_inputs(*inputs)
        except InvalidLineError as e:
            e.details['lineNumber'] = index
            raise
        lines.append(DocumentLine(
            line_number=index,
            item=item,
            description=raw.get('description') or item.name,
            quantity=quantity,
            unit_price=unit_price,
            discount_percent=discount_percent,
            tax_rate=tax_rate,
        ))
    return lines


def copy_lines(document):
    """Unsaved verbatim copies of a document's lines"""
    return [
        DocumentLine(
            line_number=line.line_number,
            item_id=line.item_id,
            description=line.description,
            quantity=line.quantity,
            unit_price=line.unit_price,
            discount_percent=line.discount_percent,
            tax_rate=line.tax_rate,
        )
        for line in document.lines.all()
    ]


def save_lines(document, lines):
    """Replace the document's lines and refresh its totals"""
    document.lines.all().delete()
    for number, line in enumerate(lines, start=1):
        line.pk = None
        line.document = document
        line.line_number = number
        line.save()
    document.apply_totals(compute_document_totals(lines))


def insert_document(tenant, document_type, status, customer=None, supplier=None, document_date=None,
                    due_date=None, currency=None, notes='', source=None, lines=()):
    """Number and persist a new document with its lines; caller owns the transaction"""
    document_date = document_date or timezone.localdate()
    document = SalesDocument(
        company_id=tenant.company_id,
        document_type=document_type,
        number=next_number(tenant, document_type, document_date.year),
        status=status,
        customer=customer,
        supplier=supplier,
        document_date=document_date,
        due_date=due_date,
        currency=currency or tenant.currency,
        notes=notes or '',
        source_document=source,
        source_document_type=source.document_type if source is not None else '',
        created_by=tenant.user if tenant.user is not None and tenant.user.is_authenticated else None,
    )
    document.save()
    if lines:
        save_lines(document, list(lines))
        document.save()
    return document


def _resolve_party(tenant, document_type, party_id):
    if document_type == DocumentType.PURCHASE_INVOICE:
        return None, get_supplier(tenant, party_id)
    return get_customer(tenant, party_id), None


def _audit(tenant, action, document, changes=None):
    create_audit_log(
        action=action,
        model_name='SalesDocument',
        object_id=document.pk,
        object_name=f"{document.document_type} {document.number}",
        object_reference=document.number,
        changes=changes,
        **tenant.audit_kwargs()
    )


def create_document(tenant, document_type, party_id, lines=None, document_date=None, due_date=None,
                    currency=None, notes='', payment_method=None, reference_number=''):
    """
    Create a new document in its initial status.

    Receipts are only produced by generate_receipt. A Tax Invoice Receipt is
    issued already paid, so it is created together with a payment record for
    its full total.
    """
    if document_type not in DocumentType.values:
        raise InvalidDocumentError(f"Unknown document type: {document_type}", field='type', value=document_type)
    if document_type == DocumentType.RECEIPT:
        raise InvalidDocumentError("Receipts are generated from payments, not created directly", field='type')
    document_type = DocumentType(document_type)
    document_date = document_date or timezone.localdate()
    is_tax_invoice_receipt = document_type == DocumentType.TAX_INVOICE_RECEIPT
    if is_tax_invoice_receipt and payment_method not in PaymentMethod.values:
        raise InvalidPaymentError(f"Unknown payment method: {payment_method}", field='paymentMethod')

    customer, supplier = _resolve_party(tenant, document_type, party_id)
    built = build_lines(tenant, lines)
    if is_tax_invoice_receipt and not built:
        raise InvalidDocumentError("A tax invoice receipt needs at least one line", field='lines')
    if due_date is None:
        due_date = default_due_date(document_type, customer or supplier, document_date)

    with transaction.atomic():
        document = insert_document(
            tenant, document_type, state_machine.initial_status(document_type),
            customer=customer, supplier=supplier, document_date=document_date, due_date=due_date,
            currency=currency, notes=notes, lines=built,
        )
        if is_tax_invoice_receipt:
            if document.total_amount <= Decimal('0.00'):
                raise InvalidDocumentError("A tax invoice receipt needs a positive total", field='lines')
            PaymentRecord.objects.create(
                document=document,
                amount=document.total_amount,
                method=payment_method,
                date=document_date,
                reference_number=reference_number or '',
                created_by=document.created_by,
            )
            document.paid_amount = document.total_amount
            document.save(update_fields=['paid_amount', 'updated_at'])
        _audit(tenant, 'document_create', document, {'type': document_type, 'total': str(document.total_amount)})

    logger.info(f"Created {document_type} {document.number} for company {tenant.company_id} (total {document.total_amount})")
    return document


def update_lines(tenant, document_id, lines, expected_version=None):
    """Replace all lines of an editable document and recompute its totals"""
    with document_lock(document_id, EDIT):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            check_version(document, expected_version)
            if not state_machine.can_edit(document):
                raise DocumentNotEditableError(document.document_type, document.status, documentId=document.pk)
            built = build_lines(tenant, lines)
            if not built and document.status != DocumentStatus.DRAFT:
                raise InvalidDocumentError("Only a Draft document may have no lines", field='lines')
            save_lines(document, built)
            document.version += 1
            document.save()
            _audit(tenant, 'document_update', document, {'lines': len(built), 'total': str(document.total_amount)})
    logger.info(f"Updated lines of {document.number}: {len(built)} lines, total {document.total_amount}")
    return get_document(tenant, document.pk)


def update_header(tenant, document_id, changes, expected_version=None):
    """Change date, due date, notes or party of an editable document"""
    changes = dict(changes or {})
    audit_changes = {key: str(value) for key, value in changes.items()}
    for field in changes:
        if field in IMMUTABLE_HEADER_FIELDS:
            raise InvalidDocumentError(f"{field} cannot be changed after creation", field=field)
        if field == 'status':
            raise InvalidDocumentError("Use the status command to change status", field=field)
        if field not in HEADER_FIELDS:
            raise InvalidDocumentError(f"Unknown field: {field}", field=field)

    with document_lock(document_id, EDIT):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            check_version(document, expected_version)
            if not state_machine.can_edit(document):
                raise DocumentNotEditableError(document.document_type, document.status, documentId=document.pk)
            is_purchase = document.document_type == DocumentType.PURCHASE_INVOICE
            if 'customer_id' in changes:
                if is_purchase:
                    raise InvalidDocumentError("Purchase invoices have a supplier, not a customer", field='customerId')
                document.customer = get_customer(tenant, changes.pop('customer_id'))
            if 'supplier_id' in changes:
                if not is_purchase:
                    raise InvalidDocumentError("Only purchase invoices have a supplier", field='supplierId')
                document.supplier = get_supplier(tenant, changes.pop('supplier_id'))
            for field, value in changes.items():
                if field == 'notes' and value is None:
                    value = ''
                setattr(document, HEADER_FIELDS[field], value)
            if document.document_date is None:
                raise InvalidDocumentError("documentDate is required", field='documentDate')
            document.version += 1
            document.save()
            _audit(tenant, 'document_update', document, audit_changes)
    return get_document(tenant, document.pk)


def apply_transition(document, to_status):
    """Move an already locked document through the state machine (no save)"""
    state_machine.validate_transition(document.document_type, document.status, to_status)
    if (document.status == DocumentStatus.DRAFT and to_status != DocumentStatus.CANCELLED
            and document.document_type not in LINELESS_TYPES and not document.lines.exists()):
        raise InvalidDocumentError(
            "A document needs at least one line before leaving Draft",
            field='lines', documentId=document.pk,
        )
    from_status = document.status
    document.status = to_status
    document.version += 1
    if to_status == DocumentStatus.CANCELLED:
        document.cancelled_at = timezone.now()
    return from_status


def set_status(tenant, document_id, to_status, expected_version=None):
    """
    Apply a manual status change. Cancelling goes through cancel_document,
    Converted is only reachable by converting and Paid only by payment.
    """
    if to_status == DocumentStatus.CANCELLED:
        return cancel_document(tenant, document_id, expected_version=expected_version)

    with document_lock(document_id, 'status'):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            check_version(document, expected_version)
            if to_status in (DocumentStatus.CONVERTED, DocumentStatus.PAID):
                reason = 'conversion' if to_status == DocumentStatus.CONVERTED else 'full payment'
                raise IllegalTransitionError(
                    f"{document.document_type} reaches {to_status} only through {reason}",
                    from_status=document.status,
                    to_status=to_status,
                    document_type=document.document_type,
                )
            from_status = apply_transition(document, to_status)
            document.save()
            _audit(tenant, 'document_status', document, {'from': from_status, 'to': to_status})
    logger.info(f"{document.number}: {from_status} -> {to_status}")
    return get_document(tenant, document.pk)


def cancel_document(tenant, document_id, expected_version=None):
    """
    Cancel a document. Money recorded against it must be reversed first;
    cancelling a Receipt releases the payments it covered.
    """
    with document_lock(document_id, 'cancel'):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            check_version(document, expected_version)
            if document.document_type != DocumentType.RECEIPT and document.paid_amount > Decimal('0.00'):
                raise CancelWithPaymentsError(
                    f"{document.number} has {document.paid_amount} paid; reverse the payments first",
                    documentId=document.pk,
                    paidAmount=document.paid_amount,
                )
            from_status = apply_transition(document, DocumentStatus.CANCELLED)
            document.save()
            if document.document_type == DocumentType.RECEIPT:
                PaymentRecord.objects.filter(receipt=document).update(receipt=None)
            _audit(tenant, 'document_cancel', document, {'from': from_status})
    logger.info(f"Cancelled {document.number} (was {from_status})")
    return get_document(tenant, document.pk)


def duplicate_document(tenant, document_id, document_date=None):
    """
    Copy a document into a new, unrelated Draft of the same type. Works from
    any status; the copy has no provenance link.
    """
    source = get_document(tenant, document_id)
    if state_machine.initial_status(source.document_type) != DocumentStatus.DRAFT:
        raise InvalidDocumentError(
            f"{source.document_type} documents cannot be duplicated",
            field='type', documentId=source.pk,
        )
    document_date = document_date or timezone.localdate()
    party = source.party
    with transaction.atomic():
        document = insert_document(
            tenant, source.document_type, DocumentStatus.DRAFT,
            customer=source.customer, supplier=source.supplier, document_date=document_date,
            due_date=default_due_date(source.document_type, party, document_date),
            currency=source.currency, notes=source.notes, lines=copy_lines(source),
        )
        _audit(tenant, 'document_duplicate', document, {'copiedFrom': source.number})
    logger.info(f"Duplicated {source.number} as {document.number}")
    return document


def delete_document(tenant, document_id):
    """Physically delete a Draft that has no payments and no derived documents"""
    with document_lock(document_id, EDIT):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            if document.status != DocumentStatus.DRAFT:
                raise IllegalTransitionError(
                    f"Only Draft documents can be deleted; cancel {document.number} instead",
                    from_status=document.status,
                    to_status='Deleted',
                    document_type=document.document_type,
                )
            if document.payments.exists():
                raise CancelWithPaymentsError(f"{document.number} has payments", documentId=document.pk)
            if document.derived_documents.exists():
                raise InvalidDocumentError(
                    f"{document.number} has derived documents", field='sourceDocumentId', documentId=document.pk
                )
            number = document.number
            pk = document.pk
            document.lines.all().delete()
            document.delete()
            create_audit_log(
                action='delete', model_name='SalesDocument', object_id=pk,
                object_name=number, object_reference=number, **tenant.audit_kwargs()
            )
    logger.info(f"Deleted draft {number}")


def mark_overdue_invoices(tenant, today=None):
    """Move Sent invoices whose due date has passed to Overdue; returns the numbers moved"""
    today = today or timezone.localdate()
    candidates = list(
        _documents(tenant)
        .filter(document_type=DocumentType.INVOICE, status=DocumentStatus.SENT, due_date__lt=today)
        .values_list('pk', flat=True)
    )
    moved = []
    for document_id in candidates:
        try:
            with document_lock(document_id, 'status'):
                with transaction.atomic():
                    document = lock_document_row(tenant, document_id)
                    if document.status != DocumentStatus.SENT or document.due_date is None or document.due_date >= today:
                        continue
                    apply_transition(document, DocumentStatus.OVERDUE)
                    document.save()
                    _audit(tenant, 'document_status', document, {'from': DocumentStatus.SENT, 'to': DocumentStatus.OVERDUE})
                    moved.append(document.number)
        except ConcurrencyConflictError:
            # Picked up again on the next run
            logger.warning(f"Skipped overdue check of document {document_id}: busy")
    if moved:
        logger.info(f"Marked {len(moved)} invoices overdue for company {tenant.company_id}")
    return moved


def provenance_chain(tenant, document_id):
    """The document and its ancestors through source links, oldest first"""
    document = get_document(tenant, document_id)
    chain = [document]
    seen = {document.pk}
    current = document
    while current.source_document_id is not None and current.source_document_id not in seen:
        current = _documents(tenant).select_related('customer').get(pk=current.source_document_id)
        seen.add(current.pk)
        chain.append(current)
    chain.reverse()
    return chain


def derived_documents(tenant, document_id):
    """Documents created from this one by conversion or receipt generation"""
    return list(_documents(tenant).filter(source_document_id=parse_document_id(document_id)).order_by('created_at'))
