"""
Payment reconciliation ledger.

Payment records are immutable. A payment adds a positive record and a
reversal adds a negative one pointing at the record it compensates; the
owning document's ``paid_amount`` always equals the sum of its records and
never exceeds ``total_amount``.
"""
import logging
from decimal import Decimal, InvalidOperation

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from backend.core.utils import create_audit_log

from . import state_machine
from .calculator import MAX_AMOUNT
from .choices import DocumentStatus, DocumentType, PaymentMethod
from .documents import apply_transition, get_document, insert_document, lock_document_row
from .exceptions import (
    ConversionNotAllowedError, InvalidPaymentError, NotFoundError, NothingToReceiptError,
    OverpaymentError,
)
from .locking import document_lock
from .models import PaymentRecord

logger = logging.getLogger(__name__)

MONEY_EXPONENT = Decimal('0.01').as_tuple().exponent


def parse_amount(amount):
    """Validate a payment amount: a positive number with at most two decimals"""
    if isinstance(amount, bool) or amount is None:
        raise InvalidPaymentError("amount must be a number", field='amount')
    try:
        value = amount if isinstance(amount, Decimal) else Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidPaymentError("amount must be a number", field='amount', value=amount)
    if not value.is_finite():
        raise InvalidPaymentError("amount must be a finite number", field='amount', value=amount)
    if value <= Decimal('0'):
        raise InvalidPaymentError("amount must be positive", field='amount', value=value)
    if value >= MAX_AMOUNT:
        raise InvalidPaymentError("amount is too large", field='amount', value=value)
    if value.normalize().as_tuple().exponent < MONEY_EXPONENT:
        raise InvalidPaymentError("amount has more than two decimal places", field='amount', value=value)
    return value.quantize(Decimal('0.01'))


def _audit(tenant, action, document, payment, changes):
    create_audit_log(
        action=action,
        model_name='PaymentRecord',
        object_id=payment.pk,
        object_name=f"{payment.method} {payment.amount}",
        object_reference=document.number,
        changes=changes,
        **tenant.audit_kwargs()
    )


def record_payment(tenant, document_id, amount, method, date=None, reference_number='', notes=''):
    """
    Record money received (or paid, for purchase invoices) against a document.

    The amount must fit the remaining balance. A payment that settles the
    balance moves the document to its paid status.
    """
    amount = parse_amount(amount)
    if method not in PaymentMethod.values:
        raise InvalidPaymentError(f"Unknown payment method: {method}", field='method', value=method)
    date = date or timezone.localdate()

    with document_lock(document_id, 'payment'):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            if amount > document.remaining_amount:
                raise OverpaymentError(
                    f"Payment of {amount} exceeds the remaining {document.remaining_amount} on {document.number}",
                    amount=amount,
                    remainingAmount=document.remaining_amount,
                    documentId=document.pk,
                )
            if not state_machine.can_pay(document):
                raise InvalidPaymentError(
                    f"{document.document_type} in status {document.status} does not accept payments",
                    status=document.status,
                    documentType=document.document_type,
                )
            payment = PaymentRecord.objects.create(
                document=document,
                amount=amount,
                method=method,
                date=date,
                reference_number=reference_number or '',
                notes=notes or '',
                created_by=tenant.user if tenant.user is not None and tenant.user.is_authenticated else None,
            )
            document.paid_amount += amount
            document.version += 1
            paid_status = state_machine.PAID_STATUS.get(document.document_type)
            if paid_status and document.paid_amount == document.total_amount:
                apply_transition(document, paid_status)
            document.save()
            _audit(tenant, 'payment_add', document, payment, {
                'amount': str(amount), 'method': method, 'paidAmount': str(document.paid_amount),
            })

    logger.info(f"Payment {amount} ({method}) on {document.number}: paid {document.paid_amount} of {document.total_amount}")
    return payment


def reverse_payment(tenant, payment_id, notes=''):
    """
    Compensate a payment with a negative record. Only possible while the
    document is still open and no active receipt covers the payment.
    """
    payment = (
        PaymentRecord.objects.filter(document__company_id=tenant.company_id, pk=payment_id)
        .only('id', 'document_id')
        .first()
    )
    if payment is None:
        raise NotFoundError(f"Payment {payment_id} not found", resource='PaymentRecord', id=payment_id)

    with document_lock(payment.document_id, 'payment'):
        with transaction.atomic():
            document = lock_document_row(tenant, payment.document_id)
            payment = PaymentRecord.objects.select_for_update().get(pk=payment.pk)
            if payment.amount <= Decimal('0'):
                raise InvalidPaymentError("A reversal cannot be reversed", paymentId=payment.pk)
            if PaymentRecord.objects.filter(reverses=payment).exists():
                raise InvalidPaymentError("Payment was already reversed", paymentId=payment.pk)
            if state_machine.is_terminal(document.status):
                raise InvalidPaymentError(
                    f"Payments of a {document.status} document cannot be reversed",
                    paymentId=payment.pk,
                    status=document.status,
                )
            if payment.receipt_id is not None:
                raise InvalidPaymentError(
                    "Payment is covered by a receipt; cancel the receipt first",
                    paymentId=payment.pk,
                    receiptId=payment.receipt_id,
                )
            reversal = PaymentRecord.objects.create(
                document=document,
                amount=-payment.amount,
                method=payment.method,
                date=timezone.localdate(),
                reference_number=payment.reference_number,
                notes=notes or f"Reversal of payment {payment.pk}",
                reverses=payment,
                created_by=tenant.user if tenant.user is not None and tenant.user.is_authenticated else None,
            )
            document.paid_amount -= payment.amount
            document.version += 1
            document.save()
            _audit(tenant, 'payment_reverse', document, reversal, {
                'reverses': payment.pk, 'amount': str(payment.amount), 'paidAmount': str(document.paid_amount),
            })

    logger.info(f"Reversed payment {payment.pk} ({payment.amount}) on {document.number}")
    return reversal


def generate_receipt(tenant, document_id, date=None):
    """
    Issue a Receipt covering every payment on the document that no active
    receipt covers yet. The receipt's total is the sum of those payments.
    """
    with document_lock(document_id, 'receipt'):
        with transaction.atomic():
            document = lock_document_row(tenant, document_id)
            if document.document_type not in state_machine.RECEIPTABLE_TYPES or document.status == DocumentStatus.CANCELLED:
                raise ConversionNotAllowedError(
                    f"Receipts cannot be generated for {document.document_type} in status {document.status}",
                    sourceType=document.document_type,
                    targetType=DocumentType.RECEIPT,
                    status=document.status,
                )
            if document.paid_amount <= Decimal('0'):
                raise NothingToReceiptError(f"{document.number} has no payments", documentId=document.pk)
            payments = list(
                PaymentRecord.objects
                .filter(document=document, receipt__isnull=True, reversed_by__isnull=True, amount__gt=0)
                .order_by('date', 'id')
            )
            if not payments:
                raise NothingToReceiptError(f"Every payment on {document.number} is already receipted", documentId=document.pk)
            covered = sum((payment.amount for payment in payments), Decimal('0.00'))

            receipt = insert_document(
                tenant, DocumentType.RECEIPT, state_machine.initial_status(DocumentType.RECEIPT),
                customer=document.customer, document_date=date or timezone.localdate(),
                currency=document.currency, notes=f"Receipt for {document.number}", source=document,
            )
            receipt.sub_total = covered
            receipt.total_amount = covered
            receipt.paid_amount = covered
            receipt.save()
            PaymentRecord.objects.filter(pk__in=[payment.pk for payment in payments]).update(receipt=receipt)
            create_audit_log(
                action='receipt_generate',
                model_name='SalesDocument',
                object_id=receipt.pk,
                object_name=f"{DocumentType.RECEIPT} {receipt.number}",
                object_reference=receipt.number,
                changes={'source': document.number, 'amount': str(covered), 'payments': [p.pk for p in payments]},
                **tenant.audit_kwargs()
            )

    logger.info(f"Generated receipt {receipt.number} for {document.number}: {covered} over {len(payments)} payments")
    return receipt


def list_payments(tenant, document_id):
    """Payment records of a document in date order; for a Receipt, the payments it covers"""
    document = get_document(tenant, document_id)
    if document.document_type == DocumentType.RECEIPT:
        queryset = document.covered_payments.all()
    else:
        queryset = document.payments.all()
    return list(queryset.select_related('reverses').order_by('date', 'id'))


def payment_summary(document):
    """Totals the payments panel shows next to a document"""
    records = document.payments.all()
    received = records.filter(amount__gt=0).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')
    reversed_total = records.filter(amount__lt=0).aggregate(total=Sum('amount'))['total'] or Decimal('0.00')
    return {
        'received': received,
        'reversed': -reversed_total,
        'paidAmount': document.paid_amount,
        'remainingAmount': document.remaining_amount,
        'unreceiptedAmount': document.unreceipted_amount(),
    }
