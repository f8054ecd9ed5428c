"""
Status state machine for sales documents.

Each document type has its own transition table keyed by
``(type, from_status)``. Guards are pure functions of a document's current
fields, so they can be evaluated for list views without touching the
database.
"""
from decimal import Decimal

from .choices import DocumentStatus as S, DocumentType as T
from .exceptions import IllegalTransitionError

TRANSITIONS = {
    (T.QUOTE, S.DRAFT): {S.SENT, S.CANCELLED},
    (T.QUOTE, S.SENT): {S.ACCEPTED, S.REJECTED, S.EXPIRED, S.CONVERTED, S.CANCELLED},
    (T.QUOTE, S.ACCEPTED): {S.CONVERTED, S.CANCELLED},

    (T.SALES_ORDER, S.DRAFT): {S.CONFIRMED, S.CANCELLED},
    (T.SALES_ORDER, S.CONFIRMED): {S.PARTIALLY_SHIPPED, S.SHIPPED, S.CANCELLED},
    (T.SALES_ORDER, S.PARTIALLY_SHIPPED): {S.SHIPPED, S.CANCELLED},
    (T.SALES_ORDER, S.SHIPPED): {S.COMPLETED, S.CANCELLED},

    (T.DELIVERY_NOTE, S.DRAFT): {S.PREPARED, S.CANCELLED},
    (T.DELIVERY_NOTE, S.PREPARED): {S.IN_TRANSIT, S.CANCELLED},
    (T.DELIVERY_NOTE, S.IN_TRANSIT): {S.DELIVERED, S.RETURNED},

    (T.INVOICE, S.DRAFT): {S.SENT, S.CANCELLED},
    (T.INVOICE, S.SENT): {S.PAID, S.OVERDUE, S.CANCELLED},
    (T.INVOICE, S.OVERDUE): {S.PAID, S.CANCELLED},

    (T.PURCHASE_INVOICE, S.DRAFT): {S.RECEIVED, S.CANCELLED},
    (T.PURCHASE_INVOICE, S.RECEIVED): {S.APPROVED, S.CANCELLED},
    (T.PURCHASE_INVOICE, S.APPROVED): {S.PAID, S.CANCELLED},

    (T.TAX_INVOICE_RECEIPT, S.ISSUED): {S.CANCELLED},
    (T.RECEIPT, S.ISSUED): {S.CANCELLED},
}

INITIAL_STATUS = {
    T.QUOTE: S.DRAFT,
    T.SALES_ORDER: S.DRAFT,
    T.DELIVERY_NOTE: S.DRAFT,
    T.INVOICE: S.DRAFT,
    T.PURCHASE_INVOICE: S.DRAFT,
    T.TAX_INVOICE_RECEIPT: S.ISSUED,
    T.RECEIPT: S.ISSUED,
}

TERMINAL_STATUSES = frozenset({
    S.CANCELLED, S.COMPLETED, S.DELIVERED, S.RETURNED, S.PAID,
    S.CONVERTED, S.REJECTED, S.EXPIRED,
})

EDITABLE = {
    T.QUOTE: {S.DRAFT, S.SENT},
    T.SALES_ORDER: {S.DRAFT},
    T.DELIVERY_NOTE: {S.DRAFT, S.PREPARED},
    T.INVOICE: {S.DRAFT},
    T.PURCHASE_INVOICE: {S.DRAFT},
}

# Status a fully paid document advances to
PAID_STATUS = {
    T.INVOICE: S.PAID,
    T.PURCHASE_INVOICE: S.PAID,
}

PAYABLE = {
    T.INVOICE: {S.SENT, S.OVERDUE},
    T.PURCHASE_INVOICE: {S.APPROVED},
}

# (source type, target type) -> source statuses that allow the conversion
CONVERSIONS = {
    (T.QUOTE, T.SALES_ORDER): {S.SENT, S.ACCEPTED},
    (T.SALES_ORDER, T.DELIVERY_NOTE): {S.CONFIRMED, S.PARTIALLY_SHIPPED, S.SHIPPED, S.COMPLETED},
    (T.SALES_ORDER, T.INVOICE): {S.CONFIRMED, S.PARTIALLY_SHIPPED, S.SHIPPED, S.COMPLETED},
    (T.DELIVERY_NOTE, T.INVOICE): {S.IN_TRANSIT, S.DELIVERED},
    (T.INVOICE, T.RECEIPT): {S.SENT, S.OVERDUE, S.PAID},
}

# Conversions that retire the source document
RETIRING_CONVERSIONS = {
    (T.QUOTE, T.SALES_ORDER): S.CONVERTED,
}

RECEIPTABLE_TYPES = {T.INVOICE, T.TAX_INVOICE_RECEIPT}

ZERO = Decimal('0')


def allowed_transitions(document_type, from_status):
    return TRANSITIONS.get((document_type, from_status), set())


def is_terminal(status):
    return status in TERMINAL_STATUSES


def initial_status(document_type):
    return INITIAL_STATUS[document_type]


def validate_transition(document_type, from_status, to_status):
    """Raise IllegalTransitionError unless ``from_status -> to_status`` is legal"""
    if to_status not in allowed_transitions(document_type, from_status):
        raise IllegalTransitionError(
            from_status=from_status,
            to_status=to_status,
            document_type=document_type,
        )


def can_transition(document_type, from_status, to_status):
    return to_status in allowed_transitions(document_type, from_status)


def can_edit(document):
    return document.status in EDITABLE.get(document.document_type, set())


def can_cancel(document):
    return S.CANCELLED in allowed_transitions(document.document_type, document.status)


def can_pay(document):
    return document.status in PAYABLE.get(document.document_type, set())


def can_convert(document, target_type=None, unreceipted_amount=None):
    """
    True when the document may be converted into ``target_type`` (or into
    any type when no target is given) from its current status.
    """
    for (source_type, target), statuses in CONVERSIONS.items():
        if source_type != document.document_type:
            continue
        if target_type is not None and target != target_type:
            continue
        if document.status not in statuses:
            continue
        if target == T.RECEIPT and not can_generate_receipt(document, unreceipted_amount):
            continue
        return True
    return False


def can_generate_receipt(document, unreceipted_amount=None):
    """
    Receipts cover money already received on an Invoice or Tax Invoice
    Receipt. ``unreceipted_amount`` lets callers that already know what is
    outstanding skip the payments lookup.
    """
    if document.document_type not in RECEIPTABLE_TYPES:
        return False
    if document.status == S.CANCELLED or document.paid_amount <= ZERO:
        return False
    if unreceipted_amount is None:
        unreceipted_amount = document.unreceipted_amount()
    return unreceipted_amount > ZERO
