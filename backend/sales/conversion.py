"""
Conversion engine: derive a new document of another type from an existing
one, copying its lines verbatim and recording where it came from.
"""
import logging

from django.db import transaction
from django.utils import timezone

from backend.core.utils import create_audit_log

from . import state_machine
from .choices import DocumentStatus, DocumentType
from .documents import copy_lines, default_due_date, get_document, insert_document, lock_document_row
from .exceptions import AlreadyConvertedError, ConversionNotAllowedError, InvalidDocumentError
from .ledger import generate_receipt
from .locking import CONVERT, document_lock

logger = logging.getLogger(__name__)

# Status a converted document starts in when it differs from the type's initial status
CONVERTED_INITIAL_STATUS = {
    (DocumentType.QUOTE, DocumentType.SALES_ORDER): DocumentStatus.CONFIRMED,
}


def _not_allowed(source, target_type, reason=None):
    return ConversionNotAllowedError(
        reason or f"{source.document_type} in status {source.status} cannot be converted to {target_type}",
        sourceType=source.document_type,
        targetType=target_type,
        status=source.status,
        documentId=source.pk,
    )


def convert(tenant, source_id, target_type, document_date=None, notes=None):
    """
    Create a ``target_type`` document from ``source_id``.

    Converting a Quote retires it (status Converted); the other conversions
    are additive and leave the source status alone, but a source gets at most
    one live child per target type. Invoice to Receipt is handled by the
    ledger's receipt generation.
    """
    if target_type not in DocumentType.values:
        raise InvalidDocumentError(f"Unknown document type: {target_type}", field='targetType', value=target_type)

    if target_type == DocumentType.RECEIPT:
        source = get_document(tenant, source_id)
        statuses = state_machine.CONVERSIONS.get((source.document_type, target_type))
        if statuses is None or source.status not in statuses:
            raise _not_allowed(source, target_type)
        return generate_receipt(tenant, source.pk, date=document_date)

    with document_lock(source_id, CONVERT):
        with transaction.atomic():
            source = lock_document_row(tenant, source_id)
            pair = (source.document_type, target_type)
            statuses = state_machine.CONVERSIONS.get(pair)
            if statuses is None:
                raise _not_allowed(source, target_type, f"{source.document_type} cannot be converted to {target_type}")
            if source.document_type == DocumentType.QUOTE and source.status == DocumentStatus.CONVERTED:
                child = source.derived_documents.filter(document_type=target_type).first()
                raise AlreadyConvertedError(
                    f"{source.number} was already converted",
                    documentId=source.pk,
                    targetId=child.pk if child else None,
                )
            if source.status not in statuses:
                raise _not_allowed(source, target_type)
            existing = (
                source.derived_documents.filter(document_type=target_type)
                .exclude(status=DocumentStatus.CANCELLED)
                .first()
            )
            if existing is not None:
                raise AlreadyConvertedError(
                    f"{source.number} already has {target_type} {existing.number}",
                    documentId=source.pk,
                    targetId=existing.pk,
                    targetNumber=existing.number,
                )

            document_date = document_date or timezone.localdate()
            target = insert_document(
                tenant, target_type,
                CONVERTED_INITIAL_STATUS.get(pair, state_machine.initial_status(target_type)),
                customer=source.customer,
                document_date=document_date,
                due_date=default_due_date(target_type, source.customer, document_date),
                currency=source.currency,
                notes=source.notes if notes is None else notes,
                source=source,
                lines=copy_lines(source),
            )

            retired_status = state_machine.RETIRING_CONVERSIONS.get(pair)
            if retired_status:
                state_machine.validate_transition(source.document_type, source.status, retired_status)
                source.status = retired_status
                source.version += 1
                source.save()

            create_audit_log(
                action='document_convert',
                model_name='SalesDocument',
                object_id=target.pk,
                object_name=f"{target.document_type} {target.number}",
                object_reference=target.number,
                changes={'source': source.number, 'sourceType': source.document_type, 'sourceStatus': source.status},
                **tenant.audit_kwargs()
            )

    logger.info(f"Converted {source.number} ({source.document_type}) to {target.document_type} {target.number}")
    return get_document(tenant, target.pk)
