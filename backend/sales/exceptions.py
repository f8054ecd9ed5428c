"""
Typed errors raised by the sales document engine.

Every error carries a stable machine-readable ``kind`` plus a human-readable
message. ``details`` holds the structured context the UI needs to build a
localized message (current/attempted status, amounts, ids).
"""
from rest_framework import status


class SalesDocumentError(Exception):
    kind = 'SalesDocumentError'
    http_status = status.HTTP_400_BAD_REQUEST

    def __init__(self, message=None, **details):
        self.message = message or self.default_message()
        self.details = details
        super().__init__(self.message)

    def default_message(self):
        return self.kind

    def to_dict(self):
        data = {'error': self.kind, 'detail': self.message}
        for key, value in self.details.items():
            data[key] = value if value is None or isinstance(value, (bool, int)) else str(value)
        return data


class NotFoundError(SalesDocumentError):
    kind = 'NotFound'
    http_status = status.HTTP_404_NOT_FOUND


class InvalidLineError(SalesDocumentError):
    kind = 'InvalidLine'


class InvalidDocumentError(SalesDocumentError):
    kind = 'InvalidDocument'


class IllegalTransitionError(SalesDocumentError):
    kind = 'IllegalTransition'
    http_status = status.HTTP_409_CONFLICT

    def __init__(self, message=None, from_status=None, to_status=None, document_type=None, **details):
        self.from_status = from_status
        self.to_status = to_status
        self.document_type = document_type
        if message is None:
            message = f"{document_type} cannot move from {from_status} to {to_status}"
        super().__init__(message, **{'from': from_status, 'to': to_status, 'documentType': document_type}, **details)


class DocumentNotEditableError(IllegalTransitionError):
    kind = 'DocumentNotEditable'

    def __init__(self, document_type=None, from_status=None, **details):
        super().__init__(
            f"{document_type} in status {from_status} cannot be edited",
            from_status=from_status,
            to_status='edit',
            document_type=document_type,
            **details
        )


class ConversionNotAllowedError(SalesDocumentError):
    kind = 'ConversionNotAllowed'
    http_status = status.HTTP_409_CONFLICT


class AlreadyConvertedError(SalesDocumentError):
    kind = 'AlreadyConverted'
    http_status = status.HTTP_409_CONFLICT


class InvalidPaymentError(SalesDocumentError):
    kind = 'InvalidPayment'


class OverpaymentError(SalesDocumentError):
    kind = 'Overpayment'
    http_status = status.HTTP_409_CONFLICT


class CancelWithPaymentsError(SalesDocumentError):
    kind = 'CancelWithPayments'
    http_status = status.HTTP_409_CONFLICT


class NothingToReceiptError(SalesDocumentError):
    kind = 'NothingToReceipt'
    http_status = status.HTTP_409_CONFLICT


class DocumentLockedError(SalesDocumentError):
    kind = 'DocumentLocked'
    http_status = status.HTTP_423_LOCKED


class ConcurrencyConflictError(SalesDocumentError):
    kind = 'ConcurrencyConflict'
    http_status = status.HTTP_409_CONFLICT
