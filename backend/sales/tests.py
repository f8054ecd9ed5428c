"""
Test suite for the Sales documents module
Tests: line calculator, status tables, document store, conversion, payments,
receipts, command locks and the document API
"""
from datetime import date, timedelta
from decimal import Decimal
from io import StringIO

from django.core.cache import cache
from django.core.management import CommandError, call_command
from django.test import SimpleTestCase, TestCase, override_settings
from rest_framework import status

from backend.core.models import AuditLog
from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.sales import conversion, documents, ledger, state_machine
from backend.sales.calculator import compute_document_totals, compute_line, round_money
from backend.sales.choices import DocumentStatus, DocumentType
from backend.sales.exceptions import (
    AlreadyConvertedError, CancelWithPaymentsError, ConcurrencyConflictError, ConversionNotAllowedError,
    DocumentLockedError, DocumentNotEditableError, IllegalTransitionError, InvalidDocumentError,
    InvalidLineError, InvalidPaymentError, NotFoundError, NothingToReceiptError, OverpaymentError,
)
from backend.sales.locking import CONVERT, EDIT, document_lock, held_operation, lock_key
from backend.sales.models import PaymentRecord, SalesDocument

DOC_DATE = date(2025, 3, 10)


class SalesTestMixin:
    """Company, member, customer and a 100.00 item for engine tests"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.tenant = TestDataFactory.tenant(self.company, self.user)
        self.customer = TestDataFactory.create_customer(self.company, payment_terms_days=30)
        self.item = TestDataFactory.create_item(self.company, sell_price=Decimal('100.00'))

    def tearDown(self):
        cache.clear()

    def create(self, document_type, lines=None, **kwargs):
        kwargs.setdefault('document_date', DOC_DATE)
        if lines is None:
            lines = [TestDataFactory.line(self.item, quantity='1', tax_rate='0')]
        return documents.create_document(self.tenant, document_type, self.customer.pk, lines=lines, **kwargs)

    def sent_invoice(self, total='1000.00'):
        """Invoice for exactly ``total`` (no tax) in status Sent"""
        lines = [TestDataFactory.line(self.item, quantity='1', unit_price=total, tax_rate='0')]
        invoice = self.create(DocumentType.INVOICE, lines=lines)
        return documents.set_status(self.tenant, invoice.pk, DocumentStatus.SENT)

    def accepted_quote(self):
        lines = [
            TestDataFactory.line(self.item, quantity='3', discount_percent='10', tax_rate='17'),
            TestDataFactory.line(self.item, quantity='1', unit_price='50', tax_rate='17'),
        ]
        quote = self.create(DocumentType.QUOTE, lines=lines)
        documents.set_status(self.tenant, quote.pk, DocumentStatus.SENT)
        return documents.set_status(self.tenant, quote.pk, DocumentStatus.ACCEPTED)

    def reload(self, document):
        return SalesDocument.objects.get(pk=document.pk)


class CalculatorTests(SimpleTestCase):
    """Test line and document money math"""

    def test_compute_line(self):
        """Test a discounted, taxed line"""
        amounts = compute_line(3, 100, 10, 17)
        self.assertEqual(amounts.discount_amount, Decimal('30'))
        self.assertEqual(amounts.line_subtotal, Decimal('270'))
        self.assertEqual(amounts.line_tax, Decimal('45.9'))
        self.assertEqual(amounts.line_total, Decimal('315.9'))

    def test_compute_line_accepts_strings(self):
        """Test that API strings are parsed as decimals"""
        amounts = compute_line('2.5', '19.99', '0', '17')
        self.assertEqual(round_money(amounts.line_subtotal), Decimal('49.98'))
        self.assertEqual(round_money(amounts.line_total), Decimal('58.47'))

    def test_zero_price_line_is_allowed(self):
        """Test that free lines compute to zero"""
        amounts = compute_line(1, 0, 0, 17)
        self.assertEqual(amounts.line_total, Decimal('0'))

    def test_invalid_inputs(self):
        """Test rejection of bad quantities, prices and percentages"""
        bad_inputs = [
            (0, 100, 0, 17),
            (-1, 100, 0, 17),
            (1, -5, 0, 17),
            (1, 100, 101, 17),
            (1, 100, -1, 17),
            (1, 100, 0, 150),
            ('abc', 100, 0, 17),
            (None, 100, 0, 17),
            ('NaN', 100, 0, 17),
        ]
        for quantity, unit_price, discount, tax in bad_inputs:
            with self.subTest(quantity=quantity, unit_price=unit_price, discount=discount, tax=tax):
                with self.assertRaises(InvalidLineError):
                    compute_line(quantity, unit_price, discount, tax)

    def test_inputs_must_fit_line_columns(self):
        """Test that inputs finer than the stored precision are rejected"""
        bad_inputs = [
            ('1.00001', 100, 0, 17, 'quantity'),
            (1, '99.99999', 0, 17, 'unitPrice'),
            (1, 100, '12.355', 17, 'discountPercent'),
            (1, 100, 0, '17.125', 'taxRate'),
        ]
        for quantity, unit_price, discount, tax, field in bad_inputs:
            with self.subTest(field=field):
                with self.assertRaises(InvalidLineError) as ctx:
                    compute_line(quantity, unit_price, discount, tax)
                self.assertEqual(ctx.exception.details['field'], field)

    def test_trailing_zeros_are_accepted(self):
        """Test that padded decimals within the stored precision are fine"""
        amounts = compute_line('2.50000', '19.990000', '10.000', '17.0000')
        self.assertEqual(round_money(amounts.line_subtotal), Decimal('44.98'))

    def test_huge_inputs(self):
        """Test that amounts too large to store are line errors"""
        for quantity, unit_price in (('1e30', 1), (1, '1e30'), ('99999999999999', '99999999999999')):
            with self.subTest(quantity=quantity, unit_price=unit_price):
                with self.assertRaises(InvalidLineError):
                    compute_line(quantity, unit_price, 0, 17)

    def test_document_total_is_subtotal_plus_vat(self):
        """Test that the rounded figures on a document add up"""
        lines = [{'quantity': '1', 'unit_price': '0.005', 'discount_percent': '0', 'tax_rate': '100'}]
        totals = compute_document_totals(lines)
        self.assertEqual(totals.sub_total, Decimal('0.01'))
        self.assertEqual(totals.vat_amount, Decimal('0.01'))
        self.assertEqual(totals.total_amount, Decimal('0.02'))

    def test_invalid_line_reports_field(self):
        """Test that the failing field is named in the error details"""
        with self.assertRaises(InvalidLineError) as ctx:
            compute_line(1, -5, 0, 17)
        self.assertEqual(ctx.exception.details['field'], 'unitPrice')
        self.assertEqual(ctx.exception.to_dict()['error'], 'InvalidLine')

    def test_round_money_half_up(self):
        """Test half-up rounding to two places"""
        self.assertEqual(round_money(Decimal('2.345')), Decimal('2.35'))
        self.assertEqual(round_money(Decimal('0.125')), Decimal('0.13'))
        self.assertEqual(round_money(Decimal('2.344')), Decimal('2.34'))

    def test_document_totals_round_once(self):
        """Test that totals are summed at full precision before rounding"""
        lines = [
            {'quantity': '1', 'unit_price': '0.005', 'discount_percent': '0', 'tax_rate': '0'},
            {'quantity': '1', 'unit_price': '0.005', 'discount_percent': '0', 'tax_rate': '0'},
        ]
        totals = compute_document_totals(lines)
        self.assertEqual(totals.sub_total, Decimal('0.01'))
        self.assertEqual(totals.total_amount, Decimal('0.01'))

    def test_document_totals(self):
        """Test the sum of several lines"""
        lines = [
            {'quantity': 3, 'unit_price': 100, 'discount_percent': 10, 'tax_rate': 17},
            {'quantity': 1, 'unit_price': 50, 'discount_percent': 0, 'tax_rate': 17},
        ]
        totals = compute_document_totals(lines)
        self.assertEqual(totals.sub_total, Decimal('320.00'))
        self.assertEqual(totals.discount_amount, Decimal('30.00'))
        self.assertEqual(totals.vat_amount, Decimal('54.40'))
        self.assertEqual(totals.total_amount, Decimal('374.40'))

    def test_empty_document_totals(self):
        """Test that a document without lines totals zero"""
        totals = compute_document_totals([])
        self.assertEqual(totals.total_amount, Decimal('0.00'))


class StateMachineTests(SimpleTestCase):
    """Test the per-type transition tables and guards"""

    def doc(self, document_type, status_value, paid='0.00'):
        return SalesDocument(document_type=document_type, status=status_value, paid_amount=Decimal(paid))

    def test_quote_transitions(self):
        """Test the quote lifecycle"""
        self.assertTrue(state_machine.can_transition(DocumentType.QUOTE, DocumentStatus.DRAFT, DocumentStatus.SENT))
        self.assertTrue(state_machine.can_transition(DocumentType.QUOTE, DocumentStatus.SENT, DocumentStatus.ACCEPTED))
        self.assertTrue(state_machine.can_transition(DocumentType.QUOTE, DocumentStatus.ACCEPTED, DocumentStatus.CONVERTED))
        self.assertFalse(state_machine.can_transition(DocumentType.QUOTE, DocumentStatus.DRAFT, DocumentStatus.ACCEPTED))
        self.assertFalse(state_machine.can_transition(DocumentType.QUOTE, DocumentStatus.CONVERTED, DocumentStatus.DRAFT))

    def test_plain_strings_match_table(self):
        """Test that raw status strings from requests match the enum tables"""
        self.assertTrue(state_machine.can_transition('Invoice', 'Draft', 'Sent'))
        self.assertFalse(state_machine.can_transition('Invoice', 'Draft', 'Paid'))

    def test_invoice_transitions(self):
        """Test that Paid is terminal and any other invoice status may be cancelled"""
        for from_status in (DocumentStatus.DRAFT, DocumentStatus.SENT, DocumentStatus.OVERDUE):
            self.assertTrue(state_machine.can_transition(DocumentType.INVOICE, from_status, DocumentStatus.CANCELLED))
        self.assertEqual(state_machine.allowed_transitions(DocumentType.INVOICE, DocumentStatus.PAID), set())

    def test_delivery_note_cannot_cancel_in_transit(self):
        """Test that a delivery note in transit can only be delivered or returned"""
        self.assertEqual(
            state_machine.allowed_transitions(DocumentType.DELIVERY_NOTE, DocumentStatus.IN_TRANSIT),
            {DocumentStatus.DELIVERED, DocumentStatus.RETURNED},
        )

    def test_purchase_invoice_path(self):
        """Test that purchase invoices must be approved before they are paid"""
        self.assertFalse(state_machine.can_transition(
            DocumentType.PURCHASE_INVOICE, DocumentStatus.RECEIVED, DocumentStatus.PAID
        ))
        self.assertTrue(state_machine.can_transition(
            DocumentType.PURCHASE_INVOICE, DocumentStatus.APPROVED, DocumentStatus.PAID
        ))

    def test_validate_transition_details(self):
        """Test that an illegal move reports both statuses"""
        with self.assertRaises(IllegalTransitionError) as ctx:
            state_machine.validate_transition(DocumentType.INVOICE, DocumentStatus.PAID, DocumentStatus.DRAFT)
        data = ctx.exception.to_dict()
        self.assertEqual(data['error'], 'IllegalTransition')
        self.assertEqual(data['from'], 'Paid')
        self.assertEqual(data['to'], 'Draft')

    def test_initial_statuses(self):
        """Test the status each type starts in"""
        self.assertEqual(state_machine.initial_status(DocumentType.QUOTE), DocumentStatus.DRAFT)
        self.assertEqual(state_machine.initial_status(DocumentType.TAX_INVOICE_RECEIPT), DocumentStatus.ISSUED)
        self.assertEqual(state_machine.initial_status(DocumentType.RECEIPT), DocumentStatus.ISSUED)

    def test_can_edit(self):
        """Test the editable statuses per type"""
        self.assertTrue(state_machine.can_edit(self.doc(DocumentType.QUOTE, DocumentStatus.SENT)))
        self.assertTrue(state_machine.can_edit(self.doc(DocumentType.DELIVERY_NOTE, DocumentStatus.PREPARED)))
        self.assertFalse(state_machine.can_edit(self.doc(DocumentType.INVOICE, DocumentStatus.SENT)))
        self.assertFalse(state_machine.can_edit(self.doc(DocumentType.INVOICE, DocumentStatus.PAID)))
        self.assertFalse(state_machine.can_edit(self.doc(DocumentType.RECEIPT, DocumentStatus.ISSUED)))

    def test_can_cancel(self):
        """Test that terminal documents cannot be cancelled"""
        self.assertTrue(state_machine.can_cancel(self.doc(DocumentType.SALES_ORDER, DocumentStatus.SHIPPED)))
        self.assertFalse(state_machine.can_cancel(self.doc(DocumentType.SALES_ORDER, DocumentStatus.COMPLETED)))
        self.assertFalse(state_machine.can_cancel(self.doc(DocumentType.INVOICE, DocumentStatus.CANCELLED)))

    def test_can_pay(self):
        """Test the payable statuses"""
        self.assertTrue(state_machine.can_pay(self.doc(DocumentType.INVOICE, DocumentStatus.OVERDUE)))
        self.assertFalse(state_machine.can_pay(self.doc(DocumentType.INVOICE, DocumentStatus.DRAFT)))
        self.assertFalse(state_machine.can_pay(self.doc(DocumentType.QUOTE, DocumentStatus.ACCEPTED)))

    def test_can_convert(self):
        """Test conversion guards"""
        self.assertTrue(state_machine.can_convert(self.doc(DocumentType.QUOTE, DocumentStatus.ACCEPTED)))
        self.assertTrue(state_machine.can_convert(
            self.doc(DocumentType.QUOTE, DocumentStatus.SENT), DocumentType.SALES_ORDER
        ))
        self.assertFalse(state_machine.can_convert(self.doc(DocumentType.QUOTE, DocumentStatus.DRAFT)))
        self.assertFalse(state_machine.can_convert(
            self.doc(DocumentType.QUOTE, DocumentStatus.ACCEPTED), DocumentType.INVOICE
        ))
        self.assertTrue(state_machine.can_convert(
            self.doc(DocumentType.DELIVERY_NOTE, DocumentStatus.DELIVERED), DocumentType.INVOICE
        ))

    def test_can_generate_receipt(self):
        """Test that receipts need unreceipted money on an invoice"""
        invoice = self.doc(DocumentType.INVOICE, DocumentStatus.SENT, paid='100.00')
        self.assertTrue(state_machine.can_generate_receipt(invoice, Decimal('100.00')))
        self.assertFalse(state_machine.can_generate_receipt(invoice, Decimal('0.00')))
        unpaid = self.doc(DocumentType.INVOICE, DocumentStatus.SENT)
        self.assertFalse(state_machine.can_generate_receipt(unpaid, Decimal('0.00')))
        order = self.doc(DocumentType.SALES_ORDER, DocumentStatus.CONFIRMED, paid='0.00')
        self.assertFalse(state_machine.can_generate_receipt(order, Decimal('10.00')))
        self.assertFalse(state_machine.can_convert(invoice, DocumentType.RECEIPT, unreceipted_amount=Decimal('0.00')))
        self.assertTrue(state_machine.can_convert(invoice, DocumentType.RECEIPT, unreceipted_amount=Decimal('5.00')))


class DocumentStoreTests(SalesTestMixin, TestCase):
    """Test creation, numbering, edits and status commands"""

    def test_create_quote(self):
        """Test a new quote is a numbered Draft with computed totals"""
        quote = self.create(DocumentType.QUOTE, lines=[
            TestDataFactory.line(self.item, quantity='3', discount_percent='10', tax_rate='17'),
        ])
        self.assertEqual(quote.number, 'QU-2025-0001')
        self.assertEqual(quote.status, DocumentStatus.DRAFT)
        self.assertEqual(quote.sub_total, Decimal('270.00'))
        self.assertEqual(quote.discount_amount, Decimal('30.00'))
        self.assertEqual(quote.vat_amount, Decimal('45.90'))
        self.assertEqual(quote.total_amount, Decimal('315.90'))
        self.assertEqual(quote.paid_amount, Decimal('0.00'))
        self.assertIsNone(quote.due_date)
        self.assertEqual(quote.currency, 'ILS')
        self.assertEqual(quote.created_by, self.user)
        self.assertTrue(AuditLog.objects.filter(action='document_create', object_reference=quote.number).exists())

    def test_numbering_per_type(self):
        """Test that each type keeps its own sequence"""
        first = self.create(DocumentType.QUOTE)
        second = self.create(DocumentType.QUOTE)
        invoice = self.create(DocumentType.INVOICE)
        self.assertEqual(first.number, 'QU-2025-0001')
        self.assertEqual(second.number, 'QU-2025-0002')
        self.assertEqual(invoice.number, 'INV-2025-0001')

    def test_numbers_are_not_reused_after_delete(self):
        """Test that deleting a draft does not free its number"""
        first = self.create(DocumentType.QUOTE)
        documents.delete_document(self.tenant, first.pk)
        second = self.create(DocumentType.QUOTE)
        self.assertEqual(second.number, 'QU-2025-0002')

    def test_numbering_is_per_company(self):
        """Test that companies do not share sequences"""
        self.create(DocumentType.QUOTE)
        other_company = TestDataFactory.create_company(members=[self.user])
        other_tenant = TestDataFactory.tenant(other_company, self.user)
        customer = TestDataFactory.create_customer(other_company)
        item = TestDataFactory.create_item(other_company)
        quote = documents.create_document(
            other_tenant, DocumentType.QUOTE, customer.pk,
            lines=[TestDataFactory.line(item)], document_date=DOC_DATE,
        )
        self.assertEqual(quote.number, 'QU-2025-0001')

    def test_invoice_due_date_from_payment_terms(self):
        """Test the default due date of an invoice"""
        invoice = self.create(DocumentType.INVOICE)
        self.assertEqual(invoice.due_date, DOC_DATE + timedelta(days=30))

    def test_explicit_due_date_wins(self):
        """Test that a given due date is kept"""
        invoice = self.create(DocumentType.INVOICE, due_date=date(2025, 12, 31))
        self.assertEqual(invoice.due_date, date(2025, 12, 31))

    def test_line_defaults_from_item_and_company(self):
        """Test that price, description and tax rate default when omitted"""
        quote = self.create(DocumentType.QUOTE, lines=[{'item_id': self.item.pk, 'quantity': '2'}])
        line = quote.lines.get()
        self.assertEqual(line.unit_price, Decimal('100.00'))
        self.assertEqual(line.description, self.item.name)
        self.assertEqual(line.tax_rate, Decimal('17.00'))
        self.assertEqual(quote.total_amount, Decimal('234.00'))

    def test_company_vat_rate_is_used(self):
        """Test that a company VAT rate overrides the default"""
        self.company.vat_rate = Decimal('18.00')
        self.company.save()
        tenant = TestDataFactory.tenant(self.company, self.user)
        quote = documents.create_document(
            tenant, DocumentType.QUOTE, self.customer.pk,
            lines=[{'item_id': self.item.pk, 'quantity': '1'}], document_date=DOC_DATE,
        )
        self.assertEqual(quote.vat_amount, Decimal('18.00'))

    def test_unknown_item(self):
        """Test that lines must reference a catalog item of the company"""
        with self.assertRaises(NotFoundError) as ctx:
            self.create(DocumentType.QUOTE, lines=[{'item_id': 999999, 'quantity': '1'}])
        self.assertEqual(ctx.exception.kind, 'NotFound')
        self.assertEqual(ctx.exception.http_status, 404)
        self.assertFalse(SalesDocument.objects.exists())

    def test_invalid_line_reports_line_number(self):
        """Test that the position of a bad line is reported"""
        lines = [
            TestDataFactory.line(self.item),
            TestDataFactory.line(self.item, quantity='0'),
        ]
        with self.assertRaises(InvalidLineError) as ctx:
            self.create(DocumentType.QUOTE, lines=lines)
        self.assertEqual(ctx.exception.details['lineNumber'], 2)

    def test_unknown_customer(self):
        """Test that the customer must belong to the company"""
        with self.assertRaises(NotFoundError) as ctx:
            documents.create_document(self.tenant, DocumentType.QUOTE, 999999, lines=[TestDataFactory.line(self.item)])
        self.assertEqual(ctx.exception.details['resource'], 'Customer')
        self.assertFalse(SalesDocument.objects.exists())

    def test_stored_lines_recompute_to_saved_totals(self):
        """Test that totals recomputed from the database match the saved ones"""
        lines = [
            TestDataFactory.line(self.item, quantity='3', unit_price='33.3333', discount_percent='12.5', tax_rate='17'),
            TestDataFactory.line(self.item, quantity='0.3333', unit_price='19.9999', discount_percent='7.25', tax_rate='17'),
        ]
        quote = self.create(DocumentType.QUOTE, lines=lines)
        stored = self.reload(quote)
        totals = compute_document_totals(list(stored.lines.all()))
        self.assertEqual(totals.total_amount, stored.total_amount)
        self.assertEqual(totals.sub_total, stored.sub_total)
        self.assertEqual(totals.vat_amount, stored.vat_amount)

        documents.set_status(self.tenant, quote.pk, DocumentStatus.SENT)
        order = conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        self.assertEqual(self.reload(order).total_amount, stored.total_amount)

    def test_line_precision_beyond_storage(self):
        """Test that a discount with three decimals is refused before saving"""
        lines = [TestDataFactory.line(self.item, quantity='1', discount_percent='12.355', tax_rate='0')]
        with self.assertRaises(InvalidLineError) as ctx:
            self.create(DocumentType.QUOTE, lines=lines)
        self.assertEqual(ctx.exception.details['field'], 'discountPercent')
        self.assertEqual(ctx.exception.details['lineNumber'], 1)
        self.assertFalse(SalesDocument.objects.exists())

    def test_huge_quantity(self):
        """Test that an oversized quantity is a line error"""
        with self.assertRaises(InvalidLineError):
            self.create(DocumentType.QUOTE, lines=[TestDataFactory.line(self.item, quantity='1e30')])
        self.assertFalse(SalesDocument.objects.exists())

    def test_missing_customer(self):
        """Test that a sales document needs a customer"""
        with self.assertRaises(InvalidDocumentError):
            documents.create_document(self.tenant, DocumentType.QUOTE, None, lines=[TestDataFactory.line(self.item)])

    def test_unknown_type(self):
        """Test that unknown document types are rejected"""
        with self.assertRaises(InvalidDocumentError):
            self.create('CreditNote')

    def test_receipts_cannot_be_created_directly(self):
        """Test that receipts only come from payments"""
        with self.assertRaises(InvalidDocumentError):
            self.create(DocumentType.RECEIPT)

    def test_tax_invoice_receipt_is_paid_on_creation(self):
        """Test that a tax invoice receipt is issued with a full payment"""
        tir = self.create(DocumentType.TAX_INVOICE_RECEIPT, payment_method='Cash', reference_number='R-1')
        self.assertEqual(tir.status, DocumentStatus.ISSUED)
        self.assertEqual(tir.number, 'TIR-2025-0001')
        self.assertEqual(tir.paid_amount, tir.total_amount)
        payment = tir.payments.get()
        self.assertEqual(payment.amount, Decimal('100.00'))
        self.assertEqual(payment.reference_number, 'R-1')

    def test_tax_invoice_receipt_needs_method_and_lines(self):
        """Test tax invoice receipt validation"""
        with self.assertRaises(InvalidPaymentError):
            self.create(DocumentType.TAX_INVOICE_RECEIPT)
        with self.assertRaises(InvalidDocumentError):
            self.create(DocumentType.TAX_INVOICE_RECEIPT, lines=[], payment_method='Cash')

    def test_purchase_invoice_uses_supplier(self):
        """Test that purchase invoices are made out to a supplier"""
        supplier = TestDataFactory.create_supplier(self.company, payment_terms_days=60)
        invoice = documents.create_document(
            self.tenant, DocumentType.PURCHASE_INVOICE, supplier.pk,
            lines=[TestDataFactory.line(self.item)], document_date=DOC_DATE,
        )
        self.assertEqual(invoice.supplier, supplier)
        self.assertIsNone(invoice.customer)
        self.assertEqual(invoice.number, 'PI-2025-0001')
        self.assertEqual(invoice.due_date, DOC_DATE + timedelta(days=60))

    def test_update_lines_recomputes_totals(self):
        """Test replacing the lines of a draft"""
        quote = self.create(DocumentType.QUOTE)
        updated = documents.update_lines(self.tenant, quote.pk, [
            TestDataFactory.line(self.item, quantity='2', tax_rate='0'),
            TestDataFactory.line(self.item, quantity='1', unit_price='10', tax_rate='0'),
        ], expected_version=quote.version)
        self.assertEqual(updated.total_amount, Decimal('210.00'))
        self.assertEqual(updated.lines.count(), 2)
        self.assertEqual([line.line_number for line in updated.lines.all()], [1, 2])
        self.assertEqual(updated.version, quote.version + 1)

    def test_update_lines_on_paid_invoice(self):
        """Test that a paid invoice cannot be edited and its lines stay untouched"""
        invoice = self.sent_invoice('100.00')
        ledger.record_payment(self.tenant, invoice.pk, '100.00', 'Cash')
        with self.assertRaises(DocumentNotEditableError) as ctx:
            documents.update_lines(self.tenant, invoice.pk, [TestDataFactory.line(self.item, quantity='5')])
        self.assertIsInstance(ctx.exception, IllegalTransitionError)
        invoice = self.reload(invoice)
        self.assertEqual(invoice.lines.count(), 1)
        self.assertEqual(invoice.total_amount, Decimal('100.00'))

    def test_stale_version_is_rejected(self):
        """Test optimistic version checking"""
        quote = self.create(DocumentType.QUOTE)
        documents.update_lines(self.tenant, quote.pk, [TestDataFactory.line(self.item, quantity='2')])
        with self.assertRaises(ConcurrencyConflictError):
            documents.update_lines(
                self.tenant, quote.pk, [TestDataFactory.line(self.item)], expected_version=quote.version
            )

    def test_update_header(self):
        """Test changing notes and date of a draft"""
        quote = self.create(DocumentType.QUOTE)
        updated = documents.update_header(self.tenant, quote.pk, {'notes': 'Call first', 'document_date': date(2025, 4, 1)})
        self.assertEqual(updated.notes, 'Call first')
        self.assertEqual(updated.document_date, date(2025, 4, 1))
        self.assertEqual(updated.number, quote.number)

    def test_update_header_rejects_identity_fields(self):
        """Test that type, currency and status cannot be patched"""
        quote = self.create(DocumentType.QUOTE)
        for field, value in (('currency', 'USD'), ('document_type', 'Invoice'), ('status', 'Sent'), ('number', 'X')):
            with self.subTest(field=field):
                with self.assertRaises(InvalidDocumentError):
                    documents.update_header(self.tenant, quote.pk, {field: value})
        self.assertEqual(self.reload(quote).currency, 'ILS')

    def test_model_guards_immutable_fields(self):
        """Test that saving a changed currency fails"""
        quote = self.create(DocumentType.QUOTE)
        stored = SalesDocument.objects.get(pk=quote.pk)
        stored.currency = 'USD'
        with self.assertRaises(InvalidDocumentError):
            stored.save()

    def test_paid_amount_bounds(self):
        """Test that paid amount cannot exceed the total"""
        quote = self.create(DocumentType.QUOTE)
        stored = SalesDocument.objects.get(pk=quote.pk)
        stored.paid_amount = stored.total_amount + Decimal('1.00')
        with self.assertRaises(InvalidDocumentError):
            stored.save()

    def test_status_path(self):
        """Test a sales order moving through its lifecycle"""
        order = self.create(DocumentType.SALES_ORDER)
        for next_status in (DocumentStatus.CONFIRMED, DocumentStatus.SHIPPED, DocumentStatus.COMPLETED):
            order = documents.set_status(self.tenant, order.pk, next_status)
            self.assertEqual(order.status, next_status)
        self.assertEqual(order.version, 4)

    def test_illegal_transition(self):
        """Test that skipping states fails and changes nothing"""
        quote = self.create(DocumentType.QUOTE)
        with self.assertRaises(IllegalTransitionError):
            documents.set_status(self.tenant, quote.pk, DocumentStatus.ACCEPTED)
        self.assertEqual(self.reload(quote).status, DocumentStatus.DRAFT)

    def test_paid_and_converted_are_not_manual(self):
        """Test that Paid and Converted need a payment or a conversion"""
        invoice = self.sent_invoice()
        with self.assertRaises(IllegalTransitionError):
            documents.set_status(self.tenant, invoice.pk, DocumentStatus.PAID)
        quote = self.accepted_quote()
        with self.assertRaises(IllegalTransitionError):
            documents.set_status(self.tenant, quote.pk, DocumentStatus.CONVERTED)

    def test_draft_without_lines_cannot_be_sent(self):
        """Test that empty drafts stay drafts"""
        quote = self.create(DocumentType.QUOTE, lines=[])
        with self.assertRaises(InvalidDocumentError):
            documents.set_status(self.tenant, quote.pk, DocumentStatus.SENT)

    def test_cancel(self):
        """Test cancelling a draft"""
        quote = self.create(DocumentType.QUOTE)
        cancelled = documents.cancel_document(self.tenant, quote.pk)
        self.assertEqual(cancelled.status, DocumentStatus.CANCELLED)
        self.assertIsNotNone(cancelled.cancelled_at)
        with self.assertRaises(IllegalTransitionError):
            documents.cancel_document(self.tenant, quote.pk)

    def test_cancel_through_set_status(self):
        """Test that a Cancelled status change uses the cancel command"""
        invoice = self.sent_invoice()
        cancelled = documents.set_status(self.tenant, invoice.pk, DocumentStatus.CANCELLED)
        self.assertEqual(cancelled.status, DocumentStatus.CANCELLED)

    def test_cancel_with_payments(self):
        """Test that money must be reversed before cancelling"""
        invoice = self.sent_invoice()
        ledger.record_payment(self.tenant, invoice.pk, '100.00', 'Cash')
        with self.assertRaises(CancelWithPaymentsError):
            documents.cancel_document(self.tenant, invoice.pk)
        self.assertEqual(self.reload(invoice).status, DocumentStatus.SENT)

    def test_duplicate(self):
        """Test copying a converted quote into a fresh draft"""
        quote = self.accepted_quote()
        conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        copy = documents.duplicate_document(self.tenant, quote.pk, document_date=DOC_DATE)
        self.assertNotEqual(copy.number, quote.number)
        self.assertEqual(copy.status, DocumentStatus.DRAFT)
        self.assertIsNone(copy.source_document_id)
        self.assertEqual(copy.total_amount, quote.total_amount)
        self.assertEqual(copy.lines.count(), 2)

    def test_duplicate_tax_invoice_receipt_is_rejected(self):
        """Test that paid-on-issue documents cannot be duplicated"""
        tir = self.create(DocumentType.TAX_INVOICE_RECEIPT, payment_method='Cash')
        with self.assertRaises(InvalidDocumentError):
            documents.duplicate_document(self.tenant, tir.pk)

    def test_delete_draft(self):
        """Test deleting a draft"""
        quote = self.create(DocumentType.QUOTE)
        documents.delete_document(self.tenant, quote.pk)
        with self.assertRaises(NotFoundError):
            documents.get_document(self.tenant, quote.pk)

    def test_delete_sent_document(self):
        """Test that only drafts can be deleted"""
        invoice = self.sent_invoice()
        with self.assertRaises(IllegalTransitionError) as ctx:
            documents.delete_document(self.tenant, invoice.pk)
        self.assertEqual(ctx.exception.details['to'], 'Deleted')

    def test_other_company_cannot_see_document(self):
        """Test tenant isolation"""
        quote = self.create(DocumentType.QUOTE)
        other_tenant = TestDataFactory.tenant(TestDataFactory.create_company())
        with self.assertRaises(NotFoundError):
            documents.get_document(other_tenant, quote.pk)
        with self.assertRaises(NotFoundError):
            documents.set_status(other_tenant, quote.pk, DocumentStatus.SENT)

    def test_bad_document_id(self):
        """Test that malformed ids are not found"""
        with self.assertRaises(NotFoundError):
            documents.get_document(self.tenant, 'not-a-uuid')

    def test_mark_overdue_invoices(self):
        """Test that sent invoices past due move to Overdue"""
        invoice = self.sent_invoice()
        draft = self.create(DocumentType.INVOICE)
        moved = documents.mark_overdue_invoices(self.tenant, today=invoice.due_date + timedelta(days=1))
        self.assertEqual(moved, [invoice.number])
        self.assertEqual(self.reload(invoice).status, DocumentStatus.OVERDUE)
        self.assertEqual(self.reload(draft).status, DocumentStatus.DRAFT)

    def test_mark_overdue_not_yet_due(self):
        """Test that invoices on their due date are left alone"""
        invoice = self.sent_invoice()
        self.assertEqual(documents.mark_overdue_invoices(self.tenant, today=invoice.due_date), [])

    def test_provenance_chain(self):
        """Test that the chain runs from the oldest ancestor"""
        quote = self.accepted_quote()
        order = conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        invoice = conversion.convert(self.tenant, order.pk, DocumentType.INVOICE)
        chain = documents.provenance_chain(self.tenant, invoice.pk)
        self.assertEqual([doc.pk for doc in chain], [quote.pk, order.pk, invoice.pk])
        derived = documents.derived_documents(self.tenant, quote.pk)
        self.assertEqual([doc.pk for doc in derived], [order.pk])


class ConversionTests(SalesTestMixin, TestCase):
    """Test document conversion"""

    def test_quote_to_sales_order(self):
        """Test converting an accepted quote"""
        quote = self.accepted_quote()
        order = conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        self.assertEqual(order.document_type, DocumentType.SALES_ORDER)
        self.assertEqual(order.status, DocumentStatus.CONFIRMED)
        self.assertEqual(order.source_document_id, quote.pk)
        self.assertEqual(order.source_document_type, DocumentType.QUOTE)
        self.assertEqual(order.total_amount, quote.total_amount)
        self.assertEqual(order.customer_id, quote.customer_id)

        source_lines = list(quote.lines.values_list('item_id', 'quantity', 'unit_price', 'discount_percent', 'tax_rate'))
        target_lines = list(order.lines.values_list('item_id', 'quantity', 'unit_price', 'discount_percent', 'tax_rate'))
        self.assertEqual(source_lines, target_lines)
        self.assertEqual(self.reload(quote).status, DocumentStatus.CONVERTED)

    def test_reconverting_a_quote_fails(self):
        """Test that a converted quote cannot be converted again"""
        quote = self.accepted_quote()
        order = conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        with self.assertRaises(AlreadyConvertedError) as ctx:
            conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        self.assertEqual(ctx.exception.details['targetId'], order.pk)
        self.assertEqual(SalesDocument.objects.filter(document_type=DocumentType.SALES_ORDER).count(), 1)

    def test_sent_quote_can_be_converted(self):
        """Test conversion straight from Sent"""
        quote = self.create(DocumentType.QUOTE)
        documents.set_status(self.tenant, quote.pk, DocumentStatus.SENT)
        conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        self.assertEqual(self.reload(quote).status, DocumentStatus.CONVERTED)

    def test_draft_quote_cannot_be_converted(self):
        """Test the status guard"""
        quote = self.create(DocumentType.QUOTE)
        with self.assertRaises(ConversionNotAllowedError):
            conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        self.assertEqual(self.reload(quote).status, DocumentStatus.DRAFT)

    def test_unsupported_pair(self):
        """Test that quotes cannot become invoices directly"""
        quote = self.accepted_quote()
        with self.assertRaises(ConversionNotAllowedError):
            conversion.convert(self.tenant, quote.pk, DocumentType.INVOICE)

    def test_unknown_target(self):
        """Test unknown target types"""
        quote = self.accepted_quote()
        with self.assertRaises(InvalidDocumentError):
            conversion.convert(self.tenant, quote.pk, 'Proforma')

    def test_sales_order_conversions_are_additive(self):
        """Test that delivery notes and invoices leave the order open"""
        order = conversion.convert(self.tenant, self.accepted_quote().pk, DocumentType.SALES_ORDER)
        note = conversion.convert(self.tenant, order.pk, DocumentType.DELIVERY_NOTE)
        invoice = conversion.convert(self.tenant, order.pk, DocumentType.INVOICE)
        self.assertEqual(self.reload(order).status, DocumentStatus.CONFIRMED)
        self.assertEqual(note.status, DocumentStatus.DRAFT)
        self.assertEqual(invoice.status, DocumentStatus.DRAFT)
        self.assertEqual(invoice.due_date, invoice.document_date + timedelta(days=30))
        with self.assertRaises(AlreadyConvertedError):
            conversion.convert(self.tenant, order.pk, DocumentType.DELIVERY_NOTE)

    def test_cancelled_child_allows_new_conversion(self):
        """Test that a cancelled delivery note can be replaced"""
        order = conversion.convert(self.tenant, self.accepted_quote().pk, DocumentType.SALES_ORDER)
        note = conversion.convert(self.tenant, order.pk, DocumentType.DELIVERY_NOTE)
        documents.cancel_document(self.tenant, note.pk)
        replacement = conversion.convert(self.tenant, order.pk, DocumentType.DELIVERY_NOTE)
        self.assertNotEqual(replacement.pk, note.pk)

    def test_delivery_note_to_invoice(self):
        """Test invoicing a delivered note"""
        order = conversion.convert(self.tenant, self.accepted_quote().pk, DocumentType.SALES_ORDER)
        note = conversion.convert(self.tenant, order.pk, DocumentType.DELIVERY_NOTE)
        with self.assertRaises(ConversionNotAllowedError):
            conversion.convert(self.tenant, note.pk, DocumentType.INVOICE)
        for next_status in (DocumentStatus.PREPARED, DocumentStatus.IN_TRANSIT, DocumentStatus.DELIVERED):
            documents.set_status(self.tenant, note.pk, next_status)
        invoice = conversion.convert(self.tenant, note.pk, DocumentType.INVOICE)
        self.assertEqual(invoice.source_document_id, note.pk)
        self.assertEqual(invoice.total_amount, note.total_amount)

    def test_invoice_to_receipt(self):
        """Test that converting to a receipt generates one from payments"""
        invoice = self.sent_invoice()
        ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        receipt = conversion.convert(self.tenant, invoice.pk, DocumentType.RECEIPT)
        self.assertEqual(receipt.document_type, DocumentType.RECEIPT)
        self.assertEqual(receipt.total_amount, Decimal('300.00'))
        self.assertEqual(receipt.source_document_id, invoice.pk)

    def test_draft_invoice_to_receipt(self):
        """Test that draft invoices cannot be receipted"""
        invoice = self.create(DocumentType.INVOICE)
        with self.assertRaises(ConversionNotAllowedError):
            conversion.convert(self.tenant, invoice.pk, DocumentType.RECEIPT)

    def test_convert_during_edit_is_refused(self):
        """Test that a conversion does not wait for a running line edit"""
        quote = self.accepted_quote()
        cache.add(lock_key(quote.pk), f'{EDIT}:other', 30)
        with self.assertRaises(DocumentLockedError):
            conversion.convert(self.tenant, quote.pk, DocumentType.SALES_ORDER)
        self.assertEqual(self.reload(quote).status, DocumentStatus.ACCEPTED)

    def test_conversion_is_audited(self):
        """Test the conversion audit entry"""
        order = conversion.convert(self.tenant, self.accepted_quote().pk, DocumentType.SALES_ORDER)
        self.assertTrue(AuditLog.objects.filter(action='document_convert', object_reference=order.number).exists())


class PaymentLedgerTests(SalesTestMixin, TestCase):
    """Test payments, reversals and receipts"""

    def test_overpayment_is_rejected(self):
        """Test that a payment larger than the balance leaves the document unchanged"""
        invoice = self.sent_invoice('1000.00')
        ledger.record_payment(self.tenant, invoice.pk, '800.00', 'Cash')
        with self.assertRaises(OverpaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        invoice = self.reload(invoice)
        self.assertEqual(invoice.paid_amount, Decimal('800.00'))
        self.assertEqual(invoice.payments.count(), 1)

    def test_full_payment_marks_paid(self):
        """Test that settling the balance moves the invoice to Paid"""
        invoice = self.sent_invoice('1000.00')
        ledger.record_payment(self.tenant, invoice.pk, '800.00', 'Cash')
        ledger.record_payment(self.tenant, invoice.pk, '200.00', 'Cash')
        invoice = self.reload(invoice)
        self.assertEqual(invoice.paid_amount, Decimal('1000.00'))
        self.assertEqual(invoice.status, DocumentStatus.PAID)
        self.assertTrue(invoice.is_fully_paid)

    def test_partial_payment_keeps_status(self):
        """Test that an overdue invoice stays overdue after a partial payment"""
        invoice = self.sent_invoice('1000.00')
        documents.set_status(self.tenant, invoice.pk, DocumentStatus.OVERDUE)
        payment = ledger.record_payment(self.tenant, invoice.pk, '250.50', 'BankTransfer', reference_number='TX-9')
        invoice = self.reload(invoice)
        self.assertEqual(invoice.status, DocumentStatus.OVERDUE)
        self.assertEqual(invoice.remaining_amount, Decimal('749.50'))
        self.assertEqual(payment.reference_number, 'TX-9')

    def test_paying_a_paid_invoice(self):
        """Test that nothing more can be paid on a settled invoice"""
        invoice = self.sent_invoice('100.00')
        ledger.record_payment(self.tenant, invoice.pk, '100.00', 'Cash')
        with self.assertRaises(OverpaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '1.00', 'Cash')

    def test_draft_invoice_does_not_accept_payments(self):
        """Test the payable-status guard"""
        invoice = self.create(DocumentType.INVOICE)
        with self.assertRaises(InvalidPaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '10.00', 'Cash')

    def test_overpayment_checked_before_status(self):
        """Test that an oversized payment on a draft reports the overpayment"""
        invoice = self.create(DocumentType.INVOICE)
        with self.assertRaises(OverpaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '999999999.00', 'Cash')
        self.assertEqual(self.reload(invoice).payments.count(), 0)

    def test_quote_does_not_accept_payments(self):
        """Test that only invoices take payments"""
        quote = self.accepted_quote()
        with self.assertRaises(InvalidPaymentError):
            ledger.record_payment(self.tenant, quote.pk, '10.00', 'Cash')

    def test_invalid_amounts(self):
        """Test amount validation"""
        invoice = self.sent_invoice()
        for amount in ('0', '-5', '10.005', 'abc', None, 'Infinity', '1e30'):
            with self.subTest(amount=amount):
                with self.assertRaises(InvalidPaymentError):
                    ledger.record_payment(self.tenant, invoice.pk, amount, 'Cash')
        with self.assertRaises(InvalidPaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '10.00', 'Bitcoin')
        self.assertFalse(PaymentRecord.objects.exists())

    def test_parse_amount(self):
        """Test accepted amount formats"""
        self.assertEqual(ledger.parse_amount('10'), Decimal('10.00'))
        self.assertEqual(ledger.parse_amount(Decimal('10.50')), Decimal('10.50'))
        self.assertEqual(ledger.parse_amount('10.500'), Decimal('10.50'))

    def test_reverse_payment(self):
        """Test compensating a payment"""
        invoice = self.sent_invoice()
        payment = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        reversal = ledger.reverse_payment(self.tenant, payment.pk)
        self.assertEqual(reversal.amount, Decimal('-300.00'))
        self.assertEqual(reversal.reverses_id, payment.pk)
        invoice = self.reload(invoice)
        self.assertEqual(invoice.paid_amount, Decimal('0.00'))
        self.assertEqual(invoice.payments.count(), 2)

    def test_reverse_twice(self):
        """Test that a payment is reversed at most once and reversals are final"""
        invoice = self.sent_invoice()
        payment = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        reversal = ledger.reverse_payment(self.tenant, payment.pk)
        with self.assertRaises(InvalidPaymentError):
            ledger.reverse_payment(self.tenant, payment.pk)
        with self.assertRaises(InvalidPaymentError):
            ledger.reverse_payment(self.tenant, reversal.pk)

    def test_reverse_on_paid_invoice(self):
        """Test that a paid invoice keeps its payments"""
        invoice = self.sent_invoice('100.00')
        payment = ledger.record_payment(self.tenant, invoice.pk, '100.00', 'Cash')
        with self.assertRaises(InvalidPaymentError):
            ledger.reverse_payment(self.tenant, payment.pk)

    def test_reverse_unknown_payment(self):
        """Test reversing a payment of another company"""
        with self.assertRaises(NotFoundError):
            ledger.reverse_payment(self.tenant, 999999)

    def test_cancel_after_reversal(self):
        """Test that reversing every payment allows cancelling"""
        invoice = self.sent_invoice()
        payment = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        ledger.reverse_payment(self.tenant, payment.pk)
        cancelled = documents.cancel_document(self.tenant, invoice.pk)
        self.assertEqual(cancelled.status, DocumentStatus.CANCELLED)

    def test_payment_records_are_immutable(self):
        """Test that stored payments cannot be edited"""
        invoice = self.sent_invoice()
        payment = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        payment.amount = Decimal('1.00')
        with self.assertRaises(InvalidDocumentError):
            payment.save()

    def test_generate_receipt(self):
        """Test that a receipt covers every unreceipted payment"""
        invoice = self.sent_invoice('1000.00')
        first = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        second = ledger.record_payment(self.tenant, invoice.pk, '200.00', 'Check')
        receipt = ledger.generate_receipt(self.tenant, invoice.pk, date=DOC_DATE)
        self.assertEqual(receipt.number, 'RCP-2025-0001')
        self.assertEqual(receipt.status, DocumentStatus.ISSUED)
        self.assertEqual(receipt.total_amount, Decimal('500.00'))
        self.assertEqual(receipt.paid_amount, Decimal('500.00'))
        self.assertEqual(receipt.source_document_id, invoice.pk)
        self.assertEqual(set(receipt.covered_payments.values_list('pk', flat=True)), {first.pk, second.pk})
        self.assertEqual([p.pk for p in ledger.list_payments(self.tenant, receipt.pk)], [first.pk, second.pk])

    def test_receipt_only_covers_new_payments(self):
        """Test that a second receipt covers only later payments"""
        invoice = self.sent_invoice('1000.00')
        ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        ledger.generate_receipt(self.tenant, invoice.pk)
        with self.assertRaises(NothingToReceiptError):
            ledger.generate_receipt(self.tenant, invoice.pk)
        ledger.record_payment(self.tenant, invoice.pk, '100.00', 'Cash')
        second = ledger.generate_receipt(self.tenant, invoice.pk)
        self.assertEqual(second.total_amount, Decimal('100.00'))

    def test_receipt_without_payments(self):
        """Test that an unpaid invoice has nothing to receipt"""
        invoice = self.sent_invoice()
        with self.assertRaises(NothingToReceiptError):
            ledger.generate_receipt(self.tenant, invoice.pk)

    def test_receipt_for_quote(self):
        """Test that only invoices can be receipted"""
        quote = self.accepted_quote()
        with self.assertRaises(ConversionNotAllowedError):
            ledger.generate_receipt(self.tenant, quote.pk)

    def test_receipt_for_tax_invoice_receipt(self):
        """Test receipting the payment a tax invoice receipt was issued with"""
        tir = self.create(DocumentType.TAX_INVOICE_RECEIPT, payment_method='CreditCard')
        receipt = ledger.generate_receipt(self.tenant, tir.pk)
        self.assertEqual(receipt.total_amount, tir.total_amount)

    def test_receipted_payment_cannot_be_reversed(self):
        """Test that a receipt must be cancelled before its payments are reversed"""
        invoice = self.sent_invoice()
        payment = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        receipt = ledger.generate_receipt(self.tenant, invoice.pk)
        with self.assertRaises(InvalidPaymentError):
            ledger.reverse_payment(self.tenant, payment.pk)

        documents.cancel_document(self.tenant, receipt.pk)
        self.assertIsNone(PaymentRecord.objects.get(pk=payment.pk).receipt_id)
        ledger.reverse_payment(self.tenant, payment.pk)
        self.assertEqual(self.reload(invoice).paid_amount, Decimal('0.00'))

    def test_cancelled_receipt_releases_payments(self):
        """Test that payments can be receipted again after a receipt is cancelled"""
        invoice = self.sent_invoice()
        ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        receipt = ledger.generate_receipt(self.tenant, invoice.pk)
        documents.cancel_document(self.tenant, receipt.pk)
        replacement = ledger.generate_receipt(self.tenant, invoice.pk)
        self.assertEqual(replacement.total_amount, Decimal('300.00'))

    def test_purchase_invoice_payment(self):
        """Test paying an approved purchase invoice"""
        supplier = TestDataFactory.create_supplier(self.company)
        invoice = documents.create_document(
            self.tenant, DocumentType.PURCHASE_INVOICE, supplier.pk,
            lines=[TestDataFactory.line(self.item, tax_rate='0')], document_date=DOC_DATE,
        )
        with self.assertRaises(InvalidPaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '100.00', 'BankTransfer')
        documents.set_status(self.tenant, invoice.pk, DocumentStatus.RECEIVED)
        documents.set_status(self.tenant, invoice.pk, DocumentStatus.APPROVED)
        ledger.record_payment(self.tenant, invoice.pk, '100.00', 'BankTransfer')
        self.assertEqual(self.reload(invoice).status, DocumentStatus.PAID)

    def test_payment_summary(self):
        """Test the payment panel totals"""
        invoice = self.sent_invoice('1000.00')
        payment = ledger.record_payment(self.tenant, invoice.pk, '300.00', 'Cash')
        ledger.record_payment(self.tenant, invoice.pk, '200.00', 'Cash')
        ledger.reverse_payment(self.tenant, payment.pk)
        summary = ledger.payment_summary(self.reload(invoice))
        self.assertEqual(summary['received'], Decimal('500.00'))
        self.assertEqual(summary['reversed'], Decimal('300.00'))
        self.assertEqual(summary['paidAmount'], Decimal('200.00'))
        self.assertEqual(summary['remainingAmount'], Decimal('800.00'))
        self.assertEqual(summary['unreceiptedAmount'], Decimal('200.00'))

    def test_paid_amount_matches_records(self):
        """Test that paid amount always equals the sum of payment records"""
        invoice = self.sent_invoice('1000.00')
        payment = ledger.record_payment(self.tenant, invoice.pk, '120.00', 'Cash')
        ledger.record_payment(self.tenant, invoice.pk, '80.00', 'Cash')
        ledger.reverse_payment(self.tenant, payment.pk)
        invoice = self.reload(invoice)
        total = sum((p.amount for p in invoice.payments.all()), Decimal('0.00'))
        self.assertEqual(invoice.paid_amount, total)


class DocumentLockTests(SalesTestMixin, TestCase):
    """Test per-document command locks"""

    def test_lock_is_released(self):
        """Test that the lock is gone after the block"""
        quote = self.create(DocumentType.QUOTE)
        with document_lock(quote.pk, EDIT):
            self.assertEqual(held_operation(quote.pk), EDIT)
        self.assertIsNone(held_operation(quote.pk))

    def test_lock_key_ignores_id_spelling(self):
        """Test that the same document always maps to one lock"""
        quote = self.create(DocumentType.QUOTE)
        self.assertEqual(lock_key(str(quote.pk).upper()), lock_key(quote.pk))
        self.assertEqual(lock_key(quote.pk.hex), lock_key(quote.pk))
        with document_lock(quote.pk, CONVERT):
            with self.assertRaises(DocumentLockedError):
                documents.update_lines(
                    self.tenant, str(quote.pk).upper(), [TestDataFactory.line(self.item, quantity='9')]
                )
        self.assertEqual(self.reload(quote).total_amount, Decimal('100.00'))

    def test_lock_is_released_on_error(self):
        """Test that a failing command does not leave the document locked"""
        invoice = self.sent_invoice()
        with self.assertRaises(InvalidPaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '-1', 'Cash')
        with self.assertRaises(OverpaymentError):
            ledger.record_payment(self.tenant, invoice.pk, '5000.00', 'Cash')
        self.assertIsNone(held_operation(invoice.pk))

    def test_edit_during_conversion_is_refused(self):
        """Test that a line edit fails at once while a conversion runs"""
        quote = self.create(DocumentType.QUOTE)
        cache.add(lock_key(quote.pk), f'{CONVERT}:other', 30)
        with self.assertRaises(DocumentLockedError) as ctx:
            documents.update_lines(self.tenant, quote.pk, [TestDataFactory.line(self.item, quantity='9')])
        self.assertEqual(ctx.exception.details['heldBy'], CONVERT)
        self.assertEqual(self.reload(quote).total_amount, Decimal('100.00'))

    @override_settings(SALES_LOCK_WAIT=0)
    def test_busy_document_times_out(self):
        """Test that other contention gives up with a conflict"""
        invoice = self.sent_invoice()
        cache.add(lock_key(invoice.pk), 'payment:other', 30)
        with self.assertRaises(ConcurrencyConflictError):
            ledger.record_payment(self.tenant, invoice.pk, '10.00', 'Cash')
        self.assertEqual(self.reload(invoice).paid_amount, Decimal('0.00'))

    def test_foreign_lock_is_not_released(self):
        """Test that an expired lock taken over by another command survives"""
        quote = self.create(DocumentType.QUOTE)
        with document_lock(quote.pk, EDIT):
            cache.set(lock_key(quote.pk), 'payment:someone-else', 30)
        self.assertEqual(held_operation(quote.pk), 'payment')


class SalesDocumentAPITests(SalesTestMixin, TestCase):
    """Test the document endpoints"""

    def setUp(self):
        super().setUp()
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user, self.company)

    def create_invoice(self):
        response = self.client.post('/api/v1/documents/', {
            'type': 'Invoice',
            'customerId': self.customer.pk,
            'documentDate': '2025-03-10',
            'lines': [{'itemId': self.item.pk, 'quantity': '2', 'unitPrice': '50', 'taxRate': '17'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        return response.data

    def test_create_document(self):
        """Test creating an invoice"""
        data = self.create_invoice()
        self.assertEqual(data['type'], 'Invoice')
        self.assertEqual(data['number'], 'INV-2025-0001')
        self.assertEqual(data['status'], 'Draft')
        self.assertEqual(data['subTotal'], '100.00')
        self.assertEqual(data['vatAmount'], '17.00')
        self.assertEqual(data['totalAmount'], '117.00')
        self.assertEqual(data['dueDate'], '2025-04-09')
        self.assertEqual(len(data['lines']), 1)
        self.assertTrue(data['canEdit'])
        self.assertFalse(data['canGenerateReceipt'])

    def test_create_with_invalid_line(self):
        """Test that line errors come back as InvalidLine"""
        response = self.client.post('/api/v1/documents/', {
            'type': 'Quote',
            'customerId': self.customer.pk,
            'lines': [{'itemId': self.item.pk, 'quantity': '-1'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidLine')
        self.assertEqual(response.data['field'], 'quantity')
        self.assertEqual(response.data['lineNumber'], 1)

    def test_create_with_unknown_references(self):
        """Test that unknown customers and items come back as NotFound"""
        response = self.client.post('/api/v1/documents/', {
            'type': 'Quote',
            'customerId': 999999,
            'lines': [{'itemId': self.item.pk, 'quantity': '1'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')
        self.assertEqual(response.data['resource'], 'Customer')

        response = self.client.post('/api/v1/documents/', {
            'type': 'Quote',
            'customerId': self.customer.pk,
            'lines': [{'itemId': 999999, 'quantity': '1'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')
        self.assertEqual(response.data['resource'], 'Item')
        self.assertFalse(SalesDocument.objects.exists())

    def test_list_documents(self):
        """Test the paginated list"""
        self.create_invoice()
        response = self.client.get('/api/v1/documents/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['number'], 'INV-2025-0001')

    def test_retrieve_document(self):
        """Test fetching one document"""
        data = self.create_invoice()
        response = self.client.get(f"/api/v1/documents/{data['id']}/")
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['number'], data['number'])

    def test_missing_company(self):
        """Test that the company must be given"""
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/documents/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_company_of_someone_else(self):
        """Test that non-members cannot act for a company"""
        other_company = TestDataFactory.create_company()
        self.client.authenticate_user(self.user, other_company)
        response = self.client.get('/api/v1/documents/')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')

    def test_unauthenticated(self):
        """Test that a token is required"""
        self.client.logout()
        response = self.client.get('/api/v1/documents/')
        self.assertEqual(response.status_code, status.HTTP_401_UNAUTHORIZED)

    def test_status_and_payment_flow(self):
        """Test sending, overpaying and settling an invoice"""
        data = self.create_invoice()
        url = f"/api/v1/documents/{data['id']}"
        response = self.client.post(f'{url}/status/', {'status': 'Sent', 'version': data['version']}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'Sent')

        response = self.client.post(f'{url}/payments/', {'amount': '200.00', 'method': 'Cash'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'Overpayment')

        response = self.client.post(f'{url}/payments/', {'amount': '117.00', 'method': 'Cash'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['payment']['amount'], '117.00')
        self.assertEqual(response.data['document']['status'], 'Paid')
        self.assertTrue(response.data['document']['canGenerateReceipt'])

        response = self.client.post(f'{url}/receipt/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['type'], 'Receipt')
        self.assertEqual(response.data['totalAmount'], '117.00')

        response = self.client.get(f'{url}/payments/')
        self.assertEqual(len(response.data), 1)
        self.assertIsNotNone(response.data[0]['receiptId'])

    def test_illegal_status_change(self):
        """Test the IllegalTransition error body"""
        data = self.create_invoice()
        response = self.client.post(f"/api/v1/documents/{data['id']}/status/", {'status': 'Paid'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'IllegalTransition')
        self.assertEqual(response.data['from'], 'Draft')
        self.assertEqual(response.data['to'], 'Paid')

    def test_stale_version(self):
        """Test that a stale version is a conflict"""
        data = self.create_invoice()
        response = self.client.post(f"/api/v1/documents/{data['id']}/status/", {'status': 'Sent', 'version': 99}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'ConcurrencyConflict')

    def test_replace_lines(self):
        """Test the line replacement endpoint"""
        data = self.create_invoice()
        response = self.client.put(f"/api/v1/documents/{data['id']}/lines/", {
            'lines': [{'itemId': self.item.pk, 'quantity': '1', 'taxRate': '0'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['totalAmount'], '100.00')

    def test_patch_immutable_field(self):
        """Test that patching the currency is rejected"""
        data = self.create_invoice()
        response = self.client.patch(f"/api/v1/documents/{data['id']}/", {'currency': 'USD'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        self.assertEqual(response.data['error'], 'InvalidDocument')

    def test_patch_notes(self):
        """Test a header update"""
        data = self.create_invoice()
        response = self.client.patch(f"/api/v1/documents/{data['id']}/", {'notes': 'Net 30'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['notes'], 'Net 30')

    def test_convert_endpoint(self):
        """Test converting through the API and reading the chain"""
        quote = self.accepted_quote()
        response = self.client.post(f'/api/v1/documents/{quote.pk}/convert/', {'targetType': 'SalesOrder'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['sourceDocumentId'], str(quote.pk))
        self.assertEqual(response.data['sourceDocumentNumber'], quote.number)

        response = self.client.post(f'/api/v1/documents/{quote.pk}/convert/', {'targetType': 'SalesOrder'}, format='json')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        self.assertEqual(response.data['error'], 'AlreadyConverted')

        response = self.client.get(f'/api/v1/documents/{quote.pk}/chain/')
        self.assertEqual(len(response.data['chain']), 1)
        self.assertEqual(len(response.data['derived']), 1)

    def test_delete_and_cancel(self):
        """Test deleting a draft and cancelling a sent document"""
        draft = self.create_invoice()
        response = self.client.delete(f"/api/v1/documents/{draft['id']}/")
        self.assertEqual(response.status_code, status.HTTP_204_NO_CONTENT)

        invoice = self.sent_invoice()
        response = self.client.delete(f'/api/v1/documents/{invoice.pk}/')
        self.assertEqual(response.status_code, status.HTTP_409_CONFLICT)
        response = self.client.post(f'/api/v1/documents/{invoice.pk}/cancel/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['status'], 'Cancelled')

    def test_reverse_endpoint(self):
        """Test reversing a payment through the API"""
        invoice = self.sent_invoice()
        payment = ledger.record_payment(self.tenant, invoice.pk, '50.00', 'Cash')
        response = self.client.post(f'/api/v1/payments/{payment.pk}/reverse/', {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertEqual(response.data['payment']['amount'], '-50.00')
        self.assertEqual(response.data['document']['paidAmount'], '0.00')

    def test_duplicate_endpoint(self):
        """Test duplicating a document"""
        data = self.create_invoice()
        response = self.client.post(f"/api/v1/documents/{data['id']}/duplicate/", {}, format='json')
        self.assertEqual(response.status_code, status.HTTP_201_CREATED)
        self.assertNotEqual(response.data['number'], data['number'])

    def test_calculate(self):
        """Test the totals preview"""
        response = self.client.post('/api/v1/documents/calculate/', {
            'lines': [{'quantity': '3', 'unitPrice': '100', 'discountPercent': '10', 'taxRate': '17'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['lines'][0]['lineTotal'], '315.90')
        self.assertEqual(response.data['discountAmount'], '30.00')
        self.assertEqual(response.data['totalAmount'], '315.90')

    def test_calculate_applies_document_defaults(self):
        """Test that the preview fills in catalog price and company VAT like a saved document"""
        self.company.vat_rate = Decimal('18.00')
        self.company.save()
        lines = [{'itemId': self.item.pk, 'quantity': '2'}]
        preview = self.client.post('/api/v1/documents/calculate/', {'lines': lines}, format='json')
        self.assertEqual(preview.status_code, status.HTTP_200_OK)
        self.assertEqual(preview.data['subTotal'], '200.00')
        self.assertEqual(preview.data['vatAmount'], '36.00')
        self.assertEqual(preview.data['totalAmount'], '236.00')

        created = self.client.post('/api/v1/documents/', {
            'type': 'Quote', 'customerId': self.customer.pk, 'lines': lines,
        }, format='json')
        self.assertEqual(created.status_code, status.HTTP_201_CREATED)
        self.assertEqual(created.data['totalAmount'], preview.data['totalAmount'])
        self.assertEqual(created.data['vatAmount'], preview.data['vatAmount'])

    def test_calculate_without_tax_rate(self):
        """Test that an item-less preview line still gets the company VAT rate"""
        response = self.client.post('/api/v1/documents/calculate/', {
            'lines': [{'quantity': '1', 'unitPrice': '100'}],
        }, format='json')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['vatAmount'], '17.00')
        self.assertEqual(response.data['totalAmount'], '117.00')

    def test_document_of_other_company_is_not_found(self):
        """Test tenant isolation over the API"""
        other_company = TestDataFactory.create_company(members=[self.user])
        data = self.create_invoice()
        self.client.authenticate_user(self.user, other_company)
        response = self.client.get(f"/api/v1/documents/{data['id']}/")
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)


class MarkOverdueCommandTests(SalesTestMixin, TestCase):
    """Test the mark_overdue_invoices management command"""

    def test_command(self):
        """Test moving a past-due invoice from the command line"""
        invoice = self.sent_invoice()
        out = StringIO()
        call_command('mark_overdue_invoices', '--date', '2025-12-31', '--company', str(self.company.pk), stdout=out)
        self.assertIn(invoice.number, out.getvalue())
        self.assertIn('Marked 1 invoices overdue', out.getvalue())
        self.assertEqual(self.reload(invoice).status, DocumentStatus.OVERDUE)

    def test_bad_date(self):
        """Test date validation"""
        with self.assertRaises(CommandError):
            call_command('mark_overdue_invoices', '--date', '31/12/2025', stdout=StringIO())
