"""
Test suite for the Reports module
Tests: sales document overview filters, pagination, monthly grouping and customer statements
"""
from datetime import date
from decimal import Decimal

from django.core.cache import cache
from django.test import TestCase
from rest_framework import status
from rest_framework.exceptions import ValidationError

from backend.core.test_utils import TestDataFactory, AuthenticatedAPIClient
from backend.reports.queries import customer_statement, group_by_month, list_documents, page_params
from backend.sales import documents, ledger
from backend.sales.choices import DocumentStatus, DocumentType
from backend.sales.exceptions import NotFoundError


class SalesDocumentOverviewTests(TestCase):
    """Test the document overview queries"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.tenant = TestDataFactory.tenant(self.company, self.user)
        self.alice = TestDataFactory.create_customer(self.company, name='Alice Stores')
        self.bob = TestDataFactory.create_customer(self.company, name='Bob Market')
        self.supplier = TestDataFactory.create_supplier(self.company)
        self.item = TestDataFactory.create_item(self.company, sell_price=Decimal('100.00'))

        # January: an invoice for Alice and a cancelled quote for Bob
        self.invoice = self.create(DocumentType.INVOICE, self.alice, date(2025, 1, 15))
        self.quote = self.create(DocumentType.QUOTE, self.bob, date(2025, 1, 20))
        documents.cancel_document(self.tenant, self.quote.pk)
        # February: an order for Bob and a purchase invoice
        self.order = self.create(DocumentType.SALES_ORDER, self.bob, date(2025, 2, 5))
        self.purchase = documents.create_document(
            self.tenant, DocumentType.PURCHASE_INVOICE, self.supplier.pk,
            lines=[TestDataFactory.line(self.item)], document_date=date(2025, 2, 10),
        )

    def tearDown(self):
        cache.clear()

    def create(self, document_type, customer, document_date):
        return documents.create_document(
            self.tenant, document_type, customer.pk,
            lines=[TestDataFactory.line(self.item, quantity='1', tax_rate='17')],
            document_date=document_date,
        )

    def numbers(self, page):
        return [row['number'] for row in page['results']]

    def test_default_list(self):
        """Test newest first and purchase invoices hidden"""
        page = list_documents(self.tenant)
        self.assertEqual(page['count'], 3)
        self.assertEqual(self.numbers(page), [self.order.number, self.quote.number, self.invoice.number])
        self.assertNotIn(self.purchase.number, self.numbers(page))

    def test_summary_fields(self):
        """Test one overview row"""
        page = list_documents(self.tenant, {'type': 'Invoice'})
        row = page['results'][0]
        self.assertEqual(row['id'], str(self.invoice.pk))
        self.assertEqual(row['customerName'], 'Alice Stores')
        self.assertEqual(row['documentDate'], '2025-01-15')
        self.assertEqual(row['totalAmount'], '117.00')
        self.assertEqual(row['remainingAmount'], '117.00')
        self.assertTrue(row['canEdit'])
        self.assertTrue(row['canCancel'])
        self.assertFalse(row['canGenerateReceipt'])

    def test_filter_by_type(self):
        """Test type filters, including several types at once"""
        self.assertEqual(self.numbers(list_documents(self.tenant, {'type': 'Quote'})), [self.quote.number])
        page = list_documents(self.tenant, {'type': ['Quote', 'PurchaseInvoice']})
        self.assertEqual(set(self.numbers(page)), {self.quote.number, self.purchase.number})

    def test_filter_by_status(self):
        """Test the status filter"""
        page = list_documents(self.tenant, {'status': 'Cancelled'})
        self.assertEqual(self.numbers(page), [self.quote.number])

    def test_filter_by_date_range(self):
        """Test inclusive date bounds"""
        page = list_documents(self.tenant, {'dateFrom': '2025-01-15', 'dateTo': '2025-01-31'})
        self.assertEqual(self.numbers(page), [self.quote.number, self.invoice.number])

    def test_filter_by_customer(self):
        """Test the customer filter"""
        page = list_documents(self.tenant, {'customer': self.bob.pk})
        self.assertEqual(self.numbers(page), [self.order.number, self.quote.number])

    def test_search(self):
        """Test search over number and customer name"""
        self.assertEqual(self.numbers(list_documents(self.tenant, {'search': 'alice'})), [self.invoice.number])
        self.assertEqual(self.numbers(list_documents(self.tenant, {'search': self.order.number})), [self.order.number])

    def test_invalid_filter(self):
        """Test that malformed filters are reported"""
        with self.assertRaises(ValidationError):
            list_documents(self.tenant, {'dateFrom': 'yesterday'})
        with self.assertRaises(ValidationError):
            list_documents(self.tenant, {'type': 'CreditNote'})

    def test_pagination(self):
        """Test page slicing"""
        page = list_documents(self.tenant, page=2, page_size=2)
        self.assertEqual(page['count'], 3)
        self.assertEqual(page['total_pages'], 2)
        self.assertEqual(page['page'], 2)
        self.assertEqual(page['previous'], 1)
        self.assertIsNone(page['next'])
        self.assertEqual(self.numbers(page), [self.invoice.number])

    def test_receipt_flag_uses_unreceipted_payments(self):
        """Test that the receipt flag follows unreceipted money"""
        documents.set_status(self.tenant, self.invoice.pk, DocumentStatus.SENT)
        ledger.record_payment(self.tenant, self.invoice.pk, '50.00', 'Cash')
        row = list_documents(self.tenant, {'type': 'Invoice'})['results'][0]
        self.assertTrue(row['canGenerateReceipt'])
        self.assertEqual(row['paidAmount'], '50.00')

        ledger.generate_receipt(self.tenant, self.invoice.pk)
        row = list_documents(self.tenant, {'type': 'Invoice'})['results'][0]
        self.assertFalse(row['canGenerateReceipt'])

    def test_other_company_sees_nothing(self):
        """Test tenant isolation"""
        other_tenant = TestDataFactory.tenant(TestDataFactory.create_company())
        self.assertEqual(list_documents(other_tenant)['count'], 0)
        self.assertEqual(group_by_month(other_tenant), [])

    def test_group_by_month(self):
        """Test monthly grouping with cancelled documents left out of the total"""
        groups = group_by_month(self.tenant)
        self.assertEqual([group['month'] for group in groups], ['2025-02', '2025-01'])
        february, january = groups
        self.assertEqual(february['totalCount'], 1)
        self.assertEqual(february['totalAmount'], '117.00')
        self.assertEqual(january['totalCount'], 2)
        self.assertEqual(january['totalAmount'], '117.00')
        self.assertEqual([row['number'] for row in january['documents']], [self.quote.number, self.invoice.number])

    def test_group_by_month_with_filter(self):
        """Test that grouping applies the same filters"""
        groups = group_by_month(self.tenant, {'type': ['SalesOrder', 'PurchaseInvoice']})
        self.assertEqual(len(groups), 1)
        self.assertEqual(groups[0]['totalCount'], 2)
        self.assertEqual(groups[0]['totalAmount'], '234.00')

    def test_page_params(self):
        """Test query parameter clamping"""
        self.assertEqual(page_params({'page': '3', 'page_size': '10'}), (3, 10))
        self.assertEqual(page_params({'page': 'x', 'limit': '5000'}), (1, 200))
        self.assertEqual(page_params({'page': '-2', 'page_size': '0'}), (1, 1))



class CustomerStatementTests(TestCase):
    """Test the customer statement"""

    def setUp(self):
        cache.clear()
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.tenant = TestDataFactory.tenant(self.company, self.user)
        self.customer = TestDataFactory.create_customer(self.company, name='Alice Stores')
        self.item = TestDataFactory.create_item(self.company, sell_price=Decimal('100.00'))

        # December 2024: 117.00 invoiced, 17.00 paid, so January opens at 100.00
        december = self.issue(date(2024, 12, 15))
        self.pay(december, '17.00', date(2024, 12, 20))
        self.january = self.issue(date(2025, 1, 10))
        self.pay(self.january, '50.00', date(2025, 1, 20))
        self.february = self.issue(date(2025, 2, 5), quantity='2')
        self.pay(self.february, '100.00', date(2025, 2, 10))

        # Left out: a draft, a cancelled invoice and a quote
        self.create(DocumentType.INVOICE, date(2025, 2, 6))
        cancelled = self.create(DocumentType.INVOICE, date(2025, 2, 7))
        documents.cancel_document(self.tenant, cancelled.pk)
        self.create(DocumentType.QUOTE, date(2025, 2, 8))

    def tearDown(self):
        cache.clear()

    def create(self, document_type, document_date, quantity='1', unit_price=None):
        return documents.create_document(
            self.tenant, document_type, self.customer.pk,
            lines=[TestDataFactory.line(self.item, quantity=quantity, unit_price=unit_price, tax_rate='17')],
            document_date=document_date,
        )

    def issue(self, document_date, quantity='1', unit_price=None):
        invoice = self.create(DocumentType.INVOICE, document_date, quantity=quantity, unit_price=unit_price)
        return documents.set_status(self.tenant, invoice.pk, DocumentStatus.SENT)

    def pay(self, invoice, amount, paid_on):
        return ledger.record_payment(self.tenant, invoice.pk, amount, 'Cash', date=paid_on)

    def statement(self, **kwargs):
        return customer_statement(self.tenant, self.customer.pk, date(2025, 1, 1), date(2025, 2, 28), **kwargs)

    def test_balances(self):
        """Test opening balance, running balance and closing balance"""
        statement = self.statement()
        self.assertEqual(statement['customer']['name'], 'Alice Stores')
        self.assertEqual(statement['dateFrom'], '2025-01-01')
        self.assertEqual(statement['openingBalance'], '100.00')
        self.assertEqual(statement['closingBalance'], '301.00')

        rows = statement['transactions']
        self.assertEqual(
            [(row['date'], row['transactionType'], row['debit'], row['credit'], row['balance']) for row in rows],
            [
                ('2025-01-10', 'Invoice', '117.00', '0.00', '217.00'),
                ('2025-01-20', 'Payment', '0.00', '50.00', '167.00'),
                ('2025-02-05', 'Invoice', '234.00', '0.00', '401.00'),
                ('2025-02-10', 'Payment', '0.00', '100.00', '301.00'),
            ],
        )
        self.assertEqual(rows[0]['documentNumber'], self.january.number)
        self.assertEqual(rows[1]['documentNumber'], self.january.number)
        self.assertEqual(rows[1]['paymentMethod'], 'Cash')

    def test_summary(self):
        """Test totals, average and monthly activity"""
        summary = self.statement()['summary']
        self.assertEqual(summary['totalDebits'], '351.00')
        self.assertEqual(summary['totalCredits'], '150.00')
        self.assertEqual(summary['netChange'], '201.00')
        self.assertEqual(summary['totalTransactions'], 4)
        self.assertEqual(summary['averageTransactionAmount'], '125.25')
        self.assertEqual(summary['monthlyActivity'], [
            {'month': '2025-01', 'totalDebits': '117.00', 'totalCredits': '50.00',
             'netAmount': '67.00', 'transactionCount': 2},
            {'month': '2025-02', 'totalDebits': '234.00', 'totalCredits': '100.00',
             'netAmount': '134.00', 'transactionCount': 2},
        ])

    def test_invoice_before_payment_on_same_day(self):
        """Test that a same-day invoice sorts before its payment"""
        invoice = self.issue(date(2025, 2, 20))
        self.pay(invoice, '117.00', date(2025, 2, 20))
        rows = self.statement()['transactions'][-2:]
        self.assertEqual([row['transactionType'] for row in rows], ['Invoice', 'Payment'])
        self.assertEqual(rows[-1]['balance'], '301.00')

    def test_zero_transactions(self):
        """Test the zero amount switch"""
        self.issue(date(2025, 2, 15), unit_price='0')
        self.assertEqual(self.statement()['summary']['totalTransactions'], 5)
        self.assertEqual(self.statement(include_zero=False)['summary']['totalTransactions'], 4)

    def test_empty_period(self):
        """Test that a quiet period closes at its opening balance"""
        statement = customer_statement(self.tenant, self.customer.pk, date(2025, 6, 1), date(2025, 6, 30))
        self.assertEqual(statement['openingBalance'], '301.00')
        self.assertEqual(statement['closingBalance'], '301.00')
        self.assertEqual(statement['transactions'], [])
        self.assertEqual(statement['summary']['averageTransactionAmount'], '0.00')

    def test_invalid_dates(self):
        """Test reversed and overlong date ranges"""
        with self.assertRaises(ValidationError):
            customer_statement(self.tenant, self.customer.pk, date(2025, 2, 1), date(2025, 1, 1))
        with self.assertRaises(ValidationError):
            customer_statement(self.tenant, self.customer.pk, date(2022, 1, 1), date(2025, 1, 1))

    def test_unknown_customer(self):
        """Test unknown and foreign customers"""
        foreign = TestDataFactory.create_customer(TestDataFactory.create_company())
        for customer_id in (999999, foreign.pk, 'abc'):
            with self.assertRaises(NotFoundError) as ctx:
                customer_statement(self.tenant, customer_id, date(2025, 1, 1), date(2025, 1, 31))
            self.assertEqual(ctx.exception.details['resource'], 'Customer')


class ReportsAPITests(TestCase):
    """Test report endpoints"""

    def setUp(self):
        self.user = TestDataFactory.create_user()
        self.company = TestDataFactory.create_company(members=[self.user])
        self.tenant = TestDataFactory.tenant(self.company, self.user)
        self.customer = TestDataFactory.create_customer(self.company)
        item = TestDataFactory.create_item(self.company)
        self.invoice = documents.create_document(
            self.tenant, DocumentType.INVOICE, self.customer.pk,
            lines=[TestDataFactory.line(item)], document_date=date(2025, 5, 2),
        )
        self.client = AuthenticatedAPIClient()
        self.client.authenticate_user(self.user, self.company)

    def test_sales_documents(self):
        """Test the overview endpoint"""
        response = self.client.get('/api/v1/reports/sales-documents/?type=Invoice&page_size=10')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['page_size'], 10)
        self.assertEqual(response.data['results'][0]['number'], self.invoice.number)

    def test_sales_documents_with_date_range(self):
        """Test the overview endpoint with a date range"""
        response = self.client.get('/api/v1/reports/sales-documents/?dateFrom=2025-06-01&dateTo=2025-12-31')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 0)

    def test_invalid_filter(self):
        """Test that a bad filter value is a 400"""
        response = self.client.get('/api/v1/reports/sales-documents/?status=Lost')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_monthly(self):
        """Test the monthly endpoint"""
        response = self.client.get('/api/v1/reports/sales-documents/monthly/')
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['count'], 1)
        self.assertEqual(response.data['results'][0]['month'], '2025-05')
        self.assertEqual(response.data['results'][0]['totalAmount'], '117.00')

    def test_requires_company(self):
        """Test that reports are tenant scoped"""
        self.client.authenticate_user(self.user)
        response = self.client.get('/api/v1/reports/sales-documents/')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customer_statement(self):
        """Test the customer statement endpoint"""
        documents.set_status(self.tenant, self.invoice.pk, DocumentStatus.SENT)
        url = f'/api/v1/reports/customer-statement/{self.customer.pk}/?dateFrom=2025-05-01&dateTo=2025-05-31'
        response = self.client.get(url)
        self.assertEqual(response.status_code, status.HTTP_200_OK)
        self.assertEqual(response.data['openingBalance'], '0.00')
        self.assertEqual(response.data['closingBalance'], '117.00')
        self.assertEqual(response.data['transactions'][0]['documentNumber'], self.invoice.number)

    def test_customer_statement_bad_dates(self):
        """Test that missing or reversed dates are a 400"""
        base = f'/api/v1/reports/customer-statement/{self.customer.pk}/'
        response = self.client.get(f'{base}?dateFrom=2025-05-01')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)
        response = self.client.get(f'{base}?dateFrom=2025-05-31&dateTo=2025-05-01')
        self.assertEqual(response.status_code, status.HTTP_400_BAD_REQUEST)

    def test_customer_statement_unknown_customer(self):
        """Test that an unknown customer is a 404"""
        response = self.client.get('/api/v1/reports/customer-statement/999999/?dateFrom=2025-05-01&dateTo=2025-05-31')
        self.assertEqual(response.status_code, status.HTTP_404_NOT_FOUND)
        self.assertEqual(response.data['error'], 'NotFound')
