"""
Management command that moves sent invoices past their due date to Overdue.
Meant to run daily from cron.
"""
from datetime import datetime

from django.core.management.base import BaseCommand, CommandError
from django.utils import timezone

from backend.core.models import Company
from backend.core.tenancy import tenant_for_company
from backend.sales.documents import mark_overdue_invoices


class Command(BaseCommand):
    help = 'Mark sent invoices whose due date has passed as Overdue'

    def add_arguments(self, parser):
        parser.add_argument(
            '--company',
            type=int,
            help='Only process this company id',
        )
        parser.add_argument(
            '--date',
            help='Reference date (YYYY-MM-DD), defaults to today',
        )

    def handle(self, *args, **options):
        today = timezone.localdate()
        if options['date']:
            try:
                today = datetime.strptime(options['date'], '%Y-%m-%d').date()
            except ValueError:
                raise CommandError(f"Invalid date: {options['date']}")

        companies = Company.objects.filter(is_active=True)
        if options['company']:
            companies = companies.filter(pk=options['company'])
            if not companies.exists():
                raise CommandError(f"Company {options['company']} not found")

        total = 0
        for company in companies:
            moved = mark_overdue_invoices(tenant_for_company(company), today=today)
            total += len(moved)
            if moved:
                self.stdout.write(f"{company.name}: {', '.join(moved)}")

        self.stdout.write(self.style.SUCCESS(f'Marked {total} invoices overdue as of {today}'))
