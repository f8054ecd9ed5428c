from django.urls import path
from . import views

urlpatterns = [
    path('reports/sales-documents/', views.sales_documents, name='sales-documents'),
    path('reports/sales-documents/monthly/', views.sales_documents_monthly, name='sales-documents-monthly'),
    path('reports/customer-statement/<int:customer_id>/', views.customer_statement_report, name='customer-statement'),
]
