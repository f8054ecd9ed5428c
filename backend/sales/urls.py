from django.urls import path
from . import views

urlpatterns = [
    path('documents/', views.document_list_create, name='document-list-create'),
    path('documents/calculate/', views.documents_calculate, name='document-calculate'),
    path('documents/<uuid:pk>/', views.document_detail, name='document-detail'),
    path('documents/<uuid:pk>/lines/', views.document_lines, name='document-lines'),
    path('documents/<uuid:pk>/status/', views.document_status, name='document-status'),
    path('documents/<uuid:pk>/convert/', views.document_convert, name='document-convert'),
    path('documents/<uuid:pk>/duplicate/', views.document_duplicate, name='document-duplicate'),
    path('documents/<uuid:pk>/cancel/', views.document_cancel, name='document-cancel'),
    path('documents/<uuid:pk>/payments/', views.document_payments, name='document-payments'),
    path('documents/<uuid:pk>/receipt/', views.document_receipt, name='document-receipt'),
    path('documents/<uuid:pk>/chain/', views.document_chain, name='document-chain'),
    path('payments/<int:pk>/reverse/', views.payment_reverse, name='payment-reverse'),
]
