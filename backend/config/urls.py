"""
URL configuration for backend project.

Every API app mounts under /api/v1/.
"""
from django.contrib import admin
from django.urls import path, include

admin.site.site_header = "Sales Documents Admin Panel"
admin.site.site_title = "Sales Documents Admin Portal"
admin.site.index_title = "Welcome to the Sales Documents Admin Portal"

urlpatterns = [
    path('admin/', admin.site.urls),
    path('api/v1/', include('backend.core.urls')),
    path('api/v1/', include('backend.parties.urls')),
    path('api/v1/', include('backend.catalog.urls')),
    path('api/v1/', include('backend.sales.urls')),
    path('api/v1/', include('backend.reports.urls')),
]
