"""
URL configuration for IncidentDesk.
"""
from django.contrib import admin
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    path('admin/', admin.site.urls),

    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # API v1
    path('v1/', include('apps.core.urls')),  # Health check
    path('v1/', include('apps.rbac.urls')),  # Event roles, SuperAdmin grants, audit logs
    path('v1/', include('apps.events.urls')),  # Event lookup, organization members
    path('v1/', include('apps.reports.urls')),  # Reports, transitions, comments
    path('v1/', include('apps.notifications.urls')),  # Notification inbox
]
