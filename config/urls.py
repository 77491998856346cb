"""
URL configuration for the venue RBAC API.
"""
from django.urls import path, include
from drf_spectacular.views import SpectacularAPIView, SpectacularSwaggerView

urlpatterns = [
    # API Documentation
    path('schema/', SpectacularAPIView.as_view(), name='schema'),
    path('schema/swagger/', SpectacularSwaggerView.as_view(url_name='schema'), name='swagger-ui'),

    # Authentication endpoints
    path('v1/auth/', include('apps.rbac.urls_auth')),  # Register, login, logout, refresh-token, me, user assignments

    # System administration endpoints
    path('v1/system-admin/', include('apps.rbac.urls_admin')),  # Setup, password setup, admin accounts

    # RBAC endpoints
    path('v1/', include('apps.rbac.urls')),  # Permissions, permission matrix, roles, business users
]
