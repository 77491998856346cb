"""
URL routing for system administration endpoints.
"""
from django.urls import path
from apps.rbac.views_admin import (
    SystemAdminSetupView, VerifySetupTokenView, SetupPasswordView,
    AvailableRolesView, AdminListView, AdminDetailView, AdminResetTokenView,
)

app_name = 'system_admin'

urlpatterns = [
    # Public onboarding
    path('setup', SystemAdminSetupView.as_view(), name='setup'),
    path('verify-setup-token', VerifySetupTokenView.as_view(), name='verify-setup-token'),
    path('setup-password', SetupPasswordView.as_view(), name='setup-password'),

    # Admin accounts
    path('roles/available', AvailableRolesView.as_view(), name='available-roles'),
    path('admins', AdminListView.as_view(), name='admin-list'),
    path('admins/<uuid:admin_id>', AdminDetailView.as_view(), name='admin-detail'),
    path('admins/<uuid:admin_id>/reset-token', AdminResetTokenView.as_view(), name='admin-reset-token'),
]
