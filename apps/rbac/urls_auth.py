"""
URL routing for authentication endpoints.
"""
from django.urls import path
from apps.rbac.views_auth import (
    RegistrationView, LoginView, LogoutView, RefreshTokenView, MeView,
    UserRolesView, UserPermissionsView,
)

app_name = 'auth'

urlpatterns = [
    # Registration and login
    path('register', RegistrationView.as_view(), name='register'),
    path('login', LoginView.as_view(), name='login'),
    path('logout', LogoutView.as_view(), name='logout'),

    # Token refresh
    path('refresh-token', RefreshTokenView.as_view(), name='refresh-token'),

    # Current user
    path('me', MeView.as_view(), name='me'),

    # Role and direct permission assignment
    path('users/<uuid:user_id>/roles', UserRolesView.as_view(), name='user-roles'),
    path('users/<uuid:user_id>/permissions', UserPermissionsView.as_view(), name='user-permissions'),
]
