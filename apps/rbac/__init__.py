"""
RBAC (Role-Based Access Control) application.

Provides multi-tenant access control with:
- Permission catalog of (resource, action) pairs
- System and business-scoped roles
- Direct per-user permission grants
- Admin provisioning with one-time setup tokens
- Audit logging
"""
