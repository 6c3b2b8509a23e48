"""
RBAC (Role-Based Access Control) application.

Provides event-scoped access control with:
- Global principal identity
- Role grants at global or event scope
- Authorization resolution and the access control guard
- Append-only audit logging
"""
