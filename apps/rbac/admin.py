"""
Django admin configuration for RBAC app.
"""
from django.contrib import admin

from .models import AuditLog, EventInvite, RoleGrant, User


@admin.register(User)
class UserAdmin(admin.ModelAdmin):
    list_display = ['email', 'name', 'is_active', 'is_superuser', 'created_at']
    list_filter = ['is_active', 'is_superuser']
    search_fields = ['email', 'name']
    ordering = ['-created_at']
    readonly_fields = ['created_at', 'updated_at', 'last_login_at']
    exclude = ['password_hash', 'deleted_at']


@admin.register(RoleGrant)
class RoleGrantAdmin(admin.ModelAdmin):
    list_display = ['user', 'role', 'event', 'created_at']
    list_filter = ['role']
    search_fields = ['user__email', 'event__slug']
    raw_id_fields = ['user', 'event']


@admin.register(EventInvite)
class EventInviteAdmin(admin.ModelAdmin):
    list_display = ['code', 'event', 'role', 'use_count', 'max_uses', 'expires_at', 'disabled']
    list_filter = ['role', 'disabled']
    search_fields = ['code', 'event__slug']
    raw_id_fields = ['event', 'created_by']
    readonly_fields = ['use_count', 'created_at', 'updated_at']
    exclude = ['deleted_at']


@admin.register(AuditLog)
class AuditLogAdmin(admin.ModelAdmin):
    """Read-only: audit entries are append-only."""
    list_display = ['created_at', 'action', 'target_type', 'target_id', 'user', 'event']
    list_filter = ['action', 'target_type']
    search_fields = ['user__email', 'target_id', 'request_id']

    def has_add_permission(self, request):
        return False

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
