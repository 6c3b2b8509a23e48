from django.contrib import admin

from .models import Report, ReportComment


class ReportCommentInline(admin.TabularInline):
    model = ReportComment
    extra = 0
    fields = ['author', 'visibility', 'body', 'created_at']
    readonly_fields = ['created_at']
    raw_id_fields = ['author']


@admin.register(Report)
class ReportAdmin(admin.ModelAdmin):
    list_display = ['short_id', 'title', 'event', 'state', 'severity', 'assigned_responder', 'created_at']
    list_filter = ['state', 'severity', 'type']
    search_fields = ['title', 'description', 'event__name']
    raw_id_fields = ['event', 'reporter', 'assigned_responder']
    # Lifecycle fields change through the transition service only.
    readonly_fields = ['state', 'assigned_responder', 'revision', 'resolution', 'created_at', 'updated_at']
    inlines = [ReportCommentInline]
