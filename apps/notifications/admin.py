from django.contrib import admin

from apps.notifications.models import Notification


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ('id', 'member', 'type', 'title', 'is_read', 'created_at')
    list_filter = ('type', 'is_read')
    raw_id_fields = ('member', 'loan')
