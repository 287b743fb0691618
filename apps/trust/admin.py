from django.contrib import admin

from apps.trust.models import TrustScore, TrustScoreEvent


@admin.register(TrustScore)
class TrustScoreAdmin(admin.ModelAdmin):
    list_display = ('member', 'score', 'event_count', 'updated_at')
    raw_id_fields = ('member',)


@admin.register(TrustScoreEvent)
class TrustScoreEventAdmin(admin.ModelAdmin):
    list_display = ('id', 'member', 'event_type', 'score_impact', 'loan', 'created_at')
    list_filter = ('event_type',)
    search_fields = ('dedup_key', 'title')
    raw_id_fields = ('member', 'loan')
