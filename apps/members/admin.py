from django.contrib import admin

from apps.members.models import BusinessProfile, Member


@admin.register(Member)
class MemberAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'full_name', 'email', 'borrower_rating',
        'payments_missed', 'borrowing_tier', 'max_borrowing_amount',
        'created_at',
    )
    list_filter = ('borrower_rating', 'borrowing_tier')
    search_fields = ('full_name', 'email')
    readonly_fields = ('created_at', 'updated_at')


@admin.register(BusinessProfile)
class BusinessProfileAdmin(admin.ModelAdmin):
    list_display = ('id', 'business_name', 'contact_email', 'owner')
    search_fields = ('business_name', 'contact_email')
    raw_id_fields = ('owner',)
