from django.contrib import admin

from apps.loans.models import Loan, Payment, PaymentScheduleItem, Transfer


class PaymentScheduleInline(admin.TabularInline):
    model = PaymentScheduleItem
    extra = 0
    fields = ('due_date', 'amount', 'is_paid', 'status', 'transfer_id', 'paid_at')
    readonly_fields = ('transfer_id', 'paid_at')


@admin.register(Loan)
class LoanAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'borrower', 'lender', 'business_lender', 'total_amount',
        'amount_paid', 'amount_remaining', 'status', 'created_at',
    )
    list_filter = ('status', 'currency')
    search_fields = ('borrower_name', 'borrower_email', 'lender_name', 'lender_email')
    raw_id_fields = ('borrower', 'lender', 'business_lender')
    readonly_fields = ('created_at', 'updated_at', 'completed_at', 'last_payment_at')
    inlines = [PaymentScheduleInline]


@admin.register(PaymentScheduleItem)
class PaymentScheduleItemAdmin(admin.ModelAdmin):
    list_display = ('id', 'loan', 'due_date', 'amount', 'is_paid', 'status', 'transfer_id')
    list_filter = ('is_paid', 'status')
    search_fields = ('transfer_id',)
    raw_id_fields = ('loan', 'payment')


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    list_display = ('id', 'loan', 'schedule', 'amount', 'payment_date', 'status')
    list_filter = ('status',)
    raw_id_fields = ('loan', 'schedule')


@admin.register(Transfer)
class TransferAdmin(admin.ModelAdmin):
    list_display = (
        'dwolla_transfer_id', 'loan', 'type', 'amount', 'platform_fee',
        'net_amount', 'status', 'created_at',
    )
    list_filter = ('type', 'status')
    search_fields = ('dwolla_transfer_id',)
    raw_id_fields = ('loan',)
