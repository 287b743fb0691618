"""
URL routing for the auto-pay endpoints (mounted under /cron/).
"""

from django.urls import path

from apps.payments.views import AutoPayView

urlpatterns = [
    path('auto-pay', AutoPayView.as_view(), name='auto-pay'),
]
