from django.urls import path

from .views import (
    InitiatePaymentView,
    MyPaymentsView,
    PaymentStatsView,
    PaystackWebhookView,
    VerifyPaymentView,
)

app_name = "payments"

urlpatterns = [
    path("initiate/", InitiatePaymentView.as_view(), name="payments-initiate"),
    path("verify/", VerifyPaymentView.as_view(), name="payments-verify"),
    path("webhook/", PaystackWebhookView.as_view(), name="payments-webhook"),
    path("mine/", MyPaymentsView.as_view(), name="payments-mine"),
    path("stats/", PaymentStatsView.as_view(), name="payments-stats"),
]
