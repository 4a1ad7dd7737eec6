from django.urls import path

from .views import (
    CancelOrderView,
    MyOrdersView,
    OrderDetailView,
    OrdersCollectionView,
    OrderStatsView,
    OrderStatusView,
    ProcessPaymentView,
)

app_name = "orders"

urlpatterns = [
    path("", OrdersCollectionView.as_view(), name="orders-collection"),  # GET list / POST create
    path("mine/", MyOrdersView.as_view(), name="orders-mine"),
    path("stats/", OrderStatsView.as_view(), name="orders-stats"),
    path("<uuid:oid>/", OrderDetailView.as_view(), name="orders-detail"),
    path("<uuid:oid>/status/", OrderStatusView.as_view(), name="orders-status"),
    path("<uuid:oid>/process-payment/", ProcessPaymentView.as_view(), name="orders-process-payment"),
    path("<uuid:oid>/cancel/", CancelOrderView.as_view(), name="orders-cancel"),
]
