from django.urls import path

from .views import (
    AddressValidationView,
    DeliveryWebhookView,
    ProviderListView,
    QuoteAcceptView,
    QuoteCreateView,
    QuoteDetailView,
    ShipmentCancelView,
    ShipmentDetailView,
    ShipmentListCreateView,
)

urlpatterns = [
    path("providers/", ProviderListView.as_view(), name="delivery-providers"),
    path("addresses/validate/", AddressValidationView.as_view(), name="delivery-address-validate"),
    path("quotes/", QuoteCreateView.as_view(), name="delivery-quote-create"),
    path("quotes/<uuid:pk>/", QuoteDetailView.as_view(), name="delivery-quote-detail"),
    path("quotes/<uuid:pk>/accept/", QuoteAcceptView.as_view(), name="delivery-quote-accept"),
    path("shipments/", ShipmentListCreateView.as_view(), name="delivery-shipments"),
    path("shipments/<str:tracking_number>/", ShipmentDetailView.as_view(), name="delivery-shipment-detail"),
    path("shipments/<str:tracking_number>/cancel/", ShipmentCancelView.as_view(), name="delivery-shipment-cancel"),
    path("webhooks/<str:provider>/", DeliveryWebhookView.as_view(), name="delivery-webhook"),
]
