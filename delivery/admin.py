from django.contrib import admin, messages
from django.utils.translation import gettext_lazy as _

from .exceptions import DeliveryError
from .models import DeliveryQuote, Shipment, TrackingEvent, WebhookLog
from .services import QuoteStore, track_shipment


class TrackingEventInline(admin.TabularInline):
    model = TrackingEvent
    extra = 0
    can_delete = False
    readonly_fields = ("status", "provider_status", "event_type", "description", "location", "occurred_at")

    def has_add_permission(self, request, obj=None):
        return False


@admin.register(Shipment)
class ShipmentAdmin(admin.ModelAdmin):
    list_display = ("tracking_number", "order", "provider", "status", "cost", "currency", "created_at")
    list_filter = ("provider", "status")
    search_fields = ("tracking_number", "provider_shipment_id", "order__order_number")
    readonly_fields = ("last_payload",)
    inlines = [TrackingEventInline]
    actions = ("refresh_tracking",)

    def refresh_tracking(self, request, queryset):
        refreshed = 0
        for shipment in queryset:
            try:
                if track_shipment(shipment.tracking_number).refreshed:
                    refreshed += 1
            except DeliveryError as exc:
                self.message_user(request, f"{shipment.tracking_number}: {exc.message}", messages.ERROR)
        self.message_user(request, _("%d shipments updated from the provider.") % refreshed, messages.SUCCESS)

    refresh_tracking.short_description = "Refresh tracking from provider"


@admin.register(DeliveryQuote)
class DeliveryQuoteAdmin(admin.ModelAdmin):
    list_display = ("id", "provider", "status", "fee", "currency", "customer", "vendor", "expires_at", "created_at")
    list_filter = ("provider", "status")
    search_fields = ("id", "provider_quote_id", "courier_name", "customer__email")
    readonly_fields = ("origin_address", "destination_address", "package_details", "provider_payload")
    actions = ("cancel_quotes",)

    def cancel_quotes(self, request, queryset):
        cancelled = sum(1 for quote in queryset if QuoteStore.cancel(quote.id))
        self.message_user(request, _("%d quotes cancelled.") % cancelled, messages.SUCCESS)

    cancel_quotes.short_description = "Cancel selected quotes"


@admin.register(WebhookLog)
class WebhookLogAdmin(admin.ModelAdmin):
    list_display = ("id", "provider", "event_type", "reference", "signature_valid", "processed", "created_at")
    list_filter = ("provider", "signature_valid", "processed")
    search_fields = ("reference", "event_type")
    readonly_fields = ("payload",)
