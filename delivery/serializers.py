from rest_framework import serializers

from .capabilities import ProviderId
from .models import DeliveryQuote, Shipment, TrackingEvent


class DeliveryQuoteSerializer(serializers.ModelSerializer):
    class Meta:
        model = DeliveryQuote
        fields = [
            "id",
            "provider",
            "status",
            "fee",
            "currency",
            "insurance_fee",
            "courier_name",
            "service_type",
            "estimated_delivery_at",
            "expires_at",
            "confirmed_at",
            "selected_at",
            "used_at",
            "vendor",
            "order",
            "shipment",
            "package_details",
            "created_at",
        ]
        read_only_fields = fields


class TrackingEventSerializer(serializers.ModelSerializer):
    class Meta:
        model = TrackingEvent
        fields = [
            "id",
            "status",
            "provider_status",
            "event_type",
            "description",
            "location",
            "occurred_at",
        ]
        read_only_fields = fields


class ShipmentSerializer(serializers.ModelSerializer):
    order_number = serializers.CharField(source="order.order_number", read_only=True)

    class Meta:
        model = Shipment
        fields = [
            "id",
            "order",
            "order_number",
            "provider",
            "tracking_number",
            "status",
            "cost",
            "currency",
            "courier_name",
            "service_type",
            "estimated_delivery_at",
            "actual_delivery_at",
            "failure_reason",
            "label_url",
            "created_at",
            "updated_at",
        ]
        read_only_fields = fields


class ShipmentTrackingSerializer(serializers.Serializer):
    shipment = ShipmentSerializer()
    events = TrackingEventSerializer(many=True)
    refreshed = serializers.BooleanField()


class ProviderCapabilitiesSerializer(serializers.Serializer):
    provider = serializers.CharField()
    display_name = serializers.CharField()
    workflow = serializers.CharField()
    supported_countries = serializers.ListField(child=serializers.CharField())
    requires_confirmation = serializers.BooleanField()
    supports_store_locations = serializers.BooleanField()
    validates_address_before_quote = serializers.BooleanField()
    quotes_expire = serializers.BooleanField()
    supports_real_time_tracking = serializers.BooleanField()
    features = serializers.ListField(child=serializers.CharField())


class QuoteRequestSerializer(serializers.Serializer):
    vendor_id = serializers.UUIDField()
    address_id = serializers.UUIDField()


class QuoteAcceptSerializer(serializers.Serializer):
    reason = serializers.CharField(max_length=255, required=False, default="customer_selected")


class ShipmentCreateSerializer(serializers.Serializer):
    quote_id = serializers.UUIDField()
    order_id = serializers.UUIDField()


class ShipmentFilterSerializer(serializers.Serializer):
    status = serializers.ChoiceField(choices=Shipment.Status.choices, required=False)
    provider = serializers.ChoiceField(choices=ProviderId.choices, required=False)

    def to_internal_value(self, data):
        data = {key: str(value).upper() for key, value in data.items() if key in self.fields and value}
        return super().to_internal_value(data)


class AddressValidationSerializer(serializers.Serializer):
    address_id = serializers.UUIDField()
    provider = serializers.ChoiceField(choices=ProviderId.choices, required=False)

    def to_internal_value(self, data):
        data = dict(data.items())
        if data.get("provider"):
            data["provider"] = str(data["provider"]).upper()
        return super().to_internal_value(data)
