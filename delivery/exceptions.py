from rest_framework import status

# Shown to customers at checkout whenever a provider call fails.
DELIVERY_UNAVAILABLE_MESSAGE = "Delivery is currently unavailable"


class DeliveryError(Exception):
    """Base exception for delivery orchestration errors."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Delivery request failed"

    def __init__(self, message: str = "", **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)


class AddressNotServiceable(DeliveryError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "Address is not deliverable"


class NoCourierAvailable(DeliveryError):
    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_message = "No courier is available for this route"


class UnsupportedProvider(DeliveryError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_message = "Unsupported delivery provider"


class ProviderError(DeliveryError):
    """Raised when a provider API call fails."""

    status_code = status.HTTP_502_BAD_GATEWAY
    default_message = "Delivery provider request failed"
    retryable = False


class ProviderUnavailable(ProviderError):
    """Transport failure, timeout or 5xx from the provider."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Delivery provider is unavailable"
    retryable = True


class ProviderRequestError(ProviderError):
    """Provider rejected the request with a 4xx."""


class ProviderAuthFailure(ProviderError):
    default_message = "Delivery provider authentication failed"


class ProviderConfigurationError(ProviderError):
    """Raised when required provider settings are missing."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_message = "Delivery provider is not configured"


class QuoteNotFound(DeliveryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Delivery quote not found"


class QuoteExpired(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery quote has expired"


class QuoteAlreadyUsed(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery quote is not available for use"


class InvalidQuoteTransition(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery quote cannot change to that state"


class QuoteNotConfirmed(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery quote must be confirmed with the provider first"


class QuoteOrderMismatch(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Delivery quote was priced for a different vendor"


class OrderNotFound(DeliveryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Order not found"


class ShipmentAlreadyExists(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Order already has an active shipment"


class ShipmentNotFound(DeliveryError):
    status_code = status.HTTP_404_NOT_FOUND
    default_message = "Shipment not found"


class ShipmentNotCancellable(DeliveryError):
    status_code = status.HTTP_409_CONFLICT
    default_message = "Shipment can no longer be cancelled"


class WebhookSignatureInvalid(DeliveryError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_message = "Invalid webhook signature"


class UnrecognizedProviderStatus(DeliveryError):
    """Non-fatal: a provider reported a status outside its known vocabulary."""

    default_message = "Unrecognized provider status"
