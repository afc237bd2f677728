import logging

from django.core.exceptions import ObjectDoesNotExist
from django.http import HttpRequest, JsonResponse
from django.utils.decorators import method_decorator
from django.views import View
from django.views.decorators.csrf import csrf_exempt
from rest_framework import permissions, status
from rest_framework.generics import ListAPIView
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from order.services import OrderService

from .capabilities import available_providers
from .exceptions import (
    DELIVERY_UNAVAILABLE_MESSAGE,
    AddressNotServiceable,
    DeliveryError,
    OrderNotFound,
    ProviderError,
    UnsupportedProvider,
)
from .models import DeliveryQuote
from .serializers import (
    AddressValidationSerializer,
    DeliveryQuoteSerializer,
    ProviderCapabilitiesSerializer,
    QuoteAcceptSerializer,
    QuoteRequestSerializer,
    ShipmentCreateSerializer,
    ShipmentFilterSerializer,
    ShipmentSerializer,
    ShipmentTrackingSerializer,
)
from .services import (
    AddressGateway,
    QuoteService,
    TrackingReconciler,
    cancel_shipment,
    create_shipment,
    get_shipment,
    list_shipments,
    track_shipment,
)

logger = logging.getLogger(__name__)


def _error_response(exc: Exception) -> Response:
    if isinstance(exc, ProviderError):
        logger.warning("Delivery provider failure: %s %s", exc.message, exc.context)
        return Response(
            {"detail": DELIVERY_UNAVAILABLE_MESSAGE, "reason": exc.message},
            status=exc.status_code,
        )
    if isinstance(exc, DeliveryError):
        return Response({"detail": exc.message}, status=exc.status_code)
    return Response({"detail": "Not found"}, status=status.HTTP_404_NOT_FOUND)


def _visible_to(user, owner_id) -> bool:
    return user.is_staff or owner_id == user.id


class ProviderListView(APIView):
    permission_classes = [permissions.AllowAny]

    def get(self, request):
        country = request.query_params.get("country", "")
        providers = available_providers(country)
        return Response(ProviderCapabilitiesSerializer(providers, many=True).data)


class AddressValidationView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = AddressValidationSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            provider, contact = AddressGateway.validate_for_user(
                request.user,
                serializer.validated_data["address_id"],
                serializer.validated_data.get("provider"),
            )
        except AddressNotServiceable as exc:
            return Response({"valid": False, "detail": exc.message}, status=exc.status_code)
        except (DeliveryError, ObjectDoesNotExist) as exc:
            return _error_response(exc)
        return Response(
            {
                "valid": True,
                "provider": provider.provider_id,
                "address_code": contact.address_code,
                "formatted_address": contact.full_address(),
            }
        )


class QuoteCreateView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request):
        serializer = QuoteRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        try:
            quote = QuoteService.request_quote_for_cart(
                request.user,
                serializer.validated_data["vendor_id"],
                serializer.validated_data["address_id"],
            )
        except (DeliveryError, ObjectDoesNotExist) as exc:
            return _error_response(exc)
        return Response(DeliveryQuoteSerializer(quote).data, status=status.HTTP_201_CREATED)


class QuoteDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, pk):
        quote = DeliveryQuote.objects.filter(pk=pk).first()
        if quote is None or not _visible_to(request.user, quote.customer_id):
            return Response({"detail": "Delivery quote not found"}, status=status.HTTP_404_NOT_FOUND)
        return Response(DeliveryQuoteSerializer(quote).data)


class QuoteAcceptView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, pk):
        serializer = QuoteAcceptSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        quote = DeliveryQuote.objects.filter(pk=pk).first()
        if quote is None or not _visible_to(request.user, quote.customer_id):
            return Response({"detail": "Delivery quote not found"}, status=status.HTTP_404_NOT_FOUND)
        try:
            quote = QuoteService.accept_quote(
                quote.id,
                by=request.user.get_username(),
                reason=serializer.validated_data["reason"],
            )
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(DeliveryQuoteSerializer(quote).data)


class ShipmentPagination(PageNumberPagination):
    page_size = 10
    page_size_query_param = "limit"
    max_page_size = 100


class ShipmentListCreateView(ListAPIView):
    permission_classes = [permissions.IsAuthenticated]
    serializer_class = ShipmentSerializer
    pagination_class = ShipmentPagination

    def get_queryset(self):
        filters = ShipmentFilterSerializer(data=self.request.query_params)
        filters.is_valid(raise_exception=True)
        return list_shipments(self.request.user, **filters.validated_data)

    def post(self, request):
        serializer = ShipmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        order = OrderService.find_order(serializer.validated_data["order_id"])
        if order is None or not _visible_to(request.user, order.user_id):
            return _error_response(OrderNotFound())
        try:
            shipment = create_shipment(serializer.validated_data["quote_id"], order.id)
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(ShipmentSerializer(shipment).data, status=status.HTTP_201_CREATED)


class ShipmentDetailView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def get(self, request, tracking_number):
        try:
            shipment = get_shipment(tracking_number)
            if not _visible_to(request.user, shipment.order.user_id):
                return Response({"detail": "Shipment not found"}, status=status.HTTP_404_NOT_FOUND)
            view = track_shipment(tracking_number)
        except DeliveryError as exc:
            return _error_response(exc)
        return Response(ShipmentTrackingSerializer(view).data)


class ShipmentCancelView(APIView):
    permission_classes = [permissions.IsAuthenticated]

    def post(self, request, tracking_number):
        try:
            shipment = get_shipment(tracking_number)
            if not _visible_to(request.user, shipment.order.user_id):
                return Response({"detail": "Shipment not found"}, status=status.HTTP_404_NOT_FOUND)
            cancelled = cancel_shipment(tracking_number)
        except DeliveryError as exc:
            return _error_response(exc)
        if not cancelled:
            return Response(
                {"detail": "The delivery provider did not accept the cancellation"},
                status=status.HTTP_409_CONFLICT,
            )
        return Response(ShipmentSerializer(get_shipment(tracking_number)).data)


@method_decorator(csrf_exempt, name="dispatch")
class DeliveryWebhookView(View):
    """Receives status callbacks from Shipbubble and Uber Direct."""

    def get(self, request: HttpRequest, provider: str):
        return JsonResponse({"info": f"{provider} delivery webhook endpoint, POST only"})

    def post(self, request: HttpRequest, provider: str):
        try:
            result = TrackingReconciler().process_webhook(provider, request.body, request.headers)
        except UnsupportedProvider as exc:
            return JsonResponse({"error": exc.message}, status=exc.status_code)
        return JsonResponse(result)
