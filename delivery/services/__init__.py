from .address import AddressGateway
from .order_bridge import OrderStatusBridge
from .quotes import QuoteService, QuoteStore, expire_stale_quotes
from .shipments import (
    ShipmentTrackingView,
    cancel_shipment,
    create_shipment,
    get_shipment,
    list_shipments,
    track_shipment,
)
from .tracking import ReconcileOutcome, TrackingReconciler, is_forward_transition

__all__ = [
    "AddressGateway",
    "OrderStatusBridge",
    "QuoteService",
    "QuoteStore",
    "ReconcileOutcome",
    "ShipmentTrackingView",
    "TrackingReconciler",
    "cancel_shipment",
    "create_shipment",
    "expire_stale_quotes",
    "get_shipment",
    "is_forward_transition",
    "list_shipments",
    "track_shipment",
]
