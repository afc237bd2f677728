from decimal import Decimal

from django.contrib.auth import get_user_model

from account.models import Address
from delivery.capabilities import ProviderId
from delivery.packaging import build_package_manifest
from delivery.providers.base import ContactAddress, QuoteOffer
from delivery.services import QuoteStore
from order.models import Cart, CartItem, Order
from vendor.models import Vendor

User = get_user_model()

SHIPBUBBLE_COURIERS = [
    {
        "courier_id": "kwik",
        "courier_name": "Kwik Delivery",
        "service_code": "kwik-standard",
        "service_type": "pickup",
        "total": 1500,
        "currency": "NGN",
    },
    {
        "courier_id": "gig",
        "courier_name": "GIG Logistics",
        "service_code": "gig-express",
        "service_type": "pickup",
        "total": 1200,
        "currency": "NGN",
    },
    {
        "courier_id": "dhl",
        "courier_name": "DHL Express",
        "service_code": "dhl-express",
        "service_type": "dropoff",
        "total": 1800,
        "currency": "NGN",
    },
]


def create_marketplace(country="NG", city="Lekki", state="Lagos"):
    """Vendor, customer, delivery address and an active two-line cart."""
    owner = User.objects.create_user(username="chef", email="chef@example.com", password="Pass123!")
    customer = User.objects.create_user(
        username="tolu",
        email="tolu@example.com",
        password="Pass123!",
        first_name="Tolu",
        last_name="Ade",
    )
    pickup = Address.objects.create(
        user=owner,
        label="Kitchen",
        contact_name="Mama Put",
        contact_phone="+2348010000000",
        address_line_1="3 Akin Adesola Street",
        city="Victoria Island",
        state="Lagos",
        country=country,
    )
    vendor = Vendor.objects.create(
        owner=owner,
        business_name="Mama Put Kitchen",
        phone_number="+2348010000000",
        email="kitchen@example.com",
        address=pickup,
    )
    dropoff = Address.objects.create(
        user=customer,
        label="Home",
        contact_name="Tolu Ade",
        contact_phone="+2348020000000",
        address_line_1="12 Admiralty Way",
        city=city,
        state=state,
        country=country,
    )
    cart = Cart.objects.create(user=customer, vendor=vendor)
    CartItem.objects.create(cart=cart, name="Jollof Rice", unit_price=Decimal("2500.00"), quantity=2)
    CartItem.objects.create(cart=cart, name="Plantain", unit_price=Decimal("800.00"), quantity=1)
    return {
        "owner": owner,
        "customer": customer,
        "vendor": vendor,
        "pickup": pickup,
        "dropoff": dropoff,
        "cart": cart,
    }


def create_order(customer, vendor, address, order_number="ORD-TEST-0001"):
    return Order.objects.create(
        order_number=order_number,
        user=customer,
        vendor=vendor,
        delivery_address=address,
        status=Order.Status.CONFIRMED,
        subtotal=Decimal("5800.00"),
        delivery_fee=Decimal("1200.00"),
        total_amount=Decimal("7000.00"),
        currency="NGN",
    )


def make_quote(provider=ProviderId.SHIPBUBBLE, fee="1200.00", expires_at=None, **extra):
    contact = ContactAddress(
        name="Tolu Ade",
        phone="+2348020000000",
        email="tolu@example.com",
        address_line_1="12 Admiralty Way",
        city="Lekki",
        country="NG",
    )
    offer = QuoteOffer(
        provider=provider,
        fee=Decimal(fee),
        currency="NGN",
        provider_quote_id=extra.pop("provider_quote_id", ""),
        courier_name="GIG Logistics",
        expires_at=expires_at,
    )
    manifest = build_package_manifest([{"name": "Jollof Rice", "quantity": 2, "unit_price": 2500}])
    return QuoteStore.create(offer, contact, contact, manifest, **extra)
