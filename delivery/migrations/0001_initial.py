from django.conf import settings
import django.core.validators
from django.db import migrations, models
import django.db.models.deletion
import django.utils.timezone
import uuid


PROVIDER_CHOICES = [("SHIPBUBBLE", "Shipbubble"), ("UBER", "Uber Direct")]
SHIPMENT_STATUS_CHOICES = [
    ("PENDING", "Pending"),
    ("PICKED_UP", "Picked Up"),
    ("IN_TRANSIT", "In Transit"),
    ("OUT_FOR_DELIVERY", "Out for Delivery"),
    ("DELIVERED", "Delivered"),
    ("FAILED", "Failed"),
    ("CANCELLED", "Cancelled"),
    ("RETURNED", "Returned"),
]


class Migration(migrations.Migration):

    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
        ("order", "0001_initial"),
        ("vendor", "0001_initial"),
    ]

    operations = [
        migrations.CreateModel(
            name="Shipment",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("tracking_number", models.CharField(max_length=150, unique=True)),
                ("provider_shipment_id", models.CharField(blank=True, max_length=150)),
                ("status", models.CharField(choices=SHIPMENT_STATUS_CHOICES, default="PENDING", max_length=30)),
                ("cost", models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(0)])),
                ("currency", models.CharField(max_length=3)),
                ("courier_name", models.CharField(blank=True, max_length=150)),
                ("service_type", models.CharField(blank=True, max_length=50)),
                ("estimated_delivery_at", models.DateTimeField(blank=True, null=True)),
                ("actual_delivery_at", models.DateTimeField(blank=True, null=True)),
                ("failure_reason", models.TextField(blank=True)),
                ("label_url", models.CharField(blank=True, max_length=500)),
                ("last_event", models.CharField(blank=True, max_length=100)),
                ("last_payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("order", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="shipments", to="order.order")),
            ],
            options={
                "indexes": [
                    models.Index(fields=["status"], name="delivery_ship_status_idx"),
                    models.Index(fields=["provider", "status"], name="delivery_ship_prov_status_idx"),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        condition=models.Q(("status", "CANCELLED"), _negated=True),
                        fields=("order",),
                        name="delivery_one_active_shipment",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="DeliveryQuote",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("provider", models.CharField(choices=PROVIDER_CHOICES, max_length=20)),
                ("status", models.CharField(choices=[("PENDING", "Pending"), ("SELECTED", "Selected"), ("USED", "Used"), ("EXPIRED", "Expired"), ("CANCELLED", "Cancelled")], default="PENDING", max_length=20)),
                ("provider_quote_id", models.CharField(blank=True, max_length=150)),
                ("provider_request_token", models.TextField(blank=True)),
                ("fee", models.DecimalField(decimal_places=2, max_digits=12, validators=[django.core.validators.MinValueValidator(0)])),
                ("currency", models.CharField(max_length=3)),
                ("insurance_fee", models.DecimalField(blank=True, decimal_places=2, max_digits=12, null=True)),
                ("courier_id", models.CharField(blank=True, max_length=100)),
                ("courier_name", models.CharField(blank=True, max_length=150)),
                ("service_code", models.CharField(blank=True, max_length=100)),
                ("service_type", models.CharField(blank=True, max_length=50)),
                ("estimated_delivery_at", models.DateTimeField(blank=True, null=True)),
                ("expires_at", models.DateTimeField(blank=True, null=True)),
                ("confirmed_at", models.DateTimeField(blank=True, null=True)),
                ("selected_at", models.DateTimeField(blank=True, null=True)),
                ("selected_by", models.CharField(blank=True, max_length=150)),
                ("selection_reason", models.CharField(blank=True, max_length=255)),
                ("used_at", models.DateTimeField(blank=True, null=True)),
                ("origin_address", models.JSONField(blank=True, default=dict)),
                ("destination_address", models.JSONField(blank=True, default=dict)),
                ("package_details", models.JSONField(blank=True, default=dict)),
                ("provider_payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("updated_at", models.DateTimeField(auto_now=True)),
                ("customer", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="delivery_quotes", to=settings.AUTH_USER_MODEL)),
                ("vendor", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="delivery_quotes", to="vendor.vendor")),
                ("order", models.ForeignKey(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="delivery_quotes", to="order.order")),
                ("shipment", models.OneToOneField(blank=True, null=True, on_delete=django.db.models.deletion.SET_NULL, related_name="quote", to="delivery.shipment")),
            ],
            options={
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(fields=["status", "expires_at"], name="delivery_quote_status_exp_idx"),
                    models.Index(fields=["provider_quote_id"], name="delivery_quote_prov_id_idx"),
                ],
                "constraints": [
                    models.CheckConstraint(condition=models.Q(("fee__gte", 0)), name="delivery_quote_fee_non_negative"),
                ],
            },
        ),
        migrations.CreateModel(
            name="TrackingEvent",
            fields=[
                ("id", models.UUIDField(default=uuid.uuid4, editable=False, primary_key=True, serialize=False)),
                ("status", models.CharField(choices=SHIPMENT_STATUS_CHOICES, max_length=30)),
                ("provider_status", models.CharField(blank=True, max_length=100)),
                ("event_type", models.CharField(blank=True, max_length=100)),
                ("description", models.CharField(blank=True, max_length=255)),
                ("location", models.CharField(blank=True, max_length=255)),
                ("occurred_at", models.DateTimeField(default=django.utils.timezone.now)),
                ("raw_payload", models.JSONField(blank=True, default=dict)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
                ("shipment", models.ForeignKey(on_delete=django.db.models.deletion.CASCADE, related_name="events", to="delivery.shipment")),
            ],
            options={
                "ordering": ["occurred_at", "created_at"],
                "indexes": [
                    models.Index(fields=["shipment", "occurred_at"], name="delivery_event_ship_time_idx"),
                ],
            },
        ),
        migrations.CreateModel(
            name="WebhookLog",
            fields=[
                ("id", models.BigAutoField(auto_created=True, primary_key=True, serialize=False, verbose_name="ID")),
                ("provider", models.CharField(max_length=50)),
                ("event_type", models.CharField(max_length=100)),
                ("reference", models.CharField(max_length=150)),
                ("payload", models.JSONField()),
                ("signature_valid", models.BooleanField(default=False)),
                ("processed", models.BooleanField(default=False)),
                ("error", models.TextField(blank=True)),
                ("created_at", models.DateTimeField(auto_now_add=True)),
            ],
            options={
                "indexes": [
                    models.Index(fields=["reference"], name="delivery_webhook_ref_idx"),
                    models.Index(fields=["processed"], name="delivery_webhook_proc_idx"),
                ],
            },
        ),
    ]
