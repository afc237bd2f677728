from django.contrib import admin

from .models import Address


@admin.register(Address)
class AddressAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "label", "city", "country", "updated_at")
    list_filter = ("country",)
    search_fields = ("address_line_1", "city", "contact_name", "contact_phone", "user__email")
    readonly_fields = ("provider_address_codes",)
