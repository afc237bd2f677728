from django.contrib import admin

from .models import Cart, CartItem, Order, OrderItem


class CartItemInline(admin.TabularInline):
    model = CartItem
    extra = 0


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0


@admin.register(Cart)
class CartAdmin(admin.ModelAdmin):
    list_display = ("id", "user", "vendor", "is_active", "updated_at")
    list_filter = ("is_active",)
    inlines = [CartItemInline]


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = ("order_number", "user", "vendor", "status", "total_amount", "currency", "created_at")
    list_filter = ("status", "currency")
    search_fields = ("order_number", "user__email", "vendor__business_name")
    inlines = [OrderItemInline]
