# orders/admin.py

from django.contrib import admin

from orders.models import Order, OrderItem


class OrderItemInline(admin.TabularInline):
    model = OrderItem
    extra = 0
    can_delete = False
    readonly_fields = (
        "position",
        "product_id",
        "product_name",
        "category",
        "image_url",
        "quantity",
        "unit_price",
        "line_total",
    )


@admin.register(Order)
class OrderAdmin(admin.ModelAdmin):
    list_display = (
        "order_number",
        "total_amount",
        "payment_status",
        "fulfillment_status",
        "tracking_id",
        "created_at",
    )
    list_filter = ("payment_status", "fulfillment_status", "created_at")
    search_fields = ("order_number", "tracking_id", "customer_info")
    ordering = ("-created_at",)
    inlines = [OrderItemInline]

    # Money, snapshots and processor fields are never edited by hand;
    # fulfillment goes through the API so transitions are validated.
    readonly_fields = (
        "order_number",
        "user",
        "customer_info",
        "delivery_info",
        "subtotal",
        "delivery_cost",
        "total_amount",
        "currency",
        "payment_status",
        "fulfillment_status",
        "tracking_id",
        "processor_status_description",
        "confirmed_amount",
        "paid_at",
        "created_at",
        "updated_at",
    )

    def has_add_permission(self, request):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
