from django.contrib import admin, messages
from django.contrib.auth import admin as auth_admin

from .models import Guild, MenuItem, User


@admin.register(User)
class UserAdmin(auth_admin.UserAdmin):
    fieldsets = (
        (None, {"fields": ("username", "password")}),
        ("Personal info", {"fields": ("name", "email")}),
        (
            "Character",
            {
                "fields": (
                    "character_name",
                    "world_name",
                    "guild",
                )
            },
        ),
        (
            "Role & Status",
            {
                "fields": (
                    "role_group",
                    "status",
                    "is_active",
                    "is_staff",
                    "is_superuser",
                )
            },
        ),
        ("Important dates", {"fields": ("last_login", "date_joined")}),
    )

    list_display = [
        "username",
        "character_name",
        "world_name",
        "guild",
        "role_group",
        "status",
        "is_active",
        "last_login",
    ]

    list_filter = [
        "role_group",
        "status",
        "guild",
        "is_active",
    ]

    search_fields = [
        "username",
        "name",
        "character_name",
        "email",
    ]

    readonly_fields = ["date_joined", "last_login"]

    ordering = ["role_group", "username"]

    actions = ["disable_accounts"]

    def get_queryset(self, request):
        return super().get_queryset(request).select_related('guild')

    @admin.action(description="Disable selected accounts")
    def disable_accounts(self, request, queryset):
        updated_count = 0
        for user in queryset.exclude(status=User.STATUS_DISABLED):
            user.disable()
            updated_count += 1

        if updated_count > 0:
            messages.success(request, f"Disabled {updated_count} accounts.")
        else:
            messages.warning(request, "No accounts were updated.")


@admin.register(Guild)
class GuildAdmin(admin.ModelAdmin):
    list_display = ["name", "apply_deadline_hours", "public_fund_rate", "withdraw_min_amount"]
    search_fields = ["name"]


@admin.register(MenuItem)
class MenuItemAdmin(admin.ModelAdmin):
    list_display = ["title", "path", "parent", "order", "roles"]
    list_filter = ["parent"]
    ordering = ["order"]
