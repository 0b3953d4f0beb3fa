from django.contrib import admin

from .models import LedgerEntry, Wallet


@admin.register(Wallet)
class WalletAdmin(admin.ModelAdmin):
    list_display = ['user', 'diamonds', 'held_diamonds', 'dkp_points', 'updated_at']
    search_fields = ['user__username', 'user__character_name']
    readonly_fields = ['diamonds', 'held_diamonds', 'dkp_points', 'updated_at', 'created_at']

    def has_add_permission(self, request):
        # Wallets are created with their user
        return False


@admin.register(LedgerEntry)
class LedgerEntryAdmin(admin.ModelAdmin):
    list_display = ['user', 'currency', 'entry_type', 'amount', 'reference', 'created_at']
    list_filter = ['currency', 'entry_type']
    search_fields = ['user__username', 'user__character_name', 'reference', 'description']
    date_hierarchy = 'created_at'

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
