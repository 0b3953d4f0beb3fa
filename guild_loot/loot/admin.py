from django.contrib import admin, messages

from .auction_service import get_auction_manager
from .exceptions import LootError
from .models import (
    Application, AttendeeRequest, Auction, Bid, Boss, BossKill, DroppedItem, KillScreenshot,
    Notification, Vote, VoteOption,
)


@admin.register(Boss)
class BossAdmin(admin.ModelAdmin):
    list_display = ['name', 'dkp_points', 'created_at']
    search_fields = ['name']


class DroppedItemInline(admin.TabularInline):
    model = DroppedItem
    extra = 0
    fields = ['name', 'item_type', 'level', 'apply_deadline', 'final_recipient', 'status']
    readonly_fields = ['final_recipient', 'status']


class KillScreenshotInline(admin.TabularInline):
    model = KillScreenshot
    extra = 0


@admin.register(BossKill)
class BossKillAdmin(admin.ModelAdmin):
    list_display = ['boss', 'kill_time', 'status', 'item_holder', 'dkp_distributed', 'created_by']
    list_filter = ['status', 'dkp_distributed', 'boss']
    date_hierarchy = 'kill_time'
    readonly_fields = ['status', 'dkp_distributed', 'created_at', 'updated_at']
    inlines = [DroppedItemInline, KillScreenshotInline]


@admin.register(Application)
class ApplicationAdmin(admin.ModelAdmin):
    list_display = ['applicant', 'item_name', 'kill', 'status', 'resolved_by', 'created_at']
    list_filter = ['status']
    search_fields = ['applicant__username', 'applicant__character_name', 'item_name']
    readonly_fields = ['status', 'resolved_by', 'resolved_at', 'created_at']


@admin.register(AttendeeRequest)
class AttendeeRequestAdmin(admin.ModelAdmin):
    list_display = ['character_name', 'kill', 'status', 'resolved_by', 'created_at']
    list_filter = ['status']
    search_fields = ['character_name']


class BidInline(admin.TabularInline):
    model = Bid
    extra = 0
    fields = ['bidder', 'amount', 'hold_status', 'created_at']
    readonly_fields = fields
    can_delete = False


@admin.register(Auction)
class AuctionAdmin(admin.ModelAdmin):
    list_display = ['item_name', 'auction_type', 'status', 'current_price', 'highest_bidder', 'end_time']
    list_filter = ['status', 'auction_type']
    search_fields = ['item_name']
    readonly_fields = ['status', 'current_price', 'highest_bidder', 'completed_at', 'settled_at', 'created_at']
    inlines = [BidInline]
    actions = ['cancel_auctions']

    def cancel_auctions(self, request, queryset):
        manager = get_auction_manager()
        cancelled = 0
        for auction in queryset:
            try:
                manager.cancel_auction(request.user, auction.pk)
                cancelled += 1
            except LootError as e:
                self.message_user(request, f"{auction}: {e.message}", messages.WARNING)
        self.message_user(request, f"Cancelled {cancelled} auctions", messages.SUCCESS)
    cancel_auctions.short_description = "Cancel selected auctions and release holds"


@admin.register(Notification)
class NotificationAdmin(admin.ModelAdmin):
    list_display = ['user', 'message', 'read', 'created_at']
    list_filter = ['read']


class VoteOptionInline(admin.TabularInline):
    model = VoteOption
    extra = 2


@admin.register(Vote)
class VoteAdmin(admin.ModelAdmin):
    list_display = ['title', 'status', 'multiple_choice', 'end_time', 'created_by']
    list_filter = ['status']
    inlines = [VoteOptionInline]
