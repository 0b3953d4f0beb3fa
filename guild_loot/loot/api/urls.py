"""
Loot API URL configuration.
"""

from .routers import OptionalSlashRouter
from .views import (
    ApplicationViewSet, AttendeeRequestViewSet, AuctionViewSet, BossKillViewSet, BossViewSet,
    ItemViewSet, NotificationViewSet, VoteViewSet,
)

router = OptionalSlashRouter()
router.register(r'bosses', BossViewSet, basename='boss')
router.register(r'boss-kills', BossKillViewSet, basename='bosskill')
router.register(r'applications', ApplicationViewSet, basename='application')
router.register(r'attendee-requests', AttendeeRequestViewSet, basename='attendeerequest')
router.register(r'auctions', AuctionViewSet, basename='auction')
router.register(r'items', ItemViewSet, basename='item')
router.register(r'notifications', NotificationViewSet, basename='notification')
router.register(r'votes', VoteViewSet, basename='vote')

urlpatterns = router.urls
