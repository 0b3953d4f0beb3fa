"""
Wallet and ledger API URL configuration.
"""

from guild_loot.loot.api.routers import OptionalSlashRouter

from .views import LedgerEntryViewSet, WalletViewSet

app_name = 'dkp-api'

router = OptionalSlashRouter()
router.register(r'wallet', WalletViewSet, basename='wallet')
router.register(r'ledger', LedgerEntryViewSet, basename='ledger')

urlpatterns = router.urls
