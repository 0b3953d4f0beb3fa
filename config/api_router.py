from django.urls import include, path, re_path

from guild_loot.loot.api.routers import OptionalSlashRouter
from guild_loot.loot.api.urls import urlpatterns as loot_urlpatterns
from guild_loot.users.api.views import GuildViewSet, LoginView, MenuView, UserViewSet

router = OptionalSlashRouter()

router.register("users", UserViewSet, basename="user")
router.register("guilds", GuildViewSet, basename="guild")


app_name = "api"
urlpatterns = [
    re_path(r"^auth/login/?$", LoginView.as_view(), name="login"),
    re_path(r"^menu/?$", MenuView.as_view(), name="menu"),
    *router.urls,
    # Kills, applications, auctions, notifications and votes
    *loot_urlpatterns,
    # Wallet and ledger
    path("dkp/", include("guild_loot.dkp.api.urls")),
]
