from django.apps import AppConfig


class DkpConfig(AppConfig):
    default_auto_field = 'django.db.models.BigAutoField'
    name = 'guild_loot.dkp'
    label = 'dkp'
    verbose_name = 'Wallets & DKP'

    def ready(self):
        import guild_loot.dkp.signals  # noqa: F401
