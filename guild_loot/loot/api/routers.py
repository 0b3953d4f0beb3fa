from rest_framework.routers import SimpleRouter


class OptionalSlashRouter(SimpleRouter):
    """
    Router whose routes match with or without a trailing slash, so both
    ``/api/auctions`` and ``/api/auctions/`` resolve.
    """

    def __init__(self):
        super().__init__()
        self.trailing_slash = '/?'
