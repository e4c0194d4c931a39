"""Background workers."""

from spotkeeper.application.workers.token_refresh_worker import TokenRefreshTimer

__all__ = ["TokenRefreshTimer"]
