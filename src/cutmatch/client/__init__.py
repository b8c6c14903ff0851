"""Client-side helpers used by the CutMatch apps.

- **UserDataService**: favorites, profiles, shared links, and auth
- **SupabaseBackend**: managed backend over Supabase REST
- **AnalyticsService**: fire-and-forget GA4 event sink

Usage Example
-------------
    from cutmatch.client import AnalyticsService, SupabaseBackend, UserDataService
    from cutmatch.core.config import config

    backend = SupabaseBackend.from_config(config)
    analytics = AnalyticsService(config)
    await analytics.initialize()

    service = UserDataService(backend, backend, analytics=analytics)
    await service.sign_in_with_email("ada@example.com", "secret")
    await service.save_favorite_style({"id": "buzz_cut", "name": "Buzz Cut"})
"""

from cutmatch.client.analytics import AnalyticsService
from cutmatch.client.backend import AuthBackend, AuthUser, DataBackend, SupabaseBackend
from cutmatch.client.data import UserDataService

__all__ = [
    "AnalyticsService",
    "AuthBackend",
    "AuthUser",
    "DataBackend",
    "SupabaseBackend",
    "UserDataService",
]
