"""Fire-and-forget analytics sink (Google Analytics 4 Measurement Protocol).

:class:`AnalyticsService` is constructed explicitly and handed to the code
that records events; there is no module-level instance.  Its contract:

- :meth:`AnalyticsService.initialize` runs once; later calls are no-ops.
- Tracking calls made before initialisation completes are dropped.
- Tracking calls return immediately.  The HTTP post runs as a background task
  on the running event loop.
- Nothing raises into the caller.  Failures are logged and the event is lost.

When no measurement id / API secret is configured, or
``ANALYTICS_ENABLED=false``, events are only logged at DEBUG level.
"""

from __future__ import annotations

import asyncio
import logging
import secrets
import string
import time
from typing import Any

import httpx

from cutmatch import __version__
from cutmatch.core.config import CutMatchConfig

logger = logging.getLogger(__name__)

GA4_COLLECT_URL = "https://www.google-analytics.com/mp/collect"
DEFAULT_ENGAGEMENT_MSEC = 1000

_BASE36 = string.digits + string.ascii_lowercase


def random_base36(length: int = 9) -> str:
    return "".join(secrets.choice(_BASE36) for _ in range(length))


def generate_client_id() -> str:
    """Return an installation id of the form ``<epoch ms>-<9 base-36 chars>``."""
    return f"{int(time.time() * 1000)}-{random_base36()}"


class AnalyticsService:
    """GA4 event sink.

    Args:
        app_config: Provides ``google_analytics_id``,
            ``google_analytics_api_secret`` and ``analytics_enabled``.
        http_client: Optional client used for posting events.  When omitted
            one is created during :meth:`initialize` and closed by
            :meth:`aclose`.
        platform: Value of the ``platform`` parameter attached to events.
        client_id: Fixed installation id; generated when omitted.
    """

    def __init__(
        self,
        app_config: CutMatchConfig,
        *,
        http_client: httpx.AsyncClient | None = None,
        platform: str = "web",
        client_id: str | None = None,
    ) -> None:
        self.measurement_id = app_config.google_analytics_id
        self.api_secret = app_config.google_analytics_api_secret
        self.platform = platform
        self.client_id = client_id
        self.enabled = bool(
            app_config.analytics_enabled and self.measurement_id and self.api_secret
        )

        self._http = http_client
        self._owns_client = http_client is None
        self._initialized = False
        self._pending: set[asyncio.Task] = set()

    @property
    def initialized(self) -> bool:
        return self._initialized

    async def initialize(self) -> None:
        """Prepare the sink.  Safe to call repeatedly; never raises."""
        if self._initialized:
            return
        try:
            if self.client_id is None:
                self.client_id = generate_client_id()
            if self.enabled and self._http is None:
                self._http = httpx.AsyncClient(timeout=5.0)
            self._initialized = True
            logger.info(
                f"Analytics initialised (enabled={self.enabled}, client_id={self.client_id})"
            )
            self.track_event("app_open", {"engagement_time_msec": 1})
        except Exception as e:
            logger.warning(f"Analytics initialisation failed; events will be dropped: {e}")

    def build_payload(self, event_name: str, params: dict[str, Any] | None = None) -> dict:
        """Build the Measurement Protocol body for one event."""
        params = dict(params or {})
        params.setdefault("engagement_time_msec", DEFAULT_ENGAGEMENT_MSEC)
        params["platform"] = self.platform
        params["app_version"] = __version__
        params["timestamp_micros"] = int(time.time() * 1_000_000)
        return {"client_id": self.client_id, "events": [{"name": event_name, "params": params}]}

    def track_event(self, event_name: str, params: dict[str, Any] | None = None) -> None:
        """Record one event without waiting for delivery.

        Args:
            event_name: GA4 event name.
            params: Flat mapping of event parameters.
        """
        if not self._initialized:
            logger.debug(f"[Analytics] Dropped {event_name}: not initialised")
            return
        try:
            payload = self.build_payload(event_name, params)
            if not self.enabled:
                logger.debug(f"[Analytics] Event (disabled): {event_name} {params or {}}")
                return

            loop = asyncio.get_running_loop()
            task = loop.create_task(self._send(event_name, payload))
            self._pending.add(task)
            task.add_done_callback(self._pending.discard)
        except RuntimeError:
            logger.debug(f"[Analytics] Dropped {event_name}: no running event loop")
        except Exception as e:
            logger.warning(f"[Analytics] Could not queue {event_name}: {e}")

    async def _send(self, event_name: str, payload: dict) -> None:
        try:
            response = await self._http.post(
                GA4_COLLECT_URL,
                params={"measurement_id": self.measurement_id, "api_secret": self.api_secret},
                json=payload,
            )
            if response.is_error:
                logger.warning(f"GA4 event {event_name} failed: HTTP {response.status_code}")
            else:
                logger.debug(f"[Analytics] Event sent: {event_name} ({response.status_code})")
        except Exception as e:
            logger.warning(f"Error sending GA4 event {event_name}: {e}")

    async def flush(self) -> None:
        """Wait for every queued event to finish sending."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    async def aclose(self) -> None:
        await self.flush()
        if self._owns_client and self._http is not None:
            await self._http.aclose()
            self._http = None
        self._initialized = False

    # ------------------------------------------------------------------
    # Convenience events
    # ------------------------------------------------------------------

    def screen_view(self, screen_name: str, screen_class: str | None = None) -> None:
        self.track_event(
            "screen_view",
            {
                "screen_name": screen_name,
                "screen_class": screen_class or screen_name,
                "engagement_time_msec": 1000,
            },
        )

    def style_viewed(self, style_id: str, style_name: str, confidence: float | None = None) -> None:
        params: dict[str, Any] = {"style_id": style_id, "style_name": style_name}
        if confidence is not None:
            params["confidence_score"] = confidence
        self.track_event("style_viewed", params)

    def style_favorited(self, style_id: str, style_name: str | None) -> None:
        self.track_event("style_favorited", {"style_id": style_id, "style_name": style_name or ""})

    def style_unfavorited(self, style_id: str, style_name: str | None = None) -> None:
        self.track_event(
            "style_unfavorited", {"style_id": style_id, "style_name": style_name or ""}
        )

    def style_shared(self, style_id: str, style_name: str | None, method: str = "link") -> None:
        self.track_event(
            "share",
            {
                "content_type": "hairstyle",
                "item_id": style_id,
                "style_name": style_name or "",
                "method": method,
            },
        )

    def affiliate_click(self, product_id: str, partner: str, style_id: str | None = None) -> None:
        self.track_event(
            "affiliate_click",
            {"product_id": product_id, "partner": partner, "style_id": style_id or "none"},
        )

    def barber_search(self, location: str, results_count: int) -> None:
        self.track_event("barber_search", {"location": location, "results_count": results_count})

    def photo_uploaded(self, source: str) -> None:
        """``source`` is ``"camera"`` or ``"gallery"``."""
        self.track_event("photo_uploaded", {"photo_source": source})

    def subscription_event(self, action: str, plan: str, price: float | None = None) -> None:
        params: dict[str, Any] = {"action": action, "plan": plan}
        if price is not None:
            params["value"] = price
            params["currency"] = "USD"
        self.track_event("subscription", params)

    def review_submitted(self, barber_id: str, rating: int) -> None:
        self.track_event("review_submitted", {"barber_id": barber_id, "rating": rating})

    def language_changed(self, from_language: str, to_language: str) -> None:
        self.track_event(
            "language_changed", {"from_language": from_language, "to_language": to_language}
        )
