import logging
import os
from typing import Any, Awaitable, Callable, Dict, List, Optional

import httpx

from offline_sync.models import QueuedAction

logger = logging.getLogger(__name__)

ReplayHandler = Callable[[Dict[str, Any]], Awaitable[None]]

RSVP_STATUSES = {"going", "interested", "not_going"}


class ReplayError(RuntimeError):
    """Base class for replay failures raised before the backend is called."""


class UnknownActionKindError(ReplayError):
    pass


class ReplayPayloadError(ReplayError):
    pass


def _pick(payload: Dict[str, Any], *names: str, default: Any = None, required: bool = True) -> Any:
    for name in names:
        value = payload.get(name)
        if value not in (None, ""):
            return value
    if required and default is None:
        raise ReplayPayloadError(f"Missing payload field: {names[0]}")
    return default


class ReplayDispatcher:
    """Routes a queued action to the handler registered for its kind."""

    def __init__(self, handlers: Optional[Dict[str, ReplayHandler]] = None) -> None:
        self._handlers: Dict[str, ReplayHandler] = dict(handlers or {})

    def register(self, kind: str, handler: ReplayHandler) -> None:
        self._handlers[kind] = handler

    def kinds(self) -> List[str]:
        return sorted(self._handlers)

    async def dispatch(self, action: QueuedAction) -> None:
        handler = self._handlers.get(action.kind)
        if handler is None:
            logger.warning("Unknown offline action kind: %s (action=%s)", action.kind, action.id)
            raise UnknownActionKindError(f"No replay handler for kind {action.kind!r}")
        await handler(action.payload)


class HostedBackendClient:
    """REST client for the hosted community database.

    Talks to a PostgREST-style interface: one path per table under
    ``/rest/v1`` with filters passed as ``column=eq.value`` query params.
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.base_url = (base_url if base_url is not None else os.getenv("BACKEND_URL", "")).strip().rstrip("/")
        self.api_key = (api_key if api_key is not None else os.getenv("BACKEND_API_KEY", "")).strip()
        self._timeout = timeout
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    @property
    def configured(self) -> bool:
        return bool(self.base_url)

    def _get_client(self) -> httpx.AsyncClient:
        if not self.configured:
            raise ReplayError("BACKEND_URL is not configured")
        if self._client is None:
            headers = {"Content-Type": "application/json", "Prefer": "return=minimal"}
            if self.api_key:
                headers["apikey"] = self.api_key
                headers["Authorization"] = f"Bearer {self.api_key}"
            self._client = httpx.AsyncClient(
                base_url=f"{self.base_url}/rest/v1",
                headers=headers,
                timeout=self._timeout,
                transport=self._transport,
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _request(self, method: str, table: str, **kwargs: Any) -> httpx.Response:
        response = await self._get_client().request(method, f"/{table}", **kwargs)
        response.raise_for_status()
        return response

    async def rsvp_event(self, payload: Dict[str, Any]) -> None:
        event_id = str(_pick(payload, "event_id", "eventId"))
        user_id = str(_pick(payload, "user_id", "userId"))
        status = str(_pick(payload, "status", default="going"))
        if status not in RSVP_STATUSES:
            raise ReplayPayloadError(f"Unsupported RSVP status: {status}")
        filters = {"event_id": f"eq.{event_id}", "user_id": f"eq.{user_id}"}
        await self._request("DELETE", "event_attendees", params=filters)
        if status != "not_going":
            await self._request(
                "POST",
                "event_attendees",
                json={"event_id": event_id, "user_id": user_id, "status": status},
            )

    async def add_review(self, payload: Dict[str, Any]) -> None:
        business_id = str(_pick(payload, "business_id", "businessId"))
        user_id = str(_pick(payload, "user_id", "userId"))
        try:
            rating = int(_pick(payload, "rating"))
        except (TypeError, ValueError) as exc:
            raise ReplayPayloadError("Review rating must be an integer") from exc
        if not 1 <= rating <= 5:
            raise ReplayPayloadError("Review rating must be between 1 and 5")
        comment = str(_pick(payload, "comment", default="", required=False))
        await self._request(
            "POST",
            "reviews",
            json={"business_id": business_id, "user_id": user_id, "rating": rating, "comment": comment},
        )

    async def update_profile(self, payload: Dict[str, Any]) -> None:
        user_id = str(_pick(payload, "user_id", "userId"))
        fields = payload.get("fields")
        if not isinstance(fields, dict) or not fields:
            raise ReplayPayloadError("Profile update needs a non-empty 'fields' object")
        await self._request("PATCH", "users", params={"id": f"eq.{user_id}"}, json=fields)

    async def favorite_business(self, payload: Dict[str, Any]) -> None:
        business_id = str(_pick(payload, "business_id", "businessId"))
        user_id = str(_pick(payload, "user_id", "userId"))
        favorite = payload.get("favorite", True)
        if favorite:
            await self._request(
                "POST",
                "user_favorites",
                json={"user_id": user_id, "business_id": business_id},
                headers={"Prefer": "resolution=ignore-duplicates,return=minimal"},
            )
        else:
            await self._request(
                "DELETE",
                "user_favorites",
                params={"user_id": f"eq.{user_id}", "business_id": f"eq.{business_id}"},
            )


def build_backend_dispatcher(client: HostedBackendClient) -> ReplayDispatcher:
    return ReplayDispatcher(
        {
            "RSVP_EVENT": client.rsvp_event,
            "ADD_REVIEW": client.add_review,
            "UPDATE_PROFILE": client.update_profile,
            "FAVORITE_BUSINESS": client.favorite_business,
        }
    )
