import asyncio
import json
import os
import sys

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

import httpx
import pytest

from offline_sync.models import QueuedAction
from offline_sync.services.replay import (
    HostedBackendClient,
    ReplayDispatcher,
    ReplayError,
    ReplayPayloadError,
    UnknownActionKindError,
    build_backend_dispatcher,
)


def _client(status_code=201):
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return httpx.Response(status_code)

    client = HostedBackendClient(
        base_url="https://backend.example.test/",
        api_key="anon-key",
        transport=httpx.MockTransport(handler),
    )
    return client, requests


def _action(kind, payload):
    return QueuedAction(id="act_1", kind=kind, payload=payload, enqueued_at=1)


def test_rsvp_replaces_existing_attendance():
    client, requests = _client()
    dispatcher = build_backend_dispatcher(client)

    asyncio.run(dispatcher.dispatch(_action("RSVP_EVENT", {"eventId": "42", "userId": "u1"})))

    assert [r.method for r in requests] == ["DELETE", "POST"]
    assert requests[0].url.path == "/rest/v1/event_attendees"
    assert requests[0].url.params["event_id"] == "eq.42"
    assert requests[0].url.params["user_id"] == "eq.u1"
    assert json.loads(requests[1].content) == {"event_id": "42", "user_id": "u1", "status": "going"}
    assert requests[1].headers["apikey"] == "anon-key"
    assert requests[1].headers["authorization"] == "Bearer anon-key"


def test_rsvp_not_going_only_deletes():
    client, requests = _client()
    asyncio.run(client.rsvp_event({"event_id": "42", "user_id": "u1", "status": "not_going"}))
    assert [r.method for r in requests] == ["DELETE"]


def test_rsvp_rejects_unknown_status():
    client, requests = _client()
    with pytest.raises(ReplayPayloadError):
        asyncio.run(client.rsvp_event({"event_id": "42", "user_id": "u1", "status": "maybe"}))
    assert requests == []


def test_add_review_validates_rating():
    client, requests = _client()
    with pytest.raises(ReplayPayloadError):
        asyncio.run(client.add_review({"business_id": "b1", "user_id": "u1", "rating": 9}))
    asyncio.run(client.add_review({"business_id": "b1", "user_id": "u1", "rating": "4", "comment": "Safe and welcoming"}))
    assert len(requests) == 1
    assert json.loads(requests[0].content) == {
        "business_id": "b1",
        "user_id": "u1",
        "rating": 4,
        "comment": "Safe and welcoming",
    }


def test_update_profile_patches_user_row():
    client, requests = _client(status_code=204)
    asyncio.run(client.update_profile({"user_id": "u1", "fields": {"bio": "hi", "pronouns": "they/them"}}))
    assert requests[0].method == "PATCH"
    assert requests[0].url.path == "/rest/v1/users"
    assert requests[0].url.params["id"] == "eq.u1"
    assert json.loads(requests[0].content) == {"bio": "hi", "pronouns": "they/them"}


def test_update_profile_requires_fields():
    client, _ = _client()
    with pytest.raises(ReplayPayloadError):
        asyncio.run(client.update_profile({"user_id": "u1", "fields": {}}))


def test_favorite_toggle():
    client, requests = _client()

    async def scenario():
        await client.favorite_business({"businessId": "b9", "userId": "u1"})
        await client.favorite_business({"business_id": "b9", "user_id": "u1", "favorite": False})
        await client.aclose()

    asyncio.run(scenario())
    assert [r.method for r in requests] == ["POST", "DELETE"]
    assert "ignore-duplicates" in requests[0].headers["prefer"]
    assert requests[1].url.params["business_id"] == "eq.b9"


def test_missing_payload_field_is_payload_error():
    client, _ = _client()
    with pytest.raises(ReplayPayloadError, match="event_id"):
        asyncio.run(client.rsvp_event({"user_id": "u1"}))


def test_backend_error_status_raises():
    client, _ = _client(status_code=500)
    with pytest.raises(httpx.HTTPStatusError):
        asyncio.run(client.add_review({"business_id": "b1", "user_id": "u1", "rating": 5}))


def test_unconfigured_backend_fails_replay():
    client = HostedBackendClient(base_url="", api_key="")
    assert client.configured is False
    with pytest.raises(ReplayError):
        asyncio.run(client.add_review({"business_id": "b1", "user_id": "u1", "rating": 5}))


def test_dispatcher_unknown_kind():
    dispatcher = ReplayDispatcher()
    with pytest.raises(UnknownActionKindError):
        asyncio.run(dispatcher.dispatch(_action("MOOD_CHECKIN", {})))


def test_dispatcher_lists_registered_kinds():
    client, _ = _client()
    assert build_backend_dispatcher(client).kinds() == [
        "ADD_REVIEW",
        "FAVORITE_BUSINESS",
        "RSVP_EVENT",
        "UPDATE_PROFILE",
    ]
