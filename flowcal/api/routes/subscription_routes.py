"""External calendar subscription CRUD routes."""

from __future__ import annotations

import logging
import uuid
from typing import Any

from aiohttp import web
from pydantic import ValidationError

from flowcal.calendar.exceptions import SubscriptionValidationError
from flowcal.calendar.ingestion import ExternalFeedIngestion
from flowcal.calendar.models import ExternalCalendarSubscription
from flowcal.domain.store import CalendarStore

from .calendar_routes import VALID_SPACES, UserResolver, unauthorized_json

logger = logging.getLogger(__name__)

# Fields a caller may set, keyed by request body name
EDITABLE_FIELDS: dict[str, str] = {
    "name": "name",
    "icalUrl": "feed_url",
    "space": "space",
    "color": "color",
    "enabled": "enabled",
}


def _error(message: str, status: int = 400) -> web.Response:
    return web.json_response({"error": message}, status=status)


def _dump(subscription: ExternalCalendarSubscription) -> dict[str, Any]:
    return subscription.model_dump(mode="json", by_alias=True)


def extract_changes(body: dict[str, Any]) -> dict[str, Any]:
    """Map request body keys onto subscription field names, dropping unknown keys."""
    return {field: body[key] for key, field in EDITABLE_FIELDS.items() if key in body}


def register_subscription_routes(
    app: web.Application,
    store: CalendarStore,
    ingestion: ExternalFeedIngestion,
    user_resolver: UserResolver,
) -> None:
    """Register subscription routes.

    Args:
        app: aiohttp web application
        store: Storage collaborator owning subscriptions
        ingestion: Used to validate feed URLs before they are saved
        user_resolver: Maps a request to the calling user id, or None
    """

    async def read_body(request: web.Request) -> dict[str, Any] | None:
        try:
            data = await request.json()
        except ValueError:
            return None
        return data if isinstance(data, dict) else None

    async def validate_url(url: Any) -> web.Response | None:
        if not isinstance(url, str) or not url.strip():
            return _error("icalUrl is required")
        try:
            await ingestion.validate_feed_url(url.strip())
        except SubscriptionValidationError as e:
            return _error(e.reason)
        return None

    async def list_subscriptions(request: web.Request) -> web.Response:
        user_id = user_resolver(request)
        if not user_id:
            return unauthorized_json()
        space = request.query.get("space", "all")
        if space not in VALID_SPACES:
            return _error(f"space must be one of: {', '.join(VALID_SPACES)}")
        subscriptions = await store.list_subscriptions(user_id, space)
        return web.json_response([_dump(s) for s in subscriptions])

    async def create_subscription(request: web.Request) -> web.Response:
        user_id = user_resolver(request)
        if not user_id:
            return unauthorized_json()
        body = await read_body(request)
        if body is None:
            return _error("invalid json")

        changes = extract_changes(body)
        if not isinstance(changes.get("name"), str) or not changes["name"].strip():
            return _error("name is required")
        failure = await validate_url(changes.get("feed_url"))
        if failure is not None:
            return failure

        changes["feed_url"] = changes["feed_url"].strip()
        try:
            subscription = ExternalCalendarSubscription(
                id=str(uuid.uuid4()), owner_id=user_id, **changes
            )
        except ValidationError as e:
            return _error(f"invalid subscription: {e.error_count()} field error(s)")

        created = await store.create_subscription(subscription)
        return web.json_response(_dump(created), status=201)

    async def update_subscription(request: web.Request) -> web.Response:
        user_id = user_resolver(request)
        if not user_id:
            return unauthorized_json()
        subscription_id = request.match_info["subscription_id"]
        current = await store.get_subscription(user_id, subscription_id)
        if current is None:
            return _error("External calendar not found", status=404)

        body = await read_body(request)
        if body is None:
            return _error("invalid json")
        changes = extract_changes(body)

        new_url = changes.get("feed_url")
        if "feed_url" in changes and new_url != current.feed_url:
            failure = await validate_url(new_url)
            if failure is not None:
                return failure
            changes["feed_url"] = new_url.strip()

        try:
            updated = await store.update_subscription(user_id, subscription_id, changes)
        except ValidationError as e:
            return _error(f"invalid subscription: {e.error_count()} field error(s)")
        if updated is None:
            return _error("External calendar not found", status=404)
        return web.json_response(_dump(updated))

    async def delete_subscription(request: web.Request) -> web.Response:
        user_id = user_resolver(request)
        if not user_id:
            return unauthorized_json()
        subscription_id = request.match_info["subscription_id"]
        if not await store.delete_subscription(user_id, subscription_id):
            return _error("External calendar not found", status=404)
        return web.Response(status=204)

    app.router.add_get("/api/external-calendars", list_subscriptions)
    app.router.add_post("/api/external-calendars", create_subscription)
    app.router.add_patch("/api/external-calendars/{subscription_id}", update_subscription)
    app.router.add_delete("/api/external-calendars/{subscription_id}", delete_subscription)
