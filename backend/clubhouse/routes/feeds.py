"""Live collection feeds as newline-delimited JSON."""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator

from fastapi import APIRouter, Depends
from fastapi.responses import StreamingResponse

from clubhouse.middleware.auth import get_current_principal
from clubhouse.principal import Principal
from clubhouse.services.feeds import Subscription, feed_hub
from clubhouse.services.resources import ResourceService
from clubhouse.store import DocumentStore, Record, get_store

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/feeds", tags=["feeds"])


def _line(records: list[Record]) -> str:
    return json.dumps({"items": [r.to_dict() for r in records]}) + "\n"


async def _stream(initial: list[Record], subscription: Subscription) -> AsyncIterator[str]:
    try:
        yield _line(initial)
        async for snapshot in subscription.snapshots():
            yield _line(snapshot)
    finally:
        feed_hub.release(subscription)
        logger.debug("Feed %s closed for %s", subscription.feed, subscription.principal.id)


@router.get("/{collection}")
async def follow(
    collection: str,
    principal: Principal = Depends(get_current_principal),
    store: DocumentStore = Depends(get_store),
):
    """Stream the caller's view of ``collection``: one line per snapshot.

    Opening the same feed again replaces this stream; signing out ends it.
    """
    service = ResourceService(store, principal)
    # Read before streaming so store errors still map to an HTTP status.
    initial = await service.list(collection)
    subscription = feed_hub.open(principal, collection)
    return StreamingResponse(_stream(initial, subscription), media_type="application/x-ndjson")
