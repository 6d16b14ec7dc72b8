import logging
from datetime import datetime, timezone
from typing import Optional
import httpx
from docportal.utils import config

logger = logging.getLogger(__name__)

DOCUMENT_UPLOADED = "document.uploaded"
DOCUMENT_DELETED = "document.deleted"


def build_event(event: str, document) -> dict:
    return {
        "event": event,
        "userId": document.user_id,
        "documentId": document.id,
        "filename": document.original_filename,
        "eventTime": datetime.now(timezone.utc).isoformat(),
    }


async def publish_event(payload: dict, webhook_url: Optional[str] = None,
                        transport: Optional[httpx.AsyncBaseTransport] = None) -> bool:
    """
        POST a document event to the configured webhook. Returns whether it was delivered.
    """
    webhook_url = webhook_url or config.WEBHOOK_URL
    if not webhook_url:
        return False
    try:
        async with httpx.AsyncClient(transport=transport, timeout=5.0) as client:
            response = await client.post(webhook_url, json=payload)
            response.raise_for_status()
    except httpx.HTTPError as exc:
        logger.warning("Webhook delivery of %s for %s failed: %s",
                       payload["event"], payload["documentId"], exc)
        return False
    return True
