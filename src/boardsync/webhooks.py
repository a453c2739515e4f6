from __future__ import annotations

import hashlib
import hmac
import json
from dataclasses import dataclass, field
from typing import Any

from .models import ISSUE, PULL_REQUEST, Subject

SIGNATURE_HEADER = "X-Hub-Signature-256"
EVENT_HEADER = "X-GitHub-Event"
DELIVERY_HEADER = "X-GitHub-Delivery"


class WebhookError(ValueError):
    """Raised for deliveries that cannot be turned into an event."""


@dataclass(frozen=True)
class WebhookEvent:
    """One webhook delivery, keyed ``"<event>.<action>"`` (e.g. ``issues.opened``)."""

    name: str
    payload: dict[str, Any] = field(default_factory=dict)
    delivery_id: str | None = None

    @property
    def action(self) -> str | None:
        action = self.payload.get("action")
        return action if isinstance(action, str) else None

    @property
    def key(self) -> str:
        return f"{self.name}.{self.action}" if self.action else self.name

    @property
    def repository(self) -> dict[str, Any]:
        repo = self.payload.get("repository")
        return repo if isinstance(repo, dict) else {}

    @property
    def repository_name(self) -> str | None:
        return self.repository.get("name")

    @property
    def repository_owner(self) -> str | None:
        owner = self.repository.get("owner") or {}
        return owner.get("login")

    def owner_urls(self) -> set[str]:
        """URLs a board owned by this event's owner may carry as ``owner_url``.

        Org boards carry ``/orgs/{org}``, repository boards the repository URL;
        user-owned boards carry ``/users/{login}``.
        """
        urls: set[str] = set()
        org = self.payload.get("organization")
        if isinstance(org, dict) and org.get("url"):
            urls.add(org["url"])
        owner = self.repository.get("owner") or {}
        if owner.get("url"):
            urls.add(owner["url"])
        if self.repository.get("url"):
            urls.add(self.repository["url"])
        return urls

    def subject(self) -> Subject | None:
        issue = self.payload.get("issue")
        if isinstance(issue, dict) and issue.get("url"):
            return Subject(content_url=issue["url"], content_id=issue["id"], content_type=ISSUE)
        pull = self.payload.get("pull_request")
        if isinstance(pull, dict) and pull.get("issue_url"):
            return Subject(
                content_url=pull["issue_url"], content_id=pull["id"], content_type=PULL_REQUEST
            )
        return None


def sign_payload(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return f"sha256={digest}"


def verify_signature(secret: str | None, body: bytes, signature: str | None) -> bool:
    """Check ``X-Hub-Signature-256``; without a configured secret every delivery passes."""
    if not secret:
        return True
    if not signature:
        return False
    return hmac.compare_digest(sign_payload(secret, body), signature.strip())


def parse_delivery(headers: Any, body: bytes) -> WebhookEvent:
    name = headers.get(EVENT_HEADER)
    if not name:
        raise WebhookError(f"Missing {EVENT_HEADER} header")
    try:
        payload = json.loads(body.decode("utf-8") or "{}")
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise WebhookError(f"Invalid JSON payload: {exc}") from exc
    if not isinstance(payload, dict):
        raise WebhookError("Webhook payload must be a JSON object")
    return WebhookEvent(name=name, payload=payload, delivery_id=headers.get(DELIVERY_HEADER))


__all__ = [
    "WebhookError",
    "WebhookEvent",
    "parse_delivery",
    "sign_payload",
    "verify_signature",
]
