"""Pydantic and dataclass models for call notifications and call sessions."""

from __future__ import annotations

import re
from dataclasses import dataclass
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

_CALL_RESOURCE_RE = re.compile(r"communications/calls/([^/?#]+)", re.IGNORECASE)


class ChangeType(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class CallState(str, Enum):
    INCOMING = "incoming"
    ESTABLISHED = "established"
    TERMINATED = "terminated"


_CALL_STATE_ORDER = {
    CallState.INCOMING: 0,
    CallState.ESTABLISHED: 1,
    CallState.TERMINATED: 2,
}


class Notification(BaseModel):
    """One element of a webhook batch describing a resource change."""

    model_config = ConfigDict(frozen=True, extra="allow", populate_by_name=True)

    resource: str | None = None
    change_type: str | None = Field(default=None, alias="changeType")
    resource_data: Any = Field(default=None, alias="resourceData")

    @property
    def raw(self) -> dict[str, Any]:
        """Wire-shaped view of the notification, including unknown fields."""

        return self.model_dump(by_alias=True, exclude_none=True)

    @property
    def change(self) -> ChangeType | None:
        """Known change type, or None for values this service does not handle."""

        if not self.change_type:
            return None
        try:
            return ChangeType(self.change_type.lower())
        except ValueError:
            return None

    @property
    def call_state(self) -> str | None:
        data = self.resource_data
        if isinstance(data, dict) and isinstance(data.get("state"), str):
            return data["state"].lower()
        return None

    @property
    def call_id(self) -> str | None:
        """Call id from resourceData.id, falling back to the resource path."""

        data = self.resource_data
        if isinstance(data, dict) and isinstance(data.get("id"), str) and data["id"]:
            return data["id"]
        if self.resource:
            match = _CALL_RESOURCE_RE.search(self.resource)
            if match:
                return match.group(1)
        return None

    @property
    def tenant_id(self) -> str | None:
        data = self.resource_data
        if isinstance(data, dict) and isinstance(data.get("tenantId"), str):
            return data["tenantId"] or None
        return None


class WebhookBatch(BaseModel):
    """Envelope posted to the callback; elements are validated one by one later."""

    value: list[Any] = Field(default_factory=list)


class Ack(BaseModel):
    status: str = "accepted"
    received: int


@dataclass
class CallSession:
    """Model of one active call known to this service."""

    call_id: str
    tenant_id: str
    state: CallState = CallState.INCOMING

    @property
    def terminated(self) -> bool:
        return self.state is CallState.TERMINATED

    def advance(self, state: CallState) -> bool:
        """Move to ``state`` unless that would regress; returns whether it moved."""

        if _CALL_STATE_ORDER[state] <= _CALL_STATE_ORDER[self.state]:
            return False
        self.state = state
        return True
