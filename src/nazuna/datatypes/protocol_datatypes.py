"""
Typed records exchanged with the messaging protocol library.

The protocol library delivers loosely shaped payloads; the session manager
converts them into these dataclasses at the boundary so the listeners and
the policy engine work with explicit inputs.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


def bare_id(jid: str) -> str:
    """
    Return the user part of a jid without server or device suffix.

    Example:
        >>> bare_id("5511999999999:12@s.whatsapp.net")
        '5511999999999'
    """
    return jid.split("@", 1)[0].split(":", 1)[0]


def mention_tag(jid: str) -> str:
    """Return the ``@number`` form used to mention a participant in text."""
    return f"@{jid.split('@', 1)[0]}"


class ProtocolEvent(str, Enum):
    """Event classes a protocol client emits."""

    CREDENTIALS_UPDATED = "credentials-updated"
    CONNECTION_STATE_CHANGED = "connection-state-changed"
    GROUP_METADATA_CHANGED = "group-metadata-changed"
    MEMBERSHIP_CHANGED = "membership-changed"
    MESSAGES_RECEIVED = "messages-received"

    def __str__(self) -> str:
        return self.value


class MembershipAction(str, Enum):
    ADD = "add"
    REMOVE = "remove"
    PROMOTE = "promote"
    DEMOTE = "demote"

    def __str__(self) -> str:
        return self.value


@dataclass(slots=True)
class GroupMetadata:
    """Subject, description and member list of a group."""

    id: str
    subject: str
    participants: List[str] = field(default_factory=list)
    description: Optional[str] = None

    @property
    def member_count(self) -> int:
        return len(self.participants)

    @classmethod
    def from_payload(cls, payload: Any) -> "GroupMetadata":
        """
        Build metadata from a protocol payload.

        Accepts either an existing :class:`GroupMetadata` or a mapping with
        ``id``, ``subject``, ``desc``/``description`` and ``participants``
        (plain ids or ``{"id": ...}`` entries).
        """
        if isinstance(payload, GroupMetadata):
            return payload
        participants = []
        for entry in payload.get("participants") or []:
            participants.append(entry.get("id") if isinstance(entry, dict) else str(entry))
        return cls(
            id=str(payload.get("id", "")),
            subject=str(payload.get("subject") or ""),
            participants=participants,
            description=payload.get("desc", payload.get("description")),
        )


@dataclass(slots=True)
class MembershipEvent:
    """Participants joined, left or changed role in a group."""

    group_id: str
    action: MembershipAction
    participants: List[str]
    author: Optional[str] = None

    @property
    def participant(self) -> Optional[str]:
        """Only the first affected participant is acted upon."""
        return self.participants[0] if self.participants else None

    @classmethod
    def from_payload(cls, payload: Any) -> "MembershipEvent":
        if isinstance(payload, MembershipEvent):
            return payload
        return cls(
            group_id=str(payload["id"]),
            action=MembershipAction(payload["action"]),
            participants=[str(p) for p in payload.get("participants") or []],
            author=payload.get("author") or None,
        )


@dataclass(slots=True)
class InboundMessage:
    """A single received message, kept only transiently."""

    message_id: str
    remote_id: Optional[str]
    payload: Optional[Dict[str, Any]]
    participant: Optional[str] = None
    from_me: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> "InboundMessage":
        if isinstance(payload, InboundMessage):
            return payload
        key = payload.get("key") or {}
        return cls(
            message_id=str(key.get("id", "")),
            remote_id=key.get("remoteJid") or None,
            payload=payload.get("message") or None,
            participant=key.get("participant") or None,
            from_me=bool(key.get("fromMe", False)),
        )


@dataclass(slots=True)
class MessageBatch:
    """Messages delivered together; ``notify`` marks live delivery."""

    messages: List[InboundMessage]
    batch_type: str = "notify"

    @property
    def is_live(self) -> bool:
        return self.batch_type == "notify"

    @classmethod
    def from_payload(cls, payload: Any) -> "MessageBatch":
        if isinstance(payload, MessageBatch):
            return payload
        raw_messages = payload.get("messages")
        if not isinstance(raw_messages, list):
            raw_messages = []
        return cls(
            messages=[InboundMessage.from_payload(m) for m in raw_messages],
            batch_type=str(payload.get("type", "")),
        )


@dataclass(slots=True)
class ConnectionUpdate:
    """Connection state change reported by the protocol client."""

    connection: Optional[str] = None
    status_code: Optional[int] = None
    error: Optional[BaseException] = None
    qr: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "ConnectionUpdate":
        if isinstance(payload, ConnectionUpdate):
            return payload
        last_disconnect = payload.get("lastDisconnect") or {}
        error = last_disconnect.get("error")
        status_code = payload.get("statusCode")
        if status_code is None and error is not None:
            status_code = getattr(error, "status_code", None)
        return cls(
            connection=payload.get("connection"),
            status_code=int(status_code) if status_code is not None else None,
            error=error,
            qr=payload.get("qr"),
        )


@dataclass(slots=True)
class OutboundMessage:
    """Content handed to ``send_message``: text, or an image with caption."""

    text: Optional[str] = None
    mentions: List[str] = field(default_factory=list)
    image: Optional[Dict[str, Any]] = None
    caption: Optional[str] = None

    @classmethod
    def text_message(cls, text: str, mentions: List[str]) -> "OutboundMessage":
        return cls(text=text, mentions=list(mentions))

    @classmethod
    def image_message(cls, image: Dict[str, Any], caption: str, mentions: List[str]) -> "OutboundMessage":
        return cls(image=image, caption=caption, mentions=list(mentions))

    @property
    def body(self) -> str:
        return self.caption if self.image is not None else (self.text or "")

    def to_payload(self) -> Dict[str, Any]:
        """Serialize to the mapping shape the protocol library expects."""
        payload: Dict[str, Any] = {"mentions": list(self.mentions)}
        if self.image is not None:
            payload["image"] = self.image
            payload["caption"] = self.caption or ""
        else:
            payload["text"] = self.text or ""
        return payload
