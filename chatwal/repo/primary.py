from __future__ import annotations
import asyncio
from typing import Any, Protocol

import httpx

from chatwal.domain.errors import CommitError
from chatwal.domain.models import (
    ConversationAggregate, MessageRecord, MessageStatus, Party, ProductContext,
)


class PrimaryStore(Protocol):
    """The shared datastore messages are eventually committed into."""
    async def find_duplicate(self, message_id: str, room_id: str) -> MessageRecord | None: ...
    async def find_message(self, message_id: str) -> MessageRecord | None: ...
    async def insert_message(self, record: MessageRecord) -> None: ...
    async def update_message_status(self, message_id: str, status: str) -> None: ...
    async def get_conversation(self, room_id: str) -> ConversationAggregate | None: ...
    async def create_conversation(
        self, room_id: str, participants: list[Party], product: ProductContext | None
    ) -> ConversationAggregate: ...
    async def save_conversation(self, conv: ConversationAggregate) -> None: ...
    async def close(self) -> None: ...


class InMemoryPrimaryStore:
    """
    Dict-backed primary store for dev and tests.
    Mirrors the unique indexes of the real collections: message_id is unique,
    and (message_id, room_id) is the dedup key.
    Returns copies so callers cannot mutate stored state without saving.
    """
    def __init__(self):
        self.messages: dict[tuple[str, str], MessageRecord] = {}
        self.by_message_id: dict[str, tuple[str, str]] = {}
        self.conversations: dict[str, ConversationAggregate] = {}

    async def find_duplicate(self, message_id: str, room_id: str) -> MessageRecord | None:
        rec = self.messages.get((message_id, room_id))
        return rec.model_copy(deep=True) if rec else None

    async def find_message(self, message_id: str) -> MessageRecord | None:
        key = self.by_message_id.get(message_id)
        return self.messages[key].model_copy(deep=True) if key else None

    async def insert_message(self, record: MessageRecord) -> None:
        if record.message_id in self.by_message_id:
            raise CommitError(f"duplicate key message_id={record.message_id}", record.message_id)
        key = record.dedup_key
        self.messages[key] = record.model_copy(deep=True)
        self.by_message_id[record.message_id] = key

    async def update_message_status(self, message_id: str, status: str) -> None:
        key = self.by_message_id.get(message_id)
        if key is None:
            raise CommitError(f"message {message_id} not found", message_id)
        try:
            self.messages[key].status = MessageStatus(status)
        except ValueError as e:
            raise CommitError(f"invalid message status {status!r}", message_id) from e

    async def get_conversation(self, room_id: str) -> ConversationAggregate | None:
        conv = self.conversations.get(room_id)
        return conv.model_copy(deep=True) if conv else None

    async def create_conversation(
        self, room_id: str, participants: list[Party], product: ProductContext | None
    ) -> ConversationAggregate:
        if room_id in self.conversations:
            return self.conversations[room_id].model_copy(deep=True)
        conv = ConversationAggregate(room_id=room_id, product=product)
        for p in participants:
            conv.add_participant(p)
        self.conversations[room_id] = conv
        return conv.model_copy(deep=True)

    async def save_conversation(self, conv: ConversationAggregate) -> None:
        self.conversations[conv.room_id] = conv.model_copy(deep=True)

    async def close(self) -> None:
        return None

    def count_messages(self, message_id: str | None = None, room_id: str | None = None) -> int:
        return sum(
            1 for (mid, rid) in self.messages
            if (message_id is None or mid == message_id) and (room_id is None or rid == room_id)
        )


class HttpPrimaryStore:
    """
    Primary store reached over the primary server's REST API.
    - Retries connect/read failures with exponential backoff
    - 404 on lookups means "absent", any other failure becomes CommitError
    """
    def __init__(
        self,
        base_url: str,
        api_secret: str | None = None,
        timeout_s: float = 10.0,
        max_retries: int = 2,
        backoff_s: float = 0.25,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        headers = {"Content-Type": "application/json"}
        if api_secret:
            headers["X-API-SECRET"] = api_secret
        self._client = httpx.AsyncClient(
            base_url=base_url, timeout=timeout_s, headers=headers, transport=transport,
        )
        self.max_retries = max_retries
        self.backoff_s = backoff_s

    async def _request(self, method: str, url: str, json: Any | None = None) -> httpx.Response | None:
        last_exc: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                resp = await self._client.request(method, url, json=json)
                if resp.status_code == 404 and method == "GET":
                    return None
                if resp.status_code >= 500 and attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_s * (2 ** attempt))
                    continue
                resp.raise_for_status()
                return resp
            except (httpx.ConnectError, httpx.ReadTimeout, httpx.RemoteProtocolError) as e:
                last_exc = e
                if attempt < self.max_retries:
                    await asyncio.sleep(self.backoff_s * (2 ** attempt))
                    continue
                raise CommitError(f"primary store unreachable: {e}") from e
            except httpx.HTTPStatusError as e:
                raise CommitError(
                    f"primary store {method} {url} -> HTTP {e.response.status_code}: {e.response.text}"
                ) from e
        raise CommitError(f"primary store request failed: {last_exc}")

    async def find_duplicate(self, message_id: str, room_id: str) -> MessageRecord | None:
        r = await self._request("GET", f"/api/messaging/rooms/{room_id}/messages/{message_id}")
        return MessageRecord(**r.json()) if r is not None else None

    async def find_message(self, message_id: str) -> MessageRecord | None:
        r = await self._request("GET", f"/api/messaging/messages/{message_id}")
        return MessageRecord(**r.json()) if r is not None else None

    async def insert_message(self, record: MessageRecord) -> None:
        await self._request(
            "POST", f"/api/messaging/rooms/{record.room_id}/messages",
            json=record.model_dump(mode="json"),
        )

    async def update_message_status(self, message_id: str, status: str) -> None:
        await self._request("PATCH", f"/api/messaging/messages/{message_id}/status", json={"status": status})

    async def get_conversation(self, room_id: str) -> ConversationAggregate | None:
        r = await self._request("GET", f"/api/messaging/conversations/{room_id}")
        return ConversationAggregate(**r.json()) if r is not None else None

    async def create_conversation(
        self, room_id: str, participants: list[Party], product: ProductContext | None
    ) -> ConversationAggregate:
        conv = ConversationAggregate(room_id=room_id, product=product)
        for p in participants:
            conv.add_participant(p)
        r = await self._request("POST", "/api/messaging/conversations", json=conv.model_dump(mode="json"))
        return ConversationAggregate(**r.json()) if r is not None and r.content else conv

    async def save_conversation(self, conv: ConversationAggregate) -> None:
        await self._request(
            "PUT", f"/api/messaging/conversations/{conv.room_id}", json=conv.model_dump(mode="json"),
        )

    async def close(self) -> None:
        await self._client.aclose()
