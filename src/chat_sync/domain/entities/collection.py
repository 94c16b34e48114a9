"""Ordered, id-keyed message state for one conversation scope.

Records are kept sorted by ``(created_at, id)``. The collection also tracks:

* tombstones: ids deleted since the last full fetch, so a late or redelivered
  insert cannot resurrect them;
* buffered updates: updates whose insert has not arrived yet;
* at most one provisional (optimistic) message, shown until it is confirmed,
  failed, or suppressed by its echo.
"""
from __future__ import annotations

from bisect import bisect_left, insort
from datetime import timedelta

from chat_sync.domain.entities.message import Message, OrderingKey
from chat_sync.domain.value_objects.scope import ConversationScope

DEFAULT_ECHO_WINDOW = timedelta(seconds=30)


class MessageCollection:
    def __init__(
        self,
        scope: ConversationScope,
        *,
        echo_window: timedelta = DEFAULT_ECHO_WINDOW,
    ) -> None:
        self.scope = scope
        self._echo_window = echo_window
        self._by_id: dict[str, Message] = {}
        self._keys: list[OrderingKey] = []
        self._tombstones: set[str] = set()
        self._buffered: dict[str, Message] = {}
        self._provisional: Message | None = None
        self._echoes: dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._by_id)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def get(self, message_id: str) -> Message | None:
        return self._by_id.get(message_id)

    @property
    def provisional(self) -> Message | None:
        return self._provisional

    def records(self) -> list[Message]:
        """Confirmed records in display order."""
        return [self._by_id[mid] for _ts, mid in self._keys]

    def view(self) -> list[Message]:
        """Confirmed records plus the provisional one at its ordering position."""
        records = self.records()
        if self._provisional is not None:
            idx = bisect_left(self._keys, self._provisional.ordering_key)
            records.insert(idx, self._provisional)
        return records

    def is_deleted(self, message_id: str) -> bool:
        return message_id in self._tombstones

    def echo_of(self, local_id: str) -> str | None:
        """Server id whose insert suppressed the given provisional, if any."""
        return self._echoes.get(local_id)

    # -- confirmed records -------------------------------------------------

    def replace_all(self, records: list[Message]) -> None:
        """Swap in an authoritative snapshot (initial fetch or refetch)."""
        previous = self._by_id
        fresh: dict[str, Message] = {}
        for record in records:
            if record.scope == self.scope:
                fresh[record.id] = record

        self._by_id = fresh
        self._keys = sorted(r.ordering_key for r in fresh.values())
        for message_id in self._tombstones:
            self._buffered.pop(message_id, None)
        self._tombstones.clear()
        for message_id in fresh:
            self._buffered.pop(message_id, None)

        for message_id, record in fresh.items():
            if message_id not in previous:
                self._suppress_echo(record)

    def upsert(self, record: Message) -> bool:
        """Insert or replace by id. Returns True if the collection changed."""
        if record.scope != self.scope or record.id in self._tombstones:
            return False

        existing = self._by_id.get(record.id)
        if existing is None:
            self._suppress_echo(record)
        elif existing.edited and not record.edited:
            # redelivered insert must not revert an applied edit
            record = record.with_edit(existing.body, existing.edited)

        buffered = self._buffered.pop(record.id, None)
        if buffered is not None:
            record = record.with_edit(buffered.body, buffered.edited)

        if existing is not None:
            if existing == record:
                return False
            self._drop_key(existing.ordering_key)

        self._by_id[record.id] = record
        insort(self._keys, record.ordering_key)
        return True

    def apply_update(self, record: Message) -> bool:
        """Apply body/edited from ``record``; buffer it if the id is not shown.

        Updates for hidden ids are buffered too, so a ``restore`` after a failed
        delete comes back with the latest body.
        """
        if record.scope != self.scope:
            return False

        existing = self._by_id.get(record.id)
        if existing is None:
            self._buffered[record.id] = record
            return False

        updated = existing.with_edit(record.body, record.edited)
        if updated == existing:
            return False
        self._by_id[record.id] = updated
        return True

    def remove(self, message_id: str) -> Message | None:
        self._tombstones.add(message_id)
        self._buffered.pop(message_id, None)
        existing = self._by_id.pop(message_id, None)
        if existing is not None:
            self._drop_key(existing.ordering_key)
        return existing

    def restore(self, record: Message) -> bool:
        self._tombstones.discard(record.id)
        return self.upsert(record)

    # -- provisional record ------------------------------------------------

    def add_provisional(self, record: Message) -> None:
        if self._provisional is not None:
            raise ValueError("A provisional message is already pending")
        if not record.is_provisional:
            raise ValueError("Provisional message needs a local id")
        self._provisional = record

    def take_provisional(self, local_id: str) -> Message | None:
        """Remove and return the provisional if it carries ``local_id``.

        Also forgets the echo recorded for ``local_id``; the send is settled.
        """
        self._echoes.pop(local_id, None)
        if self._provisional is None or self._provisional.local_id != local_id:
            return None
        provisional, self._provisional = self._provisional, None
        return provisional

    def _suppress_echo(self, record: Message) -> None:
        provisional = self._provisional
        if provisional is None or provisional.local_id is None:
            return
        if (
            record.author_id == provisional.author_id
            and record.body == provisional.body
            and record.created_at >= provisional.created_at - self._echo_window
        ):
            self._echoes[provisional.local_id] = record.id
            self._provisional = None

    def _drop_key(self, key: OrderingKey) -> None:
        idx = bisect_left(self._keys, key)
        if idx < len(self._keys) and self._keys[idx] == key:
            del self._keys[idx]
