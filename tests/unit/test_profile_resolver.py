from __future__ import annotations

import asyncio

import pytest

from chat_sync.application.exceptions import NotFoundError, TransportError
from chat_sync.services.profile_resolver import ProfileResolver
from tests.conftest import ALICE, BOB


@pytest.mark.asyncio
async def test_resolve_caches_profile(resolver, directory):
    first = await resolver.resolve(ALICE)
    second = await resolver.resolve(ALICE)

    assert first is second
    assert first.display_name == "Alice Liddell"
    assert directory.calls == [ALICE]
    assert resolver.peek(ALICE) is first


@pytest.mark.asyncio
async def test_concurrent_lookups_share_one_fetch(resolver, directory):
    directory.gate = asyncio.Event()

    pending = [asyncio.create_task(resolver.resolve(BOB)) for _ in range(5)]
    await asyncio.sleep(0)
    directory.gate.set()
    profiles = await asyncio.gather(*pending)

    assert {p.display_name for p in profiles} == {"Bob Builder"}
    assert directory.calls == [BOB]


@pytest.mark.asyncio
async def test_unknown_user_is_fetched_once(resolver, directory):
    with pytest.raises(NotFoundError):
        await resolver.resolve("ghost")
    with pytest.raises(NotFoundError):
        await resolver.resolve("ghost")

    assert directory.calls == ["ghost"]
    assert resolver.is_known("ghost")
    assert resolver.peek("ghost") is None


@pytest.mark.asyncio
async def test_placeholder_for_unknown_user(directory):
    resolver = ProfileResolver(directory, placeholder_label="Someone")

    profile = await resolver.resolve_or_placeholder("ghost")

    assert profile.user_id == "ghost"
    assert profile.display_name == "Someone"
    assert profile.is_placeholder is True
    assert profile.initial == "S"


@pytest.mark.asyncio
async def test_transport_failures_are_not_cached(resolver, directory):
    directory.failures[ALICE] = TransportError("down")

    with pytest.raises(TransportError):
        await resolver.resolve(ALICE)
    assert not resolver.is_known(ALICE)
    assert (await resolver.resolve_or_placeholder(ALICE)).is_placeholder

    del directory.failures[ALICE]
    profile = await resolver.resolve(ALICE)

    assert profile.display_name == "Alice Liddell"
    assert directory.calls == [ALICE, ALICE, ALICE]


@pytest.mark.asyncio
async def test_cancelled_caller_does_not_cancel_shared_fetch(resolver, directory):
    directory.gate = asyncio.Event()
    impatient = asyncio.create_task(resolver.resolve(ALICE))
    patient = asyncio.create_task(resolver.resolve(ALICE))
    await asyncio.sleep(0)

    impatient.cancel()
    directory.gate.set()

    assert (await patient).display_name == "Alice Liddell"
    assert directory.calls == [ALICE]


@pytest.mark.asyncio
async def test_clear_forgets_cached_profiles(resolver, directory):
    await resolver.resolve(ALICE)

    resolver.clear()
    await resolver.resolve(ALICE)

    assert directory.calls == [ALICE, ALICE]


@pytest.mark.asyncio
async def test_fetch_finishing_after_clear_is_not_cached(resolver, directory):
    directory.gate = asyncio.Event()
    pending = asyncio.create_task(resolver.resolve(ALICE))
    await asyncio.sleep(0)

    resolver.clear()
    directory.gate.set()

    assert (await pending).display_name == "Alice Liddell"
    assert resolver.peek(ALICE) is None
    assert not resolver.is_known(ALICE)
