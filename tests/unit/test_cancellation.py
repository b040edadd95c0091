import asyncio

import pytest

from buildpilot.core.cancellation import CancellationRegistry, CancellationToken
from buildpilot.core.errors import BuildCancelledError


def test_start_supersedes_previous_token() -> None:
    registry = CancellationRegistry()

    first = registry.start("p1")
    second = registry.start("p1")

    assert first.cancelled
    assert not second.cancelled
    assert registry.get("p1") is second
    assert registry.active_count() == 1


def test_tokens_are_scoped_per_project() -> None:
    registry = CancellationRegistry()

    one = registry.start("p1")
    two = registry.start("p2")

    assert not one.cancelled
    assert not two.cancelled
    assert registry.active_count() == 2


def test_stop_cancels_and_forgets() -> None:
    registry = CancellationRegistry()
    token = registry.start("p1")

    assert registry.stop("p1") is True
    assert token.cancelled
    assert not registry.is_active("p1")
    assert registry.stop("p1") is False


def test_release_ignores_superseded_token() -> None:
    registry = CancellationRegistry()
    old = registry.start("p1")
    new = registry.start("p1")

    registry.release("p1", old)
    assert registry.get("p1") is new

    registry.release("p1", new)
    assert registry.get("p1") is None


def test_raise_if_cancelled() -> None:
    token = CancellationToken("p1")
    token.raise_if_cancelled()

    token.cancel()

    with pytest.raises(BuildCancelledError) as exc_info:
        token.raise_if_cancelled()
    assert exc_info.value.project_id == "p1"


@pytest.mark.asyncio
async def test_sleep_returns_after_timeout() -> None:
    token = CancellationToken("p1")

    await token.sleep(0.01)

    assert not token.cancelled


@pytest.mark.asyncio
async def test_sleep_is_interrupted_by_cancel() -> None:
    token = CancellationToken("p1")
    loop = asyncio.get_running_loop()
    loop.call_later(0.01, token.cancel)

    started = loop.time()
    with pytest.raises(BuildCancelledError):
        await token.sleep(30)

    assert loop.time() - started < 5


@pytest.mark.asyncio
async def test_sleep_on_cancelled_token_raises_immediately() -> None:
    token = CancellationToken("p1")
    token.cancel()

    with pytest.raises(BuildCancelledError):
        await token.sleep(30)
