import asyncio
from contextlib import suppress

import httpx
import pytest

from client.config import ClientConfig
from client.presence import (
    DetailedSnapshot,
    NamesSnapshot,
    PresenceReconciler,
    SnapshotFormatError,
    normalize_snapshot,
    parse_snapshot,
)
from client.state import PresenceEntry, PresenceView

from conftest import mock_http, wait_for


def entries_of(view):
    return [(e.id, e.name) for e in view.entries()]


def test_names_only_snapshot_gets_positional_ids():
    entries = normalize_snapshot(parse_snapshot({"users": ["Bob", "Carol"]}))

    assert entries == [PresenceEntry("1", "Bob"), PresenceEntry("2", "Carol")]


def test_detailed_snapshot_is_preferred_over_names():
    snapshot = parse_snapshot({
        "users": ["Bob"],
        "usersDetailed": [{"id": "7", "username": "Bob"}],
        "count": 1,
    })

    assert isinstance(snapshot, DetailedSnapshot)
    assert normalize_snapshot(snapshot) == [PresenceEntry("7", "Bob")]


def test_names_used_when_detailed_is_null():
    snapshot = parse_snapshot({"usersDetailed": None, "users": ["Dave"]})

    assert isinstance(snapshot, NamesSnapshot)


def test_duplicate_ids_keep_first_occurrence():
    entries = normalize_snapshot(DetailedSnapshot((
        {"id": "1", "username": "Alice"},
        {"id": "2", "username": "Bob"},
        {"id": "1", "username": "Impostor"},
    )))

    assert entries == [PresenceEntry("1", "Alice"), PresenceEntry("2", "Bob")]


def test_detailed_entries_without_ids_are_skipped():
    entries = normalize_snapshot(DetailedSnapshot((
        "Bob",
        {"username": "NoId"},
        {"id": 3},
        {"id": "4", "username": "Eve"},
    )))

    assert entries == [PresenceEntry("3", "Unknown"), PresenceEntry("4", "Eve")]


@pytest.mark.parametrize("body", [None, [], "users", {}, {"users": None}, {"usersDetailed": {"id": "1"}}])
def test_unknown_snapshot_shapes_are_rejected(body):
    with pytest.raises(SnapshotFormatError):
        parse_snapshot(body)


def test_presence_view_replace_deduplicates():
    view = PresenceView()
    view.replace([PresenceEntry("1", "A"), PresenceEntry("1", "B"), PresenceEntry("2", "C")])

    assert view.ids() == ["1", "2"]
    assert "1" in view
    assert len(view) == 2


def test_stale_epoch_snapshot_is_discarded():
    view = PresenceView()
    reconciler = PresenceReconciler(ClientConfig(), view)
    reconciler.activate(1)
    assert reconciler.apply_snapshot(1, [PresenceEntry("1", "Bob")]) is True

    reconciler.deactivate()
    assert entries_of(view) == []
    assert reconciler.apply_snapshot(1, [PresenceEntry("2", "Carol")]) is False
    assert entries_of(view) == []

    reconciler.activate(2)
    assert reconciler.apply_snapshot(1, [PresenceEntry("2", "Carol")]) is False
    assert entries_of(view) == []


def test_snapshot_replaces_whole_view():
    view = PresenceView()
    reconciler = PresenceReconciler(ClientConfig(), view)
    reconciler.activate(1)

    reconciler.apply_snapshot(1, [PresenceEntry("1", "Bob"), PresenceEntry("2", "Carol")])
    reconciler.apply_snapshot(1, [PresenceEntry("3", "Dave")])

    assert entries_of(view) == [("3", "Dave")]


@pytest.mark.asyncio
async def test_fetch_snapshot_over_http():
    def handler(request):
        assert str(request.url) == "http://chat.test/api/users"
        return httpx.Response(200, json={"users": ["Bob", "Carol"]})

    reconciler = PresenceReconciler(ClientConfig("http://chat.test/"), PresenceView(), http_client=mock_http(handler))

    assert await reconciler.fetch_snapshot() == [PresenceEntry("1", "Bob"), PresenceEntry("2", "Carol")]


@pytest.mark.asyncio
async def test_fetch_snapshot_errors():
    def server_error(request):
        return httpx.Response(500)

    def not_json(request):
        return httpx.Response(200, text="<html>")

    config = ClientConfig("http://chat.test")
    with pytest.raises(httpx.HTTPStatusError):
        await PresenceReconciler(config, PresenceView(), http_client=mock_http(server_error)).fetch_snapshot()
    with pytest.raises(SnapshotFormatError):
        await PresenceReconciler(config, PresenceView(), http_client=mock_http(not_json)).fetch_snapshot()


@pytest.mark.asyncio
async def test_failed_polls_keep_last_known_good():
    responses = [
        httpx.Response(200, json={"usersDetailed": [{"id": "1", "username": "Bob"}]}),
        httpx.Response(503),
        httpx.Response(200, text="not json"),
        httpx.Response(200, json={"count": 0}),
    ]
    calls = []

    def handler(request):
        calls.append(request)
        if len(calls) <= len(responses):
            return responses[len(calls) - 1]
        raise httpx.ConnectError("backend gone", request=request)

    view = PresenceView()
    reconciler = PresenceReconciler(
        ClientConfig("http://chat.test", poll_interval=0.01), view, http_client=mock_http(handler)
    )
    reconciler.activate(1)

    task = asyncio.create_task(reconciler.poll_forever(1, reconciler.apply_snapshot))
    assert await wait_for(lambda: len(calls) >= 6)
    task.cancel()
    with suppress(asyncio.CancelledError):
        await task

    assert entries_of(view) == [("1", "Bob")]
