"""Unit tests for the folder sync orchestrator."""

import pytest

from conftest import EXTERNAL_ID, MAILBOX, OWNER_ID, make_enrichment, make_message, make_remote
from mailbox_sync.exceptions import CredentialMissingError, NotFoundError, RemoteFetchError
from mailbox_sync.focus import FocusAssignmentEngine
from mailbox_sync.models import FocusRuleType, MessageFilters
from mailbox_sync.sync import (
    ContinuationKey,
    ContinuationTracker,
    FolderPageRequest,
    FolderSyncOrchestrator,
)

CONN = "conn-1"


@pytest.fixture
def focus(store, settings) -> FocusAssignmentEngine:
    return FocusAssignmentEngine(store, settings)


@pytest.fixture
def orchestrator(store, provider, credentials, focus, settings) -> FolderSyncOrchestrator:
    return FolderSyncOrchestrator(store, provider, credentials, focus, settings)


@pytest.fixture
def tracker() -> ContinuationTracker:
    return ContinuationTracker()


@pytest.fixture
def paged_provider(provider):
    provider.set_pages(
        "INBOX",
        [
            [make_remote("m1"), make_remote("m2")],
            [make_remote("m3"), make_remote("m4")],
            [make_remote("m5")],
        ],
    )
    return provider


def request(page: int = 1, **kwargs) -> FolderPageRequest:
    return FolderPageRequest(
        owner_id=kwargs.pop("owner_id", EXTERNAL_ID),
        mailbox=kwargs.pop("mailbox", MAILBOX),
        folder_id="INBOX",
        page=page,
        **kwargs,
    )


class TestSyncPage:
    @pytest.mark.asyncio
    async def test_first_page_persists_and_reports_more(
        self, orchestrator, paged_provider, tracker, store
    ) -> None:
        result = await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)

        assert [m.id for m in result.messages] == ["m1", "m2"]
        assert result.has_more is True
        assert tracker.get(ContinuationKey(CONN, MAILBOX, "INBOX")) == "t1"
        assert await store.count_messages(OWNER_ID, MAILBOX, "INBOX") == 2

    @pytest.mark.asyncio
    async def test_resync_is_idempotent(
        self, orchestrator, paged_provider, tracker, store, monkeypatch
    ) -> None:
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)
        before = [m.model_dump() for m in await store.find_messages(OWNER_ID, MAILBOX, "INBOX")]

        writes: list[str] = []
        original = store.upsert_message

        async def spy(message):
            writes.append(message.id)
            return await original(message)

        monkeypatch.setattr(store, "upsert_message", spy)
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)
        after = [m.model_dump() for m in await store.find_messages(OWNER_ID, MAILBOX, "INBOX")]

        assert writes == []
        assert after == before

    @pytest.mark.asyncio
    async def test_pages_follow_continuation_tokens(
        self, orchestrator, paged_provider, tracker
    ) -> None:
        for page in (1, 2, 3):
            result = await orchestrator.sync_page(
                request(page), tracker=tracker, connection_id=CONN
            )

        assert paged_provider.list_calls == [("INBOX", None), ("INBOX", "t1"), ("INBOX", "t2")]
        assert [m.id for m in result.messages] == ["m5"]
        assert result.has_more is False
        assert len(tracker) == 0

    @pytest.mark.asyncio
    async def test_page_one_resets_cursor(self, orchestrator, paged_provider, tracker) -> None:
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)
        await orchestrator.sync_page(request(2), tracker=tracker, connection_id=CONN)
        assert tracker.get(ContinuationKey(CONN, MAILBOX, "INBOX")) == "t2"

        await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)

        assert paged_provider.list_calls[-1] == ("INBOX", None)
        assert tracker.get(ContinuationKey(CONN, MAILBOX, "INBOX")) == "t1"

    @pytest.mark.asyncio
    async def test_page_without_cursor_skips_remote(
        self, orchestrator, paged_provider, tracker
    ) -> None:
        result = await orchestrator.sync_page(request(2), tracker=tracker, connection_id=CONN)

        assert paged_provider.list_calls == []
        assert result.messages == []
        assert result.has_more is False

    @pytest.mark.asyncio
    async def test_connections_paginate_independently(
        self, orchestrator, paged_provider, tracker
    ) -> None:
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id="a")
        await orchestrator.sync_page(request(2), tracker=tracker, connection_id="a")
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id="b")

        assert tracker.get(ContinuationKey("a", MAILBOX, "INBOX")) == "t2"
        assert tracker.get(ContinuationKey("b", MAILBOX, "INBOX")) == "t1"

    @pytest.mark.asyncio
    async def test_filtered_page_reads_from_store(
        self, orchestrator, provider, tracker, store
    ) -> None:
        provider.set_pages("INBOX", [[make_remote("m1"), make_remote("m2")]])
        for i in (3, 4, 5):
            await store.upsert_message(make_message(f"m{i}", enrichment=make_enrichment()))

        result = await orchestrator.sync_page(
            request(1, filters=MessageFilters(category="work")),
            tracker=tracker,
            connection_id=CONN,
        )

        assert [m.id for m in result.messages] == ["m3", "m4"]
        assert result.has_more is True
        assert await store.count_messages(OWNER_ID, MAILBOX, "INBOX") == 5

    @pytest.mark.asyncio
    async def test_remote_failure_is_page_level(
        self, orchestrator, paged_provider, tracker, store
    ) -> None:
        paged_provider.error = RuntimeError("503 from provider")

        with pytest.raises(RemoteFetchError):
            await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)

        assert await store.count_messages(OWNER_ID, MAILBOX, "INBOX") == 0

    @pytest.mark.asyncio
    async def test_remote_timeout(self, orchestrator, paged_provider, tracker) -> None:
        paged_provider.delay = 2.0

        with pytest.raises(RemoteFetchError, match="timed out"):
            await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)

    @pytest.mark.asyncio
    async def test_missing_credential(self, orchestrator, paged_provider, tracker) -> None:
        with pytest.raises(CredentialMissingError):
            await orchestrator.sync_page(
                request(1, mailbox="other@co.com"), tracker=tracker, connection_id=CONN
            )

    @pytest.mark.asyncio
    async def test_unknown_owner(self, orchestrator, paged_provider, tracker) -> None:
        with pytest.raises(NotFoundError):
            await orchestrator.sync_page(
                request(1, owner_id="stranger"), tracker=tracker, connection_id=CONN
            )

    @pytest.mark.asyncio
    async def test_trusted_owner_overrides_client(
        self, orchestrator, paged_provider, tracker
    ) -> None:
        result = await orchestrator.sync_page(
            request(1, owner_id="spoofed"),
            tracker=tracker,
            connection_id=CONN,
            trusted_owner_id=EXTERNAL_ID,
        )

        assert all(m.owner_id == OWNER_ID for m in result.messages)


class TestIngestClassification:
    @pytest.mark.asyncio
    async def test_project_update_scenario(
        self, orchestrator, provider, focus, tracker, store
    ) -> None:
        item = await focus.add_item(OWNER_ID, MAILBOX, FocusRuleType.SUBJECT, "Project Update")
        provider.set_pages(
            "INBOX",
            [[make_remote("m1", subject="Project Update - Phase 1", sender="team@co.com")]],
        )

        result = await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)
        stats = await focus.get_statistics(OWNER_ID, MAILBOX)

        assert result.messages[0].focus_folder == item.folder_name
        assert (await store.find_message(MAILBOX, "m1")).focus_folder == item.folder_name
        assert stats.per_bucket[item.folder_name].count == 1

    @pytest.mark.asyncio
    async def test_changed_message_is_not_counted_twice(
        self, orchestrator, provider, focus, tracker
    ) -> None:
        item = await focus.add_item(OWNER_ID, MAILBOX, FocusRuleType.SENDER, "team@co.com")
        provider.set_pages("INBOX", [[make_remote("m1")]])
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)

        provider.set_pages("INBOX", [[make_remote("m1", read=True)]])
        await orchestrator.sync_page(request(1), tracker=tracker, connection_id=CONN)

        stats = await focus.get_statistics(OWNER_ID, MAILBOX)
        assert stats.per_bucket[item.folder_name].count == 1


class TestRefreshMessage:
    @pytest.mark.asyncio
    async def test_refresh_stores_latest_content(
        self, orchestrator, provider, owner, store
    ) -> None:
        await store.upsert_message(make_message("m1"))
        provider.messages["m1"] = make_remote("m1", content="edited")

        message = await orchestrator.refresh_message(owner, MAILBOX, "m1")

        assert message.content == "edited"
        assert (await store.find_message(MAILBOX, "m1")).content == "edited"

    @pytest.mark.asyncio
    async def test_refresh_unknown_message(self, orchestrator, owner) -> None:
        with pytest.raises(NotFoundError):
            await orchestrator.refresh_message(owner, MAILBOX, "missing")
