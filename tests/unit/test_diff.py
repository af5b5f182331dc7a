"""Unit tests for diff-aware upserts."""

import pytest

from conftest import MAILBOX, OWNER_ID, make_enrichment, make_message, make_remote
from mailbox_sync.exceptions import ValidationError
from mailbox_sync.sync import UpsertEngine, UpsertStatus, diff_message
from mailbox_sync.sync.diff import FIELD_TABLE, MERGED_FIELDS, SYNC_COMPARED_FIELDS, validate_incoming


class TestDiffMessage:
    def test_new_message_is_created_unenriched(self) -> None:
        outcome = diff_message(make_remote("m1"), None, owner_id=OWNER_ID, mailbox=MAILBOX)

        assert outcome.status is UpsertStatus.CREATED
        assert outcome.record.enrichment is None
        assert outcome.record.is_processed is False
        assert outcome.record.owner_id == OWNER_ID

    def test_identical_message_is_unchanged(self) -> None:
        existing = make_message("m1")

        outcome = diff_message(make_remote("m1"), existing, owner_id=OWNER_ID, mailbox=MAILBOX)

        assert outcome.status is UpsertStatus.UNCHANGED
        assert outcome.record is existing

    def test_read_flag_change_preserves_enrichment(self) -> None:
        enrichment = make_enrichment()
        existing = make_message("m1", enrichment=enrichment)
        existing = existing.model_copy(update={"focus_folder": "focus_subject_x_000001"})

        outcome = diff_message(
            make_remote("m1", read=True), existing, owner_id=OWNER_ID, mailbox=MAILBOX
        )

        assert outcome.status is UpsertStatus.CHANGED
        assert outcome.record.read is True
        assert outcome.record.enrichment == enrichment
        assert outcome.record.is_processed is True
        assert outcome.record.focus_folder == "focus_subject_x_000001"

    def test_content_only_change_is_ignored_on_sync(self) -> None:
        existing = make_message("m1")

        outcome = diff_message(
            make_remote("m1", content="new body"), existing, owner_id=OWNER_ID, mailbox=MAILBOX
        )

        assert outcome.status is UpsertStatus.UNCHANGED

    def test_content_change_detected_when_comparing_all_fields(self) -> None:
        existing = make_message("m1")

        outcome = diff_message(
            make_remote("m1", content="new body"),
            existing,
            owner_id=OWNER_ID,
            mailbox=MAILBOX,
            fields=MERGED_FIELDS,
        )

        assert outcome.status is UpsertStatus.CHANGED
        assert outcome.record.content == "new body"

    def test_field_table_drives_comparison(self) -> None:
        assert set(SYNC_COMPARED_FIELDS) == {n for n, compared in FIELD_TABLE.items() if compared}
        assert "enrichment" not in FIELD_TABLE
        assert "is_processed" not in FIELD_TABLE


class TestValidation:
    @pytest.mark.parametrize(
        ("message_id", "owner_id", "mailbox"),
        [("", OWNER_ID, MAILBOX), ("m1", "", MAILBOX), ("m1", OWNER_ID, "  ")],
    )
    def test_missing_required_fields(self, message_id: str, owner_id: str, mailbox: str) -> None:
        with pytest.raises(ValidationError):
            validate_incoming(make_remote(message_id or "m0", id=message_id), owner_id, mailbox)


class TestUpsertEngine:
    @pytest.mark.asyncio
    async def test_upsert_is_idempotent(self, store) -> None:
        engine = UpsertEngine(store)

        first = await engine.upsert(make_remote("m1"), owner_id=OWNER_ID, mailbox=MAILBOX)
        second = await engine.upsert(make_remote("m1"), owner_id=OWNER_ID, mailbox=MAILBOX)

        assert first.status is UpsertStatus.CREATED
        assert second.status is UpsertStatus.UNCHANGED
        assert await store.count_messages(OWNER_ID, MAILBOX, "INBOX") == 1

    @pytest.mark.asyncio
    async def test_sync_write_keeps_stored_enrichment(self, store) -> None:
        await store.upsert_message(make_message("m1", enrichment=make_enrichment()))
        engine = UpsertEngine(store)

        outcome = await engine.upsert(
            make_remote("m1", read=True), owner_id=OWNER_ID, mailbox=MAILBOX
        )
        stored = await store.find_message(MAILBOX, "m1")

        assert outcome.changed
        assert stored.read is True
        assert stored.enrichment == make_enrichment()
        assert stored.is_processed is True

    @pytest.mark.asyncio
    async def test_batch_skips_invalid_messages(self, store) -> None:
        engine = UpsertEngine(store)
        batch = [make_remote("m1"), make_remote("m0", id=""), make_remote("m2")]

        outcomes = await engine.upsert_batch(batch, owner_id=OWNER_ID, mailbox=MAILBOX)

        assert [o.record.id for o in outcomes] == ["m1", "m2"]
        assert await store.count_messages(OWNER_ID, MAILBOX, "INBOX") == 2

    @pytest.mark.asyncio
    async def test_refresh_applies_content_change(self, store) -> None:
        engine = UpsertEngine(store)
        await engine.upsert(make_remote("m1"), owner_id=OWNER_ID, mailbox=MAILBOX)

        outcome = await engine.refresh(
            make_remote("m1", content="v2"), owner_id=OWNER_ID, mailbox=MAILBOX
        )

        assert outcome.status is UpsertStatus.CHANGED
        assert (await store.find_message(MAILBOX, "m1")).content == "v2"

    @pytest.mark.asyncio
    async def test_refresh_keeps_stored_folder(self, store) -> None:
        engine = UpsertEngine(store)
        await engine.upsert(make_remote("m1"), owner_id=OWNER_ID, mailbox=MAILBOX)

        await engine.refresh(
            make_remote("m1", folder="Label_9", content="v2"), owner_id=OWNER_ID, mailbox=MAILBOX
        )
        stored = await store.find_message(MAILBOX, "m1")

        assert stored.folder == "INBOX"
        assert stored.content == "v2"
        assert await store.count_messages(OWNER_ID, MAILBOX, "INBOX") == 1
