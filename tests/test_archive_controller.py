from datetime import datetime

import pytest

from archiver.schemas import ChannelKind, ErrorKind, MessageReference, ReactionCount, ReactionDirection
from fakes import make_message


def iso(value):
    return value.replace(tzinfo=None).isoformat()


# --- Single-message upsert ---

@pytest.mark.asyncio
async def test_archiving_twice_reports_already_exists(archiver, store):
    message = make_message("c1", 1)

    first = await archiver.archive_single(message)
    second = await archiver.archive_single(message)

    assert first.success and first.count == 1
    assert second.success is False
    assert second.already_exists is True
    assert second.error == ErrorKind.ALREADY_EXISTS
    assert await store.distinct_channel_ids() == ["c1"]
    assert len(await store.channel_cursors()) == 1


@pytest.mark.asyncio
async def test_reference_is_resolved_before_archiving(archiver, source, store):
    source.add_channel("c1", 2)

    result = await archiver.archive_single(MessageReference(id="c1-0001", channel_id="c1"))

    assert result.success
    assert (await store.find_by_id("c1-0001")).content == "message 1"


@pytest.mark.asyncio
async def test_unresolvable_reference_is_a_resolution_failure(archiver, source, store):
    source.add_channel("c1", 2)
    source.unresolvable.add("c1-0001")

    result = await archiver.archive_single(MessageReference(id="c1-0001", channel_id="c1"))

    assert result.success is False
    assert result.error == ErrorKind.RESOLUTION_FAILURE
    assert await store.find_by_id("c1-0001") is None


# --- Channel paginator ---

@pytest.mark.asyncio
async def test_full_scan_stops_after_short_page(archiver, source, store):
    channel = source.add_channel("c1", 250, name="general")

    result = await archiver.archive_channel(channel, resume=False)

    assert result.success
    assert result.count == 250
    assert result.channel == "channel #general"
    assert result.message == "250 messages archived in channel #general."
    assert len(source.page_requests) == 3
    assert source.page_requests[0] == ("c1", None, None)
    assert source.page_requests[1] == ("c1", "c1-0150", None)
    assert source.page_requests[2] == ("c1", "c1-0050", None)
    assert (await store.channel_cursors())[0].message_count == 250


@pytest.mark.asyncio
async def test_resume_scans_forward_from_last_archived(archiver, source):
    channel = source.add_channel("c1", 250)
    for message in source.history["c1"][:100]:
        await archiver.archive_single(message)

    result = await archiver.archive_channel(channel, resume=True)

    assert result.count == 150
    assert source.page_requests == [("c1", None, "c1-0099"), ("c1", None, "c1-0199")]


@pytest.mark.asyncio
async def test_resume_without_cursor_scans_full_history(archiver, source):
    channel = source.add_channel("c1", 30)

    result = await archiver.archive_channel(channel, resume=True)

    assert result.count == 30
    assert source.page_requests == [("c1", None, None)]


@pytest.mark.asyncio
async def test_rescan_counts_only_new_messages(archiver, source):
    channel = source.add_channel("c1", 40)
    await archiver.archive_channel(channel, resume=False)

    result = await archiver.archive_channel(channel, resume=False)

    assert result.success
    assert result.count == 0


@pytest.mark.asyncio
async def test_non_text_channel_is_rejected_without_fetching(archiver, source):
    voice = source.add_channel("v1", 5, kind=ChannelKind.OTHER)

    result = await archiver.archive_channel(voice, resume=False)
    missing = await archiver.archive_channel(None, resume=False)

    assert result.success is False
    assert result.error == ErrorKind.CHANNEL_TYPE_UNSUPPORTED
    assert result.message == "Channel is not a text channel."
    assert missing.error == ErrorKind.CHANNEL_TYPE_UNSUPPORTED
    assert source.page_requests == []


@pytest.mark.asyncio
async def test_failing_message_does_not_stop_the_scan(archiver, source, store):
    channel = source.add_channel("c1", 5)
    # Already archived, and so skipped silently
    await archiver.archive_single(source.history["c1"][2])

    result = await archiver.archive_channel(channel, resume=False)

    assert result.success
    assert result.count == 4
    assert len(await store.channel_cursors()) == 1


@pytest.mark.asyncio
async def test_page_fetch_error_fails_the_channel(archiver, source):
    channel = source.add_channel("c1", 5)
    source.broken_pages.add("c1")

    result = await archiver.archive_channel(channel, resume=False)

    assert result.success is False
    assert result.error == ErrorKind.FETCH_FAILURE
    assert result.count == 0


def test_channel_labels(source):
    assert source.add_channel("t1", name="help", kind=ChannelKind.THREAD).label == "thread #help"
    assert source.add_channel("d1", name="bob", kind=ChannelKind.DM).label == "DM with bob"
    assert source.add_channel("d2", name="", kind=ChannelKind.DM).label == "DM with Unknown user"


# --- Guild-wide orchestrator ---

@pytest.mark.asyncio
async def test_guild_sweep_totals_channels(archiver, source):
    source.add_channel("c1", 120)
    source.add_channel("c2", 7)
    source.add_channel("t1", 3, kind=ChannelKind.THREAD)
    source.add_guild("g1", ["c1", "c2", "t1"])

    result = await archiver.archive_guild(source.get_guild("g1"), resume=False)

    assert result.success
    assert result.count == 130
    assert result.message == "Archived 130 messages in 3 channels."


@pytest.mark.asyncio
async def test_guild_sweep_stops_at_first_failing_channel(archiver, source, store):
    source.add_channel("c1", 4)
    source.add_channel("c2", 4)
    source.add_channel("c3", 4)
    source.broken_pages.add("c2")
    source.add_guild("g1", ["c1", "c2", "c3"])

    result = await archiver.archive_guild(source.get_guild("g1"), resume=False)

    assert result.success is False
    assert result.error == ErrorKind.FETCH_FAILURE
    assert await store.distinct_channel_ids() == ["c1"]
    assert [request[0] for request in source.page_requests] == ["c1", "c2"]


@pytest.mark.asyncio
async def test_unknown_guild(archiver):
    result = await archiver.archive_guild(None, resume=True)

    assert result.success is False
    assert result.error == ErrorKind.NOT_FOUND
    assert result.message == "Guild not found."


# --- Edits ---

@pytest.mark.asyncio
async def test_edit_history_accumulates(archiver, source, store):
    source.add_channel("c1")
    original = source.replace(make_message("c1", 1, content="A"))
    await archiver.archive_single(original)
    ref = MessageReference(id=original.id, channel_id="c1")

    edited_b = source.edit(original, "B", minutes_later=5)
    first = await archiver.message_edited(ref)
    edited_c = source.edit(original, "C", minutes_later=9)
    second = await archiver.message_edited(ref)

    assert first.success and second.success
    record = await store.find_by_id(original.id)
    assert record.content == "C"
    assert record.content_history == [
        {"timestamp": iso(original.created_at), "content": "A"},
        {"timestamp": iso(edited_b.edited_at), "content": "B"},
        {"timestamp": iso(edited_c.edited_at), "content": "C"},
    ]
    # The original content is materialized only once
    assert [entry["content"] for entry in record.content_history].count("A") == 1


@pytest.mark.asyncio
async def test_edit_of_unknown_message_archives_it(archiver, source, store):
    source.add_channel("c1")
    message = source.replace(make_message("c1", 1, content="fresh"))

    result = await archiver.message_edited(message)

    assert result.success and result.count == 1
    record = await store.find_by_id(message.id)
    assert record.content == "fresh"
    assert record.content_history == []


# --- Deletes ---

@pytest.mark.asyncio
async def test_deletion_is_terminal(archiver, store):
    message = make_message("c1", 1)
    await archiver.archive_single(message)

    first = await archiver.message_deleted(message.id)
    stamp = (await store.find_by_id(message.id)).deleted_timestamp
    second = await archiver.message_deleted(message.id)

    assert first.success and second.success
    assert isinstance(stamp, datetime)
    record = await store.find_by_id(message.id)
    assert record.deleted_timestamp == stamp
    assert record.content == "message 1"


@pytest.mark.asyncio
async def test_deleting_unknown_message_is_not_found(archiver):
    result = await archiver.message_deleted("nope")

    assert result.success is False
    assert result.error == ErrorKind.NOT_FOUND
    assert result.message == "Message not found in database."


# --- Reactions ---

@pytest.mark.asyncio
async def test_reaction_snapshot_is_replaced(archiver, source, store):
    source.add_channel("c1")
    message = source.replace(make_message("c1", 1, reactions=[("🔥", 2)]))
    await archiver.archive_single(message)
    source.replace(message.model_copy(update={"reactions": [ReactionCount(emoji_name="🔥", count=1)]}))

    result = await archiver.reaction_changed(
        MessageReference(id=message.id, channel_id="c1"), ReactionDirection.REMOVE
    )

    assert result.success
    assert (await store.find_by_id(message.id)).reactions == [{"emoji_name": "🔥", "count": 1}]


@pytest.mark.asyncio
async def test_reaction_on_unknown_message_archives_it(archiver, source, store):
    source.add_channel("c1")
    message = source.replace(make_message("c1", 1, reactions=[("✅", 1)]))

    result = await archiver.reaction_changed(
        MessageReference(id=message.id, channel_id="c1"), ReactionDirection.ADD
    )

    assert result.success and result.count == 1
    assert (await store.find_by_id(message.id)).reactions == [{"emoji_name": "✅", "count": 1}]


@pytest.mark.asyncio
async def test_reaction_refresh_failure_keeps_stored_snapshot(archiver, source, store):
    source.add_channel("c1")
    message = source.replace(make_message("c1", 1, reactions=[("🔥", 2)]))
    await archiver.archive_single(message)
    source.unresolvable.add(message.id)

    result = await archiver.reaction_changed(message, ReactionDirection.ADD)

    assert result.success is False
    assert result.error == ErrorKind.RESOLUTION_FAILURE
    assert (await store.find_by_id(message.id)).reactions == [{"emoji_name": "🔥", "count": 2}]
