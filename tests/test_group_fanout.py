import uuid

import pytest

from app.errors import AlreadyExists, Forbidden, InvalidInput, InvalidState, NotFound
from app.models.message import MessageType
from app.schemas.message import MessagePayload


def text(content):
    return MessagePayload(message_type=MessageType.TEXT, text_content=content)


@pytest.fixture
async def band(users, make_group):
    return await make_group(users["alice"], [users["bob"], users["carol"]], name="Band")


# -- fan-out ---------------------------------------------------------------

async def test_group_send_fans_out_to_other_members(services, users, band, notifier):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]

    msg = await services.fanout().send_group_message(bob, band.id, text("rehearsal at 8"))

    loaded = await services.store().get_message(msg.id, alice.id)
    assert loaded.group_id == band.id
    assert set(loaded.receiver_ids) == {alice.id, carol.id}
    assert all(not rs.is_read for rs in loaded.read_statuses)

    sent = notifier.sent[0]
    assert sent["title"] == "Band"
    assert sent["body"] == "bob: rehearsal at 8"
    assert set(sent["recipients"]) == {alice.id, carol.id}
    assert sent["data"]["groupId"] == str(band.id)


async def test_non_member_cannot_send_or_list(services, users, band):
    dave = users["dave"]

    with pytest.raises(Forbidden):
        await services.fanout().send_group_message(dave, band.id, text("let me in"))
    with pytest.raises(Forbidden):
        await services.fanout().list_group_messages(dave.id, band.id)


async def test_unknown_group_is_not_found(services, users):
    with pytest.raises(NotFound):
        await services.fanout().send_group_message(users["alice"], uuid.uuid4(), text("hello?"))


async def test_group_voice_send_requires_a_file(services, users, band):
    with pytest.raises(InvalidInput):
        await services.fanout().send_group_message(
            users["alice"], band.id, MessagePayload(message_type=MessageType.VOICE)
        )


async def test_group_messages_page_is_ascending(services, users, band):
    alice, bob = users["alice"], users["bob"]
    for i in range(5):
        await services.fanout().send_group_message(bob, band.id, text(f"m{i}"))

    messages, pagination = await services.fanout().list_group_messages(alice.id, band.id, page=1, limit=2)
    assert [m.text_content for m in messages] == ["m3", "m4"]
    assert pagination.total == 5
    assert pagination.total_pages == 3
    assert pagination.has_next is True

    messages, pagination = await services.fanout().list_group_messages(alice.id, band.id, page=3, limit=2)
    assert [m.text_content for m in messages] == ["m0"]
    assert pagination.has_next is False


async def test_group_messages_limit_is_clamped(services, users, band):
    await services.fanout().send_group_message(users["bob"], band.id, text("hi"))

    _, pagination = await services.fanout().list_group_messages(users["alice"].id, band.id, page=0, limit=500)
    assert (pagination.page, pagination.limit) == (1, 100)

    _, pagination = await services.fanout().list_group_messages(users["alice"].id, band.id)
    assert pagination.limit == 30


async def test_mark_group_read(services, users, band):
    alice, bob = users["alice"], users["bob"]
    msg = await services.fanout().send_group_message(bob, band.id, text("hi"))

    assert await services.fanout().mark_group_read(alice.id, band.id, msg.id) is True
    assert await services.fanout().mark_group_read(alice.id, band.id, msg.id) is False

    # The sender has no read-status entry of their own
    with pytest.raises(Forbidden):
        await services.fanout().mark_group_read(bob.id, band.id, msg.id)


async def test_mark_group_read_checks_message_belongs_to_group(services, users, band):
    alice, bob = users["alice"], users["bob"]
    direct = await services.store().send_direct(bob, [alice.id], text("direct"))

    with pytest.raises(NotFound):
        await services.fanout().mark_group_read(alice.id, band.id, direct.id)


async def test_removed_member_loses_access_to_group_messages(services, users, band):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    msg = await services.fanout().send_group_message(bob, band.id, text("hi"))

    await services.groups().remove_member(band.id, alice.id, carol.id)

    with pytest.raises(Forbidden):
        await services.store().get_message(msg.id, carol.id)
    with pytest.raises(Forbidden):
        await services.fanout().mark_group_read(carol.id, band.id, msg.id)


# -- administration --------------------------------------------------------

async def test_create_group_makes_creator_admin_and_member(services, users):
    alice, bob = users["alice"], users["bob"]

    group = await services.groups().create_group(alice, "  Friends ", "weekend plans", [bob.id, alice.id])

    assert group.name == "Friends"
    assert group.admin_id == alice.id
    assert sorted(map(str, group.member_ids)) == sorted([str(alice.id), str(bob.id)])


async def test_create_group_validates_input(services, users, file_store):
    alice = users["alice"]
    icon = file_store.ensure_dir("group_icons") / "icon.png"
    icon.write_bytes(b"png")

    with pytest.raises(InvalidInput):
        await services.groups().create_group(alice, "   ", icon_image=str(icon))
    assert not icon.exists()

    with pytest.raises(InvalidInput):
        await services.groups().create_group(alice, "x" * 51)
    with pytest.raises(NotFound):
        await services.groups().create_group(alice, "Ghosts", member_ids=[uuid.uuid4()])


async def test_only_admin_updates_group(services, users, band, file_store):
    alice, bob = users["alice"], users["bob"]
    old_icon = file_store.ensure_dir("group_icons") / "old.png"
    old_icon.write_bytes(b"old")
    new_icon = file_store.ensure_dir("group_icons") / "new.png"
    new_icon.write_bytes(b"new")

    with pytest.raises(Forbidden):
        await services.groups().update_group(band.id, bob.id, name="Mine now")

    await services.groups().update_group(band.id, alice.id, icon_image=str(old_icon))
    group = await services.groups().update_group(
        band.id, alice.id, name="New Band", description="", icon_image=str(new_icon)
    )
    assert group.name == "New Band"
    assert group.icon_image == str(new_icon)
    assert not old_icon.exists()
    assert new_icon.exists()


async def test_add_member(services, users, band):
    alice, bob, dave = users["alice"], users["bob"], users["dave"]

    with pytest.raises(Forbidden):
        await services.groups().add_member(band.id, bob.id, dave.id)

    added = await services.groups().add_member(band.id, alice.id, dave.id)
    assert added.id == dave.id
    group = await services.groups().get_group(band.id, dave.id)
    assert dave.id in group.member_ids

    with pytest.raises(AlreadyExists):
        await services.groups().add_member(band.id, alice.id, dave.id)
    with pytest.raises(NotFound):
        await services.groups().add_member(band.id, alice.id, uuid.uuid4())


async def test_member_can_leave_but_admin_cannot(services, users, band):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]

    await services.groups().remove_member(band.id, bob.id, bob.id)
    with pytest.raises(Forbidden):
        await services.groups().get_group(band.id, bob.id)

    with pytest.raises(InvalidState):
        await services.groups().remove_member(band.id, alice.id, alice.id)
    with pytest.raises(Forbidden):
        await services.groups().remove_member(band.id, carol.id, alice.id)
    with pytest.raises(NotFound):
        await services.groups().remove_member(band.id, alice.id, bob.id)


async def test_delete_group_removes_messages_and_files(services, users, band, file_store):
    alice, bob = users["alice"], users["bob"]
    clip = file_store.ensure_dir("voice") / "clip.m4a"
    clip.write_bytes(b"voice")
    payload = MessagePayload(message_type=MessageType.VOICE, file_path=str(clip), mime_type="audio/mp4")
    msg = await services.fanout().send_group_message(bob, band.id, payload)

    with pytest.raises(Forbidden):
        await services.groups().delete_group(band.id, bob.id)

    await services.groups().delete_group(band.id, alice.id)

    assert not clip.exists()
    with pytest.raises(NotFound):
        await services.groups().get_group(band.id, alice.id)
    with pytest.raises(NotFound):
        await services.store().get_message(msg.id, alice.id)
