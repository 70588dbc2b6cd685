import uuid

from app.models.message import MessageType
from app.schemas.message import MessagePayload
from app.services.thread_aggregator import clamp_page, make_pagination


def text(content):
    return MessagePayload(message_type=MessageType.TEXT, text_content=content)


async def test_thread_unread_count_drops_after_mark_read(services, users):
    alice, bob = users["alice"], users["bob"]
    sent = [await services.store().send_direct(bob, [alice.id], text(f"msg {i}")) for i in range(3)]

    threads = await services.aggregator().list_threads(alice.id)
    assert len(threads) == 1
    assert threads[0].partner.id == bob.id
    assert threads[0].unread_count == 3
    assert threads[0].total_count == 3
    assert threads[0].last_message.text_content == "msg 2"
    assert threads[0].last_message.is_mine is False

    await services.store().mark_read(sent[0].id, alice.id)

    threads = await services.aggregator().list_threads(alice.id)
    assert threads[0].unread_count == 2


async def test_threads_are_sorted_by_last_message(services, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await services.store().send_direct(alice, [bob.id], text("to bob"))
    await services.store().send_direct(alice, [carol.id], text("to carol"))

    threads = await services.aggregator().list_threads(alice.id)
    assert [t.partner.username for t in threads] == ["carol", "bob"]
    # Own messages never count as unread
    assert all(t.unread_count == 0 for t in threads)


async def test_multi_receiver_message_is_filed_under_first_receiver(services, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await services.store().send_direct(alice, [bob.id, carol.id], text("hi both"))

    alice_threads = await services.aggregator().list_threads(alice.id)
    assert [t.partner.id for t in alice_threads] == [bob.id]

    carol_threads = await services.aggregator().list_threads(carol.id)
    assert [t.partner.id for t in carol_threads] == [alice.id]
    assert carol_threads[0].unread_count == 1


async def test_deleted_messages_leave_the_thread_view(services, users):
    alice, bob = users["alice"], users["bob"]
    first = await services.store().send_direct(bob, [alice.id], text("one"))
    await services.store().send_direct(bob, [alice.id], text("two"))

    await services.store().delete_for_user(first.id, alice.id)

    threads = await services.aggregator().list_threads(alice.id)
    assert threads[0].total_count == 1
    bob_threads = await services.aggregator().list_threads(bob.id)
    assert bob_threads[0].total_count == 2


async def test_thread_messages_ascending_with_viewer_perspective(services, users):
    alice, bob = users["alice"], users["bob"]
    mine = await services.store().send_direct(alice, [bob.id], text("first"))
    await services.store().send_direct(bob, [alice.id], text("second"))
    await services.store().mark_read(mine.id, bob.id)

    messages = await services.aggregator().get_thread_messages(alice.id, bob.id)
    assert [m.text_content for m in messages] == ["first", "second"]
    assert [m.is_mine for m in messages] == [True, False]
    # Own message: partner's read state. Received message: viewer's.
    assert messages[0].is_read is True
    assert messages[0].read_at is not None
    assert messages[1].is_read is False


async def test_thread_with_unknown_partner_is_empty(services, users):
    assert await services.aggregator().get_thread_messages(users["alice"].id, uuid.uuid4()) == []


async def test_received_filters_unread_and_paginates(services, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    sent = [await services.store().send_direct(bob, [alice.id], text(f"msg {i}")) for i in range(3)]
    await services.store().send_direct(alice, [carol.id], text("outgoing"))
    await services.store().mark_read(sent[0].id, alice.id)

    messages, pagination = await services.aggregator().list_received(alice.id)
    assert [m.text_content for m in messages] == ["msg 2", "msg 1", "msg 0"]
    assert pagination.total == 3

    unread, pagination = await services.aggregator().list_received(alice.id, unread_only=True)
    assert [m.text_content for m in unread] == ["msg 2", "msg 1"]
    assert pagination.total == 2

    page, pagination = await services.aggregator().list_received(alice.id, page=2, limit=2)
    assert [m.text_content for m in page] == ["msg 0"]
    assert pagination.total_pages == 2
    assert pagination.has_next is False


async def test_received_excludes_group_messages(services, users, make_group):
    alice, bob = users["alice"], users["bob"]
    group = await make_group(bob, [alice])
    await services.fanout().send_group_message(bob, group.id, text("group hello"))

    messages, pagination = await services.aggregator().list_received(alice.id)
    assert messages == []
    assert pagination.total == 0


async def test_sent_lists_own_direct_messages(services, users):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    await services.store().send_direct(alice, [bob.id], text("a"))
    await services.store().send_direct(alice, [carol.id], text("b"))
    await services.store().send_direct(bob, [alice.id], text("c"))

    sent = await services.aggregator().list_sent(alice.id)
    assert [m.text_content for m in sent] == ["b", "a"]
    assert all(m.is_mine for m in sent)


async def test_thread_list_is_cached_and_invalidated_on_send(services, users, fake_redis):
    alice, bob = users["alice"], users["bob"]
    await services.store().send_direct(bob, [alice.id], text("one"))

    first = await services.aggregator().list_threads(alice.id)
    key = f"test:threads:{alice.id}"
    assert key in fake_redis.data
    assert fake_redis.expiry[key] == 60

    cached = await services.aggregator().list_threads(alice.id)
    assert cached == first

    await services.store().send_direct(bob, [alice.id], text("two"))
    assert key not in fake_redis.data

    fresh = await services.aggregator().list_threads(alice.id)
    assert fresh[0].total_count == 2


async def test_reactions_invalidate_cached_thread_and_received(services, users, fake_redis):
    alice, bob = users["alice"], users["bob"]
    msg = await services.store().send_direct(bob, [alice.id], text("hello"))

    await services.aggregator().get_thread_messages(alice.id, bob.id)
    await services.aggregator().list_received(alice.id, page=1, limit=20)
    thread_key = f"test:thread:{alice.id}:{bob.id}"
    received_key = f"test:received:{alice.id}:u0:p1:l20"
    assert thread_key in fake_redis.data
    assert received_key in fake_redis.data

    await services.store().add_reaction(msg.id, alice, "🔥")
    assert thread_key not in fake_redis.data
    assert received_key not in fake_redis.data

    messages = await services.aggregator().get_thread_messages(alice.id, bob.id)
    assert [r.emoji for r in messages[0].reactions] == ["🔥"]
    received, _ = await services.aggregator().list_received(alice.id, page=1, limit=20)
    assert [r.emoji for r in received[0].reactions] == ["🔥"]

    await services.store().remove_reaction(msg.id, alice.id, "🔥")
    assert thread_key not in fake_redis.data
    assert received_key not in fake_redis.data

    messages = await services.aggregator().get_thread_messages(alice.id, bob.id)
    assert messages[0].reactions == []


async def test_delete_invalidates_cached_views(services, users, fake_redis):
    alice, bob = users["alice"], users["bob"]
    msg = await services.store().send_direct(bob, [alice.id], text("hello"))

    await services.aggregator().list_threads(alice.id)
    await services.aggregator().get_thread_messages(alice.id, bob.id)
    await services.aggregator().list_received(alice.id, page=1, limit=20)
    keys = [
        f"test:threads:{alice.id}",
        f"test:thread:{alice.id}:{bob.id}",
        f"test:received:{alice.id}:u0:p1:l20",
    ]
    assert all(k in fake_redis.data for k in keys)

    await services.store().delete_for_user(msg.id, alice.id)
    assert not any(k in fake_redis.data for k in keys)

    assert await services.aggregator().list_threads(alice.id) == []
    assert await services.aggregator().get_thread_messages(alice.id, bob.id) == []
    received, pagination = await services.aggregator().list_received(alice.id, page=1, limit=20)
    assert received == []
    assert pagination.total == 0


async def test_group_send_and_read_invalidate_group_threads(services, users, make_group, fake_redis):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    group = await make_group(alice, [bob, carol], name="Band")

    for user in (alice, bob, carol):
        await services.aggregator().list_group_threads(user.id)
    keys = {user: f"test:group_threads:{user.id}" for user in (alice, bob, carol)}
    assert all(k in fake_redis.data for k in keys.values())

    msg = await services.fanout().send_group_message(bob, group.id, text("rehearsal"))
    assert not any(k in fake_redis.data for k in keys.values())

    summary = (await services.aggregator().list_group_threads(alice.id))[0]
    assert summary.unread_count == 1
    assert summary.last_message.text_content == "rehearsal"
    assert keys[alice] in fake_redis.data

    await services.fanout().mark_group_read(alice.id, group.id, msg.id)
    assert keys[alice] not in fake_redis.data

    summary = (await services.aggregator().list_group_threads(alice.id))[0]
    assert summary.unread_count == 0


async def test_group_threads_report_unread_and_last_message(services, users, make_group):
    alice, bob, carol = users["alice"], users["bob"], users["carol"]
    group = await make_group(alice, [bob, carol], name="Band")
    await services.fanout().send_group_message(bob, group.id, text("first"))
    await services.fanout().send_group_message(carol, group.id, text("second"))

    summaries = await services.aggregator().list_group_threads(alice.id)
    assert len(summaries) == 1
    summary = summaries[0]
    assert summary.name == "Band"
    assert summary.members_count == 3
    assert summary.unread_count == 2
    assert summary.total_count == 2
    assert summary.last_message.text_content == "second"
    assert summary.last_message.sender_username == "carol"

    bob_view = (await services.aggregator().list_group_threads(bob.id))[0]
    assert bob_view.unread_count == 1


def test_clamp_page():
    assert clamp_page(None, None) == (1, 50)
    assert clamp_page(0, 1000) == (1, 100)
    assert clamp_page(-2, -5, default_limit=30) == (1, 1)
    assert clamp_page(3, None, default_limit=30) == (3, 30)


def test_make_pagination():
    pagination = make_pagination(total=61, page=2, limit=30)
    assert pagination.total_pages == 3
    assert pagination.has_next is True
    assert make_pagination(total=0, page=1, limit=30).total_pages == 0
