import datetime as dt

from chatrelay.models import Message
from chatrelay.services.context_service import assemble_context, load_system_prompt
from tests.utils import BASE_TIME, seed_chat, seed_message, seed_system_prompt


def _seed_two_turns(session):
    chat = seed_chat(session)
    t1 = BASE_TIME
    t2 = BASE_TIME + dt.timedelta(minutes=1)
    seed_message(session, chat, role="user", content="q1", created_at=t1, sequence=1)
    first = seed_message(
        session, chat, role="assistant", content="a1", created_at=t1, sequence=2, message_id="a1"
    )
    seed_message(session, chat, role="user", content="q2", created_at=t2, sequence=3)
    second = seed_message(
        session, chat, role="assistant", content="a2", created_at=t2, sequence=4, message_id="a2"
    )
    return chat, first, second


def test_new_turn_includes_history_oldest_first(session_factory):
    with session_factory() as session:
        chat, _, _ = _seed_two_turns(session)
        messages = assemble_context(session, chat_id=chat.id, prompt="q3")

    assert messages == [
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "q2"},
        {"role": "assistant", "content": "a2"},
        {"role": "user", "content": "q3"},
    ]


def test_system_prompt_leads(session_factory):
    with session_factory() as session:
        chat = seed_chat(session)
        seed_system_prompt(session, prompt="  Be brief.  ")
        system_prompt = load_system_prompt(session, "user-1")
        messages = assemble_context(
            session, chat_id=chat.id, prompt="hi", system_prompt=system_prompt
        )

    assert messages == [
        {"role": "system", "content": "Be brief."},
        {"role": "user", "content": "hi"},
    ]


def test_blank_system_prompt_is_ignored(session_factory):
    with session_factory() as session:
        seed_system_prompt(session, prompt="   ")
        assert load_system_prompt(session, "user-1") is None
        assert load_system_prompt(session, "nobody") is None


def test_retry_only_sees_strictly_older_messages(session_factory):
    with session_factory() as session:
        chat, first, _ = _seed_two_turns(session)
        messages = assemble_context(session, chat_id=chat.id, prompt="q1", before=first)

    # The newer q2/a2 turn and the retried turn's own user row are excluded.
    assert messages == [{"role": "user", "content": "q1"}]


def test_retry_of_latest_turn_keeps_earlier_turns(session_factory):
    with session_factory() as session:
        chat, _, second = _seed_two_turns(session)
        target = session.get(Message, second.id)
        messages = assemble_context(session, chat_id=chat.id, prompt="q2", before=target)

    assert messages == [
        {"role": "user", "content": "q1"},
        {"role": "assistant", "content": "a1"},
        {"role": "user", "content": "q2"},
    ]


def test_failed_and_empty_rows_are_not_replayed(session_factory):
    with session_factory() as session:
        chat = seed_chat(session)
        seed_message(session, chat, role="user", content="q1", created_at=BASE_TIME, sequence=1)
        seed_message(
            session,
            chat,
            role="assistant",
            content="Failed to generate response",
            status="error",
            created_at=BASE_TIME,
            sequence=2,
        )
        seed_message(
            session,
            chat,
            role="error",
            content="Rate limited",
            created_at=BASE_TIME,
            sequence=3,
        )
        seed_message(
            session,
            chat,
            role="assistant",
            content="",
            status="streaming",
            created_at=BASE_TIME,
            sequence=4,
        )
        messages = assemble_context(session, chat_id=chat.id, prompt="again")

    assert messages == [
        {"role": "user", "content": "q1"},
        {"role": "user", "content": "again"},
    ]
