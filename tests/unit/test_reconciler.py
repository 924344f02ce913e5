import asyncio

import pytest

from chatrelay.client.persistence import DebouncedSaver
from chatrelay.client.reconciler import (
    INTERRUPTED_NOTE,
    LENGTH_NOTE,
    SAFETY_NOTE,
    ConversationReconciler,
    dedupe_citations,
)
from chatrelay.client.titles import TitleGenerator
from chatrelay.core.exceptions import StreamInterruptedError, StreamOpenError
from chatrelay.schemas.conversations import DEFAULT_TITLE, Conversation, Message
from chatrelay.schemas.frames import FinishReason, Frame, GroundingCitation
from tests.mocks.fake_stream import FakeOpener, Pause


class FakeStore:
    def __init__(self, conversations=()):
        self.conversations = list(conversations)

    async def load(self, user_id):
        return list(self.conversations)


class RecordingSave:
    def __init__(self):
        self.calls = []

    async def __call__(self, user_id, conversations):
        self.calls.append((user_id, conversations))


def _make(*scripts, **kwargs):
    opener = FakeOpener(*scripts)
    notes = []
    kwargs.setdefault("flush_interval", 0)
    reconciler = ConversationReconciler(
        opener,
        notify=lambda message, level: notes.append((message, level)),
        **kwargs,
    )
    return reconciler, opener, notes


async def _seeded(messages, *scripts, **kwargs):
    """Reconciler whose active conversation already holds ``messages``."""
    conversation = Conversation(messages=messages)
    reconciler, opener, notes = _make(*scripts, store=FakeStore([conversation]), **kwargs)
    await reconciler.load("alice")
    return reconciler, opener, notes


def _texts(payload):
    return [part["text"] for content in payload["contents"] for part in content["parts"]]


def _last(reconciler):
    return reconciler.active_conversation.messages[-1]


class TestSend:
    async def test_appends_user_message_and_streamed_reply(self):
        reconciler, opener, _ = _make([Frame(text="Hello"), Frame(text=" world", finish_reason=FinishReason.STOP)])

        await reconciler.send("hi")

        conversation = reconciler.active_conversation
        assert [m.role for m in conversation.messages] == ["user", "model"]
        assert conversation.messages[0].content == "hi"
        assert conversation.messages[1].content == "Hello world"
        assert conversation.messages[1].citations == []
        assert not conversation.is_generating
        assert _texts(opener.payloads[0]) == ["hi"]
        assert opener.streams[0].closed

    async def test_blank_send_is_ignored(self):
        reconciler, opener, _ = _make()
        await reconciler.send("   ")
        assert opener.payloads == []
        assert reconciler.conversations == ()

    async def test_second_send_while_generating_is_ignored(self):
        pending = []
        reconciler, opener, _ = _make()
        opener.scripts.append([
            Frame(text="a"),
            lambda: pending.append(asyncio.create_task(reconciler.send("again"))),
            Pause(0.01),
            Frame(text="b", finish_reason=FinishReason.STOP),
        ])

        await reconciler.send("first")
        await pending[0]

        assert len(opener.payloads) == 1
        assert [m.content for m in reconciler.active_conversation.messages] == ["first", "ab"]

    async def test_model_and_instruction_flow_into_request(self):
        reconciler, opener, notes = _make()
        reconciler.new_conversation()
        reconciler.update_model("openai/gpt-oss-20b")
        reconciler.update_system_instruction("Be terse.")

        await reconciler.send("hi")

        payload = opener.payloads[0]
        assert payload["model"] == "openai/gpt-oss-20b"
        assert payload["config"]["systemInstruction"] == "Be terse."
        assert ("Instructions updated", "success") in notes

    async def test_history_is_windowed(self):
        history = [Message(role="user" if i % 2 == 0 else "model", content=f"m{i}") for i in range(25)]
        reconciler, opener, _ = await _seeded(history)

        await reconciler.send("next")

        texts = _texts(opener.payloads[0])
        assert len(texts) == 21
        assert texts[:20] == [f"m{i}" for i in range(5, 25)]
        assert texts[-1] == "next"


class TestFinishAnnotations:
    @pytest.mark.parametrize(
        "reason, note",
        [
            (FinishReason.LENGTH, LENGTH_NOTE),
            (FinishReason.SAFETY, SAFETY_NOTE),
            (FinishReason.OTHER, INTERRUPTED_NOTE),
            (FinishReason.STOP, ""),
            (None, ""),
        ],
    )
    async def test_exactly_one_annotation_at_the_end(self, reason, note):
        reconciler, _, _ = _make([Frame(text="partial"), Frame(finish_reason=reason)])

        await reconciler.send("hi")

        content = _last(reconciler).content
        assert content == "partial" + note
        assert content.count("\n---\n") == (1 if note else 0)

    async def test_only_the_last_frame_reason_counts(self):
        reconciler, _, _ = _make([Frame(text="a", finish_reason=FinishReason.LENGTH), Frame(text="b")])
        await reconciler.send("hi")
        assert _last(reconciler).content == "ab"


class TestCitations:
    def test_first_occurrence_wins_and_is_idempotent(self):
        citations = [
            GroundingCitation(uri="https://a", title="A"),
            GroundingCitation(uri="https://b", title="B"),
            GroundingCitation(uri="https://a", title="A again"),
        ]
        once = dedupe_citations(citations)
        assert [(c.uri, c.title) for c in once] == [("https://a", "A"), ("https://b", "B")]
        assert dedupe_citations(once) == once

    async def test_reply_carries_unique_citations(self):
        reconciler, _, _ = _make([
            Frame(text="x", citations=[GroundingCitation(uri="https://a", title="A")]),
            Frame(
                text="y",
                citations=[GroundingCitation(uri="https://a", title="A2"), GroundingCitation(uri="https://c", title="C")],
                finish_reason=FinishReason.STOP,
            ),
        ])

        await reconciler.send("hi")

        assert [c.uri for c in _last(reconciler).citations] == ["https://a", "https://c"]


class TestEditAndRegenerate:
    async def test_edit_truncates_and_regenerates(self):
        m1 = Message(role="user", content="m1")
        m2 = Message(role="model", content="m2")
        m3 = Message(role="user", content="m3")
        m4 = Message(role="model", content="m4")
        reconciler, opener, _ = await _seeded([m1, m2, m3, m4], [Frame(text="fresh", finish_reason="stop")])

        await reconciler.edit(m3.id, "m3 edited")

        assert _texts(opener.payloads[0]) == ["m1", "m2", "m3 edited"]
        messages = reconciler.active_conversation.messages
        assert [m.content for m in messages] == ["m1", "m2", "m3 edited", "fresh"]
        assert messages[:2] == [m1, m2]
        assert m4.id not in {m.id for m in messages}

    async def test_edit_unknown_message_is_noop(self):
        reconciler, opener, _ = await _seeded([Message(role="user", content="u")])
        await reconciler.edit("missing", "x")
        assert opener.payloads == []

    async def test_regenerate_replaces_last_reply(self):
        u1 = Message(role="user", content="u1")
        a1 = Message(role="model", content="a1")
        reconciler, opener, _ = await _seeded([u1, a1], [Frame(text="a1 again", finish_reason="stop")])

        await reconciler.regenerate()

        assert _texts(opener.payloads[0]) == ["u1"]
        messages = reconciler.active_conversation.messages
        assert messages[0] == u1
        assert messages[1].content == "a1 again"
        assert a1.id not in {m.id for m in messages}

    async def test_regenerate_needs_a_model_reply(self):
        reconciler, opener, _ = await _seeded([Message(role="user", content="u1")])
        await reconciler.regenerate()
        assert opener.payloads == []


class TestStopAndErrors:
    async def test_stop_after_two_frames(self):
        flags = []
        reconciler, opener, notes = _make()
        opener.scripts.append([
            Frame(text="one"),
            Frame(text=" two"),
            lambda: reconciler.stop(),
            lambda: flags.append(reconciler.active_conversation.is_generating),
            Frame(text=" three"),
            Frame(finish_reason=FinishReason.LENGTH),
        ])

        await reconciler.send("count")

        assert _last(reconciler).content == "one two"
        assert flags == [False]
        assert not reconciler.active_conversation.is_generating
        assert opener.tokens[0].cancelled
        assert opener.streams[0].closed
        assert ("Generation stopped", "info") in notes

    async def test_open_failure_becomes_error_message(self):
        reconciler, _, notes = _make(StreamOpenError("Server error: 500"))

        await reconciler.send("hi")

        assert _last(reconciler).content == "**Error: Server error: 500**"
        assert not reconciler.active_conversation.is_generating
        assert ("Error generating the response", "error") in notes

    async def test_error_frame_replaces_partial_text(self):
        reconciler, _, _ = _make([Frame(text="partial"), Frame(error="Provider Error (m): 500 - boom")])

        await reconciler.send("hi")

        assert _last(reconciler).content == "**Error: Provider Error (m): 500 - boom**"
        assert not reconciler.active_conversation.is_generating

    async def test_interrupted_stream_becomes_error_message(self):
        def drop():
            raise StreamInterruptedError("Chat stream interrupted: reset")

        reconciler, _, _ = _make([Frame(text="part"), drop])

        await reconciler.send("hi")

        assert _last(reconciler).content == "**Error: Chat stream interrupted: reset**"
        assert not reconciler.active_conversation.is_generating

    async def test_switching_conversation_suppresses_stream(self):
        title_opener = FakeOpener([Frame(text="Some Title")])
        reconciler, opener, _ = _make(titles=TitleGenerator(title_opener))
        opener.scripts.append([
            Frame(text="a"),
            lambda: reconciler.new_conversation(),
            Frame(text="b"),
            Frame(finish_reason=FinishReason.STOP),
        ])

        await reconciler.send("hi")

        original = next(c for c in reconciler.conversations if c.messages)
        assert original.messages[-1].content == "a"
        assert not original.is_generating
        assert reconciler.active_conversation.messages == []
        assert not reconciler.active_conversation.is_generating

        await reconciler.wait_idle()
        assert title_opener.payloads == []
        assert original.title == DEFAULT_TITLE


class TestThrottledFlush:
    async def test_text_becomes_visible_in_coalesced_flushes(self):
        seen = []
        reconciler, opener, _ = _make(flush_interval=0.005)
        capture = lambda: seen.append(_last(reconciler).content)  # noqa: E731
        opener.scripts.append([
            Frame(text="a"),
            Frame(text="b"),
            capture,
            Pause(0.03),
            capture,
            Frame(text="c", finish_reason=FinishReason.STOP),
        ])

        await reconciler.send("hi")

        assert seen == ["", "ab"]
        assert _last(reconciler).content == "abc"


class TestTitles:
    async def test_first_exchange_is_titled(self):
        title_opener = FakeOpener([Frame(text="Paris Weather.")], [Frame(text="Unused")])
        reconciler, _, _ = _make(titles=TitleGenerator(title_opener))

        await reconciler.send("weather in paris?")
        await reconciler.wait_idle()
        await reconciler.send("and tomorrow?")
        await reconciler.wait_idle()

        assert reconciler.active_conversation.title == "Paris Weather"
        assert len(title_opener.payloads) == 1

    async def test_abnormal_finish_is_not_titled(self):
        title_opener = FakeOpener()
        reconciler, _, _ = _make([Frame(text="x", finish_reason=FinishReason.LENGTH)], titles=TitleGenerator(title_opener))

        await reconciler.send("hi")
        await reconciler.wait_idle()

        assert title_opener.payloads == []
        assert reconciler.active_conversation.title == DEFAULT_TITLE

    async def test_stopped_generation_is_not_titled(self):
        title_opener = FakeOpener()
        reconciler, opener, _ = _make(titles=TitleGenerator(title_opener))
        opener.scripts.append([Frame(text="x"), lambda: reconciler.stop(), Frame(text="y")])

        await reconciler.send("hi")
        await reconciler.wait_idle()

        assert title_opener.payloads == []

    async def test_title_failure_keeps_placeholder(self):
        title_opener = FakeOpener(StreamOpenError())
        reconciler, _, _ = _make(titles=TitleGenerator(title_opener))

        await reconciler.send("hi")
        await reconciler.wait_idle()

        assert reconciler.active_conversation.title == DEFAULT_TITLE


class TestConversationManagement:
    def test_new_conversation_reuses_empty_one(self):
        reconciler, _, _ = _make()
        first = reconciler.new_conversation()
        second = reconciler.new_conversation()
        assert first == second
        assert len(reconciler.conversations) == 1

    async def test_load_clears_stale_generating_flags(self):
        stale = Conversation(is_generating=True)
        reconciler, _, _ = _make(store=FakeStore([stale, Conversation()]))

        await reconciler.load("alice")

        assert reconciler.loaded
        assert reconciler.active_id == stale.id
        assert not any(c.is_generating for c in reconciler.conversations)

    async def test_clear_history(self):
        reconciler, _, notes = _make()
        await reconciler.send("hi")
        reconciler.clear_history()
        assert reconciler.conversations == ()
        assert reconciler.active_id is None
        assert ("History cleared", "success") in notes


class TestPersistence:
    async def test_changes_are_saved_only_after_load(self):
        save = RecordingSave()
        reconciler, _, _ = _make(store=FakeStore(), saver=DebouncedSaver(save, delay=10))

        await reconciler.send("before load")
        await reconciler.wait_idle()
        assert save.calls == []

        await reconciler.load("alice")
        await reconciler.send("after load")
        await reconciler.wait_idle()

        assert len(save.calls) == 1
        user_id, conversations = save.calls[0]
        assert user_id == "alice"
        assert [m.content for m in conversations[0].messages] == ["after load", "ok"]
        assert not conversations[0].is_generating

    async def test_sign_out_flushes_and_resets(self):
        save = RecordingSave()
        reconciler, _, _ = _make(store=FakeStore(), saver=DebouncedSaver(save, delay=10))
        await reconciler.load("alice")
        await reconciler.send("hi")

        await reconciler.sign_out()

        assert len(save.calls) == 1
        assert reconciler.user_id is None
        assert reconciler.conversations == ()
