"""
Tests for InboundDispatcher.

Covers routing by ownership, voice-note transcription, quoted replies,
per-user ordering and delivery receipts.
"""

import asyncio
from unittest.mock import AsyncMock

import pytest

from zapdesk.errors import CollaboratorUnavailableError
from zapdesk.models import DeliveryStatus, FileAttachment, Message, Sender
from zapdesk.services.catalog_service import DEFAULT_TEXTS
from zapdesk.transport.base import InboundEvent, QuotedMessage, StatusReceipt


USER = "5511999990030@s.whatsapp.net"
OTHER = "5511999990031@s.whatsapp.net"


def _voice_note():
    return FileAttachment("voice.ogg", "audio/ogg; codecs=opus", "T2dnUw==")


@pytest.mark.asyncio
class TestRouting:

    async def test_new_user_gets_the_greeting(self, dispatcher, registry, outbound):
        """
        Protects against: First messages going unanswered.

        Given: A user with no session
        When: They send "oi"
        Then: A bot session is created, the message is logged and the menu is sent
        """
        await dispatcher.handle_inbound(USER, "Duda", "oi")

        session = registry.bot_session(USER)
        assert session.user_name == "Duda"
        assert [m.sender for m in session.message_log] == [Sender.USER, Sender.BOT]
        assert session.message_log[0].text == "oi"
        assert outbound.pending()[0].text.startswith(DEFAULT_TEXTS["greeting"])

    async def test_human_owned_chat_gets_no_bot_reply(self, dispatcher, registry, outbound, state_machine):
        """
        Protects against: The bot talking over an attendant.
        """
        registry.takeover(USER, "attendant_1", user_name="Duda")
        state_machine.step = AsyncMock()

        await dispatcher.handle_inbound(USER, "Duda", "ainda está aí?")

        session = registry.active_chat(USER)
        assert session.message_log[-1].text == "ainda está aí?"
        state_machine.step.assert_not_awaited()
        assert len(outbound) == 0

    async def test_queued_user_is_only_recorded(self, dispatcher, registry, outbound):
        registry.get_or_create(USER)
        registry.move_to_queue(USER, "RH", "Contato para setor RH.")

        await dispatcher.handle_inbound(USER, None, "alô?")

        assert registry.queue_entries()[0].user_id == USER
        assert registry.find_live(USER).message_log[-1].text == "alô?"
        assert len(outbound) == 0

    async def test_groups_and_status_are_ignored(self, dispatcher, registry):
        await dispatcher.handle_inbound("120363000000@g.us", "Grupo", "oi")
        await dispatcher.handle_inbound("status@broadcast", None, "story")

        assert registry.bot_sessions() == []

    async def test_sender_is_recorded_in_directory(self, dispatcher, directory):
        await dispatcher.handle_inbound(USER, "Duda", "oi")

        assert [(c.user_id, c.user_name) for c in directory.list_contacts()] == [(USER, "Duda")]

    async def test_handle_event_unpacks_inbound_event(self, dispatcher, registry):
        await dispatcher.handle_event(InboundEvent(user_id=USER, user_name="Duda", text="1", transport_id="wa-9"))

        session = registry.bot_session(USER)
        assert session.message_log[0].transport_id == "wa-9"
        assert session.conversation_state == "AI_ASSISTANT_SELECT_DEPT"

    async def test_errors_are_logged_not_raised(self, dispatcher, state_machine):
        state_machine.step = AsyncMock(side_effect=RuntimeError("boom"))

        await dispatcher.handle_inbound(USER, None, "oi")


@pytest.mark.asyncio
class TestVoiceNotes:

    async def test_transcript_drives_the_bot(self, dispatcher, registry, fake_transcriber, state_machine):
        """
        Test that a voice note is answered as if its transcript were typed.

        Given: A bot session and a voice note
        When: The note arrives
        Then: The audio and a transcription note are logged
        And: The transcript is the input of the state machine
        """
        state_machine.step = AsyncMock()

        await dispatcher.handle_inbound(USER, "Duda", "", file=_voice_note())

        session = registry.bot_session(USER)
        assert session.message_log[0].files[0].mime_type.startswith("audio/")
        assert session.message_log[0].text is None
        assert session.message_log[1].sender == Sender.SYSTEM
        assert session.message_log[1].text == 'Transcrição: "quero falar com alguém"'
        fake_transcriber.transcribe.assert_awaited_once_with("T2dnUw==", "audio/ogg; codecs=opus")
        state_machine.step.assert_awaited_once_with(session, "quero falar com alguém")

    async def test_no_transcriber_uses_placeholder(self, registry, state_machine, directory, catalog):
        from zapdesk.handlers.inbound_handler import InboundDispatcher

        dispatcher = InboundDispatcher(registry, state_machine, directory, catalog, transcriber=None)

        await dispatcher.handle_inbound(USER, None, "", file=_voice_note())

        texts = [m.text for m in registry.bot_session(USER).message_log]
        assert f'Transcrição: "{DEFAULT_TEXTS["transcriptionUnavailable"]}"' in texts

    async def test_voice_note_to_attendant_is_transcribed_but_not_answered(
        self, dispatcher, registry, outbound
    ):
        registry.takeover(USER, "attendant_1")

        await dispatcher.handle_inbound(USER, None, "", file=_voice_note())

        log = registry.active_chat(USER).message_log
        assert log[-1].sender == Sender.SYSTEM
        assert len(outbound) == 0

    async def test_media_without_body_is_downloaded(self, registry, state_machine, directory, catalog):
        from zapdesk.handlers.inbound_handler import InboundDispatcher

        fetcher = AsyncMock(return_value="JVBERi0=")
        dispatcher = InboundDispatcher(registry, state_machine, directory, catalog, media_fetcher=fetcher)

        await dispatcher.handle_inbound(
            USER, None, "segue", file=FileAttachment("nota.pdf", "application/pdf"), transport_id="wa-1"
        )

        fetcher.assert_awaited_once_with("wa-1")
        assert registry.bot_session(USER).message_log[0].files[0].data == "JVBERi0="

    async def test_failed_download_keeps_the_message(self, registry, state_machine, directory, catalog):
        from zapdesk.handlers.inbound_handler import InboundDispatcher

        fetcher = AsyncMock(side_effect=CollaboratorUnavailableError("gateway down"))
        dispatcher = InboundDispatcher(registry, state_machine, directory, catalog, media_fetcher=fetcher)

        await dispatcher.handle_inbound(
            USER, None, "segue", file=FileAttachment("nota.pdf", "application/pdf"), transport_id="wa-1"
        )

        assert registry.bot_session(USER).message_log[0].text == "segue"


@pytest.mark.asyncio
class TestQuotes:

    async def test_quote_of_own_message(self, dispatcher, registry):
        await dispatcher.handle_inbound(
            USER, "Duda", "isso", reply_context=QuotedMessage(text="Bom dia!", from_me=True)
        )

        quote = registry.find_live(USER).message_log[0].reply_to
        assert quote.text == "Bom dia!"
        assert quote.sender == "attendant"
        assert quote.sender_name == DEFAULT_TEXTS["quotedSelfName"]

    async def test_quote_of_user_message_uses_user_name(self, dispatcher, registry):
        await dispatcher.handle_inbound(
            USER, "Duda", "corrigindo", reply_context=QuotedMessage(text="errado", from_me=False)
        )

        assert registry.find_live(USER).message_log[0].reply_to.sender_name == "Duda"

    async def test_quote_of_uncaptioned_media_gets_placeholder(self, dispatcher, registry):
        """
        Protects against: A quoted photo or voice note showing as an empty quote.
        """
        await dispatcher.handle_inbound(
            USER, "Duda", "e essa foto?", reply_context=QuotedMessage(text=None, from_me=False)
        )

        assert registry.find_live(USER).message_log[0].reply_to.text == DEFAULT_TEXTS["quotedMedia"]


@pytest.mark.asyncio
class TestOrdering:

    async def test_messages_of_one_user_are_handled_in_order(self, dispatcher, registry, state_machine):
        """
        Protects against: A fast second message overtaking a slow first one.

        Given: The first step of a user blocks until released
        When: Two messages of the same user arrive back to back
        Then: The second waits and both inputs reach the bot in order
        """
        release = asyncio.Event()
        seen = []

        async def slow_step(session, text):
            seen.append(text)
            if text == "primeira":
                await release.wait()

        state_machine.step = AsyncMock(side_effect=slow_step)

        first = asyncio.create_task(dispatcher.handle_inbound(USER, None, "primeira"))
        second = asyncio.create_task(dispatcher.handle_inbound(USER, None, "segunda"))
        await asyncio.sleep(0)
        await asyncio.sleep(0)

        assert seen == ["primeira"]
        assert [m.text for m in registry.find_live(USER).message_log] == ["primeira"]

        release.set()
        await asyncio.gather(first, second)

        assert seen == ["primeira", "segunda"]

    async def test_other_users_are_not_blocked(self, dispatcher, state_machine):
        release = asyncio.Event()
        seen = []

        async def slow_step(session, text):
            seen.append(session.user_id)
            if session.user_id == USER:
                await release.wait()

        state_machine.step = AsyncMock(side_effect=slow_step)

        blocked = asyncio.create_task(dispatcher.handle_inbound(USER, None, "a"))
        await asyncio.sleep(0)
        await dispatcher.handle_inbound(OTHER, None, "b")

        assert seen == [USER, OTHER]
        release.set()
        await blocked


class TestReceipts:

    def test_receipt_advances_status(self, dispatcher, registry):
        session = registry.get_or_create(USER)
        message = registry.append_message(session, Message(sender=Sender.BOT, text="oi", transport_id="wa-5"))

        assert dispatcher.handle_receipt(StatusReceipt(USER, "wa-5", DeliveryStatus.READ)) is True
        assert message.status == DeliveryStatus.READ

    def test_unknown_receipt_is_ignored(self, dispatcher):
        assert dispatcher.handle_receipt(StatusReceipt(USER, "wa-x", DeliveryStatus.DELIVERED)) is False
