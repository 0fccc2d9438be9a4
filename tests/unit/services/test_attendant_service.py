"""
Tests for AttendantService.

Covers every console action: takeover, reply (with quotes), edit, resolve,
transfer, initiate, forward and broadcast.
"""

import pytest

from zapdesk.errors import NotFoundError, ValidationError
from zapdesk.models import DeliveryStatus, FileAttachment, HumanOwned, Message, Sender
from zapdesk.services.attendant_service import AttendantService, normalize_user_id
from zapdesk.services.catalog_service import DEFAULT_TEXTS


USER = "5511999990005@s.whatsapp.net"
OTHER = "5511999990006@s.whatsapp.net"


@pytest.fixture
def active(registry, attendants: AttendantService):
    """USER in an active chat owned by the default attendant."""
    registry.get_or_create(USER, "Caio")
    return attendants.takeover_chat(USER, "attendant_1")


class TestTakeover:

    def test_takeover_greets_in_attendant_name(self, attendants, registry, outbound):
        """
        Test that the user learns who took over.

        Protects against: Users not noticing a human joined the chat.
        """
        registry.get_or_create(USER, "Caio")
        registry.move_to_queue(USER, "RH", "Contato para setor RH.")

        session = attendants.takeover_chat(USER, "attendant_1")

        expected = DEFAULT_TEXTS["attendantTakeover"].format(attendantName="Admin")
        assert isinstance(session.ownership, HumanOwned)
        assert registry.queue_entries() == []
        assert session.message_log[-1].text == expected
        assert session.message_log[-1].sender == Sender.ATTENDANT
        assert outbound.pending()[-1].text == expected

    def test_second_takeover_keeps_first_owner_silently(self, attendants, active, outbound):
        """
        Protects against: Two attendants racing for the same queue entry.
        """
        queued_before = len(outbound)

        session = attendants.takeover_chat(USER, "attendant_2")

        assert session.attendant_id == "attendant_1"
        assert len(outbound) == queued_before

    def test_unknown_attendant_id_is_used_as_name(self, attendants):
        session = attendants.takeover_chat(USER, "attendant_9")

        assert "attendant_9" in session.message_log[-1].text


class TestReply:

    def test_reply_is_logged_pending_and_queued(self, attendants, active, outbound):
        message = attendants.reply(USER, "attendant_1", "Bom dia!")

        assert message.status == DeliveryStatus.PENDING
        assert active.message_log[-1] is message
        entry = outbound.pending()[-1]
        assert (entry.text, entry.message_id, entry.session_id) == ("Bom dia!", message.id, active.session_id)

    def test_reply_needs_text_or_files(self, attendants, active):
        with pytest.raises(ValidationError):
            attendants.reply(USER, "attendant_1", "   ")

    def test_files_only_reply_is_allowed(self, attendants, active):
        pdf = FileAttachment("guia.pdf", "application/pdf", "JVBERi0=")

        message = attendants.reply(USER, "attendant_1", None, [pdf])

        assert message.files == [pdf]

    def test_reply_to_inactive_chat_raises(self, attendants, registry):
        """
        Protects against: A stale console tab writing into a resolved chat.
        """
        registry.get_or_create(USER)

        with pytest.raises(NotFoundError):
            attendants.reply(USER, "attendant_1", "oi")

    def test_quote_snapshots_user_message(self, attendants, registry, active):
        """
        Test that a quoted reply carries a copy of the quoted message.

        Given: A user message in the active chat
        When: The attendant replies quoting it, and the original is later edited
        Then: The quote keeps the text at reply time and names the user
        """
        quoted = registry.append_message(active, Message(sender=Sender.USER, text="Qual o valor?"))

        reply = attendants.reply(USER, "attendant_1", "R$ 100", reply_to_id=quoted.id)
        quoted.text = "mudou"

        assert reply.reply_to.text == "Qual o valor?"
        assert reply.reply_to.sender_name == "Caio"
        assert reply.reply_to.message_id == quoted.id

    def test_quote_of_unknown_message_raises(self, attendants, active):
        with pytest.raises(NotFoundError):
            attendants.reply(USER, "attendant_1", "oi", reply_to_id=999)


class TestEdit:

    def test_edit_by_id_marks_edited(self, attendants, active, outbound):
        message = attendants.reply(USER, "attendant_1", "Bom dai")

        edited = attendants.edit_message(USER, "Bom dia", message_id=message.id)

        assert edited.text == "Bom dia"
        assert edited.edited is True
        assert all(e.kind == "send" for e in outbound.pending())

    def test_edit_by_timestamp(self, attendants, active):
        message = attendants.reply(USER, "attendant_1", "x")

        assert attendants.edit_message(USER, "y", timestamp=message.timestamp) is message

    @pytest.mark.asyncio
    async def test_delivered_message_is_edited_on_transport(self, attendants, active, outbound, transport, drain):
        """
        Protects against: The console showing an edit the user never sees.
        """
        message = attendants.reply(USER, "attendant_1", "Bom dai")
        await drain()

        attendants.edit_message(USER, "Bom dia", message_id=message.id)
        await drain()

        assert transport.edits == [{"userId": USER, "id": message.transport_id, "text": "Bom dia"}]

    @pytest.mark.asyncio
    async def test_unsent_reply_goes_out_with_edited_text(self, attendants, active, transport, drain):
        """
        Test that editing a reply still in the outbound queue changes what is sent.

        Protects against: The user receiving the typo while the console shows the fix.
        """
        message = attendants.reply(USER, "attendant_1", "Bom dai!")

        attendants.edit_message(USER, "Bom dia!", message_id=message.id)
        await drain()

        assert transport.sent[-1]["text"] == "Bom dia!"
        assert transport.edits == []
        assert message.status == DeliveryStatus.SENT

    @pytest.mark.asyncio
    async def test_user_message_is_edited_in_console_only(self, attendants, registry, active, outbound, transport, drain):
        """
        Test that correcting a user's message never becomes a WhatsApp edit.

        Protects against: An edit the gateway rejects forever blocking delivery
        to every other user.
        """
        inbound = registry.append_message(active, Message(sender=Sender.USER, text="oi", transport_id="WA-IN-1"))

        edited = attendants.edit_message(USER, "olá", message_id=inbound.id)
        registry.get_or_create(OTHER, "Bia")
        attendants.takeover_chat(OTHER, "attendant_1")
        await drain()

        assert edited.text == "olá"
        assert edited.edited is True
        assert all(e.kind == "send" for e in outbound.pending())
        assert transport.edits == []
        assert [s["userId"] for s in transport.sent][-1] == OTHER

    def test_archived_message_cannot_be_edited(self, attendants, registry, active):
        message = attendants.reply(USER, "attendant_1", "antiga")
        attendants.resolve_chat(USER)

        assert attendants.edit_message(USER, "nova", message_id=message.id) is None
        assert registry.archived_segments(USER)[0].message_log[-2].text == "antiga"

    def test_empty_edit_is_rejected(self, attendants, active):
        with pytest.raises(ValidationError):
            attendants.edit_message(USER, "", message_id=1)


class TestResolve:

    def test_resolve_sends_farewell_then_archives(self, attendants, registry, active, outbound):
        segment = attendants.resolve_chat(USER)

        assert segment.resolved_by == "attendant"
        assert segment.attendant_id == "attendant_1"
        assert segment.message_log[-1].text == DEFAULT_TEXTS["sessionEnded"]
        assert outbound.pending()[-1].text == DEFAULT_TEXTS["sessionEnded"]
        assert registry.find_live(USER) is None

    def test_archived_farewell_carries_no_delivery_status(self, attendants, active):
        """
        Protects against: An archived farewell stuck as pending with no live
        session left to acknowledge it.
        """
        segment = attendants.resolve_chat(USER)

        assert segment.message_log[-1].status is None

    def test_resolving_twice_raises(self, attendants, active):
        attendants.resolve_chat(USER)

        with pytest.raises(NotFoundError):
            attendants.resolve_chat(USER)


class TestTransfer:

    def test_transfer_changes_owner_and_logs_note(self, attendants, directory, active):
        maria = directory.add_attendant("Maria")

        session = attendants.transfer_chat(USER, maria.id)

        assert session.attendant_id == maria.id
        assert session.message_log[-1].sender == Sender.SYSTEM
        assert session.message_log[-1].text == DEFAULT_TEXTS["transferNote"]

    def test_transfer_to_unknown_attendant_raises(self, attendants, active):
        with pytest.raises(NotFoundError):
            attendants.transfer_chat(USER, "attendant_42")

    def test_transfer_of_inactive_chat_raises(self, attendants):
        with pytest.raises(NotFoundError):
            attendants.transfer_chat(USER, "attendant_1")


class TestInitiate:

    def test_initiate_normalizes_number_and_sends_opening(self, attendants, directory, outbound):
        session = attendants.initiate_chat("+55 (11) 99999-0005", "attendant_1", "Caio", "Olá Caio")

        assert session.user_id == USER
        assert session.attendant_id == "attendant_1"
        assert session.message_log[-1].text == "Olá Caio"
        assert outbound.pending()[-1].user_id == USER
        assert {c.user_id: c.user_name for c in directory.list_contacts()}[USER] == "Caio"

    def test_initiate_without_message_sends_nothing(self, attendants, outbound):
        session = attendants.initiate_chat(USER, "attendant_1")

        assert session.message_log == []
        assert len(outbound) == 0

    def test_initiate_returns_existing_active_chat(self, attendants, active):
        """
        Protects against: A second attendant silently stealing a chat.
        """
        session = attendants.initiate_chat(USER, "attendant_2", text="oi")

        assert session is active
        assert session.attendant_id == "attendant_1"

    def test_initiate_claims_bot_session(self, attendants, registry):
        bot = registry.get_or_create(USER)

        session = attendants.initiate_chat(USER, "attendant_1")

        assert session is bot
        assert registry.bot_session(USER) is None

    def test_invalid_number_rejected(self):
        with pytest.raises(ValidationError):
            normalize_user_id("abc")


class TestForwardAndBroadcast:

    def test_forward_marks_message(self, attendants, active):
        message = attendants.forward_message(USER, "attendant_1", "Segue o boleto")

        assert message.forwarded is True
        assert message.to_dict()["isForwarded"] is True

    def test_forward_to_inactive_chat_raises(self, attendants):
        with pytest.raises(NotFoundError):
            attendants.forward_message(OTHER, "attendant_1", "oi")

    def test_broadcast_reaches_each_person_once(self, attendants, registry, active, outbound):
        """
        Test that a broadcast queues one message per distinct person.

        Protects against: Duplicate sends and messages to groups.

        Given: An active chat, an unknown user, a duplicate and a group
        When: The attendant broadcasts
        Then: Two messages are queued and pools are unchanged
        """
        before = len(outbound)

        count = attendants.broadcast([USER, OTHER, USER, "1203630@g.us"], "Aviso de feriado", "attendant_1")

        assert count == 2
        assert len(outbound) == before + 2
        assert registry.active_chat(USER) is active
        assert registry.bot_session(OTHER).message_log[-1].text == "Aviso de feriado"

    def test_empty_broadcast_is_rejected(self, attendants):
        with pytest.raises(ValidationError):
            attendants.broadcast([USER], " ", "attendant_1")
