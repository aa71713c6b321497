import asyncio
import json
from unittest.mock import AsyncMock, Mock

import pytest

from app.models import Conversation, Message, TelegramUser
from app.schemas.telegram import TelegramUpdate
from app.services.events import ConversationCreated, MessageReceived
from app.services.ingestion_service import (
    IngestStatus,
    MessageKind,
    classify_message,
    country_from_language,
    extract_content,
    handle_update,
    ingest_message,
    notification_text,
)
from app.services.telegram_service import SendMessageResult, SendStatus
from factories import broadcast_events, make_operator, telegram_message


def ingest(db, telegram, fanout, locales, message):
    return asyncio.run(ingest_message(db, telegram, fanout, locales, message))


class TestCountryFromLanguage:
    @pytest.mark.parametrize(
        "language_code,expected",
        [("en-US", "US"), ("ru", "RU"), ("pt_BR", "BR"), (None, None), ("", None)],
    )
    def test_country_code(self, language_code, expected):
        assert country_from_language(language_code) == expected


class TestExtractContent:
    def test_photo_uses_largest_size_and_empty_caption(self):
        message = telegram_message(
            photo=[
                {"file_id": "small", "file_unique_id": "a", "width": 90, "height": 90, "file_size": 1000},
                {"file_id": "large", "file_unique_id": "b", "width": 1280, "height": 960, "file_size": 90000},
            ]
        )
        kind = classify_message(message)
        text, media = extract_content(message, kind)

        assert kind == MessageKind.PHOTO
        assert text == ""
        assert media.locator == "large"
        assert media.file_size == 90000

    def test_document_placeholder(self):
        message = telegram_message(
            document={"file_id": "d1", "file_unique_id": "u", "file_name": "invoice.pdf", "mime_type": "application/pdf", "file_size": 2048}
        )
        text, media = extract_content(message, classify_message(message))
        assert text == "Document"
        assert media.file_name == "invoice.pdf"
        assert media.mime_type == "application/pdf"

    def test_caption_wins_over_placeholder(self):
        message = telegram_message(
            caption="my clip",
            video={"file_id": "v1", "file_unique_id": "u", "width": 1, "height": 1, "duration": 12},
        )
        text, media = extract_content(message, classify_message(message))
        assert text == "my clip"
        assert media.duration == 12

    def test_voice(self):
        message = telegram_message(voice={"file_id": "vo", "file_unique_id": "u", "duration": 4, "mime_type": "audio/ogg"})
        text, media = extract_content(message, classify_message(message))
        assert text == "Voice message"
        assert media.kind == MessageKind.VOICE

    def test_sticker_includes_emoji(self):
        message = telegram_message(sticker={"file_id": "st", "file_unique_id": "u", "width": 512, "height": 512, "emoji": "🔥"})
        text, media = extract_content(message, classify_message(message))
        assert text == "Sticker 🔥"
        assert media.file_name is None

    def test_animation_and_audio_placeholders(self):
        animation = telegram_message(
            animation={"file_id": "an", "file_unique_id": "u", "width": 1, "height": 1, "duration": 2, "file_name": "a.mp4"}
        )
        audio = telegram_message(audio={"file_id": "au", "file_unique_id": "u", "duration": 200, "file_name": "song.mp3"})
        assert extract_content(animation, classify_message(animation))[0] == "Animation"
        assert extract_content(audio, classify_message(audio))[0] == "Audio"

    def test_contact_is_unsupported(self):
        message = telegram_message(contact={"phone_number": "+10000000", "first_name": "Bob"})
        assert classify_message(message) is None


class TestNotificationText:
    def test_preview_truncated_to_fifty_chars(self):
        sender = TelegramUser(id=42, first_name="Anna", last_name="Smith")
        text = notification_text(sender, "x" * 60)
        assert "From: Anna Smith" in text
        assert "Message: " + "x" * 50 + "..." in text
        assert text.startswith("🔔 <b>New conversation</b>")

    def test_short_preview_untouched(self):
        sender = TelegramUser(id=42, first_name="Anna")
        assert "Message: Hello\n" in notification_text(sender, "Hello")


class TestFirstContact:
    def test_hello_from_unseen_sender(self, db, telegram, fanout, locales):
        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))

        assert outcome.status == IngestStatus.STORED
        assert outcome.is_new is True

        sender = db.query(TelegramUser).filter(TelegramUser.id == 42).one()
        assert sender.is_blocked is False
        assert sender.country_code == "EN"

        conversation = db.query(Conversation).one()
        assert conversation.status == "waiting"
        assert conversation.unread_count == 1

        message = db.query(Message).one()
        assert message.from_operator is False
        assert message.read is False
        assert message.content == "Hello"

        events = broadcast_events(fanout)
        assert [type(e) for e in events] == [ConversationCreated, MessageReceived]
        assert events[0].telegram_user_name == "Anna"
        assert events[1].message_id == message.id
        assert events[1].telegram_user_name == "Anna"

        assert telegram.texts_to(42) == [locales.text("en", "welcome")]

    def test_second_message_reuses_conversation(self, db, telegram, fanout, locales):
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))
        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Anyone there?"))

        assert outcome.is_new is False
        assert db.query(Conversation).count() == 1
        assert db.query(Conversation).one().unread_count == 2
        assert len(broadcast_events(fanout, ConversationCreated)) == 1
        assert len(broadcast_events(fanout, MessageReceived)) == 2
        assert telegram.texts_to(42) == [locales.text("en", "welcome")]

    def test_message_after_close_opens_new_conversation(self, db, telegram, fanout, locales):
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))
        db.query(Conversation).update({Conversation.status: "closed"})
        db.commit()

        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Me again"))

        assert outcome.is_new is True
        assert db.query(Conversation).count() == 2
        assert len(broadcast_events(fanout, ConversationCreated)) == 2

    def test_russian_sender_gets_russian_welcome(self, db, telegram, fanout, locales):
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=7, language_code="ru", text="Привет"))

        assert db.query(TelegramUser).one().country_code == "RU"
        assert telegram.texts_to(7) == [locales.text("ru", "welcome")]

    def test_username_used_as_event_name(self, db, telegram, fanout, locales):
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=9, username="anna_k", text="Hi"))
        assert broadcast_events(fanout, MessageReceived)[0].telegram_user_name == "anna_k"

    def test_media_fields_stored_and_broadcast(self, db, telegram, fanout, locales):
        message = telegram_message(
            sender_id=42,
            document={"file_id": "doc-1", "file_unique_id": "u", "file_name": "a.pdf", "file_size": 10},
        )
        ingest(db, telegram, fanout, locales, message)

        stored = db.query(Message).one()
        assert stored.media_type == "document"
        assert stored.media_url == "doc-1"
        event = broadcast_events(fanout, MessageReceived)[0]
        assert event.media_type == "document"
        assert event.file_name == "a.pdf"


class TestRejectedMessages:
    def test_blocked_sender(self, db, telegram, fanout, locales):
        db.add(TelegramUser(id=42, first_name="Anna", is_blocked=True, photo_url="https://example/p.jpg"))
        db.commit()

        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))

        assert outcome.status == IngestStatus.BLOCKED
        assert db.query(Message).count() == 0
        assert db.query(Conversation).count() == 0
        assert broadcast_events(fanout) == []
        assert telegram.texts_to(42) == [locales.text("en", "error")]

    def test_unsupported_contact_card(self, db, telegram, fanout, locales):
        message = telegram_message(sender_id=42, contact={"phone_number": "+10000000", "first_name": "Bob"})

        outcome = ingest(db, telegram, fanout, locales, message)

        assert outcome.status == IngestStatus.UNSUPPORTED
        assert db.query(TelegramUser).count() == 0
        assert db.query(Message).count() == 0
        assert broadcast_events(fanout) == []
        assert telegram.texts_to(42) == ["The message with this type is not supported yet."]

    def test_empty_text(self, db, telegram, fanout, locales):
        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="   "))

        assert outcome.status == IngestStatus.EMPTY
        assert db.query(Message).count() == 0
        assert telegram.texts_to(42) == [locales.text("en", "empty_message")]

    def test_duplicate_update_ignored(self, db, telegram, fanout, locales):
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, message_id=500, text="Hello"))
        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, message_id=500, text="Hello"))

        assert outcome.status == IngestStatus.DUPLICATE
        assert db.query(Message).count() == 1
        assert db.query(Conversation).one().unread_count == 1
        assert len(broadcast_events(fanout, MessageReceived)) == 1

    def test_bot_sender_ignored(self, db, telegram, fanout, locales):
        message = telegram_message(sender_id=42, text="Hello")
        message.from_user.is_bot = True
        outcome = ingest(db, telegram, fanout, locales, message)
        assert outcome.status == IngestStatus.IGNORED
        assert telegram.sent == []


class TestAvatar:
    def test_avatar_stored(self, db, telegram, fanout, locales):
        telegram.find_avatar_url.return_value = "https://api.telegram.org/file/botX/photos/1.jpg"
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))
        assert db.query(TelegramUser).one().photo_url.endswith("photos/1.jpg")

    def test_avatar_failure_does_not_stop_ingestion(self, db, telegram, fanout, locales):
        telegram.find_avatar_url.side_effect = RuntimeError("telegram down")
        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))
        assert outcome.status == IngestStatus.STORED
        assert db.query(TelegramUser).one().photo_url is None

    def test_avatar_not_refetched(self, db, telegram, fanout, locales):
        telegram.find_avatar_url.return_value = "https://example/avatar.jpg"
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="one"))
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="two"))
        assert telegram.find_avatar_url.await_count == 1


class TestOperatorNotifications:
    def test_notifies_opted_in_operators_only(self, db, telegram, fanout, locales):
        make_operator(db, email="a@example.com", settings=json.dumps({"telegram_notifications_user_id": 999}))
        make_operator(db, email="b@example.com", settings=json.dumps({"telegram_notifications_user_id": "1001"}))
        make_operator(db, email="c@example.com", settings="{not json")
        make_operator(db, email="d@example.com", settings=json.dumps({"telegram_notifications_user_id": "abc"}))
        make_operator(db, email="e@example.com", is_active=False, settings=json.dumps({"telegram_notifications_user_id": 5}))

        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Need help"))

        assert len(telegram.texts_to(999)) == 1
        assert len(telegram.texts_to(1001)) == 1
        assert telegram.texts_to(5) == []
        assert "Need help" in telegram.texts_to(999)[0]

    def test_failed_notification_does_not_block_others(self, db, telegram, fanout, locales):
        make_operator(db, email="a@example.com", settings=json.dumps({"telegram_notifications_user_id": 111}))
        make_operator(db, email="b@example.com", settings=json.dumps({"telegram_notifications_user_id": 222}))
        delivered = []

        async def send(chat_id, text, parse_mode=None):
            if chat_id == 111:
                return SendMessageResult(status=SendStatus.BLOCKED, error="Forbidden: bot was blocked by the user")
            delivered.append(chat_id)
            return SendMessageResult(status=SendStatus.SENT, message_id=1)

        telegram.send_message = AsyncMock(side_effect=send)

        outcome = ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="Hello"))

        assert outcome.status == IngestStatus.STORED
        assert 222 in delivered
        assert 42 in delivered

    def test_no_notifications_for_existing_conversation(self, db, telegram, fanout, locales):
        make_operator(db, email="a@example.com", settings=json.dumps({"telegram_notifications_user_id": 999}))
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="one"))
        ingest(db, telegram, fanout, locales, telegram_message(sender_id=42, text="two"))
        assert len(telegram.texts_to(999)) == 1


class TestHandleUpdate:
    def _update(self, **fields):
        return TelegramUpdate(update_id=1, message=telegram_message(sender_id=42, **fields))

    def test_start_command(self, telegram, fanout, locales):
        session_factory = Mock()
        asyncio.run(handle_update(self._update(text="/start"), session_factory, telegram, fanout, locales))

        assert telegram.texts_to(42)[0].startswith("👋 Hello, Anna!")
        session_factory.assert_not_called()

    def test_help_and_unknown_commands(self, telegram, fanout, locales):
        asyncio.run(handle_update(self._update(text="/help"), Mock(), telegram, fanout, locales))
        asyncio.run(handle_update(self._update(text="/weather"), Mock(), telegram, fanout, locales))

        replies = telegram.texts_to(42)
        assert replies[0].startswith("📋 Available commands:")
        assert replies[1] == "Unknown command. Use /help"

    def test_persistence_failure_sends_apology(self, telegram, fanout, locales):
        session = Mock()
        session.query.side_effect = RuntimeError("database is down")

        outcome = asyncio.run(handle_update(self._update(text="Hello"), lambda: session, telegram, fanout, locales))

        assert outcome is None
        session.rollback.assert_called_once()
        session.close.assert_called_once()
        assert telegram.texts_to(42) == ["There was an error processing your message. Please try again later."]
        fanout.broadcast.assert_not_awaited()

    def test_regular_message_stored(self, db, telegram, fanout, locales):
        outcome = asyncio.run(
            handle_update(self._update(text="Hello"), lambda: db, telegram, fanout, locales)
        )
        assert outcome.status == IngestStatus.STORED

    def test_update_without_message(self, telegram, fanout, locales):
        assert asyncio.run(handle_update(TelegramUpdate(update_id=3), Mock(), telegram, fanout, locales)) is None
        assert telegram.sent == []
