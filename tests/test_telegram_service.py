import asyncio
import json

import httpx
import pytest

from app.services.telegram_service import SendStatus, TelegramAPIError, TelegramService, is_unreachable


def make_service(handler):
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return TelegramService("123456:TEST", client=client)


def ok(result):
    return httpx.Response(200, json={"ok": True, "result": result})


def fail(code, description):
    return httpx.Response(code, json={"ok": False, "error_code": code, "description": description})


class TestUnreachableClassification:
    @pytest.mark.parametrize(
        "description",
        [
            "Forbidden: bot was blocked by the user",
            "Forbidden: user is deactivated",
            "Bad Request: chat not found",
        ],
    )
    def test_unreachable(self, description):
        assert is_unreachable(description) is True

    def test_other_errors(self):
        assert is_unreachable("Too Many Requests: retry after 5") is False


class TestSendMessage:
    def test_success_returns_message_id(self):
        requests = []

        def handler(request):
            requests.append(request)
            return ok({"message_id": 77})

        service = make_service(handler)
        result = asyncio.run(service.send_message(42, "Hi", parse_mode="HTML"))

        assert result.ok
        assert result.message_id == 77
        assert requests[0].url.path == "/bot123456:TEST/sendMessage"
        assert json.loads(requests[0].content) == {"chat_id": 42, "text": "Hi", "parse_mode": "HTML"}

    def test_blocked_by_user(self):
        service = make_service(lambda request: fail(403, "Forbidden: bot was blocked by the user"))
        result = asyncio.run(service.send_message(42, "Hi"))
        assert result.status == SendStatus.BLOCKED

    def test_other_api_error(self):
        service = make_service(lambda request: fail(429, "Too Many Requests: retry after 5"))
        result = asyncio.run(service.send_message(42, "Hi"))
        assert result.status == SendStatus.FAILED
        assert "Too Many Requests" in result.error

    def test_network_error_is_failure(self):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        service = make_service(handler)
        result = asyncio.run(service.send_message(42, "Hi"))
        assert result.status == SendStatus.FAILED
        assert "connection refused" in result.error


class TestApiCalls:
    def test_get_me(self):
        service = make_service(lambda request: ok({"id": 1, "is_bot": True, "first_name": "Desk", "username": "desk_bot"}))
        me = asyncio.run(service.get_me())
        assert me.username == "desk_bot"

    def test_get_me_unauthorized(self):
        service = make_service(lambda request: fail(401, "Unauthorized"))
        with pytest.raises(TelegramAPIError) as exc_info:
            asyncio.run(service.get_me())
        assert exc_info.value.is_fatal is True

    def test_get_updates_passes_offset(self):
        seen = {}

        def handler(request):
            seen.update(json.loads(request.content))
            return ok([{"update_id": 10, "message": {"message_id": 1, "date": 1, "chat": {"id": 5, "type": "private"}, "text": "hi"}}])

        service = make_service(handler)
        updates = asyncio.run(service.get_updates(offset=10, timeout=0))
        assert seen["offset"] == 10
        assert updates[0].message.text == "hi"

    def test_conflict_is_fatal(self):
        service = make_service(lambda request: fail(409, "Conflict: terminated by other getUpdates request"))
        with pytest.raises(TelegramAPIError) as exc_info:
            asyncio.run(service.get_updates(timeout=0))
        assert exc_info.value.is_fatal is True

    def test_server_error_is_not_fatal(self):
        service = make_service(lambda request: fail(502, "Bad Gateway"))
        with pytest.raises(TelegramAPIError) as exc_info:
            asyncio.run(service.get_updates(timeout=0))
        assert exc_info.value.is_fatal is False


class TestAvatarLookup:
    def test_prefers_chat_photo(self):
        def handler(request):
            method = request.url.path.rsplit("/", 1)[-1]
            if method == "getChat":
                return ok({"id": 42, "type": "private", "photo": {"small_file_id": "s", "big_file_id": "big"}})
            if method == "getFile":
                assert json.loads(request.content) == {"file_id": "big"}
                return ok({"file_id": "big", "file_path": "photos/file_1.jpg"})
            raise AssertionError(method)

        service = make_service(handler)
        url = asyncio.run(service.find_avatar_url(42))
        assert url == "https://api.telegram.org/file/bot123456:TEST/photos/file_1.jpg"

    def test_falls_back_to_profile_photos(self):
        def handler(request):
            method = request.url.path.rsplit("/", 1)[-1]
            if method == "getChat":
                return ok({"id": 42, "type": "private"})
            if method == "getUserProfilePhotos":
                return ok(
                    {
                        "total_count": 1,
                        "photos": [
                            [
                                {"file_id": "small", "file_unique_id": "a", "width": 160, "height": 160},
                                {"file_id": "large", "file_unique_id": "b", "width": 640, "height": 640},
                            ]
                        ],
                    }
                )
            if method == "getFile":
                return ok({"file_id": "large", "file_path": "photos/large.jpg"})
            raise AssertionError(method)

        service = make_service(handler)
        assert asyncio.run(service.find_avatar_url(42)).endswith("/photos/large.jpg")

    def test_no_photo(self):
        def handler(request):
            method = request.url.path.rsplit("/", 1)[-1]
            if method == "getChat":
                return ok({"id": 42, "type": "private"})
            return ok({"total_count": 0, "photos": []})

        service = make_service(handler)
        assert asyncio.run(service.find_avatar_url(42)) is None

    def test_chat_lookup_failure_falls_back_to_profile_photos(self):
        def handler(request):
            method = request.url.path.rsplit("/", 1)[-1]
            if method == "getChat":
                return fail(400, "Bad Request: chat not found")
            if method == "getUserProfilePhotos":
                return ok(
                    {
                        "total_count": 1,
                        "photos": [[{"file_id": "p1", "file_unique_id": "u1", "width": 640, "height": 640}]],
                    }
                )
            if method == "getFile":
                assert json.loads(request.content) == {"file_id": "p1"}
                return ok({"file_id": "p1", "file_path": "photos/p1.jpg"})
            raise AssertionError(method)

        service = make_service(handler)
        url = asyncio.run(service.find_avatar_url(42))
        assert url == "https://api.telegram.org/file/bot123456:TEST/photos/p1.jpg"
