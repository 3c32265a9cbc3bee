from datetime import datetime, timezone

from app.services.entitlement import LIFETIME_SENTINEL
from app.utils.notifier import TelegramNotifier, format_expiry


class FakeTelegramService:
    instances = []

    def __init__(self, bot_token):
        self.bot_token = bot_token
        self.messages = []
        FakeTelegramService.instances.append(self)

    async def send_message(self, chat_id, text, **kwargs):
        self.messages.append((chat_id, text))


def _notifier():
    FakeTelegramService.instances = []
    return TelegramNotifier("bot-token", service_class=FakeTelegramService)


def _sent():
    return [m for service in FakeTelegramService.instances for m in service.messages]


def test_format_expiry():
    assert format_expiry(None) == "N/A"
    assert format_expiry(LIFETIME_SENTINEL) == "Lifetime"
    assert format_expiry(datetime(2027, 3, 1, tzinfo=timezone.utc)) == "2027-03-01"


def test_render_escapes_course_title():
    text = TelegramNotifier.render(
        "Enrollment Confirmed", ["Access granted."], "C++ <Basics>", LIFETIME_SENTINEL
    )

    assert "<b>C++ &lt;Basics&gt; - Enrollment Confirmed</b>" in text
    assert "<b>Access Expires:</b> Lifetime" in text


def test_telegram_notifier_sends_to_chat_id():
    notifier = _notifier()

    notifier.send("123456", "Installment Received", ["Thanks"], "Algebra")

    sent = _sent()
    assert len(sent) == 1
    assert sent[0][0] == "123456"
    assert "Installment Received" in sent[0][1]
    assert FakeTelegramService.instances[0].bot_token == "bot-token"


def test_every_send_gets_a_fresh_service():
    notifier = _notifier()

    notifier.send("123456", "Enrollment Confirmed", [], "Algebra")
    notifier.send("123456", "Installment Received", [], "Algebra")

    assert len(FakeTelegramService.instances) == 2
    assert FakeTelegramService.instances[0] is not FakeTelegramService.instances[1]
    assert [m[0] for m in _sent()] == ["123456", "123456"]


def test_telegram_notifier_skips_email_addresses():
    notifier = _notifier()

    notifier.send("student@example.com", "Enrollment Confirmed", [], "Algebra")

    assert FakeTelegramService.instances == []
