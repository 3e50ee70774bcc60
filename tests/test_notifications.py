import httpx
import pytest
from fusionmarkt.common.circuit_breaker import CircuitBreaker, CircuitOpenError
from fusionmarkt.notifications.dispatcher import NotificationDispatcher
from fusionmarkt.notifications.email import EmailClient
from tests.helpers import FakeClock, RecordingSender


async def test_dispatcher_sends_rendered_mail():
    sender = RecordingSender()
    notifier = NotificationDispatcher(sender, workers_count=1)
    await notifier()

    assert notifier.dispatch("payment_confirmed", "a@b.com", order_number="FM-2026-00001",
                             customer_name="A", total=200)
    assert notifier.dispatch("payment_confirmed", "", order_number="FM-2026-00001",
                             customer_name="A", total=200) is False
    await notifier.drain()
    await notifier.shutdown(drain_timeout=1.0, wait_timeout=1.0)

    assert [m["to"] for m in sender.sent] == ["a@b.com"]
    assert "FM-2026-00001" in sender.sent[0]["subject"]
    assert not notifier.running


async def test_failed_send_does_not_stop_the_worker():
    sender = RecordingSender(fail=True)
    notifier = NotificationDispatcher(sender, workers_count=1)
    await notifier()

    notifier.dispatch("invoice_ready", "a@b.com", order_number="FM-2026-00001", customer_name="A")
    await notifier.drain()
    sender.fail = False
    notifier.dispatch("invoice_ready", "a@b.com", order_number="FM-2026-00002", customer_name="A")
    await notifier.drain()
    await notifier.shutdown(drain_timeout=1.0, wait_timeout=1.0)

    assert len(sender.sent) == 1
    assert "FM-2026-00002" in sender.sent[0]["subject"]


async def test_unknown_kind_is_dropped():
    sender = RecordingSender()
    notifier = NotificationDispatcher(sender, workers_count=1)
    await notifier()
    notifier.dispatch("no_such_mail", "a@b.com")
    await notifier.drain()
    await notifier.shutdown(drain_timeout=1.0, wait_timeout=1.0)
    assert sender.sent == []


async def test_email_client_posts_to_resend(settings):
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"id": "msg-1"})

    client = EmailClient(settings.model_copy(update={"RESEND_API_KEY": "re_test"}),
                         transport=httpx.MockTransport(handler))
    result = await client.send("a@b.com", "Konu", "<p>x</p>")

    assert result.message_id == "msg-1"
    assert seen[0].headers["authorization"] == "Bearer re_test"


async def test_email_client_without_key_is_a_noop(settings):
    result = await EmailClient(settings).send("a@b.com", "Konu", "<p>x</p>")
    assert result.success
    assert result.message_id == "email-disabled"


async def test_circuit_breaker_half_open_trial_call():
    clock = FakeClock()
    breaker = CircuitBreaker("test", failure_threshold=2, recovery_timeout=10, clock=clock)

    await breaker.after_call(False)
    await breaker.before_call()
    await breaker.after_call(False)
    assert breaker.state == "OPEN"
    with pytest.raises(CircuitOpenError):
        await breaker.before_call()

    clock.advance(10)
    await breaker.before_call()
    assert breaker.state == "HALF_OPEN"
    await breaker.after_call(False)
    assert breaker.state == "OPEN"

    clock.advance(10)
    await breaker.before_call()
    await breaker.after_call(True)
    assert breaker.state == "CLOSED"
