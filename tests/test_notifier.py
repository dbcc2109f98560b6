import asyncio

from services.notifier import Notifier, split_text


class FakeBot:
    def __init__(self, fail_first=False):
        self.sent = []
        self.fail_first = fail_first

    async def send_message(self, chat_id, text):
        if self.fail_first:
            self.fail_first = False
            raise RuntimeError("network down")
        self.sent.append((chat_id, text))


def test_split_text_respects_limit():
    text = "\n".join(["x" * 30] * 10)
    chunks = split_text(text, limit=100)
    assert all(len(c) <= 100 for c in chunks)
    assert "".join(chunks) == text
    assert split_text("short") == ["short"]
    assert split_text("y" * 250, limit=100) == ["y" * 100, "y" * 100, "y" * 50]


def test_notifier_delivers_in_order_and_survives_errors():
    bot = FakeBot(fail_first=True)

    async def scenario():
        notifier = Notifier()
        await notifier.start(bot)
        await notifier.send("1", "first")
        await notifier.send("1", "second")
        await notifier.send("1", "   ")
        await notifier.send("2", "third")
        assert await notifier.flush(timeout=1.0)
        await notifier.stop()

    asyncio.run(scenario())
    assert bot.sent == [("1", "second"), ("2", "third")]
