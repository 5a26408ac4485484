from chatloop.core.logs import LogBuffer, LogEntry, mask_secret, redact


def test_buffer_is_bounded() -> None:
    buffer = LogBuffer(max_entries=2)
    buffer.record("loop", "one")
    buffer.record("loop", "two")
    buffer.record("loop", "three")

    assert [entry.message for entry in buffer.recent()] == ["two", "three"]


def test_unknown_category_and_severity_are_normalised() -> None:
    entry = LogBuffer().record("nonsense", "hello", severity="fatal")

    assert entry.category == "system"
    assert entry.severity == "info"


def test_category_filter_and_limit() -> None:
    buffer = LogBuffer()
    buffer.record("tool", "a")
    buffer.record("stream", "b")
    buffer.record("tool", "c")

    assert [entry.message for entry in buffer.recent(category="tool")] == ["a", "c"]
    assert [entry.message for entry in buffer.recent(category="tool", limit=1)] == ["c"]
    assert buffer.recent(limit=0) == []


def test_api_keys_are_redacted() -> None:
    buffer = LogBuffer()
    entry = buffer.record("stream", "LLM request failed for key sk-abcdefghijklmnopqrstuvwxyz")

    assert "abcdefghijklmnop" not in entry.message
    assert "sk-a…wxyz" in entry.message
    assert redact("nothing secret here") == "nothing secret here"
    assert mask_secret("short") == "••••"


def test_subscribers_receive_entries() -> None:
    buffer = LogBuffer()
    received: list[LogEntry] = []
    buffer.subscribe(received.append)
    buffer.record("history", "dropped result", severity="warning")
    buffer.unsubscribe(received.append)
    buffer.record("history", "ignored")

    assert [entry.message for entry in received] == ["dropped result"]
    assert received[0].as_dict()["severity"] == "warning"
