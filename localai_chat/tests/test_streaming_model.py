import httpx
import pytest

from localai_chat.chat.handler import BlockingResponseHandler
from localai_chat.chat.streaming_model import LocalAiStreamingChatModel
from localai_chat.domain.exceptions import ConfigurationError, NetworkError
from localai_chat.domain.models import ChatDelta, ChatMessage, ChatStreamChoice, ChatStreamChunk, ChatUsage
from localai_chat.providers.openai_client import OpenAiClient
from localai_chat.tools.definitions import ToolSpecification

MESSAGES = [ChatMessage(role="user", content="Hi")]
COMPLETE = object()


def content_chunk(text, finish_reason=None):
    return ChatStreamChunk(
        choices=[ChatStreamChoice(index=0, delta=ChatDelta(content=text), finish_reason=finish_reason)]
    )


class FakeCall:
    """按脚本同步执行回调：片段、COMPLETE 或异常。"""

    def __init__(self, script):
        self._script = script
        self.partial = self.complete = self.error = None

    def on_partial_response(self, cb):
        self.partial = cb
        return self

    def on_complete(self, cb):
        self.complete = cb
        return self

    def on_error(self, cb):
        self.error = cb
        return self

    def execute(self):
        for event in self._script:
            if event is COMPLETE:
                self.complete()
            elif isinstance(event, Exception):
                self.error(event)
            else:
                self.partial(event)


class FakeClient:
    def __init__(self, script):
        self._script = script
        self.requests = []

    def chat_completion(self, request):
        self.requests.append(request)
        return FakeCall(self._script)


class RecordingHandler:
    def __init__(self):
        self.events = []

    def on_next(self, token):
        self.events.append(("next", token))

    def on_complete(self, response):
        self.events.append(("complete", response))

    def on_error(self, error):
        self.events.append(("error", error))


def make_model(script, **kw):
    client = FakeClient(script)
    model = LocalAiStreamingChatModel(base_url="http://localhost:8080/v1", model_name="llama-3", client=client, **kw)
    return model, client


def test_hello_scenario():
    model, _ = make_model([content_chunk("Hel"), content_chunk("lo", finish_reason="stop"), COMPLETE])
    handler = RecordingHandler()
    assert model.generate(MESSAGES, handler) is None

    assert [e[0] for e in handler.events] == ["next", "next", "complete"]
    assert handler.events[0][1] == "Hel"
    assert handler.events[1][1] == "lo"
    response = handler.events[2][1]
    assert response.message.role == "assistant"
    assert response.message.content == "Hello"
    assert response.finish_reason == "stop"


def test_each_delta_forwarded_once_in_order():
    parts = ["a", "bc", "", "d", "efg"]
    model, _ = make_model([content_chunk(p) for p in parts] + [COMPLETE])
    handler = RecordingHandler()
    model.generate(MESSAGES, handler)
    assert [e[1] for e in handler.events if e[0] == "next"] == parts
    assert handler.events[-1][1].message.content == "".join(parts)


def test_chunks_without_choices_or_content_do_not_call_on_next():
    usage = ChatUsage(prompt_tokens=2, completion_tokens=1, total_tokens=3)
    script = [
        ChatStreamChunk(choices=[]),
        ChatStreamChunk(choices=[ChatStreamChoice(index=0, delta=ChatDelta(role="assistant"))]),
        content_chunk("x"),
        ChatStreamChunk(choices=[], usage=usage),
        COMPLETE,
    ]
    model, _ = make_model(script)
    handler = RecordingHandler()
    model.generate(MESSAGES, handler)
    assert [e[0] for e in handler.events] == ["next", "complete"]
    response = handler.events[-1][1]
    assert response.message.content == "x"
    assert response.usage.total_tokens == 3


def test_transport_failure_before_any_content():
    cause = NetworkError(code="NETWORK_ERROR", message="connection refused")
    model, _ = make_model([cause])
    handler = RecordingHandler()
    model.generate(MESSAGES, handler)
    assert handler.events == [("error", cause)]


def test_no_complete_after_error():
    cause = RuntimeError("stream broke")
    model, _ = make_model([content_chunk("partial"), cause, COMPLETE, content_chunk("late")])
    handler = RecordingHandler()
    model.generate(MESSAGES, handler)
    assert handler.events == [("next", "partial"), ("error", cause)]


def test_callbacks_after_complete_are_dropped():
    model, _ = make_model([content_chunk("ok"), COMPLETE, content_chunk("late"), COMPLETE, RuntimeError("late")])
    handler = RecordingHandler()
    model.generate(MESSAGES, handler)
    assert [e[0] for e in handler.events] == ["next", "complete"]
    assert handler.events[-1][1].message.content == "ok"


def test_failure_to_start_is_delivered_via_on_error():
    class BrokenCall(FakeCall):
        def execute(self):
            raise RuntimeError("can't start thread")

    class BrokenClient(FakeClient):
        def chat_completion(self, request):
            return BrokenCall([])

    model = LocalAiStreamingChatModel(base_url="http://x/v1", model_name="llama-3", client=BrokenClient([]))
    handler = RecordingHandler()
    model.generate(MESSAGES, handler)
    assert [e[0] for e in handler.events] == ["error"]


def test_forced_tool_request():
    model, client = make_model([COMPLETE])
    weather = ToolSpecification(name="lookupWeather", description="weather")
    model.generate(MESSAGES, RecordingHandler(), tool_that_must_be_executed=weather)
    req = client.requests[0]
    assert [t.name for t in req.functions] == ["lookupWeather"]
    assert req.function_call == "lookupWeather"
    assert req.stream is True


def test_tool_list_request():
    model, client = make_model([COMPLETE])
    tools = [ToolSpecification(name="a"), ToolSpecification(name="b")]
    model.generate(MESSAGES, RecordingHandler(), tool_specifications=tools)
    req = client.requests[0]
    assert [t.name for t in req.functions] == ["a", "b"]
    assert req.function_call is None


def test_default_and_explicit_sampling_params():
    model, client = make_model([COMPLETE])
    model.generate(MESSAGES, RecordingHandler())
    req = client.requests[0]
    assert (req.temperature, req.top_p, req.max_tokens) == (0.7, None, None)

    model, client = make_model([COMPLETE], temperature=0.1, top_p=0.5, max_tokens=32)
    model.generate(MESSAGES, RecordingHandler())
    req = client.requests[0]
    assert (req.temperature, req.top_p, req.max_tokens) == (0.1, 0.5, 32)


def test_each_generate_has_its_own_aggregate():
    model, _ = make_model([content_chunk("one"), COMPLETE])
    first, second = RecordingHandler(), RecordingHandler()
    model.generate(MESSAGES, first)
    model.generate(MESSAGES, second)
    assert first.events[-1][1].message.content == "one"
    assert second.events[-1][1].message.content == "one"


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_url": "http://x/v1", "model_name": ""},
        {"base_url": "http://x/v1", "model_name": "  "},
        {"base_url": "", "model_name": "llama-3"},
        {"base_url": None, "model_name": "llama-3"},
    ],
)
def test_blank_construction_params_fail_before_network(monkeypatch, kwargs):
    def forbidden(*a, **kw):
        raise AssertionError("no network call expected")

    monkeypatch.setattr("httpx.Client", forbidden)
    with pytest.raises(ConfigurationError):
        LocalAiStreamingChatModel(**kwargs)


def test_default_client_is_configured_from_constructor():
    model = LocalAiStreamingChatModel(base_url="http://localhost:8080/v1/", model_name="llama-3", timeout=5)
    client = model._client
    assert isinstance(client, OpenAiClient)
    assert client.base_url == "http://localhost:8080/v1"
    assert client.timeout.read == 5


def test_from_settings():
    class SettingsStub:
        localai_base_url = "http://localhost:8080/v1"
        localai_model_name = "llama-3"
        localai_temperature = 0.3
        localai_top_p = None
        localai_max_tokens = 256
        http_timeout = 10.0
        log_requests = False
        log_responses = False

    model = LocalAiStreamingChatModel.from_settings(SettingsStub(), model_name="mistral")
    assert model.model_name == "mistral"
    assert model._temperature == 0.3
    assert model._max_tokens == 256
    assert model._client.timeout.connect == 10.0


def test_from_settings_without_base_url():
    class SettingsStub:
        localai_base_url = None
        localai_model_name = "llama-3"

    with pytest.raises(ConfigurationError):
        LocalAiStreamingChatModel.from_settings(SettingsStub())


def test_end_to_end_with_http_stream(monkeypatch):
    lines = [
        'data: {"id": "c1", "choices": [{"index": 0, "delta": {"role": "assistant", "content": ""}}]}',
        'data: {"id": "c1", "choices": [{"index": 0, "delta": {"content": "Hel"}}]}',
        'data: {"id": "c1", "choices": [{"index": 0, "delta": {"content": "lo"}, "finish_reason": "stop"}], "usage": {"prompt_tokens": 1, "completion_tokens": 2, "total_tokens": 3}}',
        "data: [DONE]",
    ]

    class FakeResponse:
        status_code = 200

        def iter_lines(self):
            yield from lines

    class StreamContext:
        def __enter__(self):
            return FakeResponse()

        def __exit__(self, *args):
            return False

    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, *a, **kw):
            return StreamContext()

    monkeypatch.setattr("httpx.Client", Client)
    model = LocalAiStreamingChatModel(base_url="http://localhost:8080/v1", model_name="llama-3")
    handler = BlockingResponseHandler()
    model.generate(MESSAGES, handler)
    response = handler.wait(timeout=5)

    assert handler.tokens == ["", "Hel", "lo"]
    assert response.message.content == "Hello"
    assert response.usage.total_tokens == 3
    assert response.id == "c1"


def test_end_to_end_error_is_raised_from_wait(monkeypatch):
    class Client:
        def __init__(self, *a, **kw):
            pass

        def __enter__(self):
            return self

        def __exit__(self, *a):
            return False

        def stream(self, *a, **kw):
            raise httpx.ConnectError("connection refused")

    monkeypatch.setattr("httpx.Client", Client)
    model = LocalAiStreamingChatModel(base_url="http://localhost:8080/v1", model_name="llama-3")
    handler = BlockingResponseHandler()
    model.generate(MESSAGES, handler)
    with pytest.raises(NetworkError):
        handler.wait(timeout=5)
    assert handler.tokens == []
    assert handler.response is None
