import pytest
from pydantic import ValidationError

from chatrix_gateway.anthropic_compat import (
    MessagesRequest,
    extract_generation_params,
    make_anthropic_error_response,
    make_messages_response,
)
from chatrix_gateway.pricing import cost
from chatrix_gateway.prompt import extract_prompt
from chatrix_gateway.relay import AggregatedResult


def _body(**overrides):
    body = {"model": "claude-sonnet-4", "messages": [{"role": "user", "content": "hi"}]}
    body.update(overrides)
    return body


def test_messages_request_defaults():
    req = MessagesRequest.model_validate(_body())
    assert req.stream is False
    assert req.system_text() is None
    params = extract_generation_params(req)
    assert (params.max_tokens, params.temperature, params.top_p) == (None, None, None)


def test_messages_request_system_as_string_or_blocks():
    assert MessagesRequest.model_validate(_body(system="  Be terse. ")).system_text() == "Be terse."
    blocks = [{"type": "text", "text": "One."}, {"type": "text", "text": "Two."}]
    assert MessagesRequest.model_validate(_body(system=blocks)).system_text() == "One.\nTwo."


@pytest.mark.parametrize(
    "overrides",
    [
        {"messages": []},
        {"model": ""},
        {"max_tokens": 0},
        {"temperature": 1.2},
        {"top_p": -0.1},
        {"messages": [{"role": "system", "content": "x"}]},
    ],
)
def test_messages_request_rejects_invalid_input(overrides):
    with pytest.raises(ValidationError):
        MessagesRequest.model_validate(_body(**overrides))


def test_messages_prompt_uses_last_message_text_blocks():
    req = MessagesRequest.model_validate(
        _body(
            messages=[
                {"role": "user", "content": "earlier"},
                {"role": "assistant", "content": "ok"},
                {"role": "user", "content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]},
            ]
        )
    )
    assert extract_prompt(req.messages) == "a\nb"


def test_messages_response_shape():
    result = AggregatedResult(full_text="Hi there", input_tokens=3, output_tokens=2)
    estimate = cost("us.amazon.nova-pro-v1:0", 3, 2)
    resp = make_messages_response(model="nova-pro", result=result, estimate=estimate).model_dump()
    assert resp["id"].startswith("msg_")
    assert resp["type"] == "message"
    assert resp["role"] == "assistant"
    assert resp["content"] == [{"type": "text", "text": "Hi there"}]
    assert resp["stop_reason"] == "end_turn"
    assert resp["stop_sequence"] is None
    assert resp["usage"]["input_tokens"] == 3
    assert resp["usage"]["output_tokens"] == 2
    assert resp["usage"]["total_tokens"] == 5


def test_anthropic_error_shape():
    body = make_anthropic_error_response(message="Invalid API key", type="authentication_error").model_dump()
    assert body == {
        "type": "error",
        "error": {"message": "Invalid API key", "type": "authentication_error", "code": None},
    }
