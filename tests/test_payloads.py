import pytest

from chatrix_gateway.models import NEWER_GENERATION_BACKEND_IDS, ModelDescriptor, ModelFamily, list_models, resolve
from chatrix_gateway.payloads import GenerationParams, build_payload, clamp_params


def _sampling(payload, family):
    if family is ModelFamily.CONVERSE_UNIFIED:
        cfg = payload["inferenceConfig"]
        return cfg["maxTokens"], cfg["temperature"], cfg.get("topP")
    return payload["max_tokens"], payload["temperature"], payload["top_p"]


def test_block_delta_payload_shape():
    payload = build_payload(resolve("claude-sonnet-4"), "Hello", GenerationParams(max_tokens=200))
    assert payload == {
        "anthropic_version": "bedrock-2023-05-31",
        "max_tokens": 200,
        "temperature": 0.3,
        "top_p": 0.3,
        "messages": [{"role": "user", "content": [{"type": "text", "text": "Hello"}]}],
    }


def test_block_delta_ignores_system_text():
    payload = build_payload(resolve("claude-sonnet-4"), "Hello", system="be brief")
    assert "system" not in payload


def test_completion_text_payload_has_stop_sequences():
    payload = build_payload(resolve("deepseek"), "Why?")
    assert payload["prompt"] == "Why?"
    assert payload["stop"] == ["</think>", "<|end_of_sentence|>"]
    assert payload["max_tokens"] == 512


def test_converse_payload_carries_system_and_inference_config():
    payload = build_payload(resolve("nova-pro"), "Hi", GenerationParams(50, 0.1, 0.2), system="Be terse.")
    assert payload["schemaVersion"] == "messages-v1"
    assert payload["system"] == [{"text": "Be terse."}]
    assert payload["messages"] == [{"role": "user", "content": [{"text": "Hi"}]}]
    assert payload["inferenceConfig"] == {"maxTokens": 50, "temperature": 0.1, "topP": 0.2}


def test_converse_payload_without_system_omits_block():
    payload = build_payload(resolve("nova-lite"), "Hi")
    assert "system" not in payload


@pytest.mark.parametrize(
    "descriptor",
    [d for d in list_models() if d.family is ModelFamily.CONVERSE_UNIFIED],
    ids=lambda d: d.logical_name,
)
def test_converse_top_p_omitted_only_for_newer_generation(descriptor):
    payload = build_payload(descriptor, "Hi", GenerationParams(top_p=0.1))
    if descriptor.backend_id in NEWER_GENERATION_BACKEND_IDS:
        assert "topP" not in payload["inferenceConfig"]
    else:
        assert payload["inferenceConfig"]["topP"] == 0.1


def test_converse_top_p_rule_applies_to_unregistered_descriptor():
    d = ModelDescriptor("custom", "us.amazon.nova-micro-v1:0", ModelFamily.CONVERSE_UNIFIED)
    assert "topP" in build_payload(d, "Hi")["inferenceConfig"]


@pytest.mark.parametrize("descriptor", list_models(), ids=lambda d: d.logical_name)
@pytest.mark.parametrize(
    "params,expected",
    [
        (GenerationParams(4096, 0.9, 0.95), (1024, 0.3, 0.3)),
        (GenerationParams(1025, 0.31, 0.31), (1024, 0.3, 0.3)),
        (GenerationParams(1024, 0.3, 0.3), (1024, 0.3, 0.3)),
        (GenerationParams(64, 0.0, 0.1), (64, 0.0, 0.1)),
        (GenerationParams(2000, 0.2, 0.8), (1024, 0.2, 0.3)),
    ],
)
def test_values_are_capped_at_ceiling_only(descriptor, params, expected):
    payload = build_payload(descriptor, "x", params)
    max_tokens, temperature, top_p = _sampling(payload, descriptor.family)
    assert max_tokens == expected[0]
    assert temperature == expected[1]
    if top_p is not None:
        assert top_p == expected[2]


def test_absent_values_use_family_defaults():
    assert clamp_params(ModelFamily.CONVERSATIONAL_BLOCK_DELTA, GenerationParams()) == GenerationParams(1024, 0.3, 0.3)
    assert clamp_params(ModelFamily.COMPLETION_TEXT, GenerationParams()) == GenerationParams(512, 0.3, 0.3)
