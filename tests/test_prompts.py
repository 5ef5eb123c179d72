from completion_orchestrator.capabilities import ReasoningPolicy
from completion_orchestrator.config import EngineConfig
from completion_orchestrator.contracts import CompletionMode, CompletionRequest, ModelCapability, PromptVariant
from completion_orchestrator.prompts import RequestComposer, completion_schema


def _request(mode=CompletionMode.SHORT, style_text=None):
    return CompletionRequest(
        source_text="The weather today is",
        mode=mode,
        cardinality=mode.cardinality,
        temperature=0.7,
        token_budget=100,
        style_text=style_text,
    )


def _cap(model_id, *, structured=False, reasoning=False):
    return ModelCapability(
        model_id=model_id,
        supports_structured_output=structured,
        is_reasoning_model=reasoning,
        resolved_at=0.0,
    )


def _composer():
    return RequestComposer(ReasoningPolicy(EngineConfig(openrouter_api_key=None)))


def test_schema_variant_attaches_strict_schema():
    out = _composer().compose(_request(), _cap("openai/gpt-4o", structured=True), PromptVariant.SCHEMA)
    assert out.variant is PromptVariant.SCHEMA
    schema = out.response_format["json_schema"]
    assert schema["strict"] is True
    items = schema["schema"]["properties"]["completions"]
    assert items["minItems"] == items["maxItems"] == 5
    assert out.to_payload()["response_format"] == out.response_format


def test_schema_downgrades_to_numbered_without_structured_output():
    out = _composer().compose(_request(), _cap("some/model"), PromptVariant.SCHEMA)
    assert out.variant is PromptVariant.NUMBERED
    assert out.response_format is None
    assert "response_format" not in out.to_payload()
    assert "numbered 1-5" in out.messages[0]["content"]


def test_rewrite_schema_uses_rewrite_key_and_three_items():
    schema = completion_schema(CompletionMode.REWRITE, 3)["json_schema"]["schema"]
    assert schema["required"] == ["rewrites"]
    assert schema["properties"]["rewrites"]["maxItems"] == 3


def test_style_block_is_prepended_and_instructions_kept():
    plain = _composer().compose(_request(), _cap("some/model"), PromptVariant.SIMPLIFIED_NUMBERED)
    styled = _composer().compose(
        _request(style_text="  Write like a pirate  "), _cap("some/model"), PromptVariant.SIMPLIFIED_NUMBERED
    )
    system = styled.messages[0]["content"]
    assert system.startswith("USER STYLE PREFERENCES:\nWrite like a pirate\n")
    assert system.endswith(plain.messages[0]["content"])


def test_blank_style_is_ignored():
    out = _composer().compose(_request(style_text="   "), _cap("some/model"), PromptVariant.NUMBERED)
    assert not out.messages[0]["content"].startswith("USER STYLE")


def test_source_text_is_in_user_message():
    out = _composer().compose(_request(), _cap("some/model"), PromptVariant.NUMBERED)
    assert out.messages[1]["role"] == "user"
    assert "The weather today is" in out.messages[1]["content"]


def test_reasoning_model_gets_exclusion_flag():
    out = _composer().compose(_request(), _cap("deepseek/deepseek-r1", reasoning=True), PromptVariant.SCHEMA)
    assert out.reasoning_excluded is True
    assert out.stream is False
    assert out.to_payload()["reasoning"] == {"exclude": True}


def test_streaming_reasoning_model_streams_without_exclusion():
    out = _composer().compose(_request(), _cap("openai/o3-mini", reasoning=True), PromptVariant.SCHEMA)
    assert out.stream is True
    assert out.reasoning_excluded is False
    assert "reasoning" not in out.to_payload()


def test_streaming_model_simplified_retry_is_not_streamed():
    out = _composer().compose(
        _request(), _cap("openai/o3-mini", reasoning=True), PromptVariant.SIMPLIFIED_NUMBERED
    )
    assert out.stream is False


def test_model_without_exclusion_support_gets_neither():
    out = _composer().compose(_request(), _cap("openai/gpt-5-mini", reasoning=True), PromptVariant.NUMBERED)
    assert out.stream is False
    assert out.reasoning_excluded is False


def test_forced_exclusion_applies_to_any_model():
    out = _composer().compose(
        _request(), _cap("openai/o3-mini", reasoning=True), PromptVariant.SIMPLIFIED_NUMBERED,
        force_reasoning_exclusion=True,
    )
    assert out.reasoning_excluded is True
    assert out.stream is False


def test_budget_and_temperature_are_passed_through():
    payload = _composer().compose(_request(), _cap("some/model"), PromptVariant.NUMBERED).to_payload()
    assert payload["max_tokens"] == 100
    assert payload["temperature"] == 0.7
    assert payload["model"] == "some/model"


def test_chat_composition():
    out = _composer().compose_chat(
        model="some/model",
        message="hello",
        style_text="be brief",
        temperature=0.2,
        max_tokens=50,
        exclude_reasoning=False,
    )
    assert out.messages == [
        {"role": "system", "content": "be brief"},
        {"role": "user", "content": "hello"},
    ]
