from __future__ import annotations

from dataclasses import dataclass

from .capabilities import ReasoningPolicy
from .contracts import CompletionMode, CompletionRequest, ModelCapability, OutboundRequest, PromptVariant


@dataclass(frozen=True)
class InstructionTier:
    """Length/tone tier: the task, the target word range and a worked example."""

    task: str
    words: str
    example: tuple[str, ...] = ()


_TIERS: dict[CompletionMode, InstructionTier] = {
    CompletionMode.SHORT: InstructionTier(
        task="CONTINUE the given text with SHORT, CONCISE completions that finish the immediate thought or sentence",
        words="5-20",
        example=(
            "sunny and warm",
            "perfect for outdoor activities",
            "quite cold",
            "absolutely beautiful",
            "cloudy with light rain",
        ),
    ),
    CompletionMode.MEDIUM: InstructionTier(
        task=(
            "CONTINUE the given text with MEDIUM-LENGTH completions: complete the current sentence "
            "and add one more sentence that flows naturally from it"
        ),
        words="20-40",
        example=(
            "perfect for a long walk. The sun is shining brightly and there's a gentle breeze.",
            "quite unpredictable with clouds gathering. We might see some rain later this afternoon.",
        ),
    ),
    CompletionMode.LONG: InstructionTier(
        task=(
            "CONTINUE the given text with PARAGRAPH-LENGTH completions: write a complete, coherent "
            "paragraph of related sentences that develops the thought"
        ),
        words="50-100",
    ),
    CompletionMode.REWRITE: InstructionTier(
        task=(
            "REWRITE the given text with better grammar, clarity and flow. Fix grammar and spelling, "
            "keep the original meaning and tone, and preserve technical terms and proper nouns"
        ),
        words="roughly the same number of",
    ),
}

STYLE_BLOCK_TEMPLATE = """USER STYLE PREFERENCES:
{style}

IMPORTANT: Apply the above style preferences while following the core instructions below.

---

"""

def _noun(mode: CompletionMode) -> str:
    return "rewrites" if mode is CompletionMode.REWRITE else "completions"


def json_instructions(mode: CompletionMode, cardinality: int) -> str:
    tier = _TIERS[mode]
    lines = [
        f"PURPOSE: You are a text {'improvement' if mode is CompletionMode.REWRITE else 'completion'} assistant. "
        f"Your job is to {tier.task}.",
    ]
    if tier.example:
        quoted = ", ".join(f'"{e}"' for e in tier.example)
        lines += ["", "EXAMPLE:", 'Input: "The weather today is"', f"CORRECT {_noun(mode)}: [{quoted}]"]
    lines += [
        "",
        "CRITICAL INSTRUCTIONS:",
        f"1. Generate exactly {cardinality} different {_noun(mode)}",
        f"2. Each one should be {tier.words} words",
        "3. Return ONLY a valid JSON array of strings with no additional text",
        "",
        "FORMAT: [" + ", ".join(f'"{_noun(mode)[:-1]} {i}"' for i in range(1, cardinality + 1)) + "]",
    ]
    return "\n".join(lines)


def numbered_instructions(mode: CompletionMode, cardinality: int) -> str:
    tier = _TIERS[mode]
    lines = [
        f"Your job is to {tier.task}.",
        f"Write {cardinality} different {_noun(mode)}, each {tier.words} words.",
        f"Output each on its own line, numbered 1-{cardinality}.",
    ]
    if tier.example:
        lines += ["", "EXAMPLE:", 'Input: "The weather today is"', "Output:"]
        lines += [f"{i}. {e}" for i, e in enumerate(tier.example, start=1)]
    lines += ["", f"INSTRUCTIONS: Generate exactly {cardinality} numbered lines and nothing else."]
    return "\n".join(lines)


def simplified_instructions(mode: CompletionMode, cardinality: int) -> str:
    tier = _TIERS[mode]
    verb = "Rewrite the given text" if mode is CompletionMode.REWRITE else "Continue the given text"
    return (
        f"{verb} in {cardinality} different ways ({tier.words} words each). "
        f"Output only a numbered list, one per line, numbered 1-{cardinality}. No introduction."
    )


def user_message(request: CompletionRequest, variant: PromptVariant) -> str:
    if request.mode is CompletionMode.REWRITE:
        return f'Rewrite this text in {request.cardinality} different ways:\n"{request.source_text}"'
    if variant is PromptVariant.SCHEMA:
        return f'Text to continue: "{request.source_text}"'
    return f'Continue this text with {request.cardinality} different completions:\n"{request.source_text}"'


def with_style(style_text: str | None, instructions: str) -> str:
    """Prepend user style as its own block. Base instructions are always kept intact."""
    if style_text and style_text.strip():
        return STYLE_BLOCK_TEMPLATE.format(style=style_text.strip()) + instructions
    return instructions


def completion_schema(mode: CompletionMode, cardinality: int) -> dict:
    key = _noun(mode)
    return {
        "type": "json_schema",
        "json_schema": {
            "name": key,
            "strict": True,
            "schema": {
                "type": "object",
                "properties": {
                    key: {
                        "type": "array",
                        "items": {"type": "string"},
                        "minItems": cardinality,
                        "maxItems": cardinality,
                        "description": f"Exactly {cardinality} different {_noun(mode)}",
                    }
                },
                "required": [key],
                "additionalProperties": False,
            },
        },
    }


class RequestComposer:
    def __init__(self, policy: ReasoningPolicy):
        self.policy = policy

    def compose(
        self,
        request: CompletionRequest,
        capability: ModelCapability,
        variant: PromptVariant,
        *,
        force_reasoning_exclusion: bool = False,
    ) -> OutboundRequest:
        if variant is PromptVariant.SCHEMA and not capability.supports_structured_output:
            variant = PromptVariant.NUMBERED

        if variant is PromptVariant.SCHEMA:
            instructions = json_instructions(request.mode, request.cardinality)
        elif variant is PromptVariant.NUMBERED:
            instructions = numbered_instructions(request.mode, request.cardinality)
        else:
            instructions = simplified_instructions(request.mode, request.cardinality)

        messages = [
            {"role": "system", "content": with_style(request.style_text, instructions)},
            {"role": "user", "content": user_message(request, variant)},
        ]

        stream = False
        exclude = force_reasoning_exclusion
        if not exclude and capability.is_reasoning_model:
            model = capability.model_id
            if self.policy.needs_streamed_accumulation(model):
                # Simplified retries fall back to a plain call with reasoning left in.
                stream = variant is not PromptVariant.SIMPLIFIED_NUMBERED
            elif self.policy.supports_reasoning_exclusion(model):
                exclude = True

        return OutboundRequest(
            model=capability.model_id,
            messages=messages,
            temperature=request.temperature,
            max_tokens=request.token_budget,
            stream=stream,
            response_format=completion_schema(request.mode, request.cardinality)
            if variant is PromptVariant.SCHEMA
            else None,
            reasoning_excluded=exclude,
            variant=variant,
        )

    def compose_chat(
        self,
        *,
        model: str,
        message: str,
        style_text: str | None,
        temperature: float,
        max_tokens: int,
        exclude_reasoning: bool,
    ) -> OutboundRequest:
        messages: list[dict[str, str]] = []
        if style_text and style_text.strip():
            messages.append({"role": "system", "content": style_text.strip()})
        messages.append({"role": "user", "content": message})
        return OutboundRequest(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
            reasoning_excluded=exclude_reasoning,
        )
