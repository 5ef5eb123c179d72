"""
Fallback chain as a small state machine.

    PRIMARY --empty--> SIMPLIFIED --empty--> BASELINE --empty--> FAILED
       |                   |           (skipped when the selected
       +------ok-----------+---------> SUCCEEDED   model is the baseline)

Transitions are pure so the chain can be tested without any network.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from .contracts import PromptVariant


class Stage(str, Enum):
    PRIMARY = "primary"
    SIMPLIFIED = "simplified"
    BASELINE = "baseline"
    SUCCEEDED = "succeeded"
    FAILED = "failed"

    @property
    def terminal(self) -> bool:
        return self in (Stage.SUCCEEDED, Stage.FAILED)


class Outcome(str, Enum):
    OK = "ok"
    EMPTY = "empty"
    TIMEOUT = "timeout"


ATTEMPT_INDEX = {Stage.PRIMARY: 1, Stage.SIMPLIFIED: 2, Stage.BASELINE: 3}


@dataclass(frozen=True)
class StagePlan:
    model_id: str
    variant: PromptVariant
    force_reasoning_exclusion: bool


def next_stage(stage: Stage, outcome: Outcome, *, selected_model: str, baseline_model: str) -> Stage:
    if stage.terminal:
        return stage
    if outcome is Outcome.OK:
        return Stage.SUCCEEDED
    if stage is Stage.PRIMARY:
        return Stage.SIMPLIFIED
    if stage is Stage.SIMPLIFIED and selected_model != baseline_model:
        return Stage.BASELINE
    return Stage.FAILED


def plan_for(stage: Stage, *, selected_model: str, baseline_model: str) -> StagePlan:
    if stage is Stage.PRIMARY:
        return StagePlan(selected_model, PromptVariant.SCHEMA, force_reasoning_exclusion=False)
    if stage is Stage.SIMPLIFIED:
        return StagePlan(selected_model, PromptVariant.SIMPLIFIED_NUMBERED, force_reasoning_exclusion=False)
    if stage is Stage.BASELINE:
        return StagePlan(baseline_model, PromptVariant.SIMPLIFIED_NUMBERED, force_reasoning_exclusion=True)
    raise ValueError(f"No attempt is planned for terminal stage {stage.value!r}")
