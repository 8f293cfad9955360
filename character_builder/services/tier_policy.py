"""Tier limits and sampling defaults.

Every size-dependent number used by the prompt composer and evaluator lives in
:data:`TIER_LIMITS` or :data:`SAMPLING_DEFAULTS`.  Rendering code reads the
limits from a clamped profile instead of branching on the tier itself.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from types import MappingProxyType
from typing import Mapping, Optional, Tuple

from ollama_client import SamplingOptions

from ..profiles import (
    DEFAULT_SENTENCE_ENDING,
    CharacterProfile,
    SamplingConfig,
    normalize_tier,
)


STOP_SEQUENCES: Tuple[str, ...] = ("<end_of_turn>", "<start_of_turn>")


@dataclass(frozen=True)
class TierLimits:
    traits: int
    strengths: int
    weaknesses: int
    experiences: int
    interests: int
    # ``None`` keeps every configured ending.
    sentence_endings: Optional[int]
    few_shot_examples: int
    history_turns: int
    # Adds traits, first person, origin, age and weaknesses to the persona block.
    detailed_persona: bool
    target_length: Tuple[int, int] = (30, 50)
    tolerated_length: Tuple[int, int] = (20, 70)


TIER_LIMITS: Mapping[str, TierLimits] = MappingProxyType(
    {
        "small": TierLimits(
            traits=1,
            strengths=1,
            weaknesses=1,
            experiences=1,
            interests=2,
            sentence_endings=1,
            few_shot_examples=3,
            history_turns=3,
            detailed_persona=False,
        ),
        "large": TierLimits(
            traits=3,
            strengths=2,
            weaknesses=2,
            experiences=3,
            interests=4,
            sentence_endings=None,
            few_shot_examples=5,
            history_turns=6,
            detailed_persona=True,
        ),
    }
)

SAMPLING_DEFAULTS: Mapping[str, SamplingConfig] = MappingProxyType(
    {
        "small": SamplingConfig(max_tokens=100, context_window=8192),
        "large": SamplingConfig(max_tokens=150, context_window=16384),
    }
)

DEFAULT_MODELS: Mapping[str, str] = MappingProxyType({"small": "gemma3:4b", "large": "gemma3:12b"})


def limits_for(tier: str) -> TierLimits:
    return TIER_LIMITS[normalize_tier(tier)]


def default_sampling_config(tier: str) -> SamplingConfig:
    return replace(SAMPLING_DEFAULTS[normalize_tier(tier)])


def default_model_for(tier: str) -> str:
    return DEFAULT_MODELS[normalize_tier(tier)]


def clamp_for_tier(profile: CharacterProfile, tier: Optional[str] = None) -> CharacterProfile:
    """Return a copy of ``profile`` with list fields cut to the tier's limits.

    Strengths are ordered by confidence (highest first, ties keep authoring
    order) before clamping.  Blank sentence endings are discarded and an empty
    list falls back to :data:`DEFAULT_SENTENCE_ENDING`.  The input profile is
    never modified.
    """

    target_tier = normalize_tier(tier or profile.model_tier)
    limits = TIER_LIMITS[target_tier]

    endings = [ending.strip() for ending in profile.speech_style.sentence_endings if ending and ending.strip()]
    if limits.sentence_endings is not None:
        endings = endings[: limits.sentence_endings]
    if not endings:
        endings = [DEFAULT_SENTENCE_ENDING]

    strengths = sorted(profile.abilities.strengths, key=lambda strength: -strength.confidence)

    return replace(
        profile,
        model_tier=target_tier,
        personality=replace(profile.personality, traits=list(profile.personality.traits[: limits.traits])),
        speech_style=replace(
            profile.speech_style,
            sentence_endings=endings,
            examples=list(profile.speech_style.examples),
        ),
        background=replace(
            profile.background,
            experiences=list(profile.background.experiences[: limits.experiences]),
        ),
        abilities=replace(
            profile.abilities,
            strengths=strengths[: limits.strengths],
            weaknesses=list(profile.abilities.weaknesses[: limits.weaknesses]),
            interests=list(profile.abilities.interests[: limits.interests]),
        ),
    )


def sampling_options_for(profile: CharacterProfile) -> SamplingOptions:
    config = profile.sampling_config
    return SamplingOptions(
        temperature=config.temperature,
        top_k=config.top_k,
        top_p=config.top_p,
        repeat_penalty=config.repeat_penalty,
        num_predict=config.max_tokens,
        num_ctx=config.context_window,
        stop=list(STOP_SEQUENCES),
    )


def model_name_for(profile: CharacterProfile) -> str:
    return profile.model or default_model_for(profile.model_tier)
