"""Render character profiles into single-turn prompts.

Gemma 3 has no system role, so persona, examples and rules all go into one
user turn ahead of the model turn.  A prompt is built from three zones in a
fixed order:

1. the persona block (identity, personality, speech rules, background and
   ability excerpts allowed by the tier),
2. either a few-shot block of example exchanges or the recent conversation
   transcript,
3. the constraint block (reply length and delimiter rules),

followed by the literal user input.  Rendering is a pure function of the
profile and the input; the profile is clamped with
:func:`~character_builder.services.tier_policy.clamp_for_tier` first.
"""

from __future__ import annotations

import math
import re
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ..profiles import CharacterProfile, require_identity
from .tier_policy import STOP_SEQUENCES, clamp_for_tier, limits_for


TURN_START = "<start_of_turn>"
TURN_OPEN = TURN_START + "user"
TURN_CLOSE = "<end_of_turn>"
MODEL_TURN = TURN_START + "model"

USER_LABEL = "ユーザー"
ROLE_LABELS = {"boke": "ボケ担当", "tsukkomi": "ツッコミ担当"}

FEW_SHOT_HEADING = "【発話例】"
HISTORY_HEADING = "【これまでの会話】"
RULES_HEADING = "【重要なルール】"
EMPTY_HISTORY = "（会話開始）"

ROLE_EXAMPLES = {
    "boke": ("何か面白いこと言って", "えーっと..."),
    "tsukkomi": ("それはおかしいよ", "そうそう、それ言いたかった"),
}
AUTHORED_EXAMPLE_PROMPT = "ねえ、話そうよ"

_SECTION_PATTERN = re.compile(r"【([^】]+)】")
TOKEN_WARNING_THRESHOLD = 1000


@dataclass
class ConversationTurn:
    role: str  # "user" or "character"
    content: str


@dataclass
class PromptAnalysis:
    total_length: int
    estimated_tokens: int
    sections: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def render_single_prompt(profile: CharacterProfile, user_input: str) -> str:
    """Render the prompt for a single exchange with ``user_input``."""

    require_identity(profile)
    clamped = clamp_for_tier(profile)
    text = user_input or ""

    examples = _select_examples(clamped, text)
    return _wrap_turn(
        [
            _persona_block(clamped),
            FEW_SHOT_HEADING + "\n" + "\n\n".join(examples),
            _constraint_block(clamped),
            f"{USER_LABEL}の発言: {text}",
        ]
    )


def render_conversational_prompt(
    profile: CharacterProfile,
    history: Sequence[ConversationTurn],
    new_input: str,
) -> str:
    """Render a prompt that carries the most recent conversation turns.

    Only the last ``history_turns`` turns allowed by the tier are kept, in
    their original order; older turns are dropped.
    """

    require_identity(profile)
    clamped = clamp_for_tier(profile)
    window = limits_for(clamped.model_tier).history_turns
    recent = list(history)[-window:] if window > 0 else []

    return _wrap_turn(
        [
            _persona_block(clamped),
            HISTORY_HEADING + "\n" + _render_transcript(clamped, recent),
            _constraint_block(clamped),
            f"{USER_LABEL}の新しい発言: {new_input or ''}",
        ]
    )


def analyze_prompt(prompt: str) -> PromptAnalysis:
    """Summarise a rendered prompt for the preview panel."""

    text = prompt or ""
    # Rough Japanese estimate: about 1.5 tokens per character.
    estimated_tokens = math.ceil(len(text) * 1.5)
    warnings: List[str] = []
    if estimated_tokens > TOKEN_WARNING_THRESHOLD:
        warnings.append(f"Prompt is long (about {estimated_tokens} tokens; keep it under {TOKEN_WARNING_THRESHOLD}).")
    if TURN_START not in text:
        warnings.append("Prompt does not contain turn delimiters.")

    return PromptAnalysis(
        total_length=len(text),
        estimated_tokens=estimated_tokens,
        sections=_SECTION_PATTERN.findall(text),
        warnings=warnings,
    )


def _wrap_turn(zones: Sequence[str]) -> str:
    body = "\n\n".join(zone for zone in zones if zone)
    return f"{TURN_OPEN}\n{body}\n{TURN_CLOSE}\n{MODEL_TURN}"


def _persona_block(profile: CharacterProfile) -> str:
    limits = limits_for(profile.model_tier)
    speech = profile.speech_style
    background = profile.background
    abilities = profile.abilities

    lines = [
        f"あなたは「{profile.name}」です。",
        f"役割: {ROLE_LABELS.get(profile.role, profile.role)}",
        f"性格: {profile.personality.core}",
    ]

    if not limits.detailed_persona:
        lines.append(f"話し方: {speech.sentence_endings[0]}で終わる")
        if background.occupation:
            lines.append(f"職業: {background.occupation}")
        if abilities.strengths:
            lines.append(f"得意: {abilities.strengths[0].area}")
        return "\n".join(lines)

    if profile.personality.traits:
        lines.append(f"特徴: {'、'.join(profile.personality.traits)}")
    lines.append(f"話し方: 語尾は「{'」「'.join(speech.sentence_endings)}」")
    lines.append(f"一人称: {speech.first_person}")

    background_parts = [part for part in (background.occupation, background.origin, background.age) if part]
    if background_parts:
        lines.append(f"背景: {'、'.join(background_parts)}")
    if abilities.strengths:
        lines.append(f"得意分野: {'、'.join(strength.area for strength in abilities.strengths)}")
    if abilities.weaknesses:
        rendered = [
            f"{weakness.area}（{weakness.reaction}）" if weakness.reaction else weakness.area
            for weakness in abilities.weaknesses
        ]
        lines.append(f"苦手分野: {'、'.join(rendered)}")
    return "\n".join(lines)


def _select_examples(profile: CharacterProfile, user_input: str) -> List[str]:
    ending = profile.speech_style.sentence_endings[0]
    name = profile.name
    lowered = user_input.lower()

    examples = [_exchange(name, "こんにちは", f"こんにちは{ending}")]

    strength = next(
        (s for s in profile.abilities.strengths if s.area and s.area.lower() in lowered),
        None,
    )
    if strength is not None:
        examples.append(_exchange(name, f"{strength.area}について教えて", f"{strength.area}なら任せて{ending}"))

    weakness = next(
        (w for w in profile.abilities.weaknesses if w.area and w.area.lower() in lowered),
        None,
    )
    if weakness is not None:
        if weakness.reaction:
            reply = weakness.reaction
        elif weakness.avoidance:
            reply = "その話はまた今度"
        else:
            reply = f"{weakness.area}はちょっと苦手"
        examples.append(_exchange(name, f"{weakness.area}はどう？", f"{reply}{ending}"))

    role_example = ROLE_EXAMPLES.get(profile.role)
    if role_example is not None:
        prompt, reply = role_example
        examples.append(_exchange(name, prompt, f"{reply}{ending}"))

    for utterance in profile.speech_style.examples:
        examples.append(_exchange(name, AUTHORED_EXAMPLE_PROMPT, utterance))

    return examples[: limits_for(profile.model_tier).few_shot_examples]


def _exchange(name: str, prompt: str, reply: str) -> str:
    return f"{USER_LABEL}: {prompt}\n{name}: {reply}"


def _render_transcript(profile: CharacterProfile, turns: Sequence[ConversationTurn]) -> str:
    if not turns:
        return EMPTY_HISTORY
    return "\n".join(
        f"{USER_LABEL}: {turn.content}" if turn.role == "user" else f"{profile.name}: {turn.content}"
        for turn in turns
    )


def _constraint_block(profile: CharacterProfile) -> str:
    limits = limits_for(profile.model_tier)
    low, high = limits.target_length
    ending = profile.speech_style.sentence_endings[0]
    delimiters = "、".join(STOP_SEQUENCES)
    return "\n".join(
        [
            RULES_HEADING,
            f"- 必ず{low}-{high}文字で返答する",
            f"- {profile.name}の性格を一貫して保つ",
            f"- 語尾「{ending}」を忘れずに",
            "- 自然な日本語で答える",
            f"- {delimiters}などのタグは出力しない",
            f"上記の設定に従って、{low}-{high}文字で{profile.name}として返答してください。",
        ]
    )


def history_from_payload(raw: Optional[Sequence[object]]) -> List[ConversationTurn]:
    """Convert a JSON history list into :class:`ConversationTurn` objects.

    Entries that are not objects or carry no text are skipped; roles other
    than ``"user"`` are treated as the character speaking.
    """

    turns: List[ConversationTurn] = []
    for entry in raw or []:
        if not isinstance(entry, dict):
            continue
        content = entry.get("content")
        if not isinstance(content, str) or not content.strip():
            continue
        role = "user" if entry.get("role") == "user" else "character"
        turns.append(ConversationTurn(role=role, content=content.strip()))
    return turns
