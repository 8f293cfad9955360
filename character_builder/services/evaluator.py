"""Heuristic scoring of generated replies.

Each reply is scored on four axes in ``[0, 1]``:

``length_compliance``
    1.0 inside the tier's target window, 0.7 inside the tolerance window,
    0.3 otherwise.
``style_accuracy``
    0.4 for a configured sentence ending, 0.3 for first-person consistency
    and 0.3 for an acceptable sentence terminal.
``character_consistency``
    0.5 plus scenario-specific marker bonuses.
``response_quality``
    0.5 plus bonuses for a fitting greeting reply and for the absence of
    leaked delimiters.

The marker words are data, held in :class:`EvaluationVocabulary`, so they can
be replaced from a JSON file or by tests.
"""

from __future__ import annotations

import json
import logging
from collections import Counter
from dataclasses import asdict, dataclass, field
from pathlib import Path
from statistics import fmean
from typing import Dict, Iterable, List, Mapping, Optional, Sequence, Tuple

from ..profiles import DEFAULT_SENTENCE_ENDING, CharacterProfile
from .tier_policy import clamp_for_tier, limits_for


LOGGER = logging.getLogger(__name__)

SCENARIO_TAGS = ("greeting", "strength", "weakness", "role", "emotion", "stress", "chat")

ISSUE_ENDING = "ending mismatch"
ISSUE_FIRST_PERSON = "first-person mismatch"
ISSUE_INCOMPLETE = "incomplete sentence"
ISSUE_LEAKAGE = "delimiter leakage"
ISSUE_GENERATION = "generation error"

TOP_ISSUES = 5


@dataclass
class MarkerRule:
    """Adds ``bonus`` when any of ``markers`` occurs in the reply."""

    markers: List[str]
    bonus: float


@dataclass
class EvaluationVocabulary:
    competing_first_person: List[str] = field(default_factory=lambda: ["私", "僕", "俺", "わたし"])
    terminals: List[str] = field(default_factory=lambda: ["。", "！", "？", "!", "?", "だ", "よ", "ね", "ー", "～", "〜"])
    # Keyed by scenario tag; role scenarios are keyed by the profile's role.
    scenario_markers: Dict[str, List[MarkerRule]] = field(
        default_factory=lambda: {
            "strength": [
                MarkerRule(["任せて", "得意", "上手", "好き", "大丈夫"], 0.3),
                MarkerRule(["！", "〜", "♪"], 0.2),
            ],
            "weakness": [
                MarkerRule(["苦手", "わからない", "ちょっと", "難しい"], 0.3),
                MarkerRule(["...", "うーん", "えーっと"], 0.2),
            ],
            "boke": [MarkerRule(["え？", "そうなの？", "なんで？", "へー"], 0.3)],
            "tsukkomi": [MarkerRule(["でしょ", "そうそう", "当然", "そりゃ"], 0.3)],
        }
    )
    greeting_inputs: List[str] = field(default_factory=lambda: ["こんにちは"])
    greeting_replies: List[str] = field(default_factory=lambda: ["こんにちは", "はい", "どうも"])
    greeting_bonus: float = 0.3
    leak_markers: List[str] = field(default_factory=lambda: ["<", ">", "[", "]", "{", "}", "AI"])
    clean_bonus: float = 0.2


DEFAULT_VOCABULARY = EvaluationVocabulary()


@dataclass
class EvaluationRecord:
    scenario: str
    input: str
    output: str
    latency_ms: float
    token_count: int
    character_consistency: float
    length_compliance: float
    style_accuracy: float
    response_quality: float
    overall: float
    issues: List[str] = field(default_factory=list)

    @classmethod
    def failed(cls, scenario: str, input_text: str, error: object) -> "EvaluationRecord":
        """Zero-score record for an exchange whose generation call failed."""

        return cls(
            scenario=scenario,
            input=input_text,
            output=f"Error: {error}",
            latency_ms=0.0,
            token_count=0,
            character_consistency=0.0,
            length_compliance=0.0,
            style_accuracy=0.0,
            response_quality=0.0,
            overall=0.0,
            issues=[ISSUE_GENERATION],
        )

    def to_dict(self) -> Dict[str, object]:
        return asdict(self)


@dataclass
class BatchReport:
    count: int
    character_consistency: float
    length_compliance: float
    style_accuracy: float
    response_quality: float
    overall: float
    average_latency_ms: float
    average_tokens_per_second: float
    top_issues: List[Tuple[str, int]] = field(default_factory=list)

    def to_dict(self) -> Dict[str, object]:
        data = asdict(self)
        data["top_issues"] = [{"issue": issue, "count": count} for issue, count in self.top_issues]
        return data


def evaluate(
    profile: CharacterProfile,
    scenario_tag: str,
    input_text: str,
    output_text: str,
    latency_ms: float,
    token_count: int,
    vocabulary: Optional[EvaluationVocabulary] = None,
) -> EvaluationRecord:
    """Score one reply produced for ``input_text`` under ``scenario_tag``."""

    vocab = vocabulary or DEFAULT_VOCABULARY
    clamped = clamp_for_tier(profile)
    output = output_text or ""
    issues: List[str] = []

    length = _score_length(clamped, output, issues)
    style = _score_style(profile, output, vocab, issues)
    consistency = _score_consistency(clamped, scenario_tag, output, vocab)
    quality = _score_quality(input_text or "", output, vocab, issues)

    return EvaluationRecord(
        scenario=scenario_tag,
        input=input_text or "",
        output=output,
        latency_ms=float(latency_ms),
        token_count=int(token_count),
        character_consistency=consistency,
        length_compliance=length,
        style_accuracy=style,
        response_quality=quality,
        overall=(consistency + length + style + quality) / 4,
        issues=issues,
    )


def summarize_results(records: Sequence[EvaluationRecord]) -> BatchReport:
    """Aggregate a batch of records into per-axis means and issue counts."""

    if not records:
        return BatchReport(
            count=0,
            character_consistency=0.0,
            length_compliance=0.0,
            style_accuracy=0.0,
            response_quality=0.0,
            overall=0.0,
            average_latency_ms=0.0,
            average_tokens_per_second=0.0,
        )

    throughputs = [
        record.token_count / (record.latency_ms / 1000) for record in records if record.latency_ms > 0
    ]
    # Counter keeps insertion order for equal counts.
    issue_counts = Counter(issue for record in records for issue in record.issues)

    return BatchReport(
        count=len(records),
        character_consistency=fmean(record.character_consistency for record in records),
        length_compliance=fmean(record.length_compliance for record in records),
        style_accuracy=fmean(record.style_accuracy for record in records),
        response_quality=fmean(record.response_quality for record in records),
        overall=fmean(record.overall for record in records),
        average_latency_ms=fmean(record.latency_ms for record in records),
        average_tokens_per_second=fmean(throughputs) if throughputs else 0.0,
        top_issues=issue_counts.most_common(TOP_ISSUES),
    )


def load_vocabulary(path: Optional[str]) -> EvaluationVocabulary:
    """Read a vocabulary override from a JSON file.

    Keys that are absent keep their default values.  ``scenario_markers``
    maps a scenario tag to a list of ``{"markers": [...], "bonus": 0.3}``
    objects and replaces the default rules for the tags it names.
    """

    if not path:
        return EvaluationVocabulary()

    config_path = Path(path)
    with config_path.open("r", encoding="utf-8") as handle:
        data = json.load(handle)
    if not isinstance(data, dict):
        raise ValueError(f"Evaluation vocabulary in {config_path} must be a JSON object.")

    vocabulary = EvaluationVocabulary()
    for key in ("competing_first_person", "terminals", "greeting_inputs", "greeting_replies", "leak_markers"):
        if key in data:
            setattr(vocabulary, key, _string_list(data[key], key))
    for key in ("greeting_bonus", "clean_bonus"):
        if key in data:
            setattr(vocabulary, key, float(data[key]))

    markers = data.get("scenario_markers")
    if isinstance(markers, Mapping):
        for tag, rules in markers.items():
            vocabulary.scenario_markers[str(tag)] = [
                MarkerRule(_string_list(rule.get("markers"), f"scenario_markers.{tag}"), float(rule.get("bonus", 0)))
                for rule in rules or []
                if isinstance(rule, Mapping)
            ]

    LOGGER.info("Loaded evaluation vocabulary from %s", config_path)
    return vocabulary


def _score_length(profile: CharacterProfile, output: str, issues: List[str]) -> float:
    limits = limits_for(profile.model_tier)
    length = len(output)
    low, high = limits.target_length
    if low <= length <= high:
        return 1.0
    low, high = limits.tolerated_length
    if low <= length <= high:
        return 0.7
    issues.append(f"length out of range: {length} chars")
    return 0.3


def _score_style(
    profile: CharacterProfile,
    output: str,
    vocab: EvaluationVocabulary,
    issues: List[str],
) -> float:
    # Credits are counted in tenths so the sum stays exact.
    speech = profile.speech_style
    endings = [ending.strip() for ending in speech.sentence_endings if ending and ending.strip()]
    endings = endings or [DEFAULT_SENTENCE_ENDING]
    tenths = 0

    if any(ending in output for ending in endings):
        tenths += 4
    else:
        issues.append(ISSUE_ENDING)

    first_person = speech.first_person
    if (first_person and first_person in output) or not _contains_any(output, vocab.competing_first_person):
        tenths += 3
    else:
        issues.append(ISSUE_FIRST_PERSON)

    if output.rstrip().endswith(tuple(vocab.terminals)):
        tenths += 3
    else:
        issues.append(ISSUE_INCOMPLETE)

    return tenths / 10


def _score_consistency(
    profile: CharacterProfile,
    scenario_tag: str,
    output: str,
    vocab: EvaluationVocabulary,
) -> float:
    key = profile.role if scenario_tag == "role" else scenario_tag
    score = 0.5
    for rule in vocab.scenario_markers.get(key, []):
        if _contains_any(output, rule.markers):
            score += rule.bonus
    return min(score, 1.0)


def _score_quality(
    input_text: str,
    output: str,
    vocab: EvaluationVocabulary,
    issues: List[str],
) -> float:
    score = 0.5
    if _contains_any(input_text, vocab.greeting_inputs) and _contains_any(output, vocab.greeting_replies):
        score += vocab.greeting_bonus
    if _contains_any(output, vocab.leak_markers):
        issues.append(ISSUE_LEAKAGE)
    else:
        score += vocab.clean_bonus
    return min(score, 1.0)


def _contains_any(text: str, needles: Iterable[str]) -> bool:
    return any(needle and needle in text for needle in needles)


def _string_list(value: object, key: str) -> List[str]:
    if not isinstance(value, list) or not all(isinstance(item, str) for item in value):
        raise ValueError(f"'{key}' must be a list of strings.")
    return list(value)
