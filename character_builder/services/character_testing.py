from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from flask import current_app

from ollama_client import GenerationError, GenerationResult

from ..profiles import CharacterProfile
from .evaluator import (
    BatchReport,
    EvaluationRecord,
    EvaluationVocabulary,
    evaluate,
    load_vocabulary,
    summarize_results,
)
from .prompt_composer import (
    ConversationTurn,
    render_conversational_prompt,
    render_single_prompt,
)
from .tier_policy import clamp_for_tier, model_name_for, sampling_options_for


LOGGER = logging.getLogger(__name__)

DEFAULT_BATCH_DELAY_SECONDS = 0.5

_CLIENT_CACHE_KEY = "_GENERATION_CLIENT_INSTANCE"
_VOCABULARY_CACHE_KEY = "_EVALUATION_VOCABULARY_INSTANCE"

GREETING_INPUTS = ["こんにちは", "はじめまして", "お疲れさま", "おはよう"]
ROLE_INPUTS = {
    "boke": ["何か面白いこと言って", "ボケて", "変なこと考えて"],
    "tsukkomi": ["それはおかしいよ", "ツッコンで", "どう思う？"],
}
EMOTION_INPUTS = ["嬉しいことがあったよ", "今日は疲れた", "困ったことが起きた", "イライラする"]
STRESS_INPUTS = [
    "とても長い文章を入力してキャラクターがどのように反応するかをテストしています。この文章は意図的に長くしています。",
    "？？？",
    "意味不明な入力テストですabcdefg123456",
    "",
]


@dataclass
class TestScenario:
    __test__ = False

    tag: str
    label: str
    inputs: List[str]


@dataclass
class BatchTestResult:
    records: List[EvaluationRecord]
    report: BatchReport


@dataclass
class ChatTurnResult:
    reply: str
    prompt: str
    record: EvaluationRecord
    generation: GenerationResult
    history: List[ConversationTurn] = field(default_factory=list)


ProgressCallback = Callable[[int, int, str, str], None]


def build_test_scenarios(profile: CharacterProfile) -> List[TestScenario]:
    """Return the standard test scenarios for ``profile``.

    Strength and weakness inputs come from the tier-clamped profile, so a
    small-tier character is only tested on what its prompt actually mentions.
    Empty groups are left out.
    """

    clamped = clamp_for_tier(profile)
    scenarios = [
        TestScenario("greeting", "基本応答", list(GREETING_INPUTS)),
        TestScenario(
            "strength",
            "得意分野",
            [f"{strength.area}について教えて" for strength in clamped.abilities.strengths[:2] if strength.area],
        ),
        TestScenario(
            "weakness",
            "苦手分野",
            [f"{weakness.area}はどう？" for weakness in clamped.abilities.weaknesses[:2] if weakness.area],
        ),
        TestScenario("role", "ボケ" if clamped.role == "boke" else "ツッコミ", list(ROLE_INPUTS.get(clamped.role, []))),
        TestScenario("emotion", "感情表現", list(EMOTION_INPUTS)),
        TestScenario("stress", "ストレステスト", list(STRESS_INPUTS)),
    ]
    return [scenario for scenario in scenarios if scenario.inputs]


def run_batch_test(
    profile: CharacterProfile,
    client: Any,
    *,
    scenarios: Optional[Sequence[TestScenario]] = None,
    vocabulary: Optional[EvaluationVocabulary] = None,
    delay_seconds: float = DEFAULT_BATCH_DELAY_SECONDS,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.perf_counter,
    on_progress: Optional[ProgressCallback] = None,
) -> BatchTestResult:
    """Run every scenario input through the model one call at a time.

    A failed generation is recorded as a zero-score record and the batch moves
    on to the next input.  ``delay_seconds`` is slept between calls.
    """

    plan = list(scenarios) if scenarios is not None else build_test_scenarios(profile)
    pending = [(scenario.tag, text) for scenario in plan for text in scenario.inputs]
    options = sampling_options_for(profile)
    records: List[EvaluationRecord] = []

    for index, (tag, text) in enumerate(pending):
        if index and delay_seconds > 0:
            sleep(delay_seconds)

        prompt = render_single_prompt(profile, text)
        started = clock()
        try:
            result = client.generate(model_name_for(profile), prompt, options)
        except GenerationError as exc:
            LOGGER.warning("Generation failed for %s input %r: %s", tag, text, exc)
            records.append(EvaluationRecord.failed(tag, text, exc))
        else:
            latency_ms = (clock() - started) * 1000
            records.append(
                evaluate(profile, tag, text, result.text.strip(), latency_ms, result.token_count, vocabulary)
            )

        if on_progress is not None:
            on_progress(index + 1, len(pending), tag, text)

    return BatchTestResult(records=records, report=summarize_results(records))


def run_chat_turn(
    profile: CharacterProfile,
    client: Any,
    history: Sequence[ConversationTurn],
    user_input: str,
    *,
    vocabulary: Optional[EvaluationVocabulary] = None,
    clock: Callable[[], float] = time.perf_counter,
) -> ChatTurnResult:
    """Send one interactive message and score the reply.

    :class:`GenerationError` propagates to the caller.
    """

    prompt = build_chat_prompt(profile, history, user_input)
    started = clock()
    result = client.generate(model_name_for(profile), prompt, sampling_options_for(profile))
    latency_ms = (clock() - started) * 1000
    reply = result.text.strip()

    record = evaluate(profile, "chat", user_input, reply, latency_ms, result.token_count, vocabulary)
    updated = list(history) + [
        ConversationTurn(role="user", content=user_input),
        ConversationTurn(role="character", content=reply),
    ]
    return ChatTurnResult(reply=reply, prompt=prompt, record=record, generation=result, history=updated)


def build_chat_prompt(profile: CharacterProfile, history: Sequence[ConversationTurn], user_input: str) -> str:
    if history:
        return render_conversational_prompt(profile, history, user_input)
    return render_single_prompt(profile, user_input)


def run_batch_test_for_app(profile: CharacterProfile) -> BatchTestResult:
    """Batch-test ``profile`` with the application's client and settings."""

    app = current_app
    delay = float(app.config.get("BATCH_TEST_DELAY_SECONDS", DEFAULT_BATCH_DELAY_SECONDS))
    app.logger.info("Starting batch test for character %s (%s)", profile.id, model_name_for(profile))

    def _progress(done: int, total: int, tag: str, text: str) -> None:
        app.logger.debug("Batch test %s: %d/%d [%s] %r", profile.id, done, total, tag, text)

    result = run_batch_test(
        profile,
        get_generation_client(),
        vocabulary=_get_vocabulary(),
        delay_seconds=delay,
        on_progress=_progress,
    )
    app.logger.info(
        "Batch test for %s finished: %d records, overall %.2f",
        profile.id,
        result.report.count,
        result.report.overall,
    )
    return result


def run_chat_turn_for_app(
    profile: CharacterProfile,
    history: Sequence[ConversationTurn],
    user_input: str,
) -> ChatTurnResult:
    return run_chat_turn(profile, get_generation_client(), history, user_input, vocabulary=_get_vocabulary())


def serialize_batch_result(result: BatchTestResult) -> Dict[str, Any]:
    return {
        "records": [record.to_dict() for record in result.records],
        "report": result.report.to_dict(),
    }


def get_generation_client() -> Any:
    """Return the application's generation client, creating it on first use."""

    app = current_app
    if _CLIENT_CACHE_KEY in app.config:
        return app.config[_CLIENT_CACHE_KEY]

    from ollama_client import OllamaClient

    base_url = app.config.get("OLLAMA_BASE_URL")
    timeout = app.config.get("OLLAMA_TIMEOUT_SECONDS")
    app.logger.info("Initialising Ollama client for %s", base_url)
    client = OllamaClient(base_url, timeout_s=timeout)
    app.config[_CLIENT_CACHE_KEY] = client
    return client


def _get_vocabulary() -> EvaluationVocabulary:
    app = current_app
    cached = app.config.get(_VOCABULARY_CACHE_KEY)
    if isinstance(cached, EvaluationVocabulary):
        return cached

    path = app.config.get("EVALUATION_VOCABULARY_PATH")
    try:
        vocabulary = load_vocabulary(path)
    except (OSError, ValueError) as exc:
        app.logger.warning("Failed to load evaluation vocabulary from '%s': %s", path, exc)
        vocabulary = EvaluationVocabulary()
    app.config[_VOCABULARY_CACHE_KEY] = vocabulary
    return vocabulary
