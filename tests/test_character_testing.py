import sys
from itertools import count
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from character_builder.profiles import (
    Abilities,
    CharacterProfile,
    Personality,
    SpeechStyle,
    Strength,
    Weakness,
)
from character_builder.services.character_testing import (
    TestScenario,
    build_test_scenarios,
    run_batch_test,
    run_chat_turn,
)
from character_builder.services.prompt_composer import ConversationTurn
from ollama_client import GenerationError, GenerationResult


def _profile(role="boke", tier="small"):
    return CharacterProfile(
        id="yuki",
        name="Yuki",
        role=role,
        model_tier=tier,
        personality=Personality(core="明るくて天然"),
        speech_style=SpeechStyle(sentence_endings=["だよ"], first_person="僕"),
        abilities=Abilities(
            strengths=[Strength(area="料理", confidence=0.8), Strength(area="ゲーム", confidence=0.6)],
            weaknesses=[Weakness(area="数学"), Weakness(area="早起き")],
        ),
        model="gemma3:4b",
    )


class DummyClient:
    def __init__(self, reply="こんにちは、僕はYukiだよ。今日も一緒に楽しくお話ししようね！", fail_on=()):
        self.reply = reply
        self.fail_on = set(fail_on)
        self.calls = []

    def generate(self, model, prompt, options=None):
        self.calls.append((model, prompt, options))
        if any(f"ユーザーの発言: {text}\n" in prompt for text in self.fail_on):
            raise GenerationError("Ollama generation failed with status 500.", status_code=500, detail="boom")
        return GenerationResult(text=f"  {self.reply}\n", token_count=24, eval_duration_ms=300.0, load_duration_ms=5.0)


def _fake_clock(step=0.25):
    ticks = count()
    return lambda: next(ticks) * step


def test_small_tier_scenarios_use_clamped_abilities():
    scenarios = {scenario.tag: scenario for scenario in build_test_scenarios(_profile())}

    assert list(scenarios) == ["greeting", "strength", "weakness", "role", "emotion", "stress"]
    assert scenarios["strength"].inputs == ["料理について教えて"]
    assert scenarios["weakness"].inputs == ["数学はどう？"]
    assert scenarios["role"].inputs[0] == "何か面白いこと言って"
    assert "" in scenarios["stress"].inputs


def test_large_tier_scenarios_cover_two_strengths():
    scenarios = {scenario.tag: scenario for scenario in build_test_scenarios(_profile("tsukkomi", "large"))}

    assert scenarios["strength"].inputs == ["料理について教えて", "ゲームについて教えて"]
    assert scenarios["role"].inputs == ["それはおかしいよ", "ツッコンで", "どう思う？"]


def test_profile_without_abilities_skips_empty_groups():
    profile = _profile()
    profile.abilities = Abilities()

    tags = [scenario.tag for scenario in build_test_scenarios(profile)]

    assert "strength" not in tags
    assert "weakness" not in tags


def test_batch_runs_sequentially_with_delay_between_calls():
    client = DummyClient()
    sleeps = []
    progress = []

    result = run_batch_test(
        _profile(),
        client,
        delay_seconds=0.5,
        sleep=sleeps.append,
        clock=_fake_clock(),
        on_progress=lambda done, total, tag, text: progress.append((done, total, tag)),
    )

    total = sum(len(scenario.inputs) for scenario in build_test_scenarios(_profile()))
    assert len(client.calls) == total
    assert sleeps == [0.5] * (total - 1)
    assert [done for done, _, _ in progress] == list(range(1, total + 1))
    assert all(model == "gemma3:4b" for model, _, _ in client.calls)
    assert all(options.num_predict == 100 for _, _, options in client.calls)
    assert result.report.count == total
    assert result.records[0].latency_ms == pytest.approx(250.0)
    assert result.records[0].output == client.reply


def test_generation_failure_records_zero_score_and_continues():
    client = DummyClient(fail_on=["料理について教えて"])
    scenarios = [
        TestScenario("strength", "得意分野", ["料理について教えて"]),
        TestScenario("greeting", "基本応答", ["こんにちは"]),
    ]

    result = run_batch_test(_profile(), client, scenarios=scenarios, delay_seconds=0, clock=_fake_clock())

    assert len(result.records) == 2
    failed, succeeded = result.records
    assert failed.overall == 0.0
    assert failed.issues == ["generation error"]
    assert failed.output.startswith("Error:")
    assert succeeded.overall > 0
    assert result.report.top_issues[0] == ("generation error", 1)


def test_chat_turn_uses_single_prompt_without_history():
    client = DummyClient()

    result = run_chat_turn(_profile(), client, [], "こんにちは", clock=_fake_clock())

    assert "【発話例】" in result.prompt
    assert result.reply == client.reply
    assert result.record.scenario == "chat"
    assert result.history == [ConversationTurn("user", "こんにちは"), ConversationTurn("character", client.reply)]


def test_chat_turn_uses_conversation_with_history():
    client = DummyClient()
    history = [ConversationTurn("user", "やあ"), ConversationTurn("character", "やっほーだよ")]

    result = run_chat_turn(_profile(), client, history, "元気？", clock=_fake_clock())

    assert "【これまでの会話】\nユーザー: やあ\nYuki: やっほーだよ" in result.prompt
    assert len(result.history) == 4


def test_chat_turn_propagates_generation_errors():
    client = DummyClient(fail_on=["こんにちは"])

    with pytest.raises(GenerationError):
        run_chat_turn(_profile(), client, [], "こんにちは")
