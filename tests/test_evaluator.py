import json
import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from character_builder.profiles import CharacterProfile, Personality, SpeechStyle
from character_builder.services.evaluator import (
    EvaluationRecord,
    EvaluationVocabulary,
    MarkerRule,
    evaluate,
    load_vocabulary,
    summarize_results,
)


def _yuki(role="boke", tier="small"):
    return CharacterProfile(
        id="yuki",
        name="Yuki",
        role=role,
        model_tier=tier,
        personality=Personality(core="明るくて天然"),
        speech_style=SpeechStyle(sentence_endings=["だよ"], first_person="僕"),
    )


def _score(output, scenario="emotion", input_text="今日は疲れた", profile=None, **kwargs):
    return evaluate(profile or _yuki(), scenario, input_text, output, 1000.0, 20, **kwargs)


@pytest.mark.parametrize("length,expected", [(40, 1.0), (30, 1.0), (50, 1.0), (25, 0.7), (70, 0.7), (10, 0.3), (71, 0.3)])
def test_length_compliance_windows(length, expected):
    record = _score("あ" * length)

    assert record.length_compliance == expected
    assert any(issue.startswith("length out of range") for issue in record.issues) == (expected == 0.3)


def test_length_issue_reports_observed_length():
    record = _score("あ" * 10)

    assert "length out of range: 10 chars" in record.issues


def test_primary_ending_alone_earns_style_credit():
    record = _score("だよ、俺はね、ここに居る俺")

    assert record.style_accuracy >= 0.4
    assert "ending mismatch" not in record.issues
    assert "first-person mismatch" in record.issues
    assert "incomplete sentence" in record.issues


def test_any_configured_ending_earns_credit_on_small_tier():
    profile = _yuki()
    profile.speech_style.sentence_endings = ["だよ", "だね"]

    record = _score("今日は本当に疲れたんだね", profile=profile)

    assert record.style_accuracy == 1.0
    assert "ending mismatch" not in record.issues


def test_blank_endings_fall_back_to_default_for_scoring():
    profile = _yuki()
    profile.speech_style.sentence_endings = ["", " "]

    record = _score("今日は楽しかったよ、また遊ぼうだよ", profile=profile)

    assert "ending mismatch" not in record.issues


def test_missing_ending_is_reported():
    record = _score("今日はとても楽しかった。")

    assert record.style_accuracy == 0.6
    assert record.issues.count("ending mismatch") == 1


def test_greeting_end_to_end_scores():
    record = evaluate(_yuki(), "greeting", "こんにちは", "こんにちは、僕はYukiだよ", 850.0, 12)

    assert len(record.output) == 14
    assert record.length_compliance == 0.3
    assert record.style_accuracy == 1.0
    assert record.character_consistency == 0.5
    assert record.response_quality == pytest.approx(1.0)
    assert record.overall == pytest.approx((0.3 + 1.0 + 0.5 + 1.0) / 4)
    assert record.issues == ["length out of range: 14 chars"]


def test_strength_markers_raise_consistency_to_cap():
    record = _score("料理なら任せて！いつでも作ってあげるよ", scenario="strength", input_text="料理について教えて")

    assert record.character_consistency == pytest.approx(1.0)


def test_weakness_hedging_markers():
    record = _score("うーん、数学はちょっと苦手だよ", scenario="weakness")

    assert record.character_consistency == pytest.approx(1.0)


@pytest.mark.parametrize(
    "role,output,expected",
    [
        ("boke", "え？そうなの？知らなかったよ", 0.8),
        ("boke", "そりゃそうでしょ", 0.5),
        ("tsukkomi", "そりゃそうでしょ", 0.8),
    ],
)
def test_role_markers_follow_profile_role(role, output, expected):
    record = _score(output, scenario="role", profile=_yuki(role=role))

    assert record.character_consistency == pytest.approx(expected)


def test_leaked_delimiters_lose_quality_bonus():
    record = _score("<end_of_turn>元気だよ")

    assert record.response_quality == 0.5
    assert "delimiter leakage" in record.issues


def test_injected_vocabulary_replaces_markers():
    vocabulary = EvaluationVocabulary(scenario_markers={"strength": [MarkerRule(["ばっちり"], 0.4)]})

    default = _score("任せてよ", scenario="strength")
    custom = _score("ばっちりだよ", scenario="strength", vocabulary=vocabulary)

    assert default.character_consistency == pytest.approx(0.8)
    assert custom.character_consistency == pytest.approx(0.9)


def test_failed_record_has_zero_scores():
    record = EvaluationRecord.failed("greeting", "こんにちは", "connection refused")

    assert record.overall == 0.0
    assert record.output == "Error: connection refused"
    assert record.issues == ["generation error"]


def test_summary_averages_and_top_issues():
    records = [
        evaluate(_yuki(), "emotion", "a", "あ" * 10, 100.0, 10),
        evaluate(_yuki(), "emotion", "b", "あ" * 40 + "だよ", 250.0, 50),
        evaluate(_yuki(), "emotion", "c", "<x>", 400.0, 20),
        EvaluationRecord.failed("stress", "", "boom"),
    ]

    report = summarize_results(records)

    assert report.count == 4
    assert report.average_latency_ms == sum(r.latency_ms for r in records) / 4
    assert report.average_tokens_per_second == pytest.approx((100 + 200 + 50) / 3)
    assert report.overall == pytest.approx(sum(r.overall for r in records) / 4)
    assert report.top_issues[0] == ("ending mismatch", 2)
    assert len(report.top_issues) <= 5
    counts = [count for _, count in report.top_issues]
    assert counts == sorted(counts, reverse=True)


@pytest.mark.parametrize("latencies", [[120.0], [1.0, 2.0], [333.0, 333.0, 334.0, 1000.0, 5.5]])
def test_average_latency_is_exact_mean(latencies):
    records = [evaluate(_yuki(), "chat", "x", "こんにちはだよ", latency, 5) for latency in latencies]

    assert summarize_results(records).average_latency_ms == sum(latencies) / len(latencies)


def test_empty_summary():
    report = summarize_results([])

    assert report.count == 0
    assert report.top_issues == []


def test_load_vocabulary_overrides_selected_keys(tmp_path):
    path = tmp_path / "vocabulary.json"
    path.write_text(
        json.dumps(
            {
                "competing_first_person": ["あたし"],
                "scenario_markers": {"tsukkomi": [{"markers": ["なんでやねん"], "bonus": 0.5}]},
                "clean_bonus": 0.1,
            },
            ensure_ascii=False,
        ),
        encoding="utf-8",
    )

    vocabulary = load_vocabulary(str(path))

    assert vocabulary.competing_first_person == ["あたし"]
    assert vocabulary.scenario_markers["tsukkomi"][0].bonus == 0.5
    assert "strength" in vocabulary.scenario_markers
    assert vocabulary.clean_bonus == 0.1


def test_load_vocabulary_rejects_bad_shapes(tmp_path):
    path = tmp_path / "vocabulary.json"
    path.write_text(json.dumps({"terminals": "。"}), encoding="utf-8")

    with pytest.raises(ValueError):
        load_vocabulary(str(path))


def test_overall_is_unrounded_mean_of_axes():
    vocabulary = EvaluationVocabulary(scenario_markers={"emotion": [MarkerRule(["嬉しい"], 0.12345)]})

    record = _score("嬉しいことがあったんだよ。", vocabulary=vocabulary)

    axes = (
        record.character_consistency,
        record.length_compliance,
        record.style_accuracy,
        record.response_quality,
    )
    assert record.character_consistency == 0.5 + 0.12345
    assert record.overall == sum(axes) / 4
