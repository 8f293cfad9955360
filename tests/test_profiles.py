import sys
from pathlib import Path

import pytest

sys.path.append(str(Path(__file__).resolve().parents[1]))

from character_builder.profiles import (
    DEFAULT_FIRST_PERSON,
    DEFAULT_SENTENCE_ENDING,
    ProfileValidationError,
    normalize_tier,
    profile_from_dict,
    profile_to_dict,
)


def _payload(**overrides):
    data = {
        "name": "Yuki",
        "role": "boke",
        "model_tier": "small",
        "personality": {"core": "明るくて天然", "traits": ["好奇心旺盛", "おっちょこちょい"]},
    }
    data.update(overrides)
    return data


def test_minimal_payload_gets_defaults():
    profile = profile_from_dict(_payload())

    assert profile.id
    assert profile.speech_style.sentence_endings == [DEFAULT_SENTENCE_ENDING]
    assert profile.speech_style.first_person == DEFAULT_FIRST_PERSON
    assert profile.speech_style.tone == "casual"
    assert profile.relationship_to_caller.closeness == "friend"
    assert profile.model == "gemma3:4b"
    assert profile.sampling_config.max_tokens == 100
    assert profile.sampling_config.context_window == 8192
    assert profile.sampling_config.repeat_penalty == 1.0


def test_large_tier_defaults_and_legacy_alias():
    profile = profile_from_dict(_payload(model_tier="12b"))

    assert profile.model_tier == "large"
    assert profile.model == "gemma3:12b"
    assert profile.sampling_config.max_tokens == 150
    assert profile.sampling_config.context_window == 16384


def test_camel_case_payload_is_accepted():
    profile = profile_from_dict(
        {
            "name": "Aoi",
            "role": "tsukkomi",
            "modelSize": "4b",
            "personality": {"core": "しっかり者"},
            "speechStyle": {"sentenceEndings": ["でしょ", "じゃん"], "firstPerson": "私"},
            "abilities": {
                "strengths": [{"area": "料理", "specificSkills": ["和食"], "confidence": 0.9}],
                "weaknesses": [{"area": "運動", "reaction": "えー無理"}],
            },
            "relationships": {"withOtherCharacter": {"characterName": "Yuki", "dynamic": "ツッコミ"}},
            "ollamaConfig": {"num_predict": 80, "temperature": 0.7},
        }
    )

    assert profile.model_tier == "small"
    assert profile.speech_style.sentence_endings == ["でしょ", "じゃん"]
    assert profile.speech_style.first_person == "私"
    assert profile.abilities.strengths[0].specific_skills == ["和食"]
    assert profile.abilities.weaknesses[0].reaction == "えー無理"
    assert profile.relationship_to_other.character_name == "Yuki"
    assert profile.sampling_config.max_tokens == 80
    assert profile.sampling_config.temperature == 0.7
    assert profile.sampling_config.top_k == 64


@pytest.mark.parametrize(
    "overrides",
    [
        {"name": "  "},
        {"personality": {"core": ""}},
        {"role": "straight-man"},
        {"model_tier": "medium"},
        {"speech_style": {"tone": "rude"}},
        {"abilities": {"strengths": [{"area": "歌", "confidence": 1.5}]}},
    ],
)
def test_invalid_payloads_raise(overrides):
    with pytest.raises(ProfileValidationError):
        profile_from_dict(_payload(**overrides))


def test_blank_ability_areas_are_skipped():
    profile = profile_from_dict(
        _payload(abilities={"strengths": [{"area": ""}, {"area": "ゲーム"}], "weaknesses": [{"area": " "}]})
    )

    assert [strength.area for strength in profile.abilities.strengths] == ["ゲーム"]
    assert profile.abilities.weaknesses == []


def test_serialised_profile_parses_back():
    profile = profile_from_dict(_payload(id="abc123"))

    assert profile_from_dict(profile_to_dict(profile)) == profile


def test_normalize_tier():
    assert normalize_tier(" Small ") == "small"
    assert normalize_tier("4b") == "small"
    with pytest.raises(ProfileValidationError):
        normalize_tier(None)
