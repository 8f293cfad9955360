"""Character profile data model.

Profiles are plain dataclasses so the prompt composer and evaluator can treat
them as read-only values.  :func:`profile_from_dict` is the single entry point
for untrusted payloads (forms, the JSON API, stored rows); it fills optional
fields with defaults and only fails on malformed or missing identity data.
"""

from __future__ import annotations

import uuid
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence


ROLES = ("boke", "tsukkomi")
MODEL_TIERS = ("small", "large")
TONES = ("casual", "polite", "friendly")
EXPERIENCE_CATEGORIES = ("positive", "negative", "neutral")
PROFICIENCY_LEVELS = ("expert", "good", "learning")
SEVERITIES = ("mild", "moderate", "severe")
ENTHUSIASM_LEVELS = ("low", "medium", "high")
KNOWLEDGE_LEVELS = ("beginner", "intermediate", "expert")
CLOSENESS_LEVELS = ("stranger", "acquaintance", "friend", "close")
RELATIONSHIP_TONES = ("formal", "casual", "friendly")

# Model sizes used by earlier exports map onto the two tiers.
TIER_ALIASES = {"4b": "small", "12b": "large"}

DEFAULT_SENTENCE_ENDING = "だよ"
DEFAULT_FIRST_PERSON = "僕"
DEFAULT_RELATIONSHIP_HISTORY = "今日初めて会った"


class ProfileValidationError(ValueError):
    """Raised when a profile lacks identity data or carries malformed fields."""


@dataclass
class Personality:
    core: str = ""
    traits: List[str] = field(default_factory=list)


@dataclass
class SpeechStyle:
    tone: str = "casual"
    sentence_endings: List[str] = field(default_factory=lambda: [DEFAULT_SENTENCE_ENDING])
    examples: List[str] = field(default_factory=list)
    first_person: str = DEFAULT_FIRST_PERSON


@dataclass
class Experience:
    category: str = "neutral"
    brief: str = ""
    detail: str = ""
    impact: str = ""


@dataclass
class Background:
    origin: str = ""
    occupation: str = ""
    age: str = ""
    experiences: List[Experience] = field(default_factory=list)


@dataclass
class Strength:
    area: str
    level: str = "good"
    specific_skills: List[str] = field(default_factory=list)
    confidence: float = 0.5


@dataclass
class Weakness:
    area: str
    severity: str = "mild"
    reaction: str = ""
    avoidance: bool = False


@dataclass
class Interest:
    topic: str
    enthusiasm: str = "medium"
    knowledge: str = "beginner"


@dataclass
class Abilities:
    strengths: List[Strength] = field(default_factory=list)
    weaknesses: List[Weakness] = field(default_factory=list)
    interests: List[Interest] = field(default_factory=list)


@dataclass
class Relationship:
    closeness: str = "friend"
    history: str = DEFAULT_RELATIONSHIP_HISTORY
    tone: str = "casual"


@dataclass
class OtherCharacterRelationship:
    character_name: str
    relationship: str = ""
    dynamic: str = ""


@dataclass
class SamplingConfig:
    temperature: float = 1.0
    top_k: int = 64
    top_p: float = 0.95
    repeat_penalty: float = 1.0
    max_tokens: int = 100
    context_window: int = 8192


@dataclass
class CharacterProfile:
    id: str
    name: str
    role: str
    model_tier: str
    personality: Personality
    speech_style: SpeechStyle = field(default_factory=SpeechStyle)
    background: Background = field(default_factory=Background)
    abilities: Abilities = field(default_factory=Abilities)
    relationship_to_caller: Relationship = field(default_factory=Relationship)
    relationship_to_other: Optional[OtherCharacterRelationship] = None
    sampling_config: SamplingConfig = field(default_factory=SamplingConfig)
    model: str = ""


def new_profile_id() -> str:
    return uuid.uuid4().hex


def normalize_tier(value: object) -> str:
    tier = _clean(value) or ""
    tier = TIER_ALIASES.get(tier.lower(), tier.lower())
    if tier not in MODEL_TIERS:
        raise ProfileValidationError(f"model_tier must be one of {', '.join(MODEL_TIERS)}.")
    return tier


def require_identity(profile: CharacterProfile) -> None:
    """Fail fast when the fields every prompt depends on are blank."""

    if not (profile.name or "").strip():
        raise ProfileValidationError("A character name is required.")
    if not (profile.personality.core or "").strip():
        raise ProfileValidationError("A core personality description is required.")


def profile_from_dict(data: Mapping[str, Any]) -> CharacterProfile:
    """Build a :class:`CharacterProfile` from a JSON-like mapping."""

    # tier_policy imports this module at load time.
    from .services.tier_policy import default_model_for, default_sampling_config

    if not isinstance(data, Mapping):
        raise ProfileValidationError("A character profile must be a JSON object.")

    name = _clean(data.get("name"))
    if not name:
        raise ProfileValidationError("A character name is required.")

    role = _choice(data.get("role"), ROLES, "role", default=None)
    if role is None:
        raise ProfileValidationError(f"role must be one of {', '.join(ROLES)}.")

    tier = normalize_tier(data.get("model_tier") or data.get("modelTier") or data.get("modelSize") or "small")

    personality_raw = _mapping(data.get("personality"), "personality")
    core = _clean(personality_raw.get("core"))
    if not core:
        raise ProfileValidationError("A core personality description is required.")
    personality = Personality(core=core, traits=_string_list(personality_raw.get("traits"), "personality.traits"))

    speech_raw = _mapping(data.get("speech_style") or data.get("speechStyle"), "speech_style")
    endings = _string_list(
        speech_raw.get("sentence_endings", speech_raw.get("sentenceEndings")),
        "speech_style.sentence_endings",
    )
    speech_style = SpeechStyle(
        tone=_choice(speech_raw.get("tone"), TONES, "speech_style.tone", default="casual"),
        sentence_endings=endings or [DEFAULT_SENTENCE_ENDING],
        examples=_string_list(speech_raw.get("examples"), "speech_style.examples"),
        first_person=_clean(speech_raw.get("first_person") or speech_raw.get("firstPerson")) or DEFAULT_FIRST_PERSON,
    )

    background_raw = _mapping(data.get("background"), "background")
    background = Background(
        origin=_clean(background_raw.get("origin")) or "",
        occupation=_clean(background_raw.get("occupation")) or "",
        age=_clean(background_raw.get("age")) or "",
        experiences=[
            Experience(
                category=_choice(entry.get("category"), EXPERIENCE_CATEGORIES, "experience.category", default="neutral"),
                brief=_clean(entry.get("brief")) or "",
                detail=_clean(entry.get("detail")) or "",
                impact=_clean(entry.get("impact")) or "",
            )
            for entry in _mapping_list(background_raw.get("experiences"), "background.experiences")
        ],
    )

    abilities_raw = _mapping(data.get("abilities"), "abilities")
    abilities = Abilities(
        strengths=[
            Strength(
                area=area,
                level=_choice(entry.get("level"), PROFICIENCY_LEVELS, "strength.level", default="good"),
                specific_skills=_string_list(
                    entry.get("specific_skills", entry.get("specificSkills")), "strength.specific_skills"
                ),
                confidence=_confidence(entry.get("confidence")),
            )
            for entry in _mapping_list(abilities_raw.get("strengths"), "abilities.strengths")
            for area in [_clean(entry.get("area"))]
            if area
        ],
        weaknesses=[
            Weakness(
                area=area,
                severity=_choice(entry.get("severity"), SEVERITIES, "weakness.severity", default="mild"),
                reaction=_clean(entry.get("reaction")) or "",
                avoidance=bool(entry.get("avoidance", False)),
            )
            for entry in _mapping_list(abilities_raw.get("weaknesses"), "abilities.weaknesses")
            for area in [_clean(entry.get("area"))]
            if area
        ],
        interests=[
            Interest(
                topic=topic,
                enthusiasm=_choice(entry.get("enthusiasm"), ENTHUSIASM_LEVELS, "interest.enthusiasm", default="medium"),
                knowledge=_choice(entry.get("knowledge"), KNOWLEDGE_LEVELS, "interest.knowledge", default="beginner"),
            )
            for entry in _mapping_list(abilities_raw.get("interests"), "abilities.interests")
            for topic in [_clean(entry.get("topic"))]
            if topic
        ],
    )

    relationships_raw = _mapping(data.get("relationships"), "relationships")
    caller_raw = _mapping(
        data.get("relationship_to_caller") or relationships_raw.get("withUser"), "relationship_to_caller"
    )
    relationship = Relationship(
        closeness=_choice(caller_raw.get("closeness"), CLOSENESS_LEVELS, "relationship.closeness", default="friend"),
        history=_clean(caller_raw.get("history")) or DEFAULT_RELATIONSHIP_HISTORY,
        tone=_choice(caller_raw.get("tone"), RELATIONSHIP_TONES, "relationship.tone", default="casual"),
    )

    other_raw = data.get("relationship_to_other") or relationships_raw.get("withOtherCharacter")
    other: Optional[OtherCharacterRelationship] = None
    if other_raw:
        other_map = _mapping(other_raw, "relationship_to_other")
        other_name = _clean(other_map.get("character_name") or other_map.get("characterName"))
        if other_name:
            other = OtherCharacterRelationship(
                character_name=other_name,
                relationship=_clean(other_map.get("relationship")) or "",
                dynamic=_clean(other_map.get("dynamic")) or "",
            )

    sampling = _sampling_config(
        data.get("sampling_config") or data.get("ollamaConfig"),
        default_sampling_config(tier),
    )

    return CharacterProfile(
        id=_clean(data.get("id")) or new_profile_id(),
        name=name,
        role=role,
        model_tier=tier,
        personality=personality,
        speech_style=speech_style,
        background=background,
        abilities=abilities,
        relationship_to_caller=relationship,
        relationship_to_other=other,
        sampling_config=sampling,
        model=_clean(data.get("model")) or default_model_for(tier),
    )


def profile_to_dict(profile: CharacterProfile) -> Dict[str, Any]:
    return asdict(profile)


def _sampling_config(raw: object, defaults: SamplingConfig) -> SamplingConfig:
    if not raw:
        return defaults
    values = _mapping(raw, "sampling_config")
    aliases = {
        "max_tokens": ("max_tokens", "num_predict"),
        "context_window": ("context_window", "num_ctx"),
    }
    merged = asdict(defaults)
    for key, default in asdict(defaults).items():
        for source_key in aliases.get(key, (key,)):
            if values.get(source_key) is None:
                continue
            try:
                merged[key] = type(default)(values[source_key])
            except (TypeError, ValueError) as exc:
                raise ProfileValidationError(f"sampling_config.{key} must be a number.") from exc
            break
    return SamplingConfig(**merged)


def _confidence(value: object) -> float:
    if value is None:
        return 0.5
    try:
        confidence = float(value)
    except (TypeError, ValueError) as exc:
        raise ProfileValidationError("strength.confidence must be a number between 0 and 1.") from exc
    if not 0.0 <= confidence <= 1.0:
        raise ProfileValidationError("strength.confidence must be a number between 0 and 1.")
    return confidence


def _choice(value: object, allowed: Sequence[str], field_name: str, *, default: Optional[str]) -> Optional[str]:
    cleaned = _clean(value)
    if cleaned is None:
        return default
    if cleaned not in allowed:
        raise ProfileValidationError(f"{field_name} must be one of {', '.join(allowed)}.")
    return cleaned


def _mapping(value: object, field_name: str) -> Mapping[str, Any]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ProfileValidationError(f"{field_name} must be an object.")
    return value


def _mapping_list(value: object, field_name: str) -> List[Mapping[str, Any]]:
    if value is None:
        return []
    if not isinstance(value, list):
        raise ProfileValidationError(f"{field_name} must be a list.")
    for idx, entry in enumerate(value):
        if not isinstance(entry, Mapping):
            raise ProfileValidationError(f"{field_name}[{idx}] must be an object.")
    return value


def _string_list(value: object, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        value = value.splitlines()
    if not isinstance(value, list):
        raise ProfileValidationError(f"{field_name} must be a list of strings.")
    cleaned: List[str] = []
    for idx, item in enumerate(value):
        if not isinstance(item, str):
            raise ProfileValidationError(f"{field_name}[{idx}] must be a string.")
        if item.strip():
            cleaned.append(item.strip())
    return cleaned


def _clean(value: object) -> Optional[str]:
    if not isinstance(value, str):
        return None
    cleaned = value.strip()
    return cleaned or None
