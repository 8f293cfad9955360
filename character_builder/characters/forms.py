from __future__ import annotations

import re
from typing import Any, Dict, List

from flask_wtf import FlaskForm
from wtforms import SelectField, StringField, SubmitField, TextAreaField
from wtforms.validators import InputRequired, Length, Optional

from ..profiles import CharacterProfile


_LIST_SPLIT = re.compile(r"[\n,、]+")


class CharacterForm(FlaskForm):
    name = StringField("Name", validators=[InputRequired(), Length(max=120)])
    role = SelectField("Role", choices=[("boke", "Boke"), ("tsukkomi", "Tsukkomi")])
    model_tier = SelectField("Model tier", choices=[("small", "Small (gemma3:4b)"), ("large", "Large (gemma3:12b)")])
    personality_core = TextAreaField("Core personality", validators=[InputRequired(), Length(max=500)])
    traits = TextAreaField("Traits", validators=[Optional()], description="One per line")
    tone = SelectField("Tone", choices=[("casual", "Casual"), ("polite", "Polite"), ("friendly", "Friendly")])
    sentence_endings = StringField(
        "Sentence endings",
        validators=[Optional(), Length(max=200)],
        description="Comma separated, most typical first",
    )
    first_person = StringField("First person", validators=[Optional(), Length(max=20)])
    examples = TextAreaField("Example lines", validators=[Optional()], description="One per line")
    occupation = StringField("Occupation", validators=[Optional(), Length(max=120)])
    origin = StringField("Origin", validators=[Optional(), Length(max=120)])
    age = StringField("Age", validators=[Optional(), Length(max=40)])
    strengths = TextAreaField(
        "Strengths",
        validators=[Optional()],
        description="One per line: area | confidence (0-1)",
    )
    weaknesses = TextAreaField(
        "Weaknesses",
        validators=[Optional()],
        description="One per line: area | reaction",
    )
    submit = SubmitField("Save character")

    def to_payload(self) -> Dict[str, Any]:
        """Translate the submitted fields into a profile mapping."""

        strengths = []
        for line in _lines(self.strengths.data):
            area, _, confidence = (part.strip() for part in line.partition("|"))
            entry: Dict[str, Any] = {"area": area}
            if confidence:
                entry["confidence"] = confidence
            strengths.append(entry)

        weaknesses = []
        for line in _lines(self.weaknesses.data):
            area, _, reaction = (part.strip() for part in line.partition("|"))
            weaknesses.append({"area": area, "reaction": reaction})

        return {
            "name": self.name.data,
            "role": self.role.data,
            "model_tier": self.model_tier.data,
            "personality": {"core": self.personality_core.data, "traits": _lines(self.traits.data)},
            "speech_style": {
                "tone": self.tone.data,
                "sentence_endings": [item.strip() for item in _LIST_SPLIT.split(self.sentence_endings.data or "")],
                "first_person": self.first_person.data,
                "examples": _lines(self.examples.data),
            },
            "background": {
                "occupation": self.occupation.data,
                "origin": self.origin.data,
                "age": self.age.data,
            },
            "abilities": {"strengths": strengths, "weaknesses": weaknesses},
        }

    def fill_from_profile(self, profile: CharacterProfile) -> None:
        self.name.data = profile.name
        self.role.data = profile.role
        self.model_tier.data = profile.model_tier
        self.personality_core.data = profile.personality.core
        self.traits.data = "\n".join(profile.personality.traits)
        self.tone.data = profile.speech_style.tone
        self.sentence_endings.data = ", ".join(profile.speech_style.sentence_endings)
        self.first_person.data = profile.speech_style.first_person
        self.examples.data = "\n".join(profile.speech_style.examples)
        self.occupation.data = profile.background.occupation
        self.origin.data = profile.background.origin
        self.age.data = profile.background.age
        self.strengths.data = "\n".join(
            f"{strength.area} | {strength.confidence:g}" for strength in profile.abilities.strengths
        )
        self.weaknesses.data = "\n".join(
            f"{weakness.area} | {weakness.reaction}" if weakness.reaction else weakness.area
            for weakness in profile.abilities.weaknesses
        )


def _lines(value: str | None) -> List[str]:
    return [line.strip() for line in (value or "").splitlines() if line.strip()]
