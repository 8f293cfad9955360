from __future__ import annotations

import json
from datetime import datetime
from typing import Any, Dict

from .extensions import db
from .profiles import CharacterProfile, profile_from_dict, profile_to_dict


class Character(db.Model):
    __tablename__ = "characters"

    id = db.Column(db.String(36), primary_key=True)
    name = db.Column(db.String(120), nullable=False)
    role = db.Column(db.String(20), nullable=False)
    model_tier = db.Column(db.String(20), nullable=False, default="small")
    profile_json = db.Column(db.Text, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, nullable=False)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False)

    @classmethod
    def from_profile(cls, profile: CharacterProfile) -> "Character":
        character = cls(id=profile.id)
        character.apply_profile(profile)
        return character

    def apply_profile(self, profile: CharacterProfile) -> None:
        """Store ``profile`` and refresh the denormalised listing columns."""

        self.name = profile.name
        self.role = profile.role
        self.model_tier = profile.model_tier
        self.profile_json = json.dumps(profile_to_dict(profile), ensure_ascii=False)

    def profile_payload(self) -> Dict[str, Any]:
        try:
            data = json.loads(self.profile_json or "{}")
        except json.JSONDecodeError:
            data = {}
        if not isinstance(data, dict):
            data = {}
        data["id"] = self.id
        return data

    def to_profile(self) -> CharacterProfile:
        return profile_from_dict(self.profile_payload())

    def __repr__(self) -> str:  # pragma: no cover - repr for debugging
        return f"<Character {self.name} ({self.role}/{self.model_tier})>"
