"""
Directory records: attendants, address-book contacts and contact tags.
"""

from dataclasses import dataclass
from typing import Any, Dict


@dataclass
class Attendant:
    id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Attendant":
        return cls(id=data["id"], name=data.get("name") or data["id"])


@dataclass
class Contact:
    user_id: str
    user_name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"userId": self.user_id, "userName": self.user_name}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Contact":
        return cls(user_id=data["userId"], user_name=data.get("userName") or data["userId"])


@dataclass
class Tag:
    id: str
    name: str
    color: str = "#888888"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name, "color": self.color}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Tag":
        return cls(id=data["id"], name=data["name"], color=data.get("color") or "#888888")
