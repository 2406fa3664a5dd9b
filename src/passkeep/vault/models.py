"""Vault entry model and its JSON layout.

The decrypted vault payload is a JSON array of::

    {"name": str, "id": str, "password": str,
     "metadata": {"url": str | null, "notes": str | null}}
"""

import json
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

MIN_PASSWORD_LENGTH = 8
MAX_PASSWORD_LENGTH = 21


@dataclass
class EntryMetadata:
    url: Optional[str] = None
    notes: Optional[str] = None

    def to_dict(self) -> Dict[str, Optional[str]]:
        return {"url": self.url, "notes": self.notes}

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "EntryMetadata":
        if data is None:
            return cls()
        if not isinstance(data, dict):
            raise ValueError("metadata must be an object")
        return cls(url=data.get("url"), notes=data.get("notes"))


@dataclass
class Entry:
    """A single stored credential."""

    id: str
    name: str
    password: str
    metadata: EntryMetadata = field(default_factory=EntryMetadata)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "password": self.password,
            "metadata": self.metadata.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Entry":
        if not isinstance(data, dict):
            raise ValueError("entry must be an object")
        missing = [k for k in ("name", "id", "password") if k not in data]
        if missing:
            raise ValueError(f"Missing entry fields: {', '.join(missing)}")
        for key in ("name", "id", "password"):
            if not isinstance(data[key], str):
                raise ValueError(f"entry field {key!r} must be a string")
        return cls(
            id=data["id"],
            name=data["name"],
            password=data["password"],
            metadata=EntryMetadata.from_dict(data.get("metadata")),
        )


def entries_to_json(entries: List[Entry]) -> bytes:
    """Serialize entries to the payload stored inside the vault ciphertext."""
    return json.dumps([e.to_dict() for e in entries]).encode("utf-8")


def entries_from_json(raw: bytes) -> List[Entry]:
    """Parse a decrypted payload. Raises ValueError on anything but a list of entries."""
    try:
        data = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as e:
        raise ValueError(f"Invalid entry payload: {e}") from e
    if not isinstance(data, list):
        raise ValueError("Invalid entry payload: expected a list")
    return [Entry.from_dict(item) for item in data]


def validate_entry(entry: Entry) -> List[str]:
    """
    Check an entry before it is added to the vault.

    Returns:
        List of problems; empty when the entry is acceptable.
    """
    problems = []
    if not entry.name or not entry.id:
        problems.append("Name and ID cannot be empty")
    if not (MIN_PASSWORD_LENGTH <= len(entry.password) <= MAX_PASSWORD_LENGTH):
        problems.append(
            f"Password must be between {MIN_PASSWORD_LENGTH} and "
            f"{MAX_PASSWORD_LENGTH} characters long"
        )
    return problems
