from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from detection.dom import DomNode


@dataclass
class FieldDescriptor:
    """Addressable control inside a detected form."""

    name: str
    id: str
    type: str
    label: str = ""
    placeholder: str = ""
    required: bool = False
    autocomplete: str = ""
    element: Optional[DomNode] = field(default=None, compare=False, repr=False)

    @property
    def key(self) -> str:
        """Name used to address the field in data rows."""
        return self.name or self.id

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "id": self.id,
            "type": self.type,
            "label": self.label,
            "placeholder": self.placeholder,
            "required": self.required,
            "autocomplete": self.autocomplete,
        }


@dataclass
class FormDescriptor:
    """A detected form, or a synthetic one built from clustered controls."""

    container: Optional[DomNode]
    id: str = ""
    name: str = ""
    action: str = ""
    method: str = ""
    fields: List[FieldDescriptor] = field(default_factory=list)
    synthetic: bool = False

    @property
    def display_name(self) -> str:
        return self.id or self.name or "<anonymous form>"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "action": self.action,
            "method": self.method,
            "synthetic": self.synthetic,
            "fields": [f.to_dict() for f in self.fields],
        }


@dataclass
class MappingSuggestion:
    field: FieldDescriptor
    mapping: Optional[str] = None
