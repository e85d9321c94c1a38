"""
Mapping suggestions: which data column should feed each detected field.

Rules are evaluated in list order and the first matching rule wins; the list
order is the priority order. Rule files use the same layout as other rule
stores in the project:

    schema_version: "1.0"
    rules:
      - pattern: "e-?mail"
        flags: "i"
        type: ["email", "text"]
        suggest: "email"
"""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Pattern, Sequence, Union

import yaml

from detection.models import FieldDescriptor, MappingSuggestion

logger = logging.getLogger(__name__)

PATTERN = "pattern"
PREDICATE = "predicate"

_FLAG_MAP = {"i": re.IGNORECASE, "m": re.MULTILINE, "s": re.DOTALL}


@dataclass(frozen=True)
class FieldMatcher:
    """Either a regex tested against name/id/label, or a predicate over the field."""

    kind: str
    regex: Optional[Pattern] = None
    fn: Optional[Callable[[FieldDescriptor], bool]] = None

    @classmethod
    def pattern(cls, regex: Union[str, Pattern], flags: int = 0) -> "FieldMatcher":
        compiled = regex if isinstance(regex, re.Pattern) else re.compile(regex, flags)
        return cls(kind=PATTERN, regex=compiled)

    @classmethod
    def predicate(cls, fn: Callable[[FieldDescriptor], bool]) -> "FieldMatcher":
        return cls(kind=PREDICATE, fn=fn)


@dataclass(frozen=True)
class MappingRule:
    field_match: FieldMatcher
    suggest: str
    type_match: Union[str, Sequence[str], None] = None


def field_matches(matcher: FieldMatcher, field: FieldDescriptor) -> bool:
    if matcher.kind == PREDICATE:
        return bool(matcher.fn(field))
    if matcher.kind == PATTERN:
        return any(
            value and matcher.regex.search(value)
            for value in (field.name, field.id, field.label)
        )
    raise ValueError(f"Unknown field matcher kind: {matcher.kind}")


def type_matches(type_match: Union[str, Sequence[str], None], field_type: str) -> bool:
    if not type_match:
        return True
    if isinstance(type_match, str):
        return field_type == type_match
    return field_type in type_match


def rule_matches(rule: MappingRule, field: FieldDescriptor) -> bool:
    return field_matches(rule.field_match, field) and type_matches(rule.type_match, field.type)


def suggest_mappings(
    fields: Sequence[FieldDescriptor], rules: Optional[Sequence[MappingRule]]
) -> List[MappingSuggestion]:
    """
    Propose a mapping for every field, in input order.

    A field without a matching rule still gets an entry, with ``mapping=None``.
    A rule whose predicate raises is treated as not matching.
    """
    suggestions = []
    for field in fields:
        mapping = None
        for rule in rules or []:
            try:
                matched = rule_matches(rule, field)
            except Exception as e:
                logger.warning(f"Mapping rule '{rule.suggest}' failed on field '{field.key}': {e}")
                continue
            if matched:
                mapping = rule.suggest
                break
        suggestions.append(MappingSuggestion(field=field, mapping=mapping))
    return suggestions


def _parse_flags(flags: str) -> int:
    value = 0
    for char in flags or "":
        if char not in _FLAG_MAP:
            raise ValueError(f"Unsupported regex flag '{char}'")
        value |= _FLAG_MAP[char]
    return value


def rules_from_data(data) -> List[MappingRule]:
    if not isinstance(data, dict):
        logger.warning(f"Mapping rules document is a {type(data).__name__}, not a mapping; using no rules")
        return []
    raw_rules = data.get("rules") or []
    if not isinstance(raw_rules, list):
        logger.warning("Mapping rules 'rules' entry is not a list; using no rules")
        return []
    rules = []
    for index, raw in enumerate(raw_rules):
        try:
            matcher = FieldMatcher.pattern(raw["pattern"], _parse_flags(raw.get("flags", "i")))
            rules.append(
                MappingRule(field_match=matcher, suggest=raw["suggest"], type_match=raw.get("type"))
            )
        except (KeyError, TypeError, ValueError, re.error) as e:
            logger.warning(f"Skipping invalid mapping rule #{index}: {e}")
    return rules


def load_mapping_rules(path: Union[str, Path, None]) -> List[MappingRule]:
    """
    Load pattern rules from a YAML or JSON file.

    A missing or unparsable file yields no rules.
    """
    if path is None:
        return []
    path = Path(path)
    if not path.exists():
        logger.info(f"Mapping rules file {path} not found; using no rules")
        return []
    try:
        with open(path, "r", encoding="utf-8") as f:
            if path.suffix.lower() in [".yaml", ".yml"]:
                data = yaml.safe_load(f) or {}
            else:
                data = json.load(f)
    except (json.JSONDecodeError, yaml.YAMLError, IOError) as e:
        logger.warning(f"Could not read mapping rules from {path}: {e}; using no rules")
        return []
    rules = rules_from_data(data)
    logger.info(f"Loaded {len(rules)} mapping rules from {path}")
    return rules


def _rule(pattern: str, suggest: str, type_match=None) -> MappingRule:
    return MappingRule(FieldMatcher.pattern(pattern, re.IGNORECASE), suggest, type_match)


DEFAULT_MAPPING_RULES: List[MappingRule] = [
    _rule(r"e-?mail", "email", ["email", "text"]),
    _rule(r"pass(word|code)?", "password", "password"),
    _rule(r"phone|mobile|tel", "phone", ["tel", "text", "number"]),
    _rule(r"first.?name|given.?name|fname", "firstName"),
    _rule(r"last.?name|family.?name|surname|lname", "lastName"),
    _rule(r"full.?name|^name$", "fullName"),
    _rule(r"zip|postal", "postalCode"),
    _rule(r"city|town", "city"),
    _rule(r"country", "country"),
    _rule(r"address|street", "address"),
    _rule(r"company|organi[sz]ation", "company"),
    _rule(r"message|comment|enquiry|inquiry", "message", ["textarea", "text"]),
]
