"""
Form detection engine: visibility filtering, form and shadow-tree detection,
field metadata extraction, mapping suggestions and the visual fallback.
"""

from .dom import DomNode, Rect, snapshot_page
from .models import FieldDescriptor, FormDescriptor, MappingSuggestion
from .visibility import is_hidden
from .detector import detect_forms, detect_forms_in_shadow_dom
from .extractor import extract_form_metadata
from .mapping import (
    DEFAULT_MAPPING_RULES,
    FieldMatcher,
    MappingRule,
    load_mapping_rules,
    suggest_mappings,
)
from .visual import fallback_visual_detection

__all__ = [
    "DomNode",
    "Rect",
    "snapshot_page",
    "FieldDescriptor",
    "FormDescriptor",
    "MappingSuggestion",
    "is_hidden",
    "detect_forms",
    "detect_forms_in_shadow_dom",
    "extract_form_metadata",
    "DEFAULT_MAPPING_RULES",
    "FieldMatcher",
    "MappingRule",
    "load_mapping_rules",
    "suggest_mappings",
    "fallback_visual_detection",
]
