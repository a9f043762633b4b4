"""Flatten extracted contract fields into display rows.

Top-level keys pass through unchanged. The reserved ``addendum`` key maps
addendum-slug -> field -> value and is expanded into one row per nested
field, labelled "<Addendum Name> - <field key>".
"""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import Any

ADDENDUM_KEY = "addendum"


@dataclass(frozen=True)
class FieldEntry:
    key: str
    value: str


def format_value(value: Any) -> str:
    """Render one extracted value the way the field list shows it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "Yes" if value else "No"
    if isinstance(value, (dict, list)):
        return json.dumps(value, separators=(",", ":"), ensure_ascii=False)
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def humanize_slug(slug: str) -> str:
    """'solar-addendum' -> 'Solar Addendum'."""
    words = re.sub(r"[-_]+", " ", slug)
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), words)


def humanize_field_key(key: str) -> str:
    """'panel_count' -> 'panel count'."""
    return key.replace("_", " ")


def flatten_fields(fields_json: dict[str, Any] | None) -> list[FieldEntry]:
    """Flatten fieldsJson into ordered (key, value) rows."""
    if not fields_json:
        return []

    result: list[FieldEntry] = []
    for key, value in fields_json.items():
        if key == ADDENDUM_KEY and isinstance(value, dict):
            for slug, addendum_fields in value.items():
                if not isinstance(addendum_fields, dict):
                    continue
                addendum_name = humanize_slug(slug)
                for field_key, field_value in addendum_fields.items():
                    result.append(FieldEntry(
                        key=f"{addendum_name} - {humanize_field_key(field_key)}",
                        value=format_value(field_value),
                    ))
        else:
            result.append(FieldEntry(key=key, value=format_value(value)))
    return result
