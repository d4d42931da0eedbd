"""vetrecord_etl.fields

Field resolution over loosely-labelled spreadsheet columns.

Field-form exports name the same column many ways ('Phone', 'Mobile',
'رقم الهاتف', 'Client Phone', ...). Each canonical field declares an ordered
alias list in config/field_aliases.yml; `resolve` returns the value of the
first alias that holds real data, trying exact header matches before
case/whitespace-insensitive ones.

Usage:
    from vetrecord_etl.fields import default_alias_table

    aliases = default_alias_table()
    phone = aliases.resolve_str(row, "client_phone")
"""

from __future__ import annotations

import hashlib
import re
import unicodedata
from dataclasses import dataclass, field
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from vetrecord_etl.normalize import PLACEHOLDER_VALUES

DEFAULT_ALIASES_PATH = Path(__file__).parent / "config" / "field_aliases.yml"

VALID_FIELD_TYPES = frozenset({"text", "date", "number", "enum", "list", "bool", "identifier"})


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class AliasTableValidationError(ValueError):
    """Raised when a field alias YAML file fails schema validation."""


# ---------------------------------------------------------------------------
# Resolution primitives
# ---------------------------------------------------------------------------

def normalize_header(header: Any) -> str:
    """Header key used for the lenient pass: NFKC, casefold, no whitespace."""
    text = unicodedata.normalize("NFKC", str(header)).replace("\ufeff", "")
    return re.sub(r"\s+", "", text).casefold()


def is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, float) and value != value:
        return True
    if isinstance(value, str):
        return value.strip().lower() in PLACEHOLDER_VALUES
    return False


def _clean(value: Any) -> Any:
    return value.strip() if isinstance(value, str) else value


def resolve_key(row: Mapping[str, Any], aliases: Iterable[str]) -> str | None:
    """Return the row key `resolve` reads for `aliases`, or None.

    Pass 1 looks every alias up as an exact key; pass 2 compares normalized
    headers, so 'CLIENT  NAME' still answers to 'Client Name'.
    """
    aliases = list(aliases)
    for alias in aliases:
        if alias in row and not is_blank(row[alias]):
            return alias

    index: dict[str, str] = {}
    for key, value in row.items():
        if is_blank(value):
            continue
        index.setdefault(normalize_header(key), key)
    for alias in aliases:
        key = index.get(normalize_header(alias))
        if key is not None:
            return key
    return None


def resolve(row: Mapping[str, Any], aliases: Iterable[str]) -> Any:
    """Return the first non-blank value among `aliases`, or None."""
    key = resolve_key(row, aliases)
    return None if key is None else _clean(row[key])


def render_value(value: Any) -> str | None:
    """Render a resolved cell as text; integral floats lose their '.0'."""
    if value is None:
        return None
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    text = str(value).strip()
    return text or None


def resolve_str(row: Mapping[str, Any], aliases: Iterable[str]) -> str | None:
    return render_value(resolve(row, aliases))


# ---------------------------------------------------------------------------
# Alias table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CanonicalField:
    name: str
    type: str
    aliases: tuple[str, ...]


@dataclass
class AliasTable:
    """Validated alias lists keyed by canonical field name."""

    version: str
    yaml_hash: str
    fields: dict[str, CanonicalField]
    _known_headers: frozenset[str] = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._known_headers = frozenset(
            normalize_header(alias)
            for canonical in self.fields.values()
            for alias in canonical.aliases
        )

    def aliases(self, name: str) -> tuple[str, ...]:
        try:
            return self.fields[name].aliases
        except KeyError:
            raise KeyError(f"Unknown canonical field: {name!r}") from None

    def resolve(self, row: Mapping[str, Any], name: str) -> Any:
        return resolve(row, self.aliases(name))

    def resolve_str(self, row: Mapping[str, Any], name: str) -> str | None:
        return resolve_str(row, self.aliases(name))

    def consumed_columns(self, row: Mapping[str, Any], names: Iterable[str]) -> set[str]:
        """Row keys that the canonical fields `names` actually read."""
        keys = set()
        for name in names:
            key = resolve_key(row, self.aliases(name))
            if key is not None:
                keys.add(key)
        return keys

    def is_mapped(self, column: str) -> bool:
        """True when a column header answers to any canonical field."""
        return normalize_header(column) in self._known_headers


def load_alias_table(yaml_path: Path | None = None) -> AliasTable:
    """Load, validate, and return an AliasTable from a YAML file.

    Raises:
        AliasTableValidationError: If the file does not match the schema.
        FileNotFoundError: If the YAML file does not exist.
    """
    path = yaml_path or DEFAULT_ALIASES_PATH
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    validate_alias_table(data)
    fields = {
        name: CanonicalField(
            name=name,
            type=spec.get("type", "text"),
            aliases=tuple(str(a) for a in spec["aliases"]),
        )
        for name, spec in data["fields"].items()
    }
    return AliasTable(
        version=str(data["version"]),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        fields=fields,
    )


def validate_alias_table(data: Any) -> None:
    if not isinstance(data, dict):
        raise AliasTableValidationError("YAML root must be a mapping.")
    missing = {"version", "fields"} - set(data.keys())
    if missing:
        raise AliasTableValidationError(f"Missing required YAML keys: {sorted(missing)}")
    fields = data["fields"]
    if not isinstance(fields, dict) or not fields:
        raise AliasTableValidationError("'fields' must be a non-empty mapping.")
    for name, spec in fields.items():
        if not isinstance(spec, dict):
            raise AliasTableValidationError(f"Field {name!r} must be a mapping.")
        aliases = spec.get("aliases")
        if not isinstance(aliases, list) or not aliases:
            raise AliasTableValidationError(f"Field {name!r} needs a non-empty 'aliases' list.")
        if any(a is None or str(a).strip() == "" for a in aliases):
            raise AliasTableValidationError(f"Field {name!r} has a blank alias.")
        field_type = spec.get("type", "text")
        if field_type not in VALID_FIELD_TYPES:
            raise AliasTableValidationError(
                f"Field {name!r} has type {field_type!r}; expected one of {sorted(VALID_FIELD_TYPES)}"
            )


@lru_cache(maxsize=1)
def default_alias_table() -> AliasTable:
    return load_alias_table(DEFAULT_ALIASES_PATH)
