"""vetrecord_etl.enums

Mapping of free-text categorical values onto closed vocabularies.

Synonym tables live in config/enum_synonyms.yml. Lookup is case-insensitive
and whitespace-collapsed; an exact canonical token always passes through, so
normalizing twice gives the same result as normalizing once.
"""

from __future__ import annotations

import hashlib
import json
import re
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Any, Iterable, Mapping

import yaml

from vetrecord_etl.normalize import normalize_space

DEFAULT_ENUMS_PATH = Path(__file__).parent / "config" / "enum_synonyms.yml"

_LIST_SPLIT_RE = re.compile(r"[,;|/\n]+")


# ---------------------------------------------------------------------------
# Exceptions
# ---------------------------------------------------------------------------

class EnumTableValidationError(ValueError):
    """Raised when an enum synonym YAML file fails schema validation."""


# ---------------------------------------------------------------------------
# Single / multi-value normalization
# ---------------------------------------------------------------------------

def _key(value: Any) -> str | None:
    v = normalize_space(value)
    return v.casefold() if v is not None else None


def normalize_enum(
    raw: Any,
    synonyms: Mapping[str, str],
    default: str | None,
    tokens: Iterable[str] | None = None,
) -> str | None:
    """Map `raw` onto a canonical token, falling back to `default`.

    `tokens` defaults to the distinct values of `synonyms`.
    """
    canonical = set(tokens) if tokens is not None else set(synonyms.values())
    if isinstance(raw, str) and raw.strip() in canonical:
        return raw.strip()
    key = _key(raw)
    if key is None:
        return default
    if key in synonyms:
        return synonyms[key]
    for token in canonical:
        if token.casefold() == key:
            return token
    return default


@dataclass(frozen=True)
class EnumSelection:
    """A multi-valued enum: the first value drives legacy single-value fields."""

    primary: str | None
    values: tuple[str, ...]


def split_values(raw: Any) -> list[Any]:
    if raw is None:
        return []
    if isinstance(raw, (list, tuple)):
        return list(raw)
    text = str(raw).strip()
    if text.startswith("["):
        try:
            parsed = json.loads(text)
        except ValueError:
            parsed = None
        if isinstance(parsed, list):
            return parsed
    return [part for part in _LIST_SPLIT_RE.split(text) if part.strip()]


def normalize_enum_list(
    raw: Any,
    synonyms: Mapping[str, str],
    default: str | None,
    tokens: Iterable[str] | None = None,
) -> EnumSelection:
    """Normalize a delimited / JSON / list value into distinct canonical tokens.

    Unknown elements are dropped; an empty result falls back to `default`.
    """
    canonical = tuple(tokens) if tokens is not None else None
    values: list[str] = []
    for part in split_values(raw):
        token = normalize_enum(part, synonyms, None, canonical)
        if token is not None and token not in values:
            values.append(token)
    if not values and default is not None:
        values.append(default)
    return EnumSelection(primary=values[0] if values else None, values=tuple(values))


# ---------------------------------------------------------------------------
# Enum table
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class EnumSpec:
    name: str
    tokens: tuple[str, ...]
    synonyms: dict[str, str]
    default: str | None

    def normalize(self, raw: Any) -> str | None:
        return normalize_enum(raw, self.synonyms, self.default, self.tokens)

    def normalize_list(self, raw: Any) -> EnumSelection:
        return normalize_enum_list(raw, self.synonyms, self.default, self.tokens)


@dataclass
class EnumTable:
    version: str
    yaml_hash: str
    enums: dict[str, EnumSpec]

    def __getitem__(self, name: str) -> EnumSpec:
        try:
            return self.enums[name]
        except KeyError:
            raise KeyError(f"Unknown enum: {name!r}") from None

    def normalize(self, name: str, raw: Any) -> str | None:
        return self[name].normalize(raw)

    def normalize_list(self, name: str, raw: Any) -> EnumSelection:
        return self[name].normalize_list(raw)


def load_enum_table(yaml_path: Path | None = None) -> EnumTable:
    """Load, validate, and return an EnumTable from a YAML file.

    Raises:
        EnumTableValidationError: If the file does not match the schema.
        FileNotFoundError: If the YAML file does not exist.
    """
    path = yaml_path or DEFAULT_ENUMS_PATH
    raw = path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    validate_enum_table(data)
    enums: dict[str, EnumSpec] = {}
    for name, spec in data["enums"].items():
        tokens = tuple(str(t) for t in spec["tokens"])
        synonyms = {token.casefold(): token for token in tokens}
        for source, target in (spec.get("synonyms") or {}).items():
            synonyms[_key(str(source))] = str(target)
        enums[name] = EnumSpec(
            name=name,
            tokens=tokens,
            synonyms=synonyms,
            default=spec.get("default"),
        )
    return EnumTable(
        version=str(data["version"]),
        yaml_hash=hashlib.sha256(raw.encode("utf-8")).hexdigest(),
        enums=enums,
    )


def validate_enum_table(data: Any) -> None:
    if not isinstance(data, dict):
        raise EnumTableValidationError("YAML root must be a mapping.")
    missing = {"version", "enums"} - set(data.keys())
    if missing:
        raise EnumTableValidationError(f"Missing required YAML keys: {sorted(missing)}")
    enums = data["enums"]
    if not isinstance(enums, dict) or not enums:
        raise EnumTableValidationError("'enums' must be a non-empty mapping.")
    for name, spec in enums.items():
        if not isinstance(spec, dict):
            raise EnumTableValidationError(f"Enum {name!r} must be a mapping.")
        tokens = spec.get("tokens")
        if not isinstance(tokens, list) or not tokens:
            raise EnumTableValidationError(f"Enum {name!r} needs a non-empty 'tokens' list.")
        token_set = {str(t) for t in tokens}
        default = spec.get("default")
        if default is not None and default not in token_set:
            raise EnumTableValidationError(
                f"Enum {name!r} default {default!r} is not one of its tokens."
            )
        synonyms = spec.get("synonyms") or {}
        if not isinstance(synonyms, dict):
            raise EnumTableValidationError(f"Enum {name!r} synonyms must be a mapping.")
        bad = sorted(str(t) for t in synonyms.values() if str(t) not in token_set)
        if bad:
            raise EnumTableValidationError(
                f"Enum {name!r} synonyms target unknown tokens: {bad}"
            )


@lru_cache(maxsize=1)
def default_enum_table() -> EnumTable:
    return load_enum_table(DEFAULT_ENUMS_PATH)
