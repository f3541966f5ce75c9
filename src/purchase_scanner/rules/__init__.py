"""Data-driven keyword, brand and domain tables used by the verifier and pre-filter.

The tables ship as ``tables.json`` next to this module. They are loaded once,
canonicalized, and shared read-only; tests and deployments can point
``Settings.rule_tables_path`` at a replacement file with the same layout.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path
from types import MappingProxyType
from typing import Any

import structlog

from purchase_scanner.exceptions import ConfigurationError
from purchase_scanner.rules.canonical import canonical_tokens, canonicalize, compact

logger = structlog.get_logger()

Phrase = tuple[str, ...]

_REQUIRED_KEYS = (
    "version",
    "wearable_categories",
    "blocked_categories",
    "store_blocklist",
    "marketplace_domains",
    "generic_sender_domains",
    "brand_domain_aliases",
    "known_brands",
    "stop_words",
    "generic_name_words",
    "placeholder_patterns",
    "type_synonyms",
    "clothing_type_aliases",
    "vibe_keywords",
    "mail_subdomain_labels",
    "multi_part_suffixes",
    "non_clothing_senders",
    "prefilter",
)


@dataclass(frozen=True)
class RuleTables:
    """Canonicalized, read-only rule tables."""

    version: int
    wearable_categories: Mapping[str, tuple[Phrase, ...]]
    blocked_categories: Mapping[str, tuple[Phrase, ...]]
    store_blocklist: Mapping[str, tuple[Phrase, ...]]
    marketplace_domains: frozenset[str]
    generic_sender_domains: frozenset[str]
    brand_domain_aliases: Mapping[str, tuple[str, ...]]
    known_brands: frozenset[str]
    known_retailers: tuple[str, ...]
    stop_words: frozenset[str]
    generic_name_words: frozenset[str]
    placeholder_patterns: tuple[re.Pattern[str], ...]
    type_synonyms: Mapping[str, tuple[Phrase, ...]]
    clothing_type_aliases: Mapping[str, str]
    vibe_keywords: tuple[tuple[str, tuple[str, ...]], ...]
    default_vibe: str
    mail_subdomain_labels: frozenset[str]
    multi_part_suffixes: frozenset[str]
    non_clothing_senders: frozenset[str]
    prefilter: Mapping[str, tuple[str, ...]]

    def type_variants(self, item_type: str | None) -> tuple[Phrase, ...]:
        """The item type plus its synonyms, as canonical phrases."""

        key = canonicalize(item_type)
        if not key:
            return ()
        own = tuple(canonical_tokens(item_type))
        return (own,) + tuple(p for p in self.type_synonyms.get(key, ()) if p != own)


def _phrases(terms: Any) -> tuple[Phrase, ...]:
    out: list[Phrase] = []
    seen: set[Phrase] = set()
    for term in terms or []:
        phrase = tuple(canonical_tokens(str(term)))
        if phrase and phrase not in seen:
            seen.add(phrase)
            out.append(phrase)
    return tuple(out)


def _families(raw: Any) -> Mapping[str, tuple[Phrase, ...]]:
    if not isinstance(raw, dict):
        raise ConfigurationError("rule table family groups must be JSON objects")
    return MappingProxyType({str(name): _phrases(terms) for name, terms in raw.items()})


def _synonym_index(groups: Any) -> Mapping[str, tuple[Phrase, ...]]:
    index: dict[str, tuple[Phrase, ...]] = {}
    for group in groups or []:
        phrases = _phrases(group)
        for phrase in phrases:
            index[" ".join(phrase)] = phrases
    return MappingProxyType(index)


def build_rule_tables(data: dict[str, Any]) -> RuleTables:
    """Validate and canonicalize a decoded tables document."""

    missing = [k for k in _REQUIRED_KEYS if k not in data]
    if missing:
        raise ConfigurationError(f"rule tables missing keys: {', '.join(missing)}")

    try:
        version = int(data["version"])
        placeholder_patterns = tuple(
            re.compile(p, re.IGNORECASE) for p in data["placeholder_patterns"]
        )
    except (TypeError, ValueError, re.error) as exc:
        raise ConfigurationError(f"invalid rule tables: {exc}") from exc

    aliases = {
        compact(label): tuple(compact(b) for b in brands)
        for label, brands in (data["brand_domain_aliases"] or {}).items()
    }

    return RuleTables(
        version=version,
        wearable_categories=_families(data["wearable_categories"]),
        blocked_categories=_families(data["blocked_categories"]),
        store_blocklist=_families(data["store_blocklist"]),
        marketplace_domains=frozenset(compact(d) for d in data["marketplace_domains"]),
        generic_sender_domains=frozenset(compact(d) for d in data["generic_sender_domains"]),
        brand_domain_aliases=MappingProxyType(aliases),
        known_brands=frozenset(compact(b) for b in data["known_brands"]),
        known_retailers=tuple(str(r) for r in data.get("known_retailers", [])),
        stop_words=frozenset(compact(w) for w in data["stop_words"]),
        generic_name_words=frozenset(compact(w) for w in data["generic_name_words"]),
        placeholder_patterns=placeholder_patterns,
        type_synonyms=_synonym_index(data["type_synonyms"]),
        clothing_type_aliases=MappingProxyType(
            {str(k).lower(): str(v) for k, v in data["clothing_type_aliases"].items()}
        ),
        vibe_keywords=tuple(
            (str(vibe), tuple(str(k).lower() for k in keywords))
            for vibe, keywords in data["vibe_keywords"]
        ),
        default_vibe=str(data.get("default_vibe", "casual")),
        mail_subdomain_labels=frozenset(str(x).lower() for x in data["mail_subdomain_labels"]),
        multi_part_suffixes=frozenset(str(x).lower() for x in data["multi_part_suffixes"]),
        non_clothing_senders=frozenset(compact(s) for s in data["non_clothing_senders"]),
        prefilter=MappingProxyType(
            {str(k): tuple(str(v) for v in values) for k, values in data["prefilter"].items()}
        ),
    )


@lru_cache
def load_rule_tables(path: Path | None = None) -> RuleTables:
    """Load the rule tables once per path.

    Args:
        path: Optional replacement JSON file. Defaults to the bundled tables.

    Returns:
        RuleTables: Shared, read-only tables.

    Raises:
        ConfigurationError: If the file is missing, malformed or incomplete.
    """

    try:
        if path is None:
            raw = resources.files("purchase_scanner.rules").joinpath("tables.json").read_text(
                encoding="utf-8"
            )
        else:
            raw = Path(path).read_text(encoding="utf-8")
        data = json.loads(raw)
    except (OSError, json.JSONDecodeError) as exc:
        raise ConfigurationError(f"cannot load rule tables from {path or 'package'}: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigurationError("rule tables must be a JSON object")

    tables = build_rule_tables(data)
    logger.debug("rule_tables_loaded", version=tables.version, path=str(path) if path else "bundled")
    return tables


__all__ = ["RuleTables", "build_rule_tables", "load_rule_tables"]
