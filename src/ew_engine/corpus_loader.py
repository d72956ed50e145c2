"""
Keyword Corpus Loader

Loads the system/domain keyword tables, cross-keyword groups and semantic
conflict rules from YAML files and compiles them into an immutable corpus.

The corpus is built once and shared read-only by every session in the
process; nothing mutates it after loading.

Usage:
    corpus = CorpusLoader().load_from_directory(Path("corpus/"))
    for system in corpus.systems:
        if system.matches(text):
            ...
"""

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from re import Pattern
from types import MappingProxyType
from typing import Any, Dict, List, Mapping, Optional, Tuple

import yaml

from ew_engine.constraints.conflicts import SemanticRule

logger = logging.getLogger(__name__)

BUNDLED_CORPUS_DIR = Path(__file__).parent / "corpus"
SUPPORTED_SCHEMA_MAJOR = 1

SCHEMA_FILE = "schema.yaml"
SYSTEMS_FILE = "systems.yaml"
CROSS_KEYWORDS_FILE = "cross_keywords.yaml"
SEMANTIC_CONFLICTS_FILE = "semantic_conflicts.yaml"


class CorpusError(Exception):
    """Raised when the keyword corpus cannot be loaded."""
    pass


def compile_keywords(keywords: List[str], word_boundary: bool = True) -> Optional[Pattern]:
    """
    Compile keyword fragments into one case-insensitive alternation.

    With word_boundary, a fragment only matches when it is not embedded in a
    longer word ("api" matches "rest api" but not "rapid").

    Returns:
        Compiled pattern, or None for an empty keyword list

    Raises:
        re.error: If a fragment is not a valid regular expression
    """
    fragments = [str(k).strip() for k in keywords if str(k).strip()]
    if not fragments:
        return None
    alternation = "|".join(f"(?:{fragment})" for fragment in fragments)
    if word_boundary:
        alternation = rf"(?<!\w)(?:{alternation})(?!\w)"
    return re.compile(alternation, re.IGNORECASE)


# =============================================================================
# CORPUS DATA STRUCTURES
# =============================================================================


@dataclass(frozen=True)
class CompoundRule:
    """A domain hit that needs both a vendor anchor and an intent keyword."""

    anchors: Pattern
    intents: Pattern

    def matches(self, text: str) -> bool:
        return bool(self.anchors.search(text)) and bool(self.intents.search(text))


@dataclass(frozen=True)
class DomainSpec:
    """Finer-grained category within a system."""

    id: str
    system: str
    pattern: Optional[Pattern] = None
    compound: Tuple[CompoundRule, ...] = ()

    def matches(self, text: str) -> bool:
        if self.pattern is not None and self.pattern.search(text):
            return True
        return any(rule.matches(text) for rule in self.compound)


@dataclass(frozen=True)
class SystemSpec:
    """
    Top-level subject-matter category.

    A system is hit when its own keywords match, when one of its anchors
    appears anywhere in the text, or (with include_domain_keywords) when any
    of its domains match.
    """

    id: str
    name: str
    pattern: Optional[Pattern] = None
    anchors: Optional[Pattern] = None
    domains: Tuple[DomainSpec, ...] = ()
    include_domain_keywords: bool = False

    def matches(self, text: str) -> bool:
        if self.pattern is not None and self.pattern.search(text):
            return True
        if self.anchors is not None and self.anchors.search(text):
            return True
        if self.include_domain_keywords:
            return any(domain.matches(text) for domain in self.domains)
        return False


@dataclass(frozen=True)
class CrossGroup:
    """Keyword group that contributes fractional weight to several systems."""

    id: str
    pattern: Pattern
    weights: Mapping[str, float]


@dataclass(frozen=True)
class KeywordCorpus:
    """Immutable, fully compiled keyword corpus."""

    schema_version: str
    systems: Tuple[SystemSpec, ...]
    cross_groups: Tuple[CrossGroup, ...] = ()
    semantic_rules: Tuple[SemanticRule, ...] = ()

    @property
    def system_ids(self) -> Tuple[str, ...]:
        return tuple(s.id for s in self.systems)

    @property
    def domain_ids(self) -> Tuple[str, ...]:
        return tuple(d.id for s in self.systems for d in s.domains)

    def get_system(self, system_id: str) -> Optional[SystemSpec]:
        for system in self.systems:
            if system.id == system_id:
                return system
        return None

    def system_for_domain(self, domain_id: str) -> Optional[str]:
        for system in self.systems:
            if any(d.id == domain_id for d in system.domains):
                return system.id
        return None

    def primary_domain(self, systems: Tuple[str, ...], domains: Tuple[str, ...]) -> str:
        """First detected domain of the first system, or "" if it has none."""
        if not systems:
            return ""
        for domain_id in domains:
            if self.system_for_domain(domain_id) == systems[0]:
                return domain_id
        return ""


@dataclass
class CorpusStats:
    """Statistics about the loaded corpus."""

    systems: int = 0
    domains: int = 0
    cross_groups: int = 0
    semantic_rules: int = 0
    skipped: int = 0
    files: Dict[str, int] = field(default_factory=dict)


# =============================================================================
# LOADER
# =============================================================================


class CorpusLoader:
    """
    Loads and validates the keyword corpus from a directory of YAML files.

    Architecture:
    - YAML files are source of truth (human-editable, versioned)
    - Compiled to regex patterns at load time
    - Invalid entries are logged and skipped; unusable files are fatal

    Thread Safety:
    - Load operations are not thread-safe
    - The returned KeywordCorpus is immutable and safe to share
    """

    def __init__(self):
        self._stats = CorpusStats()
        self._required_fields: Dict[str, List[str]] = {
            "system": ["id", "keywords"],
            "domain": ["id", "keywords"],
            "cross_group": ["id", "pattern", "weights"],
            "semantic_rule": ["id", "a", "b", "rationale"],
        }

    @property
    def stats(self) -> CorpusStats:
        """Get loading statistics."""
        return self._stats

    def load_from_directory(self, directory: Path) -> KeywordCorpus:
        """
        Load the corpus files from a directory.

        Args:
            directory: Directory holding schema.yaml and the corpus tables

        Returns:
            Compiled KeywordCorpus

        Raises:
            CorpusError: If a file is missing or unparseable, the schema
                version is unsupported, or no valid system remains
        """
        directory = Path(directory)
        if not directory.is_dir():
            raise CorpusError(f"Corpus directory not found: {directory}")

        self._stats = CorpusStats()
        schema_version = self.load_schema(directory / SCHEMA_FILE)

        systems = self._load_systems(directory / SYSTEMS_FILE)
        if not systems:
            raise CorpusError(f"No valid systems in {directory / SYSTEMS_FILE}")
        known = {s.id for s in systems}

        groups = self._load_cross_groups(directory / CROSS_KEYWORDS_FILE, known)
        rules = self._load_semantic_rules(directory / SEMANTIC_CONFLICTS_FILE)

        corpus = KeywordCorpus(
            schema_version=schema_version,
            systems=tuple(systems),
            cross_groups=tuple(groups),
            semantic_rules=tuple(rules),
        )

        logger.info(
            f"Corpus loaded: {self._stats.systems} systems, "
            f"{self._stats.domains} domains, "
            f"{self._stats.cross_groups} cross groups, "
            f"{self._stats.semantic_rules} semantic rules "
            f"({self._stats.skipped} skipped)"
        )
        return corpus

    def load_schema(self, schema_path: Path) -> str:
        """
        Load schema file, check its version and pick up required fields.

        Returns:
            The schema version string
        """
        schema = self._read(schema_path)
        version = str(schema.get("schema_version", ""))
        try:
            major = int(version.split(".")[0])
        except ValueError:
            raise CorpusError(f"Invalid schema_version in {schema_path}: '{version}'")
        if major != SUPPORTED_SCHEMA_MAJOR:
            raise CorpusError(
                f"Unsupported corpus schema version {version} "
                f"(expected {SUPPORTED_SCHEMA_MAJOR}.x)"
            )

        required = schema.get("required_fields") or {}
        if isinstance(required, dict):
            for kind, fields in required.items():
                if isinstance(fields, list):
                    self._required_fields[kind] = [str(f) for f in fields]

        logger.debug(f"Loaded corpus schema {version}")
        return version

    def _read(self, path: Path) -> Dict[str, Any]:
        if not path.exists():
            raise CorpusError(f"Corpus file not found: {path}")
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise CorpusError(f"Invalid YAML in {path.name}: {e}")
        except OSError as e:
            raise CorpusError(f"Cannot read {path}: {e}")
        if not isinstance(data, dict):
            raise CorpusError(f"{path.name}: top-level document must be a mapping")
        return data

    def _has_required(self, kind: str, data: Any) -> bool:
        if not isinstance(data, dict):
            logger.warning(f"Skipping {kind} entry that is not a mapping: {data!r}")
            return False
        missing = [k for k in self._required_fields.get(kind, []) if k not in data]
        if missing:
            logger.warning(f"Skipping {kind} {data.get('id', '?')}: missing {missing}")
            return False
        return True

    def _skip(self) -> None:
        self._stats.skipped += 1

    def _load_systems(self, path: Path) -> List[SystemSpec]:
        data = self._read(path)
        systems: List[SystemSpec] = []
        seen_systems = set()
        seen_domains = set()

        for entry in data.get("systems") or []:
            if not self._has_required("system", entry):
                self._skip()
                continue
            system_id = str(entry["id"])
            if system_id in seen_systems:
                logger.warning(f"Skipping duplicate system id: {system_id}")
                self._skip()
                continue
            try:
                pattern = compile_keywords(entry.get("keywords") or [])
                anchors = compile_keywords(entry.get("anchors") or [], word_boundary=False)
            except re.error as e:
                logger.error(f"Invalid keyword pattern in system {system_id}: {e}")
                self._skip()
                continue

            domains = []
            for domain_data in entry.get("domains") or []:
                domain = self._parse_domain(system_id, domain_data)
                if domain is None:
                    self._skip()
                    continue
                if domain.id in seen_domains:
                    logger.warning(f"Skipping duplicate domain id: {domain.id}")
                    self._skip()
                    continue
                seen_domains.add(domain.id)
                domains.append(domain)

            if pattern is None and anchors is None and not domains:
                logger.warning(f"Skipping system {system_id}: nothing to match on")
                self._skip()
                continue

            seen_systems.add(system_id)
            systems.append(SystemSpec(
                id=system_id,
                name=str(entry.get("name", system_id)),
                pattern=pattern,
                anchors=anchors,
                domains=tuple(domains),
                include_domain_keywords=bool(entry.get("include_domain_keywords", False)),
            ))
            self._stats.systems += 1
            self._stats.domains += len(domains)

        self._stats.files[path.name] = len(systems)
        return systems

    def _parse_domain(self, system_id: str, data: Any) -> Optional[DomainSpec]:
        if not self._has_required("domain", data):
            return None
        domain_id = str(data["id"])
        try:
            pattern = compile_keywords(data.get("keywords") or [])
            compound = []
            for rule in data.get("compound") or []:
                anchors = compile_keywords(rule.get("anchors") or [], word_boundary=False)
                intents = compile_keywords(rule.get("intents") or [], word_boundary=False)
                if anchors is None or intents is None:
                    logger.warning(f"Ignoring incomplete compound rule in domain {domain_id}")
                    continue
                compound.append(CompoundRule(anchors=anchors, intents=intents))
        except (re.error, AttributeError) as e:
            logger.error(f"Invalid pattern in domain {domain_id}: {e}")
            return None

        if pattern is None and not compound:
            logger.warning(f"Domain {domain_id} has no keywords")
            return None
        return DomainSpec(
            id=domain_id,
            system=system_id,
            pattern=pattern,
            compound=tuple(compound),
        )

    def _load_cross_groups(self, path: Path, known_systems: set) -> List[CrossGroup]:
        data = self._read(path)
        groups: List[CrossGroup] = []

        for entry in data.get("groups") or []:
            if not self._has_required("cross_group", entry):
                self._skip()
                continue
            group_id = str(entry["id"])
            weights = entry.get("weights")
            if not isinstance(weights, dict):
                logger.warning(f"Skipping cross group {group_id}: weights must be a mapping")
                self._skip()
                continue

            unknown = [s for s in weights if s not in known_systems]
            invalid = [s for s, w in weights.items()
                       if not isinstance(w, (int, float)) or not 0 < w <= 1]
            if unknown or invalid or len(weights) < 2:
                logger.warning(
                    f"Skipping cross group {group_id}: needs two or more known systems "
                    f"with weights in (0, 1] (unknown={unknown}, invalid={invalid})"
                )
                self._skip()
                continue

            try:
                pattern = compile_keywords([entry["pattern"]])
            except re.error as e:
                logger.error(f"Invalid regex pattern in cross group {group_id}: {e}")
                self._skip()
                continue
            if pattern is None:
                self._skip()
                continue

            groups.append(CrossGroup(
                id=group_id,
                pattern=pattern,
                weights=MappingProxyType({str(s): float(w) for s, w in weights.items()}),
            ))
            self._stats.cross_groups += 1

        self._stats.files[path.name] = len(groups)
        return groups

    def _load_semantic_rules(self, path: Path) -> List[SemanticRule]:
        data = self._read(path)
        rules: List[SemanticRule] = []

        for entry in data.get("rules") or []:
            if not self._has_required("semantic_rule", entry):
                self._skip()
                continue
            try:
                rule = SemanticRule.from_dict(entry)
            except (re.error, KeyError, TypeError, AttributeError) as e:
                logger.error(f"Invalid semantic rule {entry.get('id', '?')}: {e}")
                self._skip()
                continue
            rules.append(rule)
            self._stats.semantic_rules += 1

        self._stats.files[path.name] = len(rules)
        return rules


# =============================================================================
# Module-level shared corpus
# =============================================================================

_corpus_cache: Dict[Path, KeywordCorpus] = {}


def get_default_corpus(directory: Optional[Path] = None) -> KeywordCorpus:
    """
    Get the shared corpus for a directory (bundled corpus by default).

    Each directory is loaded once per process.
    """
    directory = Path(directory) if directory is not None else BUNDLED_CORPUS_DIR
    key = directory.resolve()
    corpus = _corpus_cache.get(key)
    if corpus is None:
        corpus = CorpusLoader().load_from_directory(directory)
        _corpus_cache[key] = corpus
    return corpus
