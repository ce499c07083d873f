"""Equivalence rules and their persistence.

Two independent rule lists drive the comparator: status synonyms and product
synonyms.  Product rules may additionally require a specific tiered-risk
qualifier on the incoming record.  Lists are stored whole under fixed keys in
a flat key-value store; when nothing is stored the built-in defaults apply.
"""

from __future__ import annotations

import json
import os
import tempfile
from enum import Enum
from pathlib import Path
from threading import RLock
from typing import Any, Iterable, Mapping, Protocol, Sequence, Union

import structlog
import yaml
from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
)

from libraries.reconcile.errors import RuleStoreError
from libraries.reconcile.records import IncomingRecord

log = structlog.get_logger(__name__)

RULES_PATH_ENV = "POLICYCHECK_RULES_PATH"
DEFAULT_RULES_PATH = Path("~/.config/policycheck/rules.json").expanduser()


class RuleKind(str, Enum):
    STATUS = "status"
    PRODUCT = "product"

    @property
    def storage_key(self) -> str:
        return f"{self.value}Mappings"


def _same(lhs: str, rhs: str, *, case_sensitive: bool) -> bool:
    if case_sensitive:
        return lhs == rhs
    return lhs.casefold() == rhs.casefold()


class StatusEquivalenceRule(BaseModel):
    """Treat a Salesforce status and an incoming status as the same value.

    Rules are directional: ``(authoritative="Policy Issued", incoming="Approved")``
    does not make an authoritative ``"Approved"`` equal an incoming
    ``"Policy Issued"``.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    authoritative: str = Field(
        validation_alias=AliasChoices("authoritative", "salesforce")
    )
    incoming: str

    def matches(
        self, authoritative: str, incoming: str, *, case_sensitive: bool = True
    ) -> bool:
        return _same(
            self.authoritative, authoritative, case_sensitive=case_sensitive
        ) and _same(self.incoming, incoming, case_sensitive=case_sensitive)


class ProductEquivalenceRule(BaseModel):
    """Treat a Salesforce product and an incoming product as the same plan.

    When :attr:`constrain_secondary` is set the rule only applies if the
    incoming tiered-risk qualifier equals :attr:`secondary_value`.
    """

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    authoritative: str = Field(
        validation_alias=AliasChoices("authoritative", "salesforce")
    )
    incoming: str
    constrain_secondary: bool = Field(
        default=False,
        validation_alias=AliasChoices(
            "constrain_secondary", "constrainSecondary", "includeTieredRisk"
        ),
    )
    secondary_value: str = Field(
        default="",
        validation_alias=AliasChoices(
            "secondary_value", "secondaryValue", "tieredRiskValue"
        ),
    )

    @field_validator("secondary_value", mode="before")
    @classmethod
    def _blank_secondary(cls, value: Any) -> Any:
        return "" if value is None else value

    def matches(self, authoritative: str, record: IncomingRecord) -> bool:
        if self.authoritative != authoritative:
            return False
        if self.incoming not in (record.effective_product, record.product):
            return False
        if self.constrain_secondary:
            return record.secondary == self.secondary_value
        return True


EquivalenceRule = Union[StatusEquivalenceRule, ProductEquivalenceRule]

DEFAULT_STATUS_RULES: tuple[StatusEquivalenceRule, ...] = (
    StatusEquivalenceRule(authoritative="Policy Issued", incoming="Approved"),
)

DEFAULT_PRODUCT_RULES: tuple[ProductEquivalenceRule, ...] = (
    ProductEquivalenceRule(
        authoritative="TruStage Advantage Whole Life (TAWL) - Preferred",
        incoming="TAWL",
        constrain_secondary=True,
        secondary_value="Good Risk",
    ),
    ProductEquivalenceRule(
        authoritative="TruStage Advantage Whole Life (TAWL) - Standard",
        incoming="TAWL",
        constrain_secondary=True,
        secondary_value="Moderate Risk",
    ),
    ProductEquivalenceRule(
        authoritative="TruStage Guaranteed Whole Life (GAWL)", incoming="GAWL"
    ),
    ProductEquivalenceRule(
        authoritative="TruStage Term Band 1", incoming="SI Term Band 1"
    ),
    ProductEquivalenceRule(
        authoritative="TruStage Term Band 2", incoming="SI Term Band 2"
    ),
)

_MODELS: dict[RuleKind, type[BaseModel]] = {
    RuleKind.STATUS: StatusEquivalenceRule,
    RuleKind.PRODUCT: ProductEquivalenceRule,
}
_DEFAULTS: dict[RuleKind, Sequence[EquivalenceRule]] = {
    RuleKind.STATUS: DEFAULT_STATUS_RULES,
    RuleKind.PRODUCT: DEFAULT_PRODUCT_RULES,
}


def default_rules(kind: RuleKind) -> list[EquivalenceRule]:
    """Return a fresh copy of the built-in rules for *kind*."""

    return list(_DEFAULTS[RuleKind(kind)])


def build_rules(
    kind: RuleKind, configs: Iterable[Mapping[str, Any] | BaseModel]
) -> list[EquivalenceRule]:
    """Validate raw rule mappings into rule models of *kind*.

    Raises:
        RuleStoreError: if any entry does not describe a valid rule.
    """

    model = _MODELS[RuleKind(kind)]
    rules: list[EquivalenceRule] = []
    for config in configs:
        if isinstance(config, model):
            rules.append(config)  # type: ignore[arg-type]
            continue
        if isinstance(config, BaseModel):
            config = config.model_dump()
        try:
            rules.append(model.model_validate(config))  # type: ignore[arg-type]
        except ValidationError as exc:
            raise RuleStoreError(f"Invalid {RuleKind(kind).value} rule: {exc}") from exc
    return rules


def dump_rules(rules: Iterable[EquivalenceRule]) -> list[dict[str, Any]]:
    return [rule.model_dump(mode="json") for rule in rules]


class KeyValueStore(Protocol):
    """Flat storage area used to persist rule lists."""

    def get(self, key: str) -> Any | None: ...

    def set(self, key: str, value: Any) -> None: ...

    def delete(self, key: str) -> None: ...


class MemoryStore:
    """Process-local key-value store."""

    def __init__(self, initial: Mapping[str, Any] | None = None) -> None:
        self._data: dict[str, Any] = dict(initial or {})
        self._lock = RLock()

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._data.get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self._data[key] = value

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)


class JsonFileStore:
    """Key-value store persisted as a single JSON document.

    Writes replace the file atomically so concurrent writers resolve to
    last-write-wins rather than a torn document.
    """

    def __init__(self, path: Path | None = None) -> None:
        env_path = os.environ.get(RULES_PATH_ENV)
        if path is None:
            path = Path(env_path).expanduser() if env_path else DEFAULT_RULES_PATH
        self._path = Path(path)
        self._lock = RLock()

    @property
    def path(self) -> Path:
        return self._path

    def _read(self) -> dict[str, Any]:
        try:
            with self._path.open("r", encoding="utf-8") as fh:
                payload = json.load(fh)
        except FileNotFoundError:
            return {}
        except json.JSONDecodeError as exc:
            log.warning(
                "reconcile.rules.store_corrupt", path=str(self._path), error=str(exc)
            )
            return {}
        except OSError as exc:
            raise RuleStoreError(f"Unable to read rule store '{self._path}': {exc}") from exc

        if not isinstance(payload, dict):
            log.warning(
                "reconcile.rules.unexpected_payload",
                path=str(self._path),
                payload_type=type(payload).__name__,
            )
            return {}
        return payload

    def _write(self, payload: Mapping[str, Any]) -> None:
        try:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self._path.name}.", dir=self._path.parent
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as fh:
                    json.dump(payload, fh, indent=2)
                os.replace(tmp_name, self._path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as exc:
            raise RuleStoreError(
                f"Unable to write rule store '{self._path}': {exc}"
            ) from exc

    def get(self, key: str) -> Any | None:
        with self._lock:
            return self._read().get(key)

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            payload = self._read()
            payload[key] = value
            self._write(payload)

    def delete(self, key: str) -> None:
        with self._lock:
            payload = self._read()
            if key in payload:
                del payload[key]
                self._write(payload)


class RuleRepository:
    """Load and save whole rule lists through a :class:`KeyValueStore`."""

    def __init__(self, store: KeyValueStore | None = None) -> None:
        self._store: KeyValueStore = store if store is not None else MemoryStore()

    @property
    def store(self) -> KeyValueStore:
        return self._store

    def load(self, kind: RuleKind) -> list[EquivalenceRule]:
        """Return the stored rules for *kind*, or the built-in defaults."""

        kind = RuleKind(kind)
        raw = self._store.get(kind.storage_key)
        if raw is None:
            return default_rules(kind)
        if not isinstance(raw, list):
            log.warning(
                "reconcile.rules.invalid_stored_value",
                kind=kind.value,
                value_type=type(raw).__name__,
            )
            return default_rules(kind)
        try:
            return build_rules(kind, raw)
        except RuleStoreError as exc:
            log.warning("reconcile.rules.invalid_stored_rules", kind=kind.value, error=str(exc))
            return default_rules(kind)

    def save(
        self, kind: RuleKind, rules: Iterable[Mapping[str, Any] | BaseModel]
    ) -> list[EquivalenceRule]:
        """Replace the stored list for *kind* with *rules*."""

        kind = RuleKind(kind)
        validated = build_rules(kind, rules)
        self._store.set(kind.storage_key, dump_rules(validated))
        log.info("reconcile.rules.saved", kind=kind.value, count=len(validated))
        return validated

    def reset(self, kind: RuleKind) -> None:
        """Forget the stored list for *kind* so the defaults apply again."""

        kind = RuleKind(kind)
        self._store.delete(kind.storage_key)
        log.info("reconcile.rules.reset", kind=kind.value)

    def load_status(self) -> list[StatusEquivalenceRule]:
        return self.load(RuleKind.STATUS)  # type: ignore[return-value]

    def load_product(self) -> list[ProductEquivalenceRule]:
        return self.load(RuleKind.PRODUCT)  # type: ignore[return-value]


def _rule_entries(data: Any) -> list[Any]:
    if data is None:
        return []
    if isinstance(data, Mapping):
        rules = data.get("rules")
        if isinstance(rules, list):
            return rules
        msg = "rule file must contain a 'rules' sequence"
        raise RuleStoreError(msg)
    if isinstance(data, list):
        return data
    msg = "unsupported rule file format"
    raise RuleStoreError(msg)


def load_rule_file(path: Path, kind: RuleKind) -> list[EquivalenceRule]:
    """Load rules of *kind* from a JSON or YAML file."""

    try:
        text = Path(path).read_text(encoding="utf-8")
    except OSError as exc:
        raise RuleStoreError(f"Unable to read rule file '{path}': {exc}") from exc
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise RuleStoreError(f"Rule file '{path}' is not valid YAML or JSON: {exc}") from exc
    return build_rules(kind, _rule_entries(data))


def dump_rule_file(path: Path, rules: Iterable[EquivalenceRule]) -> None:
    """Write *rules* to *path* as a YAML document with a ``rules`` sequence."""

    document = {"rules": dump_rules(rules)}
    try:
        Path(path).parent.mkdir(parents=True, exist_ok=True)
        Path(path).write_text(
            yaml.safe_dump(document, sort_keys=False, allow_unicode=True),
            encoding="utf-8",
        )
    except OSError as exc:
        raise RuleStoreError(f"Unable to write rule file '{path}': {exc}") from exc


__all__ = [
    "DEFAULT_PRODUCT_RULES",
    "DEFAULT_RULES_PATH",
    "DEFAULT_STATUS_RULES",
    "EquivalenceRule",
    "JsonFileStore",
    "KeyValueStore",
    "MemoryStore",
    "ProductEquivalenceRule",
    "RULES_PATH_ENV",
    "RuleKind",
    "RuleRepository",
    "StatusEquivalenceRule",
    "build_rules",
    "default_rules",
    "dump_rule_file",
    "dump_rules",
    "load_rule_file",
]
