from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field

from .errors import NotFoundError, ValidationError
from .values import AttributeValue, Item


class ModelDefinitionError(ValueError):
    pass


@dataclass(frozen=True)
class Projection:
    type: str
    fields: tuple[str, ...] = ()

    @staticmethod
    def all() -> Projection:
        return Projection(type="ALL")

    @staticmethod
    def keys_only() -> Projection:
        return Projection(type="KEYS_ONLY")

    @staticmethod
    def include(*fields: str) -> Projection:
        return Projection(type="INCLUDE", fields=tuple(fields))


@dataclass(frozen=True)
class IndexDefinition:
    name: str
    hash_key: str
    sort_key: str | None = None
    projection: Projection = field(default_factory=Projection.all)

    @property
    def key_attributes(self) -> tuple[str, ...]:
        if self.sort_key is None:
            return (self.hash_key,)
        return (self.hash_key, self.sort_key)


@dataclass(frozen=True)
class TableMetadata:
    name: str
    hash_key: str
    sort_key: str | None = None
    indexes: tuple[IndexDefinition, ...] = ()
    ttl_attribute: str | None = None
    attribute_types: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.name:
            raise ModelDefinitionError("table name is required")
        if not self.hash_key:
            raise ModelDefinitionError(f"table {self.name}: hash key is required")
        if self.sort_key is not None and self.sort_key == self.hash_key:
            raise ModelDefinitionError(f"table {self.name}: sort key must differ from hash key")

        seen: set[str] = set()
        for index in self.indexes:
            if index.name in seen:
                raise ModelDefinitionError(f"duplicate index name: {index.name}")
            seen.add(index.name)
            if not index.hash_key:
                raise ModelDefinitionError(f"index {index.name}: hash key is required")
            if index.projection.type not in {"ALL", "KEYS_ONLY", "INCLUDE"}:
                raise ModelDefinitionError(
                    f"index {index.name}: unsupported projection type: {index.projection.type}"
                )
            if index.projection.type != "INCLUDE" and index.projection.fields:
                raise ModelDefinitionError(
                    f"index {index.name}: only INCLUDE projections list attributes"
                )
        for name, kind in self.attribute_types.items():
            if kind not in {"S", "N", "B"}:
                raise ModelDefinitionError(f"attribute {name}: key attribute types must be S, N or B (got {kind})")

    @property
    def key_attributes(self) -> tuple[str, ...]:
        if self.sort_key is None:
            return (self.hash_key,)
        return (self.hash_key, self.sort_key)

    def index(self, name: str) -> IndexDefinition:
        for index in self.indexes:
            if index.name == name:
                return index
        raise NotFoundError(f"Index not found: {name} (table {self.name})")

    def check_key_type(self, name: str, av: AttributeValue) -> None:
        expected = self.attribute_types.get(name)
        if expected is not None and av.type != expected:
            raise ValidationError(
                "One or more parameter values were invalid: Type mismatch for key "
                f"{name} expected: {expected} actual: {av.type}"
            )

    def key_of(self, item: Mapping[str, AttributeValue]) -> Item:
        return {name: item[name] for name in self.key_attributes if name in item}

    def extract_key(self, key: Mapping[str, AttributeValue]) -> Item:
        missing = [name for name in self.key_attributes if name not in key]
        if missing:
            raise ValidationError(
                "One or more parameter values were invalid: Missing the key "
                f"{missing[0]} in the item"
            )
        extra = sorted(set(key.keys()) - set(self.key_attributes))
        if extra:
            raise ValidationError(
                "The provided key element does not match the schema "
                f"(unexpected attribute {extra[0]})"
            )
        for name in self.key_attributes:
            _require_key_scalar(name, key[name])
            self.check_key_type(name, key[name])
        return {name: key[name] for name in self.key_attributes}


def gsi(
    name: str,
    *,
    hash_key: str,
    sort_key: str | None = None,
    projection: Projection | None = None,
) -> IndexDefinition:
    return IndexDefinition(
        name=name, hash_key=hash_key, sort_key=sort_key, projection=projection or Projection.all()
    )


def table(
    name: str,
    *,
    hash_key: str,
    sort_key: str | None = None,
    indexes: Sequence[IndexDefinition] = (),
    ttl_attribute: str | None = None,
    attribute_types: Mapping[str, str] | None = None,
) -> TableMetadata:
    return TableMetadata(
        name=name,
        hash_key=hash_key,
        sort_key=sort_key,
        indexes=tuple(indexes),
        ttl_attribute=ttl_attribute,
        attribute_types=dict(attribute_types or {}),
    )


def _require_key_scalar(name: str, av: AttributeValue) -> None:
    if not av.is_scalar:
        raise ValidationError(
            "One or more parameter values were invalid: Type mismatch for key "
            f"{name}: key attributes must be of type S, N or B"
        )
    if av.type in {"S", "B"} and len(av.value) == 0:
        raise ValidationError(
            "One or more parameter values are not valid. The AttributeValue for a key attribute "
            f"cannot contain an empty {'string' if av.type == 'S' else 'binary'} value. Key: {name}"
        )
