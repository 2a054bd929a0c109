"""
Schema Resolution
=================

Maps a value type to the metadata the replication engine needs:
- Table identifier (optionally schema-qualified)
- Member-to-column bindings
- The single row-key column that identifies a row

Value types are dataclasses. Column names, row keys and ignored members are
declared with field metadata instead of being discovered at runtime:

    @table("Users", schema="dbo")
    @dataclass
    class User:
        Id: int = column(row_key=True)
        Name: str = column("UserName")
        Cached: str = ignored()
"""

import dataclasses
import logging
import threading
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Tuple

from .errors import AmbiguousRowKeyError, MappingError, MissingRowKeyError, SchemaResolutionError

logger = logging.getLogger(__name__)

COLUMN_NAME = "tablemirror.column"
ROW_KEY = "tablemirror.row_key"
IGNORE = "tablemirror.ignore"

TABLE_ATTR = "__tablemirror_table__"
DEFAULT_ROW_KEY_MEMBER = "Id"
NAMESPACE_SEPARATOR = "."


def column(name: Optional[str] = None, *, row_key: bool = False, **field_kwargs):
    """
    Declare a mapped dataclass field.

    Args:
        name: Column name override (defaults to the member name)
        row_key: Designate this member as the row key
        **field_kwargs: Passed through to dataclasses.field

    Returns:
        dataclasses.Field carrying the column metadata
    """
    metadata = dict(field_kwargs.pop("metadata", None) or {})
    if name is not None:
        metadata[COLUMN_NAME] = name
    if row_key:
        metadata[ROW_KEY] = True
    return dataclasses.field(metadata=metadata, **field_kwargs)


def ignored(**field_kwargs):
    """Declare a dataclass field that is not read from the source."""
    metadata = dict(field_kwargs.pop("metadata", None) or {})
    metadata[IGNORE] = True
    if "default" not in field_kwargs and "default_factory" not in field_kwargs:
        field_kwargs["default"] = None
    return dataclasses.field(metadata=metadata, **field_kwargs)


def table(name: str, schema: Optional[str] = None):
    """Class decorator naming the source table of a value type; not inherited by subclasses."""
    if not name:
        raise SchemaResolutionError("Table name must not be empty")

    def decorate(cls):
        qualified = f"{schema}{NAMESPACE_SEPARATOR}{name}" if schema else name
        setattr(cls, TABLE_ATTR, qualified)
        return cls

    return decorate


@dataclass(frozen=True)
class ColumnBinding:
    member: str
    column: str
    init: bool = True


@dataclass(frozen=True)
class TypeSchema:
    """Resolved, immutable metadata of one value type."""

    value_type: type
    table_name: str
    bindings: Tuple[ColumnBinding, ...]
    row_key_member: Optional[str] = None
    row_key_column: Optional[str] = None

    @property
    def type_name(self) -> str:
        return self.value_type.__name__

    @property
    def columns(self) -> List[str]:
        return [binding.column for binding in self.bindings]

    def column_for(self, member: str) -> str:
        for binding in self.bindings:
            if binding.member == member:
                return binding.column
        raise KeyError(member)

    def build(self, row: Mapping[str, Any]) -> Any:
        """
        Map a fetched row to a new instance of the value type.

        Args:
            row: Column name -> value mapping of one fetched row

        Returns:
            Instance of value_type

        Raises:
            MappingError: if a bound column is absent from the row
        """
        init_kwargs = {}
        late = []
        for binding in self.bindings:
            try:
                value = row[binding.column]
            except KeyError:
                raise MappingError(self.type_name, binding.column) from None
            if binding.init:
                init_kwargs[binding.member] = value
            else:
                late.append((binding.member, value))

        try:
            instance = self.value_type(**init_kwargs)
        except TypeError as e:
            raise MappingError(self.type_name, "", f"Cannot construct {self.type_name}: {e}") from e

        for member, value in late:
            # frozen dataclasses reject setattr
            object.__setattr__(instance, member, value)
        return instance

    def row_key_of(self, value: Any) -> Any:
        if self.row_key_member is None:
            raise MissingRowKeyError(self.type_name)
        return getattr(value, self.row_key_member)


class SchemaResolver:
    """
    Resolves and caches TypeSchema per value type.

    The registry is read-mostly: lookups of an already resolved type take no
    lock; the first resolution of a type is serialized so each type is
    reflected exactly once.
    """

    def __init__(self):
        self._cache: Dict[type, TypeSchema] = {}
        self._lock = threading.Lock()

    def resolve(
        self,
        value_type: type,
        table_name: Optional[str] = None,
        require_row_key: bool = True
    ) -> TypeSchema:
        """
        Resolve metadata for a value type.

        Args:
            value_type: Dataclass describing a source row
            table_name: Explicit table override (takes precedence over @table)
            require_row_key: Raise MissingRowKeyError when no row key resolves

        Returns:
            TypeSchema for the type

        Raises:
            AmbiguousRowKeyError: several members are marked as row key
            MissingRowKeyError: no row key resolvable and require_row_key is set
            SchemaResolutionError: value_type is not a dataclass
        """
        schema = self._cache.get(value_type)
        if schema is None:
            with self._lock:
                schema = self._cache.get(value_type)
                if schema is None:
                    schema = self._build(value_type)
                    self._cache[value_type] = schema
                    logger.debug(
                        f"Resolved schema for {schema.type_name}: table={schema.table_name}, "
                        f"columns={schema.columns}, row_key={schema.row_key_column}"
                    )

        if require_row_key and schema.row_key_member is None:
            raise MissingRowKeyError(schema.type_name)

        if table_name:
            schema = dataclasses.replace(schema, table_name=table_name)
        return schema

    def clear(self):
        with self._lock:
            self._cache.clear()

    def __contains__(self, value_type: type) -> bool:
        return value_type in self._cache

    def _build(self, value_type: type) -> TypeSchema:
        if not isinstance(value_type, type) or not dataclasses.is_dataclass(value_type):
            raise SchemaResolutionError(
                f"{getattr(value_type, '__name__', value_type)!r} is not a dataclass; "
                f"declare value types with @dataclass"
            )

        fields = [f for f in dataclasses.fields(value_type) if not f.metadata.get(IGNORE)]
        bindings = tuple(
            ColumnBinding(member=f.name, column=f.metadata.get(COLUMN_NAME, f.name), init=f.init)
            for f in fields
        )

        row_key_member = None
        marked = [f.name for f in fields if f.metadata.get(ROW_KEY)]
        if len(marked) > 1:
            raise AmbiguousRowKeyError(value_type.__name__, marked)
        if marked:
            row_key_member = marked[0]
        elif any(f.name == DEFAULT_ROW_KEY_MEMBER for f in fields):
            row_key_member = DEFAULT_ROW_KEY_MEMBER

        row_key_column = None
        if row_key_member is not None:
            row_key_column = next(b.column for b in bindings if b.member == row_key_member)

        return TypeSchema(
            value_type=value_type,
            table_name=value_type.__dict__.get(TABLE_ATTR) or value_type.__name__,
            bindings=bindings,
            row_key_member=row_key_member,
            row_key_column=row_key_column,
        )


default_resolver = SchemaResolver()
