"""
Schema resolution tests: row-key rules, column bindings, table names and
row mapping.
"""

from dataclasses import dataclass, field

import pytest

from tablemirror import (
    AmbiguousRowKeyError,
    MappingError,
    MissingRowKeyError,
    SchemaResolutionError,
    column,
    ignored,
    table,
)

from helpers import Order, User


@dataclass
class TwoKeys:
    First: int = column(row_key=True)
    Second: int = column(row_key=True)


@dataclass
class NoKey:
    Name: str


@table("Accounts", schema="billing")
@dataclass
class Account:
    AccountNo: int = column("account_no", row_key=True)
    Owner: str = column("owner_name", default="")
    Balance: float = 0.0
    Cached: str = ignored()


@dataclass
class ArchivedAccount(Account):
    ArchivedOn: str = None


@dataclass(frozen=True)
class Frozen:
    Id: int
    Label: str = field(default="", init=False)


def test_id_member_is_default_row_key(resolver):
    schema = resolver.resolve(User)

    assert schema.row_key_member == "Id"
    assert schema.row_key_column == "Id"
    assert schema.table_name == "User"
    assert schema.columns == ["Id", "Name", "Email"]


def test_marked_row_key_and_column_overrides(resolver):
    schema = resolver.resolve(Account)

    assert schema.table_name == "billing.Accounts"
    assert schema.row_key_member == "AccountNo"
    assert schema.row_key_column == "account_no"
    assert schema.columns == ["account_no", "owner_name", "Balance"]
    assert schema.column_for("Owner") == "owner_name"


def test_ignored_member_is_not_bound(resolver):
    schema = resolver.resolve(Account)

    assert "Cached" not in [b.member for b in schema.bindings]
    with pytest.raises(KeyError):
        schema.column_for("Cached")


def test_two_row_key_marks_are_ambiguous(resolver):
    with pytest.raises(AmbiguousRowKeyError) as exc_info:
        resolver.resolve(TwoKeys)

    assert "Ambiguous row key" in str(exc_info.value)
    assert exc_info.value.members == ["First", "Second"]
    assert TwoKeys not in resolver


def test_missing_row_key(resolver):
    with pytest.raises(MissingRowKeyError) as exc_info:
        resolver.resolve(NoKey)

    assert "Row key not specified" in str(exc_info.value)


def test_row_key_optional_when_not_required(resolver):
    schema = resolver.resolve(NoKey, require_row_key=False)

    assert schema.row_key_member is None
    assert schema.row_key_column is None
    with pytest.raises(MissingRowKeyError):
        schema.row_key_of(NoKey(Name="x"))


def test_non_dataclass_rejected(resolver):
    class Plain:
        Id = 1

    with pytest.raises(SchemaResolutionError):
        resolver.resolve(Plain)


def test_subclass_does_not_inherit_table_name(resolver):
    schema = resolver.resolve(ArchivedAccount)

    assert schema.table_name == "ArchivedAccount"
    assert schema.row_key_column == "account_no"
    assert resolver.resolve(Account).table_name == "billing.Accounts"


def test_resolution_is_cached(resolver):
    first = resolver.resolve(Order)
    second = resolver.resolve(Order)

    assert first is second
    assert Order in resolver

    resolver.clear()
    assert Order not in resolver


def test_table_name_override_does_not_touch_cache(resolver):
    renamed = resolver.resolve(User, table_name="dbo.Users")

    assert renamed.table_name == "dbo.Users"
    assert resolver.resolve(User).table_name == "User"


def test_build_maps_columns_to_members(resolver):
    schema = resolver.resolve(Account)

    account = schema.build({"account_no": 7, "owner_name": "Ada", "Balance": 12.5, "extra": 1})

    assert account == Account(AccountNo=7, Owner="Ada", Balance=12.5)
    assert account.Cached is None
    assert schema.row_key_of(account) == 7


def test_build_sets_non_init_fields(resolver):
    schema = resolver.resolve(Frozen)

    value = schema.build({"Id": 3, "Label": "three"})

    assert value.Id == 3
    assert value.Label == "three"


def test_build_missing_column_raises_mapping_error(resolver):
    schema = resolver.resolve(User)

    with pytest.raises(MappingError) as exc_info:
        schema.build({"Id": 1, "Name": "a"})

    assert exc_info.value.column == "Email"
    assert exc_info.value.type_name == "User"


def test_empty_table_name_rejected():
    with pytest.raises(SchemaResolutionError):
        table("")
