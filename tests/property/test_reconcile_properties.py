"""
Property-based tests for change-set computation using Hypothesis.

Invariants that hold for all inputs:
- Reconciling a table against itself yields no changes
- Every key lands in exactly one of insert, update, delete or unchanged
- Applying a change set makes the target converge on the source
- Disabled operations never appear in a change set
"""

from typing import Any

from hypothesis import given, settings, strategies as st
from prometheus_client import CollectorRegistry

from syncray.reconciliation.differ import ChangeSet, Reconciler
from syncray.snapshot.models import Column, SyncRule
from syncray.utils.metrics import SyncMetrics

METRICS = SyncMetrics(registry=CollectorRegistry())

COLUMNS = [
    Column("id", "int", nullable=False),
    Column("name", "nvarchar(50)"),
    Column("score", "int"),
]

names = st.one_of(st.none(), st.text(alphabet="abcdef ", max_size=6))
scores = st.one_of(st.none(), st.integers(min_value=-5, max_value=5))

tables = st.dictionaries(
    keys=st.integers(min_value=0, max_value=40),
    values=st.tuples(names, scores),
    max_size=25,
).map(lambda d: [{"id": k, "name": v[0], "score": v[1]} for k, v in d.items()])


def reconcile(source, target, **rule_options) -> ChangeSet:
    options = {"allow_deletes": True, **rule_options}
    rule = SyncRule(source_table="t", match_on=("id",), **options)
    return Reconciler(rule, COLUMNS, METRICS).reconcile(source, target)


def apply_in_memory(target: list[dict[str, Any]], change_set: ChangeSet) -> list[dict[str, Any]]:
    rows = {row["id"]: dict(row) for row in target}
    for row in change_set.deletes:
        del rows[row["id"]]
    for update in change_set.updates:
        rows[update.key["id"]].update(update.changes)
    for row in change_set.inserts:
        rows[row["id"]] = dict(row)
    return sorted(rows.values(), key=lambda row: row["id"])


@given(rows=tables)
def test_reconcile_against_itself_is_empty(rows):
    change_set = reconcile(rows, [dict(row) for row in reversed(rows)])

    assert change_set.is_empty


@given(source=tables, target=tables)
def test_keys_are_partitioned(source, target):
    change_set = reconcile(source, target)

    source_keys = {row["id"] for row in source}
    target_keys = {row["id"] for row in target}
    inserted = {row["id"] for row in change_set.inserts}
    updated = {update.key["id"] for update in change_set.updates}
    deleted = {row["id"] for row in change_set.deletes}

    assert inserted == source_keys - target_keys
    assert deleted == target_keys - source_keys
    assert updated <= source_keys & target_keys
    assert len(updated) == len(change_set.updates)


@given(source=tables, target=tables)
def test_updates_only_carry_differing_fields(source, target):
    target_by_id = {row["id"]: row for row in target}

    for update in reconcile(source, target).updates:
        assert update.changed_fields
        current = target_by_id[update.key["id"]]
        for change in update.changed_fields:
            assert change.field != "id"
            assert change.old_value == current[change.field]
            assert change.new_value != change.old_value


@settings(max_examples=50)
@given(source=tables, target=tables)
def test_applying_changes_converges(source, target):
    change_set = reconcile(source, target)

    result = apply_in_memory(target, change_set)

    assert result == sorted(source, key=lambda row: row["id"])
    assert reconcile(source, result).is_empty


@given(
    source=tables,
    target=tables,
    allow_inserts=st.booleans(),
    allow_updates=st.booleans(),
    allow_deletes=st.booleans(),
)
def test_disabled_operations_are_never_planned(source, target, allow_inserts, allow_updates, allow_deletes):
    change_set = reconcile(
        source,
        target,
        allow_inserts=allow_inserts,
        allow_updates=allow_updates,
        allow_deletes=allow_deletes,
    )

    if not allow_inserts:
        assert change_set.inserts == []
    if not allow_updates:
        assert change_set.updates == []
    if not allow_deletes:
        assert change_set.deletes == []


@given(source=tables, target=tables)
def test_ignored_columns_never_produce_updates(source, target):
    change_set = reconcile(source, target, ignore_columns=frozenset({"score"}))

    for update in change_set.updates:
        assert [change.field for change in update.changed_fields] == ["name"]
