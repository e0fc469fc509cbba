"""
Sync rule resolution against the live target schema.
"""

import logging

from syncray.database.inspector import SchemaInspector
from syncray.exceptions import ConfigurationError, SchemaError
from syncray.snapshot.models import SyncRule

logger = logging.getLogger(__name__)


def resolve_sync_rule(rule: SyncRule, inspector: SchemaInspector) -> SyncRule:
    """
    Resolve and check a rule against the target table.

    An empty ``match_on`` is taken from the target primary key.

    Raises:
        SchemaError: If the target table or a named column does not exist
        ConfigurationError: If no match columns can be resolved, they
            overlap the ignored columns, or a match column is an identity
            column that inserts would have to generate
    """
    table = rule.table
    columns = inspector.columns(table)
    names = {col.name for col in columns}

    match_on = rule.match_on
    if not match_on:
        match_on = tuple(inspector.primary_key(table))
        if not match_on and rule.replace_mode:
            return rule
        if not match_on:
            raise ConfigurationError(
                f"{table} has no primary key; matchOn must be configured", table=table
            )
        logger.debug(f"{table}: matchOn resolved from primary key: {list(match_on)}")

    missing = [col for col in match_on if col not in names]
    if missing:
        raise SchemaError(
            f"matchOn column(s) not found in {table}: {', '.join(missing)}", table=table
        )

    overlap = set(match_on) & rule.ignore_columns
    if overlap:
        raise ConfigurationError(
            f"matchOn columns cannot be ignored: {', '.join(sorted(overlap))}", table=table
        )

    unknown_ignored = sorted(rule.ignore_columns - names)
    if unknown_ignored:
        logger.warning(f"{table}: ignored column(s) not in table: {', '.join(unknown_ignored)}")

    identity = set(inspector.identity_columns(table))
    identity_match = [col for col in match_on if col in identity]
    if identity_match and rule.allow_inserts and not rule.preserve_identity and not rule.replace_mode:
        raise ConfigurationError(
            f"matchOn uses identity column(s) {', '.join(identity_match)} in {table}; "
            f"inserted rows would get new values and never match. "
            f"Set preserveIdentity or match on a natural key",
            table=table,
        )

    return rule.with_match_on(match_on)
