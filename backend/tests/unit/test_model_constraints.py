"""Tests to enforce model constraints.

Token amounts can exceed 64 bits and must round-trip exactly, so they never
live in float, NUMERIC or BIGINT columns.
"""

import sys
from pathlib import Path

# Add backend to Python path
backend_path = Path(__file__).parent.parent.parent
sys.path.insert(0, str(backend_path))

import pytest

from msvault.core.database import Base
import msvault.models  # noqa: F401 - registers every table
from msvault.models.vault import TokenAmount

AMOUNT_COLUMNS = {
    "vault_withdrawal_requests": {"shares_burned", "assets_owed"},
    "vault_share_balances": {"shares"},
    "vault_state": {"total_shares", "total_queued_assets", "cached_total_value"},
    "sim_asset_balances": {"balance"},
    "sim_asset_allowances": {"amount"},
    "sim_strategy_positions": {"units"},
}


def _tables():
    return {mapper.persist_selectable.name: mapper.persist_selectable for mapper in Base.registry.mappers}


class TestModelConstraints:
    """Enforce model design constraints."""

    def test_amount_columns_are_exact(self):
        tables = _tables()
        violations = []
        for table_name, columns in AMOUNT_COLUMNS.items():
            for column_name in columns:
                column = tables[table_name].columns[column_name]
                if not isinstance(column.type, TokenAmount):
                    violations.append(f"{table_name}.{column_name} is {column.type!r}")

        if violations:
            pytest.fail("Amount columns must use TokenAmount:\n" + "\n".join(f"  - {v}" for v in violations))

    def test_no_float_columns(self):
        violations = [
            f"{table.name}.{column.name}"
            for table in _tables().values()
            for column in table.columns
            if column.type.__class__.__name__ in ("Float", "REAL", "DOUBLE", "Numeric")
        ]
        assert violations == []

    def test_models_have_required_metadata(self):
        """Every table has a primary key and is scoped by vault address."""
        missing_pk = []
        unscoped = []
        for table in _tables().values():
            if not table.primary_key:
                missing_pk.append(table.name)
            if "vault_address" not in table.columns:
                unscoped.append(table.name)

        if missing_pk:
            pytest.fail(f"Tables missing primary key: {', '.join(missing_pk)}")
        if unscoped:
            pytest.fail(f"Tables without vault_address: {', '.join(unscoped)}")

    def test_token_amount_round_trip_values(self):
        amount = TokenAmount()
        big = 2**200 + 1
        stored = amount.process_bind_param(big, None)
        assert stored == str(big)
        assert amount.process_result_value(stored, None) == big
        assert amount.process_bind_param(None, None) is None
