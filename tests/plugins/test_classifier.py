"""
Tests for Table Classification

These tests validate strategy precedence, bucket ordering and the warning
for tables that fit no strategy.
"""

import logging
import pytest

from warehouse_sync.classifier import Strategy, classify_tables, strategy_for
from warehouse_sync.config import TableKind, TableSpec


def spec(name, kind, date_column=None, update_date_column=None, primary_key=None):
    return TableSpec(
        name=name,
        kind=kind,
        date_column=date_column,
        update_date_column=update_date_column,
        primary_key=primary_key,
    )


class TestStrategyFor:
    """Test the strategy predicate for one table spec."""

    def test_stored_proc(self):
        assert strategy_for(spec("sp_refresh_summary", TableKind.STORED_PROC)) == Strategy.STORED_PROC

    def test_fact_with_update_column_and_pk_is_incremental(self):
        s = spec("orders", TableKind.FACT, "order_date", "modified_at", "order_id")
        assert strategy_for(s) == Strategy.INCREMENTAL_FACT

    def test_fact_without_update_column_or_pk_is_full(self):
        assert strategy_for(spec("orders", TableKind.FACT, "order_date")) == Strategy.FULL_FACT

    @pytest.mark.parametrize("update_col,pk", [("modified_at", None), (None, "order_id")])
    def test_fact_with_only_one_of_update_column_and_pk_fits_nothing(self, update_col, pk):
        assert strategy_for(spec("orders", TableKind.FACT, "order_date", update_col, pk)) is None

    def test_dimension_ignores_date_columns(self):
        s = spec("customers", TableKind.DIMENSION, "created_at", "modified_at", "customer_id")
        assert strategy_for(s) == Strategy.DIMENSION

    def test_historical_needs_update_column(self):
        assert strategy_for(spec("orders_hist", TableKind.HISTORICAL, None, "modified_at")) == Strategy.HISTORICAL
        assert strategy_for(spec("orders_hist", TableKind.HISTORICAL)) is None


class TestClassifyTables:
    """Test partitioning table specs into buckets."""

    def test_buckets_are_disjoint_and_keep_declared_order(self):
        specs = [
            spec("fact_b", TableKind.FACT, "d"),
            spec("dim_a", TableKind.DIMENSION),
            spec("sp_one", TableKind.STORED_PROC),
            spec("fact_a", TableKind.FACT, "d"),
            spec("inc_a", TableKind.FACT, "d", "u", "id"),
            spec("hist_a", TableKind.HISTORICAL, None, "u"),
            spec("dim_b", TableKind.DIMENSION),
        ]

        classified = classify_tables(specs)

        assert [t.name for t in classified.stored_procs] == ["sp_one"]
        assert [t.name for t in classified.incremental_facts] == ["inc_a"]
        assert [t.name for t in classified.full_facts] == ["fact_b", "fact_a"]
        assert [t.name for t in classified.dimensions] == ["dim_a", "dim_b"]
        assert [t.name for t in classified.historical] == ["hist_a"]
        assert classified.unclassified == []

        all_names = [name for names in classified.names().values() for name in names]
        assert sorted(all_names) == sorted(s.name for s in specs)

    def test_misconfigured_tables_are_skipped_with_warning(self, caplog):
        specs = [
            spec("half_configured", TableKind.FACT, "d", "u", None),
            spec("orders", TableKind.FACT, "d"),
        ]

        with caplog.at_level(logging.WARNING):
            classified = classify_tables(specs)

        assert [t.name for t in classified.unclassified] == ["half_configured"]
        assert [t.name for t in classified.full_facts] == ["orders"]
        assert "Skipping half_configured" in caplog.text

    def test_names_include_every_bucket(self):
        names = classify_tables([]).names()
        assert set(names) == {
            "stored_proc", "incremental_fact", "full_fact", "dimension", "historical", "unclassified",
        }
