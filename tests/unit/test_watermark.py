"""Tests for incremental fetching watermarks."""

import json
import logging
from unittest.mock import MagicMock

import pytest

from mongo_extractor.lib.errors import WatermarkResolutionError
from mongo_extractor.lib.models import ExportQuery, ExportSpec
from mongo_extractor.lib.watermark import (
    WatermarkTracker,
    build_incremental_filter,
    load_state,
    normalize_column,
    prior_watermark,
    save_state,
)


def _spec(**kwargs):
    return ExportSpec(name="orders", collection="orders", incremental_column="updatedAt", **kwargs)


def _tracker(output):
    runner = MagicMock()
    runner.run.return_value = output
    return WatermarkTracker(runner), runner


class TestIncrementalFilter:
    """Tests for the query and sort of an incremental export."""

    def test_first_run_fetches_everything(self):
        assert build_incremental_filter("updatedAt", None) == ("{}", '{"updatedAt":1}')

    def test_scalar_lower_bound(self):
        query, sort = build_incremental_filter("id", 5)

        assert query == '{"id":{"$gte":5}}'
        assert sort == '{"id":1}'

    def test_date_lower_bound_wrapped(self):
        query, _ = build_incremental_filter("updatedAt", 'ISODate("2024-01-02T00:00:00Z")')

        assert json.loads(query) == {"updatedAt": {"$gte": {"$date": "2024-01-02T00:00:00Z"}}}

    def test_object_id_lower_bound_wrapped(self):
        query, _ = build_incremental_filter("_id", 'ObjectId("5f1d7a")')

        assert json.loads(query) == {"_id": {"$gte": {"$oid": "5f1d7a"}}}

    def test_string_lower_bound_verbatim(self):
        query, _ = build_incremental_filter("updatedAt", "2024-01-02T00:00:00Z")

        assert json.loads(query) == {"updatedAt": {"$gte": "2024-01-02T00:00:00Z"}}

    def test_normalize_column(self):
        assert normalize_column("updatedAt.$date") == "updatedAt"
        assert normalize_column("meta.updatedAt") == "meta.updatedAt"


class TestProbeQuery:
    """Tests for the narrow query resolving the next watermark."""

    def test_without_limit_takes_maximum(self):
        probe = ExportQuery("orders", query="{}", sort='{"updatedAt":1}').probe("updatedAt")

        assert probe == ExportQuery("orders", query="{}", sort='{"updatedAt":-1}', limit=1)

    def test_with_limit_takes_last_fetched(self):
        probe = ExportQuery("orders", query="{}", sort='{"updatedAt":1}', limit=100).probe("updatedAt")

        assert probe == ExportQuery("orders", query="{}", sort='{"updatedAt":1}', limit=1, skip=99)


class TestProbe:
    """Tests for WatermarkTracker.probe."""

    def test_scalar_value(self, connection):
        tracker, runner = _tracker('{"_id":1,"updatedAt":"2024-01-02T00:00:00Z"}\n')

        assert tracker.probe(connection, _spec()) == "2024-01-02T00:00:00Z"

        query = runner.run.call_args.args[1]
        assert query.limit == 1
        assert query.sort == '{"updatedAt":-1}'

    def test_date_value_in_display_form(self, connection):
        tracker, _ = _tracker('{"updatedAt":{"$date":"2024-01-02T00:00:00Z"}}\n')

        assert tracker.probe(connection, _spec()) == 'ISODate("2024-01-02T00:00:00Z")'

    def test_nested_column(self, connection):
        tracker, _ = _tracker('{"meta":{"seq":7}}\n')
        spec = ExportSpec(name="orders", collection="orders", incremental_column="meta.seq")

        assert tracker.probe(connection, spec) == 7

    def test_no_document(self, connection):
        tracker, _ = _tracker("\n")

        assert tracker.probe(connection, _spec()) is None

    def test_missing_column(self, connection):
        tracker, _ = _tracker('{"_id":1}\n')

        with pytest.raises(WatermarkResolutionError, match='Column "updatedAt" does not exists.'):
            tracker.probe(connection, _spec())

    def test_missing_nested_column(self, connection):
        tracker, _ = _tracker('{"meta":{}}\n')
        spec = ExportSpec(name="orders", collection="orders", incremental_column="meta.seq")

        with pytest.raises(WatermarkResolutionError, match=r'Column "seq" \("meta.seq"\) does not exists.'):
            tracker.probe(connection, spec)

    def test_non_scalar_value(self, connection):
        tracker, _ = _tracker('{"updatedAt":{"a":1}}\n')

        with pytest.raises(WatermarkResolutionError, match="Unexpected value") as exc_info:
            tracker.probe(connection, _spec())

        assert exc_info.value.column == "updatedAt"

    def test_export_without_column_rejected(self, connection):
        tracker, runner = _tracker('{"updatedAt":5}\n')
        spec = ExportSpec(name="orders", collection="orders")

        with pytest.raises(WatermarkResolutionError, match="has no incremental fetching column"):
            tracker.probe(connection, spec)

        runner.run.assert_not_called()

    def test_invalid_output(self, connection):
        tracker, _ = _tracker("not json\n")

        with pytest.raises(WatermarkResolutionError, match="Could not decode output of incremental fetching"):
            tracker.probe(connection, _spec())


class TestState:
    """Tests for loading and saving state files."""

    def test_save_and_load(self, tmp_path):
        path = tmp_path / "out" / "state.json"

        save_state(path, "2024-01-02T00:00:00Z")

        assert json.loads(path.read_text(encoding="utf-8")) == {"lastFetchedRow": "2024-01-02T00:00:00Z"}
        assert load_state(path) == {"lastFetchedRow": "2024-01-02T00:00:00Z"}

    def test_missing_file(self, tmp_path):
        assert load_state(tmp_path / "state.json") == {}

    def test_invalid_file(self, tmp_path, caplog):
        path = tmp_path / "state.json"
        path.write_text("{broken", encoding="utf-8")

        with caplog.at_level(logging.WARNING):
            assert load_state(path) == {}

        assert "Invalid state file" in caplog.text

    def test_prior_single_export(self):
        assert prior_watermark({"lastFetchedRow": 5}, None, legacy=False) == 5
        assert prior_watermark({}, None, legacy=False) is None

    def test_prior_keyed_by_export_id(self):
        state = {"lastFetchedRow": {"1": 5, "2": 'ISODate("2024-01-02T00:00:00Z")'}}

        assert prior_watermark(state, "2", legacy=True) == 'ISODate("2024-01-02T00:00:00Z")'
        assert prior_watermark(state, "3", legacy=True) is None

    def test_prior_shape_mismatch_ignored(self):
        assert prior_watermark({"lastFetchedRow": {"1": 5}}, "1", legacy=False) is None
        assert prior_watermark({"lastFetchedRow": 5}, "1", legacy=True) is None
