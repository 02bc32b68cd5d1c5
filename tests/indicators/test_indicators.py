"""
Tests for Indicator Definitions and Evaluation.

============================================================
PURPOSE
============================================================
Verify the pure evaluator and the validated catalog.

TEST PRINCIPLES:
- Evaluation is deterministic and exact at the boundaries
- Invalid definitions never reach the store
- Soft limits warn, hard limits reject

============================================================
"""

import json

import pytest

from core.exceptions import (
    ConfigurationError,
    DuplicateIndicatorError,
    EvaluationError,
    InvalidIndicatorError,
    PersistenceError,
)
from indicators.catalog import IndicatorCatalog, parse_definition
from indicators.evaluator import classify_severity, compare, deviation_percent, evaluate
from indicators.models import (
    AlertSeverity,
    ComparisonOperator,
    DeviationConfig,
    IndicatorType,
    ThresholdConfig,
    TrendAnalysisConfig,
)


# ============================================================
# FIXTURES
# ============================================================

@pytest.fixture
def definition():
    return {
        "name": "Checkout success rate",
        "owner": "payments",
        "source_ref": "checkout.success",
        "frequency_minutes": 5,
        "priority": 2,
        "config": {
            "indicator_type": "success_rate",
            "deviation_percent": 10,
            "last_minutes": 60,
            "minimum_threshold": 10,
        },
    }


@pytest.fixture
def catalog(indicator_store):
    return IndicatorCatalog(indicator_store)


# ============================================================
# EVALUATOR TESTS
# ============================================================

class TestCompare:
    """Tests for threshold comparison."""

    @pytest.mark.parametrize(
        "op,current,threshold,expected",
        [
            (ComparisonOperator.GT, 10.0, 10.0, False),
            (ComparisonOperator.GT, 10.5, 10.0, True),
            (ComparisonOperator.GTE, 10.0, 10.0, True),
            (ComparisonOperator.LT, 9.9, 10.0, True),
            (ComparisonOperator.LTE, 10.0, 10.0, True),
            (ComparisonOperator.LTE, 10.1, 10.0, False),
            (ComparisonOperator.EQ, 10.0, 10.0, True),
            (ComparisonOperator.EQ, 10.0001, 10.0, False),
        ],
    )
    def test_operators_are_exact(self, op, current, threshold, expected):
        """Each operator compares exactly, with no tolerance."""
        assert compare(current, threshold, op) is expected

    def test_accepts_raw_operator_value(self):
        """The wire value of an operator works as well as the enum."""
        assert compare(5.0, 1.0, "gt") is True


class TestDeviation:
    """Tests for deviation and severity helpers."""

    def test_deviation_up_and_down(self):
        """Deviation is signed relative to the baseline."""
        assert deviation_percent(120.0, 100.0) == 20.0
        assert deviation_percent(80.0, 100.0) == -20.0

    def test_zero_baseline_raises(self):
        """A zero baseline cannot produce a deviation."""
        with pytest.raises(EvaluationError):
            deviation_percent(50.0, 0.0)

    def test_missing_baseline_raises(self):
        """A missing baseline cannot produce a deviation."""
        with pytest.raises(EvaluationError):
            deviation_percent(50.0, None)

    @pytest.mark.parametrize(
        "deviation,expected",
        [
            (55.0, AlertSeverity.CRITICAL),
            (50.0, AlertSeverity.CRITICAL),
            (-55.0, AlertSeverity.CRITICAL),
            (30.0, AlertSeverity.HIGH),
            (25.0, AlertSeverity.HIGH),
            (12.0, AlertSeverity.MEDIUM),
            (10.0, AlertSeverity.MEDIUM),
            (5.0, AlertSeverity.LOW),
            (0.0, AlertSeverity.LOW),
        ],
    )
    def test_severity_buckets(self, deviation, expected):
        """Severity follows the magnitude of the deviation."""
        assert classify_severity(deviation) == expected


class TestEvaluate:
    """Tests for the evaluate() entry point."""

    def test_threshold_breach_uses_default_severity(self):
        """Threshold indicators carry no deviation and the default severity."""
        config = ThresholdConfig(threshold_value=10.0, comparison_operator=ComparisonOperator.GTE)

        result = evaluate(IndicatorType.THRESHOLD, config, 10.0, None)

        assert result.should_alert is True
        assert result.deviation_percent is None
        assert result.severity == AlertSeverity.MEDIUM

    def test_threshold_not_breached(self):
        """A value on the wrong side of the threshold does not alert."""
        config = ThresholdConfig(threshold_value=10.0, comparison_operator=ComparisonOperator.GT)

        result = evaluate(IndicatorType.THRESHOLD, config, 10.0, 3.0)

        assert result.should_alert is False

    def test_deviation_at_exact_limit_alerts(self):
        """A deviation equal to the configured percentage alerts."""
        config = DeviationConfig(indicator_type="success_rate", deviation_percent=20, last_minutes=60)

        result = evaluate(IndicatorType.SUCCESS_RATE, config, 120.0, 100.0)

        assert result.should_alert is True
        assert result.deviation_percent == 20.0
        assert result.severity == AlertSeverity.MEDIUM

    def test_deviation_below_limit_does_not_alert(self):
        """A small deviation is recorded but does not alert."""
        config = DeviationConfig(indicator_type="transaction_volume", deviation_percent=25, last_minutes=60)

        result = evaluate(IndicatorType.TRANSACTION_VOLUME, config, 110.0, 100.0)

        assert result.should_alert is False
        assert result.deviation_percent == 10.0

    def test_below_minimum_threshold_never_alerts(self):
        """Values under the minimum threshold are ignored entirely."""
        config = DeviationConfig(
            indicator_type="success_rate",
            deviation_percent=10,
            last_minutes=60,
            minimum_threshold=10,
        )

        result = evaluate(IndicatorType.SUCCESS_RATE, config, 5.0, 100.0)

        assert result.should_alert is False
        assert result.deviation_percent is None
        assert result.error is None

    def test_zero_baseline_reports_error(self):
        """A zero baseline yields no alert and an evaluation error."""
        config = DeviationConfig(indicator_type="success_rate", deviation_percent=10, last_minutes=60)

        result = evaluate(IndicatorType.SUCCESS_RATE, config, 50.0, 0.0)

        assert result.should_alert is False
        assert result.deviation_percent is None
        assert isinstance(result.error, EvaluationError)

    def test_trend_analysis_drop(self):
        """Trend analysis alerts on a large drop with matching severity."""
        config = TrendAnalysisConfig(deviation_percent=20, last_minutes=120)

        result = evaluate(IndicatorType.TREND_ANALYSIS, config, 70.0, 100.0)

        assert result.should_alert is True
        assert result.deviation_percent == -30.0
        assert result.severity == AlertSeverity.HIGH

    def test_mismatched_config_rejected(self):
        """A config for another indicator type is a configuration error."""
        config = ThresholdConfig(threshold_value=1.0, comparison_operator=ComparisonOperator.GT)

        with pytest.raises(ConfigurationError):
            evaluate(IndicatorType.SUCCESS_RATE, config, 1.0, 1.0)

    def test_identical_inputs_identical_results(self):
        """Evaluation is deterministic."""
        config = DeviationConfig(indicator_type="success_rate", deviation_percent=10, last_minutes=60)

        first = evaluate(IndicatorType.SUCCESS_RATE, config, 87.5, 99.0)
        second = evaluate(IndicatorType.SUCCESS_RATE, config, 87.5, 99.0)

        assert first == second


# ============================================================
# MODEL TESTS
# ============================================================

class TestIndicatorModel:
    """Tests for the Indicator record."""

    def test_rejects_non_positive_frequency(self, make_indicator):
        """Frequency must be positive."""
        with pytest.raises(ValueError):
            make_indicator(frequency_minutes=0)

    def test_window_defaults_to_frequency(self, make_indicator):
        """Threshold indicators collect over their own frequency."""
        indicator = make_indicator(kind="threshold", frequency_minutes=15)

        assert indicator.window_minutes == 15
        assert indicator.indicator_type == IndicatorType.THRESHOLD

    def test_window_uses_last_minutes(self, make_indicator):
        """Deviation indicators collect over their lookback window."""
        indicator = make_indicator(last_minutes=90)

        assert indicator.window_minutes == 90

    def test_next_run_at(self, make_indicator, now):
        """Next run is last run plus frequency, or None if never run."""
        indicator = make_indicator(frequency_minutes=10)
        assert indicator.next_run_at is None

        ran = indicator.copy(last_run=now)
        assert (ran.next_run_at - now).total_seconds() == 600


# ============================================================
# DEFINITION TESTS
# ============================================================

class TestIndicatorDefinition:
    """Tests for definition validation limits."""

    def test_valid_definition(self, definition):
        """A well-formed payload parses into the right config variant."""
        parsed = parse_definition(definition)

        assert parsed.indicator_type == IndicatorType.SUCCESS_RATE
        assert isinstance(parsed.config, DeviationConfig)
        assert parsed.warnings() == []

    def test_name_characters_restricted(self, definition):
        """Names only allow letters, digits, spaces and - _ ."""
        definition["name"] = "checkout; DROP TABLE"

        with pytest.raises(InvalidIndicatorError) as exc_info:
            parse_definition(definition)

        assert any(error.startswith("name") for error in exc_info.value.errors)

    def test_deviation_percent_bounded(self, definition):
        """Deviation percent above 100 is rejected."""
        definition["config"]["deviation_percent"] = 150

        with pytest.raises(InvalidIndicatorError):
            parse_definition(definition)

    def test_frequency_bounded(self, definition):
        """Frequency above one week is rejected."""
        definition["frequency_minutes"] = 10081

        with pytest.raises(InvalidIndicatorError):
            parse_definition(definition)

    def test_urgent_priority_needs_slow_frequency(self, definition):
        """Priority 1 indicators may not run more often than every 5 minutes."""
        definition["priority"] = 1
        definition["frequency_minutes"] = 1

        with pytest.raises(InvalidIndicatorError):
            parse_definition(definition)

    def test_unknown_config_field_rejected(self, definition):
        """A config cannot carry fields its type does not understand."""
        definition["config"]["threshold_value"] = 3

        with pytest.raises(InvalidIndicatorError):
            parse_definition(definition)

    def test_unknown_indicator_type_rejected(self, definition):
        """The type tag must name a supported variant."""
        definition["config"]["indicator_type"] = "anomaly"

        with pytest.raises(InvalidIndicatorError):
            parse_definition(definition)

    def test_long_window_warns(self, definition):
        """A lookback over a week is allowed with a warning."""
        definition["config"]["last_minutes"] = 20000

        parsed = parse_definition(definition)

        assert len(parsed.warnings()) == 1

    def test_short_trend_window_warns(self, definition):
        """Trend windows shorter than an hour warn."""
        definition["config"] = {
            "indicator_type": "trend_analysis",
            "deviation_percent": 15,
            "last_minutes": 30,
        }

        parsed = parse_definition(definition)

        assert isinstance(parsed.config, TrendAnalysisConfig)
        assert len(parsed.warnings()) == 1


# ============================================================
# CATALOG TESTS
# ============================================================

class TestIndicatorCatalog:
    """Tests for validated catalog writes."""

    @pytest.mark.asyncio
    async def test_create_assigns_id(self, catalog, definition, indicator_store):
        """Created indicators are stored with an id and never run."""
        indicator, warnings = await catalog.create(definition)

        assert indicator.indicator_id == 1
        assert indicator.last_run is None
        assert warnings == []
        assert await indicator_store.get(1) == indicator

    @pytest.mark.asyncio
    async def test_duplicate_name_case_insensitive(self, catalog, definition):
        """Names are unique regardless of case."""
        await catalog.create(definition)
        definition["name"] = definition["name"].upper()

        with pytest.raises(DuplicateIndicatorError):
            await catalog.create(definition)

    @pytest.mark.asyncio
    async def test_invalid_definition_not_stored(self, catalog, definition, indicator_store):
        """Rejected definitions never reach the store."""
        definition["owner"] = ""

        with pytest.raises(InvalidIndicatorError):
            await catalog.create(definition)

        assert await indicator_store.list_indicators() == []

    @pytest.mark.asyncio
    async def test_update_keeps_last_run(self, catalog, definition, indicator_store, now):
        """Updating a definition keeps its schedule position."""
        indicator, _ = await catalog.create(definition)
        await indicator_store.update_last_run(indicator.indicator_id, now)

        definition["frequency_minutes"] = 30
        updated, _ = await catalog.update(indicator.indicator_id, definition)

        assert updated.frequency_minutes == 30
        assert updated.last_run == now

    @pytest.mark.asyncio
    async def test_update_missing_indicator(self, catalog, definition):
        """Updating an unknown id fails."""
        with pytest.raises(InvalidIndicatorError):
            await catalog.update(99, definition)

    @pytest.mark.asyncio
    async def test_set_active(self, catalog, definition, indicator_store):
        """Deactivated indicators drop out of active listings."""
        indicator, _ = await catalog.create(definition)

        await catalog.set_active(indicator.indicator_id, False)

        assert await indicator_store.list_indicators(active_only=True) == []
        assert len(await indicator_store.list_indicators()) == 1

    @pytest.mark.asyncio
    async def test_load_file_skips_existing(self, catalog, definition, tmp_path):
        """Reloading the same file does not duplicate indicators."""
        second = dict(definition, name="Order volume")
        second["config"] = {
            "indicator_type": "transaction_volume",
            "deviation_percent": 30,
            "last_minutes": 60,
        }
        path = tmp_path / "indicators.json"
        path.write_text(json.dumps([definition, second]), encoding="utf-8")

        first_load = await catalog.load_file(path)
        second_load = await catalog.load_file(path)

        assert [i.name for i in first_load] == ["Checkout success rate", "Order volume"]
        assert second_load == []

    @pytest.mark.asyncio
    async def test_load_file_requires_list(self, catalog, definition, tmp_path):
        """The indicators file must hold a JSON list."""
        path = tmp_path / "indicators.json"
        path.write_text(json.dumps(definition), encoding="utf-8")

        with pytest.raises(InvalidIndicatorError):
            await catalog.load_file(path)


class TestInMemoryIndicatorStore:
    """Tests for the in-memory indicator store."""

    @pytest.mark.asyncio
    async def test_returns_copies(self, indicator_store, make_indicator, now):
        """Mutating a returned indicator does not change the store."""
        stored = await indicator_store.add(make_indicator())
        stored.last_run = now

        fresh = await indicator_store.get(stored.indicator_id)

        assert fresh.last_run is None

    @pytest.mark.asyncio
    async def test_update_last_run_unknown_id(self, indicator_store, now):
        """Updating an unknown indicator is a persistence error."""
        with pytest.raises(PersistenceError):
            await indicator_store.update_last_run(42, now)

    @pytest.mark.asyncio
    async def test_list_is_ordered_by_id(self, indicator_store, make_indicator):
        """Listings come back in id order."""
        await indicator_store.add(make_indicator(name="b", indicator_id=5))
        await indicator_store.add(make_indicator(name="a", indicator_id=2))
        added = await indicator_store.add(make_indicator(name="c"))

        ids = [i.indicator_id for i in await indicator_store.list_indicators()]

        assert ids == [2, 5, 6]
        assert added.indicator_id == 6

    @pytest.mark.asyncio
    async def test_replace_keeps_stored_last_run(self, indicator_store, make_indicator, now):
        """A stale copy written back does not roll last_run back."""
        stale = await indicator_store.add(make_indicator())
        await indicator_store.update_last_run(stale.indicator_id, now)

        replaced = await indicator_store.replace(stale.copy(priority=1))
        fresh = await indicator_store.get(stale.indicator_id)

        assert replaced.last_run == now
        assert (fresh.priority, fresh.last_run) == (1, now)
