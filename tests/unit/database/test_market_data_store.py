from datetime import date, datetime, timedelta

import pytest

from src.database.market_data_store import save_in_batches
from src.exceptions import PredictionNotFoundError
from src.models.prediction_result import PredictionResult
from tests._fixtures import BarFactory, make_bars, make_feature_vector


def _prediction(symbol="AAA", target=date(2024, 3, 4), score=0.5, version="v1.0", made=date(2024, 3, 1)):
    return PredictionResult(
        symbol=symbol,
        prediction_date=made,
        target_date=target,
        current_price=100.0,
        predicted_price=100.5,
        predicted_return=0.005,
        predicted_volatility=0.01,
        confidence_score=0.7,
        risk_adjusted_score=score,
        model_version=version,
    )


@pytest.mark.unit
class TestBars:
    def test_save_bars_is_idempotent(self, store):
        bars = make_bars("AAA", n=10)

        first = store.save_bars(bars)
        second = store.save_bars(bars)

        assert first == {"stored_count": 10, "skipped_count": 0, "total_processed": 10}
        assert second["stored_count"] == 0
        assert second["skipped_count"] == 10
        assert len(store.get_bars("AAA")) == 10

    def test_duplicates_within_one_call_are_stored_once(self, store):
        bar = BarFactory.build(symbol="AAA", date=date(2024, 1, 2))
        result = store.save_bars([bar, bar])
        assert result["stored_count"] == 1
        assert result["skipped_count"] == 1

    def test_empty_input(self, store):
        assert store.save_bars([])["total_processed"] == 0

    def test_get_bars_filters_and_orders(self, store):
        bars = make_bars("AAA", n=10)
        store.save_bars(list(reversed(bars)))
        store.save_bars(make_bars("BBB", n=3))

        window = store.get_bars("aaa", start=bars[2].date, end=bars[5].date)

        assert [b.date for b in window] == [b.date for b in bars[2:6]]
        assert window[0] == bars[2]

    def test_symbol_queries(self, store):
        bars = make_bars("AAA", n=5)
        store.save_bars(bars + make_bars("BBB", n=3))

        assert store.get_symbols() == ["AAA", "BBB"]
        assert store.get_latest_date("AAA") == bars[-1].date
        assert store.get_latest_date("ZZZ") is None
        assert store.has_data("AAA", bars[0].date)
        assert not store.has_data("AAA", date(1999, 1, 1))
        assert store.has_data_for_symbol("BBB")
        assert store.get_data_count_by_symbol() == {"AAA": 5, "BBB": 3}

    def test_cleanup_old_data(self, store):
        bars = make_bars("AAA", n=5)
        store.save_bars(bars)
        store.save_feature_vectors([make_feature_vector("AAA", bars[0].date)])

        removed = store.cleanup_old_data(bars[2].date)

        assert removed == 3
        assert [b.date for b in store.get_bars("AAA")] == [b.date for b in bars[2:]]
        assert store.get_feature_vectors("AAA") == []

    def test_save_in_batches(self, store):
        bars = make_bars("AAA", n=7)
        assert save_in_batches(store, [bars[:4], bars[3:]]) == 7


@pytest.mark.unit
class TestFeatureVectors:
    def test_save_replaces_existing_rows(self, store):
        day = date(2024, 3, 1)
        store.save_feature_vectors([make_feature_vector("AAA", day, rsi_14=40.0)])
        store.save_feature_vectors([make_feature_vector("AAA", day, rsi_14=60.0)])

        stored = store.get_feature_vectors("AAA")

        assert len(stored) == 1
        assert stored[0].rsi_14 == pytest.approx(60.0)

    def test_last_duplicate_in_a_call_wins(self, store):
        day = date(2024, 3, 1)
        count = store.save_feature_vectors(
            [make_feature_vector("AAA", day, macd=1.0), make_feature_vector("AAA", day, macd=2.0)]
        )
        assert count == 1
        assert store.get_feature_vectors("AAA")[0].macd == pytest.approx(2.0)

    def test_round_trip_keeps_labels_and_unlabeled_rows(self, store):
        labeled = make_feature_vector("AAA", date(2024, 3, 1))
        unlabeled = make_feature_vector("AAA", date(2024, 3, 4), next_day_return=None, next_day_volatility=None)
        store.save_feature_vectors([labeled, unlabeled])

        stored = store.get_feature_vectors("AAA")

        assert stored == [labeled, unlabeled]
        assert not stored[1].is_labeled

    def test_get_all_symbols_with_date_range(self, store):
        store.save_feature_vectors(
            [
                make_feature_vector("BBB", date(2024, 3, 1)),
                make_feature_vector("AAA", date(2024, 3, 1)),
                make_feature_vector("AAA", date(2024, 2, 1)),
            ]
        )
        rows = store.get_feature_vectors(start=date(2024, 2, 15))
        assert [(r.symbol, r.date) for r in rows] == [("AAA", date(2024, 3, 1)), ("BBB", date(2024, 3, 1))]


@pytest.mark.unit
class TestPredictions:
    def test_predictions_ordered_by_risk_adjusted_score(self, store):
        store.save_prediction(_prediction("AAA", score=0.1))
        store.save_prediction(_prediction("BBB", score=0.9))
        store.save_prediction(_prediction("CCC", score=0.5))

        ranked = store.get_predictions(date(2024, 3, 1))

        assert [p.symbol for p in ranked] == ["BBB", "CCC", "AAA"]

    def test_save_prediction_upserts_per_model_version(self, store):
        store.save_prediction(_prediction(score=0.1))
        store.save_prediction(_prediction(score=0.2))
        store.save_prediction(_prediction(score=0.3, version="v2.0"))

        stored = store.get_predictions(date(2024, 3, 1))

        assert sorted((p.model_version, p.risk_adjusted_score) for p in stored) == [("v1.0", 0.2), ("v2.0", 0.3)]

    def test_update_actuals(self, store):
        store.save_prediction(_prediction(target=date(2024, 3, 4)))

        updated = store.update_actuals("aaa", date(2024, 3, 4), 0.01, 0.02)

        assert updated == 1
        latest = store.get_latest_prediction("AAA")
        assert latest.has_actuals
        assert latest.actual_volatility == pytest.approx(0.02)
        assert store.get_pending_predictions("AAA") == []

    def test_update_actuals_without_prediction_raises(self, store):
        with pytest.raises(PredictionNotFoundError) as exc_info:
            store.update_actuals("AAA", date(2024, 3, 4), 0.01, 0.02)
        assert exc_info.value.target_date == date(2024, 3, 4)

    def test_backtesting_returns_only_resolved_predictions(self, store):
        store.save_prediction(_prediction("AAA", target=date(2024, 3, 4)))
        store.save_prediction(_prediction("BBB", target=date(2024, 3, 4)))
        store.update_actuals("AAA", date(2024, 3, 4), 0.01, 0.02)

        resolved = store.get_predictions_for_backtesting(date(2024, 3, 1), date(2024, 3, 31))

        assert [p.symbol for p in resolved] == ["AAA"]
        assert [p.symbol for p in store.get_pending_predictions("BBB")] == ["BBB"]

    def test_cleanup_old_predictions(self, store):
        store.save_prediction(_prediction("AAA", made=date(2024, 1, 2), target=date(2024, 1, 3)))
        store.save_prediction(_prediction("AAA", made=date(2024, 3, 1)))

        assert store.cleanup_old_predictions(date(2024, 2, 1)) == 1
        assert store.get_latest_prediction("AAA").prediction_date == date(2024, 3, 1)


@pytest.mark.unit
class TestApiRequestLog:
    def test_only_reservation_rows_count(self, store):
        now = datetime(2024, 1, 2, 9, 30)
        store.save_api_request_log("P", "historical", "AAA", request_time=now)
        store.save_api_request_log("P", "historical", "AAA", response_code=200, request_time=now)
        store.save_api_request_log("P", "historical", "BBB", request_count=3, request_time=now)

        assert store.count_api_requests("P", now - timedelta(minutes=1)) == 4
        assert store.count_api_requests("P", now + timedelta(seconds=1)) == 0
        assert store.count_api_requests("Q", now - timedelta(minutes=1)) == 0

    def test_request_times_oldest_first(self, store):
        base = datetime(2024, 1, 2, 9, 30)
        store.save_api_request_log("P", "historical", request_time=base + timedelta(seconds=20))
        store.save_api_request_log("P", "historical", request_time=base)

        assert store.get_api_request_times("P", base) == [base, base + timedelta(seconds=20)]

    def test_request_count_must_be_positive(self, store):
        with pytest.raises(ValueError):
            store.save_api_request_log("P", "historical", request_count=0)

    def test_log_rows_as_dicts(self, store):
        store.save_api_request_log("P", "quote", "AAA", response_code=401, error_message="bad key")
        rows = store.get_api_request_log("P")
        assert rows[0]["response_code"] == 401
        assert rows[0]["error_message"] == "bad key"
        assert rows[0]["request_count"] == 1
