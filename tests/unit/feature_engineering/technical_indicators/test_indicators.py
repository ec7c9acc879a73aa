import numpy as np
import pytest

from src.feature_engineering.technical_indicators import indicators as ind


@pytest.mark.unit
class TestReturnsAndRatios:
    def test_period_return(self):
        close = np.array([100.0, 105.0, 110.0])
        assert ind.period_return(close, 2, 1) == pytest.approx(5.0 / 105.0)
        assert ind.period_return(close, 2, 2) == pytest.approx(0.10)

    def test_sma_ratio_window_ends_at_index(self):
        close = np.array([1.0, 2.0, 3.0, 6.0])
        # mean(2, 3, 6) = 11/3
        assert ind.sma_ratio(close, 3, 3) == pytest.approx(6.0 / (11.0 / 3.0))

    def test_window_before_series_start_is_rejected(self):
        with pytest.raises(ValueError):
            ind.sma_ratio(np.array([1.0, 2.0]), 1, 5)

    def test_volume_ratio_zero_volume_is_neutral(self):
        volume = np.zeros(5)
        assert ind.volume_ratio(volume, 4, 5) == pytest.approx(1.0)

    def test_volume_ratio(self):
        volume = np.array([100.0, 100.0, 100.0, 300.0])
        assert ind.volume_ratio(volume, 3, 4) == pytest.approx(300.0 / 150.0)

    def test_high_low_ratio(self):
        high, low, close = np.array([11.0]), np.array([9.0]), np.array([10.0])
        assert ind.high_low_ratio(high, low, close, 0) == pytest.approx(0.2)


@pytest.mark.unit
class TestRsi:
    def test_only_gains_is_100(self):
        close = np.arange(1.0, 20.0)
        assert ind.rsi(close, 18, 14) == pytest.approx(100.0)

    def test_only_losses_is_0(self):
        close = np.arange(20.0, 1.0, -1.0)
        assert ind.rsi(close, 18, 14) == pytest.approx(0.0)

    def test_flat_window_is_neutral(self):
        assert ind.rsi(np.full(20, 42.0), 19, 14) == pytest.approx(50.0)

    def test_balanced_moves_give_50(self):
        close = np.array([1.0, 2.0, 1.0, 2.0, 1.0])
        assert ind.rsi(close, 4, 4) == pytest.approx(50.0)

    def test_stays_in_range_on_random_walk(self):
        rng = np.random.default_rng(7)
        close = 100 + np.cumsum(rng.normal(0, 1, 200))
        values = [ind.rsi(close, i, 14) for i in range(14, 200)]
        if not all(0.0 <= v <= 100.0 for v in values):
            raise AssertionError("RSI left the [0, 100] range")


@pytest.mark.unit
class TestEmaAndMacd:
    def test_ema_of_constant_is_constant(self):
        assert ind.ema(np.full(30, 7.5), 29, 12) == pytest.approx(7.5)

    def test_ema_is_seeded_before_the_window(self):
        values = np.array([0.0, 0.0, 0.0, 10.0])
        # seed values[0], k = 0.5
        assert ind.ema(values, 3, 3) == pytest.approx(5.0)

    def test_ema_needs_period_plus_one_values(self):
        with pytest.raises(ValueError):
            ind.ema(np.ones(5), 4, 5)

    def test_macd_of_flat_series_is_zero(self):
        close = np.full(60, 100.0)
        assert ind.macd(close, 59) == pytest.approx(0.0)
        assert ind.macd_signal(close, 59) == pytest.approx(0.0)

    def test_signal_from_precomputed_line_matches_recomputation(self):
        close = 100 + np.sin(np.linspace(0, 6, 80)) * 5
        line = ind.macd_line_series(close)
        assert np.isnan(line[25])
        for i in (35, 50, 79):
            assert ind.ema(line, i, 9) == pytest.approx(ind.macd_signal(close, i))

    def test_macd_signal_needs_enough_history(self):
        with pytest.raises(ValueError):
            ind.macd_signal(np.ones(30), 29)


@pytest.mark.unit
class TestBollingerAndVolatility:
    def test_flat_window_is_centered(self):
        assert ind.bollinger_position(np.full(25, 10.0), 24, 20) == pytest.approx(0.5)

    def test_position_inside_bands(self):
        close = np.array([1.0, 2.0, 3.0])
        std = np.std(close)
        expected = (3.0 - (2.0 - 2 * std)) / (4 * std)
        assert ind.bollinger_position(close, 2, 3, 2.0) == pytest.approx(expected)

    def test_position_is_not_clamped(self):
        close = np.array([1.0, 1.0, 1.0, 1.0, 10.0])
        assert ind.bollinger_position(close, 4, 5, 1.0) == pytest.approx(1.5)

    def test_volatility_is_population_std(self):
        close = np.array([5.0, 1.0, 2.0, 4.0, 8.0])
        result = ind.volatility(close, 4, 4)
        assert result == pytest.approx(np.std([1.0, 2.0, 4.0, 8.0]))
        assert result != pytest.approx(np.std([1.0, 2.0, 4.0, 8.0], ddof=1))
