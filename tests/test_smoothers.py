"""平滑化のテスト"""

import numpy as np
import pytest

from bayes_dsge.core.exceptions import DimensionError
from bayes_dsge.estimation.kalman_filter import RegimeSchedule, kalman_filter
from bayes_dsge.estimation.smoothers import (
    durbin_koopman_smoother,
    kalman_smoother,
    smooth,
)
from bayes_dsge.estimation.state_space import StateSpaceSystem, compute_system, simulate
from bayes_dsge.models.small_nk import SmallNKModel


def _ar1_system(me: float = 0.5) -> StateSpaceSystem:
    return StateSpaceSystem(
        T=np.array([[0.8]]),
        R=np.array([[1.0]]),
        C=np.zeros(1),
        Q=np.array([[1.0]]),
        Z=np.array([[1.0]]),
        D=np.zeros(1),
        H=np.array([[me**2]]),
    )


def _data(system: StateSpaceSystem, n: int, seed: int) -> np.ndarray:
    _, obs = simulate(system, n, np.random.default_rng(seed))
    return obs


class TestKalmanSmoother:
    """Rauch-Tung-Striebel 平滑化"""

    def test_last_period_equals_filtered(self) -> None:
        """最終期の平滑化状態はフィルタ済み状態"""
        system = _ar1_system()
        data = _data(system, 40, seed=0)
        filtered = kalman_filter(data, system)
        result = kalman_smoother(data, system, filtered)
        np.testing.assert_allclose(result.smoothed_states[-1], filtered.filtered_states[-1])

    def test_no_measurement_error_recovers_data(self) -> None:
        """測定誤差がなければ平滑化状態は観測そのもの"""
        system = _ar1_system(me=0.0)
        data = _data(system, 30, seed=1)
        result = kalman_smoother(data, system)
        np.testing.assert_allclose(result.smoothed_states[:, 0], data[:, 0], atol=1e-10)

    def test_smoothed_variance_not_larger_than_filtered(self) -> None:
        """平滑化分散はフィルタ分散以下"""
        system = _ar1_system()
        data = _data(system, 40, seed=2)
        filtered = kalman_filter(data, system)
        result = kalman_smoother(data, system, filtered)
        assert result.smoothed_covariances is not None
        smoothed_var = result.smoothed_covariances[:, 0, 0]
        filtered_var = filtered.filtered_covariances[:, 0, 0]
        assert np.all(smoothed_var <= filtered_var + 1e-12)

    def test_missing_data_is_interpolated(self) -> None:
        """欠損期も前後の観測から平滑化される"""
        system = _ar1_system(me=0.0)
        data = _data(system, 20, seed=3)
        truth = data[10, 0]
        data[10, 0] = np.nan
        result = kalman_smoother(data, system)
        expected = 0.8 * (data[9, 0] + data[11, 0]) / (1.0 + 0.8**2)
        assert result.smoothed_states[10, 0] == pytest.approx(expected, rel=1e-8)
        assert np.isfinite(truth)

    def test_smoothed_shocks_reconstruct_states(self) -> None:
        """平滑化ショックで状態遷移が再現できる"""
        system = _ar1_system(me=0.0)
        data = _data(system, 20, seed=4)
        result = kalman_smoother(data, system)
        states = result.smoothed_states[:, 0]
        shocks = result.smoothed_shocks[:, 0]
        np.testing.assert_allclose(states[1:], 0.8 * states[:-1] + shocks[1:], atol=1e-8)

    def test_small_nk_shapes(self) -> None:
        """小型NKモデルでの形状"""
        model = SmallNKModel()
        system = compute_system(model.context())
        data = _data(system, 30, seed=5)
        result = kalman_smoother(data, system)
        assert result.smoothed_states.shape == (30, system.n_states)
        assert result.smoothed_shocks.shape == (30, system.n_shocks)

    def test_regime_schedule(self) -> None:
        """2レジームのスケジュールも受け付ける"""
        schedule = RegimeSchedule(_ar1_system(0.5), _ar1_system(0.1), boundary=10)
        data = _data(_ar1_system(), 20, seed=6)
        result = kalman_smoother(data, schedule)
        assert result.smoothed_states.shape == (20, 1)


class TestDurbinKoopman:
    """Durbin-Koopman シミュレーション平滑化"""

    def test_no_measurement_error_recovers_data(self) -> None:
        """測定誤差がなければ抽出は観測そのもの"""
        system = _ar1_system(me=0.0)
        data = _data(system, 25, seed=7)
        result = durbin_koopman_smoother(data, system, np.random.default_rng(0))
        np.testing.assert_allclose(result.smoothed_states[:, 0], data[:, 0], atol=1e-8)
        assert result.smoothed_covariances is None

    def test_draws_average_to_smoothed_mean(self) -> None:
        """抽出の平均は RTS 平滑化の平均に近い"""
        system = _ar1_system()
        data = _data(system, 20, seed=8)
        filtered = kalman_filter(data, system)
        mean = kalman_smoother(data, system, filtered).smoothed_states
        rng = np.random.default_rng(1)
        draws = [
            durbin_koopman_smoother(data, system, rng, filtered).smoothed_states
            for _ in range(300)
        ]
        np.testing.assert_allclose(np.mean(draws, axis=0), mean, atol=0.1)

    def test_repeated_calls_give_independent_draws(self) -> None:
        """同じ乱数生成器を使い続けると異なる経路が得られる"""
        system = _ar1_system()
        data = _data(system, 20, seed=9)
        rng = np.random.default_rng(2)
        a = durbin_koopman_smoother(data, system, rng).smoothed_states
        b = durbin_koopman_smoother(data, system, rng).smoothed_states
        assert not np.allclose(a, b)

    def test_same_seed_same_draw(self) -> None:
        """同じシードなら同じ経路"""
        system = _ar1_system()
        data = _data(system, 20, seed=10)
        a = durbin_koopman_smoother(data, system, np.random.default_rng(3)).smoothed_states
        b = durbin_koopman_smoother(data, system, np.random.default_rng(3)).smoothed_states
        np.testing.assert_array_equal(a, b)


class TestSmoothDispatch:
    """smooth の手法選択"""

    def test_kalman(self) -> None:
        system = _ar1_system()
        data = _data(system, 15, seed=11)
        np.testing.assert_array_equal(
            smooth(data, system), kalman_smoother(data, system).smoothed_states
        )

    def test_durbin_koopman(self) -> None:
        system = _ar1_system()
        data = _data(system, 15, seed=12)
        states = smooth(data, system, method="durbin_koopman", rng=np.random.default_rng(0))
        assert states.shape == (15, 1)

    def test_unknown_method_raises(self) -> None:
        with pytest.raises(ValueError):
            smooth(np.zeros((5, 1)), _ar1_system(), method="unknown")

    @pytest.mark.parametrize("method", ["kalman", "durbin_koopman"])
    def test_empty_data_raises(self, method: str) -> None:
        """観測が1期もなければ DimensionError"""
        with pytest.raises(DimensionError):
            smooth(np.zeros((0, 1)), _ar1_system(), method=method, rng=np.random.default_rng(0))
