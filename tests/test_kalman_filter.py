"""Kalmanフィルタのテスト"""

import numpy as np
import pytest
import scipy.stats

from bayes_dsge.core.exceptions import DimensionError, SingularInnovationError
from bayes_dsge.estimation.kalman_filter import (
    FilterRegime,
    KalmanFilterResult,
    RegimeSchedule,
    kalman_filter,
    kalman_filter_2part,
)
from bayes_dsge.estimation.state_space import StateSpaceSystem, simulate


def _ar1_system(rho: float = 0.9, sigma: float = 0.5, me: float = 0.3) -> StateSpaceSystem:
    return StateSpaceSystem(
        T=np.array([[rho]]),
        R=np.array([[1.0]]),
        C=np.zeros(1),
        Q=np.array([[sigma**2]]),
        Z=np.array([[1.0]]),
        D=np.zeros(1),
        H=np.array([[me**2]]),
    )


def _ar1_covariance(n: int, rho: float, sigma: float, me: float) -> np.ndarray:
    """定常 AR(1) + 測定誤差の観測の同時共分散"""
    lags = np.abs(np.subtract.outer(np.arange(n), np.arange(n)))
    return sigma**2 / (1.0 - rho**2) * rho**lags + me**2 * np.eye(n)


def _ar1_data(n: int, seed: int, rho: float = 0.9) -> np.ndarray:
    _, obs = simulate(_ar1_system(rho), n, np.random.default_rng(seed))
    return obs


class TestAR1KnownSolution:
    """AR(1)モデルの閉じた形の尤度との比較"""

    def test_log_likelihood_matches_multivariate_normal(self) -> None:
        """対数尤度が観測の同時正規密度と一致"""
        rho, sigma, me = 0.9, 0.5, 0.3
        data = _ar1_data(40, seed=42, rho=rho)

        result = kalman_filter(data, _ar1_system(rho, sigma, me))

        cov = _ar1_covariance(40, rho, sigma, me)
        expected = scipy.stats.multivariate_normal(np.zeros(40), cov).logpdf(data[:, 0])
        assert isinstance(result, KalmanFilterResult)
        assert result.log_likelihood == pytest.approx(expected, rel=1e-8)

    def test_contributions_sum_to_log_likelihood(self) -> None:
        """各期の寄与の和が対数尤度"""
        data = _ar1_data(30, seed=1)
        result = kalman_filter(data, _ar1_system())
        assert result.log_likelihood_contributions.sum() == pytest.approx(result.log_likelihood)

    def test_measurement_constant(self) -> None:
        """観測定数 D はデータから差し引かれる"""
        data = _ar1_data(30, seed=2)
        base = _ar1_system()
        shifted = StateSpaceSystem(
            T=base.T, R=base.R, C=base.C, Q=base.Q, Z=base.Z, D=np.array([5.0]), H=base.H
        )
        a = kalman_filter(data, base).log_likelihood
        b = kalman_filter(data + 5.0, shifted).log_likelihood
        assert a == pytest.approx(b, rel=1e-10)

    def test_output_shapes(self) -> None:
        """結果の形状"""
        data = _ar1_data(25, seed=3)
        result = kalman_filter(data, _ar1_system())
        assert result.filtered_states.shape == (25, 1)
        assert result.filtered_covariances.shape == (25, 1, 1)
        assert result.predicted_states.shape == (25, 1)
        assert result.prediction_errors.shape == (25, 1)

    def test_system_not_mutated(self) -> None:
        """状態空間形式とデータは変更されない"""
        system = _ar1_system()
        data = _ar1_data(20, seed=4)
        T_before = system.T.copy()
        data_before = data.copy()
        kalman_filter(data, system)
        np.testing.assert_array_equal(system.T, T_before)
        np.testing.assert_array_equal(data, data_before)


class TestMissingData:
    """欠損値の扱い"""

    def test_missing_periods_match_marginal_density(self) -> None:
        """欠損期を除いた周辺密度と一致"""
        rho, sigma, me = 0.8, 1.0, 0.5
        data = _ar1_data(30, seed=7, rho=rho)
        missing = [3, 4, 10, 29]
        data[missing, 0] = np.nan

        result = kalman_filter(data, _ar1_system(rho, sigma, me))

        observed = np.setdiff1d(np.arange(30), missing)
        cov = _ar1_covariance(30, rho, sigma, me)[np.ix_(observed, observed)]
        expected = scipy.stats.multivariate_normal(np.zeros(len(observed)), cov).logpdf(
            data[observed, 0]
        )
        assert result.log_likelihood == pytest.approx(expected, rel=1e-8)
        assert np.all(result.log_likelihood_contributions[missing] == 0.0)
        assert np.all(np.isnan(result.prediction_errors[missing]))

    def test_partially_missing_series(self) -> None:
        """一部の系列だけ欠損した期は観測できた系列で更新する"""
        system = StateSpaceSystem(
            T=np.array([[0.5]]),
            R=np.array([[1.0]]),
            C=np.zeros(1),
            Q=np.array([[1.0]]),
            Z=np.array([[1.0], [2.0]]),
            D=np.zeros(2),
            H=np.diag([0.1, 0.2]),
        )
        data = np.array([[0.3, np.nan], [np.nan, np.nan], [np.nan, 1.0]])
        result = kalman_filter(data, system)

        # 第1期は1系列目だけの単変量更新
        P_pred = result.predicted_covariances[0, 0, 0]
        expected_t0 = scipy.stats.norm(0.0, np.sqrt(P_pred + 0.1)).logpdf(0.3)
        assert result.log_likelihood_contributions[0] == pytest.approx(expected_t0)
        assert result.log_likelihood_contributions[1] == 0.0
        assert np.isfinite(result.log_likelihood_contributions[2])
        assert np.isnan(result.prediction_errors[0, 1])

    def test_all_missing_gives_zero(self) -> None:
        """全欠損なら対数尤度は0で予測だけ進む"""
        data = np.full((5, 1), np.nan)
        result = kalman_filter(data, _ar1_system())
        assert result.log_likelihood == 0.0
        np.testing.assert_allclose(result.filtered_states, 0.0)


class TestErrors:
    """異常系"""

    def test_singular_innovation_raises(self) -> None:
        """予測誤差共分散が特異なら SingularInnovationError"""
        system = StateSpaceSystem(
            T=np.array([[0.5]]),
            R=np.array([[1.0]]),
            C=np.zeros(1),
            Q=np.array([[1.0]]),
            Z=np.array([[0.0]]),
            D=np.zeros(1),
            H=np.array([[0.0]]),
        )
        with pytest.raises(SingularInnovationError) as excinfo:
            kalman_filter(np.ones((3, 1)), system)
        assert excinfo.value.period == 0

    def test_collinear_observables_raise(self) -> None:
        """同じ状態を測定誤差なしで2回観測すると特異"""
        system = StateSpaceSystem(
            T=np.array([[0.5]]),
            R=np.array([[1.0]]),
            C=np.zeros(1),
            Q=np.array([[1.0]]),
            Z=np.array([[1.0], [1.0]]),
            D=np.zeros(2),
            H=np.diag([0.0, 1e-14]),
        )
        with pytest.raises(SingularInnovationError):
            kalman_filter(np.ones((3, 2)), system)

    def test_observables_in_different_units(self) -> None:
        """単位が大きく異なる系列でも特異とはみなさない"""
        system = StateSpaceSystem(
            T=0.5 * np.eye(2),
            R=np.eye(2),
            C=np.zeros(2),
            Q=np.diag([1e6, 1e-5]),
            Z=np.eye(2),
            D=np.zeros(2),
            H=np.diag([1e-2, 1e-7]),
        )
        _, data = simulate(system, 20, np.random.default_rng(0))
        result = kalman_filter(data, system)
        assert np.isfinite(result.log_likelihood)

        # 2系列は独立なので、それぞれの単変量フィルタの和になる
        univariate = [
            StateSpaceSystem(
                T=np.array([[0.5]]),
                R=np.array([[1.0]]),
                C=np.zeros(1),
                Q=np.array([[q]]),
                Z=np.array([[1.0]]),
                D=np.zeros(1),
                H=np.array([[h]]),
            )
            for q, h in ((1e6, 1e-2), (1e-5, 1e-7))
        ]
        expected = sum(
            kalman_filter(data[:, [i]], sys_i).log_likelihood
            for i, sys_i in enumerate(univariate)
        )
        assert result.log_likelihood == pytest.approx(expected, rel=1e-9)

    def test_wrong_number_of_columns_raises(self) -> None:
        """列数の不一致は DimensionError"""
        with pytest.raises(DimensionError):
            kalman_filter(np.zeros((10, 2)), _ar1_system())

    def test_infinite_data_raises(self) -> None:
        """inf を含むデータは DimensionError"""
        data = np.zeros((5, 1))
        data[2, 0] = np.inf
        with pytest.raises(DimensionError):
            kalman_filter(data, _ar1_system())

    def test_wrong_initial_state_shape_raises(self) -> None:
        """初期状態の形状の誤りは DimensionError"""
        with pytest.raises(DimensionError):
            kalman_filter(np.zeros((5, 1)), _ar1_system(), s0=np.zeros(2))


class TestRegimeSchedule:
    """2レジームのフィルタ"""

    def test_regime_transition_happens_once(self) -> None:
        """境界期で一度だけ遷移し、戻らない"""
        schedule = RegimeSchedule(_ar1_system(me=0.3), _ar1_system(me=0.6), boundary=3)
        regimes = schedule.regimes(6)
        assert regimes[:3] == [FilterRegime.PRE_BOUNDARY] * 3
        assert regimes[3:] == [FilterRegime.POST_BOUNDARY] * 3

    def test_boundary_zero_equals_post_system(self) -> None:
        """境界0なら全期間で境界後の形式を使う（初期化は境界前）"""
        data = _ar1_data(30, seed=11)
        pre = _ar1_system(me=0.3)
        post = _ar1_system(me=0.6)
        two_part = kalman_filter_2part(data, pre, post, boundary=0)
        single = kalman_filter(data, post)
        assert two_part.log_likelihood == pytest.approx(single.log_likelihood, rel=1e-10)

    def test_boundary_past_end_equals_pre_system(self) -> None:
        """境界がデータの後なら境界前の形式だけ"""
        data = _ar1_data(30, seed=12)
        pre = _ar1_system(me=0.3)
        post = _ar1_system(me=0.6)
        two_part = kalman_filter_2part(data, pre, post, boundary=100)
        single = kalman_filter(data, pre)
        assert two_part.log_likelihood == pytest.approx(single.log_likelihood, rel=1e-12)

    def test_interior_boundary_splits_contributions(self) -> None:
        """境界前の寄与は単一形式と同じで、境界後は異なる"""
        data = _ar1_data(30, seed=13)
        pre = _ar1_system(me=0.3)
        post = _ar1_system(me=0.6)
        two_part = kalman_filter_2part(data, pre, post, boundary=15)
        single = kalman_filter(data, pre)
        np.testing.assert_allclose(
            two_part.log_likelihood_contributions[:15], single.log_likelihood_contributions[:15]
        )
        assert two_part.log_likelihood != pytest.approx(single.log_likelihood)

    def test_state_dimension_must_agree(self) -> None:
        """レジーム間で状態数が違えば DimensionError"""
        two_state = StateSpaceSystem(
            T=np.eye(2) * 0.5,
            R=np.ones((2, 1)),
            C=np.zeros(2),
            Q=np.eye(1),
            Z=np.ones((1, 2)),
            D=np.zeros(1),
            H=np.eye(1),
        )
        with pytest.raises(DimensionError):
            RegimeSchedule(_ar1_system(), two_state, boundary=5)

    def test_post_without_boundary_raises(self) -> None:
        """境界期なしで境界後の形式だけ渡すのは誤り"""
        with pytest.raises(DimensionError):
            RegimeSchedule(_ar1_system(), _ar1_system(me=0.6))
