"""対数事後確率のテスト"""

import pickle

import numpy as np
import pytest

from bayes_dsge.core.exceptions import DimensionError, NoSolutionError
from bayes_dsge.estimation.data import simulate_data
from bayes_dsge.estimation.mcmc import MCMCConfig, MetropolisHastings
from bayes_dsge.estimation.posterior import (
    PosteriorEvaluator,
    likelihood,
    make_log_posterior,
    posterior,
    prior,
)
from bayes_dsge.estimation.state_space import compute_system
from bayes_dsge.models.ar1 import AR1Model
from bayes_dsge.models.small_nk import SmallNKModel
from bayes_dsge.parameters.parameter import ParameterCollection, parameter
from bayes_dsge.parameters.priors import inv_gamma, uniform


@pytest.fixture
def ar1_data() -> np.ndarray:
    return simulate_data(AR1Model(rho=0.7), 80, rng=np.random.default_rng(0)).data


@pytest.fixture
def nk_data() -> np.ndarray:
    return simulate_data(SmallNKModel(), 60, rng=np.random.default_rng(0)).data


class TestPosterior:
    """事後確率 = 事前 + 尤度"""

    def test_posterior_is_prior_plus_likelihood(self, ar1_data: np.ndarray) -> None:
        """事後確率は事前確率と尤度の和"""
        model = AR1Model()
        theta = np.array([0.6, 1.2])
        context = model.context(theta)
        expected = prior(context.parameters) + likelihood(context, ar1_data)
        assert posterior(model, theta, ar1_data) == pytest.approx(expected)

    def test_small_nk_finite_at_initial_values(self, nk_data: np.ndarray) -> None:
        """小型NKモデルの初期値で有限"""
        model = SmallNKModel()
        assert np.isfinite(posterior(model, model.parameters.free_values(), nk_data))

    def test_strict_bounds_reject(self, ar1_data: np.ndarray) -> None:
        """厳格モードでは境界外で -inf"""
        model = AR1Model()
        assert posterior(model, np.array([1.5, 1.0]), ar1_data) == -np.inf

    def test_soft_bounds_clip(self, ar1_data: np.ndarray) -> None:
        """緩和モードでは境界内に切り詰めて評価する"""
        model = AR1Model()
        soft = posterior(model, np.array([1.5, 1.0]), ar1_data, strict_bounds=False)
        clipped = posterior(model, np.array([0.999, 1.0]), ar1_data)
        assert np.isfinite(soft)
        assert soft == pytest.approx(clipped)

    def test_indeterminacy_is_minus_inf(self, nk_data: np.ndarray) -> None:
        """均衡解が一意でないパラメータでは -inf"""
        model = SmallNKModel()
        theta = model.parameters.free_values()
        theta[model.parameters.free_keys.index("psi1")] = 0.5
        assert posterior(model, theta, nk_data) == -np.inf

    def test_zero_prior_density_is_minus_inf(self, ar1_data: np.ndarray) -> None:
        """境界内でも事前密度が0の点では -inf"""
        # Beta(0.5, 0.2) の密度は 0 で 0
        assert posterior(AR1Model(), np.array([0.0, 1.0]), ar1_data) == -np.inf

    def test_wrong_length_propagates(self, ar1_data: np.ndarray) -> None:
        """ベクトル長の誤りは例外として伝わる"""
        with pytest.raises(DimensionError):
            posterior(AR1Model(), np.array([0.5]), ar1_data)

    def test_model_not_mutated(self, ar1_data: np.ndarray) -> None:
        """評価後もモデルの初期パラメータは変わらない"""
        model = AR1Model()
        before = model.parameters.free_values()
        posterior(model, np.array([0.9, 3.0]), ar1_data)
        np.testing.assert_array_equal(model.parameters.free_values(), before)

    def test_boundary_with_identical_regimes(self, ar1_data: np.ndarray) -> None:
        """境界前後の観測方程式が同じなら単一レジームと同じ値"""
        model = AR1Model()
        theta = np.array([0.6, 1.2])
        single = posterior(model, theta, ar1_data)
        two_part = posterior(model, theta, ar1_data, boundary=40)
        assert two_part == pytest.approx(single, rel=1e-12)


class TestPosteriorEvaluator:
    """事後確率関数オブジェクト"""

    def test_matches_function(self, ar1_data: np.ndarray) -> None:
        model = AR1Model()
        evaluator = make_log_posterior(model, ar1_data)
        theta = np.array([0.4, 0.8])
        assert evaluator(theta) == pytest.approx(posterior(model, theta, ar1_data))
        assert evaluator.n_params == 2

    def test_data_is_read_only_copy(self, ar1_data: np.ndarray) -> None:
        """データは読み取り専用のコピー"""
        evaluator = PosteriorEvaluator(AR1Model(), ar1_data)
        assert not evaluator.data.flags.writeable
        ar1_data[0, 0] = 1e6
        assert evaluator.data[0, 0] != 1e6

    def test_picklable(self, ar1_data: np.ndarray) -> None:
        """プロセス間で受け渡せる"""
        evaluator = make_log_posterior(AR1Model(), ar1_data)
        restored = pickle.loads(pickle.dumps(evaluator))
        theta = np.array([0.5, 1.0])
        assert restored(theta) == pytest.approx(evaluator(theta))

    def test_with_strict_bounds(self, ar1_data: np.ndarray) -> None:
        """境界の扱いを切り替えたコピー"""
        evaluator = make_log_posterior(AR1Model(), ar1_data)
        soft = evaluator.with_strict_bounds(False)
        theta = np.array([1.5, 1.0])
        assert evaluator(theta) == -np.inf
        assert np.isfinite(soft(theta))

    def test_on_real_line(self, ar1_data: np.ndarray) -> None:
        """実数直線上の評価は変換後の評価と同じ"""
        model = AR1Model()
        evaluator = make_log_posterior(model, ar1_data)
        theta = np.array([0.3, 0.7])
        x = model.parameters.to_real(theta)
        assert evaluator.on_real_line()(x) == pytest.approx(evaluator(theta))


class _ExplosiveAR1Model(AR1Model):
    """ρ > 1（安定解が存在しない領域）も境界と事前分布の台に含む AR(1) モデル"""

    def init_parameters(self) -> ParameterCollection:
        return ParameterCollection(
            [
                parameter("rho", 0.5, (0.0, 1.5), prior=uniform(0.0, 1.5)),
                parameter("sigma", 1.0, (1e-8, 10.0), prior=inv_gamma(1.0, 0.5)),
                parameter("me", 0.5, fixed=True),
            ]
        )


class TestNoStableSolution:
    """安定解が存在しないパラメータ"""

    def test_posterior_is_minus_inf(self, ar1_data: np.ndarray) -> None:
        """事前密度が正でも安定解がなければ -inf"""
        model = _ExplosiveAR1Model()
        theta = np.array([1.2, 1.0])
        context = model.context(theta)
        assert np.isfinite(prior(context.parameters))
        with pytest.raises(NoSolutionError):
            compute_system(context)
        assert posterior(model, theta, ar1_data) == -np.inf

    def test_sampler_rejects_explosive_draws(self, ar1_data: np.ndarray) -> None:
        """安定解のない提案は必ず棄却される"""
        model = _ExplosiveAR1Model()
        evaluator = make_log_posterior(model, ar1_data)
        evaluated: list[tuple[float, float]] = []

        def recording(theta: np.ndarray) -> float:
            lp = evaluator(theta)
            evaluated.append((float(theta[0]), lp))
            return lp

        sampler = MetropolisHastings(
            recording,
            2,
            MCMCConfig(n_blocks=2, block_size=200, burn_in=0, seed=4),
            bounds=model.parameters.free_bounds(),
        )
        result = sampler.sample(np.array([0.95, 1.0]), np.diag([0.1**2, 0.1**2]))

        explosive = [lp for rho, lp in evaluated if rho > 1.0 + 1e-3]
        assert explosive
        assert all(lp == -np.inf for lp in explosive)
        assert np.all(result.draws[:, 0] < 1.0 + 1e-6)
        assert np.all(np.isfinite(result.log_posteriors))
