"""推定パイプライン全体のテスト"""

from pathlib import Path

import numpy as np
import pytest

from bayes_dsge.core.exceptions import EstimationError
from bayes_dsge.estimation.data import EstimationData, simulate_data
from bayes_dsge.estimation.draws import DrawStore, load_proposal
from bayes_dsge.estimation.estimate import EstimationSettings, estimate
from bayes_dsge.estimation.mcmc import MCMCConfig
from bayes_dsge.estimation.mode import optimize_posterior
from bayes_dsge.estimation.posterior import posterior
from bayes_dsge.models.ar1 import AR1Model


@pytest.fixture(scope="module")
def ar1_data() -> EstimationData:
    return simulate_data(AR1Model(rho=0.7), 150, rng=np.random.default_rng(123))


def _settings(n_blocks: int = 2, block_size: int = 300) -> EstimationSettings:
    return EstimationSettings(
        mcmc=MCMCConfig(n_blocks=n_blocks, block_size=block_size, burn_in=100, seed=9)
    )


class TestOptimizePosterior:
    """モード探索"""

    def test_mode_near_true_value(self, ar1_data: EstimationData) -> None:
        model = AR1Model()
        result = optimize_posterior(model, ar1_data.data)
        assert result.mode[0] == pytest.approx(0.7, abs=0.2)
        assert result.log_posterior == pytest.approx(posterior(model, result.mode, ar1_data.data))

    def test_mode_improves_on_initial_value(self, ar1_data: EstimationData) -> None:
        model = AR1Model()
        start = model.parameters.free_values()
        result = optimize_posterior(model, ar1_data.data)
        assert result.log_posterior >= posterior(model, start, ar1_data.data)

    def test_start_on_bound(self, ar1_data: EstimationData) -> None:
        """境界上の初期値からでも有限の点を返す"""
        model = AR1Model()
        upper = model.parameters.free_bounds()[0, 1]
        result = optimize_posterior(
            model, ar1_data.data, np.array([upper, 1.0]), max_iterations=20
        )
        bounds = model.parameters.free_bounds()
        assert np.all(np.isfinite(result.mode))
        assert np.isfinite(result.log_posterior)
        assert np.all((result.mode >= bounds[:, 0]) & (result.mode <= bounds[:, 1]))


class TestEstimate:
    """モード探索からサンプリングまで"""

    def test_ar1_end_to_end(self, ar1_data: EstimationData) -> None:
        result = estimate(AR1Model(), ar1_data, _settings())

        assert result.posterior_samples.shape == (600, 2)
        assert result.n_draws == 600
        assert result.n_burnin == 100
        assert result.mode[0] == pytest.approx(0.7, abs=0.2)
        assert result.get_summary("rho").mean == pytest.approx(0.7, abs=0.2)
        assert np.all(np.isfinite(result.log_posteriors))
        assert np.isfinite(result.log_marginal_likelihood)
        assert 0.0 < result.diagnostics.acceptance_rates[0] < 1.0

    def test_mode_on_bound(self, ar1_data: EstimationData) -> None:
        """モードが境界上にあってもヘシアンを計算してサンプリングできる"""
        settings = EstimationSettings(
            reoptimize=False,
            mcmc=MCMCConfig(n_blocks=1, block_size=200, burn_in=50, seed=2, tuning_rounds=0),
        )
        model = AR1Model()
        upper = model.parameters.free_bounds()[1, 1]
        result = estimate(model, ar1_data, settings, x0=np.array([0.5, upper]))

        assert np.all(np.isfinite(result.hessian))
        assert np.all(np.linalg.eigvalsh(result.hessian) > 0.0)
        assert np.all(result.posterior_samples[:, 1] <= upper)
        assert np.all(np.isfinite(result.log_posteriors))

    def test_draws_respect_bounds(self, ar1_data: EstimationData) -> None:
        result = estimate(AR1Model(), ar1_data, _settings(n_blocks=1))
        bounds = AR1Model().parameters.free_bounds()
        assert np.all(result.posterior_samples >= bounds[:, 0])
        assert np.all(result.posterior_samples <= bounds[:, 1])

    def test_resume_matches_fresh_run(self, ar1_data: EstimationData, tmp_path: Path) -> None:
        """保存先から再開した結果は通しで実行した結果と同じ"""
        store = tmp_path / "run"
        estimate(AR1Model(), ar1_data, _settings(n_blocks=2, block_size=100), store)
        assert DrawStore(store).completed_blocks() == [0, 1]
        assert load_proposal(store) is not None

        resumed = estimate(AR1Model(), ar1_data, _settings(n_blocks=3, block_size=100), store)
        fresh = estimate(AR1Model(), ar1_data, _settings(n_blocks=3, block_size=100))

        np.testing.assert_array_equal(resumed.posterior_samples, fresh.posterior_samples)
        np.testing.assert_array_equal(resumed.mode, fresh.mode)

    def test_fixed_hessian_without_optimization(self, ar1_data: EstimationData) -> None:
        """モード探索とヘシアン計算を省略して与えた値を使う"""
        settings = EstimationSettings(
            reoptimize=False,
            calculate_hessian=False,
            mcmc=MCMCConfig(n_blocks=1, block_size=100, burn_in=10),
        )
        hessian = np.diag([100.0, 50.0])
        result = estimate(
            AR1Model(), ar1_data, settings, x0=np.array([0.6, 1.0]), hessian=hessian
        )
        np.testing.assert_array_equal(result.mode, [0.6, 1.0])
        np.testing.assert_array_equal(result.hessian, hessian)
        assert result.hessian_corrected is False

    def test_missing_hessian_raises(self, ar1_data: EstimationData) -> None:
        settings = EstimationSettings(reoptimize=False, calculate_hessian=False)
        with pytest.raises(EstimationError):
            estimate(AR1Model(), ar1_data, settings)

    def test_infeasible_start_raises(self, ar1_data: EstimationData) -> None:
        """モードで事後確率が -inf なら EstimationError"""
        settings = EstimationSettings(reoptimize=False)
        with pytest.raises(EstimationError):
            estimate(AR1Model(), ar1_data, settings, x0=np.array([0.0, 1.0]))

    def test_data_columns_are_selected_by_name(self, ar1_data: EstimationData) -> None:
        """余分な列があってもモデルの観測変数だけを使う"""
        extra = EstimationData(
            np.column_stack([np.zeros(ar1_data.n_periods), ar1_data.data]),
            ["unused", "obs_x"],
            ar1_data.dates,
        )
        a = estimate(AR1Model(), extra, _settings(n_blocks=1, block_size=50))
        b = estimate(AR1Model(), ar1_data, _settings(n_blocks=1, block_size=50))
        np.testing.assert_array_equal(a.posterior_samples, b.posterior_samples)
