"""収束診断のテスト"""

import numpy as np

from bayes_dsge.estimation.diagnostics import (
    ConvergenceDiagnostics,
    acceptance_in_band,
    compute_ess,
    compute_rhat,
    geweke_test,
    run_diagnostics,
    split_chains,
)


def _ar1_chains(phi: float, shape: tuple[int, int, int], seed: int) -> np.ndarray:
    rng = np.random.default_rng(seed)
    eps = rng.normal(0, 1, shape)
    chains = np.zeros(shape)
    for t in range(1, shape[1]):
        chains[:, t] = phi * chains[:, t - 1] + eps[:, t]
    return chains


class TestSplitChains:
    """チェーンの分割"""

    def test_shape(self) -> None:
        chains = np.arange(2 * 7 * 1, dtype=float).reshape(2, 7, 1)
        split = split_chains(chains)
        assert split.shape == (4, 3, 1)
        np.testing.assert_array_equal(split[2, :, 0], chains[0, 3:6, 0])


class TestRhat:
    """分割 R-hat 統計量のテスト"""

    def test_identical_chains_rhat_near_one(self) -> None:
        """同一分布からのチェーンは R-hat ≈ 1.0"""
        rng = np.random.default_rng(42)
        chains = rng.normal(0, 1, (4, 1000, 5))

        r_hat = compute_rhat(chains)

        assert r_hat.shape == (5,)
        np.testing.assert_allclose(r_hat, 1.0, atol=0.05)

    def test_divergent_chains_rhat_above_threshold(self) -> None:
        """異なる平均を持つチェーンは R-hat > 1.1"""
        rng = np.random.default_rng(42)
        div_chains = np.stack([rng.normal(i * 3.0, 1, (1000, 5)) for i in range(4)])

        r_hat = compute_rhat(div_chains)

        assert np.all(r_hat > 1.1)

    def test_single_drifting_chain_detected(self) -> None:
        """1本のチェーンでも前半と後半の違いを検出する"""
        rng = np.random.default_rng(0)
        drift = np.linspace(0.0, 10.0, 2000)[np.newaxis, :, np.newaxis]
        chains = drift + rng.normal(0, 1, (1, 2000, 1))

        assert compute_rhat(chains)[0] > 1.1

    def test_constant_chains(self) -> None:
        """全チェーンが定数なら R-hat = 1"""
        np.testing.assert_array_equal(compute_rhat(np.ones((2, 100, 2))), [1.0, 1.0])


class TestESS:
    """有効サンプルサイズのテスト"""

    def test_ess_less_than_total(self) -> None:
        """ESSは常に総サンプル数以下"""
        rng = np.random.default_rng(42)
        chains = rng.normal(0, 1, (4, 1000, 5))

        ess = compute_ess(chains)

        assert ess.shape == (5,)
        assert np.all(ess <= 4 * 1000 + 1)
        assert np.all(ess > 0)

    def test_ess_for_iid_samples(self) -> None:
        """独立サンプルの場合 ESS ≈ n_total"""
        rng = np.random.default_rng(42)
        chains = rng.normal(0, 1, (4, 2000, 3))

        ess = compute_ess(chains)

        assert np.all(ess > 4 * 2000 * 0.5)

    def test_autocorrelated_chain_has_small_ess(self) -> None:
        """自己相関の強いチェーンの ESS は小さい"""
        chains = _ar1_chains(0.95, (2, 4000, 1), seed=1)

        ess = compute_ess(chains)

        # AR(0.95) の理論値は n (1 - φ) / (1 + φ) ≈ 205
        assert ess[0] < 8000 * 0.1


class TestGeweke:
    """Geweke収束診断のテスト"""

    def test_converged_chain_small_z_score(self) -> None:
        """収束したチェーンでは |z| は小さい"""
        rng = np.random.default_rng(42)
        chain = rng.normal(0, 1, (5000, 5))

        z_scores, p_values = geweke_test(chain)

        assert z_scores.shape == (5,)
        assert p_values.shape == (5,)
        assert np.sum(np.abs(z_scores) < 3) >= 4

    def test_shifted_chain_large_z_score(self) -> None:
        """前半と後半で平均が違えば |z| は大きい"""
        rng = np.random.default_rng(0)
        chain = rng.normal(0, 1, 2000)
        chain[:200] += 5.0

        z_scores, p_values = geweke_test(chain)

        assert abs(z_scores[0]) > 5.0
        assert p_values[0] < 1e-3

    def test_geweke_p_values_range(self) -> None:
        """p値は [0, 1] の範囲"""
        rng = np.random.default_rng(42)
        chain = rng.normal(0, 1, (3000, 3))

        _, p_values = geweke_test(chain)

        assert np.all(p_values >= 0.0)
        assert np.all(p_values <= 1.0)


class TestAcceptanceBand:
    """受容率の範囲チェック"""

    def test_in_band(self) -> None:
        assert acceptance_in_band(np.array([0.25, 0.38]), (0.2, 0.4))

    def test_out_of_band(self) -> None:
        assert not acceptance_in_band(np.array([0.25, 0.55]), (0.2, 0.4))
        assert not acceptance_in_band(np.array([0.1]), (0.2, 0.4))


class TestRunDiagnostics:
    """run_diagnostics のテスト"""

    def test_returns_complete_result(self) -> None:
        """全フィールドが正しく設定される"""
        rng = np.random.default_rng(42)
        n_chains, n_draws, n_params = 4, 1000, 5
        chains = rng.normal(0, 1, (n_chains, n_draws, n_params))
        acceptance_rates = np.array([0.25, 0.26, 0.24, 0.27])
        parameter_names = [f"param_{i}" for i in range(n_params)]

        diag = run_diagnostics(chains, acceptance_rates, parameter_names)

        assert isinstance(diag, ConvergenceDiagnostics)
        assert diag.r_hat.shape == (n_params,)
        assert diag.ess.shape == (n_params,)
        assert diag.geweke_z.shape == (n_params,)
        assert diag.acceptance_rates.shape == (n_chains,)
        assert diag.parameter_names == parameter_names
        assert diag.converged is True
        assert diag.acceptance_in_band is True

    def test_divergent_chains_not_converged(self) -> None:
        rng = np.random.default_rng(1)
        chains = np.stack([rng.normal(i * 3.0, 1, (500, 2)) for i in range(3)])

        diag = run_diagnostics(chains, np.array([0.3, 0.3, 0.3]), ["a", "b"])

        assert diag.converged is False
