"""MCMC収束診断

分割 R-hat、有効サンプルサイズ (ESS)、Geweke検定、受容率の範囲チェックを実装する。
"""

from dataclasses import dataclass

import numpy as np
import scipy.stats


@dataclass
class ConvergenceDiagnostics:
    """MCMC収束診断結果

    Attributes:
        r_hat: 分割 R-hat 統計量 (n_params,)
        ess: 有効サンプルサイズ (n_params,)
        acceptance_rates: チェーンごとの受容率 (n_chains,)
        acceptance_in_band: 全チェーンの受容率が目標範囲内か
        converged: 全パラメータが R-hat < 1.1 かどうか
        geweke_z: Geweke z-scores (n_params,)
        geweke_p: Geweke p-values (n_params,)
        parameter_names: パラメータ名のリスト
    """

    r_hat: np.ndarray
    ess: np.ndarray
    acceptance_rates: np.ndarray
    acceptance_in_band: bool
    converged: bool
    geweke_z: np.ndarray
    geweke_p: np.ndarray
    parameter_names: list[str]


def split_chains(chains: np.ndarray) -> np.ndarray:
    """各チェーンを前半と後半に分ける

    Args:
        chains: (n_chains, n_draws, n_params)

    Returns:
        (2 * n_chains, n_draws // 2, n_params)。奇数長なら最後のドローを捨てる
    """
    n_chains, n_draws, n_params = chains.shape
    half = n_draws // 2
    first = chains[:, :half]
    second = chains[:, half : 2 * half]
    return np.concatenate([first, second], axis=0)


def compute_rhat(chains: np.ndarray) -> np.ndarray:
    """分割 Gelman-Rubin R-hat 統計量を計算する

    チェーンを半分に分けてから計算するため、1本のチェーン内のドリフトも検出できる。
    R-hat < 1.1 が収束の目安。

    Args:
        chains: MCMCチェーン配列 (n_chains, n_draws, n_params)

    Returns:
        R-hat値 (n_params,)
    """
    split = split_chains(chains)
    _, n, _ = split.shape

    chain_means = split.mean(axis=1)
    chain_vars = split.var(axis=1, ddof=1)

    w = chain_vars.mean(axis=0)
    b = chain_means.var(axis=0, ddof=1) * n
    v_hat = (1.0 - 1.0 / n) * w + (1.0 / n) * b

    # W が 0 の場合（全チェーンが定数）は R-hat = 1.0
    with np.errstate(divide="ignore", invalid="ignore"):
        r_hat = np.where(w > 0, np.sqrt(v_hat / w), 1.0)
    return r_hat


def _autocorrelation(x: np.ndarray, lag: int, var: float) -> float:
    n_draws = x.shape[1]
    return float(np.mean(x[:, : n_draws - lag] * x[:, lag:])) / var


def compute_ess(chains: np.ndarray, max_lag: int | None = None) -> np.ndarray:
    """自己相関に基づく有効サンプルサイズを計算する

    チェーンごとの自己相関をチェーン間で平均し、隣接ラグの和が負になった時点で
    打ち切る (Geyer の初期正系列)。

    Args:
        chains: MCMCチェーン配列 (n_chains, n_draws, n_params)
        max_lag: 自己相関の最大ラグ。Noneの場合は n_draws - 1

    Returns:
        ESS値 (n_params,)
    """
    n_chains, n_draws, n_params = chains.shape
    n_total = n_chains * n_draws
    if max_lag is None:
        max_lag = n_draws - 1

    ess = np.zeros(n_params)
    for p in range(n_params):
        x = chains[:, :, p] - chains[:, :, p].mean(axis=1, keepdims=True)
        var = float(np.mean(x * x))
        if var < 1e-30:
            ess[p] = float(n_total)
            continue

        tau = -1.0
        for k in range(0, max_lag, 2):
            pair = _autocorrelation(x, k, var) + _autocorrelation(x, k + 1, var)
            if pair < 0:
                break
            tau += 2.0 * pair
        ess[p] = n_total / max(tau, 1.0)

    return ess


def geweke_test(
    chain: np.ndarray,
    first_frac: float = 0.1,
    last_frac: float = 0.5,
) -> tuple[np.ndarray, np.ndarray]:
    """Geweke収束診断

    チェーンの最初 first_frac 部分と最後 last_frac 部分の平均を比較する。
    収束していれば z-score は標準正規分布に従う。

    Args:
        chain: MCMCチェーン (n_draws, n_params)
        first_frac: 前半ウィンドウの割合
        last_frac: 後半ウィンドウの割合

    Returns:
        (z_scores, p_values) 各 (n_params,)
    """
    if chain.ndim == 1:
        chain = chain[:, np.newaxis]
    n_draws = chain.shape[0]

    n_first = max(int(n_draws * first_frac), 2)
    n_last = max(int(n_draws * last_frac), 2)

    first_part = chain[:n_first]
    last_part = chain[-n_last:]

    var_first = first_part.var(axis=0, ddof=1) / n_first
    var_last = last_part.var(axis=0, ddof=1) / n_last

    se = np.sqrt(var_first + var_last)
    diff = first_part.mean(axis=0) - last_part.mean(axis=0)
    with np.errstate(divide="ignore", invalid="ignore"):
        z_scores = np.where(se > 0, diff / se, 0.0)
    p_values = 2.0 * (1.0 - scipy.stats.norm.cdf(np.abs(z_scores)))

    return z_scores, p_values


def acceptance_in_band(acceptance_rates: np.ndarray, band: tuple[float, float]) -> bool:
    """全チェーンの受容率が [low, high] に入っているか"""
    low, high = band
    rates = np.asarray(acceptance_rates)
    return bool(np.all((rates >= low) & (rates <= high)))


def run_diagnostics(
    chains: np.ndarray,
    acceptance_rates: np.ndarray,
    parameter_names: list[str],
    band: tuple[float, float] = (0.2, 0.4),
) -> ConvergenceDiagnostics:
    """全ての収束診断を実行する

    Args:
        chains: MCMCチェーン配列 (n_chains, n_draws, n_params)
        acceptance_rates: チェーンごとの受容率 (n_chains,)
        parameter_names: パラメータ名のリスト
        band: 目標受容率の範囲

    Returns:
        全診断結果を含む ConvergenceDiagnostics
    """
    r_hat = compute_rhat(chains)
    ess = compute_ess(chains)

    # Gewekeテストは全チェーン結合で実行
    n_chains, n_draws, n_params = chains.shape
    combined = chains.reshape(n_chains * n_draws, n_params)
    geweke_z, geweke_p = geweke_test(combined)

    return ConvergenceDiagnostics(
        r_hat=r_hat,
        ess=ess,
        acceptance_rates=np.asarray(acceptance_rates, dtype=np.float64),
        acceptance_in_band=acceptance_in_band(acceptance_rates, band),
        converged=bool(np.all(r_hat < 1.1)),
        geweke_z=geweke_z,
        geweke_p=geweke_p,
        parameter_names=parameter_names,
    )
