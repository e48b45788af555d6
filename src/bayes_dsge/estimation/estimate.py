"""推定の実行

モード探索 → ヘシアン → スケール調整 → Metropolis-Hastings → サマリー の順に
実行する。保存先ディレクトリを渡すと提案分布と各ブロックを書き出し、途中まで
書かれたディレクトリからは残りのブロックだけを計算して再開する。
"""

import logging
from concurrent.futures import Executor
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np

from bayes_dsge.core.exceptions import EstimationError
from bayes_dsge.core.model import DSGEModel
from bayes_dsge.estimation.data import EstimationData
from bayes_dsge.estimation.draws import ProposalRecord, load_proposal, save_proposal
from bayes_dsge.estimation.hessian import estimate_hessian, hessian_inverse
from bayes_dsge.estimation.mcmc import MCMCConfig, MetropolisHastings, run_chains
from bayes_dsge.estimation.mode import optimize_posterior
from bayes_dsge.estimation.posterior import PosteriorEvaluator, make_log_posterior
from bayes_dsge.estimation.results import EstimationResult, build_estimation_result

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EstimationSettings:
    """推定の設定

    Attributes:
        reoptimize: モード探索を行うか（False なら初期値をモードとして使う）
        calculate_hessian: モードでヘシアンを計算するか
        strict_bounds: サンプリング中に境界外を棄却するか
        mcmc: MCMC設定
        boundary: 2レジームの場合の境界期
        max_iterations: モード探索の反復上限
        optimizer_seed: モード探索の再探索方向に使う乱数シード
    """

    reoptimize: bool = True
    calculate_hessian: bool = True
    strict_bounds: bool = True
    mcmc: MCMCConfig = field(default_factory=MCMCConfig)
    boundary: int | None = None
    max_iterations: int = 100
    optimizer_seed: int = 0


def _as_matrix(model: DSGEModel, data: EstimationData | np.ndarray) -> np.ndarray:
    if isinstance(data, EstimationData):
        return data.select(model.observables).data
    return np.asarray(data, dtype=np.float64)


class _NegativePosterior:
    def __init__(self, evaluator: PosteriorEvaluator) -> None:
        self._evaluator = evaluator

    def __call__(self, theta: np.ndarray) -> float:
        return -self._evaluator(theta)


def _build_proposal(
    model: DSGEModel,
    data: np.ndarray,
    settings: EstimationSettings,
    evaluator: PosteriorEvaluator,
    x0: np.ndarray | None,
    hessian: np.ndarray | None,
) -> ProposalRecord:
    params = model.parameters

    if settings.reoptimize:
        mode_result = optimize_posterior(
            model,
            data,
            x0,
            boundary=settings.boundary,
            max_iterations=settings.max_iterations,
            rng=np.random.default_rng(settings.optimizer_seed),
        )
        mode = mode_result.mode
        converged = mode_result.converged
    else:
        mode = params.free_values() if x0 is None else np.asarray(x0, dtype=np.float64)
        converged = True

    mode_lp = evaluator(mode)
    if not np.isfinite(mode_lp):
        raise EstimationError("モードで事後確率が評価できません（-inf）")
    logger.info("モードでの対数事後確率: %.4f", mode_lp)

    if settings.calculate_hessian:
        objective = _NegativePosterior(evaluator)
        hess, corrected = estimate_hessian(objective, mode, params.free_bounds())
    elif hessian is not None:
        hess, corrected = np.asarray(hessian, dtype=np.float64), False
    else:
        raise EstimationError("calculate_hessian=False の場合はヘシアンを渡してください")

    return ProposalRecord(
        mode=mode,
        mode_log_posterior=mode_lp,
        hessian=hess,
        covariance=hessian_inverse(hess),
        scale=settings.mcmc.resolve_scale(params.n_free),
        hessian_corrected=corrected,
        optimizer_converged=converged,
    )


def estimate(
    model: DSGEModel,
    data: EstimationData | np.ndarray,
    settings: EstimationSettings | None = None,
    store: Path | str | None = None,
    *,
    x0: np.ndarray | None = None,
    hessian: np.ndarray | None = None,
    executor: Executor | None = None,
) -> EstimationResult:
    """ベイズ推定を実行する

    Args:
        model: 推定対象モデル
        data: 観測データ。EstimationData ならモデルの観測変数の順に並べ替える
        settings: 推定の設定
        store: ドローの保存先ディレクトリ。既存の保存内容があれば再開する
        x0: モード探索の初期値（モデル空間）
        hessian: calculate_hessian=False の場合に使うヘシアン
        executor: チェーンを並列実行する Executor

    Returns:
        EstimationResult

    Raises:
        EstimationError: モードで事後確率が評価できない場合など
    """
    settings = settings or EstimationSettings()
    matrix = _as_matrix(model, data)
    params = model.parameters
    cfg = settings.mcmc

    evaluator = make_log_posterior(
        model, matrix, strict_bounds=settings.strict_bounds, boundary=settings.boundary
    )
    sampler = MetropolisHastings(
        evaluator,
        params.n_free,
        cfg,
        parameter_names=params.free_keys,
        bounds=params.free_bounds() if settings.strict_bounds else None,
    )

    store_dir = None if store is None else Path(store)
    record = load_proposal(store_dir) if store_dir is not None else None
    if record is not None:
        logger.info("保存済みの提案分布から再開します: %s", store_dir)
    else:
        record = _build_proposal(model, matrix, settings, evaluator, x0, hessian)
        record.scale = sampler.tune_scale(record.mode, record.covariance, scale=record.scale)
        if store_dir is not None:
            save_proposal(store_dir, record)

    chains = run_chains(
        sampler,
        record.mode,
        record.covariance,
        scale=record.scale,
        executor=executor,
        store_dir=store_dir,
    )

    return build_estimation_result(
        chains=np.stack([c.draws for c in chains]),
        log_posteriors=np.stack([c.log_posteriors for c in chains]),
        acceptance_rates=np.array([c.acceptance_rate for c in chains]),
        parameters=params,
        mode=record.mode,
        mode_log_posterior=record.mode_log_posterior,
        hessian=record.hessian,
        hessian_corrected=record.hessian_corrected,
        optimizer_converged=record.optimizer_converged,
        n_burnin=cfg.burn_in,
        band=cfg.acceptance_band,
    )
