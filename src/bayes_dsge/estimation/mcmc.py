"""Random Walk Metropolis-Hastingsサンプラー

提案 θ' = θ + c L z (L L' = Σ, z ~ N(0, I)) を min(1, exp(p(θ') - p(θ))) で受容する。
チェーンはブロック単位で進み、各ブロックは (seed, chain_id, block) から作る独立な
乱数生成器を使う。そのため、あるブロックの終了状態から再開すると途中から実行しても
同じドローが得られ、ブロックの境界は正当な再開点になる。ブロック間で持ち越すのは
チェーンの状態（現在の θ と事後確率）だけである。
"""

import logging
from collections.abc import Callable, Iterator
from concurrent.futures import Executor
from dataclasses import dataclass, field
from pathlib import Path

import numpy as np
from scipy.stats import norm

from bayes_dsge.core.exceptions import DimensionError, EstimationError
from bayes_dsge.estimation.chain import ChainBlock, ChainState
from bayes_dsge.estimation.draws import DrawStore
from bayes_dsge.estimation.proposal import DegenerateMvNormal, proposal_distribution

logger = logging.getLogger(__name__)

# バーンインとスケール調整に使う乱数系列のキー（ブロックは 1 以上）
_BURN_IN_KEY = 0
_TUNING_CHAIN_ID = 2**31 - 1


@dataclass(frozen=True)
class MCMCConfig:
    """MCMC設定

    Attributes:
        n_blocks: ブロック数
        block_size: 1ブロックに記録するドロー数
        burn_in: 最初のブロックの前に捨てるステップ数
        thinning: 記録間隔（1ブロックは block_size * thinning ステップ）
        scale: 提案のスケール c。None なら 2.38 / sqrt(パラメータ数)
        acceptance_band: 目標受容率の範囲
        seed: 乱数シード
        n_chains: チェーン数
        tuning_rounds: スケール調整の最大回数（0 なら調整しない）
        tuning_draws: 1回のスケール調整で回すステップ数
    """

    n_blocks: int = 5
    block_size: int = 1000
    burn_in: int = 500
    thinning: int = 1
    scale: float | None = None
    acceptance_band: tuple[float, float] = (0.2, 0.4)
    seed: int = 42
    n_chains: int = 1
    tuning_rounds: int = 3
    tuning_draws: int = 500

    def __post_init__(self) -> None:
        if min(self.n_blocks, self.block_size, self.thinning, self.n_chains) < 1:
            msg = "n_blocks, block_size, thinning, n_chains は1以上である必要があります"
            raise ValueError(msg)
        if self.burn_in < 0 or self.tuning_rounds < 0:
            raise ValueError("burn_in と tuning_rounds は0以上である必要があります")
        low, high = self.acceptance_band
        if not 0.0 < low < high < 1.0:
            raise ValueError(f"受容率の範囲 {self.acceptance_band} が不正です")
        if self.scale is not None and self.scale <= 0:
            raise ValueError(f"スケール {self.scale} は正である必要があります")

    def resolve_scale(self, n_params: int) -> float:
        if self.scale is not None:
            return self.scale
        return 2.38 / np.sqrt(n_params)


@dataclass
class ChainResult:
    """1チェーンの結果"""

    chain_id: int
    draws: np.ndarray  # (n_kept, n_params)
    log_posteriors: np.ndarray  # (n_kept,)
    n_accepted: int
    n_proposed: int
    scale: float
    n_blocks: int
    block_acceptance: list[float] = field(default_factory=list)

    @property
    def acceptance_rate(self) -> float:
        return self.n_accepted / self.n_proposed if self.n_proposed else 0.0


def block_rng(seed: int, chain_id: int, block_index: int) -> np.random.Generator:
    """ブロックごとの独立な乱数生成器

    block_index = -1 はバーンインに使う。
    """
    key = _BURN_IN_KEY if block_index < 0 else block_index + 1
    return np.random.default_rng(np.random.SeedSequence(entropy=seed, spawn_key=(chain_id, key)))


class MetropolisHastings:
    """Random Walk Metropolis-Hastingsサンプラー"""

    def __init__(
        self,
        log_posterior_fn: Callable[[np.ndarray], float],
        n_params: int,
        config: MCMCConfig | None = None,
        parameter_names: list[str] | None = None,
        bounds: np.ndarray | None = None,
    ) -> None:
        self._log_posterior_fn = log_posterior_fn
        self._n_params = n_params
        self._config = config or MCMCConfig()
        self._parameter_names = parameter_names or [f"param_{i}" for i in range(n_params)]
        self._bounds = None if bounds is None else np.asarray(bounds, dtype=np.float64)

    @property
    def config(self) -> MCMCConfig:
        return self._config

    @property
    def n_params(self) -> int:
        return self._n_params

    @property
    def parameter_names(self) -> list[str]:
        return list(self._parameter_names)

    def _evaluate(self, theta: np.ndarray) -> float:
        if self._bounds is not None and (
            np.any(theta < self._bounds[:, 0]) or np.any(theta > self._bounds[:, 1])
        ):
            return -np.inf
        lp = float(self._log_posterior_fn(theta))
        return lp if not np.isnan(lp) else -np.inf

    def _proposal(self, covariance: np.ndarray) -> DegenerateMvNormal:
        cov = np.asarray(covariance, dtype=np.float64)
        if cov.shape != (self._n_params, self._n_params):
            msg = f"共分散の形状 {cov.shape} がパラメータ数 {self._n_params} と一致しません"
            raise DimensionError(msg)
        return proposal_distribution(cov)

    def _initial_state(self, mode: np.ndarray) -> ChainState:
        theta = np.array(mode, dtype=np.float64)
        if theta.shape != (self._n_params,):
            msg = f"初期値の形状 {theta.shape} がパラメータ数 {self._n_params} と一致しません"
            raise DimensionError(msg)
        lp = self._evaluate(theta)
        if not np.isfinite(lp):
            msg = "初期値で事後確率が評価できません（-inf）"
            raise EstimationError(msg)
        return ChainState(theta, lp)

    def _advance(
        self,
        state: ChainState,
        n_steps: int,
        proposal: DegenerateMvNormal,
        scale: float,
        rng: np.random.Generator,
        thinning: int = 1,
    ) -> tuple[np.ndarray, np.ndarray, ChainState, int]:
        """n_steps ステップ進め、thinning ごとのドローを記録する

        Returns:
            (draws, log_posteriors, 終了状態, 受容数)
        """
        n_kept = n_steps // thinning
        draws = np.empty((n_kept, self._n_params))
        log_posts = np.empty(n_kept)

        theta_cur = state.theta
        lp_cur = state.log_posterior
        n_accepted = 0

        for t in range(n_steps):
            theta_prop = theta_cur + proposal.step(scale, rng)
            lp_prop = self._evaluate(theta_prop)

            # 実行不能な提案は log_alpha が -inf になり必ず棄却される
            log_alpha = lp_prop - lp_cur
            if np.isfinite(log_alpha) and np.log(rng.uniform()) < log_alpha:
                theta_cur = theta_prop
                lp_cur = lp_prop
                n_accepted += 1

            if (t + 1) % thinning == 0:
                k = (t + 1) // thinning - 1
                draws[k] = theta_cur
                log_posts[k] = lp_cur

        final = ChainState(
            theta_cur.copy(),
            lp_cur,
            state.n_accepted + n_accepted,
            state.n_proposed + n_steps,
        )
        return draws, log_posts, final, n_accepted

    def burn_in(
        self,
        mode: np.ndarray,
        covariance: np.ndarray,
        *,
        seed: int | None = None,
        chain_id: int = 0,
        scale: float | None = None,
    ) -> ChainState:
        """バーンインを回して最初のブロックの開始状態を返す"""
        cfg = self._config
        seed = cfg.seed if seed is None else seed
        scale = cfg.resolve_scale(self._n_params) if scale is None else scale
        state = self._initial_state(mode)
        if cfg.burn_in == 0:
            return state
        _, _, end, n_acc = self._advance(
            state, cfg.burn_in, self._proposal(covariance), scale, block_rng(seed, chain_id, -1)
        )
        logger.debug("チェーン %d バーンイン: 受容率 %.3f", chain_id, n_acc / cfg.burn_in)
        # バーンインは受容率の集計に含めない
        return ChainState(end.theta, end.log_posterior)

    def run_chain(
        self,
        mode: np.ndarray,
        covariance: np.ndarray,
        *,
        seed: int | None = None,
        chain_id: int = 0,
        start_block: int = 0,
        initial_state: ChainState | None = None,
        scale: float | None = None,
    ) -> Iterator[ChainBlock]:
        """ブロックを順に生成する

        ジェネレータなので、必要な分だけブロックを計算する。

        Args:
            mode: 事後モード（最初のブロックから始める場合の初期値）
            covariance: 提案共分散 Σ
            seed: 乱数シード。None なら config.seed
            chain_id: チェーン番号（乱数系列の選択に使う）
            start_block: 最初に生成するブロック番号
            initial_state: start_block の開始状態。start_block > 0 では必須
            scale: 提案のスケール c。None なら config から決める

        Yields:
            ChainBlock

        Raises:
            EstimationError: 開始点で事後確率が -inf の場合、再開状態がない場合
        """
        cfg = self._config
        seed = cfg.seed if seed is None else seed
        scale = cfg.resolve_scale(self._n_params) if scale is None else scale
        proposal = self._proposal(covariance)

        if initial_state is not None:
            state = initial_state
            if not np.isfinite(state.log_posterior):
                raise EstimationError("再開状態の事後確率が -inf です")
        elif start_block == 0:
            state = self.burn_in(mode, covariance, seed=seed, chain_id=chain_id, scale=scale)
        else:
            msg = f"ブロック {start_block} から再開するには開始状態が必要です"
            raise EstimationError(msg)

        n_steps = cfg.block_size * cfg.thinning
        for index in range(start_block, cfg.n_blocks):
            rng = block_rng(seed, chain_id, index)
            draws, log_posts, state, n_acc = self._advance(
                state, n_steps, proposal, scale, rng, cfg.thinning
            )
            block = ChainBlock(chain_id, index, draws, log_posts, n_acc, n_steps, state)
            logger.info(
                "チェーン %d ブロック %d/%d: 受容率 %.3f",
                chain_id,
                index + 1,
                cfg.n_blocks,
                block.acceptance_rate,
            )
            yield block

    def sample(
        self,
        mode: np.ndarray,
        covariance: np.ndarray,
        *,
        seed: int | None = None,
        chain_id: int = 0,
        scale: float | None = None,
        store: DrawStore | None = None,
    ) -> ChainResult:
        """全ブロックを実行してチェーンを返す

        store を渡すと各ブロックを書き出し、書き出し済みのブロックがあれば
        最後のブロックの終了状態から再開する。
        """
        cfg = self._config
        scale = cfg.resolve_scale(self._n_params) if scale is None else scale

        blocks: list[ChainBlock] = []
        start_block = 0
        initial_state: ChainState | None = None
        if store is not None:
            blocks = [store.load_block(i) for i in store.completed_blocks()]
            blocks = blocks[: cfg.n_blocks]
            if blocks:
                start_block = len(blocks)
                initial_state = blocks[-1].final_state
                logger.info("チェーン %d: ブロック %d から再開します", chain_id, start_block)

        for block in self.run_chain(
            mode,
            covariance,
            seed=seed,
            chain_id=chain_id,
            start_block=start_block,
            initial_state=initial_state,
            scale=scale,
        ):
            if store is not None:
                store.write_block(block)
            blocks.append(block)

        n_accepted = sum(b.n_accepted for b in blocks)
        n_proposed = sum(b.n_proposed for b in blocks)
        result = ChainResult(
            chain_id=chain_id,
            draws=np.concatenate([b.draws for b in blocks]),
            log_posteriors=np.concatenate([b.log_posteriors for b in blocks]),
            n_accepted=n_accepted,
            n_proposed=n_proposed,
            scale=scale,
            n_blocks=len(blocks),
            block_acceptance=[b.acceptance_rate for b in blocks],
        )
        logger.info("チェーン %d: 受容率 %.3f", chain_id, result.acceptance_rate)
        return result

    def tune_scale(
        self,
        mode: np.ndarray,
        covariance: np.ndarray,
        *,
        seed: int | None = None,
        scale: float | None = None,
    ) -> float:
        """試行チェーンで受容率が目標範囲に入るようにスケールを調整する

        受容率 a と提案スケール c の関係 a ≈ 2Φ(-c·k/2) を使い、範囲の中央を目標に
        c を更新する。
        """
        cfg = self._config
        seed = cfg.seed if seed is None else seed
        scale = cfg.resolve_scale(self._n_params) if scale is None else scale
        if cfg.tuning_rounds == 0:
            return scale

        proposal = self._proposal(covariance)
        low, high = cfg.acceptance_band
        target = 0.5 * (low + high)
        state = self._initial_state(mode)

        for round_ in range(cfg.tuning_rounds):
            rng = block_rng(seed, _TUNING_CHAIN_ID, round_)
            _, _, state, n_acc = self._advance(state, cfg.tuning_draws, proposal, scale, rng)
            rate = n_acc / cfg.tuning_draws
            logger.info("スケール調整 %d: c = %.4f, 受容率 %.3f", round_ + 1, scale, rate)
            if low <= rate <= high:
                break
            rate = float(np.clip(rate, 0.01, 0.99))
            scale *= float(norm.ppf(target / 2.0) / norm.ppf(rate / 2.0))
        return scale


def _sample_chain(
    sampler: MetropolisHastings,
    mode: np.ndarray,
    covariance: np.ndarray,
    seed: int,
    chain_id: int,
    scale: float | None,
    store_dir: Path | None,
) -> ChainResult:
    store = None
    if store_dir is not None:
        store = DrawStore(store_dir, chain_id)
    return sampler.sample(
        mode, covariance, seed=seed, chain_id=chain_id, scale=scale, store=store
    )


def run_chains(
    sampler: MetropolisHastings,
    mode: np.ndarray,
    covariance: np.ndarray,
    *,
    n_chains: int | None = None,
    seed: int | None = None,
    scale: float | None = None,
    executor: Executor | None = None,
    store_dir: Path | None = None,
) -> list[ChainResult]:
    """独立な複数チェーンを実行する

    各チェーンは chain_id で区別される独立な乱数系列を使い、共有するのは
    読み取り専用のモデルとデータだけである。

    Args:
        sampler: サンプラー
        mode: 初期値
        covariance: 提案共分散
        n_chains: チェーン数。None なら config.n_chains
        seed: 乱数シード
        scale: 提案のスケール
        executor: 並列実行に使う Executor。None なら逐次実行
        store_dir: ブロックを書き出すディレクトリ

    Returns:
        chain_id 順の ChainResult のリスト
    """
    cfg = sampler.config
    n_chains = cfg.n_chains if n_chains is None else n_chains
    seed = cfg.seed if seed is None else seed

    if executor is None:
        return [
            _sample_chain(sampler, mode, covariance, seed, i, scale, store_dir)
            for i in range(n_chains)
        ]

    futures = [
        executor.submit(_sample_chain, sampler, mode, covariance, seed, i, scale, store_dir)
        for i in range(n_chains)
    ]
    return [f.result() for f in futures]
