"""チェーンの状態とブロック

サンプラーと保存先の両方が扱う、チェーンの現在状態と1ブロック分のドロー。
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class ChainState:
    """チェーンの現在状態

    Attributes:
        theta: 現在のドロー
        log_posterior: 現在の対数事後確率
        n_accepted: これまでの受容数（バーンインを含まない）
        n_proposed: これまでの提案数（バーンインを含まない）
    """

    theta: np.ndarray
    log_posterior: float
    n_accepted: int = 0
    n_proposed: int = 0


@dataclass
class ChainBlock:
    """1ブロック分のドロー"""

    chain_id: int
    index: int
    draws: np.ndarray  # (block_size, n_params)
    log_posteriors: np.ndarray  # (block_size,)
    n_accepted: int
    n_proposed: int
    final_state: ChainState

    @property
    def acceptance_rate(self) -> float:
        return self.n_accepted / self.n_proposed if self.n_proposed else 0.0
