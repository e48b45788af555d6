"""MCMCドローのブロック単位の保存

1ブロックを1つの .npz ファイルに書く。一時ファイルに書いてから os.replace で
置き換えるため、書き込み中にプロセスが落ちても確定済みのブロックは壊れない。
"""

import logging
import os
import tempfile
import zipfile
from dataclasses import dataclass
from pathlib import Path

import numpy as np

from bayes_dsge.core.exceptions import EstimationError
from bayes_dsge.estimation.chain import ChainBlock, ChainState

logger = logging.getLogger(__name__)

PROPOSAL_FILENAME = "proposal.npz"


def atomic_savez(path: Path, **arrays: object) -> None:
    """一時ファイル経由で .npz を書き、os.replace で置き換える"""
    fd, tmp_name = tempfile.mkstemp(dir=path.parent, suffix=".npz.tmp")
    try:
        with os.fdopen(fd, "wb") as f:
            np.savez(f, **arrays)  # type: ignore[arg-type]
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        Path(tmp_name).unlink(missing_ok=True)
        raise


@dataclass
class ProposalRecord:
    """チェーンの再開に必要な提案分布の情報

    Attributes:
        mode: 事後モード
        mode_log_posterior: モードでの対数事後確率
        hessian: 正定値化済みのヘシアン
        covariance: 提案共分散
        scale: 提案のスケール c
        hessian_corrected: ヘシアンを正定値化したか
        optimizer_converged: モード探索が収束したか
    """

    mode: np.ndarray
    mode_log_posterior: float
    hessian: np.ndarray
    covariance: np.ndarray
    scale: float
    hessian_corrected: bool
    optimizer_converged: bool


def save_proposal(directory: Path | str, record: ProposalRecord) -> Path:
    """提案分布の情報をアトミックに書き出す"""
    path = Path(directory) / PROPOSAL_FILENAME
    path.parent.mkdir(parents=True, exist_ok=True)
    atomic_savez(
        path,
        mode=record.mode,
        mode_log_posterior=record.mode_log_posterior,
        hessian=record.hessian,
        covariance=record.covariance,
        scale=record.scale,
        hessian_corrected=record.hessian_corrected,
        optimizer_converged=record.optimizer_converged,
    )
    return path


def load_proposal(directory: Path | str) -> ProposalRecord | None:
    """保存済みの提案分布の情報を読む。なければ None

    Raises:
        EstimationError: ファイルが壊れている場合
    """
    path = Path(directory) / PROPOSAL_FILENAME
    if not path.exists():
        return None
    try:
        with np.load(path) as npz:
            return ProposalRecord(
                mode=np.array(npz["mode"]),
                mode_log_posterior=float(npz["mode_log_posterior"]),
                hessian=np.array(npz["hessian"]),
                covariance=np.array(npz["covariance"]),
                scale=float(npz["scale"]),
                hessian_corrected=bool(npz["hessian_corrected"]),
                optimizer_converged=bool(npz["optimizer_converged"]),
            )
    except (OSError, KeyError, ValueError, EOFError, zipfile.BadZipFile) as e:
        raise EstimationError(f"提案分布のファイルを読み込めません: {path}") from e


class DrawStore:
    """1チェーン分のブロックを保存するディレクトリ"""

    def __init__(self, directory: Path | str, chain_id: int = 0) -> None:
        self._directory = Path(directory)
        self._chain_id = chain_id
        self._directory.mkdir(parents=True, exist_ok=True)

    @property
    def directory(self) -> Path:
        return self._directory

    @property
    def chain_id(self) -> int:
        return self._chain_id

    def block_path(self, index: int) -> Path:
        return self._directory / f"chain{self._chain_id:02d}_block{index:04d}.npz"

    def write_block(self, block: ChainBlock) -> Path:
        """ブロックをアトミックに書き出す"""
        path = self.block_path(block.index)
        state = block.final_state
        atomic_savez(
            path,
            chain_id=block.chain_id,
            index=block.index,
            draws=block.draws,
            log_posteriors=block.log_posteriors,
            n_accepted=block.n_accepted,
            n_proposed=block.n_proposed,
            final_theta=state.theta,
            final_log_posterior=state.log_posterior,
            final_n_accepted=state.n_accepted,
            final_n_proposed=state.n_proposed,
        )
        logger.info("ブロック %d を保存しました: %s", block.index, path)
        return path

    def completed_blocks(self) -> list[int]:
        """先頭から連続して保存済みのブロック番号"""
        indices = []
        index = 0
        while self.block_path(index).exists():
            indices.append(index)
            index += 1
        return indices

    def load_block(self, index: int) -> ChainBlock:
        """保存済みのブロックを読み込む

        Raises:
            EstimationError: ファイルがない、または壊れている場合
        """
        path = self.block_path(index)
        try:
            with np.load(path) as npz:
                state = ChainState(
                    theta=np.array(npz["final_theta"]),
                    log_posterior=float(npz["final_log_posterior"]),
                    n_accepted=int(npz["final_n_accepted"]),
                    n_proposed=int(npz["final_n_proposed"]),
                )
                return ChainBlock(
                    chain_id=int(npz["chain_id"]),
                    index=int(npz["index"]),
                    draws=np.array(npz["draws"]),
                    log_posteriors=np.array(npz["log_posteriors"]),
                    n_accepted=int(npz["n_accepted"]),
                    n_proposed=int(npz["n_proposed"]),
                    final_state=state,
                )
        except (OSError, KeyError, ValueError, EOFError, zipfile.BadZipFile) as e:
            msg = f"ブロックファイルを読み込めません: {path}"
            raise EstimationError(msg) from e

    def load(self) -> tuple[np.ndarray, np.ndarray]:
        """保存済みの全ドローを連結して返す

        Returns:
            (draws, log_posteriors)
        """
        blocks = [self.load_block(i) for i in self.completed_blocks()]
        if not blocks:
            return np.empty((0, 0)), np.empty(0)
        draws = np.concatenate([b.draws for b in blocks])
        log_posts = np.concatenate([b.log_posteriors for b in blocks])
        return draws, log_posts

    def last_state(self) -> ChainState | None:
        """最後に保存したブロックの終了状態"""
        completed = self.completed_blocks()
        if not completed:
            return None
        return self.load_block(completed[-1]).final_state

    def clear(self) -> None:
        """このチェーンのブロックファイルを削除する"""
        for path in self._directory.glob(f"chain{self._chain_id:02d}_block*.npz"):
            path.unlink()
