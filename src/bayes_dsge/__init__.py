"""bayes-dsge - 線形化DSGEモデルのベイズ推定エンジン"""

from importlib.metadata import PackageNotFoundError, version


def _resolve_version() -> str:
    """配布メタデータからバージョンを解決する。"""
    try:
        return version("bayes-dsge")
    except PackageNotFoundError:
        # インストール前のローカル実行時フォールバック
        return "0+unknown"


__version__ = _resolve_version()

from bayes_dsge.core.gensys import EquilibriumSystem, TransitionLaw, solve  # noqa: E402
from bayes_dsge.core.model import DSGEModel, ModelContext  # noqa: E402
from bayes_dsge.estimation.estimate import EstimationSettings, estimate  # noqa: E402
from bayes_dsge.estimation.mcmc import MCMCConfig, MetropolisHastings  # noqa: E402
from bayes_dsge.estimation.posterior import posterior  # noqa: E402
from bayes_dsge.estimation.results import EstimationResult  # noqa: E402
from bayes_dsge.parameters.parameter import ParameterCollection, parameter  # noqa: E402

__all__ = [
    "DSGEModel",
    "EquilibriumSystem",
    "EstimationResult",
    "EstimationSettings",
    "MCMCConfig",
    "MetropolisHastings",
    "ModelContext",
    "ParameterCollection",
    "TransitionLaw",
    "estimate",
    "parameter",
    "posterior",
    "solve",
]
