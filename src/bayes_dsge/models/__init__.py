"""同梱モデル"""

from bayes_dsge.core.exceptions import ValidationError
from bayes_dsge.core.model import DSGEModel
from bayes_dsge.models.ar1 import AR1Model
from bayes_dsge.models.small_nk import SmallNKModel

MODEL_REGISTRY: dict[str, type[DSGEModel]] = {
    AR1Model.name: AR1Model,
    SmallNKModel.name: SmallNKModel,
}


def get_model(name: str) -> DSGEModel:
    """名前からモデルを生成する

    Raises:
        ValidationError: 未登録のモデル名の場合
    """
    try:
        model_cls = MODEL_REGISTRY[name]
    except KeyError:
        available = ", ".join(sorted(MODEL_REGISTRY))
        msg = f"不明なモデル '{name}'（利用可能: {available}）"
        raise ValidationError(msg) from None
    return model_cls()


__all__ = ["AR1Model", "MODEL_REGISTRY", "SmallNKModel", "get_model"]
