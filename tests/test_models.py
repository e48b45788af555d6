"""同梱モデルのテスト"""

import numpy as np
import pytest

from bayes_dsge.core.exceptions import ValidationError
from bayes_dsge.models import MODEL_REGISTRY, get_model
from bayes_dsge.models.ar1 import AR1Model
from bayes_dsge.models.small_nk import SmallNKModel, discount_factor


class TestRegistry:
    """モデル名からの生成"""

    def test_registered_models(self) -> None:
        assert set(MODEL_REGISTRY) == {"ar1", "small_nk"}
        assert isinstance(get_model("ar1"), AR1Model)
        assert isinstance(get_model("small_nk"), SmallNKModel)

    def test_unknown_model_raises(self) -> None:
        with pytest.raises(ValidationError, match="不明なモデル"):
            get_model("rbc")


class TestAR1Model:
    """AR(1) モデル"""

    def test_free_parameters(self) -> None:
        model = AR1Model()
        assert model.parameters.free_keys == ["rho", "sigma"]
        assert model.n_states_augmented == 1

    def test_measurement_error_can_be_estimated(self) -> None:
        model = AR1Model(fix_me=False)
        assert model.parameters.free_keys == ["rho", "sigma", "me"]


class TestSmallNKModel:
    """小型 New Keynesian モデル"""

    def test_dimensions(self) -> None:
        model = SmallNKModel()
        assert model.parameters.n_free == 13
        assert model.n_states == 7
        assert model.n_states_augmented == 8
        assert model.n_shocks == 3
        assert model.n_observables == 3
        assert model.state_index("y_lag") == 7

    def test_fixed_measurement_errors(self) -> None:
        """測定誤差は固定パラメータ"""
        free = set(SmallNKModel().parameters.free_keys)
        assert not free & {"e_y", "e_pi", "e_R"}

    def test_discount_factor(self) -> None:
        assert discount_factor(0.0) == 1.0
        assert discount_factor(4.0) == pytest.approx(1.0 / 1.01)

    def test_scaled_parameter_value(self) -> None:
        """rA は割引因子に変換して使う"""
        params = SmallNKModel().parameters
        assert params.value("rA") == pytest.approx(discount_factor(params["rA"].value))

    def test_steady_state_follows_parameters(self) -> None:
        """パラメータ更新のたびに定常名目金利を再計算する"""
        model = SmallNKModel()
        keys = model.parameters.free_keys
        theta = model.parameters.free_values()
        theta[keys.index("piA")] = 4.0
        theta[keys.index("gammaQ")] = 0.5

        params = model.context(theta).parameters

        assert params.value("int_ss") == pytest.approx(4.0 + params["rA"].value + 2.0)

    def test_prior_is_finite_at_initial_values(self) -> None:
        assert np.isfinite(SmallNKModel().parameters.log_prior())
