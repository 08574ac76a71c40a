"""scikit-learn wrapper for boostbridge."""

from __future__ import annotations

import math
from typing import Any, Callable, Dict, Optional, Tuple, Union

import numpy as np
from sklearn.base import BaseEstimator, RegressorMixin

from .booster import Booster
from .config import DatasetConfig
from .data import ensure_numpy
from .dataset import Dataset
from .training import train

ObjectiveLike = Union[str, Callable[[np.ndarray, np.ndarray], Tuple[Any, Any]]]


class BoostBridgeRegressor(RegressorMixin, BaseEstimator):
    """scikit-learn compatible estimator training a native :class:`Booster`."""

    def __init__(
        self,
        *,
        n_estimators: int = 100,
        max_depth: int = 6,
        learning_rate: float = 0.3,
        reg_lambda: float = 1.0,
        subsample: float = 1.0,
        objective: ObjectiveLike = "reg:squarederror",
        random_state: int = 0,
        nthread: Optional[int] = None,
        missing: float = math.nan,
    ) -> None:
        self.n_estimators = n_estimators
        self.max_depth = max_depth
        self.learning_rate = learning_rate
        self.reg_lambda = reg_lambda
        self.subsample = subsample
        self.objective = objective
        self.random_state = random_state
        self.nthread = nthread
        self.missing = missing
        self._booster: Optional[Booster] = None

    def _dataset_config(self) -> DatasetConfig:
        if self.nthread is None:
            return DatasetConfig(missing=self.missing)
        return DatasetConfig(missing=self.missing, nthread=self.nthread)

    def _params(self) -> Dict[str, Any]:
        params: Dict[str, Any] = {
            "max_depth": self.max_depth,
            "eta": self.learning_rate,
            "lambda": self.reg_lambda,
            "subsample": self.subsample,
            "seed": self.random_state,
        }
        if not callable(self.objective):
            params["objective"] = self.objective
        if self.nthread is not None:
            params["nthread"] = self.nthread
        return params

    def fit(
        self, X: np.ndarray, y: np.ndarray, sample_weight: Optional[np.ndarray] = None
    ) -> "BoostBridgeRegressor":
        """Fit the estimator.

        Parameters
        ----------
        X: np.ndarray
            Feature matrix of shape (n_samples, n_features).
        y: np.ndarray
            Targets of shape (n_samples,).
        sample_weight: np.ndarray | None
            Optional per-sample weights.
        """
        features = np.asarray(ensure_numpy(X), dtype=np.float32)
        target = np.asarray(ensure_numpy(y), dtype=np.float32).reshape(-1)
        obj = None
        if callable(self.objective):
            user_obj = self.objective

            def obj(margins: np.ndarray, dtrain: Dataset) -> Tuple[Any, Any]:
                return user_obj(target, margins)

        with Dataset.from_dense(features, self._dataset_config()) as dtrain:
            dtrain.set_info("label", target)
            if sample_weight is not None:
                dtrain.set_info("weight", sample_weight)
            booster = train(self._params(), dtrain, self.n_estimators, obj=obj)
        if self._booster is not None and self._booster.is_live:
            self._booster.release()
        self._booster = booster
        self.n_features_in_ = features.shape[1]
        return self

    def predict(self, X: np.ndarray) -> np.ndarray:
        if self._booster is None:
            raise RuntimeError("Estimator has not been fitted")
        features = np.asarray(ensure_numpy(X), dtype=np.float32)
        with Dataset.from_dense(features, self._dataset_config()) as dtest:
            return self._booster.predict(dtest, output_margin=callable(self.objective))

    def get_booster(self) -> Booster:
        if self._booster is None:
            raise RuntimeError("Estimator has not been fitted")
        return self._booster
