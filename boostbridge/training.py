"""Training driver built on the booster primitives."""

from __future__ import annotations

import json
import logging
import re
from time import perf_counter
from typing import Any, Callable, Dict, Mapping, Optional, Sequence, Tuple

import numpy as np

from .booster import Booster
from .dataset import Dataset

__all__ = ["Objective", "parse_eval_report", "train"]

_log = logging.getLogger(__name__)

# obj(margins, dtrain) -> (grad, hess)
Objective = Callable[[np.ndarray, Dataset], Tuple[Any, Any]]

_METRIC = re.compile(r"(?P<name>[^\s:]+):(?P<value>[-+]?(?:\d+\.?\d*(?:[eE][-+]?\d+)?|nan|inf))")


def parse_eval_report(report: str) -> Dict[str, float]:
    """Split a native report such as ``[3]\\ttrain-rmse:0.41`` into ``{"train-rmse": 0.41}``."""
    return {m.group("name"): float(m.group("value")) for m in _METRIC.finditer(report)}


def train(
    params: Mapping[str, Any],
    dtrain: Dataset,
    num_rounds: int,
    *,
    evals: Sequence[Tuple[Dataset, str]] = (),
    obj: Optional[Objective] = None,
    round_callback: Optional[Callable[[int, Dict[str, Any]], None]] = None,
) -> Booster:
    """Train a booster for ``num_rounds`` rounds.

    Parameters
    ----------
    params:
        Hyperparameters staged on the new booster.
    dtrain:
        Training dataset; must carry a label.
    evals:
        ``(dataset, name)`` pairs evaluated after each round.
    obj:
        Custom objective receiving raw margins and ``dtrain``. When given, each
        round predicts margins and feeds the returned gradients to
        :meth:`Booster.boost_one_iter`.
    round_callback:
        Called as ``round_callback(round_idx, metrics)`` after each round.
    """

    eval_sets = list(evals)
    booster = Booster([dtrain] + [d for d, _ in eval_sets], params)
    start_round = booster.boosted_rounds()
    for offset in range(num_rounds):
        round_idx = start_round + offset
        tic = perf_counter()
        if obj is None:
            booster.update_one_iter(round_idx, dtrain)
        else:
            margins = booster.predict(dtrain, output_margin=True, training=True)
            grad, hess = obj(margins, dtrain)
            booster.boost_one_iter(dtrain, grad, hess, iteration=round_idx)
        metrics: Dict[str, Any] = {"round": round_idx, "train_s": perf_counter() - tic}
        if eval_sets:
            report = booster.eval_one_iter(round_idx, [d for d, _ in eval_sets], [n for _, n in eval_sets])
            metrics.update(parse_eval_report(report))
        booster.round_metrics.append(metrics)
        if _log.isEnabledFor(logging.INFO):
            _log.info(json.dumps(metrics))
        if round_callback is not None:
            round_callback(round_idx, metrics)
    return booster
