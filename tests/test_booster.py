import numpy as np
import pytest

from boostbridge.booster import Booster
from boostbridge.dataset import Dataset
from boostbridge.errors import InvalidField, InvalidHandle, InvalidParameter, NotFound, ShapeMismatch


def make_dataset(n_rows: int = 200, n_features: int = 5, seed: int = 42):
    rng = np.random.default_rng(seed)
    X = rng.normal(size=(n_rows, n_features)).astype(np.float32)
    coefs = rng.normal(size=n_features).astype(np.float32)
    y = X @ coefs + 0.1 * rng.standard_normal(n_rows)
    return X, y.astype(np.float32)


@pytest.fixture()
def dtrain():
    X, y = make_dataset()
    ds = Dataset.from_dense(X)
    ds.set_info("label", y)
    yield ds
    if ds.is_live:
        ds.release()


def test_update_one_iter_counts_rounds(dtrain):
    with Booster([dtrain], {"max_depth": 3, "eta": 0.3}) as bst:
        assert bst.boosted_rounds() == 0
        for i in range(4):
            bst.update_one_iter(i, dtrain)
        assert bst.boosted_rounds() == 4
        assert bst.num_feature() == 5


def test_training_reduces_error(dtrain):
    y = dtrain.get_float_info("label")
    with Booster([dtrain], {"max_depth": 3}) as bst:
        for i in range(10):
            bst.update_one_iter(i, dtrain)
        preds = bst.predict(dtrain)
        assert preds.shape == (200,)
        assert preds.dtype == np.float32
        baseline = float(np.mean((y - y.mean()) ** 2))
        assert float(np.mean((y - preds) ** 2)) < baseline


def test_boost_one_iter_with_external_gradients(dtrain):
    y = dtrain.get_float_info("label")
    with Booster([dtrain], {"max_depth": 2, "base_score": 0.0}) as bst:
        for _ in range(3):
            margins = bst.predict(dtrain, output_margin=True, training=True)
            bst.boost_one_iter(dtrain, margins - y, np.ones_like(y))
        assert bst.boosted_rounds() == 3


def test_short_gradient_is_rejected(dtrain):
    with Booster([dtrain]) as bst:
        bst.update_one_iter(0, dtrain)
        with pytest.raises(ShapeMismatch):
            bst.boost_one_iter(dtrain, np.zeros(199), np.ones(200))
        with pytest.raises(ShapeMismatch):
            bst.boost_one_iter(dtrain, np.zeros(200), np.ones(10))
        assert bst.boosted_rounds() == 1


def test_eval_one_iter_report(dtrain):
    X, y = make_dataset(seed=7)
    with Dataset.from_dense(X) as dvalid, Booster([dtrain, dvalid], {"eval_metric": "rmse"}) as bst:
        dvalid.set_info("label", y)
        bst.update_one_iter(0, dtrain)
        report = bst.eval_one_iter(0, [dtrain, dvalid], ["train", "valid"])
        assert report.startswith("[0]")
        assert "train-rmse:" in report and "valid-rmse:" in report
        with pytest.raises(ShapeMismatch):
            bst.eval_one_iter(0, [dtrain, dvalid], ["train"])


@pytest.mark.parametrize("key, value", [("max_depth", "deep"), ("eta", "fast"), ("lambda", "x")])
def test_invalid_parameter_surfaces_on_configure(dtrain, key, value):
    with Booster([dtrain]) as bst:
        with pytest.raises(InvalidParameter) as info:
            bst.set_param(key, value)
            bst.update_one_iter(0, dtrain)
        assert info.value.key == key
        assert info.value.value == value
        assert bst.boosted_rounds() == 0


def test_attribute_store():
    with Booster() as bst:
        assert bst.get_attr_names() == set()
        bst.set_attr("run_id", 7)
        bst.set_attr("note", "hello")
        assert bst.get_attr("run_id") == "7"
        assert bst.get_attr_names() == {"run_id", "note"}
        bst.set_attr("note", "")
        assert bst.get_attr("note") == ""
        bst.set_attr("note", None)
        assert bst.get_attr_names() == {"run_id"}
        with pytest.raises(NotFound):
            bst.get_attr("note")


def test_feature_info(dtrain):
    with Booster([dtrain]) as bst:
        bst.update_one_iter(0, dtrain)
        with pytest.raises(ShapeMismatch):
            bst.set_str_feature_info("feature_name", ["a", "b"])
        names = [f"f{i}" for i in range(5)]
        bst.set_str_feature_info("feature_name", names)
        assert bst.get_str_feature_info("feature_name") == names
        with pytest.raises(InvalidField):
            bst.get_str_feature_info("feature_weights")


def test_raw_and_file_persistence(dtrain, tmp_path):
    with Booster([dtrain], {"max_depth": 3}) as bst:
        for i in range(3):
            bst.update_one_iter(i, dtrain)
        bst.set_attr("origin", "unit-test")
        expected = bst.predict(dtrain)
        raw = bst.save_raw()
        assert isinstance(raw, bytearray) and len(raw) > 0
        path = tmp_path / "model.json"
        bst.save_model(path)

    with Booster() as restored:
        restored.load_raw(raw)
        assert restored.boosted_rounds() == 3
        assert restored.get_attr("origin") == "unit-test"
        np.testing.assert_allclose(restored.predict(dtrain), expected, rtol=1e-6)

    with Booster() as from_file:
        from_file.load_model(path)
        assert from_file.boosted_rounds() == 3
        np.testing.assert_allclose(from_file.predict(dtrain), expected, rtol=1e-5)


def test_released_booster_rejects_every_operation(dtrain, tmp_path):
    bst = Booster([dtrain])
    bst.update_one_iter(0, dtrain)
    raw = bst.save_raw()
    bst.release()
    operations = [
        lambda: bst.set_param("eta", 0.1),
        bst.num_feature,
        bst.boosted_rounds,
        lambda: bst.update_one_iter(1, dtrain),
        lambda: bst.boost_one_iter(dtrain, np.zeros(200), np.ones(200)),
        lambda: bst.eval_one_iter(1, [dtrain], ["train"]),
        bst.get_attr_names,
        lambda: bst.get_attr("a"),
        lambda: bst.set_attr("a", "b"),
        lambda: bst.get_str_feature_info("feature_name"),
        lambda: bst.set_str_feature_info("feature_name", None),
        lambda: bst.predict(dtrain),
        bst.save_raw,
        lambda: bst.load_raw(raw),
        lambda: bst.save_model(tmp_path / "m.json"),
        lambda: bst.load_model(tmp_path / "m.json"),
        bst.release,
    ]
    for op in operations:
        with pytest.raises(InvalidHandle):
            op()


def test_released_dataset_cannot_feed_a_booster(dtrain):
    with Booster([dtrain]) as bst:
        dtrain.release()
        with pytest.raises(InvalidHandle):
            Booster([dtrain])
        with pytest.raises(InvalidHandle):
            bst.update_one_iter(0, dtrain)
        with pytest.raises(InvalidHandle):
            bst.predict(dtrain)
