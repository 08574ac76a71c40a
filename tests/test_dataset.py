import logging

import numpy as np
import pandas as pd
import pytest
import torch

from boostbridge.config import DatasetConfig
from boostbridge.core.array_interface import encode
from boostbridge.backends import get_library
from boostbridge.dataset import Dataset
from boostbridge.errors import EncodingError, InvalidField, InvalidHandle, ShapeMismatch

# 3x3 matrix with five stored entries:
#   [[1, ., 2],
#    [., 3, .],
#    [4, ., 5]]
CSR = (
    np.array([0, 2, 3, 5], dtype=np.uint64),
    np.array([0, 2, 1, 0, 2], dtype=np.uint32),
    np.array([1, 2, 3, 4, 5], dtype=np.float32),
)
CSC = (
    np.array([0, 2, 3, 5], dtype=np.uint64),
    np.array([0, 2, 1, 0, 2], dtype=np.uint32),
    np.array([1, 4, 3, 2, 5], dtype=np.float32),
)


def make_dense(n_rows: int = 20, n_features: int = 4, seed: int = 0) -> np.ndarray:
    rng = np.random.default_rng(seed)
    return rng.normal(size=(n_rows, n_features)).astype(np.float32)


def test_from_dense_shape():
    with Dataset.from_dense(make_dense(20, 4)) as ds:
        assert ds.num_row() == 20
        assert ds.num_col() == 4
        assert ds.num_non_missing() == 80


def test_from_dense_descriptor_and_missing_sentinel():
    values = np.array([[1.0, -999.0], [3.0, 4.0], [-999.0, 6.0]], dtype=np.float64)
    desc = encode(values, values.shape, "<f8")
    with Dataset.from_dense(desc, DatasetConfig(missing=-999.0)) as ds:
        assert (ds.num_row(), ds.num_col()) == (3, 2)
        assert ds.num_non_missing() == 4


def test_from_dense_accepts_torch_and_pandas():
    X = make_dense(10, 3)
    with Dataset.from_dense(torch.from_numpy(X)) as ds:
        assert ds.num_row() == 10
    frame = pd.DataFrame(X, columns=["a", "b", "c"])
    with Dataset.from_dense(frame) as ds:
        assert ds.get_str_feature_info("feature_name") == ["a", "b", "c"]
    with Dataset.from_dense(X, feature_names=["x0", "x1", "x2"]) as ds:
        assert ds.get_str_feature_info("feature_name") == ["x0", "x1", "x2"]


def test_from_dense_rejects_non_tables():
    with pytest.raises(ShapeMismatch):
        Dataset.from_dense(np.zeros(5, dtype=np.float32))


def test_csr_round_trip():
    with Dataset.from_sparse(*CSR, n=3) as ds:
        assert (ds.num_row(), ds.num_col()) == (3, 3)
        indptr, indices, data = ds.get_data_as_csr()
    assert indptr.dtype == np.uint64 and indices.dtype == np.uint32 and data.dtype == np.float32
    for got, expected in zip((indptr, indices, data), CSR):
        np.testing.assert_array_equal(got, expected)


def test_csc_exports_as_csr():
    with Dataset.from_sparse(*CSC, n=3, fmt="csc", num_minor=3) as ds:
        assert (ds.num_row(), ds.num_col()) == (3, 3)
        indptr, indices, data = ds.get_data_as_csr()
    np.testing.assert_array_equal(indptr, CSR[0])
    np.testing.assert_array_equal(indices, CSR[1])
    np.testing.assert_array_equal(data, CSR[2])


def test_sparse_minor_extent():
    with Dataset.from_sparse(*CSR, n=3, num_minor=7) as ds:
        assert ds.num_col() == 7
    with pytest.raises(ShapeMismatch):
        Dataset.from_sparse(*CSR, n=3, num_minor=2)


@pytest.mark.parametrize(
    "indptr, indices, data, n",
    [
        ([0, 2, 3, 5], [0, 2, 1, 0, 2], [1, 2, 3, 4, 5], 4),
        ([0, 2, 3, 5], [0, 2, 1, 0], [1, 2, 3, 4, 5], 3),
        ([0, 3, 2, 5], [0, 2, 1, 0, 2], [1, 2, 3, 4, 5], 3),
        ([1, 2, 3, 5], [0, 2, 1, 0, 2], [1, 2, 3, 4, 5], 3),
        ([0, 2, 3, 5], [0, 2, -1, 0, 2], [1, 2, 3, 4, 5], 3),
    ],
)
def test_sparse_shape_validation(indptr, indices, data, n):
    with pytest.raises(ShapeMismatch):
        Dataset.from_sparse(np.array(indptr), np.array(indices), np.array(data), n)


def test_sparse_unknown_format():
    with pytest.raises(ValueError, match="format"):
        Dataset.from_sparse(*CSR, n=3, fmt="coo")


def test_label_round_trip_and_length_check():
    X = make_dense(12, 3)
    y = np.arange(12, dtype=np.float32)
    with Dataset.from_dense(X) as ds:
        assert ds.get_float_info("label").shape == (0,)
        ds.set_info("label", y)
        np.testing.assert_array_equal(ds.get_float_info("label"), y)
        with pytest.raises(ShapeMismatch):
            ds.set_info("label", y[:-1])
        np.testing.assert_array_equal(ds.get_float_info("label"), y)


def test_unknown_fields():
    with Dataset.from_dense(make_dense(5, 2)) as ds:
        with pytest.raises(InvalidField):
            ds.set_info("labels", np.zeros(5))
        with pytest.raises(KeyError):
            ds.get_float_info("group_ptr")
        with pytest.raises(InvalidField):
            ds.get_uint_info("label")
        with pytest.raises(InvalidField):
            ds.get_str_feature_info("feature_names")


def test_group_and_weight_rules():
    with Dataset.from_dense(make_dense(5, 2)) as ds:
        with pytest.raises(ShapeMismatch):
            ds.set_info("group", [2, 2])
        ds.set_info("group", [2, 3])
        np.testing.assert_array_equal(ds.get_uint_info("group_ptr"), [0, 2, 5])
        ds.set_info("weight", [0.5, 2.0])
        np.testing.assert_allclose(ds.get_float_info("weight"), [0.5, 2.0])
        ds.set_info("weight", np.ones(5))
        with pytest.raises(ShapeMismatch):
            ds.set_info("weight", np.ones(3))


def test_feature_weights_and_bounds():
    with Dataset.from_dense(make_dense(6, 3)) as ds:
        with pytest.raises(ShapeMismatch):
            ds.set_info("feature_weights", [1.0, 2.0])
        ds.set_info("feature_weights", [1.0, 2.0, 3.0])
        np.testing.assert_allclose(ds.get_float_info("feature_weights"), [1.0, 2.0, 3.0])
        ds.set_info("label_lower_bound", np.zeros(6))
        ds.set_info("label_upper_bound", np.full(6, np.inf))
        assert np.all(np.isinf(ds.get_float_info("label_upper_bound")))
        ds.set_info("base_margin", np.full(6, 0.25))
        np.testing.assert_allclose(ds.get_float_info("base_margin"), np.full(6, 0.25))


def test_feature_names_length_mismatch_leaves_columns_alone():
    with Dataset.from_dense(make_dense(4, 3)) as ds:
        with pytest.raises(ShapeMismatch):
            ds.set_str_feature_info("feature_name", ["a", "b"])
        assert ds.num_col() == 3
        assert ds.get_str_feature_info("feature_name") == []
        ds.set_str_feature_info("feature_name", ["a", "b", "c"])
        ds.set_str_feature_info("feature_type", ["q", "q", "q"])
        assert ds.get_str_feature_info("feature_type") == ["q", "q", "q"]
        ds.set_str_feature_info("feature_name", None)
        assert ds.get_str_feature_info("feature_name") == []


def test_from_file_logs_warning(tmp_path, caplog):
    path = tmp_path / "train.libsvm"
    path.write_text("1 0:1.5 2:2.0\n0 1:3.0\n1 0:0.5 1:1.0 2:4.0\n")
    with caplog.at_level(logging.WARNING, logger="boostbridge.dataset"):
        ds = Dataset.from_file(path, fmt="libsvm")
    assert any("not validated" in r.getMessage() for r in caplog.records)
    with ds:
        assert (ds.num_row(), ds.num_col()) == (3, 3)
        np.testing.assert_array_equal(ds.get_float_info("label"), [1, 0, 1])


def test_save_binary(tmp_path):
    target = tmp_path / "train.buffer"
    with Dataset.from_dense(make_dense(8, 2)) as ds:
        ds.save_binary(target)
    assert target.exists()
    assert target.stat().st_size > 0


def test_bad_dense_buffer_fails_before_native_call(monkeypatch):
    import boostbridge.dataset as dataset_module

    def _no_native():
        raise AssertionError("native library must not be reached")

    monkeypatch.setattr(dataset_module, "get_library", _no_native)
    with pytest.raises(EncodingError):
        Dataset.from_dense(np.array([["a", "b"]], dtype=object))


def test_released_dataset_rejects_every_operation(tmp_path):
    ds = Dataset.from_dense(make_dense(4, 2))
    ds.release()
    assert not ds.is_live
    assert "released" in repr(ds)
    operations = [
        ds.num_row,
        ds.num_col,
        ds.num_non_missing,
        lambda: ds.set_info("label", np.zeros(4)),
        lambda: ds.set_dense_info("label", np.zeros(4, dtype=np.float32), 4, "<f4"),
        lambda: ds.get_float_info("label"),
        lambda: ds.get_uint_info("group_ptr"),
        lambda: ds.set_str_feature_info("feature_name", ["a", "b"]),
        lambda: ds.get_str_feature_info("feature_name"),
        ds.get_data_as_csr,
        lambda: ds.save_binary(tmp_path / "x.buffer"),
        ds.release,
    ]
    for op in operations:
        with pytest.raises(InvalidHandle):
            op()


def requires_symbol(name: str):
    return pytest.mark.skipif(not get_library().has(name), reason=f"library does not export {name}")


@requires_symbol("XGDMatrixCreateFromMat")
def test_from_mat_flat_buffer():
    X = make_dense(6, 3)
    X[0, 1] = -1.0
    ds = Dataset.from_mat(X.ravel().tobytes(), 6, 3, missing=-1.0)
    assert (ds.num_row(), ds.num_col()) == (6, 3)
    assert ds.num_non_missing() == 17
    ds.release()
    with pytest.raises(EncodingError):
        Dataset.from_mat(X.ravel(), 5, 3)
    with pytest.raises(EncodingError):
        Dataset.from_mat(np.asfortranarray(X), 6, 3)


@requires_symbol("XGDMatrixSetDenseInfo")
@pytest.mark.parametrize("dtype", ["<f4", "<f8", "<u4", "<u8"])
def test_set_dense_info_converts_natively(dtype):
    ds = Dataset.from_dense(make_dense(5, 2))
    ds.set_dense_info("label", np.arange(5, dtype=dtype), 5, dtype)
    np.testing.assert_array_equal(ds.get_float_info("label"), np.arange(5, dtype=np.float32))
    with pytest.raises(ShapeMismatch):
        ds.set_dense_info("weight", np.ones(3, dtype=np.float32), 3, "<f4")
    with pytest.raises(InvalidField):
        ds.set_dense_info("bogus", np.ones(5, dtype=np.float32), 5, "<f4")
    ds.release()
