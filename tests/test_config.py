"""Tests for worker-count configuration."""

import numpy as np
import pytest

import gampoi as gp
from gampoi import _config


@pytest.fixture(autouse=True)
def reset_override():
    yield
    gp.set_num_workers("auto")


class TestNumWorkers:

    def test_default_is_sequential(self, monkeypatch):
        monkeypatch.delenv("GAMPOI_NUM_WORKERS", raising=False)
        assert gp.get_num_workers() == 1

    def test_env_var(self, monkeypatch):
        monkeypatch.setenv("GAMPOI_NUM_WORKERS", " 3 ")
        assert gp.get_num_workers() == 3

    def test_override_wins_over_env(self, monkeypatch):
        monkeypatch.setenv("GAMPOI_NUM_WORKERS", "3")
        gp.set_num_workers(6)
        assert gp.get_num_workers() == 6

    def test_auto_clears_override(self, monkeypatch):
        monkeypatch.delenv("GAMPOI_NUM_WORKERS", raising=False)
        gp.set_num_workers(4)
        gp.set_num_workers("AUTO")
        assert _config._num_workers_override is None
        assert gp.get_num_workers() == 1

    @pytest.mark.parametrize("value", [0, -2, "many", None, 1.5j, 1.5, 2.0,
                                       True, "2.5"])
    def test_invalid_override(self, value):
        with pytest.raises(ValueError, match="positive integer"):
            gp.set_num_workers(value)
        assert _config._num_workers_override is None

    def test_numpy_integer_override(self):
        gp.set_num_workers(np.int64(3))
        assert gp.get_num_workers() == 3
        assert type(gp.get_num_workers()) is int

    def test_invalid_env_var(self, monkeypatch):
        monkeypatch.setenv("GAMPOI_NUM_WORKERS", "zero")
        with pytest.raises(ValueError, match="positive integer"):
            gp.get_num_workers()

    def test_batch_fit_uses_explicit_workers(self, monkeypatch):
        monkeypatch.setenv("GAMPOI_NUM_WORKERS", "bogus")
        # an explicit count bypasses the environment
        fit = gp.fit_one_group([[1, 2, 3]], 0.0, 0.0, 0.5, n_workers=1)
        assert fit.summary()["CONVERGED"] == 1

    def test_batch_fit_rejects_bad_workers(self):
        with pytest.raises(ValueError):
            gp.fit_one_group([[1, 2, 3]], 0.0, 0.0, 0.5, n_workers=0)
