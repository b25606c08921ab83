from __future__ import annotations

from brepbridge import config


def test_env_bool_parsing(monkeypatch):
    monkeypatch.setenv("BREP_TEST_FLAG", "yes")
    assert config._env_bool("BREP_TEST_FLAG", False) is True
    monkeypatch.setenv("BREP_TEST_FLAG", "off")
    assert config._env_bool("BREP_TEST_FLAG", True) is False
    monkeypatch.setenv("BREP_TEST_FLAG", "maybe")
    assert config._env_bool("BREP_TEST_FLAG", True) is True


def test_env_int_respects_minimum(monkeypatch):
    monkeypatch.setenv("BREP_TEST_INT", "-5")
    assert config._env_int("BREP_TEST_INT", 10, minimum=1) == 1
    monkeypatch.setenv("BREP_TEST_INT", "abc")
    assert config._env_int("BREP_TEST_INT", 10) == 10


def test_defaults_are_sane():
    assert config.DEFAULT_STRATEGY in {"native", "pairwise"}
    assert config.KERNEL_BACKEND in {"auto", "reference", "freecad", "null"}
    assert config.MESH_CACHE_SIZE >= 1
