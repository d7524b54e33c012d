import attrs
import numpy as np
import pytest

from cusvm.JITFactory import (
    JITCache,
    JITFactory,
    JITFactoryConfig,
    target_jit,
)
from cusvm.exceptions import InvalidParameterError


@attrs.define
class ScaleConfig(JITFactoryConfig):
    scale: float = attrs.field(default=1.0, converter=float)


@attrs.define
class ScaleCache(JITCache):
    scale_value: object = attrs.field(default=None, eq=False)
    block_size: int = -1


class ScaleFactory(JITFactory):
    """Compiles ``x * scale``, counting builds."""

    def __init__(self, precision=np.float64, target="cpu", scale=1.0):
        super().__init__()
        self.builds = 0
        self.setup_compile_settings(
            ScaleConfig(precision=precision, target=target, scale=scale)
        )

    def build(self):
        self.builds += 1
        scale = self.precision(self.compile_settings.scale)

        @target_jit(self.target)
        def scale_value(x):
            return x * scale

        return ScaleCache(scale_value=scale_value)


@pytest.fixture(scope="function")
def factory():
    return ScaleFactory(scale=2.0)


def test_setup_compile_settings_requires_attrs(factory):
    with pytest.raises(TypeError):
        factory.setup_compile_settings({"scale": 3.0})


def test_update_compile_settings(factory):
    factory.update_compile_settings(scale=3.0)
    assert factory.compile_settings.scale == 3.0, (
        "compile settings were not updated correctly"
    )
    with pytest.raises(KeyError):
        factory.update_compile_settings(non_existent_key=True)


def test_update_compile_settings_reports_correct_key(factory):
    with pytest.raises(KeyError) as exc:
        factory.update_compile_settings(
            {"non_existent_key": True, "scale": 4.0}
        )
    assert "non_existent_key" in str(exc.value)
    assert "scale" not in str(exc.value)


def test_update_compile_settings_silent(factory):
    recognized = factory.update_compile_settings(
        {"non_existent_key": True, "scale": 4.0}, silent=True
    )
    assert recognized == {"scale"}
    assert factory.compile_settings.scale == 4.0


def test_cache_invalidation(factory):
    assert factory.cache_valid is False, "Cache should be invalid initially"
    _ = factory.get_cached_output("scale_value")
    assert factory.cache_valid is True

    factory.update_compile_settings(scale=5.0)
    assert factory.cache_valid is False, (
        "Cache should be invalidated after updating compile settings"
    )
    _ = factory.get_cached_output("scale_value")
    assert factory.cache_valid is True


def test_unchanged_value_keeps_cache(factory):
    _ = factory.get_cached_output("scale_value")
    factory.update_compile_settings(scale=2.0)
    assert factory.cache_valid is True
    _ = factory.get_cached_output("scale_value")
    assert factory.builds == 1


def test_rebuild_uses_new_settings(factory):
    assert factory.get_cached_output("scale_value")(3.0) == 6.0
    factory.update_compile_settings(scale=10.0)
    assert factory.get_cached_output("scale_value")(3.0) == 30.0
    assert factory.builds == 2


def test_build_must_return_cache(factory, monkeypatch):
    monkeypatch.setattr(factory, "build", lambda: 10.0)
    with pytest.raises(TypeError):
        factory.get_cached_output("scale_value")


def test_get_cached_output_unknown_name(factory):
    with pytest.raises(KeyError):
        factory.get_cached_output("missing")


def test_get_cached_output_returns_stored_value(factory):
    assert factory.get_cached_output("block_size") == -1


def test_config_converts_precision():
    config = ScaleConfig(precision="float32")
    assert config.precision is np.float32
    recognized, changed = config.update(precision=np.float64)
    assert recognized == {"precision"}
    assert changed == {"precision"}
    assert config.precision is np.float64


def test_config_rejects_invalid_values():
    with pytest.raises(InvalidParameterError):
        ScaleConfig(precision=np.int32)
    with pytest.raises(ValueError):
        ScaleConfig(precision=np.float64, target="opencl")
    config = ScaleConfig(precision=np.float64)
    with pytest.raises(ValueError):
        config.update(target="opencl")
    assert config.target == "cpu"
