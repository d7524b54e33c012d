"""Base classes for constructing cached Numba-compiled functions.

Every data-parallel primitive in cusvm (kernel functions, kernel matrix
assembly, the symmetric multiply, preconditioner application) is compiled
by a :class:`JITFactory`. The factory keeps its compile-critical settings
in an attrs container and rebuilds its cached functions only after a
setting actually changed.
"""

from abc import ABC, abstractmethod
from typing import Any, Callable, Dict, Set, Tuple

from attrs import Attribute, define, field, fields, has
from attrs.validators import in_
from numba import cuda, njit
from numpy import array_equal, asarray, ndarray

from cusvm._utils import (
    PrecisionDType,
    in_attr,
    precision_converter,
    precision_validator,
)

JIT_TARGETS = ("cpu", "cuda")


def target_jit(target: str) -> Callable[[Callable], Callable]:
    """Return the decorator compiling an element-level helper for ``target``.

    Parameters
    ----------
    target
        ``"cpu"`` compiles with :func:`numba.njit`, ``"cuda"`` compiles a
        CUDA device function.

    Returns
    -------
    callable
        Decorator applied to plain Python scalar functions.
    """
    if target == "cuda":
        return cuda.jit(device=True, inline=True)
    return njit(inline="always")


@define
class JITFactoryConfig:
    """Base class for compile settings containers.

    .. warning::

        **All field modifications MUST be done via the :meth:`update`
        method.** Direct assignment bypasses change tracking, so the owning
        factory would keep serving stale compiled functions.

    Notes
    -----
    Fields declared with ``eq=False`` (typically callables) are ignored by
    change detection.
    """

    precision: PrecisionDType = field(
        validator=precision_validator, converter=precision_converter
    )
    target: str = field(default="cpu", validator=in_(JIT_TARGETS))
    _field_map: Dict[str, Attribute] = field(
        factory=dict, init=False, repr=False, eq=False
    )

    def __attrs_post_init__(self):
        field_map = {}
        for fld in fields(type(self)):
            field_map[fld.name] = fld
            if fld.alias is not None:
                field_map[fld.alias] = fld
        self._field_map = field_map

    def update(
        self, updates_dict: dict = None, **kwargs
    ) -> Tuple[Set[str], Set[str]]:
        """Update configuration fields with new values.

        Parameters
        ----------
        updates_dict
            Mapping of setting names to new values. Keys are the
            non-underscored field names.
        **kwargs
            Additional settings to update.

        Returns
        -------
        tuple[set[str], set[str]]
            recognized: Names of settings that matched known fields.
            changed: Names of settings whose values were updated.
        """
        if updates_dict is None:
            updates_dict = {}
        updates_dict = updates_dict.copy()
        updates_dict.update(kwargs)
        if not updates_dict:
            return set(), set()

        recognized = set()
        changed = set()

        for key, value in updates_dict.items():
            fld = self._field_map.get(key)
            if fld is None or fld.name == "_field_map":
                continue

            recognized.add(key)
            if fld.converter is not None:
                value = fld.converter(value)
            if fld.validator is not None:
                fld.validator(self, fld, value)
            old_value = getattr(self, fld.name)

            if isinstance(old_value, ndarray) or isinstance(value, ndarray):
                value_changed = not array_equal(
                    asarray(old_value), asarray(value)
                )
            elif fld.eq is False:
                value_changed = old_value is not value
            else:
                value_changed = old_value != value

            if value_changed:
                object.__setattr__(self, fld.name, value)
                changed.add(key)

        return recognized, changed


@define
class JITCache:
    """Base class for containers of compiled outputs."""

    pass


class JITFactory(ABC):
    """Factory for creating and caching Numba-compiled functions.

    Subclasses implement :meth:`build` to construct the compiled functions
    and return them in a :class:`JITCache` subclass. Any change of the
    compile settings invalidates the cache so functions are rebuilt on the
    next access.

    Notes
    -----
    Always fetch compiled functions at the point of use. Holding on to a
    function across :meth:`update_compile_settings` calls defeats the
    invalidation logic.
    """

    def __init__(self):
        self._compile_settings = None
        self._cache_valid = True
        self._cache = None

    @abstractmethod
    def build(self) -> JITCache:
        """Build and return the compiled functions."""
        return None

    def setup_compile_settings(self, compile_settings) -> None:
        """Attach a container of compile-critical settings to the object.

        Parameters
        ----------
        compile_settings : attrs class
            Settings object used to configure the compiled functions.

        Notes
        -----
        Any existing settings are replaced.
        """
        if not has(compile_settings):
            raise TypeError(
                "Compile settings must be an attrs class instance."
            )
        self._compile_settings = compile_settings
        self._invalidate_cache()

    @property
    def cache_valid(self) -> bool:
        """bool: ``True`` if cached outputs are up to date."""

        return self._cache_valid

    @property
    def compile_settings(self):
        """Return the current compile settings object."""
        return self._compile_settings

    def update_compile_settings(
        self, updates_dict=None, silent=False, **kwargs
    ) -> Set[str]:
        """Update compile settings with new values.

        Parameters
        ----------
        updates_dict : dict, optional
            Mapping of setting names to new values.
        silent : bool, default=False
            Suppress errors for unrecognised parameters.
        **kwargs
            Additional settings to update.

        Returns
        -------
        set[str]
            Names of settings that were recognised.

        Raises
        ------
        ValueError
            If compile settings have not been set up.
        KeyError
            If an unrecognised parameter is supplied and ``silent`` is
            ``False``.
        """
        if updates_dict is None:
            updates_dict = {}
        updates_dict = updates_dict.copy()
        updates_dict.update(kwargs)
        if updates_dict == {}:
            return set()

        if self._compile_settings is None:
            raise ValueError(
                "Compile settings must be set up using "
                "self.setup_compile_settings before updating."
            )
        recognized, changed = self._compile_settings.update(updates_dict)

        unrecognised = set(updates_dict.keys()) - recognized
        if unrecognised and not silent:
            invalid = ", ".join(sorted(unrecognised))
            raise KeyError(
                f"'{invalid}' is not a valid compile setting for this "
                "object, and so was not updated.",
            )
        if changed:
            self._invalidate_cache()

        return recognized

    def _invalidate_cache(self) -> None:
        self._cache_valid = False

    def _build(self) -> None:
        build_result = self.build()

        if not isinstance(build_result, JITCache):
            raise TypeError(
                "build() must return an attrs class (JITCache subclass)"
            )

        self._cache = build_result
        self._cache_valid = True

    def get_cached_output(self, output_name: str) -> Any:
        """Return a named cached output, rebuilding first if stale.

        Raises
        ------
        KeyError
            If ``output_name`` is not present in the cache.
        """
        if not self.cache_valid:
            self._build()
        if self._cache is None:
            raise RuntimeError("Cache has not been initialized by build().")
        if not in_attr(output_name, self._cache):
            raise KeyError(
                f"Output '{output_name}' not found in cached outputs."
            )
        return getattr(self._cache, output_name)

    @property
    def precision(self) -> type:
        """Return the precision dtype of the compiled functions."""
        return self.compile_settings.precision

    @property
    def target(self) -> str:
        """Return the compilation target, ``"cpu"`` or ``"cuda"``."""
        return self.compile_settings.target
