"""Shared helpers for attrs validation and precision handling."""

from typing import Any, Callable, Union

import numpy as np
from attrs import fields

from cusvm.exceptions import InvalidParameterError

PrecisionDType = Union[type[np.float32], type[np.float64]]

ALLOWED_PRECISIONS = {np.dtype(np.float32), np.dtype(np.float64)}


def in_attr(name: str, attrs_class_instance: Any) -> bool:
    """Checks if a name is in the attributes of a class instance."""
    field_names = {field.name for field in
                   fields(attrs_class_instance.__class__)}
    return name in field_names or ("_" + name) in field_names


def precision_converter(value: Any) -> PrecisionDType:
    """Return the numpy scalar type for ``value``.

    Parameters
    ----------
    value
        Anything :func:`numpy.dtype` understands, e.g. ``np.float64``,
        ``"float32"`` or ``np.dtype("float64")``.

    Returns
    -------
    type
        ``np.float32`` or ``np.float64``.
    """
    return np.dtype(value).type


def precision_validator(instance, attribute, value) -> None:
    """attrs validator restricting precision to float32 or float64."""
    if np.dtype(value) not in ALLOWED_PRECISIONS:
        raise InvalidParameterError(
            f"{attribute.name} must be float32 or float64, got {value!r}."
        )


def _type_validator(
    types, check: Callable[[Any], bool], description: str
) -> Callable:
    def validator(instance, attribute, value):
        if isinstance(value, bool) or not isinstance(value, types):
            raise TypeError(
                f"{attribute.name} must be of type {types}, got "
                f"{type(value).__name__}."
            )
        if not check(value):
            raise InvalidParameterError(
                f"{attribute.name} must be {description}, but is {value}!"
            )

    return validator


def gttype_validator(types, bound) -> Callable:
    """Validate ``value`` is an instance of ``types`` and > ``bound``."""
    return _type_validator(
        types, lambda v: v > bound, f"greater than {bound}"
    )


def getype_validator(types, bound) -> Callable:
    """Validate ``value`` is an instance of ``types`` and >= ``bound``."""
    return _type_validator(
        types, lambda v: v >= bound, f"greater than or equal to {bound}"
    )


def enum_converter(enum_type) -> Callable:
    """Return a converter accepting enum members, values, or names.

    Names are matched case-insensitively so ``"RBF"``, ``"rbf"`` and
    ``KernelFunctionType.rbf`` all produce the same member.
    """

    def converter(value):
        if isinstance(value, enum_type):
            return value
        if isinstance(value, str):
            key = value.strip().lower()
            for member in enum_type:
                if member.name == key:
                    return member
            raise InvalidParameterError(
                f"Invalid {enum_type.__name__} '{value}' given! Valid "
                f"values are {[member.name for member in enum_type]}."
            )
        try:
            return enum_type(value)
        except ValueError as err:
            raise InvalidParameterError(
                f"Invalid {enum_type.__name__} with value {value} given!"
            ) from err

    return converter


def get_readonly_view(array: np.ndarray) -> np.ndarray:
    view = array.view()
    view.flags.writeable = False
    return view
