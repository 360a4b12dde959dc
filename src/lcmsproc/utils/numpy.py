"""Serializable numpy array types and array helpers."""

from __future__ import annotations

import base64
import json
from typing import Literal, TypeVar

import numpy
from numpy import floating, frombuffer, integer
from numpy.typing import NDArray
from pydantic.functional_serializers import PlainSerializer
from pydantic.functional_validators import BeforeValidator
from typing_extensions import Annotated


def array_to_json_str(arr: NDArray) -> str:
    """Serialize a numpy array as a JSON string.

    :param arr: The numpy array to serialize
    :return: JSON string with the following three fields. `dtype` store the array dtype, `shape` contains the array
        shape and `base64_bytes` stores the array data in base64 format.

    """
    d = {
        "dtype": str(arr.dtype),
        "shape": arr.shape,
        "base64_bytes": base64.b64encode(arr.tobytes()).decode("utf8"),
    }
    return json.dumps(d)


def json_str_to_array(s: str) -> NDArray:
    """Decode a string generated with array_to_json_str into a numpy array."""
    d = json.loads(s)
    data = base64.b64decode(bytes(d["base64_bytes"], "utf8"))
    return frombuffer(data, dtype=d["dtype"]).reshape(d["shape"]).copy()


def validate_serializable_array(arr) -> NDArray:
    """Create an array if a serialized string or a sequence is provided."""
    if isinstance(arr, str):
        return json_str_to_array(arr)
    if not isinstance(arr, numpy.ndarray):
        return numpy.asarray(arr)
    return arr


def ppm_error(mz: NDArray | float, ref: NDArray | float) -> NDArray:
    r"""Compute the relative m/z error in parts per million.

    .. math::

        \textrm{ppm} = \frac{|m - m_{ref}|}{m_{ref}} 10^{6}

    """
    return numpy.abs(numpy.asarray(mz) - ref) / numpy.asarray(ref) * 1e6


def find_range(sorted_arr: NDArray, low: float | None, high: float | None) -> tuple[int, int]:
    """Find the slice of a sorted array with values in the closed interval ``[low, high]``.

    :param sorted_arr: a sorted 1D array.
    :param low: the interval lower bound. If ``None``, the slice starts at the first element.
    :param high: the interval upper bound. If ``None``, the slice ends at the last element.
    :return: the start and end indices of the slice.

    """
    start = 0 if low is None else int(numpy.searchsorted(sorted_arr, low, side="left"))
    end = sorted_arr.size if high is None else int(numpy.searchsorted(sorted_arr, high, side="right"))
    return start, max(start, end)


FloatDtype = TypeVar("FloatDtype", bound=floating)
IntDtype = TypeVar("IntDtype", bound=integer)


FloatArray = Annotated[
    NDArray[FloatDtype],
    BeforeValidator(validate_serializable_array),
    PlainSerializer(array_to_json_str, return_type=str),
]

IntArray = Annotated[
    NDArray[IntDtype],
    BeforeValidator(validate_serializable_array),
    PlainSerializer(array_to_json_str, return_type=str),
]

FloatArray1D = Annotated[
    NDArray[FloatDtype],
    Literal["N"],
    BeforeValidator(validate_serializable_array),
    PlainSerializer(array_to_json_str, return_type=str),
]

IntArray1D = Annotated[
    NDArray[IntDtype],
    Literal["N"],
    BeforeValidator(validate_serializable_array),
    PlainSerializer(array_to_json_str, return_type=str),
]
