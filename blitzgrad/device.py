"""
Device tags and array-module dispatch.

Every tensor's device is read off its payload: a numpy array is "cpu", a
cupy array is "cuda". Nothing here keeps a global current device; data
changes device only through ``move``.
"""
import numpy as np

from .errors import DeviceMismatch

try:
    import cupy as cp
except ImportError:
    cp = None

_CPU_NAMES = ("cpu", "np", "numpy")
_CUDA_NAMES = ("cuda", "gpu", "cupy")


def get_xp_from_array(x):
    """numpy or cupy, whichever owns ``x``."""
    if cp is not None and isinstance(x, cp.ndarray):
        return cp
    return np


def get_xp(device: str):
    if device in _CPU_NAMES:
        return np
    if device in _CUDA_NAMES:
        if cp is None:
            raise ImportError(f"device {device!r} needs cupy, which is not installed")
        return cp
    raise ValueError(f"unknown device {device!r}; expected one of {_CPU_NAMES + _CUDA_NAMES}")


def device_of(x) -> str:
    return "cpu" if get_xp_from_array(x) is np else "cuda"


def check_same_device(op: str, *arrays):
    devices = {device_of(a) for a in arrays}
    if len(devices) > 1:
        raise DeviceMismatch(f"{op}: operands on different devices {sorted(devices)}")


def to_numpy(x):
    if get_xp_from_array(x) is cp:
        return cp.asnumpy(x)
    return np.asarray(x)


def move(x, device: str):
    """Return ``x`` as an array on ``device``; no copy if it is already there."""
    xp = get_xp(device)
    if get_xp_from_array(x) is xp:
        return x
    return to_numpy(x) if xp is np else xp.asarray(x)
