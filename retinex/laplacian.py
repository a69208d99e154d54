import math

import numpy as np

from retinex.errors import AllocationFailure, InvalidArgument


def as_channel(data, width=None, height=None):
    """
    Returns `data` as a 2D float64 channel of shape (height, width).

    A flat row-major buffer is accepted when width and height are given.
    The caller's buffer is never modified; a copy is made when the dtype
    or layout has to change.
    """
    try:
        channel = np.asarray(data, dtype=np.float64)
    except MemoryError as exc:
        raise AllocationFailure("could not allocate the channel buffer") from exc
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"channel is not a numeric array: {exc}") from exc

    if width is not None or height is not None:
        if width is None or height is None:
            raise InvalidArgument("width and height must be given together")
        if width <= 0 or height <= 0:
            raise InvalidArgument(f"invalid channel size {width}x{height}")
        if channel.size != width * height:
            raise InvalidArgument(
                f"buffer of {channel.size} samples does not match {width}x{height}")
        channel = channel.reshape(height, width)

    if channel.ndim != 2:
        raise InvalidArgument(f"channel must be 2D, got shape {channel.shape}")
    if channel.shape[0] == 0 or channel.shape[1] == 0:
        raise InvalidArgument(f"empty channel of shape {channel.shape}")
    if not np.all(np.isfinite(channel)):
        raise InvalidArgument("channel holds NaN or infinite values")
    return channel


def check_threshold(threshold):
    try:
        t = float(threshold)
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"the retinex threshold must be a number, got {threshold!r}") from exc
    if not math.isfinite(t) or t < 0:
        raise InvalidArgument(f"the retinex threshold must be a finite value >= 0, got {threshold}")
    return t


def discrete_laplacian_threshold(channel, threshold):
    """
    Thresholded discrete Laplacian of one channel.

    Each pixel receives the sum of (center - neighbour) over its existing
    4-neighbours, keeping only the differences whose magnitude is strictly
    above `threshold`. Neighbours outside the grid contribute nothing
    (zero-flux boundary), so the output always sums to zero.

    Args:
        channel (np.ndarray): 2D array (height, width).
        threshold (float): Retinex threshold, >= 0.

    Returns:
        np.ndarray: float64 array with the same shape as `channel`.
    """
    data = as_channel(channel)
    t = check_threshold(threshold)

    try:
        lap = np.zeros_like(data)
    except MemoryError as exc:
        raise AllocationFailure("could not allocate the laplacian buffer") from exc

    # Horizontal pairs: pixel (y, x) against (y, x + 1)
    # The same difference is added to the left pixel and subtracted from the right one.
    diff_x = data[:, :-1] - data[:, 1:]
    diff_x[np.abs(diff_x) <= t] = 0.0
    lap[:, :-1] += diff_x
    lap[:, 1:] -= diff_x

    # Vertical pairs: pixel (y, x) against (y + 1, x)
    diff_y = data[:-1, :] - data[1:, :]
    diff_y[np.abs(diff_y) <= t] = 0.0
    lap[:-1, :] += diff_y
    lap[1:, :] -= diff_y

    return lap
