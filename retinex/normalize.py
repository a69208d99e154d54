import logging
import math

import numpy as np

from retinex.errors import AllocationFailure, DegenerateInput, InvalidArgument

logger = logging.getLogger(__name__)


def _as_samples(data):
    try:
        samples = np.asarray(data, dtype=np.float64)
    except MemoryError as exc:
        raise AllocationFailure("could not allocate the sample buffer") from exc
    except (TypeError, ValueError) as exc:
        raise InvalidArgument(f"data is not a numeric array: {exc}") from exc
    if samples.size == 0:
        raise InvalidArgument("cannot normalize an empty buffer")
    if not np.all(np.isfinite(samples)):
        raise InvalidArgument("cannot normalize a buffer holding NaN or infinite values")
    return samples


def _check_inplace(data, inplace):
    if inplace and not (isinstance(data, np.ndarray) and np.issubdtype(data.dtype, np.floating)):
        kind = data.dtype if isinstance(data, np.ndarray) else type(data).__name__
        raise InvalidArgument(f"inplace normalization needs a float ndarray, got {kind}")


def _store(data, result, inplace):
    # Results are computed aside and only copied back once complete
    if inplace:
        data[...] = result
        return data
    return result


def minmax_histo(data, nb_min, nb_max):
    """
    Get the min/max of `data` such that at most nb_min (resp. nb_max) samples
    fall below (resp. above) the interval.

    The histogram is built over the samples rounded to the nearest integer,
    so the returned bounds are integers.

    Args:
        data (np.ndarray): Samples, any shape.
        nb_min (int): Number of samples allowed below the returned min.
        nb_max (int): Number of samples allowed above the returned max.

    Returns:
        tuple: (min, max) as floats.
    """
    samples = _as_samples(data).ravel()
    size = samples.size

    if np.abs(samples).max() >= 2.0 ** 62:
        raise InvalidArgument("sample values are too large to be histogrammed")
    rounded = np.floor(samples + 0.5).astype(np.int64)
    offset = int(rounded.min())
    # With values in [-510.7, 312.7] the histogram has 824 bins, index = rounded + 511
    try:
        histo = np.bincount(rounded - offset)
    except MemoryError as exc:
        span = int(rounded.max()) - offset + 1
        raise AllocationFailure(f"could not allocate a histogram of {span} bins") from exc

    # Forward: first value with more than nb_min samples at or below it
    cumul = np.cumsum(histo)
    lo = int(np.argmax(cumul > nb_min))
    # Backward: last value with more than nb_max samples at or above it
    rev_cumul = size - cumul + histo
    hi = len(histo) - 1 - int(np.argmax(rev_cumul[::-1] > nb_max))

    return float(lo + offset), float(hi + offset)


def normalize_histo(data, target_min=0.0, target_max=255.0, flat_nb_min=0, flat_nb_max=0,
                    inplace=False):
    """
    Rescale `data` linearly onto [target_min, target_max], saturating the
    flat_nb_min lowest and flat_nb_max highest samples.

    With flat_nb_min == flat_nb_max == 0 this is an exact min/max rescale.
    A constant input maps to the middle of the target range.

    Args:
        data (np.ndarray): Samples, any shape.
        target_min (float): Lower bound of the output range.
        target_max (float): Upper bound of the output range.
        flat_nb_min (int): Samples saturated to target_min.
        flat_nb_max (int): Samples saturated to target_max.
        inplace (bool): Write the result back into `data` (which must then be
            a float ndarray). The buffer is left untouched if an error is raised.

    Returns:
        np.ndarray: The normalized samples, same shape as `data`.
    """
    if not (math.isfinite(target_min) and math.isfinite(target_max)):
        raise InvalidArgument(f"target range must be finite, got [{target_min}, {target_max}]")
    if target_min > target_max:
        raise InvalidArgument(f"target_min {target_min} is above target_max {target_max}")
    if flat_nb_min < 0 or flat_nb_max < 0:
        raise InvalidArgument(
            f"saturation counts must be >= 0, got {flat_nb_min} and {flat_nb_max}")
    _check_inplace(data, inplace)

    samples = _as_samples(data)
    size = samples.size

    if target_min == target_max:
        return _store(data, np.full(samples.shape, float(target_min)), inplace)

    if flat_nb_min + flat_nb_max >= size:
        flat_nb_min = flat_nb_max = (size - 1) // 2
        logger.warning(f"The number of pixels to flatten is too large for {size} samples, "
                       f"using (size - 1) / 2 = {flat_nb_min} on each side")

    if flat_nb_min == 0 and flat_nb_max == 0:
        vmin, vmax = float(samples.min()), float(samples.max())
    else:
        vmin, vmax = minmax_histo(samples, flat_nb_min, flat_nb_max)

    if vmax <= vmin:
        target_mid = (target_max + target_min) / 2.0
        return _store(data, np.full(samples.shape, target_mid), inplace)

    scale = (target_max - target_min) / (vmax - vmin)
    result = np.clip((samples - vmin) * scale + target_min, target_min, target_max)
    return _store(data, result, inplace)


def mean_std(data):
    """Population mean and standard deviation (divisor N)."""
    samples = _as_samples(data)
    return float(np.mean(samples)), float(np.std(samples))


def normalize_mean_std(data, ref, inplace=False):
    """
    Affine rescale of `data` so that its mean and standard deviation match
    those of `ref`.

    Raises:
        DegenerateInput: when `data` is constant (zero standard deviation).
    """
    _check_inplace(data, inplace)
    samples = _as_samples(data)
    reference = _as_samples(ref)
    if samples.size != reference.size:
        raise InvalidArgument(
            f"data and reference sizes differ: {samples.size} != {reference.size}")

    if np.ptp(samples) == 0:
        raise DegenerateInput("cannot match the statistics of a constant channel")
    m_data, dt_data = mean_std(samples)
    m_ref, dt_ref = mean_std(reference)
    if dt_data == 0:
        raise DegenerateInput("cannot match the statistics of a zero-variance channel")

    a = dt_ref / dt_data
    b = m_ref - a * m_data
    return _store(data, a * samples + b, inplace)
