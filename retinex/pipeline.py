import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from contextlib import contextmanager

import numpy as np

from retinex.config import MODES
from retinex.errors import InvalidArgument
from retinex.laplacian import as_channel, check_threshold, discrete_laplacian_threshold
from retinex.normalize import normalize_histo, normalize_mean_std
from retinex.poisson import PoissonSolver

logger = logging.getLogger(__name__)

DEFAULT_SATURATION = 0.015


def non_alpha_count(nc):
    """Number of color channels: 1 for gray (+alpha), 3 for RGB (+alpha)."""
    if nc < 1:
        raise InvalidArgument(f"an image needs at least one channel, got {nc}")
    return 3 if nc >= 3 else 1


class PhaseTimer:
    """Adds up how long each pipeline phase takes, per channel, across runs."""

    def __init__(self):
        self.timings = {}
        self._lock = threading.Lock()

    @contextmanager
    def phase(self, name, channel=0):
        start = time.perf_counter()
        try:
            yield
        finally:
            elapsed = time.perf_counter() - start
            with self._lock:
                key = (name, channel)
                self.timings[key] = self.timings.get(key, 0.0) + elapsed
            logger.debug(f"Channel {channel}: {name} took {elapsed * 1000:.2f} ms")

    def totals(self):
        """Seconds spent per phase, summed over channels."""
        totals = {}
        with self._lock:
            for (name, _), elapsed in self.timings.items():
                totals[name] = totals.get(name, 0.0) + elapsed
        return totals


@contextmanager
def _phase(observer, name, channel):
    if observer is None:
        yield
    else:
        with observer.phase(name, channel):
            yield


def _saturation_count(size, saturation):
    return int(saturation * size)


def _normalize(data, reference, mode, saturation, target_min, target_max):
    if mode == "mean_std":
        return normalize_mean_std(data, reference)
    nb = _saturation_count(data.size, saturation)
    return normalize_histo(data, target_min, target_max, nb, nb)


def retinex_channel(channel, threshold, mode="histogram", saturation=DEFAULT_SATURATION,
                    target_min=0.0, target_max=255.0, solver=None, observer=None, index=0):
    """
    Full Retinex processing of one channel: laplacian, Poisson solve, normalization.

    Args:
        channel (np.ndarray): 2D channel (height, width), values typically in [0, 255].
        threshold (float): Retinex threshold on the laplacian differences.
        mode (str): "histogram" for percentile rescaling onto [target_min, target_max],
            "mean_std" to match the mean and standard deviation of the input channel.
        saturation (float): Fraction of pixels saturated on each side ("histogram" mode).
        solver (PoissonSolver): Solver to use, a new one by default.
        observer (PhaseTimer): Optional phase timer.
        index (int): Channel index, only used for reporting.

    Returns:
        np.ndarray: New float64 channel; `channel` is left untouched.
    """
    if mode not in MODES:
        raise InvalidArgument(f"unknown normalization mode {mode!r}")
    data = as_channel(channel)
    t = check_threshold(threshold)
    if solver is None:
        solver = PoissonSolver()

    with _phase(observer, "laplacian", index):
        laplacian = discrete_laplacian_threshold(data, t)
    with _phase(observer, "poisson", index):
        solution = solver.solve(laplacian)
    with _phase(observer, "normalize", index):
        result = _normalize(solution, data, mode, saturation, target_min, target_max)
    return result


def _check_channels(channels):
    if len(channels) == 0:
        raise InvalidArgument("no channel to process")
    planes = [as_channel(c) for c in channels]
    shape = planes[0].shape
    for i, plane in enumerate(planes[1:], start=1):
        if plane.shape != shape:
            raise InvalidArgument(f"channel {i} has shape {plane.shape}, expected {shape}")
    return planes


def retinex_channels(channels, threshold, mode="histogram", saturation=DEFAULT_SATURATION,
                     target_min=0.0, target_max=255.0, workers=1, transform=None,
                     observer=None):
    """
    Run retinex_channel() on every color channel of a planar image.

    Alpha channels (the 2nd of gray+alpha, the 4th of RGBA) are passed through
    as the very same objects. Either all channels are processed or an error
    is raised and nothing is returned.
    """
    planes = _check_channels(channels)
    t = check_threshold(threshold)
    if workers < 1:
        raise InvalidArgument(f"workers must be >= 1, got {workers}")
    nc_color = non_alpha_count(len(planes))

    def run(index, solver):
        return retinex_channel(planes[index], t, mode=mode, saturation=saturation,
                               target_min=target_min, target_max=target_max,
                               solver=solver, observer=observer, index=index)

    if workers == 1 or nc_color == 1:
        # Same size for every channel, the kernel is computed once
        solver = PoissonSolver(transform)
        processed = [run(i, solver) for i in range(nc_color)]
    else:
        with ThreadPoolExecutor(max_workers=min(workers, nc_color)) as executor:
            futures = [executor.submit(run, i, PoissonSolver(transform)) for i in range(nc_color)]
            processed = [f.result() for f in futures]

    height, width = planes[0].shape
    logger.info(f"Retinex ({mode}, t={t}) done on {nc_color} channel(s) of {width}x{height}")
    return processed + list(channels[nc_color:])


def balance_channels(channels, saturation=DEFAULT_SATURATION, target_min=0.0, target_max=255.0):
    """Histogram normalization only (no Retinex) of every color channel."""
    planes = _check_channels(channels)
    nc_color = non_alpha_count(len(planes))
    processed = []
    for plane in planes[:nc_color]:
        nb = _saturation_count(plane.size, saturation)
        processed.append(normalize_histo(plane, target_min, target_max, nb, nb))
    return processed + list(channels[nc_color:])


def retinex_image(image, threshold, **kwargs):
    """
    retinex_channels() on an interleaved (height, width[, channels]) array.

    Returns:
        np.ndarray: float64 array with the same shape as `image`.
    """
    image = np.asarray(image)
    if image.ndim == 2:
        return retinex_channels([image], threshold, **kwargs)[0]
    if image.ndim != 3:
        raise InvalidArgument(f"image must be 2D or 3D, got shape {image.shape}")
    channels = [image[:, :, c] for c in range(image.shape[2])]
    processed = retinex_channels(channels, threshold, **kwargs)
    return np.stack([np.asarray(c, dtype=np.float64) for c in processed], axis=2)
