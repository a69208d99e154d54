import logging

import numpy as np
from scipy.fft import dctn, idctn

from retinex.errors import AllocationFailure, InvalidArgument, RetinexError, TransformFailure
from retinex.laplacian import as_channel, discrete_laplacian_threshold

logger = logging.getLogger(__name__)

TRANSFORM_NORMS = ("ortho", "backward", "unscaled")


def cos_table(n):
    """cos(k * pi / n) for k in [0, n)."""
    if n <= 0:
        raise InvalidArgument(f"cosine table size must be > 0, got {n}")
    try:
        return np.cos(np.pi * np.arange(n, dtype=np.float64) / n)
    except MemoryError as exc:
        raise AllocationFailure(f"could not allocate a cosine table of size {n}") from exc


class DctTransform:
    """
    Type-II forward / type-III inverse 2D cosine transform over (height, width) buffers,
    backed by scipy.fft.

    norm selects the scaling of the pair:
        "ortho"    : both directions orthonormal, inverse(forward(x)) == x
        "backward" : scipy's default pair, the inverse carries 1 / (2n) per axis,
                     inverse(forward(x)) == x
        "unscaled" : raw DCT-II then raw DCT-III (the FFTW REDFT10 / REDFT01 pair),
                     inverse(forward(x)) == 4 * width * height * x
    """

    def __init__(self, norm="ortho", workers=None):
        if norm not in TRANSFORM_NORMS:
            raise InvalidArgument(f"unknown transform normalization {norm!r}")
        self.norm = norm
        self.workers = workers

    def forward(self, width, height, src):
        data = np.asarray(src, dtype=np.float64).reshape(height, width)
        norm = "backward" if self.norm == "unscaled" else self.norm
        return dctn(data, type=2, norm=norm, workers=self.workers)

    def inverse(self, width, height, spectral):
        data = np.asarray(spectral, dtype=np.float64).reshape(height, width)
        # With norm="forward" scipy leaves the inverse DCT unscaled
        norm = "forward" if self.norm == "unscaled" else self.norm
        return idctn(data, type=2, norm=norm, workers=self.workers)

    def scale(self, width, height):
        """
        Factor m such that m * inverse(forward(x)) == x.

        Per axis of length n the raw DCT-III of a raw DCT-II is 2n times the
        input, so the unscaled 2D pair composes to 4 * width * height. The
        two normalized variants already compose to the identity.
        """
        if self.norm == "unscaled":
            return 1.0 / (4.0 * width * height)
        return 1.0


class PoissonSolver:
    """
    Solves the Neumann Poisson equation for a Laplacian field in the DCT domain.

    The multiplier table m / (4 - 2 cos(i pi / w) - 2 cos(j pi / h)) is kept for
    the last (width, height) only, and belongs to this instance. Use one
    solver per thread when channels are processed concurrently.
    """

    def __init__(self, transform=None, cache=True):
        self.transform = transform if transform is not None else DctTransform()
        self.cache = cache
        self._cached_shape = None
        self._cached_factor = None

    def poisson_factor(self, width, height):
        """Per-frequency multiplier, with the zero frequency pinned to 0."""
        if self.cache and self._cached_shape == (width, height):
            return self._cached_factor

        cosx = cos_table(width)
        cosy = cos_table(height)
        m = self.transform.scale(width, height)

        try:
            denom = 4.0 - 2.0 * cosx[np.newaxis, :] - 2.0 * cosy[:, np.newaxis]
            # The DC term is singular; it is overwritten below
            denom[0, 0] = 1.0
            factor = m / denom
        except MemoryError as exc:
            raise AllocationFailure(f"could not allocate the {width}x{height} poisson kernel") from exc
        factor[0, 0] = 0.0
        logger.debug(f"Poisson kernel computed for {width}x{height} (m={m:g})")

        if self.cache:
            self._cached_shape = (width, height)
            self._cached_factor = factor
        return factor

    def clear_cache(self):
        self._cached_shape = None
        self._cached_factor = None

    def _run_transform(self, direction, width, height, data):
        func = getattr(self.transform, direction)
        try:
            out = func(width, height, data)
        except RetinexError:
            raise
        except MemoryError as exc:
            raise AllocationFailure(f"{direction} transform could not allocate its output") from exc
        except Exception as exc:
            raise TransformFailure(f"{direction} transform failed: {exc}") from exc

        out = np.asarray(out, dtype=np.float64)
        if out.size != width * height:
            raise TransformFailure(
                f"{direction} transform returned {out.size} values for a {width}x{height} buffer")
        out = out.reshape(height, width)
        if not np.all(np.isfinite(out)):
            raise TransformFailure(f"{direction} transform returned non-finite values")
        return out

    def solve(self, laplacian):
        """
        Poisson solution U of a Laplacian field L, with mean(U) == 0.

        Args:
            laplacian (np.ndarray): 2D field (height, width), as produced by
                discrete_laplacian_threshold().

        Returns:
            np.ndarray: float64 array of the same shape. The input is not modified.
        """
        field = as_channel(laplacian)
        height, width = field.shape

        spectral = self._run_transform("forward", width, height, field)
        factor = self.poisson_factor(width, height)
        # forward() may hand back a view of its input; never scale in place
        spectral = spectral * factor
        return self._run_transform("inverse", width, height, spectral)


def retinex_pde(channel, threshold, solver=None):
    """
    Retinex PDE on one channel: thresholded Laplacian, then Poisson solve.

    The result has zero mean and must be rescaled by one of the normalizers
    before it can be displayed.
    """
    if solver is None:
        solver = PoissonSolver()
    laplacian = discrete_laplacian_threshold(channel, threshold)
    return solver.solve(laplacian)
