import logging
import os

import cv2
import numpy as np
from PIL import Image

from retinex.errors import InvalidArgument

logger = logging.getLogger(__name__)


def split_channels(image):
    """Interleaved (height, width[, nc]) array -> list of planar float64 channels."""
    image = np.asarray(image, dtype=np.float64)
    if image.ndim == 2:
        return [image.copy()]
    if image.ndim != 3 or image.shape[2] == 0:
        raise InvalidArgument(f"cannot split an image of shape {image.shape}")
    return [np.ascontiguousarray(image[:, :, c]) for c in range(image.shape[2])]


def merge_channels(channels):
    """List of planar channels -> interleaved (height, width[, nc]) float64 array."""
    if len(channels) == 0:
        raise InvalidArgument("no channel to merge")
    if len(channels) == 1:
        return np.asarray(channels[0], dtype=np.float64)
    try:
        return np.stack([np.asarray(c, dtype=np.float64) for c in channels], axis=2)
    except ValueError as exc:
        raise InvalidArgument(f"channels do not share the same shape: {exc}") from exc


def read_channels(path):
    """
    Read an image file into planar channels, in gray / RGB / RGBA order.

    Args:
        path (str): Image file, any format OpenCV decodes.

    Returns:
        tuple: (channels, width, height), channels as float64 arrays in [0, 255].
    """
    img = cv2.imread(path, cv2.IMREAD_UNCHANGED)
    if img is None:
        raise InvalidArgument(f"the image {path} could not be properly read")

    if img.ndim == 3:
        if img.shape[2] == 3:
            img = cv2.cvtColor(img, cv2.COLOR_BGR2RGB)
        elif img.shape[2] == 4:
            img = cv2.cvtColor(img, cv2.COLOR_BGRA2RGBA)

    if img.dtype == np.uint16:
        # 16-bit files are processed in the 8-bit range
        img = img.astype(np.float64) / 257.0

    channels = split_channels(img)
    height, width = channels[0].shape
    logger.info(f"Read {path}: {width}x{height}, {len(channels)} channel(s)")
    return channels, width, height


def write_channels(path, channels):
    """Clip to [0, 255], round and encode planar channels to `path`."""
    image = merge_channels(channels)
    image_u8 = np.uint8(np.clip(np.rint(image), 0, 255))

    out_dir = os.path.dirname(path)
    try:
        if out_dir:
            os.makedirs(out_dir, exist_ok=True)
        Image.fromarray(image_u8).save(path)
    except (OSError, ValueError) as exc:
        raise InvalidArgument(f"the image {path} could not be written: {exc}") from exc
    logger.info(f"Image saved to: {path}")
    return path
