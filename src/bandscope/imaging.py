"""
Image decoding and grayscale conversion.

Sources can be numpy arrays, PIL images, raw encoded bytes, ``data:`` URLs or
filesystem paths. Whatever the source, the result is a float64 plane.
"""

import io
import base64
import logging
from pathlib import Path

import numpy as np
from PIL import Image, UnidentifiedImageError

from .exceptions import DecodeError
from .states import Size

logger = logging.getLogger("bandscope.imaging")

# ITU-R BT.601 luma weights (R, G, B)
LUMA_WEIGHTS = np.array([0.299, 0.587, 0.114])


def _open_bytes(data):
    try:
        with Image.open(io.BytesIO(data)) as img:
            img.load()
            if img.mode.startswith('I;16'):
                img = img.convert('I')
            elif img.mode not in ('L', 'RGB', 'RGBA', 'I', 'F'):
                img = img.convert('RGBA' if 'A' in img.getbands() else 'RGB')
            return np.asarray(img)
    except (UnidentifiedImageError, OSError, ValueError) as e:
        raise DecodeError(f"Could not decode image bytes: {e}") from e


def _decode_data_url(url):
    try:
        header, payload = url.split(',', 1)
    except ValueError as e:
        raise DecodeError("Malformed data URL") from e
    if ';base64' not in header:
        raise DecodeError("Only base64 data URLs are supported")
    try:
        data = base64.b64decode(payload, validate=True)
    except (ValueError, TypeError) as e:
        raise DecodeError(f"Invalid base64 payload: {e}") from e
    return _open_bytes(data)


def decode_image(source) -> np.ndarray:
    """
    Materialize an image source into a numpy array.

    Args:
        source: ndarray, PIL.Image.Image, bytes, data URL or path

    Returns:
        A 2D (grayscale) or 3D (color) array

    Raises:
        DecodeError: if the source cannot be turned into a matrix
    """
    if source is None:
        raise DecodeError("No image source given")

    if isinstance(source, np.ndarray):
        array = source
    elif isinstance(source, Image.Image):
        array = np.asarray(source)
    elif isinstance(source, (bytes, bytearray, memoryview)):
        array = _open_bytes(bytes(source))
    elif isinstance(source, str) and source.startswith('data:'):
        array = _decode_data_url(source)
    elif isinstance(source, (str, Path)):
        path = Path(source)
        if not path.is_file():
            raise DecodeError(f"Image file not found: {path}")
        array = _open_bytes(path.read_bytes())
    else:
        raise DecodeError(f"Unsupported image source type: {type(source).__name__}")

    if array.ndim not in (2, 3) or array.size == 0:
        raise DecodeError(f"Expected a non-empty 2D image, got shape {array.shape}")
    if not np.issubdtype(array.dtype, np.number) or np.iscomplexobj(array):
        raise DecodeError(f"Expected real pixel values, got dtype {array.dtype}")
    return array


def to_grayscale(array: np.ndarray) -> np.ndarray:
    """
    Convert a decoded image to a float64 luminance plane.

    Alpha channels are ignored; two-channel images are treated as gray+alpha.
    """
    array = np.asarray(array)
    if array.ndim == 2:
        return array.astype(np.float64)
    channels = array.shape[2]
    if channels == 1 or channels == 2:
        return array[..., 0].astype(np.float64)
    return array[..., :3].astype(np.float64) @ LUMA_WEIGHTS


def load_grayscale(source):
    """
    Decode a source straight to a grayscale plane.

    Returns:
        (plane, Size)
    """
    gray = to_grayscale(decode_image(source))
    height, width = gray.shape
    return gray, Size(width, height)


def crop(array: np.ndarray, size: Size) -> np.ndarray:
    """Crop a plane to size (anchored at the top-left corner)."""
    return array[:size.height, :size.width]
