import io

import numpy as np
from PIL import Image as PILImage


def png_bytes(width: int = 16, height: int = 16, color=(40, 160, 40)) -> bytes:
    buffer = io.BytesIO()
    PILImage.new("RGB", (width, height), color).save(buffer, format="PNG")
    return buffer.getvalue()


def probability_map(values) -> list:
    """Nested (H, W, 1) list the way TensorFlow Serving returns an output."""
    return np.asarray(values, dtype=np.float32)[..., np.newaxis].tolist()
