"""Pre- and post-processing shared by every model-serving binding.

The segmentation model takes one RGB image scaled to ``[0, 1]`` and answers
with two probability maps, ``output_0`` (leaf) and ``output_1`` (lesion).
Both bindings reduce those maps to the same :class:`PredictionResult`.
"""
from __future__ import annotations

import io
from dataclasses import dataclass
from typing import Any

import numpy as np
from PIL import Image, UnidentifiedImageError

from ...errors import InferenceInvalidResponse, InvalidImage
from ...models.entities import PredictionResult

MASK_THRESHOLD = 0.5


@dataclass(frozen=True)
class MaskData:
    binary_mask: np.ndarray  # (H, W) uint8, 255 inside the mask
    confidence: float


def preprocess_image(image_bytes: bytes, size: int) -> np.ndarray:
    """Decode, resize to ``size`` x ``size`` and scale to a float32 HWC tensor."""
    if not image_bytes:
        raise InvalidImage("Image payload is empty")
    try:
        with Image.open(io.BytesIO(image_bytes)) as im:
            rgb = im.convert("RGB").resize((size, size), resample=Image.LANCZOS)
    except (UnidentifiedImageError, OSError) as exc:
        raise InvalidImage(f"Invalid or corrupted image: {exc}") from exc
    return np.asarray(rgb, dtype=np.float32) / 255.0


def as_probability_map(output: Any, integration: str) -> np.ndarray:
    """Coerce a model output into a (H, W, C) float array."""
    try:
        array = np.asarray(output, dtype=np.float32)
    except (TypeError, ValueError) as exc:
        raise InferenceInvalidResponse(f"Output is not a numeric tensor: {exc}", integration) from exc
    if array.ndim == 4 and array.shape[0] == 1:
        array = array[0]
    if array.ndim == 2:
        array = array[..., np.newaxis]
    if array.ndim != 3 or array.size == 0:
        raise InferenceInvalidResponse(f"Unexpected output shape {array.shape}", integration)
    if not np.all(np.isfinite(array)):
        raise InferenceInvalidResponse("Output contains non-finite values", integration)
    return array


def extract_mask(probabilities: np.ndarray) -> MaskData:
    """Threshold the per-pixel max probability into a binary mask.

    The confidence is the mean probability over the pixels kept in the mask.
    """
    per_pixel = probabilities.max(axis=-1)
    inside = per_pixel > MASK_THRESHOLD
    confidence = float(per_pixel[inside].mean()) if inside.any() else 0.0
    return MaskData(binary_mask=np.where(inside, 255, 0).astype(np.uint8), confidence=confidence)


def calculate_severity(leaf: MaskData, lesion: MaskData) -> float:
    """Fraction of leaf pixels covered by lesion, in ``[0, 1]``."""
    if leaf.binary_mask.shape != lesion.binary_mask.shape:
        raise InferenceInvalidResponse(
            f"Leaf mask {leaf.binary_mask.shape} and lesion mask {lesion.binary_mask.shape} differ"
        )
    on_leaf = leaf.binary_mask == 255
    leaf_count = int(on_leaf.sum())
    if leaf_count == 0:
        return 0.0
    overlap = int(np.logical_and(on_leaf, lesion.binary_mask == 255).sum())
    return overlap / leaf_count


def encode_mask(mask: np.ndarray) -> bytes:
    buffer = io.BytesIO()
    Image.fromarray(mask).save(buffer, format="PNG")
    return buffer.getvalue()


def validate_result(result: PredictionResult, integration: str) -> PredictionResult:
    for name in ("presence", "absence", "severity"):
        value = getattr(result, name)
        if not 0.0 <= value <= 1.0:
            raise InferenceInvalidResponse(f"{name}={value!r} is outside [0, 1]", integration)
    if not result.leaf_mask or not result.lesion_mask:
        raise InferenceInvalidResponse("Missing mask payload", integration)
    return result


def build_prediction_result(output_0: Any, output_1: Any, integration: str) -> PredictionResult:
    leaf = extract_mask(as_probability_map(output_0, integration))
    lesion = extract_mask(as_probability_map(output_1, integration))
    severity = calculate_severity(leaf, lesion)
    presence = min(max(lesion.confidence, 0.0), 1.0)
    result = PredictionResult(
        presence=presence,
        absence=1.0 - presence,
        severity=severity,
        leaf_mask=encode_mask(leaf.binary_mask),
        lesion_mask=encode_mask(lesion.binary_mask),
    )
    return validate_result(result, integration)
