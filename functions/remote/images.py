# Copyright 2025 Google LLC
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.
# ==============================================================================

from __future__ import annotations

import base64
import binascii
import io
import json
import logging
import math
from dataclasses import dataclass
from typing import List

from PIL import Image, UnidentifiedImageError

from shared.constants import UPDATE_CHUNK_BYTES

logger = logging.getLogger(__name__)

JPEG_DATA_URL_PREFIX = "data:image/jpeg;base64,"

# Small fields are grouped into chunks of at most this many keys.
MAX_FIELDS_PER_CHUNK = 6


@dataclass(frozen=True)
class CompressionStep:
    quality: float
    max_dimension: int


COMPRESSION_STEPS = (
    CompressionStep(0.7, 600),
    CompressionStep(0.5, 400),
    CompressionStep(0.3, 300),
    CompressionStep(0.2, 250),
    CompressionStep(0.15, 200),
    CompressionStep(0.1, 150),
    CompressionStep(0.05, 120),
)
EXTREME_STEP = CompressionStep(0.02, 100)
LAST_RESORT_STEP = CompressionStep(0.01, 80)


def _payload(data_url: str) -> str:
    _, sep, rest = data_url.partition(",")
    return rest if sep else data_url


def data_url_size(data_url: str | None) -> int:
    """
    Returns the decoded byte size of a base64 data URL.

    Every four base64 characters carry three bytes. Values without a
    `data:...;base64,` header are measured as raw base64.
    """
    if not data_url or not isinstance(data_url, str):
        return 0
    return math.ceil(len(_payload(data_url)) * 3 / 4)


def _fit_within(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    if width <= max_dimension and height <= max_dimension:
        return width, height
    aspect_ratio = width / height
    if width > height:
        return max_dimension, max(1, round(max_dimension / aspect_ratio))
    return max(1, round(max_dimension * aspect_ratio)), max_dimension


def compress_image(data_url: str, quality: float = 0.7, max_dimension: int = 512) -> str:
    """
    Re-encodes an image data URL as JPEG, scaled to fit max_dimension.

    Args:
        data_url (str): The image as a base64 data URL.
        quality (float): JPEG quality between 0 and 1.
        max_dimension (int): Longest allowed side in pixels. Aspect ratio is kept.

    Returns:
        str: A `data:image/jpeg;base64,` URL, or the input unchanged when it
        cannot be decoded.
    """
    try:
        raw = base64.b64decode(_payload(data_url), validate=False)
        with Image.open(io.BytesIO(raw)) as img:
            img = img.convert("RGB")
            size = _fit_within(img.width, img.height, max_dimension)
            if size != (img.width, img.height):
                img = img.resize(size, Image.Resampling.LANCZOS)
            out = io.BytesIO()
            img.save(
                out,
                format="JPEG",
                quality=max(1, min(95, int(round(quality * 100)))),
                optimize=True,
            )
    except (binascii.Error, UnidentifiedImageError, OSError, ValueError) as e:
        logger.warning("Could not compress image, keeping original: %s", e)
        return data_url
    return JPEG_DATA_URL_PREFIX + base64.b64encode(out.getvalue()).decode("ascii")


def smart_compress(data_url: str, target_bytes: int) -> str:
    """
    Steps through progressively harsher settings until the image fits.

    When the regular steps are not enough, two final passes at 2% quality
    and 1% quality are applied.
    """
    current = data_url
    size = data_url_size(current)
    logger.info("Compressing image of %d bytes to %d bytes", size, target_bytes)
    for step in COMPRESSION_STEPS:
        if size <= target_bytes:
            break
        current = compress_image(current, step.quality, step.max_dimension)
        size = data_url_size(current)
        logger.debug(
            "quality=%s dimension=%d -> %d bytes", step.quality, step.max_dimension, size
        )
    for step in (EXTREME_STEP, LAST_RESORT_STEP):
        if size <= target_bytes:
            break
        current = compress_image(current, step.quality, step.max_dimension)
        size = data_url_size(current)
        logger.warning("Applied extreme compression, now %d bytes", size)
    return current


def _json_size(value) -> int:
    return len(json.dumps(value, default=str).encode("utf-8"))


def split_large_update(
    updates: dict, max_chunk_bytes: int = UPDATE_CHUNK_BYTES
) -> List[dict]:
    """
    Splits a field update into chunks that are written one after another.

    Fields whose JSON encoding exceeds max_chunk_bytes get a chunk of their
    own; the rest are grouped, starting a new group once the current one
    holds more than five keys.
    """
    chunks: List[dict] = []
    group: dict = {}
    for key, value in updates.items():
        if _json_size(value) > max_chunk_bytes:
            chunks.append({key: value})
            continue
        if len(group) >= MAX_FIELDS_PER_CHUNK:
            chunks.append(group)
            group = {}
        group[key] = value
    if group:
        chunks.append(group)
    return chunks or [dict(updates)]
