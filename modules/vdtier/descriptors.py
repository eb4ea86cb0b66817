#!/usr/bin/env python3
"""
vdtier.descriptors

Frame descriptors for the visual-similarity tier.

A descriptor is an opaque byte string; the extractor that produced it also
defines the distance between two descriptors. The reference extractor is an
imagehash perceptual hash compared by Hamming distance.
"""
from __future__ import annotations
import logging
from typing import Callable, Dict, List, Optional, Sequence

import imagehash
from PIL import Image

from .frames import FrameSampler
from .models import Asset

logger = logging.getLogger(__name__)

SAMPLE_POSITIONS = (0.1, 0.25, 0.5, 0.75, 0.9)


class FeatureExtractor:
    """Turns an image into a descriptor and measures distance between descriptors."""

    def descriptor(self, image: Image.Image) -> Optional[bytes]:
        raise NotImplementedError

    def distance(self, a: bytes, b: bytes) -> float:
        raise NotImplementedError


_HASHERS: Dict[str, Callable[..., imagehash.ImageHash]] = {
    "phash": imagehash.phash,
    "average": imagehash.average_hash,
    "dhash": imagehash.dhash,
}


class ImageHashExtractor(FeatureExtractor):
    """
    Perceptual-hash descriptor: hash_size x hash_size bits packed big-endian.

    With the default 16x16 phash a descriptor is 32 bytes and the distance is
    the number of differing bits (0..256).
    """
    def __init__(self, method: str = "phash", hash_size: int = 16):
        if method not in _HASHERS:
            raise ValueError(f"unknown hash method {method!r}; expected one of {sorted(_HASHERS)}")
        if hash_size < 2:
            raise ValueError("hash_size must be >= 2")
        self.method = method
        self.hash_size = hash_size
        self._hasher = _HASHERS[method]

    @property
    def descriptor_size(self) -> int:
        return (self.hash_size * self.hash_size + 7) // 8

    def descriptor(self, image: Image.Image) -> Optional[bytes]:
        h = self._hasher(image, hash_size=self.hash_size)
        return int(str(h), 16).to_bytes(self.descriptor_size, "big")

    def distance(self, a: bytes, b: bytes) -> float:
        return float(hamming_distance(a, b))


def hamming_distance(a: bytes, b: bytes) -> int:
    if len(a) != len(b):
        raise ValueError(f"descriptor length mismatch: {len(a)} != {len(b)}")
    x = int.from_bytes(a, "big") ^ int.from_bytes(b, "big")
    return x.bit_count()


def pick_representative(descriptors: Sequence[bytes]) -> Optional[bytes]:
    """Middle descriptor when three or more were extracted, else the first one."""
    if not descriptors:
        return None
    if len(descriptors) >= 3:
        return descriptors[len(descriptors) // 2]
    return descriptors[0]


def extract_representative(
    asset: Asset,
    duration: float,
    sampler: FrameSampler,
    extractor: FeatureExtractor,
    positions: Sequence[float] = SAMPLE_POSITIONS,
) -> Optional[bytes]:
    """
    Sample frames at each normalized position and return the representative
    descriptor, or None when the duration is not positive or no frame yields a
    descriptor. Frames that fail to decode are skipped; extractor errors
    propagate to the caller.
    """
    if not duration or duration <= 0:
        return None

    found: List[bytes] = []
    for pos in positions:
        try:
            img = sampler.frame(asset, pos, duration=duration)
        except OSError as e:
            logger.debug("Frame decode failed for %s @ %.2f: %s", asset.id, pos, e)
            continue
        if img is None:
            continue
        desc = extractor.descriptor(img)
        if desc:
            found.append(desc)

    logger.debug("Extracted %d/%d descriptor(s) for %s", len(found), len(positions), asset.id)
    return pick_representative(found)
