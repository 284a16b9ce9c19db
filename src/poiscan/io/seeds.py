# src/poiscan/io/seeds.py
from __future__ import annotations
import os, random
from typing import Optional

import numpy as np

DEFAULT_SEED = 1337


def set_seed(seed: Optional[int]) -> int:
    """Pin the global RNGs; returns the resolved seed (``POISCAN_SEED`` env, else 1337)."""
    s = int(seed if seed is not None else os.environ.get("POISCAN_SEED", str(DEFAULT_SEED)))
    random.seed(s)
    os.environ["PYTHONHASHSEED"] = str(s)
    np.random.seed(s)
    return s


def point_rng(seed: int, poi_value: float, stream: int = 0) -> np.random.Generator:
    """
    Generator keyed on (seed, exact float64 bits of poi_value, stream).

    Toys at a given POI value are identical however the points are split
    across workers or in which order they are evaluated.
    """
    bits = np.array([poi_value], dtype=np.float64).view(np.uint32)
    entropy = [int(seed) & 0xFFFFFFFF, int(stream) & 0xFFFFFFFF, int(bits[0]), int(bits[1])]
    return np.random.default_rng(np.random.SeedSequence(entropy))
