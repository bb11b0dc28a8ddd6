import random
from typing import Optional, Union


def get_seeded_rng(seed: int) -> random.Random:
    """Returns a new random.Random instance seeded with the given integer."""
    return random.Random(seed)


def resolve_rng(source: Optional[Union[int, random.Random]], fallback_seed: int = 0) -> random.Random:
    """
    Accepts either a seed or a ready-made random source (anything exposing the
    random.Random interface, including scripted test doubles).
    """
    if source is None:
        return get_seeded_rng(fallback_seed)
    if isinstance(source, int):
        return get_seeded_rng(source)
    return source
