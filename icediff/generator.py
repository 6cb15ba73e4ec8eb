"""
Biased random generation of test-case bodies.

A case body is a pair of type-tag lists: the parameter list of the called
function and the argument list at the call site. Each list comes from one of
two strategies, picked independently per list:

- Subset: take the canonical alphabet [1..N], delete a random number of
  randomly chosen positions, and sometimes shuffle what remains. This yields
  in-order and permuted subsets without repetition.
- Multiset: draw a random length and fill it with tags drawn with
  replacement. This is the only way to get duplicate tags.
"""

from __future__ import annotations

import hashlib
import random
from dataclasses import dataclass
from fractions import Fraction

from icediff.config import GenerationConfig


@dataclass(frozen=True)
class CaseBody:
    """The randomized part of a test case."""

    parameters: tuple[int, ...]
    arguments: tuple[int, ...]


def chance(rng: random.Random, probability: Fraction) -> bool:
    """Return True with exactly the given rational probability."""
    return rng.randrange(probability.denominator) < probability.numerator


def subset_of_canonical(rng: random.Random, config: GenerationConfig) -> list[int]:
    """Delete a random number of tags from the canonical sequence, maybe shuffle."""
    tags = config.canonical_tags
    removals = rng.randrange(config.max_removals) if config.max_removals else 0
    for _ in range(removals):
        del tags[rng.randrange(len(tags))]

    if chance(rng, config.shuffle_probability):
        rng.shuffle(tags)
    return tags


def random_multiset(rng: random.Random, config: GenerationConfig) -> list[int]:
    """Draw a random-length list of tags with replacement."""
    length = rng.randint(config.multiset_min_length, config.multiset_max_length)
    return [rng.randint(1, config.type_count) for _ in range(length)]


def generate_type_list(
    rng: random.Random, subset_probability: Fraction, config: GenerationConfig
) -> list[int]:
    """Pick one of the two strategies and build a type-tag list with it."""
    if chance(rng, subset_probability):
        return subset_of_canonical(rng, config)
    return random_multiset(rng, config)


def derive_seed(seed: int, *parts: object) -> int:
    """Derive a stable sub-seed from a master seed and a path of labels."""
    h = hashlib.blake2b(digest_size=16)
    h.update(str(seed).encode("utf-8"))
    for part in parts:
        h.update(b"|")
        h.update(str(part).encode("utf-8"))
    return int.from_bytes(h.digest(), byteorder="big", signed=False)


class CaseGenerator:
    """
    Produce case bodies from a private random source.

    Every worker owns one generator, so no synchronization is needed.
    """

    def __init__(
        self, config: GenerationConfig | None = None, rng: random.Random | None = None
    ) -> None:
        self.config = config or GenerationConfig()
        self.rng = rng or random.Random()

    @classmethod
    def for_worker(
        cls, worker_id: int, seed: int | None, config: GenerationConfig | None = None
    ) -> "CaseGenerator":
        """Build the generator for one worker, reproducible when a seed is given."""
        if seed is None:
            return cls(config, random.Random())
        return cls(config, random.Random(derive_seed(seed, "worker", worker_id)))

    def generate(self) -> CaseBody:
        # Arguments are drawn before parameters; seeded runs depend on this order.
        arguments = generate_type_list(
            self.rng, self.config.argument_subset_probability, self.config
        )
        parameters = generate_type_list(
            self.rng, self.config.parameter_subset_probability, self.config
        )
        return CaseBody(parameters=tuple(parameters), arguments=tuple(arguments))
