"""Sampling-order strategies for the consensus search.

Two strategies decide which readings form each minimal sample:

- UniformSampler: every round draws a sample uniformly over all readings
  (RANSAC, MSAC, LMedS).
- ProgressiveSampler: readings are ranked once by descending quality score
  and samples are drawn from a pool of the best readings that grows round by
  round until it covers the whole set (PROSAC, PROMedS).

The progressive growth function follows Chum & Matas, "Matching with
PROSAC - Progressive Sample Consensus" (CVPR 2005): with T_N the total
number of rounds budgeted, the average number of samples drawn from the
best n readings is

    T_n = T_N * prod_{i=0}^{m-1} (n - i) / (N - i)

and the pool is grown to n + 1 once round t reaches T'_n, where
T'_{n+1} = T'_n + ceil(T_{n+1} - T_n).

While the pool grows, every sample holds the newest pool member n plus
m - 1 readings from the better n - 1. Once round t passes T'_n the sample
is drawn uniformly over the pool.

Both samplers are stateful for one run only; ``start`` resets them.
"""

from typing import Optional

import numpy as np


class UniformSampler:
    """Draw samples uniformly over all readings."""

    progressive = False

    def __init__(self):
        self._n_readings = 0
        self._sample_size = 0

    def start(
        self,
        n_readings: int,
        sample_size: int,
        quality_scores: Optional[np.ndarray] = None,
        max_iterations: int = 1,
    ) -> None:
        """Prepare a new run. Quality scores are ignored."""
        if sample_size > n_readings:
            raise ValueError(
                f"sample_size ({sample_size}) exceeds number of readings ({n_readings})"
            )
        self._n_readings = n_readings
        self._sample_size = sample_size

    def draw(self, rng: np.random.Generator) -> np.ndarray:
        """Indices of the next sample, shape (sample_size,)."""
        return rng.choice(self._n_readings, size=self._sample_size, replace=False)


class ProgressiveSampler:
    """
    Draw samples from a quality-sorted pool that grows over the run.

    Attributes:
        pool_size: Current number n of top-ranked readings samples come from.
        order: Reading indices sorted by descending quality score.

    Example:
        >>> sampler = ProgressiveSampler()
        >>> sampler.start(10, 3, quality_scores=np.arange(10.0), max_iterations=100)
        >>> sample = sampler.draw(np.random.default_rng(0))
        >>> bool(np.all(sample >= 6))  # first rounds use the best readings only
        True
    """

    progressive = True

    def __init__(self):
        self.order = np.empty(0, dtype=int)
        self.pool_size = 0
        self._n_readings = 0
        self._sample_size = 0
        self._t = 0
        self._T_n = 0.0
        self._T_n_prime = 1

    def start(
        self,
        n_readings: int,
        sample_size: int,
        quality_scores: Optional[np.ndarray] = None,
        max_iterations: int = 1,
    ) -> None:
        """
        Rank readings and reset the growth function.

        Args:
            n_readings: Number of readings N.
            sample_size: Number of readings m drawn per round.
            quality_scores: Quality score per reading, shape (N,). Higher is
                better. Required.
            max_iterations: Round budget T_N of the growth function.
        """
        if quality_scores is None:
            raise ValueError("ProgressiveSampler requires quality scores")
        quality_scores = np.asarray(quality_scores, dtype=float)
        if quality_scores.shape != (n_readings,):
            raise ValueError(
                f"Expected {n_readings} quality scores, got shape {quality_scores.shape}"
            )
        if sample_size > n_readings:
            raise ValueError(
                f"sample_size ({sample_size}) exceeds number of readings ({n_readings})"
            )

        # Stable sort keeps the input order among equal scores
        self.order = np.argsort(-quality_scores, kind="stable")
        self._n_readings = n_readings
        self._sample_size = sample_size
        self.pool_size = sample_size
        self._t = 0

        m = sample_size
        T_n = float(max(max_iterations, 1))
        for i in range(m):
            T_n *= (m - i) / (n_readings - i)
        self._T_n = T_n
        self._T_n_prime = 1

    def draw(self, rng: np.random.Generator) -> np.ndarray:
        """Indices of the next sample, shape (sample_size,)."""
        m = self._sample_size
        self._t += 1

        if self._t >= self._T_n_prime and self.pool_size < self._n_readings:
            n = self.pool_size
            T_next = self._T_n * (n + 1) / (n + 1 - m)
            self._T_n_prime += int(np.ceil(T_next - self._T_n))
            self._T_n = T_next
            self.pool_size = n + 1

        n = self.pool_size
        if self._T_n_prime < self._t or n == m:
            ranks = rng.choice(n, size=m, replace=False)
        else:
            # Newest pool member plus m - 1 readings from the rest of the pool
            ranks = np.append(rng.choice(n - 1, size=m - 1, replace=False), n - 1)
        return self.order[ranks]
