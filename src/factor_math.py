# factor_math.py
# Stateless number theory helpers and the tile value generator.

import math
import random
from typing import List, Optional

MAX_TILE_VALUE = 9999
MAX_FACTOR_COUNT = 4

# --- Number Theory ---

def is_prime(n: int) -> bool:
    """
    Checks whether n is prime by trial division up to its square root.
    Args:
        n (int): The number to test.
    Returns:
        bool: True if n is prime, False otherwise (always False for n < 2).
    """
    if n < 2:
        return False
    if n == 2:
        return True
    if n % 2 == 0:
        return False
    for i in range(3, math.isqrt(n) + 1, 2):
        if n % i == 0:
            return False
    return True

def prime_factors(n: int) -> List[int]:
    """
    Factorizes n into primes, keeping multiplicity.
    Example: 12 -> [2, 2, 3], 15 -> [3, 5].
    Args:
        n (int): A positive integer.
    Returns:
        List[int]: The prime factors in ascending order ([] for n < 2).
    """
    factors = []
    remaining = n
    if remaining < 2:
        return factors

    while remaining % 2 == 0:
        factors.append(2)
        remaining //= 2

    candidate = 3
    while candidate * candidate <= remaining:
        while remaining % candidate == 0:
            factors.append(candidate)
            remaining //= candidate
        candidate += 2

    # Whatever is left over is itself prime
    if remaining > 1:
        factors.append(remaining)
    return factors

def unique_prime_factors(n: int) -> List[int]:
    """Distinct prime factors of n, ascending. Example: 12 -> [2, 3]."""
    unique = []
    for factor in prime_factors(n):
        if not unique or unique[-1] != factor:
            unique.append(factor)
    return unique

def is_divisor(a: int, b: int) -> bool:
    """True if a divides b. Callers must ensure a > 0."""
    return b % a == 0

def next_prime(n: int) -> int:
    """
    Finds the smallest prime strictly greater than n.
    Args:
        n (int): The lower bound (exclusive).
    Returns:
        int: The next prime; 2 for any n < 2.
    """
    candidate = n + 1
    if candidate < 2:
        return 2
    while not is_prime(candidate):
        candidate += 1
    return candidate

def primes_up_to(n: int) -> List[int]:
    """
    Lists every prime <= n using the sieve of Eratosthenes.
    Args:
        n (int): The inclusive upper bound.
    Returns:
        List[int]: Ascending primes, empty if n < 2.
    """
    if n < 2:
        return []

    sieve = [True] * (n + 1)
    sieve[0] = sieve[1] = False
    i = 2
    while i * i <= n:
        if sieve[i]:
            for j in range(i * i, n + 1, i):
                sieve[j] = False
        i += 1
    return [i for i, flag in enumerate(sieve) if flag]

# --- Tile Values ---

def generate_tile_value(max_prime: int,
                        max_tile_value: int = MAX_TILE_VALUE,
                        rng: Optional[random.Random] = None) -> int:
    """
    Builds a tile value as the product of a few random small primes.
    Between 1 and MAX_FACTOR_COUNT primes <= max_prime are drawn with replacement
    and multiplied one at a time. If a multiplication would push the product past
    max_tile_value, the product from before that step is returned instead.
    Args:
        max_prime (int): Largest prime that may appear as a factor.
        max_tile_value (int): Ceiling the returned value never exceeds.
        rng (Optional[random.Random]): Source of randomness, for reproducible games.
    Returns:
        int: A value in [2, max_tile_value].
    Raises:
        ValueError: If max_tile_value is below 2.
    """
    if max_tile_value < 2:
        raise ValueError("Tile value ceiling must be at least 2.")
    rng = rng or random.Random()

    candidates = primes_up_to(max_prime)
    if not candidates:
        return 2
    fallback = candidates[0]

    count = rng.randint(1, MAX_FACTOR_COUNT)
    value = 1
    for _ in range(count):
        prime = rng.choice(candidates)
        if value * prime > max_tile_value:
            break
        value *= prime

    if value == 1:
        # The very first factor was already too large
        return fallback
    return value

def random_prime_value(max_prime: int, rng: Optional[random.Random] = None) -> int:
    """
    Picks a single random prime <= max_prime, used when a player taps an empty cell.
    Args:
        max_prime (int): Largest prime allowed.
        rng (Optional[random.Random]): Source of randomness.
    Returns:
        int: The chosen prime, or 2 if there are no primes below the bound.
    """
    rng = rng or random.Random()
    candidates = primes_up_to(max_prime)
    if not candidates:
        return 2
    return rng.choice(candidates)
