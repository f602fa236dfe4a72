"""
Prime field and polynomial arithmetic for the proof system.

Field: p = 3 * 2^30 + 1, multiplicative generator 5. The 2-adic part of
p - 1 gives power-of-two evaluation domains up to 2^30 points, enough
for radix-2 NTTs over every trace and extension domain we build.

Polynomials are lists of coefficients, lowest degree first.
"""

from typing import List, Sequence, Tuple

MODULUS = 3 * 2 ** 30 + 1
GENERATOR = 5
MAX_TWO_ADICITY = 30
ELEMENT_BYTES = 8


def inv(a: int) -> int:
    if a % MODULUS == 0:
        raise ZeroDivisionError("inverse of zero in prime field")
    return pow(a, MODULUS - 2, MODULUS)


def root_of_unity(order: int) -> int:
    """Primitive root of unity of a power-of-two order."""
    if order < 1 or order & (order - 1) or order > 2 ** MAX_TWO_ADICITY:
        raise ValueError(f"no root of unity of order {order}")
    return pow(GENERATOR, (MODULUS - 1) // order, MODULUS)


def element_to_bytes(a: int) -> bytes:
    return (a % MODULUS).to_bytes(ELEMENT_BYTES, "big")


def bytes_to_element(data: bytes) -> int:
    """Reduce the first 8 bytes of a digest into the field."""
    return int.from_bytes(data[:ELEMENT_BYTES], "big") % MODULUS


def next_power_of_two(n: int) -> int:
    size = 1
    while size < n:
        size <<= 1
    return size


def ntt(values: Sequence[int], root: int) -> List[int]:
    """
    Radix-2 number-theoretic transform.

    Returns [sum_j values[j] * root^(i*j) for i in range(n)];
    len(values) must be a power of two and root must have that order.
    """
    n = len(values)
    a = [v % MODULUS for v in values]

    # Bit-reversal permutation
    j = 0
    for i in range(1, n):
        bit = n >> 1
        while j & bit:
            j ^= bit
            bit >>= 1
        j |= bit
        if i < j:
            a[i], a[j] = a[j], a[i]

    length = 2
    while length <= n:
        half = length // 2
        step = pow(root, n // length, MODULUS)
        twiddles = [1] * half
        for k in range(1, half):
            twiddles[k] = twiddles[k - 1] * step % MODULUS
        for start in range(0, n, length):
            for k in range(half):
                u = a[start + k]
                v = a[start + k + half] * twiddles[k] % MODULUS
                a[start + k] = (u + v) % MODULUS
                a[start + k + half] = (u - v) % MODULUS
        length <<= 1
    return a


def intt(values: Sequence[int], root: int) -> List[int]:
    """Inverse of ntt: evaluations over <root> back to coefficients."""
    n = len(values)
    n_inv = inv(n)
    return [c * n_inv % MODULUS for c in ntt(values, inv(root))]


def interpolate(evaluations: Sequence[int]) -> List[int]:
    """Coefficients of the polynomial through evaluations over the size-n subgroup."""
    return intt(evaluations, root_of_unity(len(evaluations)))


def evaluate_on_domain(coeffs: Sequence[int], domain_size: int) -> List[int]:
    """Evaluate over the subgroup of the given power-of-two size."""
    if len(coeffs) > domain_size:
        raise ValueError("polynomial degree exceeds evaluation domain")
    padded = list(coeffs) + [0] * (domain_size - len(coeffs))
    return ntt(padded, root_of_unity(domain_size))


def evaluate(coeffs: Sequence[int], x: int) -> int:
    """Horner evaluation at a single point."""
    result = 0
    for c in reversed(coeffs):
        result = (result * x + c) % MODULUS
    return result


def poly_add(a: Sequence[int], b: Sequence[int]) -> List[int]:
    size = max(len(a), len(b))
    return [
        ((a[i] if i < len(a) else 0) + (b[i] if i < len(b) else 0)) % MODULUS
        for i in range(size)
    ]


def poly_scale(a: Sequence[int], factor: int) -> List[int]:
    return [c * factor % MODULUS for c in a]


def poly_compose_scalar(a: Sequence[int], factor: int) -> List[int]:
    """Coefficients of p(factor * x)."""
    result = []
    power = 1
    for c in a:
        result.append(c * power % MODULUS)
        power = power * factor % MODULUS
    return result


def poly_mul_linear(a: Sequence[int], root: int) -> List[int]:
    """Multiply by (x - root)."""
    result = [0] * (len(a) + 1)
    for i, c in enumerate(a):
        result[i + 1] = (result[i + 1] + c) % MODULUS
        result[i] = (result[i] - c * root) % MODULUS
    return result


def poly_div_linear(a: Sequence[int], root: int) -> Tuple[List[int], int]:
    """Synthetic division by (x - root). Returns (quotient, remainder)."""
    if not a:
        return [], 0
    quotient = [0] * (len(a) - 1)
    carry = 0
    for i in range(len(a) - 1, -1, -1):
        carry = (a[i] + carry * root) % MODULUS
        if i > 0:
            quotient[i - 1] = carry
    return quotient, carry


def poly_div_vanishing(a: Sequence[int], n: int) -> Tuple[List[int], List[int]]:
    """Divide by x^n - 1. Returns (quotient, remainder)."""
    remainder = [c % MODULUS for c in a]
    quotient = [0] * max(len(a) - n, 0)
    for i in range(len(a) - 1, n - 1, -1):
        c = remainder[i]
        if c:
            quotient[i - n] = c
            remainder[i] = 0
            remainder[i - n] = (remainder[i - n] + c) % MODULUS
    return quotient, remainder[:n]
