"""Reflectance models, direction sampling, quasi-random sequences and tone mapping."""

from __future__ import annotations

import math
from typing import Any, Protocol

import numpy as np

_ALIGN_EPSILON = 1e-4
_LUMA = np.array([0.2126, 0.7152, 0.0722])
_GAMMA = 2.2


class UniformSource(Protocol):
    """Anything that yields uniform floats in [0, 1) from ``random()``."""

    def random(self) -> float: ...


def _vec(values: Any) -> np.ndarray:
    vector = np.asarray(values, dtype=np.float64).reshape(-1)
    if vector.shape != (3,):
        raise ValueError(f"expected a 3-component vector, got shape {vector.shape}")
    return vector


def _normalized(vector: np.ndarray) -> np.ndarray:
    norm = float(np.linalg.norm(vector))
    if norm > 0.0:
        return vector / norm
    return vector.copy()


def _least_axis(normal: np.ndarray) -> np.ndarray:
    """The coordinate axis along which ``normal`` has its smallest component."""
    ax, ay, az = np.abs(normal)
    if ax < ay and ax < az:
        return np.array([1.0, 0.0, 0.0])
    if ay < az:
        return np.array([0.0, 1.0, 0.0])
    return np.array([0.0, 0.0, 1.0])


def _spherical(theta: float, phi: float) -> np.ndarray:
    return np.array(
        [math.sin(theta) * math.cos(phi), math.sin(theta) * math.sin(phi), math.cos(theta)]
    )


def _align(sample: np.ndarray, up: np.ndarray, axis: np.ndarray) -> np.ndarray:
    tangent = _normalized(np.cross(up, axis))
    bitangent = np.cross(axis, tangent)
    return _normalized(sample[0] * tangent + sample[1] * bitangent + sample[2] * axis)


def diffuse_brdf(diffuse: Any) -> np.ndarray:
    """Lambertian reflectance: the diffuse colour over pi."""
    return _vec(diffuse) / math.pi


def glossy_brdf(specular: Any, n: float, wi: Any, wo: Any, normal: Any) -> np.ndarray:
    """Phong lobe; ``wi`` points into the surface and ``wo`` away from it."""
    wi_v, normal_v = _vec(wi), _vec(normal)
    reflected = _normalized(wi_v - 2.0 * np.dot(wi_v, normal_v) * normal_v)
    with np.errstate(invalid="ignore"):
        lobe = np.power(float(np.dot(reflected, _vec(wo))), float(n))
    return _vec(specular) * ((n + 2.0) / (2.0 * math.pi)) * lobe


def mirror_brdf(w: Any, normal: Any) -> np.ndarray:
    """Reflect ``w`` (pointing into the surface) about ``normal``."""
    w_v, normal_v = _vec(w), _vec(normal)
    return w_v - 2.0 * np.dot(w_v, normal_v) * normal_v


def align_sample_to_normal(sample: Any, normal: Any) -> np.ndarray:
    """Express a local-frame sample (z up) in the frame around ``normal``."""
    normal_v = _vec(normal)
    up = np.array([0.0, 1.0, 0.0])
    if abs(float(np.dot(normal_v, up)) - 1.0) < _ALIGN_EPSILON:
        up = np.array([1.0, 0.0, 0.0])
    return _align(_vec(sample), up, normal_v)


def sample_next_direction(normal: Any, rng: UniformSource) -> np.ndarray:
    """A direction drawn uniformly over the hemisphere around ``normal``."""
    normal_v = _vec(normal)
    e1, e2 = rng.random(), rng.random()
    sample = _spherical(math.acos(e2), 2.0 * math.pi * e1)
    return _align(sample, _least_axis(normal_v), normal_v)


def cosine_weighted_sample(normal: Any, rng: UniformSource) -> tuple[float, np.ndarray]:
    """Draw a hemisphere direction; return ``(pdf, direction)`` with pdf = cos(theta)/pi."""
    normal_v = _vec(normal)
    e1, e2 = rng.random(), rng.random()
    theta = math.acos(e2)
    sample = _spherical(theta, 2.0 * math.pi * e1)
    direction = _align(sample, _least_axis(normal_v), normal_v)
    return math.cos(theta) / math.pi, direction


def cosine_power_n_weighted_sample(
    normal: Any, wo: Any, n: float, rng: UniformSource
) -> tuple[float, np.ndarray]:
    """Draw a direction around the mirror of ``wo``; return ``(pdf, direction)``.

    The pdf is proportional to cos^n of the angle to the mirror direction.
    """
    normal_v, wo_v = _vec(normal), _vec(wo)
    wo_refl = wo_v - 2.0 * np.dot(wo_v, normal_v) * normal_v
    e1, e2 = rng.random(), rng.random()
    theta = math.acos(e2 ** (1.0 / (n + 1.0)))
    sample = _spherical(theta, 2.0 * math.pi * e1)
    direction = _align(sample, _least_axis(normal_v), wo_refl)
    pdf = (n + 1.0) * math.cos(theta) ** n / (2.0 * math.pi)
    return pdf, direction


def schlick_approx(ni: float, nt: float, w_incident: Any, normal: Any) -> float:
    """Schlick's approximation of Fresnel reflectance for an incoming direction."""
    cos_incident = float(np.dot(_vec(normal), -_vec(w_incident)))
    r0 = ((ni - nt) / (ni + nt)) ** 2
    return r0 + (1.0 - r0) * (1.0 - cos_incident) ** 5


def van_der_corput(n: int, base: int) -> float:
    """The ``n``-th element of the radical-inverse sequence in ``base``."""
    if base < 2:
        raise ValueError("base must be at least 2")
    result = 0.0
    f = 1.0 / base
    while n > 0:
        n, digit = divmod(n, base)
        result += digit * f
        f /= base
    return result


def reinhard(luminance: float) -> float:
    """Map a luminance to L / (1 + L)."""
    return luminance / (1.0 + luminance)


def extended_reinhard(c: float, c_white: float) -> float:
    """Reinhard mapping that sends ``c_white`` to 1."""
    return (c * (1.0 + c / c_white**2)) / (1.0 + c)


def tone_map(intensities: Any, width: int, height: int) -> np.ndarray:
    """Turn row-major HDR colours into an 8-bit RGB image of shape (height, width, 3).

    Colours are scaled by their Reinhard-mapped luminance, gamma corrected and
    clamped; undefined results such as black pixels come out as 0.
    """
    hdr = np.asarray(intensities, dtype=np.float64)
    if hdr.size != width * height * 3:
        raise ValueError(
            f"expected {width * height} colours for a {width}x{height} image, "
            f"got {hdr.size // 3 if hdr.size % 3 == 0 else hdr.size / 3}"
        )
    hdr = hdr.reshape(height, width, 3)
    with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
        luminance = hdr @ _LUMA
        mapped = luminance / (1.0 + luminance)
        ldr = hdr * (mapped / luminance)[..., np.newaxis]
        ldr = np.power(ldr, 1.0 / _GAMMA)
        scaled = np.trunc(ldr * 255.0)
    scaled = np.nan_to_num(scaled, nan=0.0, posinf=255.0, neginf=0.0)
    return np.clip(scaled, 0, 255).astype(np.uint8)