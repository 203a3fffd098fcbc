"""Monte Carlo path tracing of a triangle scene into a tone-mapped image."""

from __future__ import annotations

import configparser
import logging
import math
from dataclasses import dataclass
from os import PathLike
from typing import Any, Iterable, NamedTuple, Protocol, Sequence, Union

import numpy as np

from pathtrace.bvh import BVH, SceneObject
from pathtrace.ray import IntersectionInfo, Ray
from pathtrace.shading import (
    UniformSource,
    cosine_power_n_weighted_sample,
    cosine_weighted_sample,
    diffuse_brdf,
    glossy_brdf,
    mirror_brdf,
    sample_next_direction,
    schlick_approx,
    tone_map,
    van_der_corput,
)

logger = logging.getLogger(__name__)

_MIRROR_SHININESS = 500.0
_REFRACTIVE_IOR = 2.0
_GLOSSY_THRESHOLD = 0.5
_UNIFORM_HEMISPHERE_PDF = 1.0 / (2.0 * math.pi)


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


@dataclass(frozen=True)
class Material:
    """Surface description in the style of an OBJ/MTL material."""

    diffuse: tuple[float, float, float] = (0.0, 0.0, 0.0)
    specular: tuple[float, float, float] = (0.0, 0.0, 0.0)
    ambient: tuple[float, float, float] = (0.0, 0.0, 0.0)
    emission: tuple[float, float, float] = (0.0, 0.0, 0.0)
    shininess: float = 1.0
    ior: float = 1.0

    @property
    def is_emissive(self) -> bool:
        return any(component != 0.0 for component in self.emission)


class Emitter(Protocol):
    """A triangle the tracer can shade and sample as an area light."""

    vertices: Sequence[Any]
    material: Material
    index: int

    def get_normal(self, info: IntersectionInfo) -> np.ndarray: ...


@dataclass
class Settings:
    """Rendering options."""

    samples_per_pixel: int = 1
    direct_lighting_only: bool = False
    num_direct_lighting_samples: int = 1
    path_continuation_prob: float = 0.5
    stratified_sampling: bool = False
    low_discrepancy_sampling: bool = False
    importance_sampling: bool = False
    attenuate: bool = False

    def __post_init__(self) -> None:
        if self.samples_per_pixel < 1:
            raise ValueError("samples_per_pixel must be at least 1")
        if self.num_direct_lighting_samples < 1:
            raise ValueError("num_direct_lighting_samples must be at least 1")
        if not 0.0 <= self.path_continuation_prob <= 1.0:
            raise ValueError("path_continuation_prob must lie in [0, 1]")


class RenderConfig(NamedTuple):
    """Everything a configuration file describes about one render."""

    scene_path: str
    output_path: str
    width: int
    height: int
    settings: Settings


def _ini_text(parser: configparser.ConfigParser, section: str, key: str) -> str:
    value = parser.get(section, key, fallback="").strip()
    if len(value) >= 2 and value[0] == value[-1] == '"':
        value = value[1:-1]
    return value


def _ini_int(parser: configparser.ConfigParser, section: str, key: str) -> int:
    try:
        return int(_ini_text(parser, section, key))
    except ValueError:
        return 0


def _ini_float(parser: configparser.ConfigParser, section: str, key: str) -> float:
    try:
        return float(_ini_text(parser, section, key))
    except ValueError:
        return 0.0


def _ini_bool(parser: configparser.ConfigParser, section: str, key: str) -> bool:
    return _ini_text(parser, section, key).lower() not in ("", "0", "false")


def load_settings(path: Union[str, PathLike]) -> RenderConfig:
    """Read a render configuration from an INI file with [IO] and [Settings] sections."""
    parser = configparser.ConfigParser(interpolation=None)
    parser.optionxform = str  # keys are case sensitive
    if not parser.read(path):
        raise FileNotFoundError(f"cannot read config file {path}")
    settings = Settings(
        samples_per_pixel=_ini_int(parser, "Settings", "samplesPerPixel"),
        direct_lighting_only=_ini_bool(parser, "Settings", "directLightingOnly"),
        num_direct_lighting_samples=_ini_int(parser, "Settings", "numDirectLightingSamples"),
        path_continuation_prob=_ini_float(parser, "Settings", "pathContinuationProb"),
        stratified_sampling=_ini_bool(parser, "Settings", "isStratifiedSampling"),
        low_discrepancy_sampling=_ini_bool(parser, "Settings", "isLowDiscrepancySampling"),
        importance_sampling=_ini_bool(parser, "Settings", "isImportanceSampling"),
        attenuate=_ini_bool(parser, "Settings", "isAttenuate"),
    )
    return RenderConfig(
        scene_path=_ini_text(parser, "IO", "scene"),
        output_path=_ini_text(parser, "IO", "output"),
        width=_ini_int(parser, "Settings", "imageWidth"),
        height=_ini_int(parser, "Settings", "imageHeight"),
        settings=settings,
    )


class Scene:
    """Scene objects (each carrying ``material`` and ``index``) plus a camera."""

    def __init__(
        self,
        objects: Iterable[SceneObject],
        view_matrix: Any = None,
        scale_matrix: Any = None,
        leaf_size: int = 4,
    ) -> None:
        self.objects = list(objects)
        self.view_matrix = np.eye(4) if view_matrix is None else np.asarray(view_matrix, dtype=np.float64)
        self.scale_matrix = np.eye(4) if scale_matrix is None else np.asarray(scale_matrix, dtype=np.float64)
        self._bvh = BVH(self.objects, leaf_size) if self.objects else None
        self.emissives = [obj for obj in self.objects if obj.material.is_emissive]

    @property
    def inverse_view(self) -> np.ndarray:
        """Matrix taking camera-space rays into world space."""
        return np.linalg.inv(self.scale_matrix @ self.view_matrix)

    def get_intersection(self, ray: Ray, occlusion: bool = False) -> IntersectionInfo | None:
        if self._bvh is None:
            return None
        return self._bvh.get_intersection(ray, occlusion)


def direct_lighting(
    point: Any,
    normal: Any,
    emissives: Iterable[Emitter],
    scene: Scene,
    num_samples: int,
    rng: UniformSource,
) -> tuple[np.ndarray, np.ndarray]:
    """Estimate light reaching ``point`` from the emissive triangles.

    Returns the radiance and the mean direction towards the lights, both
    averaged over the emitters. Lights are assumed to face downwards.
    """
    emitters = list(emissives)
    if not emitters:
        return np.zeros(3), np.zeros(3)
    if num_samples < 1:
        raise ValueError("num_samples must be at least 1")
    p = _vec(point)
    n_p = _vec(normal)
    total_light = np.zeros(3)
    total_omega = np.zeros(3)

    for emitter in emitters:
        v0, v1, v2 = (_vec(v) for v in emitter.vertices)
        samples = []
        for _ in range(num_samples):
            alpha, beta = rng.random(), rng.random()
            if alpha + beta > 1.0:
                alpha, beta = 1.0 - alpha, 1.0 - beta
            gamma = 1.0 - alpha - beta
            samples.append(alpha * v0 + beta * v1 + gamma * v2)

        area = 0.5 * float(np.linalg.norm(np.cross(v1 - v0, v2 - v0)))
        emitted = _vec(emitter.material.emission)
        acc_light = np.zeros(3)
        acc_omega = np.zeros(3)

        for p_prime in samples:
            w = _normalized(p_prime - p)
            w_prime = -w
            if w_prime[1] >= 0.0:
                continue
            hit = scene.get_intersection(Ray(p, w))
            if hit is None or getattr(hit.object, "index", None) != emitter.index:
                continue
            cos_theta = float(np.dot(w, n_p))
            cos_theta_prime = float(np.dot(w_prime, _vec(emitter.get_normal(hit))))
            distance_sq = float(np.dot(p - p_prime, p - p_prime))
            acc_light += emitted * (cos_theta * cos_theta_prime / distance_sq)
            acc_omega += w

        total_light += acc_light * (area / num_samples)
        total_omega += acc_omega / num_samples

    return total_light / len(emitters), total_omega / len(emitters)


class PathTracer:
    """Renders a scene with unidirectional path tracing."""

    def __init__(
        self,
        width: int,
        height: int,
        settings: Settings | None = None,
        rng: UniformSource | None = None,
    ) -> None:
        if width < 1 or height < 1:
            raise ValueError("image dimensions must be positive")
        self.width = width
        self.height = height
        self.settings = settings if settings is not None else Settings()
        self.rng = rng if rng is not None else np.random.default_rng()

    def trace_scene(self, scene: Scene) -> np.ndarray:
        """Render ``scene``; return an 8-bit RGB image of shape (height, width, 3)."""
        intensities = np.zeros((self.height, self.width, 3))
        inv_view = scene.inverse_view
        if self.settings.stratified_sampling:
            trace = self.trace_stratified
        elif self.settings.low_discrepancy_sampling:
            trace = self.trace_low_discrepancy
        else:
            trace = self.trace_pixel
        for y in range(self.height):
            logger.debug("y= %d", y)
            for x in range(self.width):
                intensities[y, x] = trace(x, y, scene, inv_view)
        return tone_map(intensities, self.width, self.height)

    def _camera_ray(self, px: float, py: float, inv_view: np.ndarray) -> Ray:
        direction = np.array([2.0 * px - 1.0, 1.0 - 2.0 * py, -1.0])
        return Ray(np.zeros(3), _normalized(direction)).transform(inv_view)

    def trace_pixel(self, x: int, y: int, scene: Scene, inv_view: Any) -> np.ndarray:
        """Average radiance over uniformly jittered samples in pixel (x, y)."""
        inv = np.asarray(inv_view, dtype=np.float64)
        output = np.zeros(3)
        samples = self.settings.samples_per_pixel
        for _ in range(samples):
            px = (x + self.rng.random()) / self.width
            py = (y + self.rng.random()) / self.height
            output += self.trace_ray(self._camera_ray(px, py, inv), scene, True)
        return output / samples

    def trace_stratified(self, x: int, y: int, scene: Scene, inv_view: Any) -> np.ndarray:
        """Average radiance with one jittered sample per cell of a square grid.

        The sample count is rounded down to a perfect square.
        """
        inv = np.asarray(inv_view, dtype=np.float64)
        output = np.zeros(3)
        side = math.isqrt(self.settings.samples_per_pixel)
        for i in range(side):
            for j in range(side):
                px = (x + (i + self.rng.random()) / side) / self.width
                py = (y + (j + self.rng.random()) / side) / self.height
                output += self.trace_ray(self._camera_ray(px, py, inv), scene, True)
        return output / (side * side)

    def trace_low_discrepancy(self, x: int, y: int, scene: Scene, inv_view: Any) -> np.ndarray:
        """Average radiance over Halton (bases 2 and 3) sample positions."""
        inv = np.asarray(inv_view, dtype=np.float64)
        output = np.zeros(3)
        samples = self.settings.samples_per_pixel
        for i in range(1, samples + 1):
            px = (x + van_der_corput(i, 2)) / self.width
            py = (y + van_der_corput(i, 3)) / self.height
            output += self.trace_ray(self._camera_ray(px, py, inv), scene, True)
        return output / samples

    def trace_ray(self, ray: Ray, scene: Scene, count_emitted: bool) -> np.ndarray:
        """Radiance arriving along ``ray``; black when it hits nothing."""
        hit = scene.get_intersection(ray)
        if hit is None:
            return np.zeros(3)

        obj = hit.object
        mat: Material = obj.material
        normal = _vec(obj.get_normal(hit))
        diffuse = _vec(mat.diffuse)
        specular = _vec(mat.specular)
        settings = self.settings
        rng = self.rng
        is_brdf_surface = mat.shininess < _MIRROR_SHININESS and mat.ior <= _REFRACTIVE_IOR

        light = np.zeros(3)
        radiance, towards_light = direct_lighting(
            hit.hit, normal, scene.emissives, scene, settings.num_direct_lighting_samples, rng
        )
        if is_brdf_surface:
            if specular[0] < _GLOSSY_THRESHOLD:
                brdf = diffuse_brdf(diffuse)
            else:
                brdf = glossy_brdf(specular, mat.shininess, -towards_light, -ray.d, normal)
            light = radiance * brdf

        if not settings.direct_lighting_only:
            pdf_rr = settings.path_continuation_prob
            if rng.random() < pdf_rr:
                if is_brdf_surface:
                    light += self._scatter(ray, hit, scene, mat, normal, diffuse, specular) / pdf_rr
                if mat.shininess >= _MIRROR_SHININESS:
                    reflected = Ray(hit.hit, mirror_brdf(ray.d, normal))
                    light += self.trace_ray(reflected, scene, True) / pdf_rr
                if mat.ior > _REFRACTIVE_IOR:
                    light += self._transmit(ray, hit, scene, mat, normal) / pdf_rr

        if count_emitted:
            light += _vec(mat.emission)
        return light

    def _scatter(
        self,
        ray: Ray,
        hit: IntersectionInfo,
        scene: Scene,
        mat: Material,
        normal: np.ndarray,
        diffuse: np.ndarray,
        specular: np.ndarray,
    ) -> np.ndarray:
        """Indirect light reflected by a diffuse or glossy surface (before roulette weighting)."""
        glossy = specular[0] >= _GLOSSY_THRESHOLD
        if not self.settings.importance_sampling:
            wi = sample_next_direction(normal, self.rng)
            pdf = _UNIFORM_HEMISPHERE_PDF
        elif glossy:
            pdf, wi = cosine_power_n_weighted_sample(normal, ray.d, mat.shininess, self.rng)
        else:
            pdf, wi = cosine_weighted_sample(normal, self.rng)

        incoming_ray = Ray(hit.hit, wi)
        incoming = self.trace_ray(incoming_ray, scene, False)
        if glossy:
            brdf = glossy_brdf(specular, mat.shininess, -incoming_ray.d, -ray.d, normal)
        else:
            brdf = diffuse_brdf(diffuse)
        with np.errstate(divide="ignore", invalid="ignore"):
            return incoming * brdf * float(np.dot(wi, normal)) / pdf

    def _transmit(
        self, ray: Ray, hit: IntersectionInfo, scene: Scene, mat: Material, normal: np.ndarray
    ) -> np.ndarray:
        """Light through a dielectric, choosing Fresnel reflection or refraction."""
        d = ray.d
        if float(np.dot(d, normal)) < 0.0:
            facing, ni, nt = normal, 1.0, mat.ior
        else:
            facing, ni, nt = -normal, mat.ior, 1.0

        reflected = d - 2.0 * float(np.dot(d, facing)) * facing
        if self.rng.random() < schlick_approx(ni, nt, d, facing):
            wi = reflected
        else:
            eta = ni / nt
            cos_in = float(np.dot(facing, -d))
            k = 1.0 - eta * eta * (1.0 - cos_in * cos_in)
            if k < 0.0:
                wi = _normalized(reflected)  # total internal reflection
            else:
                wi = _normalized(eta * d + (eta * cos_in - math.sqrt(k)) * facing)

        attenuation = 1.0
        if self.settings.attenuate and float(np.dot(wi, normal)) < 0.0:
            inner = scene.get_intersection(Ray(hit.hit, wi))
            if inner is not None:
                dist = float(np.linalg.norm(hit.hit - inner.hit))
                attenuation = 1.0 / (1.0 + dist + dist * dist)

        return attenuation * self.trace_ray(Ray(hit.hit, wi), scene, True)