import numpy as np
import pytest

from pathtrace.bbox import BBox
from pathtrace.bvh import SceneObject
from pathtrace.ray import IntersectionInfo, Ray
from pathtrace.tracer import (
    Material,
    PathTracer,
    Scene,
    Settings,
    direct_lighting,
    load_settings,
)


class _Triangle(SceneObject):
    def __init__(self, v0, v1, v2, material, index):
        super().__init__()
        self.vertices = tuple(np.asarray(v, dtype=float) for v in (v0, v1, v2))
        self.material = material
        self.index = index
        a, b, c = self.vertices
        self._e1 = b - a
        self._e2 = c - a
        n = np.cross(self._e1, self._e2)
        self._normal = n / np.linalg.norm(n)

    def get_intersection(self, ray):
        pvec = np.cross(ray.d, self._e2)
        det = float(np.dot(self._e1, pvec))
        if abs(det) < 1e-12:
            return None
        inv = 1.0 / det
        tvec = ray.o - self.vertices[0]
        u = float(np.dot(tvec, pvec)) * inv
        if u < 0.0 or u > 1.0:
            return None
        qvec = np.cross(tvec, self._e1)
        v = float(np.dot(ray.d, qvec)) * inv
        if v < 0.0 or u + v > 1.0:
            return None
        t = float(np.dot(self._e2, qvec)) * inv
        if t <= 1e-6:
            return None
        return IntersectionInfo(t=t, object=self, hit=ray.o + ray.d * t)

    def get_normal(self, info):
        return self._normal.copy()

    def get_bbox(self):
        pts = np.array(self.vertices)
        return BBox(pts.min(axis=0), pts.max(axis=0))

    def get_centroid(self):
        return np.mean(self.vertices, axis=0)


def _wall(z, material, index):
    return _Triangle((-10, -10, z), (10, -10, z), (0, 10, z), material, index)


EMISSION = (2.0, 3.0, 4.0)


def _overhead_light(emission=EMISSION, index=0):
    return _Triangle((-0.5, 1, -0.5), (0.5, 1, -0.5), (0, 1, 0.5), Material(emission=emission), index)


def test_settings_defaults_are_valid():
    settings = Settings()
    assert settings.samples_per_pixel >= 1
    assert settings.stratified_sampling is False


@pytest.mark.parametrize(
    "kwargs",
    [
        {"samples_per_pixel": 0},
        {"num_direct_lighting_samples": 0},
        {"path_continuation_prob": 1.5},
        {"path_continuation_prob": -0.1},
    ],
)
def test_settings_rejects_bad_values(kwargs):
    with pytest.raises(ValueError):
        Settings(**kwargs)


def test_load_settings_reads_ini(tmp_path):
    path = tmp_path / "render.ini"
    path.write_text(
        "[IO]\n"
        "scene = scenes/box.xml\n"
        'output = "out/box.png"\n'
        "[Settings]\n"
        "imageWidth = 64\n"
        "imageHeight = 48\n"
        "samplesPerPixel = 16\n"
        "directLightingOnly = false\n"
        "numDirectLightingSamples = 4\n"
        "pathContinuationProb = 0.7\n"
        "isStratifiedSampling = true\n"
        "isLowDiscrepancySampling = 0\n"
        "isImportanceSampling = true\n"
        "isAttenuate = false\n"
    )
    config = load_settings(path)
    assert config.scene_path == "scenes/box.xml"
    assert config.output_path == "out/box.png"
    assert (config.width, config.height) == (64, 48)
    s = config.settings
    assert s.samples_per_pixel == 16
    assert s.num_direct_lighting_samples == 4
    assert s.path_continuation_prob == pytest.approx(0.7)
    assert s.direct_lighting_only is False
    assert s.stratified_sampling is True
    assert s.low_discrepancy_sampling is False
    assert s.importance_sampling is True
    assert s.attenuate is False


def test_load_settings_missing_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        load_settings(tmp_path / "absent.ini")


def test_load_settings_missing_samples_is_an_error(tmp_path):
    path = tmp_path / "render.ini"
    path.write_text("[IO]\nscene = a.xml\n[Settings]\nnumDirectLightingSamples = 2\n")
    with pytest.raises(ValueError):
        load_settings(path)


def test_material_emissive_flag():
    assert Material(emission=(0.0, 0.5, 0.0)).is_emissive is True
    assert Material().is_emissive is False


def test_scene_collects_emissives_and_inverts_view():
    light = _wall(-1, Material(emission=(1, 1, 1)), 0)
    floor = _wall(-3, Material(diffuse=(0.5, 0.5, 0.5)), 1)
    view = np.eye(4)
    view[:3, 3] = (1.0, 2.0, 3.0)
    scene = Scene([light, floor], view_matrix=view)
    assert scene.emissives == [light]
    assert np.allclose(scene.inverse_view @ view, np.eye(4))


def test_empty_scene_misses():
    scene = Scene([])
    tracer = PathTracer(2, 2, rng=np.random.default_rng(0))
    result = tracer.trace_ray(Ray((0, 0, 0), (0, 0, -1)), scene, True)
    assert np.array_equal(result, np.zeros(3))


def test_empty_scene_renders_black():
    tracer = PathTracer(3, 2, Settings(samples_per_pixel=2), rng=np.random.default_rng(0))
    image = tracer.trace_scene(Scene([]))
    assert image.shape == (2, 3, 3)
    assert not image.any()


def test_tracer_rejects_empty_image():
    with pytest.raises(ValueError):
        PathTracer(0, 4)


def test_direct_lighting_without_emitters_is_dark():
    scene = Scene([_wall(-1, Material(), 0)])
    light, omega = direct_lighting((0, 0, 0), (0, 1, 0), [], scene, 4, np.random.default_rng(0))
    assert np.array_equal(light, np.zeros(3))
    assert np.array_equal(omega, np.zeros(3))


def test_direct_lighting_rejects_zero_samples():
    light = _overhead_light()
    scene = Scene([light])
    with pytest.raises(ValueError):
        direct_lighting((0, 0, 0), (0, 1, 0), [light], scene, 0, np.random.default_rng(0))


def test_direct_lighting_from_overhead_light():
    light = _overhead_light(emission=(1.0, 2.0, 3.0))
    scene = Scene([light])
    radiance, omega = direct_lighting(
        (0, 0, 0), (0, 1, 0), scene.emissives, scene, 32, np.random.default_rng(1)
    )
    assert radiance[0] > 0.0
    assert radiance[1] == pytest.approx(2.0 * radiance[0])
    assert radiance[2] == pytest.approx(3.0 * radiance[0])
    assert omega[1] > 0.0
    # Each sample adds cos * cos' / r^2 <= 1 per unit emission, times the area 0.5.
    assert radiance[0] <= 0.5


def test_direct_lighting_blocked_by_occluder():
    light = _overhead_light()
    blocker = _Triangle((-10, 0.5, -10), (10, 0.5, -10), (0, 0.5, 10), Material(), 1)
    scene = Scene([light, blocker])
    radiance, omega = direct_lighting(
        (0, 0, 0), (0, 1, 0), scene.emissives, scene, 16, np.random.default_rng(2)
    )
    assert np.array_equal(radiance, np.zeros(3))
    assert np.array_equal(omega, np.zeros(3))


def _light_wall_scene():
    return Scene([_wall(-1, Material(emission=EMISSION), 0)])


@pytest.mark.parametrize("direct_only", [True, False])
def test_trace_ray_sees_emitter(direct_only):
    scene = _light_wall_scene()
    tracer = PathTracer(
        1, 1, Settings(direct_lighting_only=direct_only, path_continuation_prob=1.0),
        rng=np.random.default_rng(3),
    )
    ray = Ray((0, 0, 0), (0, 0, -1))
    assert np.allclose(tracer.trace_ray(ray, scene, True), EMISSION)
    assert np.allclose(tracer.trace_ray(ray, scene, False), np.zeros(3))


def test_pixel_samplers_agree_on_uniform_light():
    scene = _light_wall_scene()
    tracer = PathTracer(4, 3, Settings(samples_per_pixel=5, direct_lighting_only=True),
                        rng=np.random.default_rng(4))
    inv = scene.inverse_view
    assert np.allclose(tracer.trace_pixel(1, 2, scene, inv), EMISSION)
    assert np.allclose(tracer.trace_stratified(1, 2, scene, inv), EMISSION)
    assert np.allclose(tracer.trace_low_discrepancy(1, 2, scene, inv), EMISSION)


def _render_uniform(**flags):
    settings = Settings(samples_per_pixel=4, direct_lighting_only=True, **flags)
    tracer = PathTracer(4, 3, settings, rng=np.random.default_rng(5))
    return tracer.trace_scene(_light_wall_scene())


def test_trace_scene_modes_give_same_uniform_image():
    first = _render_uniform()
    stratified = _render_uniform(stratified_sampling=True)
    low_discrepancy = _render_uniform(low_discrepancy_sampling=True)
    assert first.shape == (3, 4, 3)
    assert first.dtype == np.uint8
    assert (first == first[0, 0]).all()
    assert first[0, 0].min() > 0
    assert np.array_equal(stratified, first)
    assert np.array_equal(low_discrepancy, first)


def test_mirror_reflects_light_behind_camera():
    mirror = _wall(-1, Material(shininess=1000.0), 0)
    light = _wall(1, Material(emission=EMISSION), 1)
    scene = Scene([mirror, light])
    tracer = PathTracer(1, 1, Settings(path_continuation_prob=1.0), rng=np.random.default_rng(6))
    result = tracer.trace_ray(Ray((0, 0, 0), (0, 0, -1)), scene, True)
    assert np.allclose(result, EMISSION)


def test_mirror_needs_indirect_lighting():
    mirror = _wall(-1, Material(shininess=1000.0), 0)
    light = _wall(1, Material(emission=EMISSION), 1)
    scene = Scene([mirror, light])
    tracer = PathTracer(1, 1, Settings(direct_lighting_only=True), rng=np.random.default_rng(7))
    result = tracer.trace_ray(Ray((0, 0, 0), (0, 0, -1)), scene, True)
    assert np.array_equal(result, np.zeros(3))