# pathtrace

A Monte Carlo path tracer built on NumPy.

It renders scenes of objects lit by emissive triangles and provides:

- a bounding volume hierarchy (`pathtrace.bvh.BVH`) for ray–scene
  intersection, using slab tests against axis-aligned boxes
  (`pathtrace.bbox.BBox`);
- direct lighting by sampling points on emissive triangles
  (`pathtrace.tracer.direct_lighting`);
- indirect lighting with Russian-roulette path termination;
- diffuse, glossy (Phong lobe), mirror and refractive materials, with
  Fresnel reflection from Schlick's approximation;
- uniform hemisphere sampling, or importance sampling proportional to
  `cos θ` (diffuse) and `cosⁿ θ` (glossy);
- plain, stratified or low-discrepancy (Van der Corput / Halton) pixel
  sampling;
- optional distance attenuation of light travelling through refractive
  objects;
- Reinhard tone mapping on luminance followed by gamma correction (2.2) to
  8-bit RGB.

## Modules

| Module | Contents |
| --- | --- |
| `pathtrace.ray` | `Ray` (origin `o`, unit direction `d`, normalised inverse direction `inv_d`, `transform`) and the `IntersectionInfo` dataclass (`t`, `object`, `hit`, `data`) |
| `pathtrace.bbox` | `BBox` with `from_point`, `from_min_max`, `expand_to_include`, `max_dimension`, `surface_area`, `intersect` (returns a `BoxHit` of `hit`, `tnear`, `tfar`) |
| `pathtrace.bvh` | abstract `SceneObject`, `BVH`, `Stopwatch` |
| `pathtrace.shading` | BRDFs, hemisphere samplers, `schlick_approx`, `van_der_corput`, `reinhard`, `extended_reinhard`, `tone_map` |
| `pathtrace.tracer` | `Material`, `Settings`, `RenderConfig`, `load_settings`, `Scene`, `Emitter`, `direct_lighting`, `PathTracer` |

## Scene objects

Geometry is supplied by subclassing `pathtrace.bvh.SceneObject` and
implementing:

- `get_intersection(ray)` – an `IntersectionInfo` for a hit, or `None`;
- `get_normal(info)` – the surface normal at a hit;
- `get_bbox()` – a bounding `BBox`;
- `get_centroid()` – the point used to partition objects in the hierarchy.

`set_transform(matrix)` stores a 4x4 affine transform together with its
inverse and normal matrices.

`BVH(objects, leaf_size=4)` builds the hierarchy (it needs at least one
object) and logs the node and leaf counts at INFO level.
`BVH.get_intersection(ray, occlusion=False)` returns the nearest hit, with
`hit` set to the hit point, or `None`; with `occlusion=True` it returns the
first hit it finds. If an object's result leaves `object` unset, the BVH
fills it in with that object.

To be rendered, each object also needs a `material` attribute (a
`pathtrace.tracer.Material`) and an integer `index`. Emissive objects are
sampled as area lights and must also have `vertices` (three corner points),
as described by the `Emitter` protocol. Direct lighting only counts light
arriving from above, so lights are expected to face downwards.

## Rendering

```python
from pathtrace.tracer import PathTracer, Scene, Settings

scene = Scene(objects, view_matrix=view, scale_matrix=scale)
tracer = PathTracer(256, 256, Settings(samples_per_pixel=16, importance_sampling=True))
image = tracer.trace_scene(scene)   # uint8 array of shape (256, 256, 3)
```

`view_matrix` and `scale_matrix` default to the identity; camera rays are
mapped into the world by the inverse of `scale_matrix @ view_matrix`.
`PathTracer` takes an optional `rng` (anything with a `random()` method, such
as `numpy.random.default_rng(seed)`), so renders can be reproduced.

Each pixel goes through one of three estimators chosen by the settings:

- `trace_stratified` when `stratified_sampling` is on; the sample count is
  rounded down to a perfect square and one jittered sample is taken per
  grid cell;
- `trace_low_discrepancy` when `low_discrepancy_sampling` is on; sample `i`
  is offset by the base-2 and base-3 Van der Corput values of `i`;
- `trace_pixel` otherwise, with uniformly jittered samples.

`Settings` fields and defaults: `samples_per_pixel=1`,
`direct_lighting_only=False`, `num_direct_lighting_samples=1`,
`path_continuation_prob=0.5`, `stratified_sampling=False`,
`low_discrepancy_sampling=False`, `importance_sampling=False`,
`attenuate=False`. A `ValueError` is raised for fewer than one sample of
either kind or a continuation probability outside `[0, 1]`.

Materials with `shininess >= 500` are mirrors, those with `ior > 2` are
refractive, and the rest are diffuse or, when the red specular component is
at least 0.5, glossy.

## Configuration files

`load_settings(path)` reads an INI file and returns a `RenderConfig` with
`scene_path`, `output_path`, `width`, `height` and `settings`:

```ini
[IO]
scene = scenes/cornell.xml
output = renders/cornell.png

[Settings]
imageWidth = 256
imageHeight = 256
samplesPerPixel = 64
directLightingOnly = false
numDirectLightingSamples = 4
pathContinuationProb = 0.8
isStratifiedSampling = false
isLowDiscrepancySampling = true
isImportanceSampling = true
isAttenuate = false
```

Keys are case sensitive. Missing or unparsable numbers read as 0, and
booleans are false only when empty, `0` or `false`. An unreadable file
raises `FileNotFoundError`.

## Building blocks

```python
import numpy as np
from pathtrace.shading import van_der_corput, reinhard, diffuse_brdf, cosine_weighted_sample

van_der_corput(1, 2)   # 0.5
van_der_corput(3, 2)   # 0.75
reinhard(1.0)          # 0.5
diffuse_brdf(np.array([1.0, 1.0, 1.0]))  # each component 1/π

rng = np.random.default_rng(7)
pdf, direction = cosine_weighted_sample(np.array([0.0, 1.0, 0.0]), rng)
```

```python
import numpy as np
from pathtrace.bbox import BBox

box = BBox.from_min_max(np.array([0.0, 0.0, 0.0]), np.array([1.0, 2.0, 3.0]))
box.surface_area()   # 22.0
box.max_dimension()  # 2
```

`tone_map(intensities, width, height)` turns row-major HDR colours into an
8-bit image of shape `(height, width, 3)`; black pixels map to 0.

## What the package does not do

There is no command-line program. The package does not read scene
descriptions or mesh files, so `RenderConfig.scene_path` is only reported,
and it provides no triangle or other concrete `SceneObject`: geometry must
be supplied by the caller. It does not write image files either; saving the
array returned by `trace_scene` to `RenderConfig.output_path` is left to the
caller.

## Requirements

Python 3.10 or later and NumPy. The tests use pytest, installed with the
`test` extra.