"""Monte Carlo path tracing with a bounding volume hierarchy."""

__version__ = "0.1.0"

__all__ = ["bbox", "bvh", "ray", "shading", "tracer"]