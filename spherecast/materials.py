"""
Materials describing how rays scatter off a surface.

Implements:
- Lambertian diffuse
- Metal (specular reflection with optional fuzz)
- Dielectric (glass, water - with refraction)
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional, TYPE_CHECKING
import math

import numpy as np

from .vec3 import Vec3, Color, resolve_rng
from .ray import Ray

if TYPE_CHECKING:
    from .shapes import HitRecord


@dataclass
class ScatterResult:
    """Result of a material scatter operation."""
    scattered_ray: Ray
    attenuation: Color


class Material(ABC):
    """Abstract base class for materials.

    Materials are immutable and shared by every hit against their object.
    """

    @abstractmethod
    def scatter(self, ray_in: Ray, rec: HitRecord,
                rng: Optional[np.random.Generator] = None) -> Optional[ScatterResult]:
        """Compute the scattered ray and attenuation.

        Args:
            ray_in: The incoming ray
            rec: The hit being shaded
            rng: Random generator for sampling (module default if None)

        Returns:
            ScatterResult if ray scatters, None if absorbed
        """


class Lambertian(Material):
    """Diffuse material with Lambertian (ideal matte) scattering."""

    def __init__(self, albedo: Color):
        """Create a Lambertian material.

        Args:
            albedo: The base color (RGB, each component 0-1)
        """
        self.albedo = albedo

    def scatter(self, ray_in: Ray, rec: HitRecord,
                rng: Optional[np.random.Generator] = None) -> Optional[ScatterResult]:
        scatter_direction = rec.normal + Vec3.random_unit_vector(rng)

        # Catch degenerate scatter direction
        if scatter_direction.near_zero():
            scatter_direction = rec.normal

        return ScatterResult(
            scattered_ray=Ray(rec.point, scatter_direction.normalize()),
            attenuation=self.albedo,
        )

    def __repr__(self) -> str:
        return f"Lambertian(albedo={self.albedo})"


class Metal(Material):
    """Metallic material with specular reflection."""

    def __init__(self, albedo: Color, fuzz: float = 0.0):
        """Create a metal material.

        Args:
            albedo: The reflection color
            fuzz: Reflection jitter radius (0 = mirror, 1 = very rough)
        """
        self.albedo = albedo
        self.fuzz = min(fuzz, 1.0)

    def scatter(self, ray_in: Ray, rec: HitRecord,
                rng: Optional[np.random.Generator] = None) -> Optional[ScatterResult]:
        reflected = ray_in.direction.normalize().reflect(rec.normal)

        if self.fuzz > 0:
            reflected = reflected + Vec3.random_in_unit_sphere(rng) * self.fuzz

        # Fuzz can push the reflection below the surface; the ray is absorbed
        if reflected.dot(rec.normal) <= 0:
            return None

        return ScatterResult(
            scattered_ray=Ray(rec.point, reflected.normalize()),
            attenuation=self.albedo,
        )

    def __repr__(self) -> str:
        return f"Metal(albedo={self.albedo}, fuzz={self.fuzz})"


class Dielectric(Material):
    """Dielectric (glass-like) material with refraction."""

    def __init__(self, refraction_index: float = 1.5):
        """Create a dielectric material.

        Args:
            refraction_index: 1.0 = air, 1.5 = glass, 2.4 = diamond
        """
        self.refraction_index = refraction_index

    def scatter(self, ray_in: Ray, rec: HitRecord,
                rng: Optional[np.random.Generator] = None) -> Optional[ScatterResult]:
        rng = resolve_rng(rng)

        # Entering the medium on front faces, leaving it otherwise
        refraction_ratio = 1.0 / self.refraction_index if rec.front_face else self.refraction_index

        unit_direction = ray_in.direction.normalize()
        cos_theta = min(-unit_direction.dot(rec.normal), 1.0)
        sin_theta = math.sqrt(max(0.0, 1.0 - cos_theta * cos_theta))

        cannot_refract = refraction_ratio * sin_theta > 1.0

        if cannot_refract or self.reflectance(cos_theta, refraction_ratio) > rng.random():
            direction = unit_direction.reflect(rec.normal)
        else:
            direction = unit_direction.refract(rec.normal, refraction_ratio)

        return ScatterResult(
            scattered_ray=Ray(rec.point, direction.normalize()),
            attenuation=Color(1.0, 1.0, 1.0),
        )

    @staticmethod
    def reflectance(cosine: float, ref_idx: float) -> float:
        """Schlick's approximation for reflectance.

        Matched indices form no optical interface, so nothing is reflected.
        """
        if ref_idx == 1.0:
            return 0.0
        r0 = (1 - ref_idx) / (1 + ref_idx)
        r0 = r0 * r0
        return r0 + (1 - r0) * pow(1 - cosine, 5)

    def __repr__(self) -> str:
        return f"Dielectric(refraction_index={self.refraction_index})"
