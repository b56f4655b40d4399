"""
Geometry for the ray tracer.

Every object in a scene implements the Hittable interface with a `hit`
method. Spheres are the only primitive; a World holds them all.
"""

from __future__ import annotations
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Iterator, Optional, TYPE_CHECKING
import math

from .vec3 import Vec3, Point3
from .ray import Ray

if TYPE_CHECKING:
    from .materials import Material


@dataclass
class HitRecord:
    """Stores information about a ray-object intersection.

    Attributes:
        point: The intersection point in world space
        normal: Unit surface normal, always pointing against the incoming ray
        t: The ray parameter at intersection
        front_face: True if ray hit from outside the object
        material: The material of the object that was hit
    """
    point: Point3
    normal: Vec3
    t: float
    front_face: bool
    material: Optional[Material] = None

    def set_face_normal(self, ray: Ray, outward_normal: Vec3) -> None:
        """Set the normal to always point against the ray direction.

        Args:
            ray: The incoming ray
            outward_normal: The unit geometric normal pointing out of the surface
        """
        self.front_face = ray.direction.dot(outward_normal) < 0
        self.normal = outward_normal if self.front_face else -outward_normal


class Hittable(ABC):
    """Abstract base class for all objects that can be hit by rays."""

    @abstractmethod
    def hit(self, ray: Ray, t_min: float, t_max: float) -> Optional[HitRecord]:
        """Test if ray intersects this object.

        Args:
            ray: The ray to test
            t_min: Lower bound (exclusive) on t, avoids self-intersection
            t_max: Upper bound (exclusive) on t

        Returns:
            HitRecord if intersection found, None otherwise
        """


class Sphere(Hittable):
    """A sphere defined by center and radius."""

    def __init__(self, center: Point3, radius: float, material: Optional[Material] = None):
        """Create a sphere.

        Args:
            center: Center point of the sphere
            radius: Radius of the sphere, must be positive
            material: Material for shading
        """
        self.center = center
        self.radius = radius
        self.material = material

    def hit(self, ray: Ray, t_min: float, t_max: float) -> Optional[HitRecord]:
        """Test ray-sphere intersection using the quadratic formula.

        The equation (P-C)·(P-C) = r² where P = ray.at(t)
        expands to: t²(d·d) + 2t(d·(O-C)) + (O-C)·(O-C) - r² = 0
        which is solved here in its half-b form.
        """
        oc = ray.origin - self.center
        a = ray.direction.length_squared()
        half_b = oc.dot(ray.direction)
        c = oc.length_squared() - self.radius * self.radius

        discriminant = half_b * half_b - a * c
        if discriminant < 0:
            return None

        sqrtd = math.sqrt(discriminant)

        # Find the nearest root in the acceptable range
        root = (-half_b - sqrtd) / a
        if root <= t_min or root >= t_max:
            root = (-half_b + sqrtd) / a
            if root <= t_min or root >= t_max:
                return None

        point = ray.at(root)
        outward_normal = (point - self.center) / self.radius

        hit_record = HitRecord(
            point=point,
            normal=outward_normal,
            t=root,
            front_face=True,
            material=self.material,
        )
        hit_record.set_face_normal(ray, outward_normal)

        return hit_record

    def __repr__(self) -> str:
        return f"Sphere(center={self.center}, radius={self.radius})"


class World(Hittable):
    """An ordered collection of hittable objects.

    Built once from the scene description and only read while rendering.
    """

    def __init__(self, objects: Optional[list[Hittable]] = None):
        self.objects: list[Hittable] = objects if objects is not None else []

    def add(self, obj: Hittable) -> None:
        """Add an object to the world."""
        self.objects.append(obj)

    def hit(self, ray: Ray, t_min: float, t_max: float) -> Optional[HitRecord]:
        """Find the closest intersection among all objects.

        Each test is bounded by the closest t seen so far, so on equal t the
        earlier object wins.
        """
        closest_hit: Optional[HitRecord] = None
        closest_t = t_max

        for obj in self.objects:
            hit_record = obj.hit(ray, t_min, closest_t)
            if hit_record is not None:
                closest_hit = hit_record
                closest_t = hit_record.t

        return closest_hit

    def __len__(self) -> int:
        return len(self.objects)

    def __iter__(self) -> Iterator[Hittable]:
        return iter(self.objects)
