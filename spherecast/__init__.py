"""
spherecast - A Python Ray Tracing Renderer

Renders scenes of spheres described in XML or YAML files:
- Lambertian, metal and glass materials
- Thin lens depth of field
- Jittered anti-aliasing with reproducible seeding
- PPM and PNG output
"""

__version__ = "0.1.0"

from .vec3 import Vec3, Point3, Color
from .ray import Ray
from .shapes import Sphere, World, HitRecord, Hittable
from .materials import Material, ScatterResult, Lambertian, Metal, Dielectric
from .camera import Camera
from .renderer import Renderer, RenderSettings, ray_color, sky_color
from .scene_parser import Scene, SceneParser, SceneParseError, load_scene, parse_scene, parse_xml
