"""
Scene description parser.

Two formats are understood. The XML format declares elements in order,
each object taking the most recently declared material:

```xml
<scene>
  <film filename="spheres.ppm"/>
  <camera look_from="13 2 3" look_at="0 0 0" up="0 1 0" aperture="0.1"/>
  <material type="lambertian" color="0.4 0.2 0.1"/>
  <object center="-4 1 0" radius="1"/>
  <material type="dielectric" refraction_index="1.5"/>
  <object center="0 1 0" radius="1"/>
</scene>
```

An XML scene always starts with a large grey ground sphere.

The YAML (or JSON) format uses a named materials library:

```yaml
output: spheres.png

camera:
  look_from: [13, 2, 3]
  look_at: [0, 0, 0]
  vup: [0, 1, 0]
  vfov: 20
  aperture: 0.1
  focus_dist: 10

render:
  width: 600
  samples: 100
  max_depth: 50

materials:
  ground:
    type: lambertian
    albedo: [0.5, 0.5, 0.5]
  glass:
    type: dielectric
    refraction_index: 1.5

objects:
  - type: sphere
    center: [0, -1000, 0]
    radius: 1000
    material: ground
  - type: sphere
    center: [0, 1, 0]
    radius: 1
    material: glass
```

Everything is validated here; the renderer assumes well-formed input.
"""

from __future__ import annotations
import json
import logging
import math
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional
import xml.etree.ElementTree as ET

import yaml

from .vec3 import Vec3, Point3, Color
from .camera import Camera
from .shapes import Sphere, World
from .materials import Material, Lambertian, Metal, Dielectric
from .renderer import RenderSettings

logger = logging.getLogger(__name__)

DEFAULT_OUTPUT = "default.ppm"
DEFAULT_VFOV = 20.0
DEFAULT_ASPECT_RATIO = 3.0 / 2.0
DEFAULT_FOCUS_DIST = 10.0

GROUND_CENTER = (0.0, -1000.0, 0.0)
GROUND_RADIUS = 1000.0
GROUND_ALBEDO = (0.5, 0.5, 0.5)


class SceneParseError(Exception):
    """Error during scene parsing."""
    pass


@dataclass
class Scene:
    """Everything needed to render and save an image."""
    world: World
    camera: Camera
    settings: RenderSettings
    output: str


def _parse_float(value: Any, what: str) -> float:
    try:
        result = float(value)
    except (TypeError, ValueError):
        raise SceneParseError(f"Failed to parse {what}: {value!r}") from None
    if not math.isfinite(result):
        raise SceneParseError(f"{what} must be finite, got {value!r}")
    return result


def _parse_int(value: Any, what: str) -> int:
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise SceneParseError(f"Failed to parse {what}: {value!r}") from None
    if result <= 0:
        raise SceneParseError(f"{what} must be positive, got {result}")
    return result


def _parse_seed(value: Any) -> Optional[int]:
    if value is None:
        return None
    try:
        result = int(value)
    except (TypeError, ValueError):
        raise SceneParseError(f"Failed to parse render seed: {value!r}") from None
    if result < 0:
        raise SceneParseError(f"render seed must not be negative, got {result}")
    return result


def _parse_gamma(value: Any) -> float:
    result = _parse_float(value, "render gamma")
    if result <= 0:
        raise SceneParseError(f"render gamma must be positive, got {result}")
    return result


def _parse_triple(data: Any, what: str) -> Vec3:
    """Parse a Vec3 from "x y z", [x, y, z], or {x:, y:, z:} forms."""
    if isinstance(data, str):
        data = data.split()
    if isinstance(data, dict):
        keys = ('r', 'g', 'b') if 'r' in data else ('x', 'y', 'z')
        data = [data.get(k, 0) for k in keys]
    if not isinstance(data, (list, tuple)):
        raise SceneParseError(f"Cannot parse {what} from: {data!r}")
    if len(data) != 3:
        raise SceneParseError(f"{what} must have 3 components, got {len(data)}")
    return Vec3(*(_parse_float(c, what) for c in data))


def _check_radius(radius: float) -> float:
    if radius <= 0:
        raise SceneParseError(f"Sphere radius must be positive, got {radius}")
    return radius


def _make_material(mat_type: str, color: Color, fuzz: Optional[float] = None,
                   refraction_index: Optional[float] = None) -> Material:
    mat_type = mat_type.lower()
    if mat_type == 'lambertian':
        return Lambertian(color)
    if mat_type == 'metal':
        if fuzz is None:
            raise SceneParseError("Missing material fuzziness")
        if not 0.0 <= fuzz <= 1.0:
            raise SceneParseError(f"Metal fuzz must be in [0, 1], got {fuzz}")
        return Metal(color, fuzz)
    if mat_type == 'dielectric':
        if refraction_index is None:
            raise SceneParseError("Missing material refraction index")
        if refraction_index <= 0:
            raise SceneParseError(f"Refraction index must be positive, got {refraction_index}")
        return Dielectric(refraction_index)
    raise SceneParseError(f"Unknown material type: {mat_type}")


def _make_camera(look_from: Point3, look_at: Point3, vup: Vec3, vfov: float,
                 aspect_ratio: float, aperture: float, focus_dist: float) -> Camera:
    view = look_from - look_at
    if view.near_zero():
        raise SceneParseError("Camera look_from and look_at must differ")
    if vup.cross(view).near_zero():
        raise SceneParseError("Camera up vector must not be parallel to the view direction")
    if not 0 < vfov < 180:
        raise SceneParseError(f"Camera vfov must be in (0, 180), got {vfov}")
    if aspect_ratio <= 0:
        raise SceneParseError(f"Camera aspect_ratio must be positive, got {aspect_ratio}")
    if aperture < 0:
        raise SceneParseError(f"Camera aperture must not be negative, got {aperture}")
    if focus_dist <= 0:
        raise SceneParseError(f"Camera focus_dist must be positive, got {focus_dist}")

    return Camera(
        look_from=look_from,
        look_at=look_at,
        vup=vup,
        vfov=vfov,
        aspect_ratio=aspect_ratio,
        aperture=aperture,
        focus_dist=focus_dist,
    )


class XMLSceneParser:
    """Parser for the element-ordered XML scene format."""

    def __init__(self):
        self.world = World()
        self.world.add(Sphere(Point3(*GROUND_CENTER), GROUND_RADIUS, Lambertian(Color(*GROUND_ALBEDO))))
        self.current_material: Material = Lambertian(Color(0.0, 0.0, 0.0))
        self.camera: Optional[Camera] = None
        self.settings = RenderSettings()
        self.output: Optional[str] = None

    def parse(self, text: str) -> Scene:
        """Parse an XML scene document.

        Args:
            text: The XML document

        Returns:
            The parsed Scene
        """
        try:
            root = ET.fromstring(text)
        except ET.ParseError as e:
            raise SceneParseError(f"Failed to parse XML: {e}") from e

        for node in root.iter():
            if node.tag == 'film':
                self._parse_film(node)
            elif node.tag == 'camera':
                self._parse_camera(node)
            elif node.tag == 'material':
                self._parse_material(node)
            elif node.tag == 'object':
                self._parse_object(node)

        if self.camera is None:
            raise SceneParseError("Missing camera element")
        if self.output is None:
            logger.warning("Missing output file name in scene, using %s", DEFAULT_OUTPUT)
            self.output = DEFAULT_OUTPUT

        logger.info("Loaded %d objects", len(self.world))
        return Scene(self.world, self.camera, self.settings, self.output)

    @staticmethod
    def _require(node: ET.Element, name: str, what: str) -> str:
        value = node.get(name)
        if value is None:
            raise SceneParseError(f"Missing {what}")
        return value

    def _parse_film(self, node: ET.Element) -> None:
        filename = node.get('filename')
        if filename:
            self.output = filename
        else:
            logger.warning("Missing output file name in scene, using %s", DEFAULT_OUTPUT)
            self.output = DEFAULT_OUTPUT

        if 'width' in node.attrib:
            self.settings.width = _parse_int(node.get('width'), "film width")
        if 'height' in node.attrib:
            self.settings.height = _parse_int(node.get('height'), "film height")
        if 'samples' in node.attrib:
            self.settings.samples_per_pixel = _parse_int(node.get('samples'), "film samples")
        if 'max_depth' in node.attrib:
            self.settings.max_depth = _parse_int(node.get('max_depth'), "film max_depth")
        if 'workers' in node.attrib:
            self.settings.workers = _parse_int(node.get('workers'), "film workers")

    def _parse_camera(self, node: ET.Element) -> None:
        look_from = _parse_triple(self._require(node, 'look_from', "camera look from position"), "camera look_from")
        look_at = _parse_triple(self._require(node, 'look_at', "camera look at position"), "camera look_at")
        vup = _parse_triple(self._require(node, 'up', "camera up vector"), "camera up")
        aperture = _parse_float(self._require(node, 'aperture', "camera aperture"), "camera aperture")

        self.camera = _make_camera(
            look_from,
            look_at,
            vup,
            _parse_float(node.get('vfov', DEFAULT_VFOV), "camera vfov"),
            _parse_float(node.get('aspect_ratio', DEFAULT_ASPECT_RATIO), "camera aspect_ratio"),
            aperture,
            _parse_float(node.get('focus_dist', DEFAULT_FOCUS_DIST), "camera focus_dist"),
        )

    def _parse_material(self, node: ET.Element) -> None:
        mat_type = self._require(node, 'type', "material type")
        color = _parse_triple(node.get('color', '0 0 0'), "material color")

        fuzz = node.get('fuzz')
        refraction_index = node.get('refraction_index', node.get('refrect_idx'))

        self.current_material = _make_material(
            mat_type,
            color,
            fuzz=_parse_float(fuzz, "material fuzziness") if fuzz is not None else None,
            refraction_index=(
                _parse_float(refraction_index, "material refraction index")
                if refraction_index is not None else None
            ),
        )

    def _parse_object(self, node: ET.Element) -> None:
        center = _parse_triple(self._require(node, 'center', "object center"), "object center")
        radius = _check_radius(_parse_float(self._require(node, 'radius', "object radius"), "object radius"))
        self.world.add(Sphere(center, radius, self.current_material))


class SceneParser:
    """Parser for dictionary (YAML / JSON) scene descriptions."""

    def __init__(self):
        self.materials: Dict[str, Material] = {}
        self.world = World()
        self.camera: Optional[Camera] = None
        self.settings = RenderSettings()

    def parse_file(self, filepath: str) -> Scene:
        """Parse a scene file.

        Args:
            filepath: Path to the scene file (XML, YAML or JSON)

        Returns:
            The parsed Scene
        """
        path = Path(filepath)
        if not path.exists():
            raise SceneParseError(f"Scene file not found: {filepath}")

        try:
            content = path.read_text(encoding='utf-8')
        except (OSError, UnicodeDecodeError) as e:
            raise SceneParseError(f"Cannot read scene file {filepath}: {e}") from e
        suffix = path.suffix.lower()

        if suffix == '.xml':
            return XMLSceneParser().parse(content)
        if suffix == '.json':
            try:
                data = json.loads(content)
            except json.JSONDecodeError as e:
                raise SceneParseError(f"Failed to parse JSON: {e}") from e
        else:
            try:
                data = yaml.safe_load(content)
            except yaml.YAMLError as e:
                raise SceneParseError(f"Failed to parse YAML: {e}") from e

        if not isinstance(data, dict):
            raise SceneParseError(f"Scene file must contain a mapping: {filepath}")
        return self.parse_dict(data)

    def parse_dict(self, data: Dict[str, Any]) -> Scene:
        """Parse a scene from a dictionary.

        Args:
            data: Scene description dictionary

        Returns:
            The parsed Scene
        """
        # Materials first, objects reference them by name
        if 'materials' in data:
            self._parse_materials(data['materials'])

        if 'objects' in data:
            self._parse_objects(data['objects'])

        if 'camera' not in data:
            raise SceneParseError("Missing camera section")
        self._parse_camera(data['camera'])

        if 'render' in data:
            self._parse_settings(data['render'])

        output = data.get('output')
        if not output:
            logger.warning("Missing output file name in scene, using %s", DEFAULT_OUTPUT)
            output = DEFAULT_OUTPUT

        logger.info("Loaded %d objects", len(self.world))
        return Scene(self.world, self.camera, self.settings, str(output))

    def _build_material(self, mat_data: Dict[str, Any]) -> Material:
        if not isinstance(mat_data, dict):
            raise SceneParseError(f"Invalid material definition: {mat_data!r}")

        fuzz = mat_data.get('fuzz')
        refraction_index = mat_data.get('refraction_index')
        return _make_material(
            str(mat_data.get('type', 'lambertian')),
            _parse_triple(mat_data.get('albedo', [0.5, 0.5, 0.5]), "material albedo"),
            fuzz=_parse_float(fuzz, "material fuzz") if fuzz is not None else None,
            refraction_index=(
                _parse_float(refraction_index, "material refraction_index")
                if refraction_index is not None else None
            ),
        )

    def _parse_materials(self, materials_data: Dict[str, Any]) -> None:
        """Parse materials section."""
        if not isinstance(materials_data, dict):
            raise SceneParseError("materials must be a mapping of name to definition")
        for name, mat_data in materials_data.items():
            self.materials[name] = self._build_material(mat_data)

    def _get_material(self, mat_ref: Any) -> Material:
        """Get a material by name or inline definition."""
        if mat_ref is None:
            raise SceneParseError("Object is missing a material")
        if isinstance(mat_ref, str):
            if mat_ref not in self.materials:
                raise SceneParseError(f"Unknown material: {mat_ref}")
            return self.materials[mat_ref]
        return self._build_material(mat_ref)

    def _parse_objects(self, objects_data: list) -> None:
        """Parse objects section."""
        if not isinstance(objects_data, list):
            raise SceneParseError("objects must be a list")
        for obj_data in objects_data:
            if not isinstance(obj_data, dict):
                raise SceneParseError(f"Invalid object definition: {obj_data!r}")
            obj_type = str(obj_data.get('type', 'sphere')).lower()
            if obj_type != 'sphere':
                raise SceneParseError(f"Unknown object type: {obj_type}")

            if 'center' not in obj_data or 'radius' not in obj_data:
                raise SceneParseError("Sphere requires center and radius")

            center = _parse_triple(obj_data['center'], "sphere center")
            radius = _check_radius(_parse_float(obj_data['radius'], "sphere radius"))
            material = self._get_material(obj_data.get('material'))
            self.world.add(Sphere(center, radius, material))

    def _parse_camera(self, camera_data: Dict[str, Any]) -> None:
        """Parse camera section."""
        for key in ('look_from', 'look_at'):
            if key not in camera_data:
                raise SceneParseError(f"Missing camera {key}")

        self.camera = _make_camera(
            _parse_triple(camera_data['look_from'], "camera look_from"),
            _parse_triple(camera_data['look_at'], "camera look_at"),
            _parse_triple(camera_data.get('vup', [0, 1, 0]), "camera vup"),
            _parse_float(camera_data.get('vfov', DEFAULT_VFOV), "camera vfov"),
            _parse_float(camera_data.get('aspect_ratio', DEFAULT_ASPECT_RATIO), "camera aspect_ratio"),
            _parse_float(camera_data.get('aperture', 0.0), "camera aperture"),
            _parse_float(camera_data.get('focus_dist', DEFAULT_FOCUS_DIST), "camera focus_dist"),
        )

    def _parse_settings(self, settings_data: Dict[str, Any]) -> None:
        """Parse render settings section."""
        defaults = RenderSettings()
        seed = settings_data.get('seed')
        self.settings = RenderSettings(
            width=_parse_int(settings_data.get('width', defaults.width), "render width"),
            height=_parse_int(settings_data['height'], "render height") if 'height' in settings_data else 0,
            samples_per_pixel=_parse_int(settings_data.get('samples', defaults.samples_per_pixel), "render samples"),
            max_depth=_parse_int(settings_data.get('max_depth', defaults.max_depth), "render max_depth"),
            seed=_parse_seed(seed),
            gamma=_parse_gamma(settings_data.get('gamma', defaults.gamma)),
            workers=_parse_int(settings_data.get('workers', defaults.workers), "render workers"),
        )


def parse_xml(text: str) -> Scene:
    """Convenience function to parse an XML scene document."""
    return XMLSceneParser().parse(text)


def load_scene(filepath: str) -> Scene:
    """Convenience function to load a scene file.

    Args:
        filepath: Path to the scene file

    Returns:
        The parsed Scene
    """
    parser = SceneParser()
    return parser.parse_file(filepath)


def parse_scene(data: Dict[str, Any]) -> Scene:
    """Convenience function to parse a scene from a dictionary.

    Args:
        data: Scene description dictionary

    Returns:
        The parsed Scene
    """
    parser = SceneParser()
    return parser.parse_dict(data)
