"""
Renderer module - the heart of the ray tracer.

Implements:
- Recursive color integration with a bounce limit
- Jittered multi-sample anti-aliasing
- Sky gradient background
- Reproducible per-pixel random streams
- Optional scanline rendering across worker processes
- Gamma corrected PPM and Pillow output
"""

from __future__ import annotations
import logging
from concurrent.futures import ProcessPoolExecutor
from dataclasses import dataclass, field
from functools import partial
from pathlib import Path
from typing import Callable, List, Optional, Tuple
import numpy as np

from .vec3 import Color
from .ray import Ray
from .camera import Camera
from .shapes import Hittable

logger = logging.getLogger(__name__)

BLACK = Color(0.0, 0.0, 0.0)


@dataclass
class RenderSettings:
    """Configuration for the renderer."""
    width: int = 1200
    height: int = 0  # 0 = derive from the camera aspect ratio
    samples_per_pixel: int = 500
    max_depth: int = 50
    seed: Optional[int] = None
    gamma: float = 2.0
    t_min: float = 0.001
    workers: int = 1  # >1 renders scanlines in a process pool
    background_bottom: Color = field(default_factory=lambda: Color(1.0, 1.0, 1.0))
    background_top: Color = field(default_factory=lambda: Color(0.5, 0.7, 1.0))

    def resolve_height(self, aspect_ratio: float) -> int:
        """Return the image height, deriving it from the aspect ratio if unset."""
        if self.height > 0:
            return self.height
        return max(1, int(self.width / aspect_ratio))


def sky_color(ray: Ray, settings: Optional[RenderSettings] = None) -> Color:
    """Blend between the horizon and sky colors by the ray's vertical direction.

    Args:
        ray: The ray that escaped the scene

    Returns:
        Background color in this direction
    """
    settings = settings if settings else RenderSettings()
    unit_direction = ray.direction.normalize()
    t = 0.5 * (unit_direction.y + 1.0)
    return settings.background_bottom * (1.0 - t) + settings.background_top * t


def ray_color(
    ray: Ray,
    world: Hittable,
    depth: int,
    rng: Optional[np.random.Generator] = None,
    settings: Optional[RenderSettings] = None,
) -> Color:
    """Compute the color carried back along a ray.

    Args:
        ray: The ray to trace
        world: The scene to trace against
        depth: Remaining bounces; at zero no more light is gathered
        rng: Random generator passed on to the materials
        settings: Background colors and t_min (defaults if None)

    Returns:
        Linear RGB color for this ray
    """
    if depth <= 0:
        return BLACK

    settings = settings if settings else RenderSettings()
    rec = world.hit(ray, settings.t_min, float('inf'))

    if rec is None:
        return sky_color(ray, settings)

    result = rec.material.scatter(ray, rec, rng) if rec.material else None
    if result is None:
        return BLACK

    return result.attenuation * ray_color(result.scattered_ray, world, depth - 1, rng, settings)


def _render_scanline(
    settings: RenderSettings,
    world: Hittable,
    camera: Camera,
    y: int,
    width: int,
    height: int,
    shared_rng: Optional[np.random.Generator] = None,
) -> np.ndarray:
    """Render image row y (0 is the top) and return it as a (width, 3) array.

    Module level so worker processes can unpickle it.
    """
    renderer = Renderer(settings)
    shared = shared_rng if shared_rng is not None else np.random.default_rng()
    j = height - 1 - y
    row = np.zeros((width, 3), dtype=np.float64)
    for i in range(width):
        rng = renderer._pixel_rng(y, i, shared)
        row[i] = renderer.render_pixel(world, camera, i, j, width, height, rng).to_array()
    return row


class Renderer:
    """Samples the camera per pixel and averages the traced colors."""

    def __init__(self, settings: RenderSettings = None):
        """Create a renderer with the given settings.

        Args:
            settings: Render configuration (uses defaults if None)
        """
        self.settings = settings if settings else RenderSettings()
        self._progress_callback: Optional[Callable[[float], None]] = None

    def set_progress_callback(self, callback: Callable[[float], None]) -> None:
        """Set a callback function for progress updates.

        Args:
            callback: Function that takes progress as float (0.0 to 1.0)
        """
        self._progress_callback = callback

    def _pixel_rng(self, row: int, col: int, shared: np.random.Generator) -> np.random.Generator:
        if self.settings.seed is None:
            return shared
        return np.random.default_rng([self.settings.seed, row, col])

    def render_pixel(
        self,
        world: Hittable,
        camera: Camera,
        i: int,
        j: int,
        width: int,
        height: int,
        rng: Optional[np.random.Generator] = None,
    ) -> Color:
        """Average the samples for the pixel at column i, scanline j.

        Scanline j counts up from the bottom of the image.
        """
        rng = rng if rng is not None else np.random.default_rng()
        samples = self.settings.samples_per_pixel
        pixel_color = Color(0, 0, 0)

        for _ in range(samples):
            s = (i + rng.random()) / max(width - 1, 1)
            t = (j + rng.random()) / max(height - 1, 1)
            ray = camera.get_ray(s, t, rng)
            pixel_color = pixel_color + ray_color(ray, world, self.settings.max_depth, rng, self.settings)

        return pixel_color / samples

    def render(self, world: Hittable, camera: Camera) -> np.ndarray:
        """Render the scene and return the image as a numpy array.

        Args:
            world: The scene to render (any Hittable)
            camera: The camera to render from

        Returns:
            Linear (not gamma corrected) image of shape (height, width, 3),
            row 0 at the top
        """
        width = self.settings.width
        height = self.settings.resolve_height(camera.aspect_ratio)

        image = np.zeros((height, width, 3), dtype=np.float64)

        logger.info("Rendering %dx%d, %d samples per pixel, max depth %d",
                    width, height, self.settings.samples_per_pixel, self.settings.max_depth)

        render_row = partial(_render_scanline, self.settings, world, camera,
                             width=width, height=height)

        if self.settings.workers > 1:
            logger.info("Using %d worker processes", self.settings.workers)
            with ProcessPoolExecutor(max_workers=self.settings.workers) as executor:
                self._collect(image, executor.map(render_row, range(height)))
        else:
            shared_rng = np.random.default_rng()
            self._collect(image, (render_row(y, shared_rng=shared_rng) for y in range(height)))

        logger.info("Render finished")
        return image

    def _collect(self, image: np.ndarray, rows) -> None:
        height = image.shape[0]
        for y, row in enumerate(rows):
            logger.debug("Scanlines remaining: %d", height - y)
            image[y] = row
            if self._progress_callback:
                self._progress_callback((y + 1) / height)

    def to_ldr(self, image: np.ndarray) -> np.ndarray:
        """Convert a linear image to 8-bit with gamma correction.

        Args:
            image: Linear image array (float64)

        Returns:
            Image as uint8 array
        """
        corrected = np.power(np.clip(image, 0, None), 1.0 / self.settings.gamma)
        return (256 * np.clip(corrected, 0.0, 0.999)).astype(np.uint8)

    def pixel_rows(self, image: np.ndarray) -> List[List[Tuple[int, int, int]]]:
        """Return the image as row-major rows of 0-255 RGB triples, top row first."""
        ldr = self.to_ldr(image)
        return [[tuple(int(c) for c in pixel) for pixel in row] for row in ldr]

    @staticmethod
    def supports_output(filename: str) -> bool:
        """Return True if save_image can write this file extension."""
        suffix = Path(filename).suffix.lower()
        if suffix == '.ppm':
            return True
        from PIL import Image as PILImage

        return suffix in PILImage.registered_extensions()

    def save_image(self, image: np.ndarray, filename: str) -> None:
        """Save image to file.

        Args:
            image: Image array (linear float or uint8)
            filename: Output filename (extension determines format)
        """
        path = Path(filename)
        path.parent.mkdir(parents=True, exist_ok=True)

        if image.dtype == np.float64 or image.dtype == np.float32:
            image = self.to_ldr(image)

        if path.suffix.lower() == '.ppm':
            self._save_ppm(image, path)
        else:
            from PIL import Image as PILImage

            PILImage.fromarray(image, 'RGB').save(path)

        logger.info("Wrote %s", path)

    @staticmethod
    def _save_ppm(image: np.ndarray, path: Path) -> None:
        """Save image in plain-text (P3) PPM format."""
        height, width = image.shape[:2]

        with open(path, 'w') as f:
            f.write('P3\n')
            f.write(f'{width} {height}\n')
            f.write('255\n')
            for row in image:
                for r, g, b in row:
                    f.write(f'{r} {g} {b}\n')
