"""Tests for the color integrator and Renderer class."""

import pytest
import numpy as np

from spherecast.vec3 import Vec3, Point3, Color
from spherecast.ray import Ray
from spherecast.camera import Camera
from spherecast.shapes import Sphere, World
from spherecast.materials import Material, Lambertian, Metal, Dielectric
from spherecast.renderer import Renderer, RenderSettings, ray_color, sky_color


class Absorber(Material):
    """Material that swallows every ray."""

    def scatter(self, ray_in, rec, rng=None):
        return None


def single_sphere_scene():
    world = World([Sphere(Point3(0, 0, -1), 0.5, Lambertian(Color(0.5, 0.5, 0.5)))])
    camera = Camera(
        look_from=Point3(0, 0, 0),
        look_at=Point3(0, 0, -1),
        vup=Vec3(0, 1, 0),
        vfov=90,
        aspect_ratio=1.0,
        aperture=0.0,
        focus_dist=1.0,
    )
    return world, camera


class TestRenderSettings:
    """Test RenderSettings configuration."""

    def test_default_values(self):
        settings = RenderSettings()
        assert settings.width == 1200
        assert settings.samples_per_pixel == 500
        assert settings.max_depth == 50
        assert settings.gamma == 2.0
        assert settings.seed is None
        assert settings.workers == 1

    def test_background_defaults_not_shared(self):
        a = RenderSettings()
        b = RenderSettings()
        assert a.background_top is not b.background_top

    def test_height_derived_from_aspect(self):
        assert RenderSettings(width=1200).resolve_height(1.5) == 800
        assert RenderSettings(width=300, height=7).resolve_height(1.5) == 7


class TestSkyColor:
    """Test the background gradient."""

    def test_straight_up_is_sky(self):
        assert sky_color(Ray(Point3(0, 0, 0), Vec3(0, 1, 0))) == Color(0.5, 0.7, 1.0)

    def test_straight_down_is_horizon(self):
        assert sky_color(Ray(Point3(0, 0, 0), Vec3(0, -5, 0))) == Color(1.0, 1.0, 1.0)

    def test_level_is_midpoint(self):
        assert sky_color(Ray(Point3(0, 0, 0), Vec3(0, 0, -1))) == Color(0.75, 0.85, 1.0)

    def test_custom_colors(self):
        settings = RenderSettings(background_bottom=Color(0, 0, 0), background_top=Color(1, 0, 0))
        assert sky_color(Ray(Point3(0, 0, 0), Vec3(0, 1, 0)), settings) == Color(1, 0, 0)


class TestRayColor:
    """Test the recursive color integrator."""

    def test_depth_zero_is_black(self):
        world, _ = single_sphere_scene()
        for direction in (Vec3(0, 0, -1), Vec3(0, 1, 0)):
            c = ray_color(Ray(Point3(0, 0, 0), direction), world, 0)
            assert (c.x, c.y, c.z) == (0.0, 0.0, 0.0)

    def test_negative_depth_is_black(self):
        world, _ = single_sphere_scene()
        c = ray_color(Ray(Point3(0, 0, 0), Vec3(0, 1, 0)), world, -3)
        assert (c.x, c.y, c.z) == (0.0, 0.0, 0.0)

    def test_miss_returns_background(self):
        ray = Ray(Point3(0, 0, 0), Vec3(0, 1, 0))
        assert ray_color(ray, World(), 5) == sky_color(ray)

    def test_absorbed_is_black(self):
        world = World([Sphere(Point3(0, 0, -2), 1.0, Absorber())])
        c = ray_color(Ray(Point3(0, 0, 0), Vec3(0, 0, -1)), world, 10)
        assert c == Color(0, 0, 0)

    def test_single_bounce_budget_is_black(self):
        world, _ = single_sphere_scene()
        c = ray_color(Ray(Point3(0, 0, 0), Vec3(0, 0, -1)), world, 1, np.random.default_rng(0))
        assert c == Color(0, 0, 0)

    def test_diffuse_bounce_attenuates_sky(self):
        world, _ = single_sphere_scene()
        rng = np.random.default_rng(1)
        for _ in range(20):
            c = ray_color(Ray(Point3(0, 0, 0), Vec3(0, 0, -1)), world, 50, rng)
            # Half of a sky color: red and green in [0.25, 0.5], blue exactly 0.5
            assert 0.25 - 1e-9 <= c.x <= 0.5 + 1e-9
            assert 0.35 - 1e-9 <= c.y <= 0.5 + 1e-9
            assert abs(c.z - 0.5) < 1e-9

    def test_mirror_chain_is_bounded(self):
        mirror = Metal(Color(1, 1, 1), 0.0)
        world = World([
            Sphere(Point3(0, 0, -1001), 1000, mirror),
            Sphere(Point3(0, 0, 1001), 1000, mirror),
        ])
        c = ray_color(Ray(Point3(0, 0, 0), Vec3(0, 0, -1)), world, 25)
        assert c == Color(0, 0, 0)

    def test_clear_glass_passes_background(self):
        world = World([Sphere(Point3(0, 0, -3), 1.0, Dielectric(1.0))])
        ray = Ray(Point3(0, 0, 0), Vec3(0, 0.2, -1))
        assert ray_color(ray, world, 10) == sky_color(ray)


class TestRenderer:
    """Test full image rendering."""

    def test_image_shape(self):
        world, camera = single_sphere_scene()
        renderer = Renderer(RenderSettings(width=8, height=6, samples_per_pixel=1, max_depth=3, seed=0))
        image = renderer.render(world, camera)
        assert image.shape == (6, 8, 3)
        assert image.dtype == np.float64

    def test_height_from_camera_aspect(self):
        world = World()
        camera = Camera(Point3(0, 0, 0), Point3(0, 0, -1), aspect_ratio=1.5)
        image = Renderer(RenderSettings(width=12, samples_per_pixel=1, max_depth=2)).render(world, camera)
        assert image.shape == (8, 12, 3)

    def test_seeded_render_reproducible(self):
        world, camera = single_sphere_scene()
        world.add(Sphere(Point3(1, 0, -1), 0.4, Metal(Color(0.8, 0.6, 0.2), 0.3)))
        world.add(Sphere(Point3(-1, 0, -1), 0.4, Dielectric(1.5)))
        settings = RenderSettings(width=6, height=6, samples_per_pixel=1, max_depth=5, seed=1234)

        first = Renderer(settings).render(world, camera)
        second = Renderer(settings).render(world, camera)
        assert np.array_equal(first, second)

    def test_worker_processes_match_serial(self):
        world, camera = single_sphere_scene()
        world.add(Sphere(Point3(1, 0, -1), 0.4, Metal(Color(0.8, 0.6, 0.2), 0.3)))
        world.add(Sphere(Point3(-1, 0, -1), 0.4, Dielectric(1.5)))
        serial = RenderSettings(width=6, height=5, samples_per_pixel=2, max_depth=5, seed=99)
        parallel = RenderSettings(width=6, height=5, samples_per_pixel=2, max_depth=5, seed=99, workers=2)

        renderer = Renderer(parallel)
        progress = []
        renderer.set_progress_callback(progress.append)

        assert np.array_equal(Renderer(serial).render(world, camera), renderer.render(world, camera))
        assert progress == pytest.approx([(y + 1) / 5 for y in range(5)])

    def test_unseeded_workers_render(self):
        world, camera = single_sphere_scene()
        settings = RenderSettings(width=4, height=3, samples_per_pixel=1, max_depth=2, workers=2)
        image = Renderer(settings).render(world, camera)
        assert image.shape == (3, 4, 3)
        assert np.all(np.isfinite(image))

    def test_different_seeds_differ(self):
        world, camera = single_sphere_scene()
        a = Renderer(RenderSettings(width=6, height=6, samples_per_pixel=1, max_depth=5, seed=1)).render(world, camera)
        b = Renderer(RenderSettings(width=6, height=6, samples_per_pixel=1, max_depth=5, seed=2)).render(world, camera)
        assert not np.array_equal(a, b)

    def test_center_pixel_darker_than_sky(self):
        """The sphere's center pixel is a bounced, half-absorbed sky; the top edge is open sky."""
        world, camera = single_sphere_scene()
        size = 15
        settings = RenderSettings(width=size, height=size, samples_per_pixel=8, max_depth=10, seed=7)
        image = Renderer(settings).render(world, camera)

        center = image[size // 2, size // 2]
        top = image[0, size // 2]

        # Open sky 45 degrees above the view axis
        expected_top = sky_color(Ray(Point3(0, 0, 0), Vec3(0, 1, -1))).to_array()
        assert np.allclose(top, expected_top, atol=0.05)

        assert np.all(center <= 0.5 + 1e-9)
        assert top.mean() - center.mean() > 0.2

    def test_progress_callback(self):
        world, camera = single_sphere_scene()
        renderer = Renderer(RenderSettings(width=4, height=3, samples_per_pixel=1, max_depth=2, seed=0))
        progress = []
        renderer.set_progress_callback(progress.append)
        renderer.render(world, camera)
        assert progress == pytest.approx([1 / 3, 2 / 3, 1.0])

    def test_render_pixel_averages_samples(self):
        camera = Camera(Point3(0, 0, 0), Point3(0, 0, -1), vfov=90, aspect_ratio=1.0, focus_dist=1.0)
        renderer = Renderer(RenderSettings(samples_per_pixel=4, max_depth=3))
        # An empty world shows only background, every channel within the gradient range
        c = renderer.render_pixel(World(), camera, 0, 0, 2, 2, np.random.default_rng(0))
        assert 0.5 <= c.x <= 1.0
        assert c.z == pytest.approx(1.0)


class TestImageOutput:
    """Test gamma correction and image files."""

    def test_to_ldr_gamma_and_clamp(self):
        renderer = Renderer(RenderSettings())
        image = np.array([[[0.25, 1.0, 4.0], [-1.0, 0.0, 0.0625]]], dtype=np.float64)
        ldr = renderer.to_ldr(image)

        assert ldr.dtype == np.uint8
        assert ldr[0, 0].tolist() == [128, 255, 255]
        assert ldr[0, 1].tolist() == [0, 0, 64]

    def test_pixel_rows(self):
        renderer = Renderer(RenderSettings())
        image = np.zeros((2, 3, 3))
        image[0, 0] = [1.0, 0.25, 0.0]
        rows = renderer.pixel_rows(image)

        assert len(rows) == 2
        assert len(rows[0]) == 3
        assert rows[0][0] == (255, 128, 0)
        assert all(isinstance(c, int) for c in rows[0][0])

    def test_save_ppm(self, tmp_path):
        renderer = Renderer(RenderSettings())
        image = np.array([[[0.25, 1.0, 0.0], [0.0, 0.0, 1.0]]])
        path = tmp_path / "out" / "image.ppm"

        renderer.save_image(image, str(path))

        lines = path.read_text().splitlines()
        assert lines == ["P3", "2 1", "255", "128 255 0", "0 0 255"]

    @pytest.mark.parametrize("filename,supported", [
        ("out.ppm", True),
        ("out.PNG", True),
        ("out.jpg", True),
        ("out.notanimage", False),
        ("out", False),
    ])
    def test_supports_output(self, filename, supported):
        assert Renderer.supports_output(filename) is supported

    def test_save_png(self, tmp_path):
        from PIL import Image

        renderer = Renderer(RenderSettings())
        image = np.full((3, 5, 3), 0.25)
        path = tmp_path / "image.png"

        renderer.save_image(image, str(path))

        with Image.open(path) as img:
            assert img.size == (5, 3)
            assert img.getpixel((0, 0)) == (128, 128, 128)
