#!/usr/bin/env python3
"""
spherecast - A Python Ray Tracing Renderer

Main entry point for rendering scene files.
"""

import argparse
import logging
import sys
import time
from typing import Optional

from spherecast.renderer import Renderer
from spherecast.scene_parser import SceneParseError, load_scene

logger = logging.getLogger("spherecast")


def prompt_scene_path() -> str:
    """Ask for the scene file on stdin."""
    print("Please enter the name of the XML scene file: ", end='', flush=True)
    return sys.stdin.readline().strip()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description='spherecast - A Python Ray Tracing Renderer',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog='''
Examples:
  python main.py scenes/spheres.xml
  python main.py scenes/spheres.yaml --width 400 --samples 50 --output spheres.png
  python main.py scenes/spheres.xml --seed 7 --output output/spheres.ppm
        '''
    )

    parser.add_argument('scene', nargs='?', help='Scene file (.xml, .yaml, .json); prompted for if omitted')
    parser.add_argument('--output', type=str, default=None, help='Output filename (default: from scene)')
    parser.add_argument('--width', type=int, default=None, help='Image width (default: from scene)')
    parser.add_argument('--samples', type=int, default=None, help='Samples per pixel (default: from scene)')
    parser.add_argument('--depth', type=int, default=None, help='Max ray depth (default: from scene)')
    parser.add_argument('--seed', type=int, default=None, help='Random seed for a reproducible render')
    parser.add_argument('--workers', type=int, default=None, help='Worker processes (default: from scene)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Log every scanline')
    return parser


def main(argv: Optional[list] = None) -> int:
    """Main entry point."""
    args = build_parser().parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s %(levelname)s %(name)s: %(message)s',
    )

    scene_path = args.scene or prompt_scene_path()
    if not scene_path:
        logger.error("No scene file given")
        return 1

    try:
        scene = load_scene(scene_path)
    except SceneParseError as e:
        logger.error("%s", e)
        return 1

    settings = scene.settings
    overrides = (
        ('width', 'width', args.width),
        ('samples', 'samples_per_pixel', args.samples),
        ('depth', 'max_depth', args.depth),
        ('workers', 'workers', args.workers),
    )
    for flag, name, value in overrides:
        if value is not None:
            if value <= 0:
                logger.error("--%s must be positive", flag)
                return 1
            setattr(settings, name, value)
    if args.seed is not None:
        if args.seed < 0:
            logger.error("--seed must not be negative")
            return 1
        settings.seed = args.seed
    output = args.output or scene.output
    if not Renderer.supports_output(output):
        logger.error("Unsupported output format: %s", output)
        return 1

    print("=" * 60)
    print("spherecast Ray Tracer")
    print("=" * 60)

    print(f"\nRender Settings:")
    print(f"  Resolution: {settings.width}x{settings.resolve_height(scene.camera.aspect_ratio)}")
    print(f"  Samples: {settings.samples_per_pixel}")
    print(f"  Max Depth: {settings.max_depth}")
    print(f"  Workers: {settings.workers}")
    print(f"  Objects in scene: {len(scene.world)}")

    renderer = Renderer(settings)

    last_progress = [0]

    def progress_callback(progress: float):
        pct = int(progress * 100)
        if pct > last_progress[0]:
            last_progress[0] = pct
            bar_len = 40
            filled = int(bar_len * progress)
            bar = '█' * filled + '░' * (bar_len - filled)
            print(f'\rRendering: [{bar}] {pct}%', end='', flush=True)

    renderer.set_progress_callback(progress_callback)

    print("\nRendering...")
    start_time = time.time()

    image = renderer.render(scene.world, scene.camera)

    elapsed = time.time() - start_time
    print(f"\nRender completed in {elapsed:.2f} seconds")

    print(f"\nSaving to: {output}")
    try:
        renderer.save_image(image, output)
    except (OSError, ValueError) as e:
        logger.error("Cannot write %s: %s", output, e)
        return 1

    print("\nDone.")
    return 0


if __name__ == '__main__':
    sys.exit(main())
