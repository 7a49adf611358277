#!/usr/bin/env python3
"""
Merge every mesh of a scene file into one material-batched mesh.

Loads a scene with trimesh, batches all draw calls by material, optionally
rotates it and clips it against axis-aligned planes, then writes the merged
mesh and prints the sub-mesh/material table.

Usage:
    python scripts/batch_scene.py --input scene.glb --output merged.glb
    python scripts/batch_scene.py --input scene.glb --output merged.obj --clip y:0.0
    python scripts/batch_scene.py --input scene.glb --output merged.ply --rotate-y 90 --clip x:-1 --clip=-x:-1

Negative-axis planes start with "-", so pass them as --clip=-x:1 to keep
argparse from reading the value as an option.
"""
import sys
import math
import argparse
import logging
from pathlib import Path

import trimesh

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from draw_calls import TrimeshSceneSource
from mesh_batcher import MeshBatcher
from mesh_data import BuildConfig, MeshData
from plane import Plane

_AXES = {
    "x": (1.0, 0.0, 0.0),
    "y": (0.0, 1.0, 0.0),
    "z": (0.0, 0.0, 1.0),
}


def _parse_clip(text: str) -> Plane:
    """'y:0.5' keeps y >= 0.5; '-y:0.5' keeps y <= -0.5."""
    axis, _, offset = text.partition(":")
    sign = -1.0 if axis.startswith("-") else 1.0
    axis = axis.lstrip("-+").lower()
    if axis not in _AXES or not offset:
        raise argparse.ArgumentTypeError(f"Bad clip plane '{text}', expected e.g. y:0.0 or -x:1.5")
    normal = tuple(sign * c for c in _AXES[axis])
    return Plane(normal, float(offset))


def main():
    parser = argparse.ArgumentParser(
        description="Merge all meshes of a scene into one material-batched mesh.",
    )
    parser.add_argument(
        "--input", required=True,
        help="Path to input scene (GLB, GLTF, OBJ, PLY, ...)",
    )
    parser.add_argument(
        "--output", required=True,
        help="Path of the merged mesh to write; format from the extension",
    )
    parser.add_argument(
        "--rotate-y", type=float, default=0.0,
        help="Rotate the batched geometry about +Y by this many degrees",
    )
    parser.add_argument(
        "--clip", type=_parse_clip, action="append", default=[],
        help="Keep geometry ahead of an axis plane, e.g. y:0 or --clip=-x:1 (repeatable)",
    )
    parser.add_argument(
        "--no-tangents", action="store_true",
        help="Skip tangent recomputation",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
    )

    input_path = Path(args.input)
    if not input_path.is_file():
        print(f"Error: input file not found: {input_path}")
        sys.exit(1)

    logging.info("Loading %s", input_path)
    scene = trimesh.load(str(input_path), force="scene")
    batcher = MeshBatcher.load_from(TrimeshSceneSource(scene))

    if args.rotate_y:
        half = math.radians(args.rotate_y) / 2.0
        batcher = batcher.rotate((math.cos(half), 0.0, math.sin(half), 0.0))

    if args.clip:
        batcher = batcher.clip(args.clip)

    mesh = MeshData(name=input_path.stem)
    materials = []
    batcher.build(mesh, materials, BuildConfig(recalculate_tangents=not args.no_tangents))

    lo, hi = batcher.bounds
    print(f"Vertices:  {mesh.vertex_count}")
    print(f"Triangles: {mesh.triangle_count}")
    print(f"Indices:   {mesh.index_format.value}")
    print(f"Bounds:    {lo.round(4).tolist()} .. {hi.round(4).tolist()}")
    for descriptor, material in zip(mesh.sub_meshes, materials):
        print(f"  [{descriptor.index_start:>8} +{descriptor.index_count:>8}] {material.name}")

    output_path = Path(args.output)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    mesh.to_trimesh().export(str(output_path))
    logging.info("Wrote %s", output_path)


if __name__ == "__main__":
    main()
