#!/usr/bin/env python3
"""Convert RenderWare DFF models to glTF format.

Usage:
    python extract_models.py <input> [-o <output>] [--textures <dir>] [--hierarchy]

Examples:
    # Convert a single file
    python extract_models.py player.dff -o ./output

    # Convert all DFF files in a directory, resolving textures
    python extract_models.py ./models/ -o ./output --textures ./txd_export

    # Print the frame hierarchy instead of exporting
    python extract_models.py player.dff --hierarchy
"""
import argparse
import logging
import os
import sys
from pathlib import Path

from dff_loader import ClumpLoader
from dff_textures import TextureDirectory
from dff_types import Clump
from gltf_exporter import GLTFExporter


def print_hierarchy(clump: Clump):
    """Print frame hierarchy and atomics to console."""
    print(f"Frames: {len(clump.frames)}")
    print(f"Geometries: {len(clump.geometries)}")
    print(f"Atomics: {len(clump.atomics)}")
    print()

    atomics_by_frame = {}
    for atomic in clump.atomics:
        atomics_by_frame.setdefault(atomic.frame, []).append(atomic)

    def print_frame(index: int, indent: int = 0):
        prefix = "  " * indent
        frame = clump.frames[index]
        x, y, z = frame.translation
        print(f"{prefix}[{index}] {frame.name or '<unnamed>'} "
              f"pos=({x:.3f}, {y:.3f}, {z:.3f})")
        for atomic in atomics_by_frame.get(index, []):
            geometry = clump.get_atomic_geometry(atomic)
            print(f"{prefix}  * geometry {atomic.geometry}: "
                  f"{geometry.vertex_count} verts, {geometry.triangle_count} tris, "
                  f"{len(geometry.materials)} materials")
        for child in clump.get_children(index):
            print_frame(child, indent + 1)

    for root in clump.root_frames:
        print_frame(root)


def main():
    parser = argparse.ArgumentParser(
        description="Convert RenderWare DFF models to glTF format"
    )
    parser.add_argument(
        "input",
        help="Input DFF file or directory containing DFF files",
    )
    parser.add_argument(
        "-o", "--output",
        default="./output",
        help="Output directory for glTF files (default: ./output)",
    )
    parser.add_argument(
        "--textures",
        help="Directory with extracted texture images",
    )
    parser.add_argument(
        "--skip-dangling",
        action="store_true",
        help="Drop atomics with out-of-range indices instead of failing",
    )
    parser.add_argument(
        "--hierarchy", "-H",
        action="store_true",
        help="Print frame hierarchy instead of exporting",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Verbose output",
    )

    args = parser.parse_args()

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    # Collect input files
    input_path = Path(args.input)
    if input_path.is_file():
        files = [input_path]
    elif input_path.is_dir():
        files = sorted(p for p in input_path.glob("**/*") if p.suffix.lower() == ".dff")
        if not files:
            print(f"No DFF files found in {input_path}", file=sys.stderr)
            return 1
    else:
        print(f"Input not found: {args.input}", file=sys.stderr)
        return 1

    textures = TextureDirectory(args.textures) if args.textures else None
    loader = ClumpLoader(
        texture_lookup=textures,
        skip_dangling_atomics=args.skip_dangling,
    )

    if not args.hierarchy:
        os.makedirs(args.output, exist_ok=True)

    success_count = 0
    fail_count = 0

    for dff_file in files:
        try:
            clump = loader.load_file(dff_file)
            if args.hierarchy:
                print(f"File: {dff_file}")
                print_hierarchy(clump)
            else:
                output_file = Path(args.output) / f"{dff_file.stem}.glb"
                GLTFExporter(clump).export(str(output_file))
                if args.verbose:
                    print(f"Exported: {dff_file} -> {output_file}")
            success_count += 1
        except (ValueError, OSError) as e:
            print(f"Failed: {dff_file} - {e}", file=sys.stderr)
            fail_count += 1

    # Summary
    total = success_count + fail_count
    if not args.hierarchy:
        print(f"\nExtracted {success_count}/{total} files to {args.output}")

    return 0 if fail_count == 0 else 1


if __name__ == "__main__":
    sys.exit(main())
