#!/usr/bin/env python3
"""
rclevel CLI - Inspect and export decoded levels.

Usage:
    rclevel info levels/03/engine.ps3
    rclevel export-model levels/03/engine.ps3 --category moby --id 500 -o moby.obj
    rclevel export-texture levels/03/engine.ps3 --index 12 -o tex.png
    rclevel dump-blobs levels/03/engine.ps3 -o ./blobs/
"""

import argparse
import logging
import sys
from pathlib import Path


def _load(args):
    from rclevel.level import load_level

    level = load_level(args.engine_file, max_workers=args.workers)
    if not level.valid:
        raise RuntimeError(f"Level is invalid: {level.invalid_reason}")
    return level


def cmd_info(args):
    """Show a summary of a level."""
    from rclevel.level import load_level
    from rclevel.models import InstanceKind, ModelCategory

    try:
        level = load_level(args.engine_file, max_workers=args.workers)

        if not level.valid:
            print(f"Invalid level: {level.invalid_reason}")
            return 1

        print(f"Level: {level.path}")
        print(f"Game: {level.variant.name}")

        print("\nModels:")
        for category in ModelCategory:
            print(f"  {category.value}: {len(level.models(category))}")

        filled = sum(1 for t in level.textures if t.has_payload)
        print(f"\nTextures: {len(level.textures)} ({filled} with pixel data)")

        print("\nInstances:")
        for kind in InstanceKind:
            print(f"  {kind.value}: {len(level.instances(kind))}")

        unresolved = level.unresolved_instances()
        if unresolved:
            print(f"  unresolved model references: {len(unresolved)}")

        print(f"\nPvars: {len(level.pvars)}")

        print("\nTyped records:")
        for tag, records in level.typed_records.items():
            print(f"  {tag}: {records.count} x {records.record_size} bytes")

        print("\nOpaque blobs:")
        for tag, blob in sorted(level.blobs.items()):
            print(f"  {tag}: {blob.length / 1024:.1f} KB")

        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_export_model(args):
    """Export one model to OBJ/GLB/PLY."""
    from rclevel.export import export_model
    from rclevel.models import ModelCategory

    try:
        level = _load(args)
        category = ModelCategory(args.category)
        model = next((m for m in level.models(category) if m.id == args.id), None)
        if model is None:
            print(f"Error: no {category.value} model with ID {args.id}", file=sys.stderr)
            return 1

        output = export_model(model, args.output)
        print(f"Exported {model.vertex_count} vertices to: {output}")
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_export_texture(args):
    """Export one texture to an image file."""
    from rclevel.export import write_texture_image

    try:
        level = _load(args)
        if not 0 <= args.index < len(level.textures):
            print(f"Error: texture index {args.index} out of range (0-{len(level.textures) - 1})", file=sys.stderr)
            return 1

        output = write_texture_image(level.textures[args.index], args.output)
        print(f"Exported texture to: {output}")
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def cmd_dump_blobs(args):
    """Write every opaque blob verbatim as <tag>.bin."""
    try:
        level = _load(args)
        output_dir = Path(args.output or f"{Path(args.engine_file).parent.name}_blobs")
        output_dir.mkdir(parents=True, exist_ok=True)

        for tag, blob in sorted(level.blobs.items()):
            (output_dir / f"{tag}.bin").write_bytes(blob.data)
        for tag, records in level.typed_records.items():
            (output_dir / f"{tag}.bin").write_bytes(records.data)

        print(f"Wrote {len(level.blobs) + len(level.typed_records)} blobs to: {output_dir}")
        return 0
    except Exception as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="rclevel CLI - Inspect and export decoded levels",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  rclevel info levels/03/engine.ps3
  rclevel export-model levels/03/engine.ps3 --category tie --id 10 -o tie.glb
  rclevel dump-blobs levels/03/engine.ps3 -o ./blobs/
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Log decoding progress")
    parser.add_argument("--workers", type=int, default=1, help="Decoding threads (default: 1)")

    subparsers = parser.add_subparsers(dest="command", help="Commands")

    # info
    info_parser = subparsers.add_parser("info", help="Show a summary of a level")
    info_parser.add_argument("engine_file", help="Path to the level's engine file")
    info_parser.set_defaults(func=cmd_info)

    # export-model
    model_parser = subparsers.add_parser("export-model", help="Export a model to OBJ/GLB/PLY")
    model_parser.add_argument("engine_file", help="Path to the level's engine file")
    model_parser.add_argument(
        "--category", "-c", default="moby",
        choices=["moby", "tie", "shrub", "weapon", "skybox", "collision", "terrain"],
        help="Model category (default: moby)",
    )
    model_parser.add_argument("--id", type=int, required=True, help="Model ID")
    model_parser.add_argument("--output", "-o", required=True, help="Output mesh file")
    model_parser.set_defaults(func=cmd_export_model)

    # export-texture
    texture_parser = subparsers.add_parser("export-texture", help="Export a texture to an image")
    texture_parser.add_argument("engine_file", help="Path to the level's engine file")
    texture_parser.add_argument("--index", "-i", type=int, required=True, help="Texture index")
    texture_parser.add_argument("--output", "-o", required=True, help="Output image (PNG)")
    texture_parser.set_defaults(func=cmd_export_texture)

    # dump-blobs
    dump_parser = subparsers.add_parser("dump-blobs", help="Write opaque blobs to a directory")
    dump_parser.add_argument("engine_file", help="Path to the level's engine file")
    dump_parser.add_argument("--output", "-o", help="Output directory")
    dump_parser.set_defaults(func=cmd_dump_blobs)

    args = parser.parse_args(argv)

    if args.verbose:
        from rclevel.logging_config import setup_logging
        setup_logging(logging.INFO)

    if not args.command:
        parser.print_help()
        return 0

    return args.func(args)


if __name__ == "__main__":
    sys.exit(main())
