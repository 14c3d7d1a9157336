"""Command-line interface for the texture packer."""

import argparse
import logging
import os
import sys
import time

from .config import InputSlot, PackerConfig
from .core import classify_slot, is_smoothness_name, is_supported_texture, setup_logging

logger = logging.getLogger("terrain_packer")

_SLOT_ARGS = {
    InputSlot.ALBEDO: "albedo",
    InputSlot.AMBIENT_OCCLUSION: "ao",
    InputSlot.HEIGHT: "height",
    InputSlot.NORMAL: "normal",
    InputSlot.ROUGHNESS: "roughness",
}


def _discover_inputs(input_dir: str) -> dict:
    """Map slots to files in ``input_dir`` using filename suffixes."""
    found = {}
    for name in sorted(os.listdir(input_dir)):
        path = os.path.join(input_dir, name)
        if not os.path.isfile(path) or not is_supported_texture(path):
            continue
        slot = classify_slot(name)
        if slot is None:
            continue
        if slot in found:
            logger.warning(
                "Multiple %s candidates in %s; keeping %s, ignoring %s",
                slot.label, input_dir, os.path.basename(found[slot]), name,
            )
            continue
        found[slot] = path
    return found


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Pack terrain maps into albedo+height and normal+roughness textures",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  terrain-packer --albedo rock_albedo.png --normal rock_normal.png -o ./out
  terrain-packer --input-dir ./rock -o ./out --format dds
  terrain-packer --input-dir ./rock -o ./out --normal-format directx
  terrain-packer --generate-config
        """
    )
    parser.add_argument("--albedo", help="Albedo / base color map (required)")
    parser.add_argument("--ao", help="Ambient occlusion map")
    parser.add_argument("--height", help="Height / displacement map")
    parser.add_argument("--normal", help="Normal map (required)")
    parser.add_argument("--roughness", help="Roughness or smoothness map")
    parser.add_argument("--input-dir", "-i",
                        help="Pick maps from a directory by filename suffix")
    parser.add_argument("--output", "-o", help="Existing output directory")
    parser.add_argument("--format", choices=["png", "dds"], help="Output container")
    parser.add_argument("--normal-format", choices=["opengl", "directx"],
                        help="Green-channel convention of the normal map")
    parser.add_argument("--roughness-format", choices=["roughness", "smoothness"],
                        help="Whether --roughness holds roughness or smoothness")
    parser.add_argument("--config", "-c", help="Path to config YAML")
    parser.add_argument("--generate-config", action="store_true",
                        help="Generate default config.yaml")
    parser.add_argument("--workers", type=int, help="Max parallel load workers")
    parser.add_argument("--log-level",
                        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"])
    parser.add_argument("--log-file", help="Also write a rotating log to this path")
    return parser


def main(argv=None):
    """Parse CLI arguments, load the maps, and run one packing pass."""
    args = build_parser().parse_args(argv)

    if args.generate_config:
        config = PackerConfig()
        dest = args.config or "config.yaml"
        if os.path.isdir(dest):
            dest = os.path.join(dest, "config.yaml")
        config.to_yaml(dest)
        print(f"Generated default {dest}")
        return

    # Early validation warnings from from_yaml() go to stderr before
    # the configured logging is in place.
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s: %(message)s")

    if args.config:
        if not os.path.exists(args.config):
            print(f"Error: Config file not found: {args.config}")
            sys.exit(1)
        try:
            config = PackerConfig.from_yaml(args.config)
        except ValueError as e:
            logger.error("Invalid config file '%s': %s", args.config, e)
            print(f"Error: Invalid config: {e}")
            sys.exit(1)
    else:
        config = PackerConfig()

    # CLI overrides
    if args.output:
        config.output.directory = args.output
    if args.format:
        config.output.format = args.format
    if args.normal_format:
        config.packing.normal_encoding = args.normal_format
    if args.roughness_format:
        config.packing.roughness_encoding = args.roughness_format
    if args.workers is not None:
        config.max_workers = args.workers
    if args.log_level:
        config.log_level = args.log_level
    if args.log_file:
        config.log_file = args.log_file

    inputs = {}
    if args.input_dir:
        if not os.path.isdir(args.input_dir):
            print(f"Error: Input directory not found: {args.input_dir}")
            sys.exit(1)
        inputs.update(_discover_inputs(args.input_dir))
    for slot, attr in _SLOT_ARGS.items():
        value = getattr(args, attr)
        if value:
            inputs[slot] = value

    roughness_path = inputs.get(InputSlot.ROUGHNESS)
    if roughness_path and not args.roughness_format and is_smoothness_name(roughness_path):
        logger.info("Treating %s as a smoothness map", os.path.basename(roughness_path))
        config.packing.roughness_encoding = "smoothness"

    missing = [slot.label for slot in InputSlot if slot.required and slot not in inputs]
    if missing:
        print(f"Error: Missing required map(s): {', '.join(missing)}")
        sys.exit(1)
    if not config.output.directory or not os.path.isdir(config.output.directory):
        print(f"Error: Output directory not found: {config.output.directory or '(not set)'}")
        sys.exit(1)

    setup_logging(config.log_level, config.log_file or None)

    try:
        config.validate()
    except ValueError as e:
        logger.error(str(e))
        sys.exit(1)

    from tqdm import tqdm
    from .pipeline import RunStatus, SlotStatus, TexturePacker

    with TexturePacker(config) as packer:
        for slot, path in inputs.items():
            packer.load(slot, path)

        with tqdm(total=len(inputs), desc="Loading maps", unit="map") as pbar:
            done = 0
            while True:
                packer.poll()
                finished = sum(
                    1 for slot in inputs
                    if packer.slot(slot).status is not SlotStatus.LOADING
                )
                pbar.update(finished - done)
                done = finished
                if not packer.busy:
                    break
                time.sleep(config.poll_interval_seconds)

        failed = [
            (slot, state) for slot, state in packer.state.slots.items()
            if state.status is SlotStatus.ERROR
        ]
        for slot, state in failed:
            print(f"Error: {slot.label} ({state.path}): {state.error}")
        if failed:
            sys.exit(1)

        packer.run()
        packer.wait()
        run = packer.state.run
        if run.status is not RunStatus.DONE:
            print(f"Error: Packing failed: {run.error}")
            sys.exit(1)
        for path in run.outputs:
            print(f"Wrote {path}")


if __name__ == "__main__":
    main()
