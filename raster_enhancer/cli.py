"""Command-line interface wiring for the raster enhancer."""
from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import uuid
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional

import yaml

from .adjustments import ENHANCEMENT_PRESETS, EnhancementSettings
from .denoise import DenoiseVariant
from .pipeline import _wrap_with_progress, collect_images, ensure_output_path, process_single_image

LOGGER = logging.getLogger("raster_enhancer")

_SETTINGS_FIELDS = {field.name for field in dataclasses.fields(EnhancementSettings)}
_TRUE_STRINGS = {"1", "true", "yes", "on"}
_FALSE_STRINGS = {"0", "false", "no", "off"}


def _load_config_data(path: Path) -> Mapping[str, Any]:
    """Read option defaults from a JSON or YAML file.

    Raises:
        FileNotFoundError: If the file does not exist.
        ValueError: If the content cannot be parsed or is not a mapping.
    """
    if not path.exists():
        raise FileNotFoundError(f"Configuration file not found: {path}")

    text = path.read_text()
    try:
        if path.suffix.lower() in {".yaml", ".yml"}:
            data = yaml.safe_load(text)
        else:
            data = json.loads(text)
    except (yaml.YAMLError, json.JSONDecodeError) as exc:
        raise ValueError(f"Unable to parse configuration file {path}: {exc}") from exc

    if data is None:
        return {}
    if not isinstance(data, Mapping):
        raise ValueError(f"Configuration file {path} must contain a mapping of option names to values")
    return data


def _option_lookup(parser: argparse.ArgumentParser) -> dict[str, argparse.Action]:
    """Map every dest and long option name (underscored) to its action."""
    lookup: dict[str, argparse.Action] = {}
    for action in parser._actions:  # pylint: disable=protected-access
        if action.dest in {argparse.SUPPRESS, "help", "config"}:
            continue
        lookup[action.dest] = action
        for option_string in action.option_strings:
            lookup[option_string.lstrip("-").replace("-", "_")] = action
    return lookup


def _coerce_config_value(action: argparse.Action, value: Any, *, source: Path, key: str) -> Any:
    """Convert a configuration value the way argparse would convert the flag."""
    if value is None:
        return None

    if action.nargs == 0:
        if isinstance(value, bool):
            return value
        lowered = str(value).strip().lower()
        if lowered in _TRUE_STRINGS:
            return True
        if lowered in _FALSE_STRINGS:
            return False
        raise ValueError(f"Invalid boolean for '{key}' in {source}: expected true/false value, got {value!r}")

    converted = value
    if action.type is not None:
        try:
            converted = action.type(value)
        except (TypeError, ValueError) as exc:
            raise ValueError(f"Invalid value for '{key}' in {source}: {exc}") from exc

    if action.choices is not None and converted not in action.choices:
        raise ValueError(
            f"Invalid value for '{key}' in {source}: {converted!r} (choose from {sorted(action.choices)})"
        )
    return converted


def _apply_config_defaults(parser: argparse.ArgumentParser, config_path: Path) -> None:
    lookup = _option_lookup(parser)
    defaults: dict[str, Any] = {}
    for raw_key, value in _load_config_data(config_path).items():
        if not isinstance(raw_key, str):
            raise ValueError("Configuration keys must be strings")
        key = raw_key.replace("-", "_")
        action = lookup.get(key)
        if action is None:
            raise ValueError(f"Unknown configuration option '{raw_key}' in {config_path}")
        defaults[action.dest] = _coerce_config_value(action, value, source=config_path, key=raw_key)
    parser.set_defaults(**defaults)


def default_output_folder(input_folder: Path) -> Path:
    """Return the default output folder for a given input directory."""

    if input_folder.name:
        return input_folder.parent / f"{input_folder.name}_enhanced"
    return input_folder / "enhanced_output"


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Denoise and enhance every image in a folder.",
        formatter_class=argparse.ArgumentDefaultsHelpFormatter,
    )
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="Optional configuration file providing option defaults (JSON, or YAML for .yaml/.yml)",
    )
    parser.add_argument("input", type=Path, help="Folder that contains source images")
    parser.add_argument(
        "output",
        type=Path,
        nargs="?",
        default=None,
        help="Folder for processed files. Defaults to '<input>_enhanced' next to the input folder.",
    )
    parser.add_argument(
        "--preset",
        default="default",
        choices=sorted(ENHANCEMENT_PRESETS.keys()),
        help="Settings preset that provides a starting point",
    )
    parser.add_argument("--recursive", action="store_true", help="Process sub-folders and mirror the tree")
    parser.add_argument("--suffix", default="_enhanced", help="Filename suffix added before the extension")
    parser.add_argument("--overwrite", action="store_true", help="Replace existing files in the destination")
    parser.add_argument("--dry-run", action="store_true", help="Preview the work without writing any files")
    parser.add_argument("--no-progress", action="store_true", help="Disable progress reporting")
    parser.add_argument(
        "--auto",
        action="store_true",
        help="Estimate brightness/contrast per image, sharpen fully and use a kernel size of 6",
    )

    # Overrides on top of the preset.
    parser.add_argument(
        "--denoise",
        default=None,
        choices=[variant.value for variant in DenoiseVariant],
        help="Noise reduction algorithm",
    )
    parser.add_argument("--kernel-size", type=int, default=None, help="Filter window width (3-9)")
    parser.add_argument("--tv-lambda", type=float, default=None, help="Total variation regularisation weight")
    parser.add_argument("--tv-iterations", type=int, default=None, help="Total variation iteration count")
    parser.add_argument("--brightness", type=float, default=None, help="Brightness delta (-1 to 1)")
    parser.add_argument("--contrast", type=float, default=None, help="Contrast delta (-1 to 1)")
    parser.add_argument("--sharpness", type=float, default=None, help="Sharpening strength (-1 to 1)")
    parser.add_argument("--block-size", type=int, default=None, help="Tile size for block processing (32-256)")
    parser.add_argument(
        "--parallel",
        dest="use_parallel",
        action="store_true",
        default=None,
        help="Process overlapping tiles in worker processes",
    )
    parser.add_argument("--workers", type=int, default=None, help="Worker processes for block processing")

    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging verbosity",
    )
    return parser


def parse_args(argv: Optional[Iterable[str]] = None) -> argparse.Namespace:
    parser = _build_parser()
    argv_list = list(argv) if argv is not None else None

    preliminary, _ = parser.parse_known_args(argv_list)
    if preliminary.config is not None:
        try:
            _apply_config_defaults(parser, preliminary.config)
        except (OSError, ValueError) as exc:
            parser.error(str(exc))

    args = parser.parse_args(argv_list)
    if args.workers is not None and args.workers < 1:
        parser.error("--workers must be a positive integer")
    if args.output is None:
        args.output = default_output_folder(args.input)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s: %(message)s")
    return args


def build_settings(args: argparse.Namespace) -> EnhancementSettings:
    """Combine the chosen preset with command-line overrides.

    Raises:
        InvalidConfigurationError: If an override is out of range.
    """
    overrides = {
        name: getattr(args, name)
        for name in _SETTINGS_FIELDS
        if getattr(args, name, None) is not None
    }
    settings = dataclasses.replace(ENHANCEMENT_PRESETS[args.preset], **overrides)
    LOGGER.debug("Using settings: %s", settings)
    return settings


def _ensure_non_overlapping(input_root: Path, output_root: Path) -> None:
    def _contains(parent: Path, child: Path) -> bool:
        try:
            child.relative_to(parent)
        except ValueError:
            return False
        return True

    if input_root == output_root:
        raise SystemExit("Output folder must be different from the input folder to avoid self-overwrites.")
    if _contains(input_root, output_root):
        raise SystemExit(
            "Output folder cannot be located inside the input folder; choose a sibling or separate directory."
        )
    if _contains(output_root, input_root):
        raise SystemExit(
            "Input folder cannot be located inside the output folder; choose non-overlapping directories."
        )


def run_pipeline(args: argparse.Namespace) -> int:
    """Enhance every image under ``args.input``; return the number written."""

    run_id = uuid.uuid4().hex
    settings = build_settings(args)
    input_root = args.input.resolve()
    output_root = args.output.resolve()

    if not input_root.exists():
        raise FileNotFoundError(f"Input folder not found: {input_root}")
    if not input_root.is_dir():
        raise SystemExit(f"Input folder '{input_root}' is not a directory")

    _ensure_non_overlapping(input_root, output_root)

    LOGGER.info(
        "Starting run %s for %s with %s denoising", run_id, input_root, settings.denoise.value
    )
    images = sorted(collect_images(input_root, args.recursive))
    if not images:
        LOGGER.warning("No images found in %s (run %s)", input_root, run_id)
        return 0

    if not args.dry_run:
        output_root.mkdir(parents=True, exist_ok=True)
    LOGGER.info("Found %s image(s) to process", len(images))

    processed = 0
    total_seconds = 0.0
    progress_iterable = _wrap_with_progress(
        images,
        total=len(images),
        description="Processing images",
        enabled=not args.no_progress,
    )
    for image_path in progress_iterable:
        destination = ensure_output_path(
            input_root,
            output_root,
            image_path,
            args.suffix,
            args.recursive,
            create=not args.dry_run,
        )
        if destination.exists() and not args.overwrite and not args.dry_run:
            LOGGER.warning("Skipping %s (exists, use --overwrite to replace)", destination)
            continue
        if args.dry_run:
            LOGGER.info("Dry run: would process %s -> %s", image_path, destination)
        result = process_single_image(
            image_path,
            destination,
            settings,
            auto=args.auto,
            dry_run=args.dry_run,
            progress=not args.no_progress,
        )
        if result is not None:
            processed += 1
            total_seconds += result.duration

    LOGGER.info(
        "Finished run %s; processed %s image(s) in %.3f seconds", run_id, processed, total_seconds
    )
    return processed


def main(argv: Optional[Iterable[str]] = None) -> int:
    args = parse_args(argv)
    run_pipeline(args)
    return 0


__all__ = [
    "build_settings",
    "default_output_folder",
    "main",
    "parse_args",
    "run_pipeline",
]
