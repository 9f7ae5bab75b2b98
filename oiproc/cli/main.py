"""
Command-line interface for oiproc.

Commands:
    merge     - Merge OIFITS files of one target, with optional selection
    info      - Display the targets, instrument modes, nights and tables of files

Example:
    $ oiproc merge night1.fits night2.fits -o merged.fits --baselines A0-B1 G1-J3
    $ oiproc merge --config merge.yaml
    $ oiproc info night1.fits night2.fits
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from oiproc import __version__


def create_parser() -> argparse.ArgumentParser:
    """Create the argument parser for the CLI."""
    parser = argparse.ArgumentParser(
        prog="oiproc",
        description="oiproc: selection and merging of OIFITS files",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"%(prog)s {__version__}",
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="count",
        default=0,
        help="Increase log verbosity (-v: info, -vv: debug)",
    )

    subparsers = parser.add_subparsers(
        title="commands",
        dest="command",
        description="Available commands",
    )

    # Merge command
    merge_parser = subparsers.add_parser(
        "merge",
        help="Merge OIFITS files",
        description="Merge OIFITS files of a single target into one file.",
    )
    merge_parser.add_argument(
        "inputs",
        type=Path,
        nargs="*",
        help="Input OIFITS files",
    )
    merge_parser.add_argument(
        "-o",
        "--output",
        type=Path,
        default=None,
        help="Output OIFITS file",
    )
    merge_parser.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML merge configuration (replaces the other options)",
    )
    merge_parser.add_argument(
        "--target",
        type=str,
        default=None,
        help="Target UID to keep",
    )
    merge_parser.add_argument(
        "--insname",
        type=str,
        default=None,
        help="Instrument mode UID to keep",
    )
    merge_parser.add_argument(
        "--night",
        type=int,
        default=None,
        help="Night identifier to keep",
    )
    merge_parser.add_argument(
        "--baselines",
        type=str,
        nargs="+",
        default=None,
        help="Baselines or triangles to keep (e.g. A0-B1)",
    )
    merge_parser.add_argument(
        "--mjds",
        type=str,
        nargs="+",
        default=None,
        metavar="MIN,MAX",
        help="MJD ranges to keep",
    )
    merge_parser.add_argument(
        "--wavelengths",
        type=str,
        nargs="+",
        default=None,
        metavar="MIN,MAX",
        help="Wavelength ranges to keep (meters)",
    )
    merge_parser.add_argument(
        "--standard",
        type=int,
        default=None,
        choices=[1, 2],
        help="Output OIFITS standard (default: highest input standard)",
    )
    merge_parser.add_argument(
        "--overwrite",
        action="store_true",
        help="Overwrite the output file",
    )

    # Info command
    info_parser = subparsers.add_parser(
        "info",
        help="Display information about OIFITS files",
        description="List targets, instrument modes, nights and tables of OIFITS files.",
    )
    info_parser.add_argument(
        "inputs",
        type=Path,
        nargs="+",
        help="OIFITS files",
    )

    return parser


def parse_ranges(values: list[str] | None) -> list[dict[str, float]] | None:
    """Parse 'MIN,MAX' strings into range dicts."""
    if not values:
        return None
    ranges = []
    for value in values:
        parts = value.split(",")
        if len(parts) != 2:
            raise ValueError(f"Invalid range '{value}', expected MIN,MAX")
        ranges.append({"min": float(parts[0]), "max": float(parts[1])})
    return ranges


def build_merge_config(args: argparse.Namespace):
    """Merge configuration from --config or from the command-line options."""
    from oiproc.config.schema import MergeConfig

    if args.config is not None:
        if not args.config.exists():
            raise FileNotFoundError(f"Configuration file not found: {args.config}")
        config = MergeConfig.load_yaml(args.config)
        if args.output is not None:
            config.output = args.output
        if args.overwrite:
            config.overwrite = True
        return config

    if args.output is None:
        raise ValueError("Missing output file (-o/--output)")

    selector = {
        "target_uid": args.target,
        "ins_mode_uid": args.insname,
        "night_id": args.night,
        "baselines": args.baselines,
        "mjd_ranges": parse_ranges(args.mjds),
        "wavelength_ranges": parse_ranges(args.wavelengths),
    }
    selector = {key: value for key, value in selector.items() if value is not None}

    return MergeConfig(
        inputs=args.inputs,
        output=args.output,
        standard=args.standard,
        selector=selector or None,
        overwrite=args.overwrite,
    )


def cmd_merge(args: argparse.Namespace) -> int:
    """Execute the merge command."""
    from pydantic import ValidationError

    from oiproc.io import load_oifits, write_oifits
    from oiproc.processing import Merger

    try:
        config = build_merge_config(args)
    except (ValueError, FileNotFoundError, ValidationError) as e:
        print(f"Error: Invalid merge options: {e}")
        return 1

    selector = config.selector.to_selector() if config.selector is not None else None

    print(f"Inputs: {len(config.inputs)} files")
    if selector is not None:
        print(f"Selector: {selector}")

    try:
        inputs = [load_oifits(path) for path in config.inputs]
        for oi_fits in inputs:
            oi_fits.analyze()
        merged = Merger.process(inputs, selector=selector, standard=config.standard)
        write_oifits(merged, config.output, overwrite=config.overwrite)
    except (ValueError, FileNotFoundError, OSError) as e:
        print(f"Error: Merge failed: {e}")
        return 1

    print(f"\nMerged file: {config.output}")
    print(f"  Standard: OIFITS {int(merged.version)}")
    print(f"  Wavelength tables: {len(merged.oi_wavelengths)}")
    print(f"  Array tables: {len(merged.oi_arrays)}")
    print(f"  Data tables: {len(merged.oi_datas)}")
    return 0


def cmd_info(args: argparse.Namespace) -> int:
    """Execute the info command."""
    from oiproc.io import load_oifits
    from oiproc.model.collection import OIFitsCollection

    try:
        files = [load_oifits(path) for path in args.inputs]
    except (ValueError, FileNotFoundError, OSError) as e:
        print(f"Error: {e}")
        return 1

    collection = OIFitsCollection.create(files)

    for oi_fits in collection.get_sorted_oifits_files():
        print(f"File: {oi_fits.file_path}")
        print(f"  Standard: OIFITS {int(oi_fits.version)}")
        for table in oi_fits.tables:
            print(f"  #{table.ext_nb} {table.EXT_NAME}: {table.nb_rows} rows")
    print("-" * 50)

    print("\nTargets:")
    for target in collection.get_distinct_targets():
        print(f"  {target.uid}: {target.name} (RA {target.ra:.6f}, DEC {target.dec:.6f})")

    print("\nInstrument modes:")
    for ins_mode in collection.get_distinct_instrument_modes():
        print(
            f"  {ins_mode.uid}: {ins_mode.nb_channels} channels "
            f"[{ins_mode.lambda_min:.4e}, {ins_mode.lambda_max:.4e}] m"
        )

    print("\nNights:")
    for night in collection.get_distinct_night_ids():
        print(f"  {night}")

    print(f"\nGranules: {len(collection.get_sorted_granules())}")
    return 0


def main(argv: list[str] | None = None) -> int:
    """
    Main entry point for the oiproc CLI.

    Args:
        argv: Command-line arguments. If None, uses sys.argv.

    Returns:
        Exit code (0 for success, non-zero for errors).
    """
    parser = create_parser()
    args = parser.parse_args(argv)

    level = logging.WARNING
    if args.verbose == 1:
        level = logging.INFO
    elif args.verbose > 1:
        level = logging.DEBUG
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")

    if args.command is None:
        parser.print_help()
        return 0

    if args.command == "merge":
        return cmd_merge(args)
    elif args.command == "info":
        return cmd_info(args)
    else:
        parser.print_help()
        return 1


if __name__ == "__main__":
    sys.exit(main())
