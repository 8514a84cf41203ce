"""CLI entry point: ``python -m tracecam job.json -o board.nc``"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config.machine_profiles import PostProcessor
from .core.geometry.boolean import BooleanError
from .core.job import load_job
from .core.offsets import PipelineCancelled
from .core.units import Units
from .gcode.validate import MachineEnvelope, validate_plans


def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="tracecam",
        description="Generate PCB isolation, drilling and cutout G-code from a job file.",
    )
    p.add_argument("input", type=Path, help="Job file (JSON) with operations and primitives")
    p.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Output G-code file (default: <input>.nc)",
    )
    p.add_argument(
        "--post", choices=[pp.value for pp in PostProcessor], default=None,
        help="Post-processor (default: the job's setting)",
    )
    p.add_argument(
        "--units", choices=["mm", "inch"], default=None,
        help="Output units (default: the job's setting)",
    )
    p.add_argument("--skip-validate", action="store_true",
                   help="Skip machine-limit validation")
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Log pipeline details")
    return p


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    output: Path = args.output or args.input.with_suffix(".nc")

    print(f"Loading {args.input} ...")
    job = load_job(args.input)
    if args.post:
        job.settings.gcode["post_processor"] = args.post
    if args.units:
        job.units = Units.parse(args.units)
    print(f"  {len(job.operations)} operations")

    print("Generating offsets ...")
    try:
        job.run_pipeline()
    except (BooleanError, PipelineCancelled) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    for op in job.operations:
        count = sum(len(g.primitives) for g in op.offsets)
        print(f"  {op.id}: {len(op.offsets)} groups, {count} primitives")

    print("Computing toolpaths ...")
    plans = job.compute_toolpaths()
    moves = sum(len(p.commands) for p in plans)
    print(f"  {len(plans)} plans, {moves} moves")

    for op in job.operations:
        for warning in op.warnings:
            print(f"  Warning [{op.id}] {warning.kind}: {warning.message}")

    if not args.skip_validate:
        envelope = MachineEnvelope.from_dict(job.settings.machine.get("envelope", {}))
        result = validate_plans(plans, envelope)
        if result.has_errors:
            print("VALIDATION ERRORS:", file=sys.stderr)
            for issue in result.issues:
                if issue.severity == "error":
                    print(f"  ERROR: {issue.message}", file=sys.stderr)
            return 1
        for issue in result.issues:
            if issue.severity == "warning":
                print(f"  Warning: {issue.message}")

    job.export_gcode(output, plans)
    print(f"Wrote {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
