"""CLI entry point: ``python -m vectorcam drawing.json -o output.nc``"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .compute.launcher import InlineTaskLauncher, ProcessTaskLauncher
from .config.settings import AppSettings
from .core.errors import CamError
from .core.job import Job
from .core.operation import CutDirection, OperationKind, TabLocation

logger = logging.getLogger(__name__)

_OPERATION_CHOICES = [kind.value for kind in OperationKind] + ["fill"]


def _tab(text: str) -> TabLocation:
    try:
        x, y = (float(v) for v in text.split(","))
    except ValueError:
        raise argparse.ArgumentTypeError(f"expected X,Y, got {text!r}") from None
    return TabLocation(x, y)


def _build_parser(settings: AppSettings) -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="vectorcam",
        description="Generate G-code from a vector drawing (interchange JSON).",
    )
    p.add_argument("input", type=Path, help="Input drawing (.json)")
    p.add_argument(
        "-o", "--output", type=Path, default=None,
        help="Output G-code file (default: <input>.nc)",
    )
    p.add_argument("-v", "--verbose", action="store_true",
                   help="Log compute task activity")

    # Operation
    p.add_argument("--operation", choices=_OPERATION_CHOICES, default=None,
                   help=f"Cut type (default: {settings.default_operation.lower()})")
    p.add_argument("--direction", choices=[d.value for d in CutDirection], default=None,
                   help="Cut direction (default: conventional)")

    # Tool and depths (mm)
    p.add_argument("--tool-diameter", type=float, default=None,
                   help=f"Tool diameter (default: {settings.default_tool_diameter})")
    p.add_argument("--depth", type=float, default=None,
                   help="Total cut depth (default: 18)")
    p.add_argument("--pass-depth", type=float, default=None,
                   help="Depth per pass (default: 3)")
    p.add_argument("--stepover", type=float, default=None,
                   help="Pocket step-over as fraction of tool diameter (default: 0.4)")
    p.add_argument("--offset", type=float, default=None,
                   help="Extra profile offset (default: 0)")

    # Feeds and speeds
    p.add_argument("--feed", type=float, default=None,
                   help="Cutting feed rate, mm/min (default: 800)")
    p.add_argument("--plunge", type=float, default=None,
                   help="Plunge feed rate, mm/min (default: 400)")
    p.add_argument("--spindle", type=int, default=None,
                   help="Spindle RPM, 0 for none (default: 18000)")

    # Tabs
    p.add_argument("--tab", type=_tab, action="append", default=None, metavar="X,Y",
                   help="Place a tab (repeatable)")
    p.add_argument("--tab-width", type=float, default=None,
                   help="Tab width (default: 0, no tabs)")
    p.add_argument("--tab-depth", type=float, default=None,
                   help="Tab height above the cut floor (default: 3)")

    # Export
    p.add_argument("--safe-z", type=float, default=settings.default_safe_z,
                   help=f"Safe Z for rapids (default: {settings.default_safe_z})")

    # Execution
    p.add_argument("--inline", action="store_true",
                   help="Compute in this process instead of a worker process")
    p.add_argument("--timeout", type=float, default=None,
                   help="Give up if the computation takes longer (seconds)")
    p.add_argument("--skip-validate", action="store_true",
                   help="Skip parameter validation")

    return p


def _parameters(args: argparse.Namespace, settings: AppSettings):
    params = settings.default_parameters()
    if args.operation:
        params.operation = OperationKind.from_label(args.operation)
    if args.direction:
        params.direction = CutDirection(args.direction)

    overrides = {
        "tool_diameter": args.tool_diameter,
        "depth": args.depth,
        "pass_depth": args.pass_depth,
        "stepover": args.stepover,
        "offset": args.offset,
        "feed": args.feed,
        "plunge": args.plunge,
        "spindle": args.spindle,
        "tab_width": args.tab_width,
        "tab_depth": args.tab_depth,
        "tab_locations": args.tab,
    }
    return params.copy(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: list[str] | None = None) -> int:
    try:
        settings = AppSettings.load()
    except CamError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    args = _build_parser(settings).parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    output: Path = args.output or args.input.with_suffix(".nc")

    try:
        params = _parameters(args, settings)

        launcher = InlineTaskLauncher() if args.inline else ProcessTaskLauncher()
        job = Job(launcher=launcher)

        print(f"Loading {args.input} ...")
        job.load_document(args.input)
        entry_id = job.create_toolpath(parameters=params)
        entry = job.registry.get(entry_id)
        print(f"  {len(entry.source_geometry.lines())} vectors")
        print(f"Operation: {params.operation.label} "
              f"(tool={params.tool_diameter}mm depth={params.depth}mm)")

        # Validate
        if not args.skip_validate:
            result = job.validate(entry_id)
            if result.has_errors:
                print("VALIDATION ERRORS:", file=sys.stderr)
                for issue in result.issues:
                    if issue.severity == "error":
                        print(f"  ERROR: {issue.message}", file=sys.stderr)
                return 1
            for issue in result.issues:
                print(f"  Warning: {issue.message}")

        print("Computing toolpath ...")
        job.preview(entry_id)
        job.wait(args.timeout)

        record = job.dispatcher.record(entry_id)
        if record.error is not None:
            print(f"Error: {record.error}", file=sys.stderr)
            return 1

        job.write_gcode(
            output,
            safe_z=args.safe_z,
            on_progress=lambda pct: logger.debug("Export %d%%", pct),
        )
        settings.remember_open(args.input)
        settings.remember_save(output)
        settings.save()
    except (CamError, FileNotFoundError, TimeoutError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1

    print(f"Wrote {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
