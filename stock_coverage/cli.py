"""
Command-line interface for the stock coverage engine.

Provides commands for calculating coverage from files, showing configuration
and listing presets.
"""
import argparse
import logging
import sys
from datetime import datetime

from stock_coverage import __version__
from stock_coverage.calculator import StockCoverageCalculator
from stock_coverage.config import CONFIG_PRESETS, DEFAULT_CONFIG, get_preset_config, settings
from stock_coverage.exceptions import StockCoverageCalculationError
from stock_coverage.extract import load_config_file, load_inputs_from_csv, write_results
from stock_coverage.logging_config import get_logger, setup_logging
from stock_coverage.timing import timed_operation

logger = get_logger(__name__)


def _parse_as_of(value: str) -> datetime:
    """argparse type for --as-of (YYYY-MM-DD or ISO datetime)."""
    try:
        return datetime.fromisoformat(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Invalid date: {value!r} (expected YYYY-MM-DD)")


def _print_progress(completed: int, total: int):
    logger.info(f"Progress: {completed}/{total} SKUs")


@timed_operation("Stock Coverage CLI Run")
def cmd_calculate(args: argparse.Namespace) -> int:
    """
    Calculate stock coverage for every product in the input files.

    Parameters:
    -----------
    args : argparse.Namespace
        Parsed command-line arguments

    Returns:
    --------
    int
        0 when at least one SKU succeeded, else 1
    """
    setup_logging(logging.DEBUG if args.verbose else settings.log_level)

    logger.info("=" * 60)
    logger.info("STOCK COVERAGE ENGINE - CLI")
    logger.info(f"Version: {__version__}")
    logger.info("=" * 60)

    try:
        overrides = get_preset_config(args.preset) if args.preset else {}
        if args.config:
            overrides.update(load_config_file(args.config))
        calculator = StockCoverageCalculator(overrides)

        inputs = load_inputs_from_csv(args.products, args.sales, args.availability, as_of=args.as_of)
    except StockCoverageCalculationError as e:
        logger.error(f"Configuration error: {e}")
        for message in e.details.get('errors', []):
            logger.error(f"  - {message}")
        return 1
    except (OSError, ValueError) as e:
        logger.error(f"Failed to load inputs: {e}")
        return 1

    results, summary = calculator.calculate_batch(
        inputs,
        parallel=args.parallel,
        on_progress=_print_progress,
        now=args.as_of,
    )

    print("\n" + "=" * 60)
    print("STOCK COVERAGE SUMMARY")
    print("=" * 60)
    print(f"SKUs processed: {len(inputs)}")
    print(f"Successful: {len(summary.successful)}")
    print(f"Failed: {len(summary.failed)}")
    print(f"Total time: {summary.total_time_ms:.0f} ms ({summary.average_time_per_sku_ms:.1f} ms/SKU)")

    if summary.errors:
        print(f"\nErrors ({len(summary.errors)}):")
        for sku, error in summary.errors.items():
            print(f"  - {sku}: {error}")

    if results and not args.output:
        print(f"\n{'SKU':<20} {'P10':>8} {'P50':>8} {'P90':>8} {'Demand':>8} {'ROP':>6} {'Qty':>6} {'Risk':>6}")
        for sku, result in results.items():
            print(
                f"{sku:<20} {result.coverage_days_p10:>8.1f} {result.coverage_days:>8.1f} "
                f"{result.coverage_days_p90:>8.1f} {result.demand_forecast:>8.2f} "
                f"{result.reorder_point:>6} {result.reorder_quantity:>6} {result.stockout_risk:>6.0%}"
            )

    if args.output and results:
        path, rows = write_results(results.values(), args.output)
        print(f"\nResults written to {path} ({rows} rows)")

    print("=" * 60)

    if not summary.successful:
        print("\nWARNING: No coverage results were produced")
        return 1
    return 0


def cmd_config(args: argparse.Namespace) -> int:
    """
    Show effective configuration.

    Parameters:
    -----------
    args : argparse.Namespace
        Parsed command-line arguments
    """
    print("=" * 60)
    print("STOCK COVERAGE ENGINE - CONFIGURATION")
    print("=" * 60)

    print("\nCalculation defaults:")
    for key, value in DEFAULT_CONFIG.model_dump().items():
        print(f"  {key}: {value}")

    print("\nEngine settings:")
    print(f"  Log level: {settings.log_level}")
    print(f"  Parallel threshold: {settings.parallel_threshold} SKUs")
    print(f"  Number of jobs: {settings.n_jobs} (-1 = all CPUs)")
    print(f"  Max coverage days: {settings.max_coverage_days}")
    print(f"  Ordering cost per order: {settings.ordering_cost_per_order}")
    print(f"  Holding cost rate: {settings.holding_cost_rate}")
    print(f"  Order cycle days: {settings.order_cycle_days}")
    print(f"  Default lead time days: {settings.default_lead_time_days}")

    print("\n" + "=" * 60)
    return 0


def cmd_presets(args: argparse.Namespace) -> int:
    """List named configuration presets."""
    print("=" * 60)
    print("CONFIGURATION PRESETS")
    print("=" * 60)

    for name, values in CONFIG_PRESETS.items():
        print(f"\n{name}:")
        for key, value in values.items():
            print(f"  {key}: {value}")

    print("\n" + "=" * 60)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='stock-coverage',
        description='Stock Coverage Engine - availability-aware days-of-cover forecasting',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Calculate coverage with defaults
  stock-coverage calculate --products products.csv --sales sales.csv

  # Include stockout data and write results
  stock-coverage calculate --products products.tsv --sales sales.tsv \\
      --availability availability.tsv --output coverage.csv

  # Use a preset with YAML overrides, as of a fixed date
  stock-coverage calculate --products p.csv --sales s.csv \\
      --preset conservative --config overrides.yaml --as-of 2024-06-30

  # Show configuration / presets
  stock-coverage config
  stock-coverage presets
        """
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'%(prog)s {__version__}'
    )

    subparsers = parser.add_subparsers(
        dest='command',
        title='Available Commands',
        description='Use "stock-coverage <command> --help" for command-specific help'
    )

    # Calculate command
    calculate_parser = subparsers.add_parser(
        'calculate',
        help='Calculate stock coverage',
        description='Calculate coverage days and reorder recommendations per SKU'
    )

    calculate_parser.add_argument('--products', required=True, help='Products file (.csv or .tsv)')
    calculate_parser.add_argument('--sales', required=True, help='Sales history file (.csv or .tsv)')
    calculate_parser.add_argument('--availability', help='Stock availability file (.csv or .tsv)')

    calculate_parser.add_argument(
        '--preset',
        choices=sorted(CONFIG_PRESETS),
        help='Named configuration preset'
    )

    calculate_parser.add_argument(
        '--config',
        help='YAML file with configuration overrides (applied after --preset)'
    )

    calculate_parser.add_argument(
        '--as-of',
        type=_parse_as_of,
        default=None,
        help='Reference date for the calculation (default: now)'
    )

    calculate_parser.add_argument(
        '--output', '-o',
        help='Write results to this .csv/.tsv file'
    )

    calculate_parser.add_argument(
        '--parallel',
        action='store_true',
        default=True,
        help='Use parallel processing (default: True)'
    )

    calculate_parser.add_argument(
        '--no-parallel',
        dest='parallel',
        action='store_false',
        help='Use sequential processing'
    )

    calculate_parser.add_argument(
        '--verbose', '-v',
        action='store_true',
        help='Enable verbose logging (DEBUG level)'
    )

    calculate_parser.set_defaults(func=cmd_calculate)

    # Config command
    config_parser = subparsers.add_parser(
        'config',
        help='Show current configuration',
        description='Display calculation defaults and engine settings'
    )
    config_parser.set_defaults(func=cmd_config)

    # Presets command
    presets_parser = subparsers.add_parser(
        'presets',
        help='List configuration presets',
        description='Display the named configuration presets'
    )
    presets_parser.set_defaults(func=cmd_presets)

    return parser


def main(argv=None):
    """
    Main CLI entry point.
    """
    parser = build_parser()
    args = parser.parse_args(argv)

    # If no command specified, show help
    if not args.command:
        parser.print_help()
        sys.exit(1)

    sys.exit(args.func(args))


if __name__ == '__main__':
    main()
