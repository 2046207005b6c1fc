#!/usr/bin/env python3
"""
run_scenario.py - Scenario Execution

Runs a harness scenario from a YAML configuration file.

Usage:
    ftcomm-run scenarios/fault_free.yaml
    ftcomm-run scenarios/fault_free.yaml --seed 123
    ftcomm-run scenarios/link_fault.yaml --verbose
    ftcomm-run scenarios/fault_free.yaml --dry-run

The script will:
1. Load inventory and test parameters from YAML
2. Reset filters and stray processes on the participating nodes
3. Start endpoint and host processes and drive the scenario
4. Tear everything down
5. Report results
"""

import argparse
import logging
import sys
from pathlib import Path

from ftcomm.config.scenario import load_config
from ftcomm.errors import FilterArgumentError, FilterRuleError, HarnessIntegrityError
from ftcomm.harness.coordinator import Coordinator
from ftcomm.harness.scenarios import make_scenario


def parse_args(argv=None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Run a fault-tolerance scenario against the lab nodes.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Fault-free delivery check with the seed from YAML
  ftcomm-run scenarios/fault_free.yaml

  # Override seed for different payloads
  ftcomm-run scenarios/fault_free.yaml --seed 123

  # Validate the config without touching any node
  ftcomm-run scenarios/link_fault.yaml --dry-run
        """
    )

    parser.add_argument(
        "config",
        type=Path,
        help="Path to harness YAML file"
    )

    parser.add_argument(
        "--seed",
        type=int,
        default=None,
        help="Override payload seed (default: use seed from YAML)"
    )

    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Verbose output (remote commands, ignored diagnostic lines)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate configuration without executing"
    )

    return parser.parse_args(argv)


def main(argv=None) -> int:
    """
    Main entry point.

    Returns:
        0 on success, 1 on failure
    """
    args = parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='[%(name)s] %(levelname)s: %(message)s',
        stream=sys.stderr
    )

    if not args.config.exists():
        print(f"ERROR: Config file not found: {args.config}", file=sys.stderr)
        return 1

    try:
        print(f"Loading config from: {args.config}")
        inventory, config = load_config(str(args.config))

        if args.seed is not None:
            print(f"Overriding seed: {config.seed} → {args.seed}")
            config.seed = args.seed

        print("\nConfiguration summary:")
        print(f"  Scenario: {config.scenario}")
        print(f"  Hosts: {config.num_hosts}/{len(inventory.hosts)}")
        print(f"  Endpoints: {config.num_endpoints}/{len(inventory.endpoints)}")
        print(f"  Links: {inventory.num_links}")
        print(f"  Messages per host: {config.num_messages}")
        print(f"  Delivery timeout: {config.delivery_timeout_s}s")
        if config.scenario == "link_fault":
            print(f"  Faulted link: {config.fault_link} ({config.fault_action})")

        if args.dry_run:
            print("\n✓ Configuration valid (dry run, nothing executed)")
            return 0

        print("\n" + "="*60)
        print("Executing Scenario")
        print("="*60)

        coordinator = Coordinator(inventory, config)
        result = coordinator.run(make_scenario(config))

        print("\n" + "="*60)
        print("Execution Complete")
        print("="*60)

        print(f"\nResults:")
        print(f"  Messages sent: {result.messages_sent}")
        print(f"  Deliveries: {result.deliveries}")
        print(f"  Error events: {result.error_events} ({result.tolerated_errors} tolerated)")
        print(f"  Wall time: {result.duration_sec:.2f}s")

        if result.success:
            print("\n✓ SUCCESS")
            return 0

        print("\n✗ FAILED")
        for failure in result.failures:
            print(f"  - {failure}")
        return 1

    except FileNotFoundError as e:
        print(f"\nERROR: File not found: {e}", file=sys.stderr)
        return 1

    except HarnessIntegrityError as e:
        print(f"\nERROR: Harness aborted:", file=sys.stderr)
        print(f"  {type(e).__name__}: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1

    except (FilterArgumentError, FilterRuleError) as e:
        print(f"\nERROR: Invalid fault injection request:", file=sys.stderr)
        print(f"  {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    except ValueError as e:
        print(f"\nERROR: Invalid configuration:", file=sys.stderr)
        print(f"  {e}", file=sys.stderr)
        return 1

    except Exception as e:
        print(f"\nERROR: Unexpected error:", file=sys.stderr)
        print(f"  {type(e).__name__}: {e}", file=sys.stderr)
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
