"""
Command-line interface for Routewise.

Provides commands for:
- Routing and simulating prompts against a profile
- Listing configured models
- Inspecting and maintaining the budget ledger
- Writing a starter configuration
"""

import argparse
import json
import os
import sys
from pathlib import Path
from typing import Optional

from routewise.config import ConfigurationError, load_profile, write_default_config
from routewise.ledger import BudgetLedger
from routewise.providers import MockProvider, build_providers
from routewise.router import NoAvailableRouteError, RouteOptions, Router
from routewise.schemas import BudgetConfig, Mode, RoutingContext
from routewise.storage import PersistenceError, SQLiteStore

DB_ENV_VAR = "ROUTEWISE_DB_PATH"
DEFAULT_DB_PATH = "routewise.db"


# =============================================================================
# Shared helpers
# =============================================================================

def _ledger(args) -> BudgetLedger:
    db_path = args.db or os.getenv(DB_ENV_VAR) or DEFAULT_DB_PATH
    return BudgetLedger(SQLiteStore(db_path))


def _router(args) -> Router:
    profile = load_profile(args.config, args.profile)
    if args.mock:
        providers = {p.id: MockProvider(p.id, p.model_names) for p in profile.providers}
    else:
        providers = build_providers(profile)
    return Router(profile, providers, ledger=_ledger(args))


def _budget(args) -> BudgetConfig:
    profile = load_profile(args.config, args.profile)
    return profile.budget or BudgetConfig()


def _context(args) -> RoutingContext:
    return RoutingContext(
        prompt=args.prompt,
        lang=args.lang,
        file_path=args.file,
        file_size_kb=args.file_size,
        mode=Mode(args.mode) if args.mode else None,
        privacy_strict=args.privacy_strict,
    )


def _route_options(args) -> RouteOptions:
    return RouteOptions(
        max_fallbacks=args.max_fallbacks,
        require_available=not args.no_probe,
        budget_check=not args.no_budget_check,
        availability_timeout=args.timeout,
    )


def _print_reasoning(reasoning: list[str]) -> None:
    for line in reasoning:
        print(f"  - {line}")


# =============================================================================
# Commands
# =============================================================================

def cmd_route(args) -> int:
    """Route a single prompt."""
    router = _router(args)
    try:
        result = router.route(_context(args), _route_options(args))
    except NoAvailableRouteError as e:
        print(f"No available route: {e}")
        _print_reasoning(e.reasoning)
        return 1
    finally:
        router.close()

    if args.json:
        print(json.dumps({
            "provider": result.provider_id,
            "model": result.model_name,
            "score": result.score,
            "rule": result.rule.id if result.rule else None,
            "target": result.target.value,
            "estimated_cost": result.estimated_cost,
            "reasoning": result.reasoning,
        }, indent=2))
        return 0

    print("\n" + "=" * 60)
    print("ROUTEWISE ROUTE")
    print("=" * 60)
    print(f"Prompt: {args.prompt[:100]}")
    print(f"Model: {result.provider_id}:{result.model_name}")
    print(f"Rule: {result.rule.id if result.rule else 'default'}")
    print(f"Score: {result.score:g}")
    print(f"Target: {result.target.value}")
    if result.estimated_cost is not None:
        print(f"Estimated Cost: ${result.estimated_cost:.6f}")
    print()
    print("-" * 60)
    print("REASONING")
    print("-" * 60)
    _print_reasoning(result.reasoning)
    print("=" * 60)
    return 0


def cmd_simulate(args) -> int:
    """Dry-run routing and list every candidate."""
    router = _router(args)
    try:
        simulation = router.simulate_route(_context(args), _route_options(args))
    finally:
        router.close()

    if args.json:
        print(json.dumps({
            "result": (
                f"{simulation.result.provider_id}:{simulation.result.model_name}"
                if simulation.result else None
            ),
            "alternatives": [
                {
                    "provider": a.provider_id,
                    "model": a.model_name,
                    "score": a.score,
                    "available": a.available,
                    "source": a.source,
                    "skip_reason": a.skip_reason,
                    "reasoning": a.reasoning,
                }
                for a in simulation.alternatives
            ],
        }, indent=2))
        return 0

    print("\n" + "=" * 60)
    print("ROUTEWISE SIMULATION")
    print("=" * 60)
    if simulation.result:
        print(f"Chosen: {simulation.result.provider_id}:{simulation.result.model_name}")
    else:
        print("Chosen: none")
    print()
    print("-" * 60)
    print("CANDIDATES")
    print("-" * 60)
    for alt in simulation.alternatives:
        status = "available" if alt.available else "unavailable"
        candidate = f"{alt.provider_id}:{alt.model_name}"
        line = f"  {candidate:30} score={alt.score:<5g} {status:12} [{alt.source}]"
        if alt.skip_reason:
            line += f" skipped: {alt.skip_reason}"
        print(line)
    print("=" * 60)
    return 0


def cmd_models(args) -> int:
    """List configured models."""
    profile = load_profile(args.config, args.profile)
    for provider in profile.providers:
        location = "local" if provider.is_local else "remote"
        for model in provider.models:
            if args.cap and not model.has_cap(args.cap):
                continue
            caps = ",".join(sorted(model.caps)) or "-"
            price = (
                f"${model.price.input_per_mtok:g}/${model.price.output_per_mtok:g} per MTok"
                if model.price else "unpriced"
            )
            print(f"{provider.id}:{model.name:30} {location:6} caps={caps:30} {price}")
    return 0


def cmd_budget(args) -> int:
    """Budget ledger commands."""
    ledger = _ledger(args)

    if args.budget_command == "usage":
        usage = ledger.get_budget_usage()
        print(f"Daily spent:   ${usage.daily_spent:.4f}")
        print(f"Monthly spent: ${usage.monthly_spent:.4f}")
        print(f"Last reset:    {usage.last_reset}")
        print(f"Transactions:  {len(usage.transactions)}")
        if not ledger.persistent:
            print("Warning: budget store is not persistent")

    elif args.budget_command == "check":
        check = ledger.check_budget(args.cost, _budget(args))
        if check.allowed:
            print(f"Allowed: ${args.cost:.4f}")
        else:
            print(f"Blocked: {check.reason}")
            return 1

    elif args.budget_command == "warnings":
        warnings = ledger.get_budget_warnings(_budget(args))
        if not warnings:
            print("No budget warnings")
        for warning in warnings:
            print(f"WARNING: {warning}")

    elif args.budget_command == "stats":
        stats = ledger.get_spending_stats()
        print(f"Total spent:  ${stats.total_spent:.4f}")
        print(f"Transactions: {stats.transaction_count}")
        print(f"Average:      ${stats.average_per_transaction:.6f}")
        for title, rows in (
            ("BY PROVIDER", stats.top_providers),
            ("BY MODEL", stats.top_models),
            ("BY DAY", stats.daily_trend),
        ):
            print("-" * 60)
            print(title)
            print("-" * 60)
            for row in rows:
                print(f"  {row.key:30} ${row.cost:.4f} ({row.count})")

    elif args.budget_command == "export":
        payload = json.dumps(ledger.export_transactions().to_dict(), indent=2)
        if args.output:
            Path(args.output).write_text(payload, encoding="utf-8")
            print(f"Transactions exported to: {args.output}")
        else:
            print(payload)

    elif args.budget_command == "cleanup":
        removed = ledger.cleanup_old_transactions(args.keep_days)
        print(f"Removed {removed} transactions older than {args.keep_days} days")

    return 0


def cmd_init_config(args) -> int:
    """Write a starter configuration file."""
    try:
        path = write_default_config(args.path, overwrite=args.force)
    except FileExistsError as e:
        print(f"Error: {e} (use --force to overwrite)")
        return 1
    print(f"Configuration written to: {path}")
    return 0


# =============================================================================
# Entry point
# =============================================================================

def _add_context_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument("prompt", help="The prompt to route")
    parser.add_argument("--lang", help="Language id of the file in context")
    parser.add_argument("--file", help="Path of the file in context")
    parser.add_argument("--file-size", type=float, help="Size of the file in KB")
    parser.add_argument("--mode", "-m", choices=[m.value for m in Mode],
                        help="Override the profile routing mode")
    parser.add_argument("--privacy-strict", action="store_true",
                        help="Require privacy-safe local models")
    parser.add_argument("--max-fallbacks", type=int,
                        help="Maximum number of candidates to attempt")
    parser.add_argument("--no-probe", action="store_true",
                        help="Skip provider availability probes")
    parser.add_argument("--no-budget-check", action="store_true",
                        help="Skip the budget check")
    parser.add_argument("--timeout", type=float, default=5.0,
                        help="Availability probe timeout in seconds")
    parser.add_argument("--mock", action="store_true",
                        help="Use in-process mock providers instead of real endpoints")
    parser.add_argument("--json", action="store_true", help="Print JSON output")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Routewise: constraint-based LLM routing CLI",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Write a starter configuration
  routewise init-config

  # Route a prompt
  routewise route "Refactor this function" --file src/app.py --lang python

  # See every candidate and why it was skipped
  routewise simulate "Summarize this" --mode cheap

  # Budget status
  routewise budget usage
  routewise budget check 0.25
""",
    )
    parser.add_argument("--config", "-c", help="Path to router.config.yaml")
    parser.add_argument("--profile", "-p", help="Profile name (defaults to activeProfile)")
    parser.add_argument("--db", help="Path to the SQLite budget database")

    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    route_parser = subparsers.add_parser("route", help="Route a prompt")
    _add_context_arguments(route_parser)

    sim_parser = subparsers.add_parser("simulate", help="Dry-run routing for a prompt")
    _add_context_arguments(sim_parser)

    models_parser = subparsers.add_parser("models", help="List configured models")
    models_parser.add_argument("--cap", help="Only models with this capability tag")

    budget_parser = subparsers.add_parser("budget", help="Budget ledger commands")
    budget_sub = budget_parser.add_subparsers(dest="budget_command", help="Budget commands")
    budget_sub.add_parser("usage", help="Show current spend")
    check_parser = budget_sub.add_parser("check", help="Check an estimated cost against the budget")
    check_parser.add_argument("cost", type=float, help="Estimated cost in USD")
    budget_sub.add_parser("warnings", help="Show budget warnings")
    budget_sub.add_parser("stats", help="Show spending statistics")
    export_parser = budget_sub.add_parser("export", help="Export transactions as JSON")
    export_parser.add_argument("--output", "-o", help="Path to save the export")
    cleanup_parser = budget_sub.add_parser("cleanup", help="Prune old transactions")
    cleanup_parser.add_argument("--keep-days", type=int, default=30,
                                help="Keep transactions newer than this many days")

    init_parser = subparsers.add_parser("init-config", help="Write a starter configuration")
    init_parser.add_argument("--path", default="router.config.yaml",
                             help="Where to write the configuration")
    init_parser.add_argument("--force", action="store_true",
                             help="Overwrite an existing file")

    return parser


def main(argv: Optional[list[str]] = None) -> int:
    """Main entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None or (args.command == "budget" and args.budget_command is None):
        parser.print_help()
        return 1

    commands = {
        "route": cmd_route,
        "simulate": cmd_simulate,
        "models": cmd_models,
        "budget": cmd_budget,
        "init-config": cmd_init_config,
    }

    handler = commands[args.command]
    try:
        return handler(args)
    except ConfigurationError as e:
        location = f" ({e.path})" if e.path else ""
        print(f"Configuration error{location}: {e}", file=sys.stderr)
        return 2
    except PersistenceError as e:
        print(f"Budget store error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
