"""
Basic usage examples for Routewise.

Runs against in-process mock providers, so no API keys or local model
servers are needed.
"""

from routewise import (
    BudgetLedger,
    Dispatcher,
    Mode,
    NoAvailableRouteError,
    RouteOptions,
    Router,
    RoutingContext,
    default_config,
    enrich_context,
)
from routewise.config import parse_config
from routewise.providers import MockProvider


def build_router(ledger=None, offline=()):
    """Starter profile with mock adapters; providers in `offline` fail their probe."""
    profile = parse_config(default_config()).active
    providers = {
        p.id: MockProvider(p.id, p.model_names, available=p.id not in offline, reply="Sure, here you go")
        for p in profile.providers
    }
    return Router(profile, providers, ledger=ledger)


def example_basic():
    """Rule-based routing."""
    print("=" * 60)
    print("Example 1: Basic Routing")
    print("=" * 60)

    router = build_router()
    result = router.route(RoutingContext(
        prompt="Review this function and fix the bug",
        file_path="src/billing/invoice.py",
        lang="python",
    ))

    print(f"Model: {result.provider_id}:{result.model_name}")
    print(f"Rule: {result.rule.id if result.rule else 'default'} (score {result.score:g})")
    for line in result.reasoning:
        print(f"  - {line}")
    print()
    router.close()


def example_fallback():
    """Falling back when a provider is down."""
    print("=" * 60)
    print("Example 2: Availability Fallback")
    print("=" * 60)

    router = build_router(offline={"openai"})
    simulation = router.simulate_route(RoutingContext(prompt="What is a monad?"))

    chosen = simulation.result
    print(f"Chosen: {chosen.provider_id}:{chosen.model_name}" if chosen else "Chosen: none")
    for alt in simulation.alternatives:
        print(f"  {alt.provider_id}:{alt.model_name} available={alt.available} skip={alt.skip_reason}")
    print()
    router.close()


def example_privacy():
    """Keeping a request on local models."""
    print("=" * 60)
    print("Example 3: Strict Privacy")
    print("=" * 60)

    router = build_router()
    result = router.route(RoutingContext(prompt="Summarize our incident report", mode=Mode.PRIVACY_STRICT))

    print(f"Model: {result.provider_id}:{result.model_name}")
    print()
    router.close()


def example_budget():
    """Recording spend and hitting the daily ceiling."""
    print("=" * 60)
    print("Example 4: Budget Ledger")
    print("=" * 60)

    ledger = BudgetLedger()
    router = build_router(ledger=ledger, offline={"ollama"})
    dispatcher = Dispatcher(router)

    reply = dispatcher.complete(enrich_context(RoutingContext(prompt="Write a haiku about caching")))
    print(f"Reply: {reply.content}")
    print(f"Cost: ${reply.cost.total_cost:.6f}")

    ledger.record_transaction("openai", "gpt-4o", 4.99)
    for warning in ledger.get_budget_warnings(router.get_profile().budget):
        print(f"WARNING: {warning}")

    try:
        result = router.route(RoutingContext(prompt="x " * 4000), RouteOptions(max_fallbacks=2))
        print(f"Routed to {result.provider_id}:{result.model_name}")
    except NoAvailableRouteError as e:
        print(f"Blocked: {e}")
        for line in e.reasoning[-2:]:
            print(f"  - {line}")
    print()
    router.close()


if __name__ == "__main__":
    example_basic()
    example_fallback()
    example_privacy()
    example_budget()
