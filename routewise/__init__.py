"""
Routewise - rule-based LLM routing with a persistent spending cap.

Simple usage:
    from routewise import create_router, RoutingContext

    router = create_router("router.config.yaml")
    result = router.route(RoutingContext(prompt="Refactor this function", lang="python"))
    print(result.provider_id, result.model_name)
    print(result.reasoning)

Dry runs:
    simulation = router.simulate_route(RoutingContext(prompt="Summarize this"))
    for alt in simulation.alternatives:
        print(alt.provider_id, alt.model_name, alt.available, alt.skip_reason)

Calls with spend tracking:
    from routewise import Dispatcher

    dispatcher = Dispatcher(router)
    reply = dispatcher.complete(RoutingContext(prompt="What is 2+2?"))
    print(reply.content, reply.cost.total_cost)

Budget ledger:
    from routewise import BudgetLedger, BudgetConfig, SQLiteStore

    ledger = BudgetLedger(SQLiteStore("routewise.db"))
    ledger.record_transaction("openai", "gpt-4o-mini", 0.002, 900, 150)
    print(ledger.check_budget(0.01, BudgetConfig(daily_usd=1.00)).allowed)
"""

from typing import Optional

from routewise.classifier import Classification, PromptClass, PromptClassifier, enrich_context
from routewise.config import (
    ConfigurationError,
    RouterConfig,
    default_config,
    load_config,
    load_profile,
    parse_profile,
    write_default_config,
)
from routewise.dispatch import DispatchResult, DispatchStream, Dispatcher
from routewise.ledger import BudgetLedger
from routewise.metrics import RoutingMetrics
from routewise.models import (
    BudgetCheck,
    BudgetUsage,
    CostEstimate,
    Operation,
    SpendingStats,
    Transaction,
    TransactionExport,
)
from routewise.pricing import (
    calculate_actual_cost,
    calculate_cost,
    compare_costs,
    estimate_cost,
    estimate_tokens,
    get_cheapest_model,
)
from routewise.providers import CredentialProvider, EnvCredentials, build_providers
from routewise.router import ModelEntry, NoAvailableRouteError, RouteOptions, Router
from routewise.schemas import (
    BudgetConfig,
    DefaultRule,
    Mode,
    ModelConfig,
    ModelPrice,
    PrivacyConfig,
    ProfileConfig,
    ProviderConfig,
    ProviderKind,
    RoutingContext,
    RoutingResult,
    RoutingRule,
    RuleAction,
    SimulationResult,
)
from routewise.storage import InMemoryStore, PersistenceError, SQLiteStore


def create_router(
    config_path: Optional[str] = None,
    profile: Optional[str] = None,
    db_path: Optional[str] = None,
    credentials: Optional[CredentialProvider] = None,
    metrics: Optional[RoutingMetrics] = None,
) -> Router:
    """Build a Router from a configuration file.

    Args:
        config_path: YAML configuration. Defaults to $ROUTEWISE_CONFIG,
            then ./router.config.yaml
        profile: Profile name. Defaults to the file's activeProfile
        db_path: SQLite budget database. In-memory ledger if omitted
        credentials: Resolves provider apiKeyRef values. Defaults to env vars
        metrics: Optional metrics collector, also registered on the ledger

    Returns:
        Router with one OpenAI-compatible adapter per configured provider

    Example:
        router = create_router(db_path="routewise.db")
        result = router.route(RoutingContext(prompt="Hello"))
    """
    profile_config = load_profile(config_path, profile)
    ledger = BudgetLedger(SQLiteStore(db_path)) if db_path else BudgetLedger()
    if metrics is not None:
        ledger.add_listener(metrics.record_transaction)
    return Router(
        profile_config,
        build_providers(profile_config, credentials),
        ledger=ledger,
        metrics=metrics,
    )


__version__ = "0.1.0"
