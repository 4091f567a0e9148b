"""FastAPI server for Routewise."""

from __future__ import annotations

import os
from dataclasses import asdict
from functools import lru_cache
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Header, HTTPException
from pydantic import BaseModel, Field

from routewise import (
    BudgetConfig,
    BudgetLedger,
    Mode,
    NoAvailableRouteError,
    Operation,
    RouteOptions,
    Router,
    RoutingContext,
    RoutingResult,
    SQLiteStore,
    __version__,
    build_providers,
    load_profile,
)


def _get_api_key() -> Optional[str]:
    return os.getenv("ROUTEWISE_API_KEY")


def _require_api_key(x_api_key: Optional[str] = Header(default=None)) -> None:
    api_key = _get_api_key()
    if api_key and x_api_key != api_key:
        raise HTTPException(status_code=401, detail="Invalid API key")


@lru_cache(maxsize=1)
def get_ledger() -> BudgetLedger:
    db_path = os.getenv("ROUTEWISE_DB_PATH", "routewise.db")
    return BudgetLedger(SQLiteStore(db_path=db_path))


@lru_cache(maxsize=1)
def get_router() -> Router:
    profile = load_profile(os.getenv("ROUTEWISE_CONFIG"), os.getenv("ROUTEWISE_PROFILE"))
    return Router(profile, build_providers(profile), ledger=get_ledger())


app = FastAPI(title="Routewise API", version=__version__)


class RouteRequest(BaseModel):
    prompt: str = Field(..., min_length=1)
    lang: Optional[str] = None
    file_path: Optional[str] = None
    file_size_kb: Optional[float] = Field(None, ge=0)
    mode: Optional[Mode] = None
    privacy_strict: bool = False
    keywords: Optional[List[str]] = None
    max_fallbacks: Optional[int] = Field(None, ge=1)
    require_available: bool = True
    budget_check: bool = True
    availability_timeout: float = Field(5.0, gt=0, le=60)

    def context(self) -> RoutingContext:
        return RoutingContext(
            prompt=self.prompt,
            lang=self.lang,
            file_path=self.file_path,
            file_size_kb=self.file_size_kb,
            mode=self.mode,
            privacy_strict=self.privacy_strict,
            keywords=tuple(self.keywords) if self.keywords is not None else None,
        )

    def options(self) -> RouteOptions:
        return RouteOptions(
            max_fallbacks=self.max_fallbacks,
            require_available=self.require_available,
            budget_check=self.budget_check,
            availability_timeout=self.availability_timeout,
        )


class BudgetCheckRequest(BaseModel):
    estimated_cost: float = Field(0.0, ge=0)


class RecordRequest(BaseModel):
    provider: str = Field(..., min_length=1)
    model: str = Field(..., min_length=1)
    cost: float = Field(..., ge=0)
    input_tokens: int = Field(0, ge=0)
    output_tokens: int = Field(0, ge=0)
    operation: Operation = Operation.CHAT


class CleanupRequest(BaseModel):
    keep_days: int = Field(30, ge=0)


def _result_dict(result: RoutingResult) -> Dict[str, Any]:
    return {
        "provider": result.provider_id,
        "model": result.model_name,
        "score": result.score,
        "rule": result.rule.id if result.rule else None,
        "target": result.target.value,
        "estimated_cost": result.estimated_cost,
        "reasoning": result.reasoning,
    }


def _budget(router: Router) -> BudgetConfig:
    return router.get_profile().budget or BudgetConfig()


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/route", dependencies=[Depends(_require_api_key)])
def route(req: RouteRequest, router: Router = Depends(get_router)) -> Dict[str, Any]:
    try:
        result = router.route(req.context(), req.options())
    except NoAvailableRouteError as exc:
        raise HTTPException(
            status_code=503,
            detail={"message": str(exc), "reasoning": exc.reasoning},
        ) from exc
    return _result_dict(result)


@app.post("/simulate", dependencies=[Depends(_require_api_key)])
def simulate(req: RouteRequest, router: Router = Depends(get_router)) -> Dict[str, Any]:
    simulation = router.simulate_route(req.context(), req.options())
    return {
        "result": _result_dict(simulation.result) if simulation.result else None,
        "alternatives": [asdict(alt) for alt in simulation.alternatives],
    }


@app.get("/models", dependencies=[Depends(_require_api_key)])
def models(cap: Optional[str] = None, router: Router = Depends(get_router)) -> List[Dict[str, Any]]:
    entries = router.get_models_by_cap(cap) if cap else router.get_available_models()
    return [
        {
            "provider": entry.provider_id,
            "model": entry.model_name,
            "caps": sorted(entry.config.caps),
            "context": entry.config.context,
            "price": asdict(entry.config.price) if entry.config.price else None,
        }
        for entry in entries
    ]


@app.get("/budget/usage", dependencies=[Depends(_require_api_key)])
def budget_usage(ledger: BudgetLedger = Depends(get_ledger)) -> Dict[str, Any]:
    usage = ledger.get_budget_usage()
    return {
        "daily_spent": usage.daily_spent,
        "monthly_spent": usage.monthly_spent,
        "last_reset": usage.last_reset,
        "transaction_count": len(usage.transactions),
        "currency": usage.currency,
        "persistent": ledger.persistent,
    }


@app.post("/budget/check", dependencies=[Depends(_require_api_key)])
def budget_check(
    req: BudgetCheckRequest,
    router: Router = Depends(get_router),
    ledger: BudgetLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    check = ledger.check_budget(req.estimated_cost, _budget(router))
    return {
        "allowed": check.allowed,
        "reason": check.reason,
        "daily_spent": check.current_usage.daily_spent,
        "monthly_spent": check.current_usage.monthly_spent,
    }


@app.get("/budget/warnings", dependencies=[Depends(_require_api_key)])
def budget_warnings(
    router: Router = Depends(get_router),
    ledger: BudgetLedger = Depends(get_ledger),
) -> Dict[str, Any]:
    return {"warnings": ledger.get_budget_warnings(_budget(router))}


@app.get("/budget/stats", dependencies=[Depends(_require_api_key)])
def budget_stats(ledger: BudgetLedger = Depends(get_ledger)) -> Dict[str, Any]:
    return asdict(ledger.get_spending_stats())


@app.get("/transactions", dependencies=[Depends(_require_api_key)])
def export_transactions(ledger: BudgetLedger = Depends(get_ledger)) -> Dict[str, Any]:
    return ledger.export_transactions().to_dict()


@app.post("/transactions", dependencies=[Depends(_require_api_key)])
def record_transaction(req: RecordRequest, ledger: BudgetLedger = Depends(get_ledger)) -> Dict[str, Any]:
    transaction = ledger.record_transaction(
        provider=req.provider,
        model=req.model,
        cost=req.cost,
        input_tokens=req.input_tokens,
        output_tokens=req.output_tokens,
        operation=req.operation,
    )
    return transaction.to_dict()


@app.post("/transactions/cleanup", dependencies=[Depends(_require_api_key)])
def cleanup_transactions(req: CleanupRequest, ledger: BudgetLedger = Depends(get_ledger)) -> Dict[str, Any]:
    return {"removed": ledger.cleanup_old_transactions(req.keep_days)}
