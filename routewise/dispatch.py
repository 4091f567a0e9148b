"""
Dispatcher for Routewise.

Routes a request, calls the chosen provider and records the actual spend
in the budget ledger. Retrying a lower-ranked candidate after a provider
error is left to the caller.
"""

import logging
from dataclasses import dataclass
from typing import Iterator, Optional

from routewise.ledger import BudgetLedger
from routewise.models import CostEstimate, Operation, Transaction
from routewise.pricing import calculate_actual_cost, estimate_cost, estimate_tokens
from routewise.providers.base import (
    ChatMessage,
    ChatOptions,
    ChatStream,
    EventType,
    StreamEvent,
    TokenUsage,
)
from routewise.router import RouteOptions, Router
from routewise.schemas import CallTarget, RoutingContext, RoutingResult

logger = logging.getLogger("routewise.dispatch")


@dataclass
class DispatchResult:
    """A completed call: the route taken, the reply and what it cost."""
    route: RoutingResult
    content: str
    usage: Optional[TokenUsage]
    cost: CostEstimate
    transaction: Optional[Transaction]
    finish_reason: str = "stop"


class DispatchStream:
    """
    Streaming counterpart of DispatchResult.

    Iterating yields the provider's events. The transaction is recorded when
    the terminal DONE event arrives; an ERROR event records nothing.
    """

    def __init__(self, dispatcher: "Dispatcher", route: RoutingResult, stream: ChatStream, prompt: str):
        self.route = route
        self.transaction: Optional[Transaction] = None
        self.cost: Optional[CostEstimate] = None
        self.error: Optional[str] = None
        self._dispatcher = dispatcher
        self._stream = stream
        self._prompt = prompt

    def __iter__(self) -> Iterator[StreamEvent]:
        content = []
        for event in self._stream:
            if event.type == EventType.TEXT:
                content.append(event.text)
            elif event.type == EventType.DONE:
                self.cost = self._dispatcher._actual_cost(
                    self.route, event.usage, self._prompt, "".join(content)
                )
                self.transaction = self._dispatcher._record(self.route, self.cost)
            elif event.type == EventType.ERROR:
                self.error = event.error
                logger.warning(
                    f"Stream from {self.route.provider_id}:{self.route.model_name} "
                    f"ended with error: {event.error}"
                )
            yield event

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> "DispatchStream":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()
        return False


class Dispatcher:
    """
    Executes routed calls and keeps the ledger in step with real spend.

    Example:
        ```python
        dispatcher = Dispatcher(router)
        result = dispatcher.complete(RoutingContext(prompt="Summarize this"))
        print(result.content, result.cost.total_cost)
        ```
    """

    def __init__(self, router: Router, ledger: Optional[BudgetLedger] = None):
        self.router = router
        self.ledger = ledger or router.ledger

    def complete(
        self,
        context: RoutingContext,
        messages: Optional[list[ChatMessage]] = None,
        chat_options: Optional[ChatOptions] = None,
        route_options: Optional[RouteOptions] = None,
    ) -> DispatchResult:
        """
        Route and run a non-streaming call.

        Raises:
            NoAvailableRouteError: If no candidate passed validation.
            ProviderError: If the chosen provider fails.
        """
        route = self.router.route(context, route_options)
        messages = messages or [ChatMessage(role="user", content=context.prompt)]

        result = route.provider.chat_complete(route.model_name, messages, chat_options)
        cost = self._actual_cost(route, result.usage, context.prompt, result.content)
        transaction = self._record(route, cost)

        return DispatchResult(
            route=route,
            content=result.content,
            usage=result.usage,
            cost=cost,
            transaction=transaction,
            finish_reason=result.finish_reason,
        )

    def stream(
        self,
        context: RoutingContext,
        messages: Optional[list[ChatMessage]] = None,
        chat_options: Optional[ChatOptions] = None,
        route_options: Optional[RouteOptions] = None,
    ) -> DispatchStream:
        """
        Route and open a streaming call.

        Routing happens immediately, so NoAvailableRouteError is raised here
        rather than on first iteration.
        """
        route = self.router.route(context, route_options)
        messages = messages or [ChatMessage(role="user", content=context.prompt)]
        stream = route.provider.chat(route.model_name, messages, chat_options)
        return DispatchStream(self, route, stream, context.prompt)

    # =========================================================================
    # Cost accounting
    # =========================================================================

    def _actual_cost(
        self,
        route: RoutingResult,
        usage: Optional[TokenUsage],
        prompt: str,
        content: str,
    ) -> CostEstimate:
        """Cost from reported usage, else an estimate from prompt and reply lengths."""
        model = route.model
        if usage is not None:
            if model.price is not None:
                return calculate_actual_cost(usage, model.price, model.name, route.provider_id)
            return CostEstimate(
                input_cost=0.0,
                output_cost=0.0,
                total_cost=0.0,
                input_tokens=usage.input_tokens,
                output_tokens=usage.output_tokens,
                model=model.name,
                provider=route.provider_id,
            )

        if model.price is not None:
            logger.debug(
                f"{route.provider_id}:{route.model_name} reported no usage; estimating cost"
            )
        return estimate_cost(prompt, model, route.provider_id, estimate_tokens(content))

    def _record(self, route: RoutingResult, cost: CostEstimate) -> Transaction:
        operation = Operation.COMPLETION if route.target == CallTarget.COMPLETION else Operation.CHAT
        return self.ledger.record_transaction(
            provider=route.provider_id,
            model=route.model_name,
            cost=cost.total_cost,
            input_tokens=cost.input_tokens,
            output_tokens=cost.output_tokens,
            operation=operation,
        )
