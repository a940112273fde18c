"""Trade executor interface and an in-memory paper implementation."""

import itertools
import logging
from typing import Protocol, runtime_checkable

from ethquake.broker.models import OrderRequest, OrderResult
from ethquake.errors import ExecutionError

logger = logging.getLogger("ethquake.broker")


@runtime_checkable
class TradeExecutor(Protocol):
    """Interface the pipeline uses to act on a trade decision."""

    async def place_order(self, order: OrderRequest) -> OrderResult:
        ...

    async def replace_order(self, order_id: str, order: OrderRequest) -> OrderResult:
        ...

    async def has_open_position(self, symbol: str) -> bool:
        ...


class PaperExecutor:
    """Fills every order immediately at its reference price.

    Keeps the net position per symbol and the set of working exit orders
    so ``has_open_position`` and ``replace_order`` behave like a venue.
    """

    def __init__(self) -> None:
        self._ids = itertools.count(1)
        self._positions: dict[str, float] = {}
        self._working: dict[str, OrderRequest] = {}
        self.orders: list[OrderRequest] = []

    def _next_id(self) -> str:
        return f"paper-{next(self._ids)}"

    async def place_order(self, order: OrderRequest) -> OrderResult:
        if order.side not in ("buy", "sell"):
            raise ExecutionError(f"side must be 'buy' or 'sell', got '{order.side}'")
        if order.size <= 0:
            raise ExecutionError(f"order size must be positive, got {order.size}")

        self.orders.append(order)
        signed = order.size if order.side == "buy" else -order.size
        net = self._positions.get(order.symbol, 0.0) + signed
        if order.reduce_only or abs(net) < 1e-12:
            self._positions.pop(order.symbol, None)
            for oid in [k for k, v in self._working.items() if v.symbol == order.symbol]:
                del self._working[oid]
        else:
            self._positions[order.symbol] = net

        stop_id = None
        tp_id = None
        if not order.reduce_only:
            if order.stop is not None:
                stop_id = self._next_id()
                self._working[stop_id] = order
            if order.take_profit_price is not None:
                tp_id = self._next_id()
                self._working[tp_id] = order

        result = OrderResult(
            order_id=self._next_id(),
            symbol=order.symbol,
            side=order.side,
            size=order.size,
            price=order.reference_price,
            stop_order_id=stop_id,
            take_profit_order_id=tp_id,
        )
        logger.info(
            "Paper %s %s %.6f @ %.2f%s",
            order.side, order.symbol, order.size, order.reference_price,
            " (reduce-only)" if order.reduce_only else "",
        )
        return result

    async def replace_order(self, order_id: str, order: OrderRequest) -> OrderResult:
        if order_id not in self._working:
            raise ExecutionError(f"No working order with id {order_id}")
        del self._working[order_id]
        new_id = self._next_id()
        self._working[new_id] = order
        logger.info("Paper replaced order %s → %s", order_id, new_id)
        return OrderResult(
            order_id=new_id,
            symbol=order.symbol,
            side=order.side,
            size=order.size,
            price=order.reference_price,
        )

    async def has_open_position(self, symbol: str) -> bool:
        return symbol in self._positions
