"""Alpaca broker integration for order execution and broker truth.

Every call that reads broker state raises on failure instead of returning an
empty default: callers must be able to tell "nothing there" from "could not
look". A 404 is raised as BrokerNotFoundError so reconciliation can branch on
"definitely gone" versus "unknown".
"""

import time
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Any

from alpaca.common.exceptions import APIError
from alpaca.data.enums import DataFeed
from alpaca.data.historical import StockHistoricalDataClient
from alpaca.data.requests import StockBarsRequest, StockLatestQuoteRequest, StockLatestTradeRequest
from alpaca.data.timeframe import TimeFrame
from alpaca.trading.client import TradingClient
from alpaca.trading.enums import OrderSide as AlpacaOrderSide
from alpaca.trading.enums import QueryOrderStatus, TimeInForce
from alpaca.trading.requests import (
    GetOrderByIdRequest,
    GetOrdersRequest,
    MarketOrderRequest,
    StopLossRequest,
    TakeProfitRequest,
)
from dateutil import parser as date_parser
from loguru import logger

from autopilot.config.constants import Side
from autopilot.config.settings import get_settings
from autopilot.exceptions import BrokerError, BrokerNotFoundError
from autopilot.execution.legs import OrderLeg, find_stop_leg, find_take_profit_leg

# Constants for rate limiting
MAX_RETRIES = 3
INITIAL_BACKOFF_SECONDS = 1.0
RETRYABLE_STATUS_CODES = (429, 500, 502, 503, 504)

# Fill activity pagination bound
ACTIVITY_PAGE_SIZE = 100
ACTIVITY_MAX_PAGES = 5


@dataclass
class OrderResult:
    """Result of an order submission."""

    success: bool
    order_id: str | None
    status: str | None
    message: str
    stop_order_id: str | None = None
    take_profit_order_id: str | None = None
    status_code: int | None = None


@dataclass
class Position:
    """Current position information."""

    symbol: str
    qty: Decimal
    avg_entry_price: Decimal
    side: Side
    market_value: Decimal | None = None
    unrealized_pl: Decimal | None = None


@dataclass
class Quote:
    """Best bid/ask snapshot plus last trade."""

    symbol: str
    bid: float | None = None
    ask: float | None = None
    last: float | None = None

    @property
    def mid(self) -> float | None:
        if self.bid and self.ask and self.bid > 0 and self.ask > 0 and self.ask >= self.bid:
            return (self.bid + self.ask) / 2
        return None


@dataclass
class FillActivity:
    """One FILL account activity."""

    id: str
    order_id: str
    symbol: str
    side: str
    qty: float
    price: float
    transaction_time: datetime | None = None


def _status_code(e: Exception) -> int | None:
    try:
        return getattr(e, "status_code", None)
    except Exception:
        # APIError.status_code dereferences the wrapped HTTP error
        return None


class AlpacaBroker:
    """
    Alpaca broker client for the lifecycle engines.

    Handles:
    - Bracket order submission and cancellation
    - Order and open-order lookup with nested legs
    - Positions and fill activities (broker truth)
    - Latest quote, last trade and minute bars
    """

    def __init__(
        self,
        trading_client: TradingClient | None = None,
        data_client: StockHistoricalDataClient | None = None,
    ):
        settings = get_settings()
        self._is_paper = settings.is_paper_trading
        self._feed = DataFeed.SIP if settings.use_sip_feed else DataFeed.IEX

        self._trading_client = trading_client or TradingClient(
            api_key=settings.alpaca_api_key,
            secret_key=settings.alpaca_secret_key,
            paper=self._is_paper,
        )
        self._data_client = data_client or StockHistoricalDataClient(
            api_key=settings.alpaca_api_key,
            secret_key=settings.alpaca_secret_key,
        )

        logger.info(f"AlpacaBroker initialized - Paper trading: {self._is_paper}")

    @property
    def is_paper(self) -> bool:
        return self._is_paper

    def _retry_with_backoff(self, func, *args, **kwargs):
        """
        Execute a function with exponential backoff retry on rate limit errors.

        Per Alpaca's terms, we must handle rate limiting gracefully.
        """
        last_exception = None
        for attempt in range(MAX_RETRIES):
            try:
                return func(*args, **kwargs)
            except APIError as e:
                last_exception = e
                if _status_code(e) in RETRYABLE_STATUS_CODES:
                    wait_time = INITIAL_BACKOFF_SECONDS * (2 ** attempt)
                    logger.warning(
                        f"Rate limited or server error, retrying in {wait_time}s "
                        f"(attempt {attempt + 1}/{MAX_RETRIES})"
                    )
                    time.sleep(wait_time)
                else:
                    raise
        raise last_exception

    def _broker_error(self, e: Exception, action: str) -> BrokerError:
        """Map an SDK exception to the broker error taxonomy."""
        code = _status_code(e) if isinstance(e, APIError) else None
        if code == 404:
            return BrokerNotFoundError(f"{action}: not found")
        if code == 403:
            logger.error(f"Broker refused {action} (403): {e}")
        elif code == 422:
            logger.error(f"Broker rejected {action} as invalid (422): {e}")
        return BrokerError(f"{action} failed: {e}", status_code=code)

    def submit_bracket_order(
        self,
        symbol: str,
        side: Side,
        qty: int,
        take_profit_price: Decimal,
        stop_loss_price: Decimal,
        client_order_id: str | None = None,
    ) -> OrderResult:
        """
        Submit a market-entry bracket order with take profit and stop loss attached.

        The stop and take-profit legs form an OCO pair once the entry fills.
        Never raises: failures come back as OrderResult(success=False) carrying
        the broker's message. Sent exactly once: after a 5xx the order may
        still have been accepted, so recovery is left to reconciliation.
        """
        try:
            order_data = MarketOrderRequest(
                symbol=symbol,
                side=AlpacaOrderSide.BUY if side == Side.LONG else AlpacaOrderSide.SELL,
                qty=qty,
                time_in_force=TimeInForce.DAY,
                order_class="bracket",
                take_profit=TakeProfitRequest(limit_price=float(take_profit_price)),
                stop_loss=StopLossRequest(stop_price=float(stop_loss_price)),
                client_order_id=client_order_id,
            )
            order = self._trading_client.submit_order(order_data)
        except Exception as e:
            logger.error(f"Bracket order failed for {symbol}: {e}")
            return OrderResult(
                success=False,
                order_id=None,
                status="rejected",
                message=str(e),
                status_code=_status_code(e) if isinstance(e, APIError) else None,
            )

        root = OrderLeg.from_order(order)
        if root is None:
            logger.error(f"Bracket order for {symbol} came back without an order id")
            return OrderResult(
                success=False, order_id=None, status=None, message="missing order id in response"
            )
        stop_leg = find_stop_leg(root)
        tp_leg = find_take_profit_leg(root)
        logger.info(
            f"Bracket order submitted: {side.value} {qty} {symbol} "
            f"TP=${take_profit_price} SL=${stop_loss_price} - Order ID: {root.id}"
        )
        return OrderResult(
            success=True,
            order_id=root.id,
            status=root.status,
            message="Bracket order submitted successfully",
            stop_order_id=stop_leg.id if stop_leg else None,
            take_profit_order_id=tp_leg.id if tp_leg else None,
        )

    def cancel_order(self, order_id: str) -> bool:
        """Cancel an open order. Returns False when the broker refuses."""
        try:
            self._retry_with_backoff(self._trading_client.cancel_order_by_id, order_id)
            logger.info(f"Order cancelled: {order_id}")
            return True
        except Exception as e:
            logger.error(f"Failed to cancel order {order_id}: {e}")
            return False

    def get_order(self, order_id: str) -> OrderLeg:
        """Get an order with its nested legs.

        Raises:
            BrokerNotFoundError: the broker has no such order
            BrokerError: any other failure
        """
        try:
            order = self._retry_with_backoff(
                self._trading_client.get_order_by_id,
                order_id,
                filter=GetOrderByIdRequest(nested=True),
            )
        except Exception as e:
            raise self._broker_error(e, f"get order {order_id}") from e
        root = OrderLeg.from_order(order)
        if root is None:
            raise BrokerError(f"get order {order_id}: malformed response")
        return root

    def list_open_orders(self, symbol: str | None = None) -> list[OrderLeg]:
        """Get open orders (optionally for one symbol) with nested legs."""
        try:
            request = GetOrdersRequest(
                status=QueryOrderStatus.OPEN,
                symbols=[symbol] if symbol else None,
                nested=True,
                limit=500,
            )
            orders = self._retry_with_backoff(self._trading_client.get_orders, filter=request)
        except Exception as e:
            raise self._broker_error(e, "list open orders") from e
        return [leg for leg in (OrderLeg.from_order(o) for o in orders) if leg is not None]

    def list_positions(self) -> list[Position]:
        """Get all current positions."""
        try:
            positions = self._retry_with_backoff(self._trading_client.get_all_positions)
        except Exception as e:
            raise self._broker_error(e, "list positions") from e
        result = []
        for p in positions:
            qty = Decimal(str(p.qty))
            side_value = str(getattr(p.side, "value", p.side)).lower()
            result.append(
                Position(
                    symbol=p.symbol,
                    qty=abs(qty),
                    avg_entry_price=Decimal(str(p.avg_entry_price)),
                    side=Side.SHORT if side_value == "short" or qty < 0 else Side.LONG,
                    market_value=Decimal(str(p.market_value)) if p.market_value else None,
                    unrealized_pl=Decimal(str(p.unrealized_pl)) if p.unrealized_pl else None,
                )
            )
        return result

    def list_fill_activities(self, order_ids: list[str]) -> list[FillActivity]:
        """Get FILL account activities belonging to any of the given orders.

        The SDK has no typed accessor for account activities, so this goes
        through the client's raw REST helper and pages by activity id.
        """
        wanted = {oid for oid in order_ids if oid}
        if not wanted:
            return []

        fills: list[FillActivity] = []
        page_token = None
        for _ in range(ACTIVITY_MAX_PAGES):
            params: dict[str, Any] = {"direction": "desc", "page_size": ACTIVITY_PAGE_SIZE}
            if page_token:
                params["page_token"] = page_token
            try:
                page = self._retry_with_backoff(
                    self._trading_client.get, "/account/activities/FILL", params
                )
            except Exception as e:
                raise self._broker_error(e, "list fill activities") from e
            if not page:
                break
            for raw in page:
                if raw.get("order_id") in wanted:
                    fills.append(
                        FillActivity(
                            id=str(raw.get("id")),
                            order_id=raw["order_id"],
                            symbol=raw.get("symbol", ""),
                            side=str(raw.get("side", "")).lower(),
                            qty=float(raw.get("qty") or 0),
                            price=float(raw.get("price") or 0),
                            transaction_time=(
                                date_parser.isoparse(raw["transaction_time"])
                                if raw.get("transaction_time")
                                else None
                            ),
                        )
                    )
            if len(page) < ACTIVITY_PAGE_SIZE:
                break
            page_token = page[-1].get("id")
        return fills

    def get_quote(self, symbol: str) -> Quote:
        """Latest bid/ask and last trade. Missing pieces are left as None."""
        quote = Quote(symbol=symbol)
        try:
            quotes = self._data_client.get_stock_latest_quote(
                StockLatestQuoteRequest(symbol_or_symbols=symbol, feed=self._feed)
            )
            q = quotes[symbol]
            quote.bid = float(q.bid_price) if q.bid_price else None
            quote.ask = float(q.ask_price) if q.ask_price else None
        except Exception as e:
            logger.warning(f"Failed to get quote for {symbol}: {e}")
        try:
            trades = self._data_client.get_stock_latest_trade(
                StockLatestTradeRequest(symbol_or_symbols=symbol, feed=self._feed)
            )
            quote.last = float(trades[symbol].price) or None
        except Exception as e:
            logger.warning(f"Failed to get last trade for {symbol}: {e}")
        return quote

    def get_bars(self, symbol: str, start: datetime, end: datetime | None = None) -> list[dict[str, Any]]:
        """Get minute bars for a symbol, oldest first."""
        try:
            request = StockBarsRequest(
                symbol_or_symbols=symbol,
                timeframe=TimeFrame.Minute,
                start=start,
                end=end,
                feed=self._feed,
            )
            bars = self._data_client.get_stock_bars(request)
        except Exception as e:
            raise self._broker_error(e, f"get bars {symbol}") from e
        try:
            series = bars[symbol]
        except KeyError:
            return []
        return [
            {
                "timestamp": bar.timestamp.isoformat(),
                "open": float(bar.open),
                "high": float(bar.high),
                "low": float(bar.low),
                "close": float(bar.close),
                "volume": float(bar.volume),
                "vwap": float(bar.vwap) if bar.vwap else None,
            }
            for bar in series
        ]

    def is_market_open(self) -> bool:
        """Check if the market is currently open."""
        try:
            clock = self._trading_client.get_clock()
        except Exception as e:
            raise self._broker_error(e, "get clock") from e
        return bool(clock.is_open)
