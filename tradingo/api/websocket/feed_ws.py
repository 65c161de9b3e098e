"""
WebSocket endpoints streaming hub events.

Each connection owns one hub subscription, created on connect and destroyed
on disconnect. The handler drains the subscription every poll interval, so a
slow client only ever loses its own oldest events.
"""

import logging
import asyncio
import json
from typing import List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect, APIRouter

from tradingo.services.market_data_service import MarketDataService
from tradingo.services.trade_service import TradeService
from tradingo.utils.exceptions import BaseMatchingEngineException

logger = logging.getLogger(__name__)

router = APIRouter(tags=["websocket"])

# Global service instances
_market_data_service: MarketDataService = None
_trade_service: TradeService = None

_poll_interval: float = 0.1
_heartbeat_interval: float = 30.0


def set_services(
    market_data_service: MarketDataService,
    trade_service: TradeService,
    poll_interval_ms: int = 100,
    heartbeat_interval: float = 30.0,
) -> None:
    """Set the global service instances and stream timing."""
    global _market_data_service, _trade_service, _poll_interval, _heartbeat_interval
    _market_data_service = market_data_service
    _trade_service = trade_service
    _poll_interval = poll_interval_ms / 1000
    _heartbeat_interval = heartbeat_interval


def _split(value: Optional[str]) -> Optional[List[str]]:
    if value is None:
        return None
    items = [item.strip() for item in value.split(",") if item.strip()]
    return items or None


@router.websocket("/ws/feed")
async def feed_websocket(
    websocket: WebSocket,
    instruments: Optional[str] = None,
    kinds: Optional[str] = None,
    client_id: Optional[str] = None,
):
    """
    WebSocket endpoint for ticks and fills.

    Query parameters: ``instruments`` (comma separated, default all),
    ``kinds`` (tick,fill; default both), ``client_id`` (optional label).

    Client messages (JSON): ``{"action": "subscribe"|"unsubscribe",
    "instruments": [...]}``, ``{"action": "status"}`` and ``{"action": "ping"}``.
    """
    await websocket.accept()
    subscriber_id = await _open(
        websocket,
        instruments=_split(instruments) or ["*"],
        kinds=_split(kinds),
        client_id=client_id,
    )
    if subscriber_id is not None:
        await _stream(websocket, subscriber_id)


@router.websocket("/ws/trades/{symbol}")
async def trades_websocket(websocket: WebSocket, symbol: str):
    """
    WebSocket endpoint for the fills of one instrument.

    Sends the last 50 trades on connection, then streams new fills. The
    subscription is opened before the history is read, so no fill is lost
    in between; fills already in the history are not sent again.
    """
    await websocket.accept()
    subscriber_id = await _open(websocket, instruments=[symbol], kinds=["fill"], client_id=f"trades-{symbol}")
    if subscriber_id is None:
        return

    try:
        history = _trade_service.get_recent_trades(symbol, limit=50)
    except BaseMatchingEngineException as e:
        _market_data_service.close_stream(subscriber_id)
        await _reject(websocket, e)
        return

    preamble = {
        "type": "trade_history",
        "symbol": symbol.strip().upper(),
        "trades": history
    }
    await _stream(
        websocket,
        subscriber_id,
        preamble=preamble,
        skip_fill_ids={trade["trade_id"] for trade in history},
    )


async def _open(
    websocket: WebSocket,
    instruments: List[str],
    kinds: Optional[List[str]],
    client_id: Optional[str],
) -> Optional[str]:
    """Subscribe a connection; on failure report the error and close."""
    try:
        return _market_data_service.open_stream(instruments, kinds, client_id)
    except BaseMatchingEngineException as e:
        await _reject(websocket, e)
        return None


async def _stream(
    websocket: WebSocket,
    subscriber_id: str,
    preamble: Optional[dict] = None,
    skip_fill_ids: Optional[Set[int]] = None,
) -> None:
    logger.info(f"WebSocket {subscriber_id} connected")
    loop = asyncio.get_running_loop()
    last_heartbeat = loop.time()

    try:
        if preamble is not None:
            await websocket.send_json(preamble)

        await websocket.send_json({
            "type": "welcome",
            "message": "Connected to Tradingo market feed",
            "subscriber_id": subscriber_id,
            "subscription": _market_data_service.subscription_status(subscriber_id),
        })

        while True:
            for message in _market_data_service.next_messages(subscriber_id):
                if skip_fill_ids and message["type"] == "fill" and message["data"]["fill_id"] in skip_fill_ids:
                    continue
                await websocket.send_json(message)

            try:
                text = await asyncio.wait_for(websocket.receive_text(), timeout=_poll_interval)
            except asyncio.TimeoutError:
                if loop.time() - last_heartbeat >= _heartbeat_interval:
                    await websocket.send_json({"type": "heartbeat"})
                    last_heartbeat = loop.time()
                continue

            await websocket.send_json(_handle_client_message(subscriber_id, text))

    except WebSocketDisconnect:
        logger.info(f"WebSocket {subscriber_id} disconnected")
    except Exception as e:
        logger.error(f"Error in feed WebSocket {subscriber_id}: {e}", exc_info=True)
    finally:
        _market_data_service.close_stream(subscriber_id)


def _handle_client_message(subscriber_id: str, text: str) -> dict:
    try:
        message = json.loads(text)
    except json.JSONDecodeError:
        return {"type": "error", "message": "Messages must be JSON"}

    if not isinstance(message, dict):
        return {"type": "error", "message": "Messages must be JSON objects"}

    action = message.get("action")
    try:
        if action == "ping":
            return {"type": "pong"}
        if action == "status":
            return {"type": "status", **_market_data_service.subscription_status(subscriber_id)}
        if action == "subscribe":
            _market_data_service.extend_stream(
                subscriber_id, message.get("instruments") or [], message.get("kinds")
            )
            return {"type": "subscribed", **_market_data_service.subscription_status(subscriber_id)}
        if action == "unsubscribe":
            _market_data_service.reduce_stream(subscriber_id, message.get("instruments") or [])
            return {"type": "unsubscribed", **_market_data_service.subscription_status(subscriber_id)}
    except BaseMatchingEngineException as e:
        return {"type": "error", "error": type(e).__name__, "message": e.message}

    return {"type": "error", "message": f"Unknown action: {action}"}


async def _reject(websocket: WebSocket, exc: BaseMatchingEngineException) -> None:
    logger.warning(f"WebSocket subscription rejected: {exc.message}")
    await websocket.send_json({"type": "error", "error": type(exc).__name__, "message": exc.message})
    await websocket.close(code=1008)
