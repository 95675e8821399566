"""JSON status endpoints: orchestrator status, candidates, position, trades, alerts."""

from __future__ import annotations

from dataclasses import asdict
from decimal import Decimal
from enum import Enum
from typing import Any

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from funding_sniper.models import Candidate, Position

router = APIRouter()


def _decimal_to_str(obj: Any) -> Any:
    """Recursively convert Decimal and Enum values to strings for JSON serialization."""
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, dict):
        return {k: _decimal_to_str(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_str(item) for item in obj]
    return obj


def _candidate_to_dict(candidate: Candidate) -> dict:
    metrics = candidate.metrics
    return {
        "symbol": candidate.symbol,
        "funding_rate": candidate.funding_rate,
        "next_funding_time": candidate.next_funding_time,
        "ms_to_funding": candidate.ms_to_funding,
        "mark_price": candidate.mark_price,
        "quantity": metrics.quantity,
        "notional": metrics.notional,
        "stop_loss_price": metrics.stop_loss_price,
        "take_profit_price": metrics.take_profit_price,
        "estimated_funding_gain": metrics.estimated_funding_gain,
        "estimated_loss_at_stop": metrics.estimated_loss_at_stop,
    }


def _position_to_dict(position: Position) -> dict:
    # pending_check wraps an asyncio task and is reported as its fire time only
    check = position.pending_check
    return {
        "symbol": position.symbol,
        "side": position.side,
        "state": position.state,
        "entry_price": position.entry_price,
        "quantity": position.quantity,
        "entry_time": position.entry_time,
        "funding_time": position.funding_time,
        "funding_rate": position.funding_rate,
        "entry_fee": position.entry_fee,
        "stop_order_id": position.stop_order_id,
        "take_profit_order_id": position.take_profit_order_id,
        "profit_check_at": check.fire_at if check is not None else None,
        "profit_check_completed": position.profit_check_completed,
    }


@router.get("/status")
async def get_status(request: Request) -> JSONResponse:
    orchestrator = request.app.state.orchestrator
    return JSONResponse(content=_decimal_to_str(orchestrator.get_status()))


@router.get("/candidates")
async def get_candidates(request: Request) -> JSONResponse:
    """Ranked candidates from the most recent poll tick, in priority order."""
    session = request.app.state.session
    result = [_candidate_to_dict(c) for c in session.last_candidates]
    return JSONResponse(content=_decimal_to_str(result))


@router.get("/position")
async def get_position(request: Request) -> JSONResponse:
    """The live position, or null when the slot is empty."""
    session = request.app.state.session
    if session.position is None:
        return JSONResponse(content=None)
    return JSONResponse(content=_decimal_to_str(_position_to_dict(session.position)))


@router.get("/trades")
async def get_trades(request: Request) -> JSONResponse:
    session = request.app.state.session
    result = [asdict(t) for t in session.trades]
    return JSONResponse(content=_decimal_to_str(result))


@router.get("/alerts")
async def get_alerts(request: Request) -> JSONResponse:
    session = request.app.state.session
    result = [asdict(a) for a in session.alerts]
    return JSONResponse(content=result)
