"""Polling cursor and telemetry views."""

from fastapi import APIRouter, Depends

from bot_state import load_state
from config import BotConfig
from deps import get_config
from telemetry import read_bot_telemetry_summary

router = APIRouter(prefix="/api", tags=["bot"])


@router.get("/state", response_model=dict)
async def get_state(config: BotConfig = Depends(get_config)):
    state = load_state(config.state_path)
    return {"last_notification_id": state.last_notification_id}


@router.get("/telemetry/summary", response_model=dict)
async def get_telemetry_summary(hours: int = 24, limit: int = 6):
    return read_bot_telemetry_summary(hours=hours, limit=limit)
