# -*- coding: utf-8 -*-
"""Tools the model may call during a reply: time, version, weather, dice, images.

Every tool returns a plain string that goes back to the model verbatim as a
``tool`` message. Failures are reported the same way ("Error: ...") so one bad
call never aborts the conversation turn.
"""

import datetime
import json
import random
import re
import zoneinfo
from typing import Callable, Dict, List, Optional

import httpx

from config import BotConfig
from schemas import ToolCall, ToolFunctionSpec, ToolSpec
from text_utils import normalize_whitespace


# ---------------------------------------------------------------------------
# Time / version
# ---------------------------------------------------------------------------

def get_current_date_and_time(tz_name: str = "Asia/Tokyo") -> str:
    """Current local time as ISO8601 without the zone name."""
    try:
        tz = zoneinfo.ZoneInfo(tz_name)
    except Exception:
        tz = datetime.timezone.utc
    return datetime.datetime.now(tz=tz).isoformat(timespec="seconds")


def get_current_version(version: str) -> str:
    return json.dumps({"version": version})


# ---------------------------------------------------------------------------
# Weather  (wttr.in - free, no key)
# ---------------------------------------------------------------------------

def get_weather_forecast(
    location: str,
    timeout: float = 8.0,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Current conditions plus a three-day forecast, as compact JSON."""
    safe_loc = re.sub(r"[^\w\s,\-]", "", location or "").strip()
    if not safe_loc:
        raise ValueError("location is required")
    with httpx.Client(timeout=timeout, follow_redirects=True, transport=transport) as client:
        r = client.get(
            f"https://wttr.in/{safe_loc}",
            params={"format": "j1"},
            headers={"User-Agent": "curl/7.68.0"},
        )
    if r.status_code != 200:
        raise RuntimeError(f"weather service returned http={r.status_code}")
    data = r.json()

    current = (data.get("current_condition") or [{}])[0]
    desc_list = current.get("weatherDesc") or [{}]
    forecast = []
    for fc in (data.get("weather") or [])[:3]:
        forecast.append({
            "date": fc.get("date", ""),
            "min_c": fc.get("mintempC", "?"),
            "max_c": fc.get("maxtempC", "?"),
        })
    return json.dumps(
        {
            "location": safe_loc,
            "description": normalize_whitespace(desc_list[0].get("value", "")),
            "temp_c": current.get("temp_C", "?"),
            "feels_like_c": current.get("FeelsLikeC", "?"),
            "humidity": current.get("humidity", "?"),
            "wind_kmph": current.get("windspeedKmph", "?"),
            "forecast": forecast,
        },
        ensure_ascii=False,
    )


# ---------------------------------------------------------------------------
# Random numbers
# ---------------------------------------------------------------------------

def rand(min_value: int = 0, max_value: int = 100) -> str:
    if min_value > max_value:
        min_value, max_value = max_value, min_value
    return str(random.randint(min_value, max_value))


# ---------------------------------------------------------------------------
# Image generation  (OpenAI-compatible images API)
# ---------------------------------------------------------------------------

def gen_image(
    prompt: str,
    config: BotConfig,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    if not config.image_generation_enabled:
        return json.dumps({"error": "image generation is disabled"})
    if not (prompt or "").strip():
        raise ValueError("prompt is required")
    with httpx.Client(timeout=config.llm_timeout_sec, transport=transport) as client:
        r = client.post(
            config.image_api_url,
            json={"model": config.image_model, "prompt": prompt, "n": 1, "size": "1024x1024"},
            headers={"Authorization": f"Bearer {config.chat_api_key or ''}"},
        )
    if r.status_code != 200:
        raise RuntimeError(f"image API error: {r.status_code} - {r.text[:300]}")
    images = r.json().get("data") or []
    if not images or not images[0].get("url"):
        raise RuntimeError("no images generated")
    return json.dumps({"url": images[0]["url"]})


# ---------------------------------------------------------------------------
# Specs and dispatch
# ---------------------------------------------------------------------------

def tool_specs(config: BotConfig) -> List[ToolSpec]:
    specs = [
        ToolSpec(function=ToolFunctionSpec(
            name="get_current_date_and_time",
            description="Returns the current date and time as an ISO8601 string.",
        )),
        ToolSpec(function=ToolFunctionSpec(
            name="get_current_version",
            description="Returns version information of this bot.",
        )),
        ToolSpec(function=ToolFunctionSpec(
            name="get_weather_forecast",
            description="Returns current weather and a three-day forecast for a place.",
            parameters={
                "type": "object",
                "properties": {
                    "location": {"type": "string", "description": "City or area name"},
                },
                "required": ["location"],
            },
        )),
        ToolSpec(function=ToolFunctionSpec(
            name="rand",
            description="Generates a random integer.",
            parameters={
                "type": "object",
                "properties": {
                    "min": {"type": "integer", "description": "Lower bound", "default": 0},
                    "max": {"type": "integer", "description": "Upper bound", "default": 100},
                },
            },
        )),
    ]
    if config.image_generation_enabled:
        specs.append(ToolSpec(function=ToolFunctionSpec(
            name="gen_image",
            description="Generates an image from an English prompt and returns its URL.",
            parameters={
                "type": "object",
                "properties": {
                    "prompt": {"type": "string", "description": "What the image should show"},
                },
                "required": ["prompt"],
            },
        )))
    return specs


def _parse_arguments(raw: str) -> dict:
    if not (raw or "").strip():
        return {}
    args = json.loads(raw)
    if not isinstance(args, dict):
        raise ValueError("arguments must be a JSON object")
    return args


def _handlers(config: BotConfig, transport: Optional[httpx.BaseTransport]) -> Dict[str, Callable[[dict], str]]:
    return {
        "get_current_date_and_time": lambda args: get_current_date_and_time(config.timezone),
        "get_current_version": lambda args: get_current_version(config.bot_version),
        "get_weather_forecast": lambda args: get_weather_forecast(
            str(args.get("location", "")),
            timeout=config.network_timeout_sec,
            transport=transport,
        ),
        "rand": lambda args: rand(int(args.get("min", 0)), int(args.get("max", 100))),
        "gen_image": lambda args: gen_image(str(args.get("prompt", "")), config, transport=transport),
    }


def execute_tool_call(
    call: ToolCall,
    config: BotConfig,
    transport: Optional[httpx.BaseTransport] = None,
) -> str:
    """Run one tool call and return its result text (errors included)."""
    name = call.function.name
    handler = _handlers(config, transport).get(name)
    if handler is None:
        return f"Error: unsupported function: {name}"
    try:
        return handler(_parse_arguments(call.function.arguments))
    except Exception as exc:
        print(f"[llm] tool {name} failed: {exc}")
        return f"Error: {exc}"
