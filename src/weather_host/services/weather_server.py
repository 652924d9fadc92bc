#!/usr/bin/env python3
"""
Servidor MCP de clima (STDIO)
Expone get-alerts y get-forecast sobre la API del National Weather Service.
Anuncia en stderr que está listo una vez abiertos sus streams.
"""
import asyncio
import logging
import sys
from typing import Any, Awaitable, Callable, Dict, List, Optional

import aiohttp
import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

NWS_API_BASE = "https://api.weather.gov"
USER_AGENT = "weather-app/1.0"
READY_BANNER = "Weather MCP Server running on stdio"
FORECAST_PERIODS = 5

logger = logging.getLogger(__name__)

Fetcher = Callable[[str], Awaitable[Optional[Dict[str, Any]]]]


async def make_nws_request(url: str) -> Optional[Dict[str, Any]]:
    """GET a la API del NWS; None si falla"""
    headers = {"User-Agent": USER_AGENT, "Accept": "application/geo+json"}
    timeout = aiohttp.ClientTimeout(total=30)
    try:
        async with aiohttp.ClientSession(headers=headers, timeout=timeout) as http:
            async with http.get(url) as resp:
                resp.raise_for_status()
                return await resp.json(content_type=None)
    except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
        logger.warning("Error consultando %s: %s", url, e)
        return None


def format_alert(feature: Dict[str, Any]) -> str:
    props = feature.get("properties", {})
    return "\n".join([
        f"Event: {props.get('event', 'Unknown')}",
        f"Area: {props.get('areaDesc', 'Unknown')}",
        f"Severity: {props.get('severity', 'Unknown')}",
        f"Description: {props.get('description', 'No description available')}",
        f"Instructions: {props.get('instruction', 'No specific instructions provided')}",
        "---",
    ])


def format_period(period: Dict[str, Any]) -> str:
    return "\n".join([
        f"{period.get('name', 'Unknown')}:",
        f"Temperature: {period.get('temperature', 'Unknown')}°{period.get('temperatureUnit', 'F')}",
        f"Wind: {period.get('windSpeed', 'Unknown')} {period.get('windDirection', '')}".rstrip(),
        f"Forecast: {period.get('detailedForecast', 'No forecast available')}",
        "---",
    ])


async def get_alerts(state: str, fetch: Fetcher = make_nws_request) -> str:
    state = state.upper()
    data = await fetch(f"{NWS_API_BASE}/alerts/active/area/{state}")
    if not data:
        return "Failed to retrieve alerts data"

    features = data.get("features") or []
    if not features:
        return f"No active alerts for {state}"
    return f"Active alerts for {state}:\n\n" + "\n".join(format_alert(f) for f in features)


async def get_forecast(latitude: float, longitude: float, fetch: Fetcher = make_nws_request) -> str:
    points = await fetch(f"{NWS_API_BASE}/points/{latitude:.4f},{longitude:.4f}")
    if not points:
        return (f"Failed to retrieve grid point data for coordinates: {latitude}, {longitude}. "
                "This location may not be supported by the NWS API (only US locations are supported).")

    forecast_url = points.get("properties", {}).get("forecast")
    if not forecast_url:
        return "Failed to get forecast URL from grid point data"

    forecast = await fetch(forecast_url)
    if not forecast:
        return "Failed to retrieve forecast data"

    periods = forecast.get("properties", {}).get("periods") or []
    if not periods:
        return "No forecast periods available"
    text = "\n".join(format_period(p) for p in periods[:FORECAST_PERIODS])
    return f"Forecast for {latitude}, {longitude}:\n\n{text}"


# Crear servidor
server = Server("weather")


@server.list_tools()
async def handle_list_tools() -> List[types.Tool]:
    """Lista las herramientas disponibles"""
    return [
        types.Tool(
            name="get-alerts",
            description="Get weather alerts for a state",
            inputSchema={
                "type": "object",
                "properties": {
                    "state": {
                        "type": "string",
                        "description": "Two-letter state code (e.g. CA, NY)",
                        "minLength": 2,
                        "maxLength": 2,
                    }
                },
                "required": ["state"],
            },
        ),
        types.Tool(
            name="get-forecast",
            description="Get weather forecast for a location",
            inputSchema={
                "type": "object",
                "properties": {
                    "latitude": {
                        "type": "number",
                        "description": "Latitude of the location",
                        "minimum": -90,
                        "maximum": 90,
                    },
                    "longitude": {
                        "type": "number",
                        "description": "Longitude of the location",
                        "minimum": -180,
                        "maximum": 180,
                    },
                },
                "required": ["latitude", "longitude"],
            },
        ),
    ]


async def dispatch_tool(name: str, arguments: Dict[str, Any], fetch: Optional[Fetcher] = None) -> str:
    fetch = fetch or make_nws_request
    if name == "get-alerts":
        state = str(arguments.get("state", ""))
        if len(state) != 2:
            raise ValueError("state debe ser un código de 2 letras")
        return await get_alerts(state, fetch)
    if name == "get-forecast":
        return await get_forecast(float(arguments["latitude"]), float(arguments["longitude"]), fetch)
    raise ValueError(f"Herramienta desconocida: {name}")


@server.call_tool()
async def handle_call_tool(name: str, arguments: Dict[str, Any]) -> List[types.TextContent]:
    """Maneja las llamadas a herramientas"""
    text = await dispatch_tool(name, arguments or {})
    return [types.TextContent(type="text", text=text)]


async def main():
    async with mcp.server.stdio.stdio_server() as (read_stream, write_stream):
        print(READY_BANNER, file=sys.stderr, flush=True)
        await server.run(
            read_stream,
            write_stream,
            InitializationOptions(
                server_name="weather",
                server_version="1.0.0",
                capabilities=server.get_capabilities(
                    notification_options=NotificationOptions(),
                    experimental_capabilities={},
                ),
            ),
        )


def run():
    logging.basicConfig(level=logging.WARNING, stream=sys.stderr,
                        format='%(asctime)s - %(levelname)s - %(message)s')
    asyncio.run(main())


if __name__ == "__main__":
    run()
