#!/usr/bin/env python3
from setuptools import find_packages, setup

setup(
    name="weather-mcp-host",
    version="1.0.0",
    description="Cliente MCP mínimo por STDIO: initialize + una llamada a herramienta",
    python_requires=">=3.10",
    package_dir={"": "src"},
    packages=find_packages("src"),
    install_requires=[
        "python-dotenv>=1.0",
        "aiohttp>=3.9",
        "mcp>=1.2,<2",
    ],
    extras_require={
        "test": [
            "pytest>=7.4",
            "pytest-asyncio>=0.23",
        ],
    },
    entry_points={
        "console_scripts": [
            "weather-host=weather_host.host.cli:run_cli",
            "weather-mcp-server=weather_host.services.weather_server:run",
        ],
    },
)
