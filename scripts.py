#!/usr/bin/env python3
"""
Scripts for running the stdio and HTTP MCP servers.
"""

import asyncio
import logging

import uvicorn

from pricecheck.config import load_settings
from pricecheck.observability import configure_logging, setup_tracing
from pricecheck.server.stdio_server import run_stdio_server

logger = logging.getLogger(__name__)


def run_stdio():
    """Run the price-check MCP server on stdin/stdout."""
    settings = load_settings()
    configure_logging(settings.log_level)
    setup_tracing(settings)

    # stdout carries protocol frames only, so nothing is printed here
    logger.info("Starting flight price-check MCP server on stdio")
    try:
        asyncio.run(run_stdio_server(settings))
    except KeyboardInterrupt:
        logger.info("Stdio server stopped")


def run_http():
    """Run the price-check MCP server over HTTP."""
    settings = load_settings()
    configure_logging(settings.log_level)
    setup_tracing(settings)

    print("🚀 Starting Flight Price Check MCP server...")
    print(f"📍 MCP endpoint: http://{settings.http_host}:{settings.http_port}/mcp")
    print("-" * 40)

    uvicorn.run(
        "pricecheck.server.http_server:create_app",
        factory=True,
        host=settings.http_host,
        port=settings.http_port,
        log_level=settings.log_level.lower(),
    )
