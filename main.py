#!/usr/bin/env python3

import asyncio
import argparse
import uvicorn
from config.config import (
    LOG_FILE, LOG_LEVEL, LOG_STRUCTURED, NODE_API_URL, NODE_WS_URL, PFLOPS_DATA_FILE, WEB_HOST, WEB_PORT
)
from dashboard.controller import ExplorerContext
from gateway.api_gateway import ApiGateway
from log_utils import setup_logging
from metrics.store import MetricStore
from realtime.channel import RealtimeChannel
from web.web import create_app


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='Amadeus block explorer')
    parser.add_argument('--host', type=str, default=WEB_HOST,
                        help=f'Bind address (default: {WEB_HOST})')
    parser.add_argument('--port', type=int, default=WEB_PORT,
                        help=f'HTTP port (default: {WEB_PORT})')
    parser.add_argument('--node-api', type=str, default=NODE_API_URL,
                        help=f'Node REST base URL (default: {NODE_API_URL})')
    parser.add_argument('--node-ws', type=str, default=NODE_WS_URL,
                        help=f'Node event stream URL (default: {NODE_WS_URL})')
    parser.add_argument('--pflops-file', type=str, default=PFLOPS_DATA_FILE,
                        help=f'PFLOPS history file (default: {PFLOPS_DATA_FILE})')
    parser.add_argument('--no-stream', action='store_true',
                        help='Do not connect to the event stream; rely on polling')
    return parser


async def main(args, logger):
    logger.info("Starting explorer")
    logger.info(f"Node API: {args.node_api}, event stream: {args.node_ws}")

    context = ExplorerContext(
        gateway=ApiGateway(args.node_api),
        channel=RealtimeChannel(args.node_ws),
        metric_store=MetricStore(args.pflops_file),
    )
    app = create_app(context, connect_stream=not args.no_stream)

    config_web = uvicorn.Config(
        app,
        host=args.host,
        port=args.port,
        log_level=LOG_LEVEL.lower(),
        access_log=True
    )
    server_web = uvicorn.Server(config_web)
    logger.info(f"Web server configured on {args.host}:{args.port}")

    try:
        await server_web.serve()
    except asyncio.CancelledError:
        logger.info("Server cancelled, shutting down gracefully")


def run():
    args = build_parser().parse_args()
    logger = setup_logging(
        level=LOG_LEVEL,
        log_file=LOG_FILE,
        enable_console=True,
        enable_structured=LOG_STRUCTURED
    )
    try:
        asyncio.run(main(args, logger))
    except KeyboardInterrupt:
        logger.info("Received interrupt signal, shutting down")
    except Exception as e:
        logger.critical(f"Fatal error: {str(e)}")
        raise


if __name__ == "__main__":
    run()
