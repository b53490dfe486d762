#!/usr/bin/env python3
"""
MQTT/HTTP gateway for a Tasmota-flashed Tuya aroma diffuser ("smokey")

Keeps the diffuser and its light in the wanted state: retries commands the
device ignored, enforces auto-off timers, and exposes a small HTTP API.

Usage:
    python smokey.py                                # HTTP API on $LISTENPORT
    python smokey.py --broker tcp://mqtt.lan:1883   # Different broker
    python smokey.py --topic den/smokey/            # Different topic prefix
    python smokey.py --tui                          # Terminal dashboard too
    python smokey.py --debug                        # DEBUG log, also to console

    curl -X POST 'localhost:8080/lighton?mode=solid&color=red&autoOffSecs=600'
    curl localhost:8080/state
"""

import argparse
import logging
import os
import queue
import sys
from logging.handlers import RotatingFileHandler

import uvicorn
from pydantic import ValidationError

import web_server
from codec import Topics
from config import GatewayConfig, MqttConfig, env_default_listen_port, env_default_log_dir
from constants import (
    DEFAULT_BROKER_PASS,
    DEFAULT_BROKER_URL,
    DEFAULT_BROKER_USER,
    DEFAULT_CLIENT_ID,
    DEFAULT_TOPIC_PREFIX,
    OUTBOUND_QUEUE_DEPTH,
)
from loop_thread import LoopThread
from manager import Manager
from mqtt_agent import MqttAgent

logger = logging.getLogger(__name__)

LOG_FILE = "smokey.log"
LOG_MAX_BYTES = 4 * 1024 * 1024
LOG_BACKUPS = 20
LOG_FORMAT = "%(asctime)s %(levelname)s [%(threadName)s] %(name)s: %(message)s"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="MQTT/HTTP gateway for the smokey diffuser")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--logdir", default=env_default_log_dir(),
                        help="Directory for log files (env LOGDIR)")
    parser.add_argument("--client", default=DEFAULT_CLIENT_ID, help="MQTT client id")
    parser.add_argument("--broker", default=DEFAULT_BROKER_URL, help="MQTT broker url")
    parser.add_argument("--user", default=DEFAULT_BROKER_USER, help="MQTT username")
    parser.add_argument("--pass", dest="password", default=DEFAULT_BROKER_PASS,
                        help="MQTT password")
    parser.add_argument("--topic", default=DEFAULT_TOPIC_PREFIX,
                        help="Topic prefix of the device (default %(default)s)")
    parser.add_argument("--listenport", type=int, default=env_default_listen_port(),
                        help="HTTP port (env LISTENPORT)")
    parser.add_argument("--advertise", action="store_true",
                        help="Publish state snapshots when the device changes")
    parser.add_argument("--tui", action="store_true", help="Run the terminal dashboard")
    return parser.parse_args(argv)


def build_config(args: argparse.Namespace) -> GatewayConfig:
    """Validate parsed flags. Raises pydantic.ValidationError."""
    return GatewayConfig(
        mqtt=MqttConfig(
            client_id=args.client,
            broker_url=args.broker,
            user=args.user,
            password=args.password,
            topic_prefix=args.topic,
        ),
        listen_port=args.listenport,
        log_dir=args.logdir,
        debug=args.debug,
        advertise=args.advertise,
        tui=args.tui,
    )


def setup_logging(log_dir: str, debug: bool = False, console: bool = True) -> None:
    """Rotating file log in log_dir; console too when debugging."""
    try:
        os.makedirs(log_dir, exist_ok=True)
    except OSError as e:
        print(f"Unable to create log dir {log_dir}: {e}", file=sys.stderr)
        sys.exit(1)

    formatter = logging.Formatter(LOG_FORMAT)
    root = logging.getLogger()
    root.setLevel(logging.DEBUG if debug else logging.INFO)

    file_handler = RotatingFileHandler(
        os.path.join(log_dir, LOG_FILE), maxBytes=LOG_MAX_BYTES, backupCount=LOG_BACKUPS)
    file_handler.setFormatter(formatter)
    root.addHandler(file_handler)

    if debug and console:
        console_handler = logging.StreamHandler()
        console_handler.setFormatter(formatter)
        root.addHandler(console_handler)


async def serve_web(server: uvicorn.Server) -> bool:
    """Run uvicorn on the manager loop. Returns False if it failed to start."""
    try:
        await server.serve()
    except SystemExit:
        # uvicorn exits the process when it cannot bind
        logger.error("HTTP server failed to start on port %d", server.config.port)
        return False
    return server.started


def main(argv=None) -> int:
    args = parse_args(argv)
    try:
        config = build_config(args)
    except ValidationError as e:
        print(f"Invalid configuration:\n{e}", file=sys.stderr)
        return 1

    # Console output would draw over the dashboard
    setup_logging(config.log_dir, config.debug, console=not config.tui)
    logger.info("Starting smokey gateway: broker %s, prefix %r, port %d",
                config.mqtt.broker_url, config.mqtt.topic_prefix, config.listen_port)

    runner = LoopThread()
    runner.start()

    topics = Topics(config.mqtt.topic_prefix)
    outbound: queue.Queue = queue.Queue(maxsize=OUTBOUND_QUEUE_DEPTH)
    manager = Manager(topics, outbound, advertise=config.advertise)
    manager_future = runner.submit(manager.run())

    agent = MqttAgent(config.mqtt, topics, outbound, on_message=manager.deliver)
    agent.start()

    web_server.set_manager(manager, runner)
    server = uvicorn.Server(uvicorn.Config(
        web_server.app, host="0.0.0.0", port=config.listen_port,
        log_level="debug" if config.debug else "info", log_config=None))
    web_future = runner.submit(serve_web(server))

    exit_code = 0
    try:
        if config.tui:
            from tui_app import SmokeyApp
            SmokeyApp(manager, runner).run()
        elif not web_future.result():
            exit_code = 1
    except KeyboardInterrupt:
        logger.info("Interrupted")
    finally:
        logger.info("Shutting down...")
        server.should_exit = True
        agent.stop()
        manager_future.cancel()
        runner.stop()
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
