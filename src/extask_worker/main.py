import argparse
import importlib
import json
import logging
import signal
import threading
from typing import List, Optional, Tuple

from extask_worker.client import ExternalTaskClient
from extask_worker.config import ClientSettings
from extask_worker.task.models import Handler

logger = logging.getLogger("extask_worker")


def load_handler(path: str) -> Handler:
    """Resolve 'package.module:attribute' to a handler callable."""
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ValueError(f"Handler path must look like 'module:attribute', got '{path}'")
    handler = getattr(importlib.import_module(module_name), attr)
    if isinstance(handler, type):
        handler = handler()
    if not callable(handler):
        raise ValueError(f"Handler '{path}' is not callable")
    return handler


def parse_subscription(value: str) -> Tuple[str, str]:
    topic_name, sep, handler_path = value.partition("=")
    if not sep:
        raise argparse.ArgumentTypeError(f"Expected TOPIC=module:handler, got '{value}'")
    return topic_name, handler_path


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Fetch and handle external tasks.")
    parser.add_argument(
        "--subscribe", "-s", action="append", type=parse_subscription, default=[],
        metavar="TOPIC=module:handler", help="Topic to subscribe to and the handler to run for it",
    )
    parser.add_argument("--base-url", help="Engine REST base URL (overrides EXTASK_BASE_URL)")
    parser.add_argument("--worker-id", help="Worker id reported to the engine")
    parser.add_argument("--log-level", default="INFO")
    return parser


def main(argv: Optional[List[str]] = None):
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=args.log_level.upper(), format="[%(process)d] %(message)s")

    overrides = {}
    if args.base_url:
        overrides["base_url"] = args.base_url
    if args.worker_id:
        overrides["worker_id"] = args.worker_id
    settings = ClientSettings(**overrides)

    shutdown = threading.Event()

    def _on_signal(signum, frame):
        logger.info(json.dumps({"event": "shutdown_signal", "signal": signal.Signals(signum).name}))
        shutdown.set()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    with ExternalTaskClient(settings) as client:
        for topic_name, handler_path in args.subscribe:
            client.subscribe(topic_name, load_handler(handler_path))
        client.start()
        logger.info(json.dumps({
            "event": "worker_startup",
            "base_url": settings.base_url,
            "worker_id": settings.worker_id,
            "topics": [s.topic_name for s in client.get_subscriptions()],
        }))
        shutdown.wait()
    logger.info(json.dumps({"event": "worker_shutdown"}))


if __name__ == "__main__":
    main()
