"""Admission webhook server for ``FRRConfiguration`` resources."""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict

import uvicorn
from fastapi import Body, FastAPI, HTTPException

from .admission import AdmissionHandler, build_handler
from .config import AgentConfig
from .kube import KubeClient, KubeInventory
from .main import add_config_arguments, load_base_config, setup_logging
from .semantic import RouterMergeValidator

LOG = logging.getLogger(__name__)

VALIDATE_PATH = "/validate-frrk8s-metallb-io-v1beta1-frrconfiguration"
HEALTH_PATH = "/healthz"


def create_app(handler: AdmissionHandler) -> FastAPI:
    app = FastAPI(title="frr-k8s webhook")

    @app.get(HEALTH_PATH)
    def healthz():
        return {"status": "ok"}

    @app.post(VALIDATE_PATH)
    def validate(review: Dict[str, Any] = Body(...)):
        try:
            return handler.review(review)
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc

    return app


def build_config(args: argparse.Namespace) -> AgentConfig:
    config = load_base_config(args)
    if args.host:
        config.webhook.host = args.host
    if args.port:
        config.webhook.port = args.port
    if args.tls_cert_file:
        config.webhook.cert_file = args.tls_cert_file
    if args.tls_key_file:
        config.webhook.key_file = args.tls_key_file
    if (config.webhook.cert_file is None) != (config.webhook.key_file is None):
        raise ValueError("TLS certificate and key must be set together")
    return config


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        description="Validate FRRConfiguration resources at admission time"
    )
    add_config_arguments(parser)
    parser.add_argument("--host", help="Address to listen on")
    parser.add_argument("--port", type=int, help="Port to listen on")
    parser.add_argument("--tls-cert-file", type=Path, help="Serving certificate")
    parser.add_argument("--tls-key-file", type=Path, help="Serving certificate key")
    args = parser.parse_args(argv)
    setup_logging(args.verbose)

    try:
        config = build_config(args)
    except ValueError as exc:
        parser.error(str(exc))

    client = KubeClient.from_config(config.kube)
    handler = build_handler(config.webhook, KubeInventory(client), RouterMergeValidator())
    webhook = config.webhook
    LOG.info("starting webhook on %s:%d", webhook.host, webhook.port)
    try:
        uvicorn.run(
            create_app(handler),
            host=webhook.host,
            port=webhook.port,
            ssl_certfile=str(webhook.cert_file) if webhook.cert_file else None,
            ssl_keyfile=str(webhook.key_file) if webhook.key_file else None,
            log_config=None,
        )
    finally:
        client.close()
    LOG.info("webhook stopped")
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
