#!/usr/bin/env python3
"""
qarecipe Webhook Server - Receives collaboration-platform webhooks

Verifies and parses each delivery synchronously, acknowledges it right
away, and runs the analysis pipeline on a background worker. Results are
only ever communicated through the comment posted back on the target.

Endpoints:
- POST /github/webhook, /bitbucket/webhook: pull request comments
- POST /jira/installed, /jira/uninstalled, /jira/webhook: Jira Connect app
- POST /linear/install, /linear/uninstall, /linear/webhook: Linear app
- GET /health
"""

import asyncio
import logging
from collections.abc import Callable
from concurrent.futures import ThreadPoolExecutor
from typing import Any

from flask import Flask, jsonify, request

from qarecipe import __version__
from qarecipe.adapters.ai import LocalHeuristicGenerator, RemoteReasoningClient
from qarecipe.adapters.auth import (
    ConnectJwtVerifier,
    HmacSignatureVerifier,
    OrgSignatureVerifier,
)
from qarecipe.adapters.platforms import build_platform_client
from qarecipe.adapters.storage import SQLStateStore
from qarecipe.config import Settings, load_settings
from qarecipe.core.invoker import AnalysisInvoker
from qarecipe.core.models import Installation, Platform
from qarecipe.core.pipeline import AnalysisPipeline, TriggerEvent
from qarecipe.core.webhook_http import (
    process_jira_installed,
    process_jira_uninstalled,
    process_linear_install,
    process_linear_uninstall,
    process_webhook_request,
)

logger = logging.getLogger(__name__)

MAX_WORKERS = 4


def build_invoker(settings: Settings) -> AnalysisInvoker:
    """Remote reasoning service first, then the local generator."""
    return AnalysisInvoker(
        [
            RemoteReasoningClient(settings.reasoning_url, timeout=settings.reasoning_timeout),
            LocalHeuristicGenerator(),
        ],
        timeout=settings.reasoning_timeout,
    )


def create_app(
    settings: Settings | None = None,
    store: Any = None,
    clients: Callable[[Installation], Any] | None = None,
    invoker_factory: Callable[[], AnalysisInvoker] | None = None,
) -> Flask:
    """Build the Flask app.

    Args:
        settings: Defaults to :func:`load_settings`.
        store: A :class:`StateStore`; defaults to ``SQLStateStore(settings.storage_dsn)``.
        clients: Factory building a platform client for an Installation.
        invoker_factory: Builds a fresh invoker per run (each run has its own event loop).
    """
    settings = settings or load_settings()
    store = store or SQLStateStore(settings.storage_dsn)
    client_factory = clients or (
        lambda installation: build_platform_client(installation, jira_app_key=settings.jira_app_key)
    )
    invoker_factory = invoker_factory or (lambda: build_invoker(settings))
    executor = ThreadPoolExecutor(max_workers=MAX_WORKERS, thread_name_prefix="qarecipe-run")

    verifiers = {
        Platform.GITHUB: HmacSignatureVerifier(settings.github_webhook_secret),
        Platform.BITBUCKET: HmacSignatureVerifier(
            settings.bitbucket_webhook_secret,
            header="X-Hub-Signature",
            allow_unsigned=True,
        ),
        Platform.JIRA: ConnectJwtVerifier(),
        Platform.LINEAR: OrgSignatureVerifier(production=settings.is_production),
    }
    default_credentials = {
        Platform.GITHUB: {"token": settings.github_token} if settings.github_token else {},
        Platform.BITBUCKET: (
            {"access_token": settings.bitbucket_access_token}
            if settings.bitbucket_access_token
            else {}
        ),
    }

    async def resolve_trigger_installation(platform: Platform, account_id: str) -> Installation | None:
        installation = await store.get_installation(platform, account_id)
        if installation is not None or platform not in default_credentials:
            return installation
        logger.info("🆕 Registering %s installation for %s", platform.value, account_id)
        return await store.save_installation(
            Installation(
                platform=platform,
                account_id=account_id,
                credentials=dict(default_credentials[platform]),
            )
        )

    def _resolver_for(platform: Platform):
        async def resolve(account_id: str) -> Installation | None:
            return await store.get_installation(platform, account_id)

        return resolve

    async def _run_pipeline(event: TriggerEvent) -> None:
        invoker = invoker_factory()
        pipeline = AnalysisPipeline(
            store=store,
            invoker=invoker,
            client_factory=client_factory,
            max_revisions=settings.max_revisions,
            include_files=settings.include_file_contents,
        )
        try:
            outcome = await pipeline.run(event)
            logger.info("🏁 Run for %s finished: %s", event.target.key, outcome.status.value)
        finally:
            await invoker.aclose()

    def _run_in_background(event: TriggerEvent) -> None:
        try:
            asyncio.run(_run_pipeline(event))
        except Exception as exc:
            logger.error("❌ Background run for %s crashed: %s", event.target.key, exc, exc_info=True)

    def dispatch(event: TriggerEvent) -> None:
        executor.submit(_run_in_background, event)

    def _handle(platform: Platform):
        body, status = process_webhook_request(
            platform=platform,
            payload_body=request.get_data(),
            headers=dict(request.headers),
            method=request.method,
            path=request.path,
            query=request.args.to_dict(flat=False),
            logger=logger,
            verifier=verifiers[platform],
            resolve_installation=_resolver_for(platform),
            resolve_trigger_installation=resolve_trigger_installation,
            dispatch=dispatch,
        )
        return jsonify(body), status

    def _lifecycle_kwargs() -> dict[str, Any]:
        return {
            "payload_body": request.get_data(),
            "store": store,
            "logger": logger,
            "verifier": verifiers[Platform.JIRA],
            "headers": dict(request.headers),
            "method": request.method,
            "path": request.path,
            "query": request.args.to_dict(flat=False),
        }

    app = Flask(__name__)
    app.extensions["qarecipe"] = {
        "settings": settings,
        "store": store,
        "executor": executor,
    }

    @app.route("/health", methods=["GET"])
    def health_check():
        """Health check endpoint."""
        return jsonify({"status": "healthy", "service": "qarecipe", "version": __version__}), 200

    @app.route("/github/webhook", methods=["POST"])
    def github_webhook():
        return _handle(Platform.GITHUB)

    @app.route("/bitbucket/webhook", methods=["POST"])
    def bitbucket_webhook():
        return _handle(Platform.BITBUCKET)

    @app.route("/jira/webhook", methods=["POST"])
    def jira_webhook():
        return _handle(Platform.JIRA)

    @app.route("/linear/webhook", methods=["POST"])
    def linear_webhook():
        return _handle(Platform.LINEAR)

    @app.route("/jira/installed", methods=["POST"])
    def jira_installed():
        body, status = process_jira_installed(**_lifecycle_kwargs())
        return jsonify(body), status

    @app.route("/jira/uninstalled", methods=["POST"])
    def jira_uninstalled():
        body, status = process_jira_uninstalled(**_lifecycle_kwargs())
        return jsonify(body), status

    @app.route("/linear/install", methods=["POST"])
    def linear_install():
        body, status = process_linear_install(payload_body=request.get_data(), store=store, logger=logger)
        return jsonify(body), status

    @app.route("/linear/uninstall", methods=["POST"])
    def linear_uninstall():
        body, status = process_linear_uninstall(payload_body=request.get_data(), store=store, logger=logger)
        return jsonify(body), status

    return app


def main():
    """Start the webhook server."""
    settings = load_settings()
    logging.basicConfig(
        level=getattr(logging, settings.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = create_app(settings)
    port = settings.webhook_port
    logger.info(f"🚀 Starting webhook server on port {port}")
    logger.info(f"📍 GitHub webhook URL: http://localhost:{port}/github/webhook")
    logger.info(f"🧠 Reasoning service: {settings.reasoning_url}")
    app.run(host="0.0.0.0", port=port, debug=False)


if __name__ == "__main__":
    main()
