import os
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import FastAPI

from household_categorizer.api.routes import admin, categorize
from household_categorizer.classifiers.base import RemoteClassifier
from household_categorizer.classifiers.llm import LLMClassifier
from household_categorizer.classifiers.remote import EdgeFunctionClassifier
from household_categorizer.core import settings
from household_categorizer.integration.backend import BackendClient
from household_categorizer.logger import get_logger, setup_logging
from household_categorizer.manager import CategorizerRegistry
from household_categorizer.services.monitor import CategorizationMonitor

logger = get_logger(__name__)


def build_classifier() -> RemoteClassifier | None:
    if os.getenv("CLASSIFIER_URL"):
        logger.info("Remote classifier: edge function at %s", os.getenv("CLASSIFIER_URL"))
        return EdgeFunctionClassifier(
            timeout=settings.get_env_float("CLASSIFIER_TIMEOUT", 30.0, min_value=1.0),
        )
    if os.getenv("OPENAI_API_KEY"):
        model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        logger.info(
            "Remote classifier: LLM model=%s, base_url=%s",
            model,
            os.getenv("OPENAI_BASE_URL") or "default",
        )
        return LLMClassifier(model=model)
    logger.warning("Neither CLASSIFIER_URL nor OPENAI_API_KEY set. AI tier disabled, fallback rules only.")
    return None


def create_app() -> FastAPI:
    setup_logging()

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("Initializing services...")
        settings.log_environment()

        backend = BackendClient()
        if not backend.configured:
            logger.warning("BACKEND_URL or BACKEND_KEY not set. Rules and history will be empty.")
        classifier = build_classifier()
        monitor = CategorizationMonitor()
        registry = CategorizerRegistry(
            backend,
            classifier=classifier,
            config=settings.CategorizerConfig.from_env(),
            monitor=monitor,
        )

        app.state.backend = backend
        app.state.monitor = monitor
        app.state.registry = registry

        logger.info("Services initialized.")
        yield
        logger.info("Service shutting down.")
        await backend.aclose()
        if classifier is not None:
            await classifier.aclose()

    app = FastAPI(title="Household Categorizer", lifespan=lifespan)
    app.include_router(categorize.router)
    app.include_router(admin.router)
    return app


app = create_app()
