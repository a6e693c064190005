import logging

from fastapi import FastAPI

from studio_assistant.api.admin import router as admin_router
from studio_assistant.api.webhooks import router as webhooks_router
from studio_assistant.core.config import Settings, settings
from studio_assistant.middleware.correlation_id import CorrelationIdMiddleware

logger = logging.getLogger(__name__)

REQUIRED_SETTINGS = ("crm_api_token", "crm_location_id", "stripe_secret_key", "stripe_webhook_secret")

app = FastAPI(title="Studio Booking Assistant")

app.add_middleware(CorrelationIdMiddleware)


def configuration_problems(cfg: Settings) -> list[str]:
    """
    Settings the app refuses to start with.

    Every environment needs the CRM and Stripe credentials. Production also
    needs an admin key and a real webhook signing secret.
    """
    problems = [f"{key.upper()} is not set" for key in REQUIRED_SETTINGS if not getattr(cfg, key, None)]
    if cfg.app_env == "production":
        if not cfg.admin_api_key:
            problems.append("ADMIN_API_KEY is required in production")
        if cfg.stripe_webhook_secret == "whsec_test":
            problems.append("STRIPE_WEBHOOK_SECRET is still the test placeholder")
    return problems


@app.on_event("startup")
async def startup_event():
    """Fail fast on bad configuration and load reference data."""
    from studio_assistant.services.intents.objection_library import get_objection_ids
    from studio_assistant.services.scheduling.studio_config import get_artist_names

    problems = configuration_problems(settings)
    if problems:
        message = "Configuration check failed:\n" + "\n".join(f"  - {p}" for p in problems)
        logger.error(message)
        raise RuntimeError(message)

    if settings.app_env == "production" and settings.crm_dry_run:
        logger.warning("CRM_DRY_RUN is enabled in production - no messages will be sent")

    logger.info(
        f"Startup: env={settings.app_env} crm_dry_run={settings.crm_dry_run} "
        f"responder={'on' if settings.responder_url else 'off'} "
        f"hold={settings.hold_warning_minutes}/{settings.hold_release_minutes}min"
    )
    # A malformed studio.yml or objections.yml should stop the boot, not a conversation
    logger.info(
        f"Startup: {len(get_objection_ids())} objections, "
        f"artists: {', '.join(get_artist_names()) or '(none)'}"
    )


@app.get("/health")
def health():
    """Liveness plus the knobs that change conversational behavior."""
    return {
        "ok": True,
        "environment": settings.app_env,
        "crm_dry_run": settings.crm_dry_run,
        "responder_configured": bool(settings.responder_url),
        "holds": {
            "warning_minutes": settings.hold_warning_minutes,
            "release_minutes": settings.hold_release_minutes,
        },
    }


app.include_router(webhooks_router, prefix="/webhooks")
app.include_router(admin_router, prefix="/admin", tags=["admin"])
