from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        validate_assignment=True,
    )

    app_env: str = "dev"

    # CRM (contacts, custom fields, conversations, calendars, opportunities)
    crm_base_url: str = "https://services.leadconnectorhq.com"
    crm_api_token: str
    crm_location_id: str
    crm_api_version: str = "2021-07-28"
    crm_calendar_api_version: str = "2021-04-15"
    crm_pipeline_id: str = "Q4QmvAi6bzvdk1rWRkgV"
    crm_dry_run: bool = True  # Set to False in production to enable real sending

    # Stripe (deposit payment links)
    stripe_secret_key: str
    stripe_webhook_secret: str
    stripe_success_url: str = "http://localhost:8000/payment/success"
    stripe_cancel_url: str = "http://localhost:8000/payment/cancel"
    deposit_amount_cents: int = 10000
    deposit_currency: str = "usd"
    deposit_description: str = "Studio AZ Tattoo Deposit"

    # Hold lifecycle (minutes since last lead activity)
    hold_warning_minutes: int = 10
    hold_release_minutes: int = 20

    # Scheduling
    max_offered_slots: int = 4  # Most slots ever listed in one message
    suggested_slot_count: int = 3  # Slots generated per availability lookup
    consult_duration_minutes: int = 30

    # Outbound pacing between bubbles of one reply
    bubble_delay_seconds: float = 1.5

    # Generative responder (optional - deterministic fallback when unset)
    responder_url: str | None = None
    responder_api_key: str | None = None

    admin_api_key: str | None = (
        None  # Optional - if not set, admin endpoints are unprotected (dev mode)
    )


# Settings will load from environment variables or .env file
# Required fields will raise ValidationError if missing (fail-fast)
settings = Settings()
