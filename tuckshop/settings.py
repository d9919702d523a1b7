import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    API_KEY: str = os.getenv("API_KEY", "")
    CORS_ORIGINS: str = os.getenv("CORS_ORIGINS", "*")

    REDIS_URL: str = os.getenv("REDIS_URL", "redis://localhost:6379/0")
    RQ_QUEUE_NAME: str = os.getenv("RQ_QUEUE_NAME", "tuckshop")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./tuckshop.db")
    DATABASE_ECHO: bool = os.getenv("DATABASE_ECHO", "false").lower() == "true"

    # Inbound processing
    # - "background": process in a FastAPI background task after the 200 ack
    # - "rq": enqueue a job and let a worker process it
    INTAKE_MODE: str = os.getenv("INTAKE_MODE", "background").lower()

    # Conversation store / dedup guard
    SESSION_TTL_SEC: int = int(os.getenv("SESSION_TTL_SEC", "1800"))  # 30 minutes of inactivity
    DEDUP_TTL_SEC: int = int(os.getenv("DEDUP_TTL_SEC", "86400"))
    SENDER_LOCK_RETRIES: int = int(os.getenv("SENDER_LOCK_RETRIES", "20"))
    SENDER_LOCK_RETRY_SLEEP_SEC: float = float(os.getenv("SENDER_LOCK_RETRY_SLEEP_SEC", "0.1"))
    MAX_RENDER_HOPS: int = int(os.getenv("MAX_RENDER_HOPS", "4"))

    # Catalog / cart
    MAX_QUANTITY_PER_ADD: int = int(os.getenv("MAX_QUANTITY_PER_ADD", "10"))
    LIST_PAGE_SIZE: int = int(os.getenv("LIST_PAGE_SIZE", "10"))
    MY_ORDERS_LIMIT: int = int(os.getenv("MY_ORDERS_LIMIT", "5"))
    CATEGORY_CACHE_TTL_SEC: int = int(os.getenv("CATEGORY_CACHE_TTL_SEC", "300"))

    # Verification artifacts (pickup codes)
    CASH_ARTIFACT_TTL_SEC: int = int(os.getenv("CASH_ARTIFACT_TTL_SEC", "60"))
    ARTIFACT_SIGNING_SECRET: str = os.getenv("ARTIFACT_SIGNING_SECRET", "change-me")
    PUBLIC_BASE_URL: str = os.getenv("PUBLIC_BASE_URL", "http://localhost:8000").rstrip("/")

    # WhatsApp Cloud API
    WHATSAPP_ACCESS_TOKEN: str = os.getenv("WHATSAPP_ACCESS_TOKEN", "")
    WHATSAPP_PHONE_ID: str = os.getenv("WHATSAPP_PHONE_ID", "")
    WHATSAPP_API_VERSION: str = os.getenv("WHATSAPP_API_VERSION", "v18.0")
    WHATSAPP_VERIFY_TOKEN: str = os.getenv("WHATSAPP_VERIFY_TOKEN", "")
    # Empty secret disables X-Hub-Signature-256 verification (local development)
    WHATSAPP_APP_SECRET: str = os.getenv("WHATSAPP_APP_SECRET", "")
    SEND_TIMEOUT_SEC: float = float(os.getenv("SEND_TIMEOUT_SEC", "10"))

    # Payment provider (prepaid flow). Empty URL -> no link unless PAYMENT_TEST_MODE serves a local one.
    PAYMENT_PROVIDER_URL: str = os.getenv("PAYMENT_PROVIDER_URL", "")
    PAYMENT_INTEGRATION_ID: str = os.getenv("PAYMENT_INTEGRATION_ID", "")
    PAYMENT_INTEGRATION_KEY: str = os.getenv("PAYMENT_INTEGRATION_KEY", "")
    PAYMENT_TIMEOUT_SEC: float = float(os.getenv("PAYMENT_TIMEOUT_SEC", "10"))
    # Empty key rejects every confirmation
    PAYMENT_WEBHOOK_KEY: str = os.getenv("PAYMENT_WEBHOOK_KEY", "")
    # Local development only: /api/payments/test confirms payments without a provider
    PAYMENT_TEST_MODE: bool = os.getenv("PAYMENT_TEST_MODE", "false").lower() == "true"

    # Lock lease must outlast the payment-link and send timeouts combined
    SENDER_LOCK_TTL_MS: int = int(os.getenv(
        "SENDER_LOCK_TTL_MS", str(int((PAYMENT_TIMEOUT_SEC + SEND_TIMEOUT_SEC + 10) * 1000))
    ))

    # Presentation
    STORE_NAME: str = os.getenv("STORE_NAME", "eTuckshop")
    SUPPORT_EMAIL: str = os.getenv("SUPPORT_EMAIL", "support@etuckshop.com")
    CURRENCY_SYMBOL: str = os.getenv("CURRENCY_SYMBOL", "$")

    # Security & privacy
    ENABLE_PII_REDACTION: bool = os.getenv("ENABLE_PII_REDACTION", "true").lower() == "true"
    ADMIN_RBAC_ENABLED: bool = os.getenv("ADMIN_RBAC_ENABLED", "true").lower() == "true"
    ADMIN_API_KEY: str = os.getenv("ADMIN_API_KEY", "")
    PASSWORD_HASH_ITERATIONS: int = int(os.getenv("PASSWORD_HASH_ITERATIONS", "200000"))

settings = Settings()
