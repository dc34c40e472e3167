import os
from dotenv import load_dotenv

load_dotenv()

class Settings:
    PROJECT_NAME: str = "TechConnect"
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite:///./techconnect.db")
    SECRET_KEY: str = os.getenv("SECRET_KEY", "supersecretkey")
    ALGORITHM = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", str(60 * 24)))  # 1 day
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")
    CLIENT_URL: str = os.getenv("CLIENT_URL", "http://localhost:5173")

    # Login lockout
    MAX_FAILED_LOGINS: int = int(os.getenv("MAX_FAILED_LOGINS", "5"))
    LOGIN_LOCK_MINUTES: int = int(os.getenv("LOGIN_LOCK_MINUTES", "30"))

    # Bid lifecycle timers
    BID_EXPIRY_DAYS: int = int(os.getenv("BID_EXPIRY_DAYS", "30"))
    BID_AUTO_WITHDRAW_DAYS: int = int(os.getenv("BID_AUTO_WITHDRAW_DAYS", "60"))
    NOTIFICATION_TTL_DAYS: int = int(os.getenv("NOTIFICATION_TTL_DAYS", "30"))
    PROJECT_EXPIRY_DAYS: int = int(os.getenv("PROJECT_EXPIRY_DAYS", "30"))

    # Scheduler
    SCHEDULER_ENABLED: bool = os.getenv("SCHEDULER_ENABLED", "true").lower() == "true"

    # Email Configuration
    EMAIL_ENABLED: bool = os.getenv("EMAIL_ENABLED", "false").lower() == "true"
    EMAIL_PROVIDER: str = os.getenv("EMAIL_PROVIDER", "smtp")  # smtp, sendgrid, console

    # SMTP Settings
    SMTP_HOST: str = os.getenv("SMTP_HOST", "smtp.gmail.com")
    SMTP_PORT: int = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER: str = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD: str = os.getenv("SMTP_PASSWORD", "")
    SMTP_TLS: bool = os.getenv("SMTP_TLS", "true").lower() == "true"

    # SendGrid Settings
    SENDGRID_API_KEY: str = os.getenv("SENDGRID_API_KEY", "")

    # Email Sender Info
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "noreply@techconnect.pk")
    EMAIL_FROM_NAME: str = os.getenv("EMAIL_FROM_NAME", "TechConnect")

    EMAIL_TEST_MODE: bool = os.getenv("EMAIL_TEST_MODE", "false").lower() == "true"
    EMAIL_TEST_RECIPIENT: str = os.getenv("EMAIL_TEST_RECIPIENT", "")

    # Redis
    REDIS_HOST: str = os.getenv("REDIS_HOST", "redis")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_DB: int = int(os.getenv("REDIS_DB", "0"))

    # JazzCash (sandbox defaults)
    JAZZCASH_MERCHANT_ID: str = os.getenv("JAZZCASH_MERCHANT_ID", "MC00000")
    JAZZCASH_PASSWORD: str = os.getenv("JAZZCASH_PASSWORD", "password")
    JAZZCASH_SALT: str = os.getenv("JAZZCASH_SALT", "salt")
    JAZZCASH_RETURN_URL: str = os.getenv("JAZZCASH_RETURN_URL", "http://localhost:5173/payment/callback")
    JAZZCASH_API_URL: str = os.getenv(
        "JAZZCASH_API_URL",
        "https://sandbox.jazzcash.com.pk/CustomerPortal/transactionmanagement/merchantform",
    )

    # EasyPaisa (sandbox defaults)
    EASYPAISA_STORE_ID: str = os.getenv("EASYPAISA_STORE_ID", "00000")
    EASYPAISA_HASH_KEY: str = os.getenv("EASYPAISA_HASH_KEY", "hashkey")
    EASYPAISA_RETURN_URL: str = os.getenv("EASYPAISA_RETURN_URL", "http://localhost:5173/payment/callback")
    EASYPAISA_API_URL: str = os.getenv(
        "EASYPAISA_API_URL",
        "https://easypaystg.easypaisa.com.pk/easypay/Index.jsf",
    )

    # Bank transfer instructions
    BANK_ACCOUNT_TITLE: str = os.getenv("BANK_ACCOUNT_TITLE", "TechConnect Escrow")
    BANK_ACCOUNT_IBAN: str = os.getenv("BANK_ACCOUNT_IBAN", "PK00TECH0000000000000000")
    BANK_NAME: str = os.getenv("BANK_NAME", "Meezan Bank")

    # Translation
    GOOGLE_TRANSLATE_API_KEY: str = os.getenv("GOOGLE_TRANSLATE_API_KEY", "")
    GOOGLE_TRANSLATE_URL: str = os.getenv(
        "GOOGLE_TRANSLATE_URL", "https://translation.googleapis.com/language/translate/v2"
    )
    TRANSLATION_CACHE_TTL: int = int(os.getenv("TRANSLATION_CACHE_TTL", str(60 * 60 * 24)))

    def get_database_url(self):
        url = self.DATABASE_URL
        # Fix for SQLAlchemy compatibility (if using 'postgres://' instead of 'postgresql+psycopg2://')
        if url.startswith("postgres://"):
            url = url.replace("postgres://", "postgresql+psycopg2://", 1)
        return url

settings = Settings()
