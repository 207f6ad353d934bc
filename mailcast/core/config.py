import os
from dotenv import load_dotenv

load_dotenv()

class Config:
    """
    Base configuration for Mailcast.
    Projects should provide database paths via environment variables;
    anything set on app.config before Mailcast(app) takes precedence.
    """
    # Get DB_DIR from environment, or use a default if not set
    DB_DIR = os.getenv('DB_DIR', os.path.join(os.getcwd(), 'databases'))

    # Database paths - use environment variables or fallback to DB_DIR
    CAMPAIGNS_DB = os.getenv('CAMPAIGNS_DB', os.path.join(DB_DIR, "campaigns.db"))
    USER_DB = os.getenv('USER_DB', os.path.join(DB_DIR, "users.db"))
    ANALYTICS_DB = os.getenv('ANALYTICS_DB', os.path.join(DB_DIR, "analytics_log.db"))

    # Mailer settings
    # 'log' writes messages to the log only (development), 'resend' uses the Resend HTTP API
    MAILER_PROVIDER = os.getenv('MAILER_PROVIDER', 'log')
    RESEND_API_KEY = os.getenv('RESEND_API_KEY') or os.getenv('RESEND')
    EMAIL_ADDRESS = os.getenv('EMAIL_ADDRESS', 'onboarding@resend.dev')
    EMAIL_BRAND_NAME = os.getenv('EMAIL_BRAND_NAME', 'Newsletter')
    EMAIL_WEBSITE_URL = os.getenv('EMAIL_WEBSITE_URL', 'http://localhost:5000')

    # Campaign sending
    CAMPAIGN_BATCH_SIZE = int(os.getenv('CAMPAIGN_BATCH_SIZE', '50'))
    CAMPAIGN_CORS_ORIGINS = os.getenv('CAMPAIGN_CORS_ORIGINS', '*')

    # Table names
    CAMPAIGNS_TABLE = "campaigns"
    SENDS_TABLE = "campaign_sends"
    SUBSCRIBERS = "subscribers"
    LOGS_TABLE = "app_logs"

    @classmethod
    def defaults(cls):
        """Config keys Mailcast copies into app.config when they are not already set"""
        return {
            key: getattr(cls, key)
            for key in dir(cls)
            if key.isupper()
        }
