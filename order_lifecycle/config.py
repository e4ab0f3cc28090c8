import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    # Backend магазина
    API_BASE_URL: str = os.getenv("API_BASE_URL", "http://localhost:4000/api")
    API_TOKEN: str = os.getenv("API_TOKEN", "")
    REQUEST_TIMEOUT: float = float(os.getenv("REQUEST_TIMEOUT", "10.0"))

    # Notifications
    NOTIFICATIONS_BASE_URL: str = os.getenv("NOTIFICATIONS_BASE_URL", "")
    NOTIFICATION_MAX_RETRIES: int = int(os.getenv("NOTIFICATION_MAX_RETRIES", "3"))
    NOTIFICATION_RETRY_DELAY: float = float(os.getenv("NOTIFICATION_RETRY_DELAY", "1.0"))

    # Logging
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    @property
    def NOTIFICATIONS_ENABLED(self) -> bool:
        """Без адреса сервиса уведомления не отправляются"""
        return bool(self.NOTIFICATIONS_BASE_URL)


settings = Settings()
