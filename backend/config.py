from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional


class Settings(BaseSettings):
    # App
    APP_ENV: str = "development"
    DEBUG: bool = True

    # MongoDB
    MONGO_URL: str = "mongodb://localhost:27017"
    DB_NAME: str = "GigaEatsDriver"

    # JWT : émis par le fournisseur d'identité, vérifié ici
    JWT_SECRET: str = "changeme_minimum_32_chars_here_please"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 120

    # Twilio
    TWILIO_ACCOUNT_SID: Optional[str] = None
    TWILIO_AUTH_TOKEN: Optional[str] = None
    TWILIO_SMS_NUMBER: Optional[str] = None

    # Firebase (push FCM)
    FIREBASE_CREDENTIALS_PATH: str = "firebase-service-account.json"

    # Checklist de collecte par défaut (surchargeable par restaurant)
    PICKUP_CHECKLIST: list[str] = [
        "order_number_matches",
        "all_items_present",
        "packaging_intact",
        "special_instructions_noted",
        "temperature_requirements_met",
    ]

    # Libération automatique des commandes acceptées mais jamais démarrées
    AUTO_RELEASE_MINUTES:          int = 15
    AUTO_RELEASE_INTERVAL_SECONDS: int = 120

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True
    ACCEPT_RATE_LIMIT:  str  = "20/minute"

    # Gains livreur : part des frais de livraison reversée au livreur
    DRIVER_RATE: float = 0.80
    CURRENCY:    str   = "MYR"

    model_config = SettingsConfigDict(
        env_file=[".env", "../.env"],  # cherche dans backend/ puis dans la racine
        case_sensitive=True,
        extra="ignore",
    )


settings = Settings()
