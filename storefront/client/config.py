"""
Cart client configuration

Read from STOREFRONT_CLIENT_* environment variables.
"""
from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="STOREFRONT_CLIENT_", extra="ignore")

    API_BASE_URL: str = "http://localhost:8000/api"

    # Quantity edits on one line coalesce into a single write per window
    UPDATE_DEBOUNCE_MS: int = 500

    # Guest cart location in the device key-value store
    STORAGE_KEY: str = "cart"
    STORAGE_DIR: str = ".storefront"

    @property
    def update_debounce_seconds(self) -> float:
        return self.UPDATE_DEBOUNCE_MS / 1000


client_settings = ClientSettings()
