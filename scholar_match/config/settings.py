import os
from azure.keyvault.secrets import SecretClient
from azure.identity import ManagedIdentityCredential


def _as_bool(value, default=False):
    if value is None or value == "":
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "on")


class Settings:
    def __init__(self, key_vault_url=None):
        self.key_vault_url = key_vault_url or os.getenv("KEY_VAULT_URL")

        if self.key_vault_url:
            credential = ManagedIdentityCredential()
            self.secret_client = SecretClient(vault_url=self.key_vault_url, credential=credential)

            # Load from Azure Key Vault
            self.openai_api_key = self.get_secret("OPENAI-API-KEY")
            self.openai_api_base = self.get_secret("OPENAI-API-BASE", required=False)
            self.openai_api_base_embedding = self.get_secret("OPENAI-API-BASE-EMBEDDING", required=False)
            self.postgres_host = self.get_secret("postgres-host")
            self.postgres_port = self.get_secret("postgres-port")
            self.postgres_user = self.get_secret("postgres-user")
            self.postgres_password = self.get_secret("postgres-password")
            self.postgres_db = self.get_secret("postgres-db")
        else:
            # Fallback to environment variables
            from dotenv import load_dotenv
            load_dotenv()
            self.openai_api_key = os.getenv("OPENAI_API_KEY")
            self.openai_api_base = os.getenv("OPENAI_API_BASE")
            self.openai_api_base_embedding = os.getenv("OPENAI_API_BASE_EMBEDDING")
            self.postgres_host = os.getenv("POSTGRES_HOST", "localhost")
            self.postgres_port = os.getenv("POSTGRES_PORT", "5432")
            self.postgres_user = os.getenv("POSTGRES_USER")
            self.postgres_password = os.getenv("POSTGRES_PASSWORD")
            self.postgres_db = os.getenv("POSTGRES_DB")

        # Non-secret tuning knobs always come from the environment
        self.postgres_ssl = _as_bool(os.getenv("POSTGRES_SSL"), default=bool(self.key_vault_url))
        self.embedding_model = os.getenv("EMBEDDING_MODEL", "text-embedding-3-small")
        self.embed_dim = int(os.getenv("EMBED_DIM", "1536"))
        self.llm_model = os.getenv("LLM_MODEL", "gpt-4o-mini")
        self.embed_timeout_seconds = float(os.getenv("EMBED_TIMEOUT_SECONDS", "20"))
        self.store_timeout_seconds = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))
        self.rerank_timeout_seconds = float(os.getenv("RERANK_TIMEOUT_SECONDS", "30"))
        self.cache_max_entries = int(os.getenv("CACHE_MAX_ENTRIES", "1024"))
        self.telemetry_capacity = int(os.getenv("TELEMETRY_CAPACITY", "200"))

    def get_secret(self, secret_name, required=True):
        try:
            retrieved_secret = self.secret_client.get_secret(secret_name)
            return retrieved_secret.value
        except Exception as e:
            if required:
                raise ValueError(f"Failed to retrieve secret '{secret_name}': {str(e)}")
            return None


settings = Settings()
