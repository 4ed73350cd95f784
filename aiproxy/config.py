# aiproxy/config.py
from pydantic_settings import BaseSettings


def _csv_tuple(value: str) -> tuple[str, ...]:
    return tuple(x.strip() for x in value.split(",") if x.strip())


class Settings(BaseSettings):
    # Client -> proxy secret, sent by callers as X-Proxy-Token.
    proxy_token: str = ""                 # PROXY_TOKEN

    # Chat / embedding / parser upstreams share one bearer credential.
    assistant_api_key: str = ""           # ASSISTANT_API_KEY
    chat_endpoint: str = ""               # CHAT_ENDPOINT
    embedding_endpoint: str = ""          # EMBEDDING_ENDPOINT
    parser_endpoint: str = ""             # PARSER_ENDPOINT

    # Vector DB gateway (Qdrant-style REST API).
    vectordb_endpoint: str = ""           # VECTORDB_ENDPOINT  (base URL)
    vectordb_api_key: str = ""            # VECTORDB_API_KEY
    # VECTORDB_ALLOWED_PREFIXES=/collections,/health
    vectordb_allowed_prefixes: str = "/collections,/health"

    # Timeouts (seconds)
    proxy_timeout: float = 120.0          # PROXY_TIMEOUT
    upload_timeout: float = 300.0         # UPLOAD_TIMEOUT  (large documents)
    stream_connect_timeout: float = 15.0  # STREAM_CONNECT_TIMEOUT

    upload_max_bytes: int = 50 * 1024 * 1024  # UPLOAD_MAX_BYTES (50 MB)

    @property
    def vectordb_prefixes(self) -> tuple[str, ...]:
        return _csv_tuple(self.vectordb_allowed_prefixes)

    model_config = {"env_file": ".env", "case_sensitive": False, "frozen": True}


def get_settings() -> Settings:
    """Read a fresh, immutable configuration snapshot for one request."""
    return Settings()
