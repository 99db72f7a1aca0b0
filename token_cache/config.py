"""
Token cache configuration. Defaults come from the environment; constructor arguments override them.
No secrets in this file; the encryption key comes from env only.
"""
import os

# Storage adapter used by create_accessor(): "memory" or "sql"
BACKEND = os.environ.get("TOKEN_CACHE_BACKEND", "memory").strip().lower()

# SQLAlchemy URL for the "sql" backend. In-memory SQLite by default.
DATABASE_URL = os.environ.get("TOKEN_CACHE_DATABASE_URL", "sqlite:///:memory:")

# Fernet key (urlsafe base64, 32 bytes). When set, records are encrypted at rest.
ENCRYPTION_KEY = os.environ.get("TOKEN_CACHE_ENCRYPTION_KEY", "").strip() or None

# Access tokens enter the refresh-ahead window this many seconds before expiry
REFRESH_BUFFER_SECONDS = int(os.environ.get("TOKEN_CACHE_REFRESH_BUFFER_SECONDS", "300"))

# Keep deserialized records in process between mutations
READ_THROUGH = os.environ.get("TOKEN_CACHE_READ_THROUGH", "1").strip().lower() not in ("0", "false", "no", "off")
