import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from monoshelf.utils.paths import get_project_root

# Load .env file from project root
env_path = get_project_root() / ".env"
load_dotenv(env_path)

def _split_origins(value: Optional[str]) -> List[str]:
    if not value:
        return []
    return [origin.strip() for origin in value.split(",") if origin.strip()]

@dataclass
class Settings:
    """Runtime settings for the reader and the auth service."""
    auth_api_url: str = "http://localhost:4000"
    database_path: Path = Path("data/users.sqlite3")
    jwt_secret: Optional[str] = None
    token_ttl_hours: int = 24
    bcrypt_rounds: int = 10
    port: int = 4000
    reader_port: int = 8123
    host: str = "127.0.0.1"
    client_origins: List[str] = field(default_factory=list)
    session_file: Path = Path("~/.monoshelf/session.json")

    @classmethod
    def from_env(cls) -> 'Settings':
        return cls(
            auth_api_url=os.getenv("MONOSHELF_AUTH_URL", cls.auth_api_url),
            database_path=Path(os.getenv("DATABASE_PATH", str(cls.database_path))),
            jwt_secret=os.getenv("JWT_SECRET") or None,
            token_ttl_hours=int(os.getenv("TOKEN_TTL_HOURS", cls.token_ttl_hours)),
            bcrypt_rounds=int(os.getenv("BCRYPT_ROUNDS", cls.bcrypt_rounds)),
            port=int(os.getenv("PORT", cls.port)),
            reader_port=int(os.getenv("READER_PORT", cls.reader_port)),
            host=os.getenv("HOST", cls.host),
            client_origins=_split_origins(os.getenv("CLIENT_ORIGIN")),
            session_file=Path(os.getenv("MONOSHELF_SESSION_FILE", str(cls.session_file))).expanduser(),
        )

    def require_secret(self) -> str:
        """The auth service cannot sign tokens without a secret."""
        if not self.jwt_secret:
            raise ValueError("JWT_SECRET environment variable is not set")
        return self.jwt_secret
