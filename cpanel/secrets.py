"""
Secret loader for bot and OAuth credentials

Lookup order:
1. Docker secrets (/run/secrets/<secret_name>)
2. File named by the <SECRET_NAME>_FILE environment variable
3. <SECRET_NAME> environment variable
4. Default value

Example:
    bot_token: str = Field(
        default_factory=lambda: load_secret("bot_token", default="")
    )
"""
import os
from pathlib import Path
from typing import Optional
import structlog

logger = structlog.get_logger(__name__)

SECRETS_DIR = Path("/run/secrets")


def _read_secret_file(path: Path, secret_name: str, source: str) -> Optional[str]:
    try:
        value = path.read_text().strip()
    except OSError as e:
        logger.error("secret_read_error", secret_name=secret_name, path=str(path), error=str(e))
        return None
    logger.debug("secret_loaded", secret_name=secret_name, source=source)
    return value


def load_secret(
    secret_name: str,
    default: Optional[str] = None,
    required: bool = False
) -> Optional[str]:
    """
    Load a secret from Docker secrets, a file, or the environment

    Args:
        secret_name: Name of the secret (e.g., "bot_token")
        default: Value used when the secret is not found anywhere
        required: Raise ValueError when nothing is found and no default is given

    Raises:
        ValueError: If required and the secret is missing
        FileNotFoundError: If <NAME>_FILE points to a missing file
    """
    name = secret_name.lower().replace("-", "_")
    env_name = name.upper()

    docker_path = SECRETS_DIR / name
    if docker_path.exists():
        value = _read_secret_file(docker_path, name, "docker_secret")
        if value is not None:
            return value

    file_var = f"{env_name}_FILE"
    file_path = os.getenv(file_var)
    if file_path:
        path = Path(file_path)
        if not path.exists():
            raise FileNotFoundError(f"Secret file specified by {file_var}={file_path} does not exist")
        value = _read_secret_file(path, name, "env_file")
        if value is not None:
            return value

    env_value = os.getenv(env_name)
    if env_value:
        logger.debug("secret_loaded", secret_name=name, source="env_var")
        return env_value

    if default is not None:
        return default

    if required:
        raise ValueError(f"Required secret '{name}' not found")

    return None
