from __future__ import annotations

import logging
import os

from riskgate.ports.secrets_provider import SecretsProvider

_LOGGER = logging.getLogger(__name__)


class MissingSecretError(ValueError):
    """
    Raised when a logical secret cannot be resolved from the environment.
    """

    def __init__(self, secret_name: str) -> None:
        super().__init__(secret_name)
        self.secret_name = secret_name

    def __str__(self) -> str:
        return f"Secret '{self.secret_name}' is unavailable"


class EnvSecretsProvider(SecretsProvider):
    def __init__(
        self,
        prefix: str = "APCA_API_",
        allowed: dict[str, str] | None = None,
    ) -> None:
        """
        Map logical secret names to environment variables `<prefix><suffix>`.
        Defaults resolve the Alpaca key pair from APCA_API_KEY_ID / APCA_API_SECRET_KEY.
        """

        if not prefix:
            raise ValueError("Environment prefix must be a non-empty string")
        self._prefix = prefix
        base_allowed: dict[str, str] = {
            "key_id": "KEY_ID",
            "secret_key": "SECRET_KEY",
        }
        if allowed:
            base_allowed.update(allowed)
        self._allowed = base_allowed

    def get(self, secret_name: str) -> str:
        """Resolve a logical secret name to a concrete environment variable value."""

        if secret_name not in self._allowed:
            raise MissingSecretError(secret_name)

        env_var = f"{self._prefix}{self._allowed[secret_name]}"
        try:
            value = os.environ[env_var]
        except KeyError as exc:
            raise MissingSecretError(secret_name) from exc

        _LOGGER.debug(
            "secret_resolved",
            extra={
                "event": "secret_resolved",
                "secret_name": secret_name,
                "source": "env",
            },
        )
        return value

    def get_optional(self, secret_name: str) -> str | None:
        try:
            return self.get(secret_name)
        except MissingSecretError:
            return None
