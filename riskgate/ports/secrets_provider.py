"""SecretsProvider Port Interface.

Contract: Retrieve secret material by logical name; no persistence here.
"""

from __future__ import annotations

from typing import Protocol


class SecretsProvider(Protocol):
    def get(self, secret_name: str) -> str: ...

    """
    Retrieve a secret value using its logical name.
    Keeps broker credentials out of code and out of config files.
    """
