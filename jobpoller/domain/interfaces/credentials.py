"""Interface for credential resolution.

Defines the contract the HTTP layer relies on to obtain the value placed in
the Authorization header of every outbound request.
"""

import abc
from typing import Optional

from ..models.common import Credential


class CredentialSource(abc.ABC):
    """Abstract Base Class for anything able to hand out a bearer credential."""

    @abc.abstractmethod
    async def get_credential(self) -> Optional[Credential]:
        """Resolves the credential to attach to the next request.

        Returns:
            The credential, or None when requests must go out unauthenticated.
            Implementations must not raise on lookup failures.
        """
        pass
