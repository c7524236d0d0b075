"""Control-plane abstraction.

Stages talk to Azure through this small resource-oriented interface so the
same convergence logic runs against ARM or against the in-process
:class:`~azext_hcimigrate.controlplane.local.LocalControlPlane`.
"""

from __future__ import annotations

from abc import ABC, abstractmethod

from azext_hcimigrate.errors import NotFoundError


class ControlPlane(ABC):
    """Get/put/delete/list of ARM-shaped resources addressed by resource ID.

    Resources are plain dicts with ``id``, ``name``, ``type`` and
    ``properties`` (and optionally ``location`` and ``tags``).
    """

    name: str = "base"

    @abstractmethod
    def get(self, resource_id: str) -> dict:
        """Return the resource or raise :class:`NotFoundError`."""

    @abstractmethod
    def put(self, resource_id: str, body: dict) -> dict:
        """Create or replace the resource and return it once provisioning settles."""

    @abstractmethod
    def delete(self, resource_id: str) -> None:
        """Delete the resource.  Deleting a missing resource is not an error."""

    @abstractmethod
    def list(self, collection_id: str) -> list[dict]:
        """Return every resource under *collection_id* (e.g. ``{vault}/protectedItems``)."""

    def find(self, resource_id: str) -> dict | None:
        """Like :meth:`get` but returns ``None`` for a missing resource."""
        try:
            return self.get(resource_id)
        except NotFoundError:
            return None

    def exists(self, resource_id: str) -> bool:
        return self.find(resource_id) is not None
