from __future__ import annotations

from enum import StrEnum


class DeploymentKind(StrEnum):
    """
    Sections of the persisted deployment history.

    The value is the JSON key of the section in the history file.
    """

    CLAIM_ISSUER = "claimIssuers"
    ID_FACTORY = "idFactories"
    IDENTITY = "identities"
    TOKEN = "tokens"
    TREX_FACTORY = "trexFactories"
    TRANSFER_MANAGER = "transferManagers"

    @property
    def is_list(self) -> bool:
        return self in (DeploymentKind.CLAIM_ISSUER, DeploymentKind.ID_FACTORY, DeploymentKind.IDENTITY)
