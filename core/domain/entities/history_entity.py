from __future__ import annotations

from typing import Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict, Field

from core.domain.enums.history_enums import DeploymentKind
from core.services.exceptions import InputValidationError
from core.services.normalize import _norm, same_address


_SECTION_FIELDS = {
    DeploymentKind.CLAIM_ISSUER: "claim_issuers",
    DeploymentKind.ID_FACTORY: "id_factories",
    DeploymentKind.IDENTITY: "identities",
    DeploymentKind.TOKEN: "tokens",
    DeploymentKind.TREX_FACTORY: "trex_factories",
    DeploymentKind.TRANSFER_MANAGER: "transfer_managers",
}


class ChainInfo(BaseModel):
    id: int
    name: str
    url: str = ""

    model_config = ConfigDict(extra="ignore")


class DeploymentHistory(BaseModel):
    """
    Ledger of contracts created by previous commands on one chain.

    Conventions:
    - list sections keep deployment order and never hold duplicates.
    - map sections are last-write-wins per key (salt, purpose, identity owner).
    - nothing is ever removed implicitly.
    """

    chain: Optional[ChainInfo] = None

    claim_issuers: List[str] = Field(default_factory=list, alias="claimIssuers")
    id_factories: List[str] = Field(default_factory=list, alias="idFactories")
    identities: List[str] = Field(default_factory=list, alias="identities")
    tokens: Dict[str, str] = Field(default_factory=dict, alias="tokens")
    trex_factories: Dict[str, str] = Field(default_factory=dict, alias="trexFactories")
    transfer_managers: Dict[str, str] = Field(default_factory=dict, alias="transferManagers")

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    def _section(self, kind: DeploymentKind) -> Union[List[str], Dict[str, str]]:
        return getattr(self, _SECTION_FIELDS[DeploymentKind(kind)])

    def record(self, kind: DeploymentKind, key: Optional[str], address: str) -> bool:
        """
        Adds (or replaces) an entry. Returns False when the history already
        holds exactly this entry.
        """
        kind = DeploymentKind(kind)
        section = self._section(kind)
        if kind.is_list:
            if any(same_address(a, address) for a in section):
                return False
            section.append(address)
            return True

        k = _norm(key)
        if not k:
            raise InputValidationError(f"A key is required to record a {kind.value} entry")
        if section.get(k) == address:
            return False
        section[k] = address
        return True

    def lookup(self, kind: DeploymentKind, key: Union[str, int, None] = None) -> Optional[str]:
        """
        Map sections: entry for `key`.
        List sections: `key` is a position (negative counts from the end,
        None means the latest) or an address to look for.
        """
        kind = DeploymentKind(kind)
        section = self._section(kind)
        if kind.is_list:
            if not section:
                return None
            if key is None:
                return section[-1]
            if isinstance(key, int):
                try:
                    return section[key]
                except IndexError:
                    return None
            return next((a for a in section if same_address(a, key)), None)

        if key is None:
            return None
        return section.get(_norm(str(key)))

    def entries(self, kind: DeploymentKind) -> Union[List[str], Dict[str, str]]:
        section = self._section(kind)
        return list(section) if isinstance(section, list) else dict(section)

    def to_json(self) -> dict:
        """
        Snapshot with camelCase section names. Keys are sorted by the writer.
        """
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return data
