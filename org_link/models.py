"""Value types shared by the store, the clients and the workflow."""

from dataclasses import dataclass, field
from typing import Optional


@dataclass(frozen=True)
class Configuration:
    """API credential and organisation identifier for one run."""
    credential: str = field(repr=False)
    organisation_id: str


@dataclass(frozen=True)
class IdentityLinkage:
    """
    Pair of internal (directory) and external (organisation) identities.

    membership_state is the state reported by the organisation service after
    an invite, when one was issued.
    """
    internal_id: Optional[str]
    external_id: str
    membership_state: Optional[str] = None
