"""
Linkage workflow for org-link.

Ties a directory identity to an organisation membership. Each operation is a
single request/response cycle; the workflow holds no state between calls
beyond the injected configuration and clients.
"""

import logging
from typing import List, Optional, Tuple

from org_link.directory import DirectoryAttributeClient
from org_link.errors import InputError, UnresolvedIdentity
from org_link.models import Configuration, IdentityLinkage
from org_link.organisation import OrganisationMembershipClient

logger = logging.getLogger(__name__)


class LinkageWorkflow:
    """
    Orchestrates Add, Remove and List across the directory and the organisation.

    Add invites before writing the directory attribute, so a failure of the
    second step leaves an invited user without a linkage, which is logged and
    can be repaired by re-running Add.
    """

    def __init__(self, configuration: Configuration,
                 directory: Optional[DirectoryAttributeClient],
                 organisation: OrganisationMembershipClient,
                 clear_attribute_on_remove: bool = False,
                 enforce_unique_linkage: bool = False):
        """
        Args:
            configuration: Credential and organisation for this run
            directory: Directory client (may be None for List only)
            organisation: Organisation API client
            clear_attribute_on_remove: Clear the linkage attribute after Remove
            enforce_unique_linkage: Refuse Add when another identity holds the external id
        """
        self.configuration = configuration
        self.directory = directory
        self.organisation = organisation
        self.clear_attribute_on_remove = clear_attribute_on_remove
        self.enforce_unique_linkage = enforce_unique_linkage

    def add(self, internal_id: str, external_id: str) -> IdentityLinkage:
        """
        Invite external_id to the organisation and link it to internal_id.

        Returns:
            The stored linkage with the membership state reported by the service

        Raises:
            InputError: If an identifier is missing, or the external id is
                already linked elsewhere while uniqueness is enforced
            NotFound: If internal_id is not a directory user; nothing is invited
        """
        internal_id = _clean(internal_id)
        external_id = _clean(external_id)
        if not internal_id or not external_id:
            raise InputError("Both an internal id and an external id are required")

        # raises NotFound for an unknown user before anyone is invited
        current = self.directory.get_external_id(internal_id)
        if current and current != external_id:
            logger.info(f"Replacing linkage of '{internal_id}': '{current}' -> '{external_id}'")

        if self.enforce_unique_linkage:
            others = [i for i in self.directory.find_internal_ids(external_id) if i.lower() != internal_id.lower()]
            if others:
                raise InputError(
                    f"External id '{external_id}' is already linked to: {', '.join(sorted(others))}"
                )

        organisation_id = self.configuration.organisation_id
        state = self.organisation.invite_member(organisation_id, external_id)

        try:
            self.directory.set_external_id(internal_id, external_id)
        except Exception:
            logger.error(
                f"'{external_id}' was invited to '{organisation_id}' but the linkage attribute "
                f"of '{internal_id}' could not be written; re-run add to repair"
            )
            raise

        logger.info(f"Linked '{internal_id}' to '{external_id}' in '{organisation_id}'")
        return IdentityLinkage(internal_id=internal_id, external_id=external_id, membership_state=state)

    def remove(self, internal_id: Optional[str] = None, external_id: Optional[str] = None) -> IdentityLinkage:
        """
        Remove a membership, identified by exactly one of the two identities.

        Raises:
            InputError: If both or neither identifier is supplied
            NotFound: If internal_id is not a directory user
            UnresolvedIdentity: If internal_id has no stored external id
        """
        internal_id, external_id = single_identity(internal_id, external_id)

        if internal_id:
            external_id = self.directory.get_external_id(internal_id)
            if not external_id:
                raise UnresolvedIdentity(f"Directory user '{internal_id}' has no linked external id")
            logger.debug(f"Resolved '{internal_id}' to external id '{external_id}'")

        organisation_id = self.configuration.organisation_id
        self.organisation.remove_member(organisation_id, external_id)

        if self.clear_attribute_on_remove:
            if internal_id:
                self.directory.clear_external_id(internal_id)
            else:
                for linked_id in self.directory.find_internal_ids(external_id):
                    self.directory.clear_external_id(linked_id)

        logger.info(f"Removed '{external_id}' from '{organisation_id}'")
        return IdentityLinkage(internal_id=internal_id, external_id=external_id)

    def list_members(self) -> List[str]:
        """Return the organisation's member usernames as the service lists them."""
        return self.organisation.list_members(self.configuration.organisation_id)


def single_identity(internal_id: Optional[str],
                    external_id: Optional[str]) -> Tuple[Optional[str], Optional[str]]:
    """
    Normalise a Remove target, exactly one of whose identifiers must be given.

    Returns:
        The stripped identifiers, the absent one as None

    Raises:
        InputError: If both or neither identifier is supplied
    """
    internal_id = _clean(internal_id)
    external_id = _clean(external_id)
    if bool(internal_id) == bool(external_id):
        raise InputError("Exactly one of internal id or external id must be supplied")
    return internal_id, external_id


def _clean(value: Optional[str]) -> Optional[str]:
    if value is None:
        return None
    return value.strip() or None
