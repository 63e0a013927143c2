"""Identity consolidation.

Given an (email, phoneNumber) submission, find the identity cluster it
belongs to, merge clusters the submission proves to be the same person,
record any new contact point, and return the consolidated view.
"""

import logging
from typing import Dict, List, Optional

from contact_store import ContactStore
from contact_validator import ValidationFailure, validate_identify_request
from db_models import ConsolidatedIdentity, Contact, LinkPrecedence
from exceptions import ConsistencyError, InvalidRequest

logger = logging.getLogger(__name__)


class IdentityResolver:
    def __init__(self, store: ContactStore):
        self.store = store

    def identify(
        self, email: Optional[str] = None, phone_number: Optional[str] = None
    ) -> ConsolidatedIdentity:
        """Resolve a submission to its consolidated identity.

        Raises:
            InvalidRequest: no identifier supplied, or one is malformed.
            ConsistencyError: a stored secondary does not link to a primary.
            StoreUnavailable: the store failed.
        """
        result = validate_identify_request(email, phone_number)
        if isinstance(result, ValidationFailure):
            raise InvalidRequest(result.message, field=result.field)
        email, phone_number = result.email, result.phoneNumber

        logger.info(
            "Processing contact identification",
            extra={"has_email": bool(email), "has_phone": bool(phone_number)},
        )

        with self.store.atomic():
            matches = self.store.find_by_email_or_phone(email, phone_number)
            if not matches:
                return self._create_primary(email, phone_number)

            primary = self._consolidate(matches)
            cluster = self.store.find_cluster(primary.id)
            identity = self._build_identity(primary, cluster, email, phone_number)

        logger.info(
            "Contact identification completed",
            extra={
                "primary_contact_id": identity.primaryContactId,
                "email_count": len(identity.emails),
                "phone_count": len(identity.phoneNumbers),
                "secondary_count": len(identity.secondaryContactIds),
            },
        )
        return identity

    def _create_primary(self, email, phone_number) -> ConsolidatedIdentity:
        contact = self.store.create(email, phone_number, LinkPrecedence.PRIMARY)
        logger.info("Created new primary contact", extra={"contact_id": contact.id})
        return ConsolidatedIdentity(
            primaryContactId=contact.id,
            emails=[email] if email else [],
            phoneNumbers=[phone_number] if phone_number else [],
            secondaryContactIds=[],
        )

    def _primary_of(self, contact: Contact, cache: Dict[int, Contact]) -> Contact:
        """The primary governing ``contact``; links are one hop."""
        if contact.is_primary:
            return contact

        if contact.linkedId is None:
            raise ConsistencyError(f"Secondary contact {contact.id} has no linkedId")

        primary = cache.get(contact.linkedId)
        if primary is None:
            primary = self.store.get(contact.linkedId)
        if primary is None:
            raise ConsistencyError(
                f"Secondary contact {contact.id} links to missing contact {contact.linkedId}"
            )
        if not primary.is_primary:
            raise ConsistencyError(
                f"Secondary contact {contact.id} links to non-primary contact {primary.id}"
            )
        return primary

    def _consolidate(self, matches: List[Contact]) -> Contact:
        """Merge every cluster touched by ``matches`` under the most senior primary."""
        cache = {c.id: c for c in matches if c.is_primary}
        primaries: Dict[int, Contact] = {}
        for contact in matches:
            primary = self._primary_of(contact, cache)
            cache[primary.id] = primary
            primaries[primary.id] = primary

        ordered = sorted(primaries.values(), key=Contact.seniority)
        survivor, younger = ordered[0], ordered[1:]
        if not younger:
            return survivor

        logger.info(
            "Consolidating primary contacts",
            extra={"primary_contact_id": survivor.id, "count": len(ordered)},
        )

        # Re-link the demoted clusters' own secondaries too, so no secondary
        # ever points at another secondary.
        demoted = []
        for primary in younger:
            demoted.extend(c.id for c in self.store.find_cluster(primary.id))
        self.store.demote_to_secondary(demoted, survivor.id)
        return survivor

    def _build_identity(
        self,
        primary: Contact,
        cluster: List[Contact],
        email: Optional[str],
        phone_number: Optional[str],
    ) -> ConsolidatedIdentity:
        if not cluster or cluster[0].id != primary.id:
            raise ConsistencyError(f"Primary contact {primary.id} could not be loaded")

        # dicts keep first-seen order
        emails = {}
        phone_numbers = {}
        secondary_ids = []
        for contact in cluster:
            if contact.email:
                emails[contact.email] = None
            if contact.phoneNumber:
                phone_numbers[contact.phoneNumber] = None
            if contact.linkPrecedence == LinkPrecedence.SECONDARY:
                secondary_ids.append(contact.id)

        is_email_new = bool(email) and email not in emails
        is_phone_new = bool(phone_number) and phone_number not in phone_numbers
        if is_email_new or is_phone_new:
            secondary = self.store.create(
                email, phone_number, LinkPrecedence.SECONDARY, linked_id=primary.id
            )
            logger.info(
                "Created new secondary contact",
                extra={
                    "contact_id": secondary.id,
                    "primary_contact_id": primary.id,
                    "is_email_new": is_email_new,
                    "is_phone_new": is_phone_new,
                },
            )
            secondary_ids.append(secondary.id)
            if email:
                emails[email] = None
            if phone_number:
                phone_numbers[phone_number] = None

        return ConsolidatedIdentity(
            primaryContactId=primary.id,
            emails=_primary_first(primary.email, emails),
            phoneNumbers=_primary_first(primary.phoneNumber, phone_numbers),
            secondaryContactIds=secondary_ids,
        )


def _primary_first(own: Optional[str], values) -> List[str]:
    ordered = [own] if own else []
    ordered.extend(v for v in values if v != own)
    return ordered
