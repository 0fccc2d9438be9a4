"""
Directory repository.

Attendant registry, the WhatsApp contact book and contact tags, kept in memory
and written through to the persistent store.
"""

import re
from typing import Dict, Iterable, List, Optional

from zapdesk.models import Attendant, Contact, Tag
from zapdesk.repositories.collection_repo import PersistentStore
from zapdesk.utils.logger import logger


ATTENDANTS = "attendants"
CONTACTS = "contacts"
TAGS = "tags"
CONTACT_TAGS = "contact_tags"

DEFAULT_ATTENDANT = Attendant(id="attendant_1", name="Admin")


def is_person_jid(user_id: str) -> bool:
    """Groups and the status broadcast list are not conversations."""
    return bool(user_id) and not user_id.endswith("@g.us") and user_id != "status@broadcast"


def display_number(user_id: str) -> str:
    return f"+{user_id.split('@')[0]}"


class DirectoryRepository:
    """Repository for attendants, contacts and tags."""

    def __init__(self, store: PersistentStore):
        self.store = store
        self._attendants: Dict[str, Attendant] = {}
        self._contacts: Dict[str, Contact] = {}
        self._tags: Dict[str, Tag] = {}
        self._contact_tags: Dict[str, List[str]] = {}

    def restore(self) -> None:
        self._attendants = {a.id: a for a in map(Attendant.from_dict, self.store.load(ATTENDANTS, []))}
        self._contacts = {c.user_id: c for c in map(Contact.from_dict, self.store.load(CONTACTS, []))}
        self._tags = {t.id: t for t in map(Tag.from_dict, self.store.load(TAGS, []))}
        self._contact_tags = dict(self.store.load(CONTACT_TAGS, {}) or {})

        if not self._attendants:
            self._attendants[DEFAULT_ATTENDANT.id] = Attendant(DEFAULT_ATTENDANT.id, DEFAULT_ATTENDANT.name)
            self.store.save(ATTENDANTS, [a.to_dict() for a in self._attendants.values()])
            logger.info("Seeded default attendant")

    # ----- attendants -----

    def list_attendants(self) -> List[Attendant]:
        return list(self._attendants.values())

    def get_attendant(self, attendant_id: str) -> Optional[Attendant]:
        return self._attendants.get(attendant_id)

    def add_attendant(self, name: str) -> Attendant:
        numbers = [
            int(match.group(1))
            for match in (re.fullmatch(r"attendant_(\d+)", a.id) for a in self._attendants.values())
            if match
        ]
        attendant = Attendant(id=f"attendant_{max(numbers, default=0) + 1}", name=name)
        self._attendants[attendant.id] = attendant
        self.store.save(ATTENDANTS, [a.to_dict() for a in self._attendants.values()])
        logger.info(f"Registered attendant {attendant.id} ({name})")
        return attendant

    # ----- contacts -----

    def record_contact(
        self,
        user_id: str,
        push_name: Optional[str] = None,
        address_book_name: Optional[str] = None,
    ) -> Optional[Contact]:
        """
        Upsert a contact seen on the transport.

        Name priority: address-book name, then push name, then the number.
        An existing name is only replaced by an address-book name or when it
        was still the bare number.
        """
        if not is_person_jid(user_id):
            return None

        name = address_book_name or push_name or display_number(user_id)
        contact = self._contacts.get(user_id)

        if contact is None:
            contact = Contact(user_id=user_id, user_name=name)
            self._contacts[user_id] = contact
        elif address_book_name and contact.user_name != address_book_name:
            contact.user_name = address_book_name
        elif contact.user_name.startswith("+") and name != contact.user_name:
            contact.user_name = name
        else:
            return contact

        self.store.save(CONTACTS, [c.to_dict() for c in self._contacts.values()])
        return contact

    def list_contacts(self) -> List[Contact]:
        return list(self._contacts.values())

    # ----- tags -----

    def list_tags(self) -> List[Tag]:
        return list(self._tags.values())

    def create_tag(self, name: str, color: Optional[str] = None) -> Tag:
        numbers = [
            int(match.group(1))
            for match in (re.fullmatch(r"tag_(\d+)", t.id) for t in self._tags.values())
            if match
        ]
        tag = Tag(id=f"tag_{max(numbers, default=0) + 1}", name=name, color=color or "#888888")
        self._tags[tag.id] = tag
        self.store.save(TAGS, [t.to_dict() for t in self._tags.values()])
        return tag

    def delete_tag(self, tag_id: str) -> bool:
        if self._tags.pop(tag_id, None) is None:
            return False
        for user_id in list(self._contact_tags):
            remaining = [t for t in self._contact_tags[user_id] if t != tag_id]
            if remaining:
                self._contact_tags[user_id] = remaining
            else:
                del self._contact_tags[user_id]
        self.store.save(TAGS, [t.to_dict() for t in self._tags.values()])
        self.store.save(CONTACT_TAGS, self._contact_tags)
        return True

    def assign_tags(self, user_ids: Iterable[str], tag_ids: Iterable[str]) -> int:
        """Add known tags to every listed contact. Returns contacts changed."""
        tag_ids = [t for t in tag_ids if t in self._tags]
        changed = 0
        for user_id in user_ids:
            current = self._contact_tags.get(user_id, [])
            merged = current + [t for t in tag_ids if t not in current]
            if merged != current:
                self._contact_tags[user_id] = merged
                changed += 1
        if changed:
            self.store.save(CONTACT_TAGS, self._contact_tags)
        return changed

    def tags_for(self, user_id: str) -> List[str]:
        return list(self._contact_tags.get(user_id, []))
