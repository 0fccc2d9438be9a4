"""
Directory service.

Client list for the console: every known WhatsApp user, whether they came from
the contact book, a live conversation or the archive.
"""

from typing import Any, Dict, List

from zapdesk.repositories.directory_repo import DirectoryRepository, display_number, is_person_jid
from zapdesk.repositories.session_registry import SessionRegistry


class DirectoryService:

    def __init__(self, directory: DirectoryRepository, registry: SessionRegistry):
        self.directory = directory
        self.registry = registry

    def list_clients(self) -> List[Dict[str, Any]]:
        names: Dict[str, str] = {}
        for user_id, name in self.registry.known_user_names().items():
            if name:
                names[user_id] = name
        # The contact book wins over names seen in conversations
        for contact in self.directory.list_contacts():
            names[contact.user_id] = contact.user_name
        for user_id in self.registry.known_user_names():
            names.setdefault(user_id, display_number(user_id))

        clients = [
            {"userId": user_id, "userName": name, "tags": self.directory.tags_for(user_id)}
            for user_id, name in names.items()
            if is_person_jid(user_id)
        ]
        clients.sort(key=lambda c: c["userName"].casefold())
        return clients
