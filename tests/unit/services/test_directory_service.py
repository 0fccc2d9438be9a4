"""
Tests for DirectoryService.list_clients.
"""

from zapdesk.services.directory_service import DirectoryService


ANA = "5511999990010@s.whatsapp.net"
BRUNO = "5511999990011@s.whatsapp.net"
CARLA = "5511999990012@s.whatsapp.net"
GROUP = "120363000000@g.us"


class TestListClients:

    def test_merges_contacts_live_and_archived_users(self, directory, registry):
        """
        Test that every known person shows up once, sorted by name.

        Protects against: Broadcast lists missing users who only ever chatted.
        """
        directory.record_contact(ANA, address_book_name="Ana")
        registry.get_or_create(BRUNO, "bruno")
        registry.get_or_create(CARLA)
        registry.close_bot_session(CARLA, "user")
        registry.get_or_create(GROUP, "Grupo")

        clients = DirectoryService(directory, registry).list_clients()

        assert [(c["userId"], c["userName"]) for c in clients] == [
            ("5511999990012@s.whatsapp.net", "+5511999990012"),
            (ANA, "Ana"),
            (BRUNO, "bruno"),
        ]

    def test_contact_book_name_wins(self, directory, registry):
        registry.get_or_create(ANA, "ana 🌸")
        directory.record_contact(ANA, address_book_name="Ana Souza")

        clients = DirectoryService(directory, registry).list_clients()

        assert clients == [{"userId": ANA, "userName": "Ana Souza", "tags": []}]

    def test_tags_are_listed(self, directory, registry):
        directory.record_contact(ANA, push_name="Ana")
        tag = directory.create_tag("VIP")
        directory.assign_tags([ANA], [tag.id])

        clients = DirectoryService(directory, registry).list_clients()

        assert clients[0]["tags"] == [tag.id]
