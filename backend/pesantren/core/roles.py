from enum import Enum
from typing import Dict, FrozenSet


class Role(str, Enum):
    ADMIN = "admin"
    USTAD = "ustad"
    ORANGTUA = "orangtua"
    SANTRI = "santri"


# Who may open a chat with whom. Every Role must have an entry.
# santri accounts are never reachable for chat.
CHAT_PARTNERS: Dict[Role, FrozenSet[Role]] = {
    Role.ADMIN: frozenset({Role.USTAD, Role.ORANGTUA}),
    Role.USTAD: frozenset({Role.ADMIN, Role.ORANGTUA}),
    Role.ORANGTUA: frozenset({Role.ADMIN, Role.USTAD}),
    Role.SANTRI: frozenset(),
}


def can_chat(role_a: Role, role_b: Role) -> bool:
    """Pairing rule: ustad<->orangtua, admin<->(ustad|orangtua)."""
    return Role(role_b) in CHAT_PARTNERS[Role(role_a)]


def chat_partner_roles(role: Role) -> FrozenSet[Role]:
    return CHAT_PARTNERS[Role(role)]
