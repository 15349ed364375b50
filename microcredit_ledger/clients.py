"""
Client Directory Module

Read-only lookup of borrowers by id, used for notification text and risk
reporting. Client onboarding lives outside the ledger.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Dict, Optional, Iterable

from .storage import StorageInterface


@dataclass
class Client:
    """Borrower contact details"""
    id: str
    name: str
    phone: Optional[str] = None
    email: Optional[str] = None


class ClientDirectory(ABC):
    """Abstract client lookup"""

    @abstractmethod
    def get_client(self, client_id: str) -> Optional[Client]:
        pass

    def display_name(self, client_id: str) -> str:
        """Client name, or the id when the client is unknown"""
        client = self.get_client(client_id)
        return client.name if client else client_id


class InMemoryClientDirectory(ClientDirectory):
    """Directory backed by a dict"""

    def __init__(self, clients: Optional[Iterable[Client]] = None):
        self._clients: Dict[str, Client] = {c.id: c for c in (clients or [])}

    def add(self, client: Client) -> None:
        self._clients[client.id] = client

    def get_client(self, client_id: str) -> Optional[Client]:
        return self._clients.get(client_id)


class StorageClientDirectory(ClientDirectory):
    """Directory reading the clients table maintained by the onboarding system"""

    def __init__(self, storage: StorageInterface, table: str = "clients"):
        self.storage = storage
        self.table = table

    def get_client(self, client_id: str) -> Optional[Client]:
        data = self.storage.load(self.table, client_id)
        if not data:
            return None
        return Client(
            id=data.get('id', client_id),
            name=data.get('name', client_id),
            phone=data.get('phone'),
            email=data.get('email')
        )
