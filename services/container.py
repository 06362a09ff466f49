"""
Service container held on app.extensions so each app instance (and each
test) gets its own stores instead of module-level globals.
"""

from dataclasses import dataclass
from typing import Callable

from flask import current_app

from config.settings import Settings
from services.credential_codec import CredentialCodec, CredentialRecord
from services.item_registry import ItemRegistry
from services.link_state import LinkStateStore
from services.session_credentials import SessionCredentialStore
from services.webhook_ingestor import WebhookIngestor
from services.webhook_store import WebhookStore

EXTENSION_KEY = 'plaid_test_kit'


@dataclass
class ServiceContainer:
    settings: Settings
    codec: CredentialCodec
    credentials: SessionCredentialStore
    items: ItemRegistry
    webhooks: WebhookStore
    ingestor: WebhookIngestor
    link_state: LinkStateStore
    gateway_factory: Callable[[CredentialRecord], object]

    def gateway_for(self, record: CredentialRecord):
        """Plaid gateway bound to one caller's credentials."""
        return self.gateway_factory(record)


def get_services() -> ServiceContainer:
    """Services for the current app."""
    return current_app.extensions[EXTENSION_KEY]
