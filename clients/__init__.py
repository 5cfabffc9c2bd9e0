# Infrastructure clients
from clients.vault_client import (
    VaultClient,
    VaultError,
    get_database_url,
    get_valkey_url,
    get_identity_config,
    get_payment_config,
)
from clients.postgres_client import PostgresClient
from clients.valkey_client import ValkeyClient
from clients.identity_client import IdentityProviderClient, IdentityProviderError
from clients.backend_client import BackendClient, BackendError
from clients.payment_client import PaymentClient, PaymentProcessorError, WebhookSignatureError
