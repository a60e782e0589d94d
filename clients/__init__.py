# Infrastructure clients
from clients.valkey_client import ValkeyClient
from clients.storage import (
    StorageBackend,
    MemoryStorage,
    FileStorage,
    ValkeyStorage,
    create_storage,
)
