import pathlib
import sys

import pytest


# Ensure repo root is on PYTHONPATH for direct package imports (e.g. `import keyvault`).
_REPO_ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(_REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(_REPO_ROOT))


@pytest.fixture(autouse=True)
def _fresh_config():
    from keyvault.config import get_config_manager

    get_config_manager().reset()
    yield
    get_config_manager().reset()


@pytest.fixture
def ledger():
    from keyvault.ledger import Ledger
    from keyvault.processor import install

    lg = Ledger()
    install(lg)
    return lg


def _funded_client(ledger, label: str, lamports: int = 10_000_000_000):
    from keyvault.address import Keypair
    from keyvault.client import VaultClient

    kp = Keypair.from_label(label)
    ledger.airdrop(kp.pubkey, lamports)
    return VaultClient(ledger, kp)


@pytest.fixture
def alice(ledger):
    return _funded_client(ledger, "alice")


@pytest.fixture
def bob(ledger):
    return _funded_client(ledger, "bob")


@pytest.fixture
def make_credential():
    from keyvault.state import Credential

    def _make(tag: str) -> Credential:
        return Credential(
            field=f"field:{tag}".encode().ljust(32, b"\x00"),
            passkey=f"passkey:{tag}".encode().ljust(32, b"\x00"),
        )

    return _make
