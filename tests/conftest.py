"""
Pytest fixtures for the intent relayer tests.
"""
import time

import pytest

from intent_relayer._rate_limited_log import reset_rate_limits
from intent_relayer.config import ChainConfig, DirectionConfig, GasLimits
from intent_relayer.ledger import JsonTransferLedger
from intent_relayer.models import Intent, TransferRecord
from intent_relayer.signer import LocalSigner
from intent_relayer.state import ProcessedSet, RelayStateStore

from test_helpers.fake_chain import FakeChain

# Test constants used throughout tests
TEST_PRIV_KEY = "0x0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
TEST_FINALIZER_KEY = "0x" + "11" * 32
SRC_CHAIN_ID = 11155111
DST_CHAIN_ID = 300
SRC_NAME = "sepolia"
DST_NAME = "zksync"
DIRECTION = f"{SRC_NAME}->{DST_NAME}"
INTENT_COMMITMENT = "0x1111111111111111111111111111111111111111"
MESSAGE_INBOX = "0x2222222222222222222222222222222222222222"
SETTLEMENT = "0x3333333333333333333333333333333333333333"
USER = "0x1234567890123456789012345678901234567890"
RECIPIENT = "0x2345678901234567890123456789012345678901"
NATIVE_TOKEN = "0x0000000000000000000000000000000000000000"
INTENT_HASH = "0x" + "ab" * 32


def make_intent(**overrides) -> Intent:
    fields = dict(
        intent_hash=INTENT_HASH,
        user=USER,
        src_chain_id=SRC_CHAIN_ID,
        dst_chain_id=DST_CHAIN_ID,
        token=NATIVE_TOKEN,
        amount=10**18,
        recipient=RECIPIENT,
        nonce=1,
        expiry=0,
    )
    fields.update(overrides)
    return Intent(**fields)


def make_record(tx_id: str = "tx-1", **overrides) -> TransferRecord:
    fields = dict(
        tx_id=tx_id,
        type="Bridge",
        from_addr=USER,
        intentHash=INTENT_HASH,
        bridgeStatus="PENDING",
        value="1",
    )
    fields.update(overrides)
    return TransferRecord(**fields)


def make_chain_config(name: str, chain_id: int, **overrides) -> ChainConfig:
    fields = dict(
        name=name,
        chain_id=chain_id,
        rpc_url=f"https://{name}.example.com",
        intent_commitment=INTENT_COMMITMENT,
        message_inbox=MESSAGE_INBOX,
        settlement=SETTLEMENT,
        gas_limits=GasLimits(),
    )
    fields.update(overrides)
    return ChainConfig(**fields)


def make_config_data(**overrides) -> dict:
    """Configuration mapping as parsed from TOML"""
    data = {
        "chains": {
            SRC_NAME: {
                "chain_id": SRC_CHAIN_ID,
                "rpc_url": "https://sepolia.example.com",
                "intent_commitment": INTENT_COMMITMENT,
                "message_inbox": MESSAGE_INBOX,
                "settlement": SETTLEMENT,
            },
            DST_NAME: {
                "chain_id": DST_CHAIN_ID,
                "rpc_url": "https://zksync.example.com",
                "intent_commitment": INTENT_COMMITMENT,
                "message_inbox": MESSAGE_INBOX,
                "settlement": SETTLEMENT,
            },
        },
        "directions": [
            {"source": SRC_NAME, "destination": DST_NAME, "required_confirmations": 3, "poll_interval": 15},
            {"source": DST_NAME, "destination": SRC_NAME, "required_confirmations": 1, "poll_interval": 5},
        ],
    }
    data.update(overrides)
    return data


# Make time.sleep instantaneous so retries don't slow the suite down
@pytest.fixture(autouse=True)
def _fast_sleep(monkeypatch):
    monkeypatch.setattr(time, "sleep", lambda *_a, **_kw: None)


@pytest.fixture(autouse=True)
def _reset_rate_limits():
    reset_rate_limits()
    yield
    reset_rate_limits()


@pytest.fixture
def state_store(tmp_path):
    return RelayStateStore(str(tmp_path / "state" / "state.json"))


@pytest.fixture
def ledger(tmp_path):
    return JsonTransferLedger(str(tmp_path / "state" / "ledger.json"))


@pytest.fixture
def processed(state_store):
    return ProcessedSet(state_store, DIRECTION)


@pytest.fixture
def tss_signer():
    return LocalSigner(TEST_PRIV_KEY)


@pytest.fixture
def finalizer_signer():
    return LocalSigner(TEST_FINALIZER_KEY)


@pytest.fixture
def source_config():
    return make_chain_config(SRC_NAME, SRC_CHAIN_ID)


@pytest.fixture
def destination_config():
    return make_chain_config(DST_NAME, DST_CHAIN_ID)


@pytest.fixture
def direction_config():
    return DirectionConfig(
        source=SRC_NAME,
        destination=DST_NAME,
        required_confirmations=3,
        poll_interval=15,
        confirmation_timeout=300,
        max_block_range=2000,
        start_block_lookback=10,
    )


@pytest.fixture
def source_chain():
    return FakeChain(chain_id=SRC_CHAIN_ID, name=SRC_NAME)


@pytest.fixture
def destination_chain(tss_signer):
    return FakeChain(chain_id=DST_CHAIN_ID, name=DST_NAME, attester=tss_signer.address)
