"""
ABI fragments for the bridge contracts the relay talks to.
"""
from typing import Any, Dict, List

from web3 import Web3

INTENT_COMMITTED_EVENT = "IntentCommitted"

# IntentCommitment contract on the source chain
INTENT_COMMITMENT_ABI: List[Dict[str, Any]] = [
    {
        "anonymous": False,
        "inputs": [
            {"indexed": True, "internalType": "bytes32", "name": "intentHash", "type": "bytes32"},
            {"indexed": True, "internalType": "address", "name": "user", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "srcChainId", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "dstChainId", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "token", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "amount", "type": "uint256"},
            {"indexed": False, "internalType": "address", "name": "recipient", "type": "address"},
            {"indexed": False, "internalType": "uint256", "name": "nonce", "type": "uint256"},
            {"indexed": False, "internalType": "uint256", "name": "expiry", "type": "uint256"},
        ],
        "name": INTENT_COMMITTED_EVENT,
        "type": "event",
    },
]

# MessageInbox contract on the destination chain
MESSAGE_INBOX_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [
            {"internalType": "uint256", "name": "srcChainId", "type": "uint256"},
            {"internalType": "uint256", "name": "dstChainId", "type": "uint256"},
            {"internalType": "address", "name": "token", "type": "address"},
            {"internalType": "uint256", "name": "amount", "type": "uint256"},
            {"internalType": "address", "name": "recipient", "type": "address"},
            {"internalType": "bytes32", "name": "intentHash", "type": "bytes32"},
            {"internalType": "bytes", "name": "tssSignature", "type": "bytes"},
        ],
        "name": "submitPending",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "nonpayable",
        "type": "function",
    },
    {
        "inputs": [],
        "name": "getPendingCount",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "uint256", "name": "index", "type": "uint256"}],
        "name": "pendingMessages",
        "outputs": [{"internalType": "bytes32", "name": "", "type": "bytes32"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "messageHash", "type": "bytes32"}],
        "name": "getMessage",
        "outputs": [
            {
                "components": [
                    {"internalType": "uint256", "name": "srcChainId", "type": "uint256"},
                    {"internalType": "uint256", "name": "dstChainId", "type": "uint256"},
                    {"internalType": "address", "name": "token", "type": "address"},
                    {"internalType": "uint256", "name": "amount", "type": "uint256"},
                    {"internalType": "address", "name": "recipient", "type": "address"},
                    {"internalType": "bytes32", "name": "intentHash", "type": "bytes32"},
                    {"internalType": "uint256", "name": "submittedAt", "type": "uint256"},
                    {"internalType": "uint256", "name": "challengePeriodEnd", "type": "uint256"},
                    {"internalType": "uint8", "name": "state", "type": "uint8"},
                    {"internalType": "address", "name": "challenger", "type": "address"},
                    {"internalType": "bytes32", "name": "challengeId", "type": "bytes32"},
                ],
                "internalType": "struct MessageInbox.Message",
                "name": "",
                "type": "tuple",
            }
        ],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "messageHash", "type": "bytes32"}],
        "name": "getTimeRemaining",
        "outputs": [{"internalType": "uint256", "name": "", "type": "uint256"}],
        "stateMutability": "view",
        "type": "function",
    },
    {
        "inputs": [{"internalType": "bytes32", "name": "messageHash", "type": "bytes32"}],
        "name": "finalize",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]

# Settlement (equalizer) contract on the destination chain
SETTLEMENT_ABI: List[Dict[str, Any]] = [
    {
        "inputs": [{"internalType": "bytes32", "name": "messageHash", "type": "bytes32"}],
        "name": "executeMint",
        "outputs": [],
        "stateMutability": "nonpayable",
        "type": "function",
    },
]


def event_signature(abi: List[Dict[str, Any]], event_name: str) -> str:
    """
    Build the canonical signature string of an event, e.g.
    ``IntentCommitted(bytes32,address,uint256,...)``.

    Raises:
        ValueError: If the event is not present in the ABI
    """
    for entry in abi:
        if entry.get("type") == "event" and entry.get("name") == event_name:
            types = ",".join(item["type"] for item in entry["inputs"])
            return f"{event_name}({types})"
    raise ValueError(f"Event {event_name} not found in ABI")


def event_topic(abi: List[Dict[str, Any]], event_name: str) -> str:
    """Topic 0 (keccak of the event signature) as a 0x-prefixed hex string"""
    return "0x" + bytes(Web3.keccak(text=event_signature(abi, event_name))).hex()
