"""
ChainClient - thin RPC facade over one chain.

Reads logs and contract state, submits signed transactions and waits for
their receipts. Every failure leaving this module is one of the relay's
ChainError classes, classified by ``exceptions.classify_error``.
"""
import logging
import threading
from typing import Any, Dict, List, Optional, Sequence, Tuple

import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry
from web3 import Web3
from web3.exceptions import ContractLogicError, TimeExhausted
from web3.types import TxReceipt as Web3TxReceipt

from .abi import event_topic
from .exceptions import (
    ChainConnectionError, ErrorKind, TransactionRevertedError,
    TransientChainError, TransientNetworkError, classify_error, wrap_error
)
from .models import LogEntry, TxReceipt, normalize_address
from .scheduler import backoff_delay, retry_transient, sleep
from .signer import Signer, raw_transaction
from .version import user_agent

logger = logging.getLogger(__name__)


def _to_hex(value: Any) -> Any:
    if isinstance(value, (bytes, bytearray)):
        return "0x" + bytes(value).hex()
    return value


class ChainClient:
    """
    RPC client for a single chain.

    Network failures on reads are retried with backoff. ``send`` retries
    transient chain failures (nonce conflicts, underpriced replacements)
    with a fresh nonce and a bumped gas price.
    """

    def __init__(
        self,
        rpc_url: str,
        chain_id: Optional[int] = None,
        name: Optional[str] = None,
        timeout: int = 30,
        retry_count: int = 3,
        receipt_timeout: int = 120,
        send_retries: int = 3,
        default_gas: int = 500_000,
        poll_latency: float = 1.0,
        stop_event: Optional[threading.Event] = None,
    ):
        """
        Initialize the ChainClient

        Args:
            rpc_url: JSON-RPC endpoint URL
            chain_id: Expected chain id, checked by ``check_connection``
            name: Human-readable chain name for log lines
            timeout: Timeout for RPC requests in seconds
            retry_count: Number of retries for RPC requests
            receipt_timeout: Default time to wait for a receipt in seconds
            send_retries: Attempts per ``send`` on transient chain errors
            default_gas: Gas limit used when estimation fails for a non-revert reason
            poll_latency: Receipt polling interval in seconds
            stop_event: Shutdown event; aborts backoff waits
        """
        self.rpc_url = rpc_url
        self.chain_id = chain_id
        self.name = name or (str(chain_id) if chain_id is not None else rpc_url)
        self.retry_count = retry_count
        self.receipt_timeout = receipt_timeout
        self.send_retries = send_retries
        self.default_gas = default_gas
        self.poll_latency = poll_latency
        self.stop_event = stop_event

        # Setup HTTP session with retries
        self.session = requests.Session()
        retries = Retry(
            total=retry_count,
            backoff_factor=0.5,
            status_forcelist=[429, 500, 502, 503, 504],
            allowed_methods=["POST"],
            raise_on_status=False,
            connect=retry_count,
            read=retry_count,
            other=retry_count
        )
        self.session.mount("http://", HTTPAdapter(max_retries=retries))
        self.session.mount("https://", HTTPAdapter(max_retries=retries))

        headers = {"Content-Type": "application/json", "User-Agent": user_agent()}
        self.w3 = Web3(Web3.HTTPProvider(
            rpc_url, request_kwargs={"timeout": timeout, "headers": headers}, session=self.session
        ))
        self._contracts: Dict[Tuple[str, int], Any] = {}

    def __repr__(self) -> str:
        return f"ChainClient(name={self.name}, chain_id={self.chain_id})"

    def _contract(self, address: str, abi: List[Dict[str, Any]]):
        address = normalize_address(address)
        key = (address, id(abi))
        if key not in self._contracts:
            self._contracts[key] = self.w3.eth.contract(address=address, abi=abi)
        return self._contracts[key]

    def _read(self, fn, description: str):
        return retry_transient(
            fn,
            f"[{self.name}] {description}",
            attempts=self.retry_count + 1,
            stop_event=self.stop_event,
        )

    def check_connection(self, expected_chain_id: Optional[int] = None) -> int:
        """
        Verify the endpoint is reachable and serves the expected chain.

        Returns:
            The chain id reported by the node

        Raises:
            ChainConnectionError: If the node is unreachable or on another chain
        """
        expected = expected_chain_id if expected_chain_id is not None else self.chain_id
        try:
            actual = int(self.w3.eth.chain_id)
        except Exception as e:
            raise ChainConnectionError(f"RPC endpoint for {self.name} is unreachable: {e}") from e
        if expected is not None and actual != expected:
            raise ChainConnectionError(
                f"RPC endpoint for {self.name} serves chain id {actual}, expected {expected}"
            )
        logger.info(f"Connected to {self.name} (chain id {actual})")
        return actual

    def get_block_number(self) -> int:
        return int(self._read(lambda: self.w3.eth.block_number, "eth_blockNumber"))

    def get_balance(self, address: str) -> int:
        address = normalize_address(address)
        return int(self._read(lambda: self.w3.eth.get_balance(address), "eth_getBalance"))

    def get_logs(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        event_name: str,
        from_block: int,
        to_block: int,
    ) -> List[LogEntry]:
        """
        Fetch and decode all ``event_name`` logs emitted by ``address`` in
        ``[from_block, to_block]``.

        Returns:
            Decoded entries ordered by block number and log index
        """
        contract = self._contract(address, abi)
        params = {
            "address": contract.address,
            "fromBlock": from_block,
            "toBlock": to_block,
            "topics": [event_topic(abi, event_name)],
        }
        raw_logs = self._read(lambda: self.w3.eth.get_logs(params), f"eth_getLogs {from_block}-{to_block}")

        event = getattr(contract.events, event_name)()
        entries = []
        for raw in raw_logs:
            decoded = event.process_log(raw)
            entries.append(LogEntry(
                event=event_name,
                args=dict(decoded["args"]),
                block_number=int(decoded["blockNumber"]),
                tx_hash=_to_hex(decoded["transactionHash"]),
                log_index=int(decoded["logIndex"]),
                address=decoded["address"],
            ))
        entries.sort(key=lambda entry: (entry.block_number, entry.log_index))
        logger.debug(f"[{self.name}] {len(entries)} {event_name} logs in blocks {from_block}-{to_block}")
        return entries

    def call(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        method: str,
        args: Sequence[Any] = (),
    ) -> Any:
        """
        Read-only contract call.

        Raises:
            ChainError: Classified failure (reverts are not retried)
        """
        contract = self._contract(address, abi)
        fn = getattr(contract.functions, method)(*args)
        return self._read(fn.call, f"{method}()")

    def send(
        self,
        address: str,
        abi: List[Dict[str, Any]],
        method: str,
        args: Sequence[Any],
        signer: Signer,
        gas: Optional[int] = None,
        timeout: Optional[int] = None,
    ) -> TxReceipt:
        """
        Sign and submit a contract transaction, blocking until it is mined.

        Args:
            address: Contract address
            abi: Contract ABI
            method: Function name
            args: Function arguments
            signer: Signer for the transaction
            gas: Gas limit used when estimation fails for a non-revert reason
            timeout: Seconds to wait for the receipt (defaults to receipt_timeout)

        Returns:
            Receipt of the mined transaction

        Raises:
            DuplicateMessageError: The contract reports the operation already happened
            PermanentChainError: The contract rejects the operation for good
            TransientError: Retryable failure after ``send_retries`` attempts
        """
        contract = self._contract(address, abi)
        fn = getattr(contract.functions, method)(*args)
        gas_price_multiplier = 1.0
        attempt = 0

        while True:
            attempt += 1
            try:
                return self._send_once(fn, method, signer, gas, timeout, gas_price_multiplier)
            except (TransientChainError, TransactionRevertedError) as e:
                if attempt >= self.send_retries:
                    logger.error(f"[{self.name}] {method} failed after {attempt} attempts: {e}")
                    raise
                gas_price_multiplier *= 1.1
                delay = backoff_delay(attempt)
                logger.warning(
                    f"[{self.name}] {method} attempt {attempt}/{self.send_retries} failed: {e}. "
                    f"Retrying in {delay:.2f}s with fresh nonce"
                )
                if sleep(delay, self.stop_event):
                    raise

    def _estimate_gas(self, fn, method: str, sender: str, fallback: Optional[int]) -> int:
        try:
            estimate = fn.estimate_gas({"from": sender})
        except ContractLogicError as e:
            raise wrap_error(e, f"{method} reverted") from e
        except Exception as e:
            kind = classify_error(e)
            if kind in (ErrorKind.PERMANENT_DUPLICATE, ErrorKind.PERMANENT_LOGIC):
                raise wrap_error(e, f"{method} reverted") from e
            gas = fallback or self.default_gas
            logger.warning(f"[{self.name}] Gas estimation for {method} failed, using default: {gas}. Error: {e}")
            return gas
        # Add 20% buffer to gas estimate
        return int(estimate * 1.2)

    def _send_once(
        self,
        fn,
        method: str,
        signer: Signer,
        gas: Optional[int],
        timeout: Optional[int],
        gas_price_multiplier: float,
    ) -> TxReceipt:
        sender = signer.address
        gas_limit = self._estimate_gas(fn, method, sender, gas)

        try:
            nonce = self.w3.eth.get_transaction_count(sender, "pending")
            gas_price = int(self.w3.eth.gas_price * gas_price_multiplier)
            tx = fn.build_transaction({
                "from": sender,
                "nonce": nonce,
                "gas": gas_limit,
                "gasPrice": gas_price,
            })
        except Exception as e:
            raise wrap_error(e, f"Failed to build {method} transaction") from e

        try:
            signed_tx = signer.sign_transaction(tx)
        except Exception as e:
            logger.error(f"[{self.name}] Transaction signing failed: {e}")
            raise TransientChainError(f"Failed to sign {method} transaction: {e}") from e

        try:
            tx_hash = _to_hex(self.w3.eth.send_raw_transaction(raw_transaction(signed_tx)))
        except Exception as e:
            raise wrap_error(e, f"Failed to send {method} transaction") from e
        logger.info(f"[{self.name}] {method} transaction sent: {tx_hash}")

        wait = timeout or self.receipt_timeout
        try:
            receipt = self.w3.eth.wait_for_transaction_receipt(
                tx_hash,
                timeout=wait,
                poll_latency=self.poll_latency
            )
        except TimeExhausted as e:
            raise TransientNetworkError(
                f"{method} transaction {tx_hash} not mined within {wait}s"
            ) from e
        except Exception as e:
            raise wrap_error(e, f"Waiting for {method} receipt {tx_hash}") from e

        converted = self._convert_receipt(receipt)
        if converted.status != 1:
            raise TransactionRevertedError(
                f"{method} transaction {tx_hash} reverted in block {converted.block_number}",
                tx_hash=tx_hash
            )
        logger.info(f"[{self.name}] {method} confirmed in block {converted.block_number}")
        return converted

    def _convert_receipt(self, web3_receipt: Web3TxReceipt) -> TxReceipt:
        """
        Convert Web3 receipt to our TxReceipt model

        Args:
            web3_receipt: The Web3 transaction receipt

        Returns:
            Our TxReceipt model
        """
        receipt_dict = dict(web3_receipt)

        # Convert bytes to hex strings
        for key, value in list(receipt_dict.items()):
            receipt_dict[key] = _to_hex(value)
        receipt_dict["logs"] = [dict(log) for log in receipt_dict.get("logs") or []]

        return TxReceipt.model_validate(receipt_dict)


def build_client(chain_config, rpc_config, stop_event: Optional[threading.Event] = None) -> ChainClient:
    """Create a ChainClient from ``ChainConfig`` and ``RpcConfig``"""
    return ChainClient(
        rpc_url=chain_config.rpc_url,
        chain_id=chain_config.chain_id,
        name=chain_config.name,
        timeout=rpc_config.timeout,
        retry_count=rpc_config.retry_count,
        receipt_timeout=rpc_config.receipt_timeout,
        send_retries=rpc_config.send_retries,
        default_gas=chain_config.gas_limits.submit,
        stop_event=stop_event,
    )
