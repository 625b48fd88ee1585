"""
Tests for the Submitter's idempotent submission pipeline.
"""
import pytest

from intent_relayer.attestation import IntentSigner, message_hash
from intent_relayer.exceptions import (
    DuplicateMessageError, PermanentChainError, TransientChainError
)
from intent_relayer.models import MessageState, SubmissionOutcome, TransferStatus
from intent_relayer.signer import LocalSigner
from intent_relayer.state import ProcessedOutcome, ProcessedSet
from intent_relayer.submitter import (
    NOTE_ALREADY_FINALIZED, NOTE_ALREADY_PENDING, NOTE_ALREADY_PROCESSED, NOTE_PREVIOUSLY_REJECTED, Submitter
)

from conftest import DIRECTION, INTENT_HASH, MESSAGE_INBOX, TEST_FINALIZER_KEY, make_intent, make_record


@pytest.fixture
def submitter(destination_chain, tss_signer, processed, ledger):
    return Submitter(destination_chain, MESSAGE_INBOX, IntentSigner(tss_signer), processed, ledger)


def _fresh_submitter(destination_chain, tss_signer, state_store, ledger, partition="restarted"):
    return Submitter(
        destination_chain, MESSAGE_INBOX, IntentSigner(tss_signer),
        ProcessedSet(state_store, partition), ledger,
    )


def test_submit_new_intent(submitter, destination_chain, processed):
    intent = make_intent()
    result = submitter.submit(intent)

    assert result.outcome == SubmissionOutcome.SUBMITTED
    assert result.message_hash == message_hash(intent)
    assert result.tx_hash
    assert [s[0] for s in destination_chain.sent] == ["submitPending"]
    assert destination_chain.message_state(result.message_hash) == MessageState.PENDING
    assert processed.outcome(INTENT_HASH) == ProcessedOutcome.SUBMITTED


def test_submit_args_order(submitter, destination_chain, tss_signer):
    intent = make_intent(amount=5)
    submitter.submit(intent)
    method, args, sender = destination_chain.sent[0]
    assert args[:6] == (
        intent.src_chain_id, intent.dst_chain_id, intent.token, 5, intent.recipient,
        bytes.fromhex(INTENT_HASH[2:]),
    )
    assert len(args[6]) == 65
    assert sender == tss_signer.address


def test_submit_is_idempotent(submitter, destination_chain):
    intent = make_intent()
    first = submitter.submit(intent)
    second = submitter.submit(intent)

    assert first.outcome == SubmissionOutcome.SUBMITTED
    assert second.outcome == SubmissionOutcome.ALREADY_PROCESSED
    assert len(destination_chain.sent) == 1


def test_preflight_detects_existing_message(submitter, destination_chain, tss_signer, state_store, ledger):
    intent = make_intent()
    submitter.submit(intent)

    # lost processed set: the inbox read catches the duplicate
    restarted = _fresh_submitter(destination_chain, tss_signer, state_store, ledger)
    result = restarted.submit(intent)

    assert result.outcome == SubmissionOutcome.DUPLICATE
    assert result.existing_state == MessageState.PENDING
    assert result.note == NOTE_ALREADY_PENDING
    assert len(destination_chain.sent) == 1
    assert restarted.processed.outcome(INTENT_HASH) == ProcessedOutcome.DUPLICATE


def test_ledger_record_marked_submitted(submitter, ledger):
    ledger.put(make_record("tx-1"))
    result = submitter.submit(make_intent())

    record = ledger.get("tx-1")
    assert record.bridge_status == TransferStatus.SUBMITTED
    assert record.relay_tx_hash == result.tx_hash
    assert record.relayed_at > 0


def test_ledger_status_is_durable_idempotency_key(submitter, destination_chain, processed, ledger):
    ledger.put(make_record("tx-1", bridgeStatus="SUBMITTED", relayTxHash="0xfeed"))
    result = submitter.submit(make_intent())

    assert result.outcome == SubmissionOutcome.ALREADY_PROCESSED
    assert result.tx_hash == "0xfeed"
    assert destination_chain.sent == []
    assert processed.outcome(INTENT_HASH) == ProcessedOutcome.SUBMITTED


def test_contract_duplicate_revert_counts_as_success(submitter, destination_chain, processed, ledger):
    ledger.put(make_record("tx-1"))
    destination_chain.fail_next("submitPending", DuplicateMessageError("execution reverted: already exists"))

    result = submitter.submit(make_intent())

    assert result.outcome == SubmissionOutcome.DUPLICATE
    assert processed.outcome(INTENT_HASH) == ProcessedOutcome.DUPLICATE
    record = ledger.get("tx-1")
    assert record.bridge_status == TransferStatus.COMPLETED
    assert record.note == NOTE_ALREADY_PROCESSED


def test_permanent_logic_error(submitter, destination_chain, processed, ledger):
    ledger.put(make_record("tx-1"))
    destination_chain.fail_next("submitPending", PermanentChainError("execution reverted: Intent expired"))

    with pytest.raises(PermanentChainError):
        submitter.submit(make_intent())

    assert processed.outcome(INTENT_HASH) == ProcessedOutcome.REJECTED
    record = ledger.get("tx-1")
    assert record.bridge_status == TransferStatus.FAILED
    assert "expired" in record.note

    # rejected intents are not retried
    assert submitter.submit(make_intent()).outcome == SubmissionOutcome.REJECTED
    assert destination_chain.sent == []


def test_transient_error_propagates_and_is_retryable(submitter, destination_chain, processed, ledger):
    ledger.put(make_record("tx-1"))
    destination_chain.fail_next("submitPending", TransientChainError("nonce too low"))

    with pytest.raises(TransientChainError):
        submitter.submit(make_intent())

    assert INTENT_HASH not in processed
    record = ledger.get("tx-1")
    assert record.bridge_status == TransferStatus.PENDING
    assert record.last_error == "nonce too low"

    assert submitter.submit(make_intent()).outcome == SubmissionOutcome.SUBMITTED
    assert ledger.get("tx-1").last_error is None


def test_existing_finalized_message(submitter, destination_chain, tss_signer, state_store, ledger):
    intent = make_intent()
    submitter.submit(intent)
    destination_chain.messages[message_hash(intent)]["state"] = MessageState.FINALIZED
    ledger.put(make_record("tx-2"))

    result = _fresh_submitter(destination_chain, tss_signer, state_store, ledger).submit(intent)

    assert result.outcome == SubmissionOutcome.DUPLICATE
    assert result.note == NOTE_ALREADY_FINALIZED
    assert ledger.get("tx-2").bridge_status == TransferStatus.COMPLETED


def test_existing_rejected_message(submitter, destination_chain, tss_signer, state_store, ledger):
    intent = make_intent()
    submitter.submit(intent)
    destination_chain.messages[message_hash(intent)]["state"] = MessageState.REJECTED
    ledger.put(make_record("tx-2"))

    restarted = _fresh_submitter(destination_chain, tss_signer, state_store, ledger)
    result = restarted.submit(intent)

    assert result.outcome == SubmissionOutcome.REJECTED
    assert restarted.processed.outcome(INTENT_HASH) == ProcessedOutcome.REJECTED
    assert ledger.get("tx-2").bridge_status == TransferStatus.FAILED


def test_submit_uses_record_id(submitter, ledger):
    ledger.put(make_record("tx-1", intentHash="0x" + "cd" * 32))
    submitter.submit(make_intent(), record_id="tx-1")
    assert ledger.get("tx-1").bridge_status == TransferStatus.SUBMITTED


def test_wrong_attestation_key_is_rejected(destination_chain, processed, ledger):
    submitter = Submitter(
        destination_chain, MESSAGE_INBOX, IntentSigner(LocalSigner(TEST_FINALIZER_KEY)), processed, ledger,
    )
    with pytest.raises(PermanentChainError, match="InvalidSignature"):
        submitter.submit(make_intent())
    assert processed.outcome(INTENT_HASH) == ProcessedOutcome.REJECTED


def test_reject(submitter, processed, ledger):
    ledger.put(make_record("tx-1"))
    result = submitter.reject(make_intent(), "Intent expired at 100")

    assert result.outcome == SubmissionOutcome.REJECTED
    assert processed.outcome(INTENT_HASH) == ProcessedOutcome.REJECTED
    assert ledger.get("tx-1").bridge_status == TransferStatus.FAILED


def test_record_added_after_rejection_is_failed(submitter, destination_chain, processed, ledger):
    submitter.reject(make_intent(), "Intent expired at 100")
    ledger.put(make_record("tx-late"))

    result = submitter.submit(make_intent(), record_id="tx-late")

    assert result.outcome == SubmissionOutcome.REJECTED
    assert result.note == NOTE_PREVIOUSLY_REJECTED
    record = ledger.get("tx-late")
    assert record.bridge_status == TransferStatus.FAILED
    assert record.note == NOTE_PREVIOUSLY_REJECTED
    assert destination_chain.sent == []

    # later passes leave the FAILED record alone
    submitter.submit(make_intent(), record_id="tx-late")
    assert ledger.get("tx-late").bridge_status == TransferStatus.FAILED


def test_submitter_without_ledger(destination_chain, tss_signer, state_store):
    submitter = Submitter(
        destination_chain, MESSAGE_INBOX, IntentSigner(tss_signer), ProcessedSet(state_store, DIRECTION),
    )
    assert submitter.submit(make_intent()).outcome == SubmissionOutcome.SUBMITTED
