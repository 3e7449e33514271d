"""Log event names emitted by the airdrop engine and receipt watcher."""

from enum import Enum


class AirdropEvent(str, Enum):
    REJECTED = "airdrop.rejected"
    INSUFFICIENT_BALANCE = "airdrop.insufficient_balance"
    PENDING = "airdrop.pending"
    SUBMITTED = "airdrop.submitted"
    SUBMIT_FAILED = "airdrop.submit_failed"
    HASH_NOT_RECORDED = "airdrop.hash_not_recorded"
    ENQUEUE_FAILED = "airdrop.enqueue_failed"
    CONFIRMED = "airdrop.confirmed"
    FAILED = "airdrop.failed"
    STALE = "airdrop.stale"
    WATCH_ERROR = "airdrop.watch_error"
    SWEEP = "airdrop.sweep"
