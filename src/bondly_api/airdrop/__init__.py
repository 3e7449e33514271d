"""Airdrop engine and receipt watcher."""

from bondly_api.airdrop.engine import AirdropEngine
from bondly_api.airdrop.events import AirdropEvent
from bondly_api.airdrop.watcher import ReceiptWatcher, finalize_record

__all__ = [
    "AirdropEngine",
    "AirdropEvent",
    "ReceiptWatcher",
    "finalize_record",
]
