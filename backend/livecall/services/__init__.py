"""
Services Module

Call core services:
- calls: call state machine and settlement (CallLedger)
- settlement: append-only transaction ledger
- rates: per-minute rate resolution (charm level or static)
- leaderboard: weekly call-duration accumulators
- free_target: host daily/weekly quota automaton
- signaling: WebRTC relay over the presence registry
- sweeper: background cleanup of idle calls and stale hosts
"""
from .calls import CallLedger, call_ledger
from .free_target import FreeTargetAutomaton, FreeTargetService, free_target_service
from .settlement import SettlementLedger, settlement_ledger
from .signaling import SignalingRouter
from .sweeper import CallSweeper, sweeper

__all__ = [
    "CallLedger",
    "call_ledger",
    "FreeTargetAutomaton",
    "FreeTargetService",
    "free_target_service",
    "SettlementLedger",
    "settlement_ledger",
    "SignalingRouter",
    "CallSweeper",
    "sweeper",
]
