# livecall/models/__init__.py
"""
Database models module initialization.
Exports all Tortoise ORM models for convenient imports.

Models exported:
- User: account (caller, host owner or admin) with coin balance
- Host: host profile with rate, earnings, rating and presence flag
- Level: charm level progression driven by lifetime beans
- Call: call state machine row
- Transaction: settlement ledger entry
- WeeklyLeaderboard: weekly call-duration accumulators
- FreeTarget: per-host daily/weekly quota document
"""
from .user import User
from .host import Host
from .level import Level
from .call import Call
from .transaction import Transaction
from .leaderboard import WeeklyLeaderboard
from .free_target import FreeTarget
