"""
Core application modules.
Contains essential infrastructure components:
- bootstrap: default admin creation on first startup
- db: Database configuration and connection management
- errors: domain error taxonomy and its HTTP rendering
- locks: per-key asyncio locks (one writer per call / host)
- presence: user -> WebSocket registry used by signaling
- security: password hashing and access tokens
"""
