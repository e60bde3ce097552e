"""
DOA Kernel - Delegation-of-Authority approval workflow engine.

A policy-driven, multi-level sign-off process with:
- Company-scoped approval matrices with a default owner-approval fallback
- Exactly-once approval per user per level
- Optimistic concurrency on every aggregate write
- Idempotent, deterministically keyed task projection
"""

__version__ = "0.1.0"
