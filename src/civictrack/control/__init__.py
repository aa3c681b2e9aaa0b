"""
Request Control Module
======================

Citizen request lifecycle with deadline control:
- Control status derived from due dates, reconciled lazily and nightly
- Due-soon and overdue e-mail notifications, deduplicated by a ledger
- Audit trail and proceedings for every mutation
"""
