"""
Request routing (v1 core).

- A request moves through a fixed unit chain, then optionally installation,
  HQMC or an external unit, and ends archived
- Every move appends to the request's activity ledger; approvals and returns
  are read back from the ledger, never stored as flags
- Edit/delete/archive rights come from a single authorization module
"""
