"""Tie client certificates to RBAC identities: grant, revoke, and configure."""
