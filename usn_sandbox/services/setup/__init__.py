"""Setup (provisioning) services.

This package contains the orchestration that *provisions* the sandbox environment
(accounts, contract deployments, cross-contract wiring) and tears it down again.
"""
