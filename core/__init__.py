"""
Core module for Bubuverse Farm.

This package contains the batch orchestrator, the durable wallet and progress
stores, identity assignment, signing, the remote API client and session
providers that the operation families in ``operations/`` are built on.

Submodules:
    config: Application settings (``FarmSettings``) via Pydantic.
    orchestrator: ``BatchOrchestrator`` with per-wallet checkpoints and pacing.
    registry: Registry mapping operation names to family classes.
    accounts: ``AccountRecord`` and the ``AccountStore`` wallet file.
    ledger: ``ProgressLedger`` of unlocked / pending / staked items.
    identity: Proxy parsing, user-agent pool and 1:1 ``IdentityAllocator``.
    signing: ed25519 message signing with base58 wallet secrets.
    session: ``SessionProvider`` interface and the aiohttp backend.
    api_client: ``RemoteApiClient`` for the Bubuverse REST API.
    report: Rich tables for run summaries and ledger statistics.
    errors: ``FarmError`` exception taxonomy.
    logging_setup: Compressed rotating file + safe console logging.
    utils: Corruption-safe JSON read/write helpers.
"""
