from __future__ import annotations

import logging

from usn_sandbox.services.config import SandboxConfig
from usn_sandbox.services.credential_service import KeyPair, SigningCredential
from usn_sandbox.services.key_registry import KeyRegistry
from usn_sandbox.services.near_session import AccountHandle, NearSession

logger = logging.getLogger(__name__)


class AccountProvisioningError(RuntimeError):
    pass


class AccountSetupService:
    """Creates the sandbox accounts under the master account.

    Accounts share the master keypair unless `SandboxConfig.share_master_key` is off,
    in which case each one gets a freshly generated key.
    """

    def __init__(self, *, config: SandboxConfig) -> None:
        self._config = config

    def _key_for(self, credential: SigningCredential) -> KeyPair:
        if self._config.share_master_key:
            return credential.key_pair
        return KeyPair.generate()

    async def provision(
        self,
        *,
        session: NearSession,
        master: AccountHandle,
        credential: SigningCredential,
        key_registry: KeyRegistry,
    ) -> dict[str, AccountHandle]:
        """Create, fund and key-register every provisioned account, in order.

        The first failure aborts; accounts created before it are left for teardown.
        """

        config = self._config
        accounts: dict[str, AccountHandle] = {}

        for account_id in config.provisioned_account_ids:
            key_pair = self._key_for(credential)
            try:
                await master.create_account(account_id, key_pair.public_key, config.amount)
            except Exception as exc:
                raise AccountProvisioningError(f"Failed creating account {account_id}: {exc}") from exc

            key_registry.set_key(config.network_id, account_id, key_pair)
            accounts[account_id] = session.account(account_id)
            logger.info("Created account %s (amount=%s)", account_id, config.amount)

        return accounts
