from __future__ import annotations

from usn_sandbox.services.credential_service import KeyPair


class KeyRegistryError(RuntimeError):
    pass


class KeyRegistry:
    """In-memory `(network_id, account_id) -> KeyPair` store.

    Entries are never replaced: inserting the same key twice is a no-op and inserting
    a different key for an existing entry raises. After `freeze()` no writes are
    accepted.
    """

    def __init__(self) -> None:
        self._keys: dict[tuple[str, str], KeyPair] = {}
        self._frozen = False

    @property
    def frozen(self) -> bool:
        return self._frozen

    def freeze(self) -> None:
        self._frozen = True

    def set_key(self, network_id: str, account_id: str, key_pair: KeyPair) -> None:
        if self._frozen:
            raise KeyRegistryError(f"Key registry is frozen; cannot add key for {account_id}")

        entry = (network_id, account_id)
        existing = self._keys.get(entry)
        if existing is not None:
            if existing != key_pair:
                raise KeyRegistryError(f"A different key is already registered for {account_id} on {network_id}")
            return
        self._keys[entry] = key_pair

    def get_key(self, network_id: str, account_id: str) -> KeyPair:
        try:
            return self._keys[(network_id, account_id)]
        except KeyError:
            raise KeyRegistryError(f"No signing key registered for {account_id} on {network_id}") from None

    def has_key(self, network_id: str, account_id: str) -> bool:
        return (network_id, account_id) in self._keys

    def account_ids(self, network_id: str) -> list[str]:
        return [account_id for (net, account_id) in self._keys if net == network_id]

    def __len__(self) -> int:
        return len(self._keys)
