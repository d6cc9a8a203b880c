from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ContractAbi:
    """Entry points a contract handle may call.

    View methods are read-only RPC queries; change methods are signed function-call
    transactions that can attach a deposit.
    """

    view_methods: tuple[str, ...] = ()
    change_methods: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        overlap = set(self.view_methods) & set(self.change_methods)
        if overlap:
            raise ValueError(f"Methods declared both view and change: {sorted(overlap)}")

    def is_view(self, method_name: str) -> bool:
        return method_name in self.view_methods

    def is_change(self, method_name: str) -> bool:
        return method_name in self.change_methods

    def __contains__(self, method_name: object) -> bool:
        return method_name in self.view_methods or method_name in self.change_methods


USN_ABI = ContractAbi(
    view_methods=(
        "version",
        "name",
        "symbol",
        "decimals",
        "spread",
        "contract_status",
        "owner",
        "ft_balance_of",
        "storage_balance_of",
        "commission",
        "guardians",
        "treasury",
    ),
    change_methods=(
        "new",
        "upgrade_name_symbol",
        "upgrade_icon",
        "blacklist_status",
        "add_to_blacklist",
        "remove_from_blacklist",
        "set_owner",
        "set_fixed_spread",
        "set_adaptive_spread",
        "extend_guardians",
        "remove_guardians",
        "destroy_black_funds",
        "pause",
        "resume",
        "buy",
        "sell",
        "ft_transfer",
        "ft_transfer_call",
        "transfer_stable_liquidity",
        "balance_stable_pool",
    ),
)

USDT_ABI = ContractAbi(
    view_methods=("ft_balance_of",),
    change_methods=("new", "mint", "burn", "ft_transfer", "ft_transfer_call"),
)

REF_ABI = ContractAbi(
    view_methods=("get_stable_pool",),
    change_methods=("new", "storage_deposit", "register_tokens", "add_stable_swap_pool"),
)

ORACLE_ABI = ContractAbi(
    view_methods=("get_price_data",),
    change_methods=("new", "add_asset", "add_oracle", "report_prices"),
)
