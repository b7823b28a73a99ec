"""Account lifecycle management for program-owned accounts.

Creates accounts at program-derived addresses and keeps every account's balance
equal to the rent floor of its current size as data grows and shrinks.

Invariants:
- a created account is exactly ``size`` bytes, owned by the invoking program,
  and funded to ``minimum_balance(size)``
- ``resize`` moves exactly ``|floor(new) - floor(old)|`` lamports: payer ->
  account on growth, account -> payer on shrink
- bytes ``[0, min(old, new))`` survive a resize verbatim; growth zero-fills
  ``[old, new)``

Every step goes through the host's ``InvokeContext``; if any step fails the
host drops the whole call, so a half-finished pay/resize/rewrite sequence is
never observed by the next call.
"""

from __future__ import annotations

from typing import List, Sequence

from keyvault.errors import AccountStateConflict
from keyvault.ledger import AccountInfo, InvokeContext
from keyvault.observability import KeyvaultLayer, get_logger

logger = get_logger("lifecycle", KeyvaultLayer.LIFECYCLE)


class AccountLifecycleManager:
    """Create / resize helper bound to one program invocation."""

    def __init__(self, ctx: InvokeContext):
        self.ctx = ctx

    def minimum_balance(self, size: int) -> int:
        return self.ctx.minimum_balance(size)

    def create(
        self,
        seeds: Sequence[bytes],
        bump: int,
        payer: AccountInfo,
        account: AccountInfo,
        size: int,
    ) -> AccountInfo:
        """Allocate ``account`` at the address certified by ``seeds + [bump]``."""
        if not account.data_is_empty():
            raise AccountStateConflict(f"account {account.key} already holds data")
        lamports = self.minimum_balance(size)
        signer_seeds: List[bytes] = [bytes(s) for s in seeds] + [bytes([bump])]
        self.ctx.create_account(
            payer,
            account,
            lamports=lamports,
            space=size,
            owner=self.ctx.program_id,
            signer_seeds=signer_seeds,
        )
        logger.debug(
            "account created",
            operation="create",
            account=str(account.key),
            size=size,
            lamports=lamports,
        )
        return account

    def resize(
        self,
        account: AccountInfo,
        old_size: int,
        new_size: int,
        payer: AccountInfo,
    ) -> int:
        """Resize ``account`` and settle the rent difference with ``payer``.

        Returns the signed lamport delta applied to ``account``.
        """
        if account.data_len != old_size:
            raise AccountStateConflict(
                f"account {account.key} is {account.data_len} bytes, expected {old_size}"
            )
        if new_size < 0:
            raise ValueError("new size cannot be negative")

        old_floor = self.minimum_balance(old_size)
        new_floor = self.minimum_balance(new_size)

        if new_size > old_size:
            delta = new_floor - old_floor
            self.ctx.transfer(payer, account, delta)
            self.ctx.realloc(account, new_size)
        elif new_size < old_size:
            delta = -(old_floor - new_floor)
            self.ctx.transfer(account, payer, -delta)
            self.ctx.realloc(account, new_size)
        else:
            return 0

        logger.debug(
            "account resized",
            operation="resize",
            account=str(account.key),
            old_size=old_size,
            new_size=new_size,
            lamports_delta=delta,
        )
        return delta
