"""Smoke check for a terminal deployment:
1) configure env (LOYALTY_STORE_URL)
2) sign in as the operator record
3) load the terminal view through the cache
4) report tiers and any balance drift
"""

from __future__ import annotations

import asyncio
import logging

from loyalty_sync import ConfigError, build_runtime, load_config, summarize_account
from loyalty_sync.ledger import balance_drift

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(name)s %(message)s",
)


async def run() -> int:
    try:
        config = load_config()
    except ConfigError as exc:
        print(f"Config error: {exc}")
        return 2

    runtime = build_runtime(config)
    try:
        operator = await runtime.sessions.sign_in_operator()
        terminal = runtime.terminal(operator)
        await terminal.load(force_refresh=True)
        print(f"operator={operator.id} accounts={len(terminal.accounts)} transactions={len(terminal.transactions)}")
        for account in terminal.accounts:
            if account.is_operator:
                continue
            summary = summarize_account(account, terminal.transactions)
            print(f"  {account.display_name or account.id}: balance={account.loyalty_balance} tier={summary.tier}")
        for account_id, (recorded, expected) in balance_drift(terminal.accounts, terminal.transactions).items():
            print(f"  drift {account_id}: recorded={recorded} ledger={expected}")
    finally:
        await runtime.aclose()
    return 0


if __name__ == "__main__":
    raise SystemExit(asyncio.run(run()))
