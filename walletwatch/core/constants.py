"""Solana program identifiers and unit conversions used across the monitor."""

from __future__ import annotations

from typing import Dict

LAMPORTS_PER_SOL: int = 1_000_000_000

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"
TOKEN_PROGRAM_ID = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"

# Byte size of an SPL token account; the mint occupies bytes 0..32.
TOKEN_ACCOUNT_SIZE = 165
TOKEN_ACCOUNT_MINT_OFFSET = 0

# Program id -> transaction type tag for the first instruction of a transaction.
TRANSACTION_TYPE_BY_PROGRAM: Dict[str, str] = {
    TOKEN_PROGRAM_ID: "token_transaction",
    SYSTEM_PROGRAM_ID: "system_transaction",
}


def lamports_to_sol(lamports: int | float) -> float:
    return float(lamports) / LAMPORTS_PER_SOL


def sol_to_lamports(amount: float) -> int:
    return int(round(amount * LAMPORTS_PER_SOL))
