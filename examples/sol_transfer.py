#!/usr/bin/env python3
"""
Send lamports on devnet through the toolkit: pick the fastest of several
endpoints, build a transfer with a memo, then stamp, sign, race and confirm it.
"""

import anyio
import base58
import getpass

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from soltoolkit.builder import InstructionBuilder
from soltoolkit.config import ManagerConfig
from soltoolkit.manager import ConnectionManager
from soltoolkit.pipeline import TransactionPipeline

ENDPOINTS = [
    "https://api.devnet.solana.com",
    "https://devnet.helius-rpc.com",
]


def setup_wallet() -> Keypair:
    """Read a base58 private key from the terminal."""
    private_key_input = getpass.getpass("Enter your wallet private key (base58 encoded): ").strip()

    if not private_key_input:
        raise ValueError("Private key is required")

    try:
        return Keypair.from_bytes(base58.b58decode(private_key_input))
    except ValueError as e:
        raise ValueError(f"Invalid private key: {e}")


async def main():
    keypair = setup_wallet()
    to_address = Pubkey.from_string("2aDCackvygC59makgc7ndifFGft1ru35qJXsqbfVeiJr")
    amount = 100_000_000  # 0.1 SOL

    manager = await ConnectionManager.initialize(ManagerConfig(
        network="devnet",
        endpoints=ENDPOINTS,
        policy="fastest",
        commitment="confirmed",
        verbose=True,
    ))

    for health in manager.get_health_snapshot():
        print(health)

    tx = (
        InstructionBuilder.create()
        .add_transfer(keypair.pubkey(), to_address, amount)
        .add_memo("gm from soltoolkit", keypair.pubkey())
        .add_compute_budget(10_000)
        .build()
    )

    pipeline = TransactionPipeline(manager, fee_payer=keypair.pubkey())
    try:
        signature = await pipeline.execute(tx, signers=[keypair], race=True)
        print(f"Signature: {signature}")
        print(f"Explorer: https://explorer.solana.com/tx/{signature}?cluster=devnet")
    finally:
        await manager.close()


if __name__ == "__main__":
    anyio.run(main)
