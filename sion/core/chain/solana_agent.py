"""
Solana implementation of the chain agent.

Swaps and staking go through Jupiter; pump.fun launches through PumpPortal.
Token deployment and NFT minting are built locally from SPL token
instructions. Every transaction is signed by the agent keypair and returned
unsubmitted.
"""

import base64
import json
import logging
from contextlib import asynccontextmanager
from dataclasses import replace
from decimal import Decimal
from typing import Any, AsyncIterator, Dict, List, Optional, Sequence

import httpx
from solders.compute_budget import set_compute_unit_price
from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import MessageV0
from solders.pubkey import Pubkey
from solders.system_program import CreateAccountParams, create_account
from solders.transaction import VersionedTransaction
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.memo.instructions import create_memo
from spl.memo.models import MemoParams
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    create_associated_token_account,
    get_associated_token_address,
    initialize_mint,
    mint_to,
    set_authority,
)
from spl.token.models import AuthorityType, InitializeMintParams, MintToParams, SetAuthorityParams

from .base import ChainAgent, ChainInstruction, ChainOperationError, InstructionKind, TokenPrice
from ..errors import DataUnavailable, classify_error
from ...providers.jupiter import (
    JUPSOL_MINT,
    NATIVE_SOL_MINT,
    JupiterProvider,
    JupiterQuoteError,
    JupiterSwapError,
    JupiterSwapProvider,
)
from ...providers.pumpportal import PumpPortalError, PumpPortalProvider
from ...providers.solana_rpc import SolanaRpc, SolanaRpcError

logger = logging.getLogger(__name__)

MINT_ACCOUNT_SIZE = 82
LAMPORTS_PER_SOL = 1_000_000_000
MICRO_LAMPORTS_PER_LAMPORT = 1_000_000
# PumpPortal takes a flat priority fee in SOL; assume a 200k CU budget
PUMP_COMPUTE_UNITS = 200_000

_CHAIN_ERRORS = (
    JupiterQuoteError,
    JupiterSwapError,
    PumpPortalError,
    SolanaRpcError,
    httpx.HTTPError,
    ValueError,
)


def to_base_units(amount: float, decimals: int) -> int:
    units = int(Decimal(str(amount)) * (Decimal(10) ** decimals))
    if units <= 0:
        raise ValueError(f"Amount {amount} is below the token's smallest unit")
    return units


class SolanaAgent(ChainAgent):
    """Chain agent for one Solana keypair."""

    def __init__(
        self,
        keypair: Optional[Keypair],
        rpc: SolanaRpc,
        jupiter: JupiterProvider,
        jupiter_swap: JupiterSwapProvider,
        pumpportal: PumpPortalProvider,
        pump_dev_buy_sol: float = 0.0001,
    ):
        self._keypair = keypair
        self._rpc = rpc
        self._jupiter = jupiter
        self._jupiter_swap = jupiter_swap
        self._pumpportal = pumpportal
        self._pump_dev_buy_sol = pump_dev_buy_sol

    @classmethod
    def from_secret(cls, secret: str, **kwargs: Any) -> "SolanaAgent":
        """Build from a base58 secret key; an empty secret leaves the agent read-only."""
        keypair = Keypair.from_base58_string(secret.strip()) if secret and secret.strip() else None
        return cls(keypair=keypair, **kwargs)

    @property
    def identity(self) -> str:
        return str(self._keypair.pubkey()) if self._keypair else ""

    def _signer(self) -> Keypair:
        if self._keypair is None:
            raise ChainOperationError("No signing identity configured for the agent")
        return self._keypair

    @asynccontextmanager
    async def _chain_call(self, operation: str) -> AsyncIterator[None]:
        """Map provider and RPC failures onto ``ChainOperationError``."""
        try:
            yield
        except _CHAIN_ERRORS as exc:
            retryable = classify_error(exc).recoverable
            raise ChainOperationError(
                f"{operation} failed: {exc}",
                retryable=retryable,
                details={"operation": operation},
            ) from exc

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def resolve_token(self, symbol: str) -> Dict[str, Any]:
        async with self._chain_call("token lookup"):
            token = await self._jupiter.resolve_symbol(symbol)
        if token is None:
            raise DataUnavailable(f"Unknown token: {symbol}", source="jupiter")
        return token.to_dict()

    async def get_token_price(self, symbol: str) -> TokenPrice:
        token = await self.resolve_token(symbol)
        async with self._chain_call("price lookup"):
            price = await self._jupiter.get_token_price(token["address"])
        if price is None:
            raise DataUnavailable(f"No price available for {token['symbol']}", source="jupiter")
        return TokenPrice(
            symbol=token["symbol"],
            mint=token["address"],
            name=token["name"],
            decimals=token["decimals"],
            price_usd=price,
        )

    # ------------------------------------------------------------------
    # Jupiter-routed operations
    # ------------------------------------------------------------------

    async def stake(self, amount: float, slippage_bps: int = 50, priority_fee: int = 0) -> ChainInstruction:
        """Liquid-stake SOL by swapping it into jupSOL."""
        lamports = to_base_units(amount, 9)
        instruction = await self._jupiter_instruction(
            NATIVE_SOL_MINT, JUPSOL_MINT, lamports, slippage_bps, priority_fee, InstructionKind.STAKE,
        )
        return _with_description(instruction, f"Stake {amount} SOL for jupSOL")

    async def swap(
        self,
        from_token: str,
        to_token: str,
        amount: float,
        slippage_bps: int,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        source = await self.resolve_token(from_token)
        target = await self.resolve_token(to_token)
        if source["address"] == target["address"]:
            raise ChainOperationError("Cannot swap a token for itself")
        units = to_base_units(amount, source["decimals"])
        instruction = await self._jupiter_instruction(
            source["address"], target["address"], units, slippage_bps, priority_fee, InstructionKind.SWAP,
        )
        return _with_description(
            instruction,
            f"Swap {amount} {source['symbol']} for {target['symbol']}",
            inputSymbol=source["symbol"],
            outputSymbol=target["symbol"],
        )

    async def _jupiter_instruction(
        self,
        input_mint: str,
        output_mint: str,
        amount: int,
        slippage_bps: int,
        priority_fee: int,
        kind: InstructionKind,
    ) -> ChainInstruction:
        signer = self._signer()
        async with self._chain_call(f"jupiter {kind.value}"):
            quote = await self._jupiter_swap.get_swap_quote(input_mint, output_mint, amount, slippage_bps)
            unsigned = await self._jupiter_swap.build_swap_transaction(
                quote, str(signer.pubkey()), compute_unit_price_micro_lamports=priority_fee,
            )
            raw = VersionedTransaction.from_bytes(base64.b64decode(unsigned))
            signed = VersionedTransaction(raw.message, [signer])
        return self._instruction(
            kind,
            signed,
            description="",
            inputMint=input_mint,
            outputMint=output_mint,
            inAmount=quote.in_amount,
            expectedOutAmount=quote.out_amount,
            minimumOutAmount=quote.other_amount_threshold,
            slippageBps=quote.slippage_bps,
            priceImpactPct=quote.price_impact_pct,
            route=[label for label in quote.route_labels if label],
        )

    # ------------------------------------------------------------------
    # pump.fun launch
    # ------------------------------------------------------------------

    async def launch_token(
        self,
        name: str,
        ticker: str,
        description: str,
        image_uri: str,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        signer = self._signer()
        mint_keypair = Keypair()
        priority_fee_sol = priority_fee * PUMP_COMPUTE_UNITS / MICRO_LAMPORTS_PER_LAMPORT / LAMPORTS_PER_SOL

        async with self._chain_call("pump.fun launch"):
            metadata_uri = await self._pumpportal.upload_metadata(name, ticker, description, image_uri)
            unsigned = await self._pumpportal.build_create_transaction(
                public_key=str(signer.pubkey()),
                mint_public_key=str(mint_keypair.pubkey()),
                name=name,
                symbol=ticker,
                metadata_uri=metadata_uri,
                dev_buy_sol=self._pump_dev_buy_sol,
                priority_fee_sol=priority_fee_sol,
            )
            raw = VersionedTransaction.from_bytes(unsigned)
            signed = VersionedTransaction(raw.message, [mint_keypair, signer])

        return self._instruction(
            InstructionKind.LAUNCH_TOKEN,
            signed,
            description=f"Launch {name} (${ticker}) on pump.fun",
            tokenAddress=str(mint_keypair.pubkey()),
            metadataUri=metadata_uri,
            name=name,
            ticker=ticker,
        )

    # ------------------------------------------------------------------
    # Locally built SPL transactions
    # ------------------------------------------------------------------

    async def deploy_token(
        self,
        name: str,
        ticker: str,
        uri: str,
        decimals: int,
        supply: int,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        signer = self._signer()
        owner = signer.pubkey()
        mint = Keypair()
        async with self._chain_call("token deployment"):
            instructions = await self._mint_instructions(
                owner, mint.pubkey(), owner, decimals, to_base_units(supply, decimals),
            )
            instructions.append(self._memo(owner, {"name": name, "symbol": ticker, "uri": uri}))
            signed = await self._compile_and_sign(owner, instructions, [signer, mint], priority_fee)
        return self._instruction(
            InstructionKind.DEPLOY_TOKEN,
            signed,
            description=f"Deploy {name} (${ticker}) with supply {supply}",
            tokenAddress=str(mint.pubkey()),
            decimals=decimals,
            supply=supply,
            uri=uri,
        )

    async def mint_nft(
        self,
        collection: str,
        metadata: Dict[str, Any],
        recipient: Optional[str] = None,
        priority_fee: int = 0,
    ) -> ChainInstruction:
        signer = self._signer()
        owner = signer.pubkey()
        receiver = Pubkey.from_string(recipient) if recipient else owner
        mint = Keypair()
        async with self._chain_call("NFT mint"):
            instructions = await self._mint_instructions(owner, mint.pubkey(), receiver, 0, 1)
            # Fixed supply of one: drop the mint authority
            instructions.append(set_authority(SetAuthorityParams(
                program_id=TOKEN_PROGRAM_ID,
                account=mint.pubkey(),
                authority=AuthorityType.MINT_TOKENS,
                current_authority=owner,
                new_authority=None,
            )))
            instructions.append(self._memo(owner, {"collection": collection, **metadata}))
            signed = await self._compile_and_sign(owner, instructions, [signer, mint], priority_fee)
        return self._instruction(
            InstructionKind.MINT_NFT,
            signed,
            description=f"Mint NFT '{metadata.get('name', 'untitled')}' in collection {collection}",
            mintAddress=str(mint.pubkey()),
            recipient=str(receiver),
            collection=collection,
        )

    async def _mint_instructions(
        self,
        payer: Pubkey,
        mint: Pubkey,
        receiver: Pubkey,
        decimals: int,
        amount: int,
    ) -> List[Instruction]:
        rent = await self._rpc.get_minimum_balance_for_rent_exemption(MINT_ACCOUNT_SIZE)
        return [
            create_account(CreateAccountParams(
                from_pubkey=payer,
                to_pubkey=mint,
                lamports=rent,
                space=MINT_ACCOUNT_SIZE,
                owner=TOKEN_PROGRAM_ID,
            )),
            initialize_mint(InitializeMintParams(
                decimals=decimals,
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                mint_authority=payer,
                freeze_authority=None,
            )),
            create_associated_token_account(payer=payer, owner=receiver, mint=mint),
            mint_to(MintToParams(
                program_id=TOKEN_PROGRAM_ID,
                mint=mint,
                dest=get_associated_token_address(receiver, mint),
                mint_authority=payer,
                amount=amount,
            )),
        ]

    @staticmethod
    def _memo(signer: Pubkey, payload: Dict[str, Any]) -> Instruction:
        return create_memo(MemoParams(
            program_id=MEMO_PROGRAM_ID,
            signer=signer,
            message=json.dumps(payload, separators=(",", ":")).encode("utf-8"),
        ))

    async def _compile_and_sign(
        self,
        payer: Pubkey,
        instructions: List[Instruction],
        signers: Sequence[Keypair],
        priority_fee: int,
    ) -> VersionedTransaction:
        if priority_fee:
            instructions = [set_compute_unit_price(priority_fee), *instructions]
        latest = await self._rpc.get_latest_blockhash()
        message = MessageV0.try_compile(
            payer,
            instructions,
            [],
            Hash.from_string(latest["blockhash"]),
        )
        return VersionedTransaction(message, list(signers))

    def _instruction(
        self,
        kind: InstructionKind,
        signed: VersionedTransaction,
        description: str,
        **metadata: Any,
    ) -> ChainInstruction:
        instruction = ChainInstruction(
            kind=kind,
            identity=self.identity,
            serialized=base64.b64encode(bytes(signed)).decode("ascii"),
            signature=str(signed.signatures[0]),
            description=description,
            metadata=metadata,
        )
        logger.info("Built %s transaction %s", kind.value, instruction.signature)
        return instruction


def _with_description(instruction: ChainInstruction, description: str, **metadata: Any) -> ChainInstruction:
    return replace(instruction, description=description, metadata={**instruction.metadata, **metadata})
