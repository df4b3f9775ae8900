"""Allocate, write, finalize and hand over an uploaded account.

Every upload walks the same phases::

    Allocate -> Write -> Finalize -> Authority-Transfer

Targets describe what differs between account kinds: how the account is
created and addressed, which instruction writes a chunk, how it is
finalized and who receives authority afterwards. A phase a target does not
need returns ``None`` from its builder and is skipped.

Phase failures raise :class:`PhaseError`; failed chunk writes raise
:class:`WriteTransactionsError` before anything is finalized, leaving the
account writable so the whole run can simply be repeated.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import List, Optional, Sequence

from solders.hash import Hash
from solders.instruction import Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.signature import Signature

from . import loader, round_loader
from .chunk import MessageFactory, compute_max_chunk_size, plan_chunks
from .constants import PACKET_DATA_SIZE
from .dispatch import Dispatcher, DispatchOutcome, sign_message
from .errors import ConfigError, Phase, PhaseError, WriteTransactionsError
from .network import RpcNetwork
from .proposal import ProposalEvent, RelayRoundProposal

logger = logging.getLogger(__name__)


class UploadTarget(ABC):
    kind = "account"
    authority: Optional[Pubkey] = None

    @property
    @abstractmethod
    def payload(self) -> bytes:
        ...

    @property
    @abstractmethod
    def account(self) -> Pubkey:
        """Account that receives the chunk writes."""

    @property
    def address(self) -> Pubkey:
        """Address reported to the caller once the upload is done."""
        return self.account

    @abstractmethod
    def rent_size(self) -> int:
        ...

    @abstractmethod
    def allocate_instructions(self, payer: Pubkey, lamports: int) -> List[Instruction]:
        ...

    def allocate_signers(self, payer: Keypair) -> List[Keypair]:
        return [payer]

    @abstractmethod
    def write_instruction(self, payer: Pubkey, offset: int, data: bytes) -> Instruction:
        ...

    def write_signers(self, payer: Keypair) -> List[Keypair]:
        return [payer]

    def finalize_instructions(self, network: RpcNetwork, payer: Pubkey) -> Optional[List[Instruction]]:
        return None

    def finalize_signers(self, payer: Keypair) -> List[Keypair]:
        return [payer]

    def authority_instructions(self, payer: Pubkey) -> Optional[List[Instruction]]:
        return None

    def authority_signers(self, payer: Keypair) -> List[Keypair]:
        return [payer]


class ProgramBufferTarget(UploadTarget):
    """Program bytes written into a loader buffer, optionally handed to a new authority."""

    kind = "buffer"

    def __init__(self, program_data: bytes, buffer: Keypair, authority: Optional[Pubkey] = None) -> None:
        self.program_data = bytes(program_data)
        self.buffer = buffer
        self.authority = authority

    @property
    def payload(self) -> bytes:
        return self.program_data

    @property
    def account(self) -> Pubkey:
        return self.buffer.pubkey()

    def rent_size(self) -> int:
        return loader.size_of_buffer(len(self.program_data))

    def allocate_instructions(self, payer: Pubkey, lamports: int) -> List[Instruction]:
        return loader.create_buffer(payer, self.account, payer, lamports, len(self.program_data))

    def allocate_signers(self, payer: Keypair) -> List[Keypair]:
        return [payer, self.buffer]

    def write_instruction(self, payer: Pubkey, offset: int, data: bytes) -> Instruction:
        return loader.write(self.account, payer, offset, data)

    def authority_instructions(self, payer: Pubkey) -> Optional[List[Instruction]]:
        if self.authority is None or self.authority == payer:
            return None
        return [loader.set_buffer_authority(self.account, payer, self.authority)]


class ProgramDeployTarget(ProgramBufferTarget):
    """Buffer upload promoted to an upgradeable program."""

    kind = "program"

    def __init__(
        self,
        program_data: bytes,
        buffer: Keypair,
        program: Keypair,
        authority: Optional[Pubkey] = None,
        max_data_len: Optional[int] = None,
    ) -> None:
        super().__init__(program_data, buffer, authority)
        self.program = program
        self.max_data_len = len(self.program_data) if max_data_len is None else max_data_len
        if self.max_data_len < len(self.program_data):
            raise ConfigError(
                f"max data length {self.max_data_len} is smaller than the program ({len(self.program_data)} bytes)"
            )

    @property
    def address(self) -> Pubkey:
        return self.program.pubkey()

    def finalize_instructions(self, network: RpcNetwork, payer: Pubkey) -> Optional[List[Instruction]]:
        lamports = network.get_minimum_balance_for_rent_exemption(loader.size_of_program())
        return loader.deploy_with_max_program_len(
            payer,
            self.program.pubkey(),
            self.account,
            payer,
            lamports,
            self.max_data_len,
        )

    def finalize_signers(self, payer: Keypair) -> List[Keypair]:
        return [payer, self.program]

    def authority_instructions(self, payer: Pubkey) -> Optional[List[Instruction]]:
        if self.authority is None or self.authority == payer:
            return None
        return [loader.set_upgrade_authority(self.program.pubkey(), payer, self.authority)]


class ProposalTarget(UploadTarget):
    """Relay round proposal stored at an address derived from its event and contents."""

    kind = "proposal"

    def __init__(self, program_id: Pubkey, event: ProposalEvent, proposal: RelayRoundProposal) -> None:
        self.program_id = program_id
        self.event = event
        self.proposal = proposal
        self.record = proposal.serialize()
        self._payload = proposal.serialize_with_len()
        self._account = round_loader.get_proposal_address(program_id, event, self.record)

    @property
    def payload(self) -> bytes:
        return self._payload

    @property
    def account(self) -> Pubkey:
        return self._account

    def rent_size(self) -> int:
        return len(self._payload)

    def allocate_instructions(self, payer: Pubkey, lamports: int) -> List[Instruction]:
        return [
            round_loader.create_proposal_ix(
                self.program_id,
                payer,
                self.event,
                self.record,
                len(self._payload),
                lamports,
            )
        ]

    def write_instruction(self, payer: Pubkey, offset: int, data: bytes) -> Instruction:
        return round_loader.write_proposal_ix(self.program_id, payer, self._account, offset, data)

    def finalize_instructions(self, network: RpcNetwork, payer: Pubkey) -> Optional[List[Instruction]]:
        return [
            round_loader.finalize_proposal_ix(
                self.program_id,
                payer,
                self._account,
                self.event.round_number,
            )
        ]


@dataclass
class UploadResult:
    address: Pubkey
    account: Pubkey
    chunk_size: int
    total_chunks: int
    allocated: bool = True


def submit_instructions(
    network: RpcNetwork,
    phase: Phase,
    payer: Keypair,
    instructions: Sequence[Instruction],
    signers: Sequence[Keypair],
) -> Signature:
    try:
        blockhash = network.get_latest_blockhash()
        message = Message.new_with_blockhash(list(instructions), payer.pubkey(), blockhash)
        tx = sign_message(message, signers, blockhash)
        return network.send_and_confirm(tx)
    except Exception as exc:
        raise PhaseError(phase, exc) from exc


def write_message_factory(target: UploadTarget, payer: Pubkey, blockhash: Hash) -> MessageFactory:
    def create_message(offset: int, data: bytes) -> Message:
        return Message.new_with_blockhash([target.write_instruction(payer, offset, data)], payer, blockhash)

    return create_message


def target_chunk_size(target: UploadTarget, payer: Pubkey, packet_limit: int = PACKET_DATA_SIZE) -> int:
    # Blockhash contents do not change the message size.
    template = write_message_factory(target, payer, Hash.default())
    return compute_max_chunk_size(template, packet_limit)


class Uploader:
    def __init__(
        self,
        network: RpcNetwork,
        payer: Keypair,
        dispatcher: Dispatcher,
        packet_limit: int = PACKET_DATA_SIZE,
    ) -> None:
        self.network = network
        self.payer = payer
        self.dispatcher = dispatcher
        self.packet_limit = packet_limit

    def _submit(self, phase: Phase, instructions: Sequence[Instruction], signers: Sequence[Keypair]) -> Signature:
        return submit_instructions(self.network, phase, self.payer, instructions, signers)

    def chunk_size(self, target: UploadTarget) -> int:
        return target_chunk_size(target, self.payer.pubkey(), self.packet_limit)

    def allocate(self, target: UploadTarget) -> Signature:
        try:
            lamports = self.network.get_minimum_balance_for_rent_exemption(target.rent_size())
        except Exception as exc:
            raise PhaseError(Phase.ALLOCATE, exc) from exc
        logger.info(
            "Allocating %s account %s (%d bytes, %d lamports)",
            target.kind,
            target.account,
            target.rent_size(),
            lamports,
        )
        sig = self._submit(
            Phase.ALLOCATE,
            target.allocate_instructions(self.payer.pubkey(), lamports),
            target.allocate_signers(self.payer),
        )
        logger.info("Allocated %s", target.account)
        return sig

    def write(self, target: UploadTarget, chunk_size: Optional[int] = None) -> DispatchOutcome:
        if chunk_size is None:
            chunk_size = self.chunk_size(target)
        plan = plan_chunks(target.payload, chunk_size)
        if not plan:
            logger.info("Nothing to write for %s", target.account)
            return DispatchOutcome(total=0)
        try:
            blockhash = self.network.get_latest_blockhash()
        except Exception as exc:
            raise PhaseError(Phase.WRITE, exc) from exc

        logger.info(
            "Writing %d bytes to %s in %d chunks of up to %d bytes",
            len(target.payload),
            target.account,
            len(plan),
            chunk_size,
        )
        create_message = write_message_factory(target, self.payer.pubkey(), blockhash)
        outcome = self.dispatcher.dispatch(plan, create_message, target.write_signers(self.payer))
        if not outcome.ok:
            raise WriteTransactionsError(outcome.failed, outcome.total, outcome.failures)
        logger.info("Wrote %d chunks to %s", outcome.total, target.account)
        return outcome

    def finalize(self, target: UploadTarget) -> Optional[Signature]:
        try:
            instructions = target.finalize_instructions(self.network, self.payer.pubkey())
        except Exception as exc:
            raise PhaseError(Phase.FINALIZE, exc) from exc
        if instructions is None:
            return None
        logger.info("Finalizing %s %s", target.kind, target.address)
        sig = self._submit(Phase.FINALIZE, instructions, target.finalize_signers(self.payer))
        logger.info("Finalized %s", target.address)
        return sig

    def transfer_authority(self, target: UploadTarget) -> Optional[Signature]:
        instructions = target.authority_instructions(self.payer.pubkey())
        if instructions is None:
            return None
        logger.info("Setting %s authority to %s", target.kind, target.authority)
        return self._submit(Phase.AUTHORITY_TRANSFER, instructions, target.authority_signers(self.payer))

    def run(self, target: UploadTarget, resume: bool = False) -> UploadResult:
        chunk_size = self.chunk_size(target)
        allocated = True
        if resume:
            try:
                existing_size = self.network.get_account_size(target.account)
            except Exception as exc:
                raise PhaseError(Phase.ALLOCATE, exc) from exc
            if existing_size is not None:
                # account length is fixed at creation
                if existing_size != target.rent_size():
                    raise PhaseError(
                        Phase.ALLOCATE,
                        ConfigError(
                            f"existing account {target.account} holds {existing_size} bytes, "
                            f"expected {target.rent_size()}; use a fresh account"
                        ),
                    )
                allocated = False
        if allocated:
            self.allocate(target)
        else:
            logger.info("Account %s already exists; resuming at the write phase", target.account)
        outcome = self.write(target, chunk_size)
        self.finalize(target)
        self.transfer_authority(target)
        return UploadResult(
            address=target.address,
            account=target.account,
            chunk_size=chunk_size,
            total_chunks=outcome.total,
            allocated=allocated,
        )


def set_program_authority(
    network: RpcNetwork,
    current_authority: Keypair,
    program: Pubkey,
    new_authority: Pubkey,
) -> Signature:
    """Move upgrade rights of an already deployed program."""
    ix = loader.set_upgrade_authority(program, current_authority.pubkey(), new_authority)
    logger.info("Setting upgrade authority of %s to %s", program, new_authority)
    return submit_instructions(network, Phase.AUTHORITY_TRANSFER, current_authority, [ix], [current_authority])
