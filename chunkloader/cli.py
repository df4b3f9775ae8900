"""CLI entrypoint for chunkloader."""

from __future__ import annotations

import argparse
import logging

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .chunk import chunk_count
from .config import UploadConfig, resolve_config
from .constants import CLUSTER_URLS, DISPATCH_MODES, PACKET_DATA_SIZE
from .dispatch import make_dispatcher
from .errors import ChunkLoaderError, ClusterUnreachableError, PhaseError, WriteTransactionsError
from .keys import keypair_file_for, load_or_create_keypair, read_program
from .lifecycle import (
    ProgramBufferTarget,
    ProgramDeployTarget,
    ProposalTarget,
    Uploader,
    set_program_authority,
    target_chunk_size,
)
from .network import RpcNetwork, establish_connection
from .proposal import ProposalEvent, RelayRoundProposal, parse_relay


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    else:
        logging.basicConfig(level=logging.INFO, format="%(message)s")


def print_header(header: str) -> None:
    print()
    print("===================================")
    print()
    print(f"    {header}")
    print()
    print("===================================")
    print()


def _parse_pubkey(value: str, name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as exc:
        raise ValueError(f"{name} is not a valid pubkey: {value}") from exc


def _parse_configuration(value: str) -> Pubkey:
    try:
        raw = bytes.fromhex(value)
    except ValueError as exc:
        raise ValueError("configuration must be hex encoded") from exc
    if len(raw) != 32:
        raise ValueError(f"configuration must be 32 bytes, got {len(raw)}")
    return Pubkey.from_bytes(raw)


def _connect(cfg: UploadConfig) -> RpcNetwork:
    network = establish_connection(cfg.rpc_url, cfg.commitment)
    try:
        version = network.get_version()
    except Exception as exc:
        raise ClusterUnreachableError(f"failed to reach {cfg.rpc_url}: {exc}") from exc
    print(f"Connected to remote solana node running version ({version}).")
    return network


def _uploader(cfg: UploadConfig, network: RpcNetwork, payer: Keypair) -> Uploader:
    dispatcher = make_dispatcher(
        cfg.dispatch_mode,
        network,
        max_workers=cfg.max_workers,
        timeout=cfg.confirm_timeout,
    )
    return Uploader(network, payer, dispatcher)


def _cmd_deploy(args: argparse.Namespace) -> int:
    cfg = resolve_config(args)
    payer = cfg.load_payer(args.payer_keypair)
    print(f"Deploying with key: {payer.pubkey()}")

    authority = _parse_pubkey(args.authority, "authority")
    program_data = read_program(args.program_path)
    max_data_len = args.program_size * 1000 if args.program_size is not None else None

    buffer, buffer_created = load_or_create_keypair(
        args.buffer_keypair, keypair_file_for(args.program_path, "buffer-keypair")
    )
    program, program_created = load_or_create_keypair(
        args.program_keypair, keypair_file_for(args.program_path)
    )
    print(f"Buffer key: {buffer.pubkey()}{' (new)' if buffer_created else ''}")
    print(f"Program key: {program.pubkey()}{' (new)' if program_created else ''}")
    print(f"Program authority: {authority}")

    target = ProgramDeployTarget(program_data, buffer, program, authority, max_data_len)
    network = _connect(cfg)
    print_header("Deploying program")
    result = _uploader(cfg, network, payer).run(target, resume=not buffer_created)
    print(f"Program: {result.address}")
    print(f"Authority: {authority}")
    return 0


def _cmd_upload_buffer(args: argparse.Namespace) -> int:
    cfg = resolve_config(args)
    payer = cfg.load_payer(args.payer_keypair)
    print(f"Uploading with key: {payer.pubkey()}")

    authority = _parse_pubkey(args.authority, "authority")
    program_data = read_program(args.program_path)
    buffer, buffer_created = load_or_create_keypair(
        args.buffer_keypair, keypair_file_for(args.program_path, "buffer-keypair")
    )
    print(f"Buffer key: {buffer.pubkey()}{' (new)' if buffer_created else ''}")
    print(f"Buffer authority: {authority}")

    target = ProgramBufferTarget(program_data, buffer, authority)
    network = _connect(cfg)
    print_header("Writing buffer")
    result = _uploader(cfg, network, payer).run(target, resume=not buffer_created)
    print(f"Buffer: {result.address}")
    return 0


def _cmd_set_program_authority(args: argparse.Namespace) -> int:
    cfg = resolve_config(args)
    current = cfg.load_payer(args.current_authority_keypair)
    program = _parse_pubkey(args.program, "program")
    new_authority = _parse_pubkey(args.new_authority, "new authority")
    print(f"Current authority: {current.pubkey()}")
    print(f"Program: {program}")

    network = _connect(cfg)
    print_header("Setting program authority")
    set_program_authority(network, current, program, new_authority)
    print(f"Authority: {new_authority}")
    return 0


def _cmd_create_relay_round(args: argparse.Namespace) -> int:
    cfg = resolve_config(args)
    program_id = cfg.round_loader_program()
    payer = cfg.load_payer(args.payer_keypair)
    print(f"Creating proposal with key: {payer.pubkey()}")

    event = ProposalEvent(
        round_number=args.round_number,
        event_timestamp=args.event_timestamp,
        event_transaction_lt=args.transaction_lt,
        event_configuration=_parse_configuration(args.configuration),
    )
    proposal = RelayRoundProposal(
        round_number=args.proposal_round_number,
        relays=[parse_relay(relay) for relay in args.proposal_relays],
        round_end=args.proposal_round_end,
    )
    target = ProposalTarget(program_id, event, proposal)
    print(f"Proposal address: {target.address}")

    network = _connect(cfg)
    print_header("Create Relay Round Proposal")
    result = _uploader(cfg, network, payer).run(target, resume=True)
    print(f"Proposal address: {result.address}")
    return 0


def _cmd_chunk_size(args: argparse.Namespace) -> int:
    cfg = resolve_config(args)
    # Sizing only depends on message shape, so throwaway keys are enough.
    target = ProgramBufferTarget(b"", Keypair())
    chunk_size = target_chunk_size(target, Keypair().pubkey(), args.packet_limit)
    print(f"Chunk size: {chunk_size}")
    if args.program_path:
        size = len(read_program(args.program_path))
        print(f"Program bytes: {size}")
        print(f"Write transactions: {chunk_count(size, chunk_size)}")
    print(f"Dispatch mode: {cfg.dispatch_mode}")
    return 0


def _add_cluster_args(p: argparse.ArgumentParser) -> None:
    p.add_argument("--config", help="Project config file (default: ./chunkloader.toml)")
    p.add_argument("--rpc-url", help="RPC URL override")
    p.add_argument("--url", help=f"Cluster shortcut ({'|'.join(CLUSTER_URLS)}) or URL")
    p.add_argument("--mode", choices=sorted(DISPATCH_MODES), help="Write dispatch mode")
    p.add_argument("--max-workers", type=int, help="Concurrent submissions in concurrent mode")
    p.add_argument("--confirm-timeout", type=float, help="Seconds to wait for write confirmations")
    p.add_argument("--verbose", action="store_true")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="chunkloader", description="Chunked account uploads for Solana")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_deploy = sub.add_parser("deploy", help="Deploy program")
    p_deploy.add_argument("--program-path", required=True, help="Path to the program")
    p_deploy.add_argument("--authority", required=True, help="Upgrade authority (e.g. multisig) address")
    p_deploy.add_argument("--payer-keypair", help="Path to the payer keypair")
    p_deploy.add_argument("--program-keypair", help="Path to the program keypair")
    p_deploy.add_argument("--buffer-keypair", help="Path to the buffer keypair (resumes an upload)")
    p_deploy.add_argument("--program-size", type=int, help="Max program size in KB (default: program length)")
    _add_cluster_args(p_deploy)
    p_deploy.set_defaults(func=_cmd_deploy)

    p_buffer = sub.add_parser("upload-program-buffer", help="Upload program to buffer account")
    p_buffer.add_argument("--program-path", required=True, help="Path to the program")
    p_buffer.add_argument("--authority", required=True, help="Buffer authority (e.g. multisig) address")
    p_buffer.add_argument("--payer-keypair", help="Path to the payer keypair")
    p_buffer.add_argument("--buffer-keypair", help="Path to the buffer keypair (resumes an upload)")
    _add_cluster_args(p_buffer)
    p_buffer.set_defaults(func=_cmd_upload_buffer)

    p_auth = sub.add_parser("set-program-authority", help="Set a program's authority")
    p_auth.add_argument("--program", required=True, help="Program address")
    p_auth.add_argument("--current-authority-keypair", help="Path to the current authority keypair")
    p_auth.add_argument("--new-authority", required=True, help="New authority address")
    _add_cluster_args(p_auth)
    p_auth.set_defaults(func=_cmd_set_program_authority)

    p_round = sub.add_parser("create-relay-round", help="Create, upload and finalize a relay round proposal")
    p_round.add_argument("--event-timestamp", type=int, required=True, help="Everscale event timestamp")
    p_round.add_argument("--transaction-lt", type=int, required=True, help="Everscale event transaction lt")
    p_round.add_argument("--configuration", required=True, help="Everscale event configuration (hex)")
    p_round.add_argument("--round-number", type=int, required=True, help="Current relay round number")
    p_round.add_argument("--proposal-round-number", type=int, required=True, help="Relay round number in proposal")
    p_round.add_argument("--proposal-relays", nargs="+", required=True, help="Relays in proposal (hex or base58)")
    p_round.add_argument("--proposal-round-end", type=int, required=True, help="Round end value in proposal")
    p_round.add_argument("--payer-keypair", help="Path to the payer keypair")
    p_round.add_argument("--round-loader-program", help="Round loader program id")
    _add_cluster_args(p_round)
    p_round.set_defaults(func=_cmd_create_relay_round)

    p_chunk = sub.add_parser("chunk-size", help="Print the write chunk size for the loader")
    p_chunk.add_argument("--program-path", help="Also report the write count for this program")
    p_chunk.add_argument("--packet-limit", type=int, default=PACKET_DATA_SIZE, help="Transport packet limit")
    _add_cluster_args(p_chunk)
    p_chunk.set_defaults(func=_cmd_chunk_size)

    args = parser.parse_args(argv)
    _configure_logging(args.verbose)
    try:
        return args.func(args)
    except WriteTransactionsError as exc:
        print(f"Write phase failed: {exc.failed} of {exc.total} chunks were not written; re-run to resume")
        return 1
    except PhaseError as exc:
        print(str(exc))
        return 1
    except FileNotFoundError as exc:
        print(str(exc))
        return 1
    except (ChunkLoaderError, ValueError) as exc:
        print(str(exc))
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
