import io
import tempfile
import unittest
from contextlib import redirect_stdout
from pathlib import Path
from unittest.mock import Mock, patch

from solders.keypair import Keypair

from chunkloader.cli import main
from chunkloader.constants import MIN_RELAYS
from chunkloader.keys import load_keypair, write_keypair
from chunkloader.loader import size_of_buffer

from support import FakeNetwork


class CliTests(unittest.TestCase):
    def setUp(self) -> None:
        self._tmp = tempfile.TemporaryDirectory()
        self.tmp = Path(self._tmp.name)
        self.payer_path = self.tmp / "payer.json"
        write_keypair(self.payer_path, Keypair())
        self.round_loader = Keypair().pubkey()
        self.config_path = self.tmp / "chunkloader.toml"
        self.config_path.write_text(
            "[cluster]\n"
            f"payer = \"{self.payer_path}\"\n"
            "[round_loader]\n"
            f"program_id = \"{self.round_loader}\"\n"
        )
        self.program_path = self.tmp / "bridge.so"
        self.program_data = bytes((i * 3) % 256 for i in range(4_000))
        self.program_path.write_bytes(self.program_data)

    def tearDown(self) -> None:
        self._tmp.cleanup()

    def run_cli(self, argv, network=None):
        out = io.StringIO()
        with patch("chunkloader.cli.establish_connection", return_value=network) as connect, redirect_stdout(out):
            rc = main(argv + ["--config", str(self.config_path)])
        return rc, out.getvalue(), connect

    def test_deploy_writes_keypairs_and_reports_program(self) -> None:
        network = FakeNetwork(account_len=len(self.program_data))
        rc, out, _ = self.run_cli(
            ["deploy", "--program-path", str(self.program_path), "--authority", str(Keypair().pubkey())],
            network,
        )
        self.assertEqual(rc, 0)
        program_key = load_keypair(self.tmp / "bridge-keypair.json")
        self.assertTrue((self.tmp / "bridge-buffer-keypair.json").exists())
        self.assertIn(f"Program: {program_key.pubkey()}", out)
        self.assertEqual(bytes(network.account), self.program_data)

    def test_deploy_resumes_with_saved_buffer(self) -> None:
        buffer = Keypair()
        write_keypair(self.tmp / "bridge-buffer-keypair.json", buffer)
        network = FakeNetwork(account_len=len(self.program_data))
        network.existing[buffer.pubkey()] = size_of_buffer(len(self.program_data))
        rc, out, _ = self.run_cli(
            ["deploy", "--program-path", str(self.program_path), "--authority", str(Keypair().pubkey())],
            network,
        )
        self.assertEqual(rc, 0)
        self.assertIn(f"Buffer key: {buffer.pubkey()}\n", out)
        self.assertEqual(len(network.sent), 2)

    def test_deploy_refuses_saved_buffer_of_another_size(self) -> None:
        buffer = Keypair()
        write_keypair(self.tmp / "bridge-buffer-keypair.json", buffer)
        network = FakeNetwork(account_len=len(self.program_data))
        network.existing[buffer.pubkey()] = size_of_buffer(5_000)
        rc, out, _ = self.run_cli(
            ["deploy", "--program-path", str(self.program_path), "--authority", str(Keypair().pubkey())],
            network,
        )
        self.assertEqual(rc, 1)
        self.assertIn("Allocate phase failed", out)
        self.assertEqual(network.sent, [])
        self.assertEqual(network.batches, [])

    def test_unreachable_cluster_exits_nonzero(self) -> None:
        network = Mock()
        network.get_version.side_effect = ConnectionError("connection refused")
        rc, out, _ = self.run_cli(
            ["set-program-authority", "--program", str(Keypair().pubkey()), "--new-authority", str(Keypair().pubkey())],
            network,
        )
        self.assertEqual(rc, 1)
        self.assertIn("failed to reach", out)
        self.assertIn("connection refused", out)
        network.send_and_confirm.assert_not_called()

    def test_write_failures_exit_nonzero(self) -> None:
        network = FakeNetwork(account_len=len(self.program_data))
        network.reject_offsets = {0}
        rc, out, _ = self.run_cli(
            ["upload-program-buffer", "--program-path", str(self.program_path), "--authority", str(Keypair().pubkey())],
            network,
        )
        self.assertEqual(rc, 1)
        self.assertIn("1 of", out)
        self.assertIn("re-run to resume", out)

    def test_allocate_failure_names_phase(self) -> None:
        network = FakeNetwork(account_len=len(self.program_data))
        network.fail_when = lambda tx: True
        rc, out, _ = self.run_cli(
            ["upload-program-buffer", "--program-path", str(self.program_path), "--authority", str(Keypair().pubkey())],
            network,
        )
        self.assertEqual(rc, 1)
        self.assertIn("Allocate phase failed", out)

    def test_relay_round_too_few_relays_never_connects(self) -> None:
        relays = [bytes([i + 1]) * 32 for i in range(MIN_RELAYS - 1)]
        rc, out, connect = self.run_cli(
            [
                "create-relay-round",
                "--event-timestamp", "1650000000",
                "--transaction-lt", "77",
                "--configuration", "ab" * 32,
                "--round-number", "4",
                "--proposal-round-number", "5",
                "--proposal-relays", *[r.hex() for r in relays],
                "--proposal-round-end", "1700000000",
            ]
        )
        self.assertEqual(rc, 1)
        self.assertIn("relay set must contain", out)
        connect.assert_not_called()

    def test_relay_round_uploads_proposal(self) -> None:
        relays = [Keypair().pubkey() for _ in range(MIN_RELAYS)]
        network = FakeNetwork(account_len=4 + 12 + 32 * len(relays), round_loader_id=self.round_loader)
        rc, out, _ = self.run_cli(
            [
                "create-relay-round",
                "--event-timestamp", "1650000000",
                "--transaction-lt", "77",
                "--configuration", "ab" * 32,
                "--round-number", "4",
                "--proposal-round-number", "5",
                "--proposal-relays", *[str(r) for r in relays],
                "--proposal-round-end", "1700000000",
            ],
            network,
        )
        self.assertEqual(rc, 0)
        self.assertIn("Proposal address:", out)
        self.assertEqual(bytes(network.account)[4:8], (5).to_bytes(4, "little"))

    def test_bad_configuration_hex(self) -> None:
        rc, out, _ = self.run_cli(
            [
                "create-relay-round",
                "--event-timestamp", "1",
                "--transaction-lt", "2",
                "--configuration", "zz",
                "--round-number", "4",
                "--proposal-round-number", "5",
                "--proposal-relays", "a", "b", "c",
                "--proposal-round-end", "6",
            ]
        )
        self.assertEqual(rc, 1)
        self.assertIn("configuration must be hex", out)

    def test_chunk_size_reports_write_count(self) -> None:
        rc, out, connect = self.run_cli(["chunk-size", "--program-path", str(self.program_path)])
        self.assertEqual(rc, 0)
        self.assertIn("Chunk size: ", out)
        self.assertIn("Write transactions: 4", out)
        connect.assert_not_called()

    def test_missing_program_file(self) -> None:
        rc, out, _ = self.run_cli(
            ["deploy", "--program-path", str(self.tmp / "missing.so"), "--authority", str(Keypair().pubkey())]
        )
        self.assertEqual(rc, 1)
        self.assertIn("Program not found", out)


if __name__ == "__main__":
    unittest.main()
