import struct
import unittest

from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from chunkloader import loader


def decode_create_account(ix):
    _, lamports, space = struct.unpack_from("<IQQ", ix.data)
    return {"lamports": lamports, "space": space, "owner": Pubkey.from_bytes(bytes(ix.data)[20:52])}


class LoaderInstructionTests(unittest.TestCase):
    def setUp(self) -> None:
        self.payer = Keypair().pubkey()
        self.buffer = Keypair().pubkey()
        self.program = Keypair().pubkey()

    def test_create_buffer_sizes_account_for_metadata(self) -> None:
        create, init = loader.create_buffer(self.payer, self.buffer, self.payer, 12_345, 1_000)
        self.assertEqual(create.program_id, SYSTEM_PROGRAM_ID)
        params = decode_create_account(create)
        self.assertEqual(params["space"], 1_037)
        self.assertEqual(params["lamports"], 12_345)
        self.assertEqual(params["owner"], loader.LOADER_ID)
        self.assertEqual(bytes(init.data), struct.pack("<I", 0))
        self.assertEqual(init.accounts[0].pubkey, self.buffer)
        self.assertEqual(init.accounts[1].pubkey, self.payer)

    def test_write_layout(self) -> None:
        ix = loader.write(self.buffer, self.payer, 2_048, b"\xde\xad\xbe\xef")
        self.assertEqual(struct.unpack_from("<IIQ", ix.data), (1, 2_048, 4))
        self.assertEqual(bytes(ix.data)[16:], b"\xde\xad\xbe\xef")
        self.assertTrue(ix.accounts[1].is_signer)
        self.assertTrue(ix.accounts[0].is_writable)

    def test_write_rejects_offsets_outside_u32(self) -> None:
        with self.assertRaises(ValueError):
            loader.write(self.buffer, self.payer, 2**32, b"x")

    def test_deploy_references_programdata(self) -> None:
        create, deploy = loader.deploy_with_max_program_len(
            self.payer, self.program, self.buffer, self.payer, 999, 4_096
        )
        self.assertEqual(decode_create_account(create)["space"], loader.size_of_program())
        self.assertEqual(struct.unpack("<IQ", bytes(deploy.data)), (2, 4_096))
        metas = [meta.pubkey for meta in deploy.accounts]
        self.assertEqual(metas[1], loader.get_programdata_address(self.program))
        self.assertEqual(metas[2], self.program)
        self.assertEqual(metas[3], self.buffer)
        self.assertTrue(deploy.accounts[-1].is_signer)

    def test_set_authority_variants(self) -> None:
        new_authority = Keypair().pubkey()
        ix = loader.set_buffer_authority(self.buffer, self.payer, new_authority)
        self.assertEqual(bytes(ix.data), struct.pack("<I", 4))
        self.assertEqual(ix.accounts[2].pubkey, new_authority)

        upgrade = loader.set_upgrade_authority(self.program, self.payer, new_authority)
        self.assertEqual(upgrade.accounts[0].pubkey, loader.get_programdata_address(self.program))
        self.assertEqual(len(upgrade.accounts), 3)

        frozen = loader.set_upgrade_authority(self.program, self.payer, None)
        self.assertEqual(len(frozen.accounts), 2)


if __name__ == "__main__":
    unittest.main()
