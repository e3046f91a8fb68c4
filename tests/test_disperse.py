import pytest
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID

from soltoolkit.builder import MEMO_PROGRAM_ID, PACKET_DATA_SIZE
from soltoolkit.disperse import Disperse, Transfer
from soltoolkit.errors import ConfigurationError, LedgerRejection
from soltoolkit.pipeline import TransactionPipeline

from conftest import A, B, C


def transfers(count, lamports=10_000):
    return [Transfer(Pubkey.new_unique(), lamports) for _ in range(count)]


@pytest.fixture
async def pipeline(cluster):
    manager = await cluster.manager(endpoints=[A, B, C], policy="first")
    return TransactionPipeline(manager, retry_delay=0)


class TestBatches:

    @pytest.mark.unit
    def test_default_batch_size(self, keypair):
        batches = Disperse(keypair.pubkey(), transfers(40)).batches()

        assert [len(tx) for tx in batches] == [18, 18, 4]
        assert all(ix.program_id == SYSTEM_PROGRAM_ID for tx in batches for ix in tx.instructions)

    def test_every_transfer_is_kept_in_order(self, keypair):
        planned = transfers(25)

        batches = Disperse(keypair.pubkey(), planned, batch_size=10).batches()

        recipients = [ix.accounts[1].pubkey for tx in batches for ix in tx.instructions]
        assert recipients == [t.recipient for t in planned]

    def test_memo_closes_every_batch(self, keypair):
        batches = Disperse(keypair.pubkey(), transfers(20), memo="payroll").batches()

        assert [len(tx) for tx in batches] == [19, 3]
        for tx in batches:
            assert tx.instructions[-1].program_id == MEMO_PROGRAM_ID
            assert bytes(tx.instructions[-1].data) == b"payroll"

    def test_packet_size_limits_batches(self, keypair):
        batches = Disperse(keypair.pubkey(), transfers(40), batch_size=100).batches()

        assert [len(tx) for tx in batches] == [21, 19]
        assert all(tx.estimate_size(keypair.pubkey()) <= PACKET_DATA_SIZE for tx in batches)

    def test_fixed_amount(self, keypair):
        recipients = [Pubkey.new_unique() for _ in range(3)]

        disperse = Disperse.fixed_amount(keypair.pubkey(), recipients, 500)

        assert disperse.transfers == [Transfer(r, 500) for r in recipients]

    def test_fixed_amount_without_recipients(self, keypair):
        with pytest.raises(ConfigurationError, match="recipients must be defined"):
            Disperse.fixed_amount(keypair.pubkey(), [], 500)

    @pytest.mark.parametrize("kwargs", [{"transfers": []}, {"transfers": transfers(2), "batch_size": 0}])
    def test_invalid_arguments(self, keypair, kwargs):
        with pytest.raises(ConfigurationError):
            Disperse(keypair.pubkey(), **kwargs)


class TestDispatch:

    @pytest.mark.asyncio
    @pytest.mark.unit
    async def test_all_batches_confirmed(self, pipeline, keypair, cluster):
        disperse = Disperse(keypair.pubkey(), transfers(40))

        results = await disperse.dispatch(pipeline, signers=[keypair])

        assert [r.transfers for r in results] == [18, 18, 4]
        assert all(r.ok for r in results)
        assert len({r.signature for r in results}) == 3
        assert len(cluster.node(A).sent) == 3

    @pytest.mark.asyncio
    async def test_failures_are_collected(self, pipeline, keypair, cluster):
        cluster.node(A).confirm_script = [{"InstructionError": [0, {"Custom": 1}]}, None, None]
        disperse = Disperse(keypair.pubkey(), transfers(40), memo="airdrop")

        results = await disperse.dispatch(pipeline, signers=[keypair], concurrency=1)

        assert [r.ok for r in results] == [False, True, True]
        assert isinstance(results[0].error, LedgerRejection)
        assert results[0].signature is None
        assert [r.transfers for r in results] == [18, 18, 4]
