import threading

from petdance.jobs.credits import COINS_PER_GENERATION, InMemoryCreditLedger, SupabaseCreditLedger


def test_decrement_only_when_sufficient():
    ledger = InMemoryCreditLedger({"u": 150})
    assert ledger.decrement_if_sufficient("u", COINS_PER_GENERATION) is True
    assert ledger.decrement_if_sufficient("u", COINS_PER_GENERATION) is False
    assert ledger.get_balance("u") == 50


def test_concurrent_decrements_never_overdraw():
    ledger = InMemoryCreditLedger({"u": 3 * COINS_PER_GENERATION})
    results = []
    barrier = threading.Barrier(20)

    def attempt():
        barrier.wait()
        results.append(ledger.decrement_if_sufficient("u", COINS_PER_GENERATION))

    threads = [threading.Thread(target=attempt) for _ in range(20)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert results.count(True) == 3
    assert ledger.get_balance("u") == 0


class _RpcResult:
    def __init__(self, data):
        self.data = data

    def execute(self):
        return self


class _FakeSupabase:
    def __init__(self, rpc_data):
        self.rpc_data = rpc_data
        self.rpc_calls = []
        self.inserted = []

    def rpc(self, name, params):
        self.rpc_calls.append((name, params))
        return _RpcResult(self.rpc_data)

    def table(self, name):
        sb = self

        class _Table:
            def insert(self, row):
                sb.inserted.append((name, row))
                return _RpcResult([row])

        return _Table()


def test_supabase_ledger_uses_the_atomic_rpc():
    sb = _FakeSupabase(rpc_data=0)
    ledger = SupabaseCreditLedger(sb)
    assert ledger.decrement_if_sufficient("u", 100) is True
    assert sb.rpc_calls == [("decrement_credits_if_sufficient", {"p_user_id": "u", "p_amount": 100})]
    table, row = sb.inserted[0]
    assert table == "credit_transactions"
    assert row["amount"] == -100
    assert row["balance_after"] == 0
    assert row["metadata"] == {"type": "video_generate", "ref": None}


def test_supabase_ledger_null_means_insufficient():
    sb = _FakeSupabase(rpc_data=None)
    assert SupabaseCreditLedger(sb).decrement_if_sufficient("u", 100) is False
    assert sb.inserted == []
