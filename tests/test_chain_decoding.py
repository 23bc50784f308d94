from decimal import Decimal

from copytrade_bot.chains.base_chain import TRANSFER_TOPIC, decode_receipt, pad_address, topic_to_address
from copytrade_bot.chains.solana import decode_transaction
from copytrade_bot.core.classifier import classify
from copytrade_bot.core.models import Chain, Purchase, WatchedWallet

SOL_WALLET = WatchedWallet(label="sol", address="WhaLe1111111111111111111111111111111111111")
MINT = "Mint1111111111111111111111111111111111111111"
POOL = "PooL1111111111111111111111111111111111111111"


def _token_entry(owner, mint, amount, index=1):
    return {"accountIndex": index, "owner": owner, "mint": mint, "uiTokenAmount": {"amount": str(amount)}}


def _sol_tx(pre_balances, post_balances, pre_tokens, post_tokens, err=None, fee=5000):
    return {
        "slot": 250,
        "transaction": {
            "message": {"accountKeys": [{"pubkey": SOL_WALLET.address}, {"pubkey": POOL}]}
        },
        "meta": {
            "err": err,
            "fee": fee,
            "preBalances": pre_balances,
            "postBalances": post_balances,
            "preTokenBalances": pre_tokens,
            "postTokenBalances": post_tokens,
        },
    }


class TestSolanaDecoding:
    def test_buy_with_sol(self):
        tx = _sol_tx(
            [2_000_000_000, 0],
            [1_899_995_000, 100_000_000],
            [_token_entry(POOL, MINT, 5000, 2)],
            [_token_entry(SOL_WALLET.address, MINT, 1000), _token_entry(POOL, MINT, 4000, 2)],
        )

        event = decode_transaction(tx, "sig", [SOL_WALLET])

        assert event.key == "sig"
        assert event.block == 250
        activity = event.activity[SOL_WALLET.address]
        assert activity.native_spent
        assert [(d.token, d.pre_amount, d.post_amount) for d in activity.deltas] == [
            (MINT, Decimal(0), Decimal(1000))
        ]
        decision = classify(event, [SOL_WALLET], set(), set())
        assert isinstance(decision, Purchase)
        assert decision.pre_amount == 0

    def test_fee_alone_is_not_spending(self):
        tx = _sol_tx(
            [1_000_000_000, 0],
            [999_995_000, 0],
            [],
            [_token_entry(SOL_WALLET.address, MINT, 1000)],
        )

        event = decode_transaction(tx, "sig", [SOL_WALLET])

        assert not event.activity[SOL_WALLET.address].native_spent
        assert not isinstance(classify(event, [SOL_WALLET], set(), set()), Purchase)

    def test_accumulation_keeps_prior_balance(self):
        tx = _sol_tx(
            [2_000_000_000, 0],
            [1_000_000_000, 0],
            [_token_entry(SOL_WALLET.address, MINT, 300)],
            [_token_entry(SOL_WALLET.address, MINT, 900)],
        )

        decision = classify(decode_transaction(tx, "sig", [SOL_WALLET]), [SOL_WALLET], set(), set())

        assert decision.pre_amount == Decimal(300)

    def test_failed_transaction_is_dropped(self):
        tx = _sol_tx([1, 0], [1, 0], [], [], err={"InstructionError": [0, "Custom"]})

        assert decode_transaction(tx, "sig", [SOL_WALLET]) is None


BASE_WALLET = WatchedWallet(label="base", address="0x" + "ab" * 20)
ROUTER = "0x" + "11" * 20
TOKEN = "0x" + "cd" * 20
WETH = "0x4200000000000000000000000000000000000006"


def _transfer(token, src, dst, amount):
    return {
        "address": token,
        "topics": [TRANSFER_TOPIC, pad_address(src), pad_address(dst)],
        "data": hex(amount),
    }


class TestBaseDecoding:
    def test_address_padding_round_trip(self):
        assert topic_to_address(pad_address("0x" + "AB" * 20)) == BASE_WALLET.address

    def test_eth_buy(self):
        receipt = {
            "status": "0x1",
            "transactionHash": "0xhash",
            "blockNumber": "0x10",
            "to": ROUTER,
            "logs": [
                _transfer(WETH, ROUTER, "0x" + "22" * 20, 10**15),
                _transfer(TOKEN, "0x" + "22" * 20, BASE_WALLET.address, 5000),
            ],
        }
        tx = {"from": BASE_WALLET.address, "to": ROUTER, "value": hex(10**15)}

        event = decode_receipt(receipt, tx, [BASE_WALLET])

        assert event.chain is Chain.BASE
        assert event.block == 16
        activity = event.activity[BASE_WALLET.address]
        assert activity.native_spent
        assert [(d.token, d.post_amount) for d in activity.deltas] == [(TOKEN, Decimal(5000))]
        decision = classify(event, [BASE_WALLET], {WETH}, set())
        assert isinstance(decision, Purchase)
        assert decision.block == 16

    def test_token_sell_is_a_decrease(self):
        receipt = {
            "status": "0x1",
            "transactionHash": "0xhash",
            "logs": [_transfer(TOKEN, BASE_WALLET.address, ROUTER, 5000)],
        }
        tx = {"from": BASE_WALLET.address, "to": ROUTER, "value": "0x0"}

        event = decode_receipt(receipt, tx, [BASE_WALLET])

        delta = event.activity[BASE_WALLET.address].deltas[0]
        assert delta.decreased

    def test_incoming_transfer_alone_is_an_airdrop(self):
        receipt = {
            "status": "0x1",
            "transactionHash": "0xhash",
            "logs": [_transfer(TOKEN, ROUTER, BASE_WALLET.address, 5000)],
        }
        tx = {"from": ROUTER, "to": TOKEN, "value": "0x0"}

        event = decode_receipt(receipt, tx, [BASE_WALLET])

        assert not isinstance(classify(event, [BASE_WALLET], set(), set()), Purchase)

    def test_nft_transfers_are_skipped(self):
        log = _transfer(TOKEN, ROUTER, BASE_WALLET.address, 1)
        log["topics"].append("0x" + "00" * 31 + "07")
        receipt = {"status": "0x1", "transactionHash": "0xhash", "logs": [log]}

        event = decode_receipt(receipt, {"from": ROUTER}, [BASE_WALLET])

        assert BASE_WALLET.address not in event.activity

    def test_reverted_receipt_is_dropped(self):
        assert decode_receipt({"status": "0x0", "logs": []}, {}, [BASE_WALLET]) is None
