"""
Tests for the dashboard helpers (no browser, no running simulator).
"""

import pytest
import requests
from dash import no_update

import dashboard.app as dash_app


def make_block(chain, number, valid=True, linked=True, nonce=0):
    return {
        "chain": chain,
        "number": number,
        "data": f"data {number}",
        "nonce": nonce,
        "previous_hash": "" if number == 1 else f"{number - 1:064x}",
        "block_hash": f"{number:064x}",
        "valid": valid,
        "linked": linked,
    }


@pytest.fixture
def chains():
    return [
        {"chain": 1, "valid": True, "blocks": [make_block(1, n) for n in (1, 2, 3)]},
        {"chain": 2, "valid": False, "blocks": [
            make_block(2, 1),
            make_block(2, 2, valid=False, nonce=7),
            make_block(2, 3, linked=False),
        ]},
    ]


def walk(component):
    yield component
    children = getattr(component, "children", None)
    if children is None or isinstance(children, str):
        return
    if not isinstance(children, (list, tuple)):
        children = [children]
    for child in children:
        yield from walk(child)


class TestRendering:

    def test_card_style(self):
        assert dash_app.card_style(True)["backgroundColor"] == dash_app.VALID_COLOR
        assert dash_app.card_style(False)["backgroundColor"] == dash_app.INVALID_COLOR

    def test_short_hash(self):
        assert dash_app.short_hash("ab" * 32) == "ab" * 8 + "..."
        assert dash_app.short_hash("") == "—"

    def test_value_for(self):
        inputs = [
            {"id": {"type": "data", "chain": 1, "block": 1}, "property": "value", "value": "a"},
            {"id": {"type": "data", "chain": 1, "block": 2}, "property": "value", "value": "b"},
        ]
        assert dash_app.value_for(inputs, {"type": "data", "chain": 1, "block": 2}) == "b"
        assert dash_app.value_for(inputs, {"type": "data", "chain": 9, "block": 2}) is None

    def test_render_blocks_follows_id_order(self, chains):
        ids = [
            {"type": "nonce", "chain": 2, "block": 2},
            {"type": "nonce", "chain": 1, "block": 1},
            {"type": "nonce", "chain": 5, "block": 1},
        ]
        assert dash_app.render_blocks(ids, chains, "nonce") == [7, 0, no_update]

    def test_render_card_styles(self, chains):
        ids = [{"type": "card", "chain": 2, "block": n} for n in (1, 2)]
        styles = dash_app.render_blocks(ids, chains, "card")
        assert [s["backgroundColor"] for s in styles] == [dash_app.VALID_COLOR, dash_app.INVALID_COLOR]

    def test_render_unknown_field(self, chains):
        with pytest.raises(ValueError):
            dash_app.render_blocks([{"chain": 1, "block": 1}], chains, "bogus")

    def test_chain_figure(self, chains):
        fig = dash_app.build_chain_figure(chains)
        links, broken, nodes = fig.data

        assert list(nodes.x) == [1, 2, 3, 1, 2, 3]
        assert list(nodes.y) == [1, 1, 1, 2, 2, 2]
        assert list(nodes.marker.color) == ["green"] * 4 + ["red", "green"]
        # Only peer 2's last link is broken.
        assert list(broken.x) == [2, 3, None]
        assert list(broken.y) == [2, 2, None]
        assert len(links.x) == 9

    def test_describe_mine(self):
        ok = {"success": True, "nonce": 5, "attempts": 6, "elapsed_ms": 1.2}
        failed = {"success": False, "nonce": None, "attempts": 31, "elapsed_ms": 3.0}
        assert "nonce=5" in dash_app.describe_mine(ok, 1, 2)
        assert "31 attempts" in dash_app.describe_mine(failed, 1, 2)
        assert "not reachable" in dash_app.describe_mine(None, 1, 2)

    def test_describe_chains(self, chains):
        assert dash_app.describe_chains(chains) == "peer 1: valid | peer 2: broken"

    def test_difficulty_line(self):
        line = dash_app.difficulty_line({"pattern": "00f", "pattern_length": 3, "attempt_budget": 2048})
        assert "'00f'" in line and "2048" in line
        assert "Waiting" in dash_app.difficulty_line(None)


class TestHttpHelpers:

    def test_fetch_json_unreachable(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("refused")
        monkeypatch.setattr(requests, "get", boom)
        assert dash_app.fetch_json("http://127.0.0.1:1/chains") is None
        assert dash_app.fetch_chains() == []

    def test_send_json_unreachable(self, monkeypatch):
        def boom(*args, **kwargs):
            raise requests.ConnectionError("refused")
        monkeypatch.setattr(requests, "request", boom)
        assert dash_app.send_json("POST", "http://127.0.0.1:1/x") is None


class TestLayout:

    def test_fallback_layout(self, monkeypatch):
        monkeypatch.setattr(dash_app, "fetch_json", lambda url, timeout=5: None)
        layout = dash_app.serve_layout()
        cards = [
            c.id for c in walk(layout)
            if isinstance(getattr(c, "id", None), dict) and c.id["type"] == "card"
        ]
        assert len(cards) == dash_app.CHAIN_COUNT * dash_app.CHAIN_LENGTH

    def test_layout_from_simulator(self, monkeypatch, chains):
        def fake_fetch(url, timeout=5):
            if url.endswith("/chains"):
                return chains
            return {"pattern": "00f", "pattern_length": 3, "attempt_budget": 2048}
        monkeypatch.setattr(dash_app, "fetch_json", fake_fetch)

        layout = dash_app.serve_layout()
        data_inputs = [
            c for c in walk(layout)
            if isinstance(getattr(c, "id", None), dict) and c.id["type"] == "data"
        ]
        assert len(data_inputs) == 6
        assert data_inputs[0].value == "data 1"


def ids_of(kind, chains):
    return [
        {"type": kind, "chain": c["chain"], "block": b["number"]}
        for c in chains for b in c["blocks"]
    ]


def inputs_of(kind, chains, value):
    return [{"id": i, "property": "value", "value": value(i)} for i in ids_of(kind, chains)]


class TestSyncInputs:

    def test_stale_data_is_replaced(self, chains):
        inputs = inputs_of("data", chains, lambda i: "old")
        out = dash_app.sync_inputs(inputs, chains, "data")
        assert out[0] == "data 1"
        assert out[4] == "data 2"

    def test_matching_values_left_alone(self, chains):
        inputs = inputs_of("data", chains, lambda i: f"data {i['block']}")
        assert dash_app.sync_inputs(inputs, chains, "data") == [no_update] * 6

    def test_triggering_field_left_alone(self, chains):
        inputs = inputs_of("nonce", chains, lambda i: 99)
        skip = {"type": "nonce", "chain": 2, "block": 2}
        out = dash_app.sync_inputs(inputs, chains, "nonce", skip)
        assert out[4] is no_update
        assert out[0] == 0


class TestCallback:

    @pytest.fixture
    def sent(self, monkeypatch):
        calls = []

        def fake_send(method, url, payload=None, params=None, timeout=60):
            calls.append((method, url, payload, params))
            if url.endswith("/mine"):
                return {"success": True, "nonce": 4, "attempts": 5, "elapsed_ms": 2.0}
            return {}

        monkeypatch.setattr(dash_app, "send_json", fake_send)
        return calls

    def test_mine_click(self, sent, chains):
        trigger = {"type": "mine", "chain": 2, "block": 3}
        status = dash_app.apply_action(trigger, [[], []], propagate=True)

        assert sent == [(
            "POST", f"{dash_app.COORDINATOR_URL}/chains/2/blocks/3/mine",
            None, {"propagate": "true"},
        )]
        assert "nonce=4" in status

    def test_data_edit_without_propagation(self, sent, chains):
        trigger = {"type": "data", "chain": 1, "block": 2}
        inputs = [inputs_of("data", chains, lambda i: "edited"), []]
        assert dash_app.apply_action(trigger, inputs, propagate=False) is None
        assert sent == [(
            "PATCH", f"{dash_app.COORDINATOR_URL}/chains/1/blocks/2",
            {"data": "edited"}, {"propagate": "false"},
        )]

    def test_nonce_edit(self, sent, chains):
        trigger = {"type": "nonce", "chain": 1, "block": 1}
        inputs = [[], inputs_of("nonce", chains, lambda i: 12)]
        dash_app.apply_action(trigger, inputs, propagate=True)
        assert sent[0][2] == {"nonce": 12}

    def test_cleared_nonce_not_sent(self, sent, chains):
        trigger = {"type": "nonce", "chain": 1, "block": 1}
        inputs = [[], inputs_of("nonce", chains, lambda i: None)]
        dash_app.apply_action(trigger, inputs, propagate=True)
        assert sent == []

    def test_tick_sends_nothing(self, sent):
        assert dash_app.apply_action("tick", [[], []], propagate=True) is None
        assert dash_app.apply_action(None, [[], []], propagate=True) is None
        assert sent == []

    def test_redraw(self, chains):
        inputs = [
            inputs_of("data", chains, lambda i: "stale"),
            inputs_of("nonce", chains, lambda i: 0),
        ]
        outputs = [[{"id": i} for i in ids_of(kind, chains)]
                   for kind in ("data", "nonce", "previous", "hash", "card")]
        trigger = {"type": "data", "chain": 1, "block": 1}

        data, nonces, previous, hashes, cards, fig, status = dash_app.redraw(
            trigger, inputs, outputs, chains,
        )
        assert data[0] is no_update
        assert data[1] == "data 2"
        assert nonces[4] == 7
        assert nonces[0] is no_update
        assert previous[0] == "—"
        assert len(hashes) == len(cards) == 6
        assert len(fig.data) == 3
        assert status == "peer 1: valid | peer 2: broken"

    def test_redraw_without_simulator(self, chains):
        outputs = [[{"id": i} for i in ids_of(kind, chains)]
                   for kind in ("data", "nonce", "previous", "hash", "card")]
        result = dash_app.redraw(None, [[], []], outputs, [])
        assert [len(r) for r in result[:5]] == [6] * 5
        assert result[5] is no_update
        assert "Waiting" in result[6]
