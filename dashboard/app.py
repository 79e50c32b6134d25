import logging
import os
from typing import Any, Dict, List, Optional, Tuple

import requests
from dash import ALL, Dash, ctx, dcc, html, no_update
from dash.dependencies import Input, Output, State
import plotly.graph_objects as go

log = logging.getLogger(__name__)


# ---------------------------
# Configuration
# ---------------------------

# Simulator base URL (can be overridden via env var).
COORDINATOR_URL = os.getenv("COORDINATOR_URL", "http://127.0.0.1:8000")

# Refresh interval in milliseconds (keeps several browser tabs in sync).
REFRESH_MS = int(os.getenv("REFRESH_MS", "2000"))

# Layout shape used when the simulator is not reachable at page load.
CHAIN_COUNT = int(os.getenv("CHAIN_COUNT", "3"))
CHAIN_LENGTH = int(os.getenv("CHAIN_LENGTH", "5"))

# Bootstrap "well-success" / "well-error" colours.
VALID_COLOR = "#dff0d8"
INVALID_COLOR = "#f2dede"


def card_style(valid: bool) -> Dict[str, Any]:
    """
    Block card styling: green when the hash meets the difficulty, red otherwise.
    """
    return {
        "flex": "1 1 200px",
        "minWidth": "200px",
        "border": "1px solid #ddd",
        "borderRadius": "10px",
        "padding": "10px 12px",
        "fontSize": "12px",
        "backgroundColor": VALID_COLOR if valid else INVALID_COLOR,
    }


def short_hash(h: str, n: int = 16) -> str:
    return (h[:n] + "...") if h else "—"


# ---------------------------
# Helper functions (HTTP + data)
# ---------------------------

def fetch_json(url: str, timeout: int = 5) -> Any:
    """
    Small helper to GET JSON from an endpoint.
    Returns None on errors to keep the dashboard resilient.
    """
    try:
        resp = requests.get(url, timeout=timeout)
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as e:
        log.debug("GET %s failed: %s", url, e)
        return None


def send_json(
    method: str,
    url: str,
    payload: Optional[Dict[str, Any]] = None,
    params: Optional[Dict[str, Any]] = None,
    timeout: int = 60,
) -> Optional[Dict[str, Any]]:
    """
    Send a JSON request (PATCH/POST). Mining may take a while, hence the longer timeout.
    """
    try:
        resp = requests.request(method, url, json=payload, params=params, timeout=timeout)
        resp.raise_for_status()
        return resp.json()
    except requests.RequestException as e:
        log.warning("%s %s failed: %s", method, url, e)
        return None


def fetch_difficulty() -> Optional[Dict[str, Any]]:
    return fetch_json(f"{COORDINATOR_URL}/difficulty")


def fetch_chains() -> List[Dict[str, Any]]:
    return fetch_json(f"{COORDINATOR_URL}/chains") or []


def block_url(chain: int, number: int) -> str:
    return f"{COORDINATOR_URL}/chains/{chain}/blocks/{number}"


def value_for(inputs: List[Dict[str, Any]], component_id: Dict[str, Any]) -> Any:
    """
    Pick the value of one pattern-matching component out of ctx.inputs_list.
    """
    for item in inputs:
        if item["id"] == component_id:
            return item.get("value")
    return None


def index_blocks(chains: List[Dict[str, Any]]) -> Dict[Tuple[int, int], Dict[str, Any]]:
    return {(b["chain"], b["number"]): b for c in chains for b in c["blocks"]}


def describe_mine(res: Optional[Dict[str, Any]], chain: int, number: int) -> str:
    if res is None:
        return f"Mining block {number} of peer {chain} failed: simulator not reachable"
    if res["success"]:
        return (
            f"Block {number} of peer {chain} mined: nonce={res['nonce']} "
            f"attempts={res['attempts']} time={res['elapsed_ms']:.0f}ms"
        )
    return (
        f"Block {number} of peer {chain}: no valid nonce within "
        f"{res['attempts']} attempts"
    )


def describe_chains(chains: List[Dict[str, Any]]) -> str:
    parts = []
    for c in chains:
        state = "valid" if c["valid"] else "broken"
        parts.append(f"peer {c['chain']}: {state}")
    return " | ".join(parts)


def build_chain_figure(chains: List[Dict[str, Any]]) -> go.Figure:
    """
    Draw each peer chain as a row of nodes (x = block number, y = peer).
    Nodes are green/red by validity; links whose previous hash no longer
    matches the predecessor's hash are drawn in red.
    """
    fig = go.Figure()

    node_x, node_y, node_color, node_text = [], [], [], []
    ok_x, ok_y, broken_x, broken_y = [], [], [], []

    for c in chains:
        blocks = sorted(c["blocks"], key=lambda b: b["number"])
        for b in blocks:
            node_x.append(b["number"])
            node_y.append(c["chain"])
            node_color.append("green" if b["valid"] else "red")
            node_text.append(
                f"Block={b['number']}<br>Nonce={b['nonce']}<br>Hash={b['block_hash'][:8]}"
            )

        for prev, cur in zip(blocks, blocks[1:]):
            xs, ys = (ok_x, ok_y) if cur["linked"] else (broken_x, broken_y)
            xs.extend([prev["number"], cur["number"], None])
            ys.extend([c["chain"], c["chain"], None])

    fig.add_trace(go.Scatter(
        x=ok_x, y=ok_y,
        mode="lines",
        line=dict(color="#888", width=2),
        hoverinfo="none",
        name="link",
    ))
    fig.add_trace(go.Scatter(
        x=broken_x, y=broken_y,
        mode="lines",
        line=dict(color="red", width=2, dash="dot"),
        hoverinfo="none",
        name="broken link",
    ))
    fig.add_trace(go.Scatter(
        x=node_x, y=node_y,
        mode="markers",
        marker=dict(symbol="square", size=18, color=node_color),
        text=node_text,
        hoverinfo="text",
        name="block",
    ))

    fig.update_layout(
        showlegend=False,
        xaxis_title="Block",
        yaxis_title="Peer",
        xaxis=dict(dtick=1),
        yaxis=dict(dtick=1, autorange="reversed"),
        height=260,
        margin=dict(l=30, r=10, t=10, b=30),
    )
    return fig


def render_blocks(
    ids: List[Dict[str, Any]],
    chains: List[Dict[str, Any]],
    field: str,
) -> List[Any]:
    """
    Produce one output value per pattern-matching id, in the order Dash expects.
    """
    blocks = index_blocks(chains)
    out: List[Any] = []
    for component_id in ids:
        b = blocks.get((component_id["chain"], component_id["block"]))
        if b is None:
            out.append(no_update)
        elif field == "data":
            out.append(b["data"])
        elif field == "nonce":
            out.append(b["nonce"])
        elif field == "previous":
            out.append(short_hash(b["previous_hash"]))
        elif field == "hash":
            out.append(short_hash(b["block_hash"]))
        elif field == "card":
            out.append(card_style(b["valid"]))
        else:
            raise ValueError(f"unknown field {field}")
    return out


def sync_inputs(
    inputs: List[Dict[str, Any]],
    chains: List[Dict[str, Any]],
    field: str,
    skip: Optional[Dict[str, Any]] = None,
) -> List[Any]:
    """
    New values for editable inputs ("data" or "nonce").

    Inputs already showing the simulator's value are left alone, and so is
    the input that triggered the callback, so a refresh never rewrites the
    field the user is working in.
    """
    ids = [item["id"] for item in inputs]
    out = render_blocks(ids, chains, field)
    for i, item in enumerate(inputs):
        if item["id"] == skip or item.get("value") == out[i]:
            out[i] = no_update
    return out


# ---------------------------
# Layout
# ---------------------------

def block_card(chain: int, number: int, data: str = "", valid: bool = False) -> html.Div:
    """
    One block: editable data and nonce, read-only previous hash and hash, Mine button.
    """
    def key(kind: str) -> Dict[str, Any]:
        return {"type": kind, "chain": chain, "block": number}

    return html.Div(
        id=key("card"),
        style=card_style(valid),
        children=[
            html.Div(f"Block #{number}", style={"fontWeight": "bold", "marginBottom": "6px"}),
            html.Label("Nonce"),
            dcc.Input(id=key("nonce"), type="number", min=0, debounce=True, style={"width": "100%"}),
            html.Label("Data"),
            dcc.Input(id=key("data"), type="text", value=data, debounce=True, style={"width": "100%"}),
            html.Div("Prev", style={"color": "#555", "marginTop": "6px"}),
            html.Div(id=key("previous"), style={"fontFamily": "monospace"}),
            html.Div("Hash", style={"color": "#555", "marginTop": "6px"}),
            html.Div(id=key("hash"), style={"fontFamily": "monospace"}),
            html.Button("Mine", id=key("mine"), n_clicks=0, style={"marginTop": "8px"}),
        ],
    )


def difficulty_line(difficulty: Optional[Dict[str, Any]]) -> str:
    if not difficulty:
        return f"Waiting for simulator at {COORDINATOR_URL} ..."
    return (
        f"Valid hashes start with <= '{difficulty['pattern']}' "
        f"(first {difficulty['pattern_length']} hex chars), "
        f"mining gives up after {difficulty['attempt_budget']} attempts"
    )


def serve_layout() -> html.Div:
    """
    Built on every page load so the card grid matches the simulator's chains.
    """
    chains = fetch_chains()
    if chains:
        shape = [(c["chain"], [(b["number"], b["data"], b["valid"]) for b in c["blocks"]]) for c in chains]
    else:
        shape = [
            (i, [(n, "", False) for n in range(1, CHAIN_LENGTH + 1)])
            for i in range(1, CHAIN_COUNT + 1)
        ]

    rows = []
    for chain, blocks in shape:
        rows.append(html.H4(f"Peer {chain}", style={"marginBottom": "4px"}))
        rows.append(html.Div(
            style={"display": "flex", "gap": "12px", "flexWrap": "wrap", "marginBottom": "12px"},
            children=[block_card(chain, n, data, valid) for n, data, valid in blocks],
        ))

    return html.Div(
        style={"fontFamily": "Arial", "maxWidth": "1200px", "margin": "0 auto", "padding": "16px"},
        children=[
            html.H2("Proof-of-Work Mining Demo", style={"marginBottom": "4px"}),
            html.Div(difficulty_line(fetch_difficulty()), style={"color": "#555", "marginBottom": "12px"}),

            # Periodic trigger (no UI)
            dcc.Interval(id="tick", interval=REFRESH_MS, n_intervals=0),

            dcc.Checklist(
                id="propagate",
                options=[{"label": " Propagate changes to the following blocks", "value": "on"}],
                value=["on"],
                style={"marginBottom": "12px"},
            ),

            html.Div(
                style={"marginBottom": "12px", "padding": "12px", "border": "1px solid #eee", "borderRadius": "8px"},
                children=[
                    html.H4("Chain links", style={"marginBottom": "4px"}),
                    dcc.Graph(id="graph-chain", config={"displayModeBar": False}, style={"height": "260px"}),
                ],
            ),

            *rows,

            # Status line for mining results / errors
            html.Div(id="status-line", style={"marginTop": "10px", "color": "#777"}),
        ],
    )


# ---------------------------
# Dash app
# ---------------------------

app = Dash(__name__)
app.title = "Proof-of-Work Mining Demo"
app.layout = serve_layout


def apply_action(
    trigger: Any,
    inputs_list: List[List[Dict[str, Any]]],
    propagate: bool,
) -> Optional[str]:
    """
    Forward the triggering edit or Mine click to the simulator.
    Returns a status message for mining, None otherwise.
    """
    if not isinstance(trigger, dict):
        return None

    chain, number = trigger["chain"], trigger["block"]
    params = {"propagate": str(propagate).lower()}

    if trigger["type"] == "mine":
        res = send_json("POST", f"{block_url(chain, number)}/mine", params=params)
        return describe_mine(res, chain, number)
    if trigger["type"] == "data":
        value = value_for(inputs_list[0], trigger)
        send_json("PATCH", block_url(chain, number), {"data": value or ""}, params=params)
    elif trigger["type"] == "nonce":
        value = value_for(inputs_list[1], trigger)
        if value is not None:
            send_json("PATCH", block_url(chain, number), {"nonce": int(value)}, params=params)
    return None


def redraw(
    trigger: Any,
    inputs_list: List[List[Dict[str, Any]]],
    outputs_list: List[Any],
    chains: List[Dict[str, Any]],
    status: Optional[str] = None,
) -> Tuple[Any, ...]:
    """
    Build the callback's return value from the simulator's chains.
    Must match Output order and list lengths.
    """
    if not chains:
        return (
            [no_update] * len(outputs_list[0]),
            [no_update] * len(outputs_list[1]),
            [no_update] * len(outputs_list[2]),
            [no_update] * len(outputs_list[3]),
            [no_update] * len(outputs_list[4]),
            no_update,
            f"Waiting for simulator at {COORDINATOR_URL} ...",
        )

    skip = trigger if isinstance(trigger, dict) else None
    return (
        sync_inputs(inputs_list[0], chains, "data", skip),
        sync_inputs(inputs_list[1], chains, "nonce", skip),
        render_blocks([o["id"] for o in outputs_list[2]], chains, "previous"),
        render_blocks([o["id"] for o in outputs_list[3]], chains, "hash"),
        render_blocks([o["id"] for o in outputs_list[4]], chains, "card"),
        build_chain_figure(chains),
        status or describe_chains(chains),
    )


@app.callback(
    Output({"type": "data", "chain": ALL, "block": ALL}, "value"),
    Output({"type": "nonce", "chain": ALL, "block": ALL}, "value"),
    Output({"type": "previous", "chain": ALL, "block": ALL}, "children"),
    Output({"type": "hash", "chain": ALL, "block": ALL}, "children"),
    Output({"type": "card", "chain": ALL, "block": ALL}, "style"),
    Output("graph-chain", "figure"),
    Output("status-line", "children"),
    Input({"type": "data", "chain": ALL, "block": ALL}, "value"),
    Input({"type": "nonce", "chain": ALL, "block": ALL}, "value"),
    Input({"type": "mine", "chain": ALL, "block": ALL}, "n_clicks"),
    Input("tick", "n_intervals"),
    State("propagate", "value"),
)
def refresh(_data, _nonces, _clicks, _n, propagate_value):
    """
    Forward the triggering edit or Mine click to the simulator, then redraw
    every block from the simulator's state.
    """
    propagate = "on" in (propagate_value or [])
    status = apply_action(ctx.triggered_id, ctx.inputs_list, propagate)
    return redraw(ctx.triggered_id, ctx.inputs_list, ctx.outputs_list, fetch_chains(), status)


if __name__ == "__main__":
    # Run dashboard locally. Start the simulator first.
    logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")
    app.run(host="127.0.0.1", port=8050, debug=False)
