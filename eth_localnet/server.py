"""JSON-RPC proxy for local networks.

Exposes all registered networks behind one port:
``http://localhost:{port}/{i}`` forwards to the node of network *i*.
This is the ``rpc`` URL written to the exported chain file, so other
tooling does not need to know the random Anvil ports.
"""

import logging
import threading

import requests
from flask import Flask, jsonify, request
from werkzeug.serving import BaseWSGIServer, make_server

from eth_localnet.network import Network, networks

logger = logging.getLogger(__name__)

#: How long we wait for a node to answer a forwarded request
FORWARD_TIMEOUT = 120


def _rpc_error(message: str, request_id=None, code: int = -32000) -> dict:
    return {"jsonrpc": "2.0", "id": request_id, "error": {"code": code, "message": message}}


def create_app(network_list: list[Network] | None = None) -> Flask:
    """Create the proxy WSGI app.

    :param network_list:
        Networks to expose, defaults to the live registry
    """
    app = Flask(__name__)
    exposed = networks if network_list is None else network_list

    @app.route("/", methods=["GET"])
    def index():
        return jsonify([{"index": i, "name": n.name, "chainId": n.chain_id} for i, n in enumerate(exposed)])

    @app.route("/<int:index>", methods=["POST"])
    def forward(index: int):
        body = request.get_json(silent=True)
        request_id = body.get("id") if isinstance(body, dict) else None

        if index >= len(exposed):
            return jsonify(_rpc_error(f"No network at index {index}", request_id)), 404

        if body is None:
            return jsonify(_rpc_error("Parse error", code=-32700)), 400

        network = exposed[index]
        try:
            resp = requests.post(network.rpc_url, json=body, timeout=FORWARD_TIMEOUT)
        except requests.RequestException as e:
            logger.warning("Forwarding to %s failed: %s", network.name, e)
            return jsonify(_rpc_error(f"{network.name} node unreachable: {e}", request_id)), 502

        return app.response_class(resp.content, status=resp.status_code, mimetype="application/json")

    return app


class RpcServer:
    """Run the proxy app in a background thread."""

    def __init__(self, port: int, host: str = "localhost", network_list: list[Network] | None = None):
        self.port = port
        self.host = host
        self.server: BaseWSGIServer = make_server(host, port, create_app(network_list), threaded=True)
        self.thread = threading.Thread(target=self.server.serve_forever, name=f"rpc-proxy-{port}", daemon=True)

    def __repr__(self):
        return f"<RpcServer http://{self.host}:{self.port}>"

    def start(self):
        self.thread.start()
        logger.info("JSON-RPC proxy listening at http://%s:%d", self.host, self.port)

    def close(self):
        self.server.shutdown()
        self.server.server_close()
        self.thread.join(timeout=10)
        logger.info("JSON-RPC proxy at port %d stopped", self.port)


_server: RpcServer | None = None

_server_lock = threading.Lock()


def listen(port: int, host: str = "localhost", network_list: list[Network] | None = None) -> RpcServer:
    """Start serving networks at ``port``.

    Replaces an earlier listener of this process.

    :param network_list:
        Networks to serve, in index order. Defaults to all registered networks.
    """
    global _server
    with _server_lock:
        if _server is not None:
            _server.close()
        _server = RpcServer(port, host, network_list)
        _server.start()
        return _server


def stop_listening():
    global _server
    with _server_lock:
        if _server is not None:
            _server.close()
            _server = None
