# Copyright 2025 Softwell S.r.l.
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     https://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Tests for the uvicorn-backed Server (no sockets are opened)."""

from __future__ import annotations

from okapi_asgi import Okapi
from okapi_asgi.server import Server


class TestServerConfig:
    """Tests for listener construction."""

    def test_defaults_from_settings(self) -> None:
        app = Okapi(host="0.0.0.0", port=9000, shutdown_timeout=5)
        server = Server(app)
        assert server.host == "0.0.0.0"
        assert server.port == 9000
        assert server.shutdown_timeout == 5
        assert not server.tls_enabled

    def test_arguments_override_settings(self) -> None:
        app = Okapi(port=9000)
        server = Server(app, host="10.0.0.1", port=0, shutdown_timeout=1)
        assert server.host == "10.0.0.1"
        assert server.port == 0
        assert server.shutdown_timeout == 1

    def test_plain_listener(self) -> None:
        app = Okapi(port=9000, idle_timeout=15, debug=True)
        listeners = Server(app).listeners()
        assert len(listeners) == 1
        config = listeners[0].config
        assert config.app is app
        assert config.port == 9000
        assert config.lifespan == "on"
        assert config.access_log is False
        assert config.timeout_keep_alive == 15
        assert config.log_level == "debug"

    def test_tls_listener(self) -> None:
        app = Okapi(
            port=8080,
            tls_port=8443,
            tls_certfile="cert.pem",
            tls_keyfile="key.pem",
        )
        server = Server(app)
        assert server.tls_enabled
        assert server.tls_host == server.host

        plain, tls = server.listeners()
        assert plain.config.lifespan == "on"
        assert tls.config.lifespan == "off"
        assert tls.config.port == 8443
        assert tls.config.ssl_certfile == "cert.pem"
        assert tls.config.ssl_keyfile == "key.pem"

    def test_stop_sets_should_exit(self) -> None:
        server = Server(Okapi())
        server._listeners = server.listeners()
        server.stop()
        assert all(listener.should_exit for listener in server._listeners)

    def test_listener_ignores_own_signals(self) -> None:
        listener = Server(Okapi()).listeners()[0]
        listener.install_signal_handlers()
        with listener.capture_signals():
            pass
