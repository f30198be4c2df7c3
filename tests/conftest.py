from xml.sax.saxutils import escape

import httpx
import pytest

from rbxlx_decompiler.pipeline.transformer import OracleClient

ORACLE_URL = "https://oracle.test/decompile"
BYTECODE_SOURCE = "-- Bytecode (Base64):\n-- QUJD\n\nlocal x = 1"


def script_item(class_name: str, name: str, source: str, cdata: bool = True, children: str = "") -> str:
    body = f"<![CDATA[{source}]]>" if cdata else escape(source)
    return (
        f'<Item class="{class_name}">'
        "<Properties>"
        f'<string name="Name">{escape(name)}</string>'
        f'<ProtectedString name="Source">{body}</ProtectedString>'
        "</Properties>"
        f"{children}"
        "</Item>"
    )


def plain_item(class_name: str, name: str, children: str = "") -> str:
    return (
        f'<Item class="{class_name}">'
        f'<Properties><string name="Name">{escape(name)}</string></Properties>'
        f"{children}"
        "</Item>"
    )


def document(*items: str) -> str:
    return '<?xml version="1.0" encoding="utf-8"?>\n<roblox version="4">\n' + "\n".join(items) + "\n</roblox>\n"


@pytest.fixture
def write_doc(tmp_path):
    def _write(text: str, name: str = "place.rbxlx"):
        path = tmp_path / name
        path.write_bytes(text.encode("utf-8"))
        return path
    return _write


@pytest.fixture
def oracle():
    """Mock oracle: returns (client, requests). Set `.reply` to (status, body)."""
    class _Oracle:
        def __init__(self) -> None:
            self.requests: list[httpx.Request] = []
            self.reply = (200, "print(1)")

        def handler(self, request: httpx.Request) -> httpx.Response:
            self.requests.append(request)
            status, body = self.reply
            return httpx.Response(status, text=body)

    o = _Oracle()
    client = OracleClient(ORACLE_URL, "secret", 5.0, transport=httpx.MockTransport(o.handler))
    yield client, o
    client.close()
