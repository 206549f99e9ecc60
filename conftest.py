import base64
import importlib.util
import json
import marshal
import sys
import textwrap

import pytest

from cr_utils.cr_capture import is_output_redirected


def build_image(source: str, filename: str = "Program.py") -> bytes:
    """Compile ``source`` into the bytes py_compile would write to a .pyc."""
    text = textwrap.dedent(source)
    code = compile(text, filename, "exec")
    header = (
        importlib.util.MAGIC_NUMBER
        + (0).to_bytes(4, "little")
        + (0).to_bytes(4, "little")
        + (len(text) & 0xFFFFFFFF).to_bytes(4, "little")
    )
    return header + marshal.dumps(code)


def encode(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def envelope(sequence: int, **data) -> str:
    return json.dumps({"sequence": sequence, "data": data})


@pytest.fixture
def compile_module():
    return build_image


@pytest.fixture(autouse=True)
def console_state():
    """Every test must leave sys.stdout exactly as it found it."""
    before = sys.stdout
    yield
    assert not is_output_redirected()
    assert sys.stdout is before
