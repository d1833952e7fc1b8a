import io
import json
import os
import zipfile
from typing import Any, Callable, Dict, Iterator, List, Optional, Union

import pytest
import requests

from astral_projection.config import Config, parse_yaml


class FakeResponse:
    def __init__(
        self,
        body: bytes = b"",
        status_code: int = 200,
        headers: Optional[Dict[str, str]] = None,
    ) -> None:
        self.content = body
        self.status_code = status_code
        self.headers = (
            headers if headers is not None else {"content-length": str(len(body))}
        )

    def __enter__(self) -> "FakeResponse":
        return self

    def __exit__(self, *args: Any) -> None:
        pass

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Client Error")

    def iter_content(self, chunk_size: int = 1) -> Iterator[bytes]:
        for i in range(0, len(self.content), chunk_size):
            yield self.content[i : i + chunk_size]


Route = Union[bytes, FakeResponse, Exception]


class FakeSession:
    """Serves canned responses by URL and records the requested URLs."""

    def __init__(self, routes: Dict[str, Route]) -> None:
        self.routes = routes
        self.requested: List[str] = []

    def __enter__(self) -> "FakeSession":
        return self

    def __exit__(self, *args: Any) -> None:
        pass

    def get(self, url: str, **kwargs: Any) -> FakeResponse:
        self.requested.append(url)
        route = self.routes.get(url)
        if route is None:
            return FakeResponse(b"", status_code=404)
        if isinstance(route, Exception):
            raise route
        if isinstance(route, FakeResponse):
            return route
        return FakeResponse(route)


def build_zip(entries: Dict[str, Union[str, bytes]]) -> bytes:
    buf = io.BytesIO()
    with zipfile.ZipFile(buf, "w", compression=zipfile.ZIP_DEFLATED) as zf:
        for name, content in entries.items():
            zf.writestr(name, content)
    return buf.getvalue()


def read_zip(data: bytes) -> Dict[str, bytes]:
    with zipfile.ZipFile(io.BytesIO(data)) as zf:
        return {name: zf.read(name) for name in zf.namelist()}


def list_keys(root: Any) -> List[str]:
    """Lists the keys saved under a local store root, skipping partial writes."""
    keys: List[str] = []
    for dirpath, _, filenames in os.walk(str(root)):
        for filename in filenames:
            if not filename.endswith(".part"):
                path = os.path.relpath(os.path.join(dirpath, filename), str(root))
                keys.append(path.replace(os.sep, "/"))
    return sorted(keys)


@pytest.fixture
def fake_session() -> Callable[[Dict[str, Route]], FakeSession]:
    return FakeSession


@pytest.fixture
def fake_response() -> Callable[..., FakeResponse]:
    return FakeResponse


@pytest.fixture
def make_zip() -> Callable[[Dict[str, Union[str, bytes]]], bytes]:
    return build_zip


@pytest.fixture
def unzip() -> Callable[[bytes], Dict[str, bytes]]:
    return read_zip


@pytest.fixture
def stored_keys() -> Callable[[Any], List[str]]:
    return list_keys


@pytest.fixture
def system_manifest() -> Dict[str, str]:
    return {
        "name": "dnd5e",
        "title": "Dungeons & Dragons Fifth Edition",
        "manifest": "https://origin/system.json",
        "download": "https://origin/system.zip",
    }


@pytest.fixture
def make_config(tmp_path: Any) -> Callable[..., Config]:
    def factory(**astral: Any) -> Config:
        options = {
            "dir": str(tmp_path / "manifests"),
            "prefix": "https://mirror.example.org/",
        }
        options.update(astral)
        return parse_yaml(
            json.dumps(
                {
                    "version": "1.0",
                    "storage": {"type": "local", "path": str(tmp_path / "store")},
                    "astral": options,
                }
            )
        )

    return factory
