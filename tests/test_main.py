from __future__ import annotations

from typing import Any

import pytest

from quizlens import __main__ as entrypoint


def test_main_runs_app_factory_with_uvicorn(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: list[tuple[tuple[Any, ...], dict[str, Any]]] = []
    monkeypatch.setattr(entrypoint.uvicorn, "run", lambda *args, **kwargs: calls.append((args, kwargs)))

    entrypoint.main(["--host", "0.0.0.0", "--port", "9001"])

    assert calls == [
        (
            ("quizlens.app:create_app",),
            {"factory": True, "host": "0.0.0.0", "port": 9001, "reload": False},
        )
    ]


def test_main_defaults_to_localhost() -> None:
    args = entrypoint.parse_args([])

    assert (args.host, args.port, args.reload) == ("127.0.0.1", 8000, False)
