"""Shared fixtures: a fresh runtime and context per test, and a captured log."""

from typing import List

import pytest

from qjs_python import Context, Runtime


@pytest.fixture
def runtime():
    rt = Runtime()
    yield rt
    rt.dispose()


@pytest.fixture
def context(runtime) -> Context:
    return runtime.new_context()


@pytest.fixture
def logs(context) -> List[str]:
    lines: List[str] = []
    context.set_log_func(lines.append)
    return lines
