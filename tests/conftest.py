from __future__ import annotations

import pytest

from fakes import NOW, fake_repos
from motoshop.cli import build_services
from motoshop.config import ShopConfig


@pytest.fixture
def svc():
    s = build_services(ShopConfig(), **fake_repos())
    s.settlement.clock = lambda: NOW
    s.inventory.clock = lambda: NOW
    return s
