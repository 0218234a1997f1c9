"""Shared fixtures: cache stores on tmp_path, a controllable clock, zip archives."""

import pytest

from codemapper.storage.backend import JsonFileBackend
from codemapper.storage.cache_store import CacheStore
from tests.helpers import FakeClock, make_zip


@pytest.fixture
def clock():
    """Clock starting at a fixed epoch second; advance with clock.advance(secs)."""
    return FakeClock(1_700_000_000.0)


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "data" / "cache.json"


@pytest.fixture
def store(cache_path, clock):
    """Per-test CacheStore backed by a JSON file, 24h TTL, fake clock."""
    return CacheStore(JsonFileBackend(cache_path), ttl_secs=86_400, clock=clock)


@pytest.fixture
def sample_zip():
    """Small wrapped repository archive (single top-level dir, like a GitHub zipball)."""
    return make_zip({
        "acme-app-1a2b3c/package.json": '{"dependencies": {"next": "14.0.0"}, "scripts": {"build": "next build"}}',
        "acme-app-1a2b3c/app/page.tsx": "import { Header } from '@/components/header'\nexport default function Page() {}\n",
        "acme-app-1a2b3c/app/api/payments/route.ts": (
            "import { charge } from '../../../lib/payments'\n"
            "export async function POST() { return charge() }\n"
        ),
        "acme-app-1a2b3c/components/header.tsx": "import React from 'react'\nexport function Header() {}\n",
        "acme-app-1a2b3c/lib/payments.ts": "import Stripe from 'stripe'\nexport function charge() {}\n",
        "acme-app-1a2b3c/Dockerfile": "FROM node:20\nRUN npm ci\n",
        "acme-app-1a2b3c/node_modules/left-pad/index.js": "module.exports = 1\n",
    })
