from __future__ import annotations

import pytest

from fakes import FakeContext, FakePage
from sitesweep.config import ListingSettings, default_settings
from sitesweep.readiness import (
    FixedDelayPolicy,
    ListingReadinessPolicy,
    readiness_policy_for,
)

SETTINGS = default_settings()
MODES = {m.name: m for m in SETTINGS.viewport_modes}


def listing_policy(**kw) -> ListingReadinessPolicy:
    listing = ListingSettings(
        selectors=(".car-list",),
        item_selector="[class*=item]",
        attempts=kw.pop("attempts", 4),
        poll_interval=0.5,
        not_ready_phrases=("0 RESULTS",),
        prime_session=kw.pop("prime_session", True),
    )
    return ListingReadinessPolicy(listing=listing, **kw)


def test_policy_selection():
    assert isinstance(readiness_policy_for("list", SETTINGS), ListingReadinessPolicy)
    for page_type in ("homepage", "detail", "other"):
        policy = readiness_policy_for(page_type, SETTINGS)
        assert isinstance(policy, FixedDelayPolicy)
        assert policy.reflow_settle_ms == 800
    assert readiness_policy_for("list", SETTINGS).reflow_settle_ms == 2000


@pytest.mark.asyncio
async def test_fixed_delay():
    page = FakePage()
    await FixedDelayPolicy(settle_ms=1000).wait_until_ready(page)
    assert page.waits == [1500]


@pytest.mark.asyncio
async def test_listing_found_after_polling():
    page = FakePage(
        listing_probes=[
            {"blocked": "0 RESULTS", "selector": None},
            {"blocked": None, "selector": None},
            {"blocked": None, "selector": ".car-list"},
        ]
    )
    policy = listing_policy()
    assert await policy.find_listing(page) == ".car-list"
    assert page.waits == [500, 500]


@pytest.mark.asyncio
async def test_listing_wait_sequence_with_fallback():
    page = FakePage(load_state_error=True)
    policy = listing_policy(attempts=3)
    await policy.wait_until_ready(page)
    assert page.load_states == ["load", "networkidle"]
    # three polls, the fallback wait, then the final settle
    assert page.waits == [500, 500, 500, 5000, 3000]


@pytest.mark.asyncio
async def test_listing_found_skips_fallback():
    page = FakePage(listing_probes=[{"blocked": None, "selector": ".car-list"}])
    await listing_policy().wait_until_ready(page)
    assert page.waits == [3000]


@pytest.mark.asyncio
async def test_prepare_primes_session_on_first_pass_only():
    page = FakePage()
    context = FakeContext(page, {})
    policy = listing_policy()
    await policy.prepare(context, page, "https://example.com/list/cars?x=1", MODES["pc_normal"])
    assert page.visited == ["https://example.com/"]
    assert page.waits == [3000]

    other = FakePage()
    await policy.prepare(FakeContext(other, {}), other, "https://example.com/list", MODES["mobile_normal"])
    assert other.visited == []


@pytest.mark.asyncio
async def test_prepare_tolerates_failed_homepage():
    page = FakePage(goto_error="net::ERR_CONNECTION_RESET")
    policy = listing_policy()
    await policy.prepare(FakeContext(page, {}), page, "https://example.com/list", MODES["pc_normal"])
    assert page.visited == ["https://example.com/"]


@pytest.mark.asyncio
async def test_prepare_disabled():
    page = FakePage()
    policy = listing_policy(prime_session=False)
    await policy.prepare(FakeContext(page, {}), page, "https://example.com/list", MODES["pc_normal"])
    assert page.visited == []
