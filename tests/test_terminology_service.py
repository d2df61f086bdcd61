"""
Terminology Service Tests
Exercises the RxNav client against a local aiohttp server
"""
import asyncio

import pytest
from aiohttp import web
from aiohttp import test_utils

from medsafety.services.terminology_service import (
    TerminologyService,
    TerminologyServiceError,
    TerminologyTimeoutError,
)


async def approximate_term(request: web.Request) -> web.Response:
    term = request.query["term"].lower()

    if term == "broken":
        return web.Response(status=500, text="upstream failure")
    if term == "slow":
        await asyncio.sleep(0.5)
    if term == "garbled":
        return web.json_response({
            "approximateGroup": {"candidate": [{"rxcui": "1", "name": "x", "rank": "first"}]}
        })
    if term == "listed":
        return web.json_response([{"rxcui": "1"}])

    if term == "lipitor":
        return web.json_response({
            "approximateGroup": {
                "inputTerm": term,
                "candidate": [
                    {"rxcui": "153165", "name": "Lipitor", "score": "10.0", "rank": "1"},
                    {"rxcui": "153165", "name": "Lipitor", "score": "10.0", "rank": "2"},
                    {"rxcui": "617310", "name": "atorvastatin 20 MG", "score": "8.0", "rank": "3"},
                ],
            }
        })

    return web.json_response({"approximateGroup": {"inputTerm": term}})


async def related(request: web.Request) -> web.Response:
    if request.match_info["rxcui"] != "153165":
        return web.json_response({"relatedGroup": {}})
    return web.json_response({
        "relatedGroup": {
            "conceptGroup": [
                {"tty": "IN", "conceptProperties": [{"rxcui": "83367", "name": "atorvastatin"}]},
            ]
        }
    })


async def drug_class(request: web.Request) -> web.Response:
    return web.json_response({
        "rxclassDrugInfoList": {
            "rxclassDrugInfo": [
                {"rxclassMinConceptItem": {"classId": "C10AA",
                                           "className": "HMG CoA reductase inhibitors"}},
            ]
        }
    })


@pytest.fixture
async def rxnav():
    app = web.Application()
    app.router.add_get("/approximateTerm.json", approximate_term)
    app.router.add_get("/rxcui/{rxcui}/related.json", related)
    app.router.add_get("/rxclass/class/byRxcui.json", drug_class)

    server = test_utils.TestServer(app)
    await server.start_server()
    yield server
    await server.close()


@pytest.fixture
def terminology(rxnav) -> TerminologyService:
    return TerminologyService(base_url=str(rxnav.make_url("")), timeout_seconds=0.2)


# ============================================================================
# LOOKUP TESTS
# ============================================================================

@pytest.mark.asyncio
async def test_lookup_returns_ingredient_and_class(terminology):
    """Brand name resolves to its ingredient concept with an ATC class."""
    details = await terminology.lookup("Lipitor")

    assert details == {
        "rxcui": "83367",
        "name": "atorvastatin",
        "pharmacologic_class": "HMG CoA reductase inhibitors",
    }


@pytest.mark.asyncio
async def test_lookup_no_match(terminology):
    """No candidates means None, not an error."""
    assert await terminology.lookup("xyzzy") is None


@pytest.mark.asyncio
async def test_lookup_server_error(terminology):
    with pytest.raises(TerminologyServiceError):
        await terminology.lookup("broken")


@pytest.mark.asyncio
async def test_lookup_timeout(terminology):
    with pytest.raises(TerminologyTimeoutError):
        await terminology.lookup("slow")


@pytest.mark.asyncio
async def test_search_concepts_deduplicated(terminology):
    candidates = await terminology.search_concepts("lipitor")

    assert [c["rxcui"] for c in candidates] == ["153165", "617310"]


@pytest.mark.asyncio
async def test_unreachable_service():
    """Connection failures surface as service errors."""
    terminology = TerminologyService(base_url="http://127.0.0.1:1", timeout_seconds=1.0)

    with pytest.raises(TerminologyServiceError):
        await terminology.lookup("aspirin")


@pytest.mark.asyncio
@pytest.mark.parametrize("term", ["garbled", "listed"])
async def test_malformed_payload_is_service_error(terminology, term):
    """Unparseable responses surface as service errors, not bare ValueErrors."""
    with pytest.raises(TerminologyServiceError):
        await terminology.lookup(term)


# ============================================================================
# PARSER TESTS
# ============================================================================

def test_parse_candidates_sorted_by_rank():
    data = {
        "approximateGroup": {
            "candidate": [
                {"rxcui": "2", "name": "b", "rank": "2"},
                {"rxcui": "1", "name": "a", "rank": "1"},
                {"name": "no id"},
            ]
        }
    }
    candidates = TerminologyService._parse_candidates(data)

    assert [c["rxcui"] for c in candidates] == ["1", "2"]


def test_parse_candidates_empty():
    assert TerminologyService._parse_candidates({}) == []


def test_parse_ingredient_missing():
    assert TerminologyService._parse_ingredient({"relatedGroup": {"conceptGroup": []}}) is None
